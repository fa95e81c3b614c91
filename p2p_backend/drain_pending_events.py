"""
Drain the PENDING posting queue of one tenant.

Intended for a scheduler (cron, k8s CronJob):

    python -m p2p_backend.drain_pending_events farm-1 --limit 200

Exits non-zero when any event in the batch failed to post.
"""

import argparse
import asyncio
import sys

from p2p_backend.app.core.config import settings
from p2p_backend.app.core.observability import configure_logging
from p2p_backend.app.db.session import AsyncSessionLocal, engine
from p2p_backend.app.domain.posting.engine import BatchResult, PostingEngine


async def drain(tenant_id: str, limit: int) -> BatchResult:
    try:
        return await PostingEngine(AsyncSessionLocal).process_pending_events(tenant_id, limit)
    finally:
        await engine.dispose()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Post a tenant's pending business events")
    parser.add_argument("tenant_id", help="Tenant whose queue is drained")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.posting_batch_limit,
        help=f"Maximum events to process (default {settings.posting_batch_limit})"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(settings.log_level)

    result = asyncio.run(drain(args.tenant_id, args.limit))

    print(f"🔁 Drained {result.processed} event(s) for tenant {args.tenant_id}")
    print(f"  - posted:    {result.posted}")
    print(f"  - failed:    {result.failed}")
    print(f"  - recovered: {len(result.recovered_event_ids)} stale lease(s)")
    for item in result.items:
        if item.error:
            print(f"  ❌ event {item.event_id}: {item.error}")

    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
