"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from p2p_backend.app.api.v1.endpoints import posting, ledger, inventory

router = APIRouter()

# Event intake, posting, reversal
router.include_router(posting.router)

# Read models
router.include_router(ledger.router)
router.include_router(inventory.router)
