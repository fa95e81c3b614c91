"""
Account Mapping.

Resolves the semantic accounting roles used by the posting rules to GL
account identifiers. A mapping is a plain value handed to the engine, so a
tenant-specific chart of accounts is just a different instance.
"""

from pydantic import BaseModel, Field
from typing import Dict, Optional


DEFAULT_CATEGORY_INVENTORY_ACCOUNTS = {
    "FEED": "feed-inventory",
    "MEDICINE": "medicine-inventory",
    "SUPPLIES": "supplies-inventory",
    "EQUIPMENT_PARTS": "equipment-parts-inventory",
}


class AccountMapping(BaseModel):
    """Role -> GL account id table consumed by the posting rules."""
    accounts_payable: str = "accounts-payable"
    cash: str = "cash"
    inventory: str = "feed-inventory"  # Used when a line has no category mapping
    purchase_price_variance: str = "purchase-price-variance"
    shipping_expense: str = "shipping-expense"
    category_inventory: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_INVENTORY_ACCOUNTS)
    )

    class Config:
        frozen = True

    def inventory_account_for(self, category: Optional[str]) -> str:
        """
        Inventory GL account for an item category.

        Uncategorized lines and unknown categories fall back to the
        default inventory account.
        """
        if category:
            account = self.category_inventory.get(category.upper())
            if account:
                return account
        return self.inventory


def default_account_mapping() -> AccountMapping:
    """Fresh copy of the static default mapping."""
    return AccountMapping()
