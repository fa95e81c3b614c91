"""
Typed payloads for the money-moving P2P event types.

The workflow component writes payloads with camelCase keys; each model
accepts those aliases as well as the snake_case field names.
"""

from pydantic import BaseModel, Field, ValidationError
from typing import Any, Dict, List, Optional, Type, TypeVar

from p2p_backend.app.core.exceptions import PostingValidationError

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class ReceiptLine(BaseModel):
    """One received PO line."""
    item_id: Optional[str] = Field(None, alias="itemId")
    qty_received: Optional[float] = Field(None, alias="qtyReceived")
    unit_cost: float = Field(0.0, alias="unitCost")
    total_cost: Optional[float] = Field(None, alias="totalCost")
    category: Optional[str] = None
    lot_number: Optional[str] = Field(None, alias="lotNumber")
    expiration_date: Optional[str] = Field(None, alias="expirationDate")
    storage_location: Optional[str] = Field(None, alias="storageLocation")
    po_line_number: Optional[int] = Field(None, alias="poLineNumber")

    class Config:
        populate_by_name = True
        allow_inf_nan = False

    @property
    def line_total(self) -> float:
        """Extended cost of the line; derived from qty * unit cost when not given."""
        if self.total_cost is not None:
            return self.total_cost
        return round((self.qty_received or 0) * self.unit_cost, 2)


class ReceiptTotals(BaseModel):
    total_cost: Optional[float] = Field(None, alias="totalCost")

    class Config:
        populate_by_name = True
        allow_inf_nan = False


class ReceiptPostedPayload(BaseModel):
    """Payload of RECEIPT_POSTED."""
    lines: List[ReceiptLine] = Field(default_factory=list)
    totals: ReceiptTotals = Field(default_factory=ReceiptTotals)
    vendor_id: Optional[str] = Field(None, alias="vendorId")
    po_id: Optional[str] = Field(None, alias="poId")
    site_id: Optional[str] = Field(None, alias="siteId")
    shipping_cost: float = Field(0.0, alias="shippingCost")

    class Config:
        populate_by_name = True
        allow_inf_nan = False

    @property
    def goods_total(self) -> float:
        if self.totals.total_cost is not None:
            return self.totals.total_cost
        return round(sum(line.line_total for line in self.lines), 2)


class BillVariancePostedPayload(BaseModel):
    """Payload of BILL_VARIANCE_POSTED: bill total minus received total."""
    variance_amount: float = Field(..., alias="varianceAmount")
    vendor_id: Optional[str] = Field(None, alias="vendorId")
    bill_id: Optional[str] = Field(None, alias="billId")

    class Config:
        populate_by_name = True
        allow_inf_nan = False


class PaymentAllocation(BaseModel):
    bill_id: str = Field(..., alias="billId")
    amount: Optional[float] = None

    class Config:
        populate_by_name = True
        allow_inf_nan = False


class PaymentSentPayload(BaseModel):
    """Payload of PAYMENT_SENT."""
    amount: float
    vendor_id: Optional[str] = Field(None, alias="vendorId")
    bank_account_id: Optional[str] = Field(None, alias="bankAccountId")
    allocations: List[PaymentAllocation] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        allow_inf_nan = False


class ReversalPayload(BaseModel):
    """Payload written on a reversal event."""
    original_event_id: int = Field(..., alias="originalEventId")
    original_event_type: str = Field(..., alias="originalEventType")
    reason: str

    class Config:
        populate_by_name = True


def parse_payload(model: Type[PayloadT], event_type: str, raw: Optional[Dict[str, Any]]) -> PayloadT:
    """
    Validate a stored payload against its typed model.

    Raises:
        PostingValidationError: with the first pydantic error in the message
    """
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise PostingValidationError(
            message=f"Invalid {event_type} payload: {location}: {first['msg']}",
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]}
        ) from exc
