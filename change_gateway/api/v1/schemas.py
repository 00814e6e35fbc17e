"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from change_gateway.domain.models import AddressSnapshot, PackageSnapshot


class AddressSchema(BaseModel):
    """Ship-to address"""

    name: str = Field(..., min_length=1)
    street1: str = Field(..., min_length=1)
    street2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)
    country: str = "US"
    phone: Optional[str] = None

    def to_snapshot(self) -> AddressSnapshot:
        return AddressSnapshot(**self.model_dump())


class PackageSchema(BaseModel):
    """Package weight in ounces, dimensions in inches"""

    weight_oz: float = Field(..., gt=0)
    length_in: float = Field(..., gt=0)
    width_in: float = Field(..., gt=0)
    height_in: float = Field(..., gt=0)

    def to_snapshot(self) -> PackageSnapshot:
        return PackageSnapshot(**self.model_dump())


class OpenChangeRequest(BaseModel):
    """Request body for POST /v1/change-requests"""

    order_ref: str = Field(..., min_length=1, description="Order identifier in the order store")
    customer_paid_cents: int = Field(..., ge=0, description="Shipping amount the customer paid")
    original_rate_cents: Optional[int] = Field(None, ge=0, description="Carrier cost known at sale time")
    new_rate_cents: Optional[int] = Field(None, ge=0, description="Omit to quote the carrier")
    proposed_address: Optional[AddressSchema] = None
    proposed_package: Optional[PackageSchema] = None
    notes: Optional[str] = None


class MarkPaidRequest(BaseModel):
    """Request body for POST /v1/change-requests/{id}/mark-paid"""

    method: str = Field("manual", min_length=1)
    reference: Optional[str] = None


class CancelRequest(BaseModel):
    """Request body for POST /v1/change-requests/{id}/cancel"""

    reason: Optional[str] = None


class CheckoutWebhook(BaseModel):
    """Settlement callback from the checkout gateway"""

    session_ref: str = Field(..., min_length=1)


class CustomerSchema(BaseModel):
    name: str
    email: str


class CostsSchema(BaseModel):
    customer_paid_cents: int
    original_rate_cents: Optional[int] = None
    new_rate_cents: int
    additional_cost_cents: int
    additional_cost_formatted: str
    original_margin_cents: Optional[int] = None
    needs_review: bool


class CheckoutSchema(BaseModel):
    session_id: Optional[str] = None
    session_ref: Optional[str] = None
    payment_url: Optional[str] = None
    settled_order_ref: Optional[str] = None


class RemindersSchema(BaseModel):
    count: int
    last_sent_at: Optional[datetime] = None


class TimestampsSchema(BaseModel):
    created_at: datetime
    invoice_sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None


class ChangeRequestResponse(BaseModel):
    """A change request as returned by every endpoint"""

    id: str
    order_ref: str
    kind: str
    status: str
    active: bool
    customer: CustomerSchema
    original_address: Optional[AddressSchema] = None
    proposed_address: Optional[AddressSchema] = None
    original_package: Optional[PackageSchema] = None
    proposed_package: Optional[PackageSchema] = None
    costs: CostsSchema
    rate_service_code: Optional[str] = None
    checkout: CheckoutSchema
    reminders: RemindersSchema
    timestamps: TimestampsSchema
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    days_pending: int
    stale: bool


class ChangeRequestList(BaseModel):
    """Response for GET /v1/change-requests"""

    requests: List[ChangeRequestResponse]
    count: int


class StatusTotals(BaseModel):
    count: int
    amount_cents: int


class StatsResponse(BaseModel):
    """Response for GET /v1/change-requests/stats"""

    by_status: Dict[str, StatusTotals]
    pending_revenue_cents: int
    pending_revenue_formatted: str
    collected_cents: int
    collected_formatted: str


class HistoryItem(BaseModel):
    """Single audited transition"""

    from_status: Optional[str] = None
    to_status: str
    actor: str
    detail: Optional[Dict[str, Any]] = None
    created_at: str


class HistoryResponse(BaseModel):
    """Response for GET /v1/change-requests/{id}/history"""

    change_request_id: str
    events: List[HistoryItem]


class ErrorResponse(BaseModel):
    error: str
    detail: str
