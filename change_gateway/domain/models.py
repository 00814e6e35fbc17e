"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any


class ChangeStatus(str, Enum):
    """Change request lifecycle status"""

    PENDING = "pending"
    INVOICE_SENT = "invoice_sent"
    PAID = "paid"
    APPLIED = "applied"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ChangeKind(str, Enum):
    """Which parts of the order the request modifies"""

    ADDRESS = "address"
    PACKAGE = "package"
    BOTH = "both"


@dataclass(frozen=True)
class AddressSnapshot:
    """Immutable copy of a ship-to address"""

    name: str
    street1: str
    city: str
    state: str
    zip: str
    country: str = "US"
    street2: Optional[str] = None
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AddressSnapshot":
        return cls(**data)


@dataclass(frozen=True)
class PackageSnapshot:
    """Immutable copy of package weight (oz) and dimensions (in)"""

    weight_oz: float
    length_in: float
    width_in: float
    height_in: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageSnapshot":
        return cls(**data)


@dataclass(frozen=True)
class Customer:
    """Contact for invoices and reminders"""

    name: str
    email: str


@dataclass
class RateQuote:
    """Canonical carrier quote"""

    service_code: str
    service_name: str
    amount_cents: int


@dataclass
class CostReconciliation:
    """Output of cost reconciliation"""

    additional_cost_cents: int
    original_margin_cents: Optional[int]
    baseline_cents: int

    @property
    def needs_review(self) -> bool:
        # Negative charges are never auto-invoiced
        return self.additional_cost_cents < 0


@dataclass
class OrderRecord:
    """Order as seen through the external order store"""

    order_ref: str
    customer: Customer
    address: AddressSnapshot
    package: PackageSnapshot
    shipping_blocked: bool


@dataclass
class CheckoutSession:
    """Payable object created by the checkout gateway"""

    session_ref: str
    payment_url: str
    session_id: Optional[str] = None


@dataclass
class SessionStatus:
    """Settlement state of a checkout session"""

    settled: bool
    settled_order_ref: Optional[str] = None
