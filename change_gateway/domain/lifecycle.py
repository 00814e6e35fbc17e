"""Change request state machine rules"""

from typing import Dict, FrozenSet, Optional, Tuple
from change_gateway.domain.models import ChangeStatus, ChangeKind, AddressSnapshot, PackageSnapshot
from change_gateway.domain.exceptions import InvalidStateTransition, ExpiredRequest, InvalidChangeRequest

S = ChangeStatus

VALID_TRANSITIONS: Dict[ChangeStatus, FrozenSet[ChangeStatus]] = {
    S.PENDING: frozenset({S.INVOICE_SENT, S.CANCELLED}),
    # invoice_sent -> invoice_sent is a reminder
    S.INVOICE_SENT: frozenset({S.INVOICE_SENT, S.PAID, S.CANCELLED, S.EXPIRED}),
    S.PAID: frozenset({S.APPLIED}),
    S.APPLIED: frozenset(),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in VALID_TRANSITIONS.items() if not targets)
ACTIVE_STATUSES = frozenset(VALID_TRANSITIONS) - TERMINAL_STATUSES

# Waiting on an operator
ACTIONABLE_STATUSES = frozenset({S.PENDING, S.PAID})


def is_active(status: str) -> bool:
    return ChangeStatus(status) in ACTIVE_STATUSES


def validate_transition(current: str, target: ChangeStatus) -> None:
    """
    Raise unless current -> target is in the transition table.

    Raises:
        ExpiredRequest: Current status is expired
        InvalidStateTransition: Any other illegal move
    """
    current_status = ChangeStatus(current)
    if target in VALID_TRANSITIONS[current_status]:
        return
    if current_status is S.EXPIRED:
        raise ExpiredRequest(target.value)
    raise InvalidStateTransition(current_status.value, target.value)


def derive_kind(
    original_address: AddressSnapshot,
    proposed_address: Optional[AddressSnapshot],
    original_package: PackageSnapshot,
    proposed_package: Optional[PackageSnapshot],
) -> ChangeKind:
    """
    Derive the request kind from which proposed snapshots differ.

    Raises:
        InvalidChangeRequest: Nothing differs from the current order
    """
    address_changed = proposed_address is not None and proposed_address != original_address
    package_changed = proposed_package is not None and proposed_package != original_package

    if address_changed and package_changed:
        return ChangeKind.BOTH
    if address_changed:
        return ChangeKind.ADDRESS
    if package_changed:
        return ChangeKind.PACKAGE
    raise InvalidChangeRequest("Proposed address and package match the current order")


def statuses_for_filter(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """
    Map a listing filter to concrete statuses (None means no filter).

    Accepts a status name, "active", "actionable", or empty.

    Raises:
        ValueError: Unknown filter
    """
    if not value:
        return None
    if value == "active":
        return frozenset(s.value for s in ACTIVE_STATUSES)
    if value == "actionable":
        return frozenset(s.value for s in ACTIONABLE_STATUSES)
    return frozenset({ChangeStatus(value).value})


def summarize_totals(totals: Dict[str, Tuple[int, int]]) -> Dict[str, object]:
    """
    Dashboard figures from per-status (count, additional cost) totals.

    Pending revenue is what is still to be invoiced or collected; collected
    is what has been paid, applied or not.
    """
    by_status = {}
    for status in ChangeStatus:
        count, amount = totals.get(status.value, (0, 0))
        by_status[status.value] = {"count": count, "amount_cents": amount}

    pending_revenue = by_status[S.PENDING.value]["amount_cents"] + by_status[S.INVOICE_SENT.value]["amount_cents"]
    collected = by_status[S.PAID.value]["amount_cents"] + by_status[S.APPLIED.value]["amount_cents"]
    return {
        "by_status": by_status,
        "pending_revenue_cents": pending_revenue,
        "collected_cents": collected,
    }
