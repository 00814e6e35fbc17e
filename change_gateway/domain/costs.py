"""Cost reconciliation - what the customer owes for a modified shipment"""

from typing import Optional
from change_gateway.domain.models import CostReconciliation
from change_gateway.domain.exceptions import AmountOutOfRange

# Signed 64-bit range of the BIGINT cents columns
MIN_CENTS = -(2**63)
MAX_CENTS = 2**63 - 1


def _require_amount(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise AmountOutOfRange(f"{name} must be an integer count of cents, got {value!r}")
    if value < 0 or value > MAX_CENTS:
        raise AmountOutOfRange(f"{name} out of range: {value}")
    return value


def _checked(name: str, value: int) -> int:
    if value < MIN_CENTS or value > MAX_CENTS:
        raise AmountOutOfRange(f"{name} overflows 64-bit cents: {value}")
    return value


def reconcile(customer_paid_cents: int, original_rate_cents: Optional[int], new_rate_cents: int) -> CostReconciliation:
    """
    Decide how much more to collect for the modified shipment.

    - baseline = original carrier rate if known, else what the customer paid
    - additional cost = new rate - baseline (may be negative; never clamped)
    - original margin = customer paid - original rate (None without an
      original rate). Informational only, no charge is derived from it.

    Example:
        paid $20.00, original rate $15.00, new rate $18.00
        -> additional $3.00, original margin $5.00

    Raises:
        AmountOutOfRange: Inputs negative, non-integer, or results outside 64-bit cents
    """
    _require_amount("customer_paid_cents", customer_paid_cents)
    _require_amount("new_rate_cents", new_rate_cents)
    if original_rate_cents is not None:
        _require_amount("original_rate_cents", original_rate_cents)

    baseline = original_rate_cents if original_rate_cents is not None else customer_paid_cents
    additional_cost = _checked("additional_cost_cents", new_rate_cents - baseline)

    original_margin = None
    if original_rate_cents is not None:
        original_margin = _checked("original_margin_cents", customer_paid_cents - original_rate_cents)

    return CostReconciliation(
        additional_cost_cents=additional_cost,
        original_margin_cents=original_margin,
        baseline_cents=baseline,
    )


def format_cents(cents: int) -> str:
    """2050 -> '$20.50', -300 -> '-$3.00'"""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}${whole:,}.{frac:02d}"
