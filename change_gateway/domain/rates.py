"""Carrier quote normalization - vendor-shaped rate payloads to one canonical quote"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Sequence, Tuple
from change_gateway.domain.models import RateQuote
from change_gateway.domain.exceptions import RateUnavailable, MalformedRate

# Largest amount the store can hold (BIGINT cents)
MAX_MINOR_UNITS = 2**63 - 1

# Object shapes checked after the bare-array shape, in priority order
RATE_ARRAY_KEYS = ("rates", "RatedShipment")

SERVICE_CODE_PATHS = (("serviceCode",), ("service_code",), ("Service", "Code"), ("code",))
SERVICE_NAME_PATHS = (("serviceName",), ("service_name",), ("Service", "Description"), ("service",))

# Amount sources per quote, first non-missing wins
MINOR_UNIT_FIELDS = ("amount_cents", "amountCents", "total_cents")
MAJOR_UNIT_FIELDS = ("amount", "rate", "total")
NESTED_DECIMAL_PATHS = (("TotalCharges", "MonetaryValue"), ("shipping_amount", "amount"))

UPS_SERVICE_NAMES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "59": "UPS 2nd Day Air A.M.",
}


def _dig(data: Any, path: Sequence[str]) -> Any:
    for key in path:
        if not isinstance(data, dict) or key not in data:
            return None
        data = data[key]
    return data


def _first_present(data: Any, paths: Sequence[Sequence[str]]) -> Any:
    for path in paths:
        value = _dig(data, path)
        if value is not None:
            return value
    return None


def extract_candidates(raw: Any) -> Tuple[str, List[Any]]:
    """
    Identify the response shape and return (shape, quotes).

    Shapes, in priority order: a bare array, an object with a `rates`
    array, an object with a `RatedShipment` array. The first shape that is
    present and non-empty wins.

    Raises:
        RateUnavailable: If no shape matches
    """
    if isinstance(raw, list) and raw:
        return "array", raw

    if isinstance(raw, dict):
        for key in RATE_ARRAY_KEYS:
            value = raw.get(key)
            if isinstance(value, list) and value:
                return key, value

    raise RateUnavailable("Carrier response contains no rates", raw=raw)


def service_code_of(candidate: Any) -> str:
    code = _first_present(candidate, SERVICE_CODE_PATHS)
    if isinstance(code, bool) or not isinstance(code, (str, int)):
        return ""
    return str(code)


def service_name_of(candidate: Any, code: str) -> str:
    name = _first_present(candidate, SERVICE_NAME_PATHS)
    if isinstance(name, str) and name:
        return name
    return UPS_SERVICE_NAMES.get(code, code)


def to_minor_units(value: Any) -> int:
    """
    Convert a decimal major-unit amount to integer cents.

    Rounds half away from zero (12.345 -> 1235). Floats go through their
    shortest repr so binary noise does not change the rounding.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise MalformedRate(f"Amount has unsupported type: {type(value).__name__}", raw=value)

    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise MalformedRate(f"Amount is not finite: {value!r}", raw=value)
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise MalformedRate(f"Amount is not a decimal number: {value!r}", raw=value) from e

    return check_minor_units(cents, raw=value)


def check_minor_units(cents: int, raw: Any = None) -> int:
    if cents < 0 or cents > MAX_MINOR_UNITS:
        raise MalformedRate(f"Amount out of range: {cents} cents", raw=raw)
    return cents


def extract_amount_cents(candidate: Any) -> int:
    """
    Extract the quote amount in cents.

    Priority: integer minor-unit field, decimal major-unit field, nested
    decimal string field.

    Raises:
        MalformedRate: If no amount field is present or it cannot be parsed
    """
    if not isinstance(candidate, dict):
        raise MalformedRate("Rate entry is not an object", raw=candidate)

    for field in MINOR_UNIT_FIELDS:
        value = candidate.get(field)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedRate(f"{field} must be an integer, got {value!r}", raw=candidate)
        return check_minor_units(value, raw=candidate)

    for field in MAJOR_UNIT_FIELDS:
        value = candidate.get(field)
        if value is not None:
            return to_minor_units(value)

    nested = _first_present(candidate, NESTED_DECIMAL_PATHS)
    if nested is not None:
        return to_minor_units(nested)

    raise MalformedRate("Rate entry has no amount", raw=candidate)


def parse_quote(candidate: Any) -> RateQuote:
    code = service_code_of(candidate)
    return RateQuote(
        service_code=code,
        service_name=service_name_of(candidate, code),
        amount_cents=extract_amount_cents(candidate),
    )


def select_candidate(candidates: List[Any], ground_code: str) -> Any:
    """Prefer the ground service; otherwise keep the carrier's first choice"""
    for candidate in candidates:
        if service_code_of(candidate) == ground_code:
            return candidate
    return candidates[0]


def normalize(raw: Any, ground_code: str = "03") -> RateQuote:
    """
    Main entry point: pick one canonical quote from a carrier response.

    Raises:
        RateUnavailable: No usable quote in the payload
        MalformedRate: The selected quote has no parseable amount
    """
    _, candidates = extract_candidates(raw)
    return parse_quote(select_candidate(candidates, ground_code))
