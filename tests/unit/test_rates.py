"""Unit tests for carrier quote normalization"""

import pytest
from decimal import Decimal
from change_gateway.domain.rates import (
    extract_candidates,
    normalize,
    select_candidate,
    to_minor_units,
    MAX_MINOR_UNITS,
)
from change_gateway.domain.exceptions import RateUnavailable, MalformedRate


def test_normalize_rated_shipment_shape():
    """UPS-style RatedShipment with a decimal string amount"""
    raw = {"RatedShipment": [{"Service": {"Code": "03"}, "TotalCharges": {"MonetaryValue": "12.34"}}]}

    quote = normalize(raw)

    assert quote.service_code == "03"
    assert quote.amount_cents == 1234
    assert quote.service_name == "UPS Ground"


@pytest.mark.parametrize("raw", [{"rates": []}, {}, [], None, {"RatedShipment": "nope"}])
def test_normalize_no_rates(raw):
    """Empty or unrecognized payloads are a typed failure, never a zero"""
    with pytest.raises(RateUnavailable):
        normalize(raw)


def test_shape_priority_bare_array_first():
    raw = [{"serviceCode": "03", "amount_cents": 999}]
    shape, candidates = extract_candidates(raw)
    assert shape == "array"
    assert candidates == raw


def test_shape_priority_rates_before_rated_shipment():
    raw = {
        "rates": [{"serviceCode": "03", "amount_cents": 1000}],
        "RatedShipment": [{"Service": {"Code": "03"}, "TotalCharges": {"MonetaryValue": "20.00"}}],
    }
    assert normalize(raw).amount_cents == 1000


def test_empty_rates_falls_through_to_rated_shipment():
    raw = {
        "rates": [],
        "RatedShipment": [{"Service": {"Code": "03"}, "TotalCharges": {"MonetaryValue": "7.50"}}],
    }
    assert normalize(raw).amount_cents == 750


def test_ground_service_preferred():
    """Ground wins even when the carrier lists it later"""
    raw = {
        "rates": [
            {"serviceCode": "01", "amount_cents": 4500},
            {"serviceCode": "03", "amount_cents": 1200},
            {"serviceCode": "02", "amount_cents": 2600},
        ]
    }
    quote = normalize(raw)
    assert quote.service_code == "03"
    assert quote.amount_cents == 1200


def test_first_candidate_without_ground():
    candidates = [{"serviceCode": "12", "amount_cents": 3100}, {"serviceCode": "01", "amount_cents": 4500}]
    assert select_candidate(candidates, "03") is candidates[0]


def test_custom_ground_code():
    raw = [{"code": "GND", "amount": "9.99"}, {"code": "EXP", "amount": "19.99"}]
    assert normalize(raw, ground_code="GND").amount_cents == 999


def test_amount_field_priority():
    """Integer minor units beat decimal major units beat nested strings"""
    raw = [{"serviceCode": "03", "amount_cents": 500, "amount": "99.99", "shipping_amount": {"amount": "1.00"}}]
    assert normalize(raw).amount_cents == 500

    raw = [{"serviceCode": "03", "rate": 12.5, "shipping_amount": {"amount": "1.00"}}]
    assert normalize(raw).amount_cents == 1250

    raw = [{"serviceCode": "03", "shipping_amount": {"amount": "8.15"}}]
    assert normalize(raw).amount_cents == 815


def test_service_name_fallbacks():
    raw = [{"service_code": "03", "service_name": "Economy", "amount_cents": 100}]
    assert normalize(raw).service_name == "Economy"

    raw = [{"service_code": "XX", "amount_cents": 100}]
    assert normalize(raw).service_name == "XX"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("12.34", 1234),
        ("12.345", 1235),  # half rounds up
        ("12.344", 1234),
        (0.1, 10),
        (19.99, 1999),  # float binary noise must not shift a cent
        (Decimal("0.005"), 1),
        (7, 700),
        (" 3.10 ", 310),
        ("0", 0),
    ],
)
def test_to_minor_units(value, expected):
    assert to_minor_units(value) == expected


@pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", "-1.00", True, [1], {"a": 1}])
def test_to_minor_units_rejects(value):
    with pytest.raises(MalformedRate):
        to_minor_units(value)


def test_to_minor_units_overflow():
    with pytest.raises(MalformedRate):
        to_minor_units(str(MAX_MINOR_UNITS))


def test_selected_quote_without_amount():
    with pytest.raises(MalformedRate) as exc_info:
        normalize([{"serviceCode": "03"}])
    assert exc_info.value.raw == {"serviceCode": "03"}


def test_minor_unit_field_must_be_integer():
    with pytest.raises(MalformedRate):
        normalize([{"serviceCode": "03", "amount_cents": "12.00"}])


def test_malformed_non_selected_quote_is_ignored():
    """Only the selected quote has to parse"""
    raw = [{"serviceCode": "01", "amount": "garbage"}, {"serviceCode": "03", "amount": "4.00"}]
    assert normalize(raw).amount_cents == 400
