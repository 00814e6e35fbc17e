"""Unit tests for the change request transition table"""

import pytest
from change_gateway.domain.lifecycle import (
    VALID_TRANSITIONS,
    TERMINAL_STATUSES,
    derive_kind,
    is_active,
    statuses_for_filter,
    summarize_totals,
    validate_transition,
)
from change_gateway.domain.models import AddressSnapshot, ChangeKind, ChangeStatus as S, PackageSnapshot
from change_gateway.domain.exceptions import ExpiredRequest, InvalidChangeRequest, InvalidStateTransition

ORIGINAL_ADDRESS = AddressSnapshot(name="Ada", street1="12 Analytical Way", city="Austin", state="TX", zip="78701")
NEW_ADDRESS = AddressSnapshot(name="Ada", street1="99 Engine St", city="Denver", state="CO", zip="80202")
ORIGINAL_PACKAGE = PackageSnapshot(weight_oz=16.0, length_in=10.0, width_in=8.0, height_in=4.0)
BIGGER_PACKAGE = PackageSnapshot(weight_oz=48.0, length_in=14.0, width_in=12.0, height_in=8.0)


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.APPLIED, S.CANCELLED, S.EXPIRED}


@pytest.mark.parametrize(
    "current,target",
    [
        ("pending", S.INVOICE_SENT),
        ("pending", S.CANCELLED),
        ("invoice_sent", S.INVOICE_SENT),
        ("invoice_sent", S.PAID),
        ("invoice_sent", S.CANCELLED),
        ("invoice_sent", S.EXPIRED),
        ("paid", S.APPLIED),
    ],
)
def test_legal_transitions(current, target):
    validate_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("pending", S.PAID),
        ("pending", S.APPLIED),
        ("pending", S.EXPIRED),
        ("invoice_sent", S.APPLIED),
        ("paid", S.CANCELLED),
        ("paid", S.EXPIRED),
        ("applied", S.CANCELLED),
        ("cancelled", S.INVOICE_SENT),
    ],
)
def test_illegal_transitions(current, target):
    with pytest.raises(InvalidStateTransition):
        validate_transition(current, target)


def test_expired_raises_expired_request():
    with pytest.raises(ExpiredRequest):
        validate_transition("expired", S.PAID)


def test_paid_only_reaches_applied():
    assert VALID_TRANSITIONS[S.PAID] == {S.APPLIED}


def test_is_active():
    assert is_active("pending")
    assert is_active("invoice_sent")
    assert is_active("paid")
    assert not is_active("applied")
    assert not is_active("expired")


def test_derive_kind():
    assert derive_kind(ORIGINAL_ADDRESS, NEW_ADDRESS, ORIGINAL_PACKAGE, None) == ChangeKind.ADDRESS
    assert derive_kind(ORIGINAL_ADDRESS, None, ORIGINAL_PACKAGE, BIGGER_PACKAGE) == ChangeKind.PACKAGE
    assert derive_kind(ORIGINAL_ADDRESS, NEW_ADDRESS, ORIGINAL_PACKAGE, BIGGER_PACKAGE) == ChangeKind.BOTH
    # Unchanged package alongside a new address is just an address change
    assert derive_kind(ORIGINAL_ADDRESS, NEW_ADDRESS, ORIGINAL_PACKAGE, ORIGINAL_PACKAGE) == ChangeKind.ADDRESS


def test_derive_kind_nothing_changes():
    with pytest.raises(InvalidChangeRequest):
        derive_kind(ORIGINAL_ADDRESS, ORIGINAL_ADDRESS, ORIGINAL_PACKAGE, None)
    with pytest.raises(InvalidChangeRequest):
        derive_kind(ORIGINAL_ADDRESS, None, ORIGINAL_PACKAGE, None)


def test_statuses_for_filter():
    assert statuses_for_filter(None) is None
    assert statuses_for_filter("") is None
    assert statuses_for_filter("active") == {"pending", "invoice_sent", "paid"}
    assert statuses_for_filter("actionable") == {"pending", "paid"}
    assert statuses_for_filter("expired") == {"expired"}
    with pytest.raises(ValueError):
        statuses_for_filter("shipped")


def test_summarize_totals():
    summary = summarize_totals({"pending": (2, 600), "invoice_sent": (1, 400), "paid": (1, 250), "applied": (3, 900)})

    assert summary["by_status"]["cancelled"] == {"count": 0, "amount_cents": 0}
    assert summary["by_status"]["pending"] == {"count": 2, "amount_cents": 600}
    assert summary["pending_revenue_cents"] == 1000
    assert summary["collected_cents"] == 1150
