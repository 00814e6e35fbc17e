"""Unit tests for the payment poller and expiration sweeper"""

import asyncio
import pytest
from change_gateway.domain.exceptions import CheckoutGatewayError
from change_gateway.services.controller import ChangeRequestController
from change_gateway.services.workers import ExpirationSweeper, PaymentPoller


@pytest.fixture
def controller_factory(checkout, notifications, orders, rating, clock):
    def build(db):
        return ChangeRequestController(db, checkout, notifications, orders, rating, clock=clock)

    return build


async def invoice_order(controller, order_ref, new_address):
    record = await controller.open(order_ref, customer_paid_cents=2000, original_rate_cents=1500, proposed_address=new_address)
    return await controller.send_invoice(record.id)


async def test_poller_settles_paid_invoices(controller, controller_factory, session_factory, checkout, new_address):
    paid = await invoice_order(controller, "ord_1001", new_address)
    unpaid = await invoice_order(controller, "ord_1002", new_address)
    checkout.settled.add(paid.checkout_session_ref)

    poller = PaymentPoller(controller_factory, interval_seconds=60, session_factory=session_factory)
    result = await poller.run_once()

    assert result.checked == 2
    assert result.settled == 1
    assert result.errors == 0
    assert controller.get(paid.id).status == "paid"
    assert controller.get(unpaid.id).status == "invoice_sent"


async def test_poller_continues_past_gateway_errors(controller, controller_factory, session_factory, checkout, new_address):
    broken = await invoice_order(controller, "ord_1001", new_address)
    paid = await invoice_order(controller, "ord_1002", new_address)
    checkout.settled.add(paid.checkout_session_ref)
    get_session_status = checkout.get_session_status

    async def flaky_status(session_ref):
        if session_ref == broken.checkout_session_ref:
            raise CheckoutGatewayError("checkout get_session_status timed out after 5.0s")
        return await get_session_status(session_ref)

    checkout.get_session_status = flaky_status

    poller = PaymentPoller(controller_factory, interval_seconds=60, session_factory=session_factory)
    result = await poller.run_once()

    assert result.checked == 2
    assert result.errors == 1
    assert result.settled == 1
    assert controller.get(broken.id).status == "invoice_sent"
    assert controller.get(paid.id).status == "paid"


async def test_poller_reaches_invoices_beyond_one_batch(
    controller, controller_factory, session_factory, checkout, orders, clock, new_address
):
    """Newest invoices are polled even when older unpaid ones fill a batch"""
    records = []
    for i in range(5):
        orders.add(f"ord_20{i}")
        records.append(await invoice_order(controller, f"ord_20{i}", new_address))
        if i % 2:
            clock.advance(minutes=5)  # mix distinct and identical invoice_sent_at
    newest = records[-1]
    checkout.settled.add(newest.checkout_session_ref)

    poller = PaymentPoller(controller_factory, interval_seconds=60, batch_size=2, session_factory=session_factory)
    result = await poller.run_once()

    assert result.checked == 5
    assert result.settled == 1
    assert controller.get(newest.id).status == "paid"
    assert all(controller.get(r.id).status == "invoice_sent" for r in records[:-1])


async def test_poller_ignores_requests_not_invoiced(controller, controller_factory, session_factory, new_address):
    await controller.open("ord_1001", customer_paid_cents=2000, proposed_address=new_address, new_rate_cents=2500)

    poller = PaymentPoller(controller_factory, interval_seconds=60, session_factory=session_factory)
    result = await poller.run_once()

    assert result.checked == 0


async def test_sweeper_expires_only_overdue(controller, controller_factory, session_factory, clock, orders, new_address):
    old = await invoice_order(controller, "ord_1001", new_address)
    clock.advance(hours=100)
    recent = await invoice_order(controller, "ord_1002", new_address)
    clock.advance(hours=70)

    sweeper = ExpirationSweeper(controller_factory, interval_seconds=300, session_factory=session_factory, clock=clock)
    expired = await sweeper.run_once()

    assert expired == 1
    assert controller.get(old.id).status == "expired"
    assert controller.get(recent.id).status == "invoice_sent"
    assert orders.blocked["ord_1001"] is False
    assert orders.blocked["ord_1002"] is True

    assert await sweeper.run_once() == 0


async def test_sweeper_skips_paid(controller, controller_factory, session_factory, clock, new_address):
    record = await invoice_order(controller, "ord_1001", new_address)
    clock.advance(hours=200)
    await controller.mark_paid(record.id)

    sweeper = ExpirationSweeper(controller_factory, interval_seconds=300, session_factory=session_factory, clock=clock)
    assert await sweeper.run_once() == 0
    assert controller.get(record.id).status == "paid"


async def test_worker_start_stop(controller_factory, session_factory):
    poller = PaymentPoller(controller_factory, interval_seconds=3600, session_factory=session_factory)

    await poller.start()
    assert poller.is_running
    await asyncio.sleep(0)
    await poller.stop()
    assert not poller.is_running


def test_worker_rejects_bad_interval(controller_factory):
    with pytest.raises(ValueError):
        PaymentPoller(controller_factory, interval_seconds=0)
