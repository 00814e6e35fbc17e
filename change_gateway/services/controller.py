"""Change request lifecycle controller - the only writer of change request status"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from change_gateway.config import Settings, settings as default_settings
from change_gateway.domain.costs import reconcile, format_cents
from change_gateway.domain.exceptions import (
    NotFound,
    ActiveRequestExists,
    InvalidStateTransition,
    ExpiredRequest,
    ManualReviewRequired,
    CheckoutGatewayError,
    NotificationGatewayError,
    OrderStoreError,
)
from change_gateway.domain.lifecycle import TERMINAL_STATUSES, validate_transition, derive_kind
from change_gateway.domain.models import (
    AddressSnapshot,
    ChangeKind,
    ChangeStatus,
    Customer,
    PackageSnapshot,
)
from change_gateway.domain.rates import normalize
from change_gateway.infrastructure.clients.checkout import CheckoutClient
from change_gateway.infrastructure.clients.notifications import NotificationClient
from change_gateway.infrastructure.clients.orders import OrderStoreClient
from change_gateway.infrastructure.clients.rating import RatingClient
from change_gateway.infrastructure.database.models import ChangeRequestRecord
from change_gateway.infrastructure.database.repositories import ChangeRequestRepository
from change_gateway.infrastructure.observability.logging import log_transition
from change_gateway.infrastructure.observability.metrics import (
    record_transition,
    opened_counter,
    expired_counter,
    payment_poll_counter,
)
from change_gateway.utils.date_utils import utcnow, add_hours

logger = logging.getLogger(__name__)

S = ChangeStatus

# Version-only conflicts (e.g. a reminder landing mid-cancel) are retried this often
MAX_SWAP_ATTEMPTS = 3


def parse_request_id(request_id: Any) -> uuid.UUID:
    if isinstance(request_id, uuid.UUID):
        return request_id
    try:
        return uuid.UUID(str(request_id))
    except ValueError:
        raise NotFound(f"Change request {request_id} not found")


def append_note(existing: Optional[str], text: str, at: datetime) -> str:
    line = f"[{at:%Y-%m-%d %H:%M}] {text}"
    return f"{existing}\n{line}" if existing else line


def _reject(current: str, target: ChangeStatus) -> InvalidStateTransition:
    if current == S.EXPIRED.value:
        return ExpiredRequest(target.value)
    return InvalidStateTransition(current, target.value)


class ChangeRequestController:
    """
    State machine for change requests.

    Every mutation follows the same pattern: read the row, perform any
    external side effect without holding a lock, then compare-and-swap on
    (id, status, version). A caller that loses the race re-reads and either
    observes the state the winner produced or gets InvalidStateTransition.
    """

    def __init__(
        self,
        db: Session,
        checkout: CheckoutClient,
        notifications: NotificationClient,
        orders: OrderStoreClient,
        rating: RatingClient,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = default_settings,
    ):
        self.db = db
        self.repo = ChangeRequestRepository(db)
        self.checkout = checkout
        self.notifications = notifications
        self.orders = orders
        self.rating = rating
        self.clock = clock
        self.config = config

    # ------------------------------------------------------------------
    # Reads

    def get(self, request_id: Any) -> ChangeRequestRecord:
        """Fresh copy of the persisted request"""
        record = self.repo.get(parse_request_id(request_id))
        if record is None:
            raise NotFound(f"Change request {request_id} not found")
        return record

    # ------------------------------------------------------------------
    # Transitions

    async def open(
        self,
        order_ref: str,
        customer_paid_cents: int,
        proposed_address: Optional[AddressSnapshot] = None,
        proposed_package: Optional[PackageSnapshot] = None,
        original_rate_cents: Optional[int] = None,
        new_rate_cents: Optional[int] = None,
        notes: Optional[str] = None,
        actor: str = "operator",
    ) -> ChangeRequestRecord:
        """
        Price a proposed modification and persist it as pending.

        Flow:
        1. Snapshot the order's current address/package from the order store
        2. Derive the kind from which proposed snapshot differs
        3. Quote the new shipment unless the caller supplied the new rate
        4. Reconcile costs
        5. Block the order from shipping, then insert (unique per active order)
        """
        if self.repo.has_active_for_order(order_ref):
            raise ActiveRequestExists(order_ref)

        order = await self.orders.get_order(order_ref)
        kind = derive_kind(order.address, proposed_address, order.package, proposed_package)
        address_changes = kind in (ChangeKind.ADDRESS, ChangeKind.BOTH)
        package_changes = kind in (ChangeKind.PACKAGE, ChangeKind.BOTH)
        ship_to = proposed_address if address_changes else order.address
        parcel = proposed_package if package_changes else order.package

        service_code = None
        if new_rate_cents is None:
            raw = await self.rating.get_rates(order_ref, ship_to, parcel)
            quote = normalize(raw, self.config.ground_service_code)
            new_rate_cents = quote.amount_cents
            service_code = quote.service_code

        costs = reconcile(customer_paid_cents, original_rate_cents, new_rate_cents)
        if costs.needs_review:
            logger.warning(
                "Change request priced below baseline, flagged for manual review",
                extra={"order_ref": order_ref, "additional_cost_cents": costs.additional_cost_cents},
            )

        await self.orders.set_shipping_blocked(order_ref, True)

        now = self.clock()
        try:
            record = self.repo.create(
                order_ref=order_ref,
                kind=kind.value,
                status=S.PENDING.value,
                version=1,
                customer_name=order.customer.name,
                customer_email=order.customer.email,
                original_address=order.address.to_dict() if address_changes else None,
                proposed_address=ship_to.to_dict() if address_changes else None,
                original_package=order.package.to_dict() if package_changes else None,
                proposed_package=parcel.to_dict() if package_changes else None,
                customer_paid_cents=customer_paid_cents,
                original_rate_cents=original_rate_cents,
                new_rate_cents=new_rate_cents,
                additional_cost_cents=costs.additional_cost_cents,
                original_margin_cents=costs.original_margin_cents,
                rate_service_code=service_code,
                reminder_count=0,
                created_at=now,
                notes=append_note(None, notes, now) if notes else None,
            )
            record_id = record.id
            self.repo.append_event(
                record_id,
                None,
                S.PENDING.value,
                actor,
                now,
                {
                    "additional_cost_cents": costs.additional_cost_cents,
                    "needs_review": costs.needs_review,
                },
            )
            self.db.commit()
        except ActiveRequestExists:
            # The order stays blocked on behalf of the request that won
            raise
        except SQLAlchemyError:
            self.db.rollback()
            await self._release_block_if_idle(order_ref)
            raise

        opened_counter.labels(kind=kind.value).inc()
        record_transition(None, S.PENDING.value)
        log_transition(str(record_id), order_ref, None, S.PENDING.value, actor)
        return self.get(record_id)

    async def send_invoice(self, request_id: Any, actor: str = "operator") -> ChangeRequestRecord:
        """
        Create a checkout session for the additional cost and email the link.

        Retrying after success is a no-op. On any failure the request stays
        pending; a session created before a failed email is cancelled.
        """
        record = self.get(request_id)
        if record.status == S.INVOICE_SENT.value:
            return record
        self._require_source(record, {S.PENDING}, S.INVOICE_SENT)
        if record.additional_cost_cents <= 0:
            raise ManualReviewRequired(record.additional_cost_cents)

        record_id = record.id
        customer = Customer(record.customer_name, record.customer_email)
        session = await self.checkout.create_session(
            amount_cents=record.additional_cost_cents,
            order_ref=record.order_ref,
            description=f"Shipping change for order {record.order_ref}",
            customer_email=record.customer_email,
        )

        sent_at = self.clock()
        expires_at = add_hours(sent_at, self.config.invoice_ttl_hours)
        context = self._email_context(record, expires_at)
        try:
            await self.notifications.send_invoice_email(customer, session.payment_url, context)
        except NotificationGatewayError:
            await self._cancel_session_quietly(session.session_ref, record_id)
            raise

        changes = {
            "checkout_session_id": session.session_id,
            "checkout_session_ref": session.session_ref,
            "payment_url": session.payment_url,
            "invoice_sent_at": sent_at,
            "expires_at": expires_at,
        }
        try:
            current, swapped = self._swap(
                record_id,
                S.INVOICE_SENT,
                {S.PENDING},
                lambda r: changes,
                actor,
                accept={S.INVOICE_SENT},
                detail={"session_ref": session.session_ref, "amount_cents": context["additional_cost_cents"]},
            )
        except InvalidStateTransition:
            await self._cancel_session_quietly(session.session_ref, record_id)
            raise

        if not swapped:
            # Another caller invoiced first; keep theirs
            await self._cancel_session_quietly(session.session_ref, record_id)
        return current

    async def resend(self, request_id: Any, actor: str = "operator") -> ChangeRequestRecord:
        """Re-send the existing payment link as a reminder; no new session"""
        record = self.get(request_id)
        self._require_source(record, {S.INVOICE_SENT}, S.INVOICE_SENT)

        await self.notifications.send_reminder_email(
            Customer(record.customer_name, record.customer_email),
            record.payment_url,
            self._email_context(record, record.expires_at),
        )

        now = self.clock()
        current, _ = self._swap(
            record.id,
            S.INVOICE_SENT,
            {S.INVOICE_SENT},
            lambda r: {"reminder_count": r.reminder_count + 1, "last_reminder_at": now},
            actor,
            detail={"reminder": True},
        )
        return current

    async def check_payment_status(self, request_id: Any, actor: str = "poller") -> ChangeRequestRecord:
        """
        Probe the checkout gateway and record settlement.

        Unsettled sessions change nothing. Already paid or applied requests
        return unchanged without calling the gateway.
        """
        record = self.get(request_id)
        if record.status in (S.PAID.value, S.APPLIED.value):
            return record
        self._require_source(record, {S.INVOICE_SENT}, S.PAID)
        if not record.checkout_session_ref:
            raise InvalidStateTransition(record.status, S.PAID.value, "Request has no checkout session")

        try:
            status = await self.checkout.get_session_status(record.checkout_session_ref)
        except CheckoutGatewayError:
            payment_poll_counter.labels(outcome="error").inc()
            raise

        if not status.settled:
            payment_poll_counter.labels(outcome="unsettled").inc()
            return record

        payment_poll_counter.labels(outcome="settled").inc()
        paid_at = self.clock()
        try:
            current, _ = self._swap(
                record.id,
                S.PAID,
                {S.INVOICE_SENT},
                lambda r: {
                    "paid_at": paid_at,
                    "settled_order_ref": status.settled_order_ref,
                    "payment_method": "checkout",
                },
                actor,
                accept={S.PAID, S.APPLIED},
                detail={"settled_order_ref": status.settled_order_ref},
            )
        except ExpiredRequest:
            logger.error(
                "Checkout settled after the request expired",
                extra={"change_request_id": str(record.id), "order_ref": record.order_ref},
            )
            raise
        return current

    async def mark_paid(
        self,
        request_id: Any,
        method: str = "manual",
        reference: Optional[str] = None,
        actor: str = "operator",
    ) -> ChangeRequestRecord:
        """Record an out-of-band payment; repeating it is a no-op"""
        record = self.get(request_id)
        if record.status in (S.PAID.value, S.APPLIED.value):
            return record
        self._require_source(record, {S.INVOICE_SENT}, S.PAID)

        paid_at = self.clock()
        note = f"Marked paid manually via {method}" + (f" (ref {reference})" if reference else "")
        current, swapped = self._swap(
            record.id,
            S.PAID,
            {S.INVOICE_SENT},
            lambda r: {
                "paid_at": paid_at,
                "payment_method": method,
                "notes": append_note(r.notes, note, paid_at),
            },
            actor,
            accept={S.PAID, S.APPLIED},
            detail={"method": method, "reference": reference},
        )

        if swapped and current.checkout_session_ref:
            # The customer must not be able to pay the link as well
            await self._cancel_session_quietly(current.checkout_session_ref, current.id)
        return current

    async def cancel(self, request_id: Any, reason: Optional[str] = None, actor: str = "operator") -> ChangeRequestRecord:
        """Cancel a pending or invoiced request and lift the shipping block"""
        record = self.get(request_id)
        if record.status == S.CANCELLED.value:
            return record
        self._require_source(record, {S.PENDING, S.INVOICE_SENT}, S.CANCELLED)

        cancelled_at = self.clock()
        note = f"Cancelled: {reason}" if reason else "Cancelled"
        current, swapped = self._swap(
            record.id,
            S.CANCELLED,
            {S.PENDING, S.INVOICE_SENT},
            lambda r: {
                "cancelled_at": cancelled_at,
                "notes": append_note(r.notes, note, cancelled_at),
            },
            actor,
            accept={S.CANCELLED},
            detail={"reason": reason},
        )

        if swapped:
            if current.checkout_session_ref:
                await self._cancel_session_quietly(current.checkout_session_ref, current.id)
            await self._release_block_if_idle(current.order_ref)
        return current

    async def apply(self, request_id: Any, actor: str = "operator") -> ChangeRequestRecord:
        """
        Write the proposed snapshots to the order and release it for shipping.

        Applying an applied request returns it unchanged. Order store
        failures leave the request paid; the writes are idempotent so a
        retry is safe.
        """
        record = self.get(request_id)
        if record.status == S.APPLIED.value:
            return record
        self._require_source(record, {S.PAID}, S.APPLIED)

        if record.proposed_address is not None:
            await self.orders.set_address(record.order_ref, AddressSnapshot.from_dict(record.proposed_address))
        if record.proposed_package is not None:
            await self.orders.set_package(record.order_ref, PackageSnapshot.from_dict(record.proposed_package))
        await self.orders.set_shipping_blocked(record.order_ref, False)

        applied_at = self.clock()
        current, _ = self._swap(
            record.id,
            S.APPLIED,
            {S.PAID},
            lambda r: {"applied_at": applied_at},
            actor,
            accept={S.APPLIED},
        )
        return current

    async def expire(self, request_id: Any, now: Optional[datetime] = None, actor: str = "sweeper") -> bool:
        """
        Expire an invoiced request whose link has lapsed.

        Check and transition are one conditional UPDATE, so a request paid
        just before the sweep stays paid. Returns True if this call expired it.
        """
        record_id = parse_request_id(request_id)
        now = now or self.clock()
        record = self.repo.get(record_id)
        if record is None or record.status != S.INVOICE_SENT.value:
            return False

        order_ref = record.order_ref
        session_ref = record.checkout_session_ref
        changes = {
            "status": S.EXPIRED.value,
            "active_order_ref": None,
            "expired_at": now,
            "notes": append_note(record.notes, "Invoice expired unpaid", now),
        }
        if not self.repo.expire_if_due(record_id, now, changes):
            self.db.rollback()
            return False
        self._finish(record_id, order_ref, S.INVOICE_SENT.value, S.EXPIRED, actor, now, None)
        expired_counter.inc()

        if session_ref:
            await self._cancel_session_quietly(session_ref, record_id)
        await self._release_block_if_idle(order_ref)
        return True

    # ------------------------------------------------------------------
    # Internals

    def _require_source(self, record: ChangeRequestRecord, sources: Iterable[ChangeStatus], target: ChangeStatus) -> None:
        if record.status not in {s.value for s in sources}:
            raise _reject(record.status, target)
        validate_transition(record.status, target)

    def _swap(
        self,
        record_id: uuid.UUID,
        target: ChangeStatus,
        sources: Iterable[ChangeStatus],
        build_changes: Callable[[ChangeRequestRecord], Dict[str, Any]],
        actor: str,
        accept: Iterable[ChangeStatus] = (),
        detail: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChangeRequestRecord, bool]:
        """
        Compare-and-swap loop.

        Returns (record, True) when this call performed the transition, or
        (record, False) when the row already sits in an `accept` status.
        """
        accepted = {s.value for s in accept}
        for _ in range(MAX_SWAP_ATTEMPTS):
            record = self.get(record_id)
            if record.status in accepted:
                return record, False
            self._require_source(record, sources, target)

            from_status = record.status
            order_ref = record.order_ref
            values = dict(build_changes(record), status=target.value)
            if target in TERMINAL_STATUSES:
                values["active_order_ref"] = None

            if self.repo.compare_and_swap(record_id, from_status, record.version, values):
                self._finish(record_id, order_ref, from_status, target, actor, self.clock(), detail)
                return self.get(record_id), True
            self.db.rollback()

        raise InvalidStateTransition(
            from_status, target.value, "Change request is being modified concurrently; retry"
        )

    def _finish(
        self,
        record_id: uuid.UUID,
        order_ref: str,
        from_status: str,
        target: ChangeStatus,
        actor: str,
        at: datetime,
        detail: Optional[Dict[str, Any]],
    ) -> None:
        self.repo.append_event(record_id, from_status, target.value, actor, at, detail)
        self.db.commit()
        record_transition(from_status, target.value)
        log_transition(str(record_id), order_ref, from_status, target.value, actor)

    async def _cancel_session_quietly(self, session_ref: str, record_id: uuid.UUID) -> None:
        try:
            await self.checkout.cancel_session(session_ref)
        except CheckoutGatewayError as e:
            logger.warning(
                f"Could not cancel checkout session: {e}",
                extra={"change_request_id": str(record_id), "session_ref": session_ref},
            )

    async def _release_block_if_idle(self, order_ref: str) -> None:
        if self.repo.has_active_for_order(order_ref):
            return
        try:
            await self.orders.set_shipping_blocked(order_ref, False)
        except OrderStoreError as e:
            logger.error(
                f"Could not lift shipping block: {e}",
                extra={"order_ref": order_ref},
            )

    def _email_context(self, record: ChangeRequestRecord, expires_at: Optional[datetime]) -> Dict[str, Any]:
        return {
            "order_ref": record.order_ref,
            "kind": record.kind,
            "additional_cost_cents": record.additional_cost_cents,
            "additional_cost_formatted": format_cents(record.additional_cost_cents),
            "expires_at": expires_at.isoformat() if expires_at else None,
        }
