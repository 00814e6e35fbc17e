"""/v1/change-requests - open, invoice, collect, and apply order modifications"""

from datetime import datetime
from typing import Callable, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from change_gateway.api.v1.schemas import (
    AddressSchema,
    CancelRequest,
    ChangeRequestList,
    ChangeRequestResponse,
    CheckoutSchema,
    CostsSchema,
    CustomerSchema,
    MarkPaidRequest,
    OpenChangeRequest,
    PackageSchema,
    RemindersSchema,
    StatsResponse,
    TimestampsSchema,
)
from change_gateway.api.dependencies import get_clock, get_controller
from change_gateway.config import settings
from change_gateway.domain.costs import format_cents
from change_gateway.domain.lifecycle import is_active, statuses_for_filter, summarize_totals
from change_gateway.domain.models import ChangeStatus
from change_gateway.infrastructure.database.models import ChangeRequestRecord
from change_gateway.infrastructure.database.repositories import ChangeRequestRepository
from change_gateway.infrastructure.database.session import get_db
from change_gateway.services.controller import ChangeRequestController
from change_gateway.utils.date_utils import whole_days_between

router = APIRouter()

AWAITING_PAYMENT = (ChangeStatus.PENDING.value, ChangeStatus.INVOICE_SENT.value)


def to_response(record: ChangeRequestRecord, now: datetime) -> ChangeRequestResponse:
    """Serialize a stored request, adding age and staleness"""
    days_pending = whole_days_between(record.created_at, now)

    return ChangeRequestResponse(
        id=str(record.id),
        order_ref=record.order_ref,
        kind=record.kind,
        status=record.status,
        active=is_active(record.status),
        customer=CustomerSchema(name=record.customer_name, email=record.customer_email),
        original_address=AddressSchema(**record.original_address) if record.original_address else None,
        proposed_address=AddressSchema(**record.proposed_address) if record.proposed_address else None,
        original_package=PackageSchema(**record.original_package) if record.original_package else None,
        proposed_package=PackageSchema(**record.proposed_package) if record.proposed_package else None,
        costs=CostsSchema(
            customer_paid_cents=record.customer_paid_cents,
            original_rate_cents=record.original_rate_cents,
            new_rate_cents=record.new_rate_cents,
            additional_cost_cents=record.additional_cost_cents,
            additional_cost_formatted=format_cents(record.additional_cost_cents),
            original_margin_cents=record.original_margin_cents,
            needs_review=record.additional_cost_cents < 0,
        ),
        rate_service_code=record.rate_service_code,
        checkout=CheckoutSchema(
            session_id=record.checkout_session_id,
            session_ref=record.checkout_session_ref,
            payment_url=record.payment_url,
            settled_order_ref=record.settled_order_ref,
        ),
        reminders=RemindersSchema(count=record.reminder_count, last_sent_at=record.last_reminder_at),
        timestamps=TimestampsSchema(
            created_at=record.created_at,
            invoice_sent_at=record.invoice_sent_at,
            expires_at=record.expires_at,
            paid_at=record.paid_at,
            applied_at=record.applied_at,
            cancelled_at=record.cancelled_at,
            expired_at=record.expired_at,
        ),
        payment_method=record.payment_method,
        notes=record.notes,
        days_pending=days_pending,
        stale=record.status in AWAITING_PAYMENT and days_pending > settings.stale_pending_days,
    )


@router.post("/change-requests", response_model=ChangeRequestResponse, status_code=201)
async def open_change_request(
    body: OpenChangeRequest,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Open a change request for an order.

    Flow:
    1. Snapshot the order and derive what changes
    2. Quote the carrier unless new_rate_cents is given
    3. Reconcile costs and persist as pending; the order is blocked from shipping
    """
    record = await controller.open(
        order_ref=body.order_ref,
        customer_paid_cents=body.customer_paid_cents,
        proposed_address=body.proposed_address.to_snapshot() if body.proposed_address else None,
        proposed_package=body.proposed_package.to_snapshot() if body.proposed_package else None,
        original_rate_cents=body.original_rate_cents,
        new_rate_cents=body.new_rate_cents,
        notes=body.notes,
    )
    return to_response(record, clock())


@router.get("/change-requests", response_model=ChangeRequestList)
def list_change_requests(
    status: Optional[str] = Query(None, description="Status, 'active', 'actionable', or empty for all"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    q: Optional[str] = Query(None, max_length=200, description="Search order reference, customer name or email"),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    try:
        statuses = statuses_for_filter(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")

    records = ChangeRequestRepository(db).list_requests(statuses, limit=limit, offset=offset, search=q)
    now = clock()
    return ChangeRequestList(requests=[to_response(r, now) for r in records], count=len(records))


@router.get("/change-requests/stats", response_model=StatsResponse)
def change_request_stats(db: Session = Depends(get_db)):
    """Counts and additional-cost totals per status"""
    summary = summarize_totals(ChangeRequestRepository(db).totals_by_status())
    return StatsResponse(
        by_status=summary["by_status"],
        pending_revenue_cents=summary["pending_revenue_cents"],
        pending_revenue_formatted=format_cents(summary["pending_revenue_cents"]),
        collected_cents=summary["collected_cents"],
        collected_formatted=format_cents(summary["collected_cents"]),
    )


@router.get("/change-requests/{request_id}", response_model=ChangeRequestResponse)
def get_change_request(
    request_id: str,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return to_response(controller.get(request_id), clock())


@router.post("/change-requests/{request_id}/send-invoice", response_model=ChangeRequestResponse)
async def send_invoice(
    request_id: str,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Create the checkout session and email the payment link"""
    return to_response(await controller.send_invoice(request_id), clock())


@router.post("/change-requests/{request_id}/resend", response_model=ChangeRequestResponse)
async def resend_invoice(
    request_id: str,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Remind the customer with the same payment link"""
    return to_response(await controller.resend(request_id), clock())


@router.get("/change-requests/{request_id}/payment-status", response_model=ChangeRequestResponse)
async def payment_status(
    request_id: str,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Ask the checkout gateway whether the invoice was paid"""
    return to_response(await controller.check_payment_status(request_id, actor="operator"), clock())


@router.post("/change-requests/{request_id}/mark-paid", response_model=ChangeRequestResponse)
async def mark_paid(
    request_id: str,
    body: Optional[MarkPaidRequest] = None,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Record a payment received outside the checkout gateway"""
    body = body or MarkPaidRequest()
    record = await controller.mark_paid(request_id, method=body.method, reference=body.reference)
    return to_response(record, clock())


@router.post("/change-requests/{request_id}/apply", response_model=ChangeRequestResponse)
async def apply_changes(
    request_id: str,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Write the new address/package to the order and release it for shipping"""
    return to_response(await controller.apply(request_id), clock())


@router.post("/change-requests/{request_id}/cancel", response_model=ChangeRequestResponse)
async def cancel_change_request(
    request_id: str,
    body: Optional[CancelRequest] = None,
    controller: ChangeRequestController = Depends(get_controller),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    reason = body.reason if body else None
    return to_response(await controller.cancel(request_id, reason=reason), clock())
