"""Data access layer for change requests"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from change_gateway.infrastructure.database.models import ChangeRequestRecord, ChangeRequestEvent
from change_gateway.domain.exceptions import ActiveRequestExists
from change_gateway.domain.models import ChangeStatus


def escape_like(text: str) -> str:
    """Make LIKE wildcards in user input match literally"""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ChangeRequestRepository:
    """Repository for change requests and their audit events"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> ChangeRequestRecord:
        """
        Insert a new active change request.

        The unique constraint on active_order_ref decides concurrent opens;
        the loser gets ActiveRequestExists with its transaction rolled back.
        """
        order_ref = fields["order_ref"]
        record = ChangeRequestRecord(active_order_ref=order_ref, **fields)
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            if self.has_active_for_order(order_ref):
                raise ActiveRequestExists(order_ref)
            raise
        return record

    def get(self, record_id: uuid.UUID) -> Optional[ChangeRequestRecord]:
        """Fetch the persisted row, discarding any stale identity-map copy"""
        return self.db.get(ChangeRequestRecord, record_id, populate_existing=True)

    def get_by_session_ref(self, session_ref: str) -> Optional[ChangeRequestRecord]:
        return (
            self.db.query(ChangeRequestRecord)
            .filter(ChangeRequestRecord.checkout_session_ref == session_ref)
            .order_by(ChangeRequestRecord.created_at.desc())
            .first()
        )

    def has_active_for_order(self, order_ref: str) -> bool:
        return (
            self.db.query(ChangeRequestRecord.id)
            .filter(ChangeRequestRecord.active_order_ref == order_ref)
            .first()
            is not None
        )

    def list_requests(
        self,
        statuses: Optional[Iterable[str]] = None,
        limit: int = 50,
        offset: int = 0,
        search: Optional[str] = None,
    ) -> List[ChangeRequestRecord]:
        """
        Most recent first, optionally restricted to some statuses.

        search is a case-insensitive substring match on the order reference,
        customer name or customer email.
        """
        query = self.db.query(ChangeRequestRecord)
        if statuses is not None:
            query = query.filter(ChangeRequestRecord.status.in_(list(statuses)))
        if search:
            pattern = f"%{escape_like(search)}%"
            query = query.filter(
                or_(
                    ChangeRequestRecord.order_ref.ilike(pattern, escape="\\"),
                    ChangeRequestRecord.customer_name.ilike(pattern, escape="\\"),
                    ChangeRequestRecord.customer_email.ilike(pattern, escape="\\"),
                )
            )
        return (
            query.order_by(ChangeRequestRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def totals_by_status(self) -> Dict[str, Tuple[int, int]]:
        """status -> (count, sum of additional cost cents)"""
        rows = (
            self.db.query(
                ChangeRequestRecord.status,
                func.count(ChangeRequestRecord.id),
                func.coalesce(func.sum(ChangeRequestRecord.additional_cost_cents), 0),
            )
            .group_by(ChangeRequestRecord.status)
            .all()
        )
        return {status: (int(count), int(amount)) for status, count, amount in rows}

    def compare_and_swap(
        self,
        record_id: uuid.UUID,
        expected_status: str,
        expected_version: int,
        changes: Dict[str, Any],
    ) -> bool:
        """
        Apply changes only if the row still has the expected status and version.

        Returns True iff exactly one row was updated. Does not commit.
        """
        stmt = (
            update(ChangeRequestRecord)
            .where(
                ChangeRequestRecord.id == record_id,
                ChangeRequestRecord.status == expected_status,
                ChangeRequestRecord.version == expected_version,
            )
            .values(version=ChangeRequestRecord.version + 1, **changes)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def expire_if_due(self, record_id: uuid.UUID, now: datetime, changes: Dict[str, Any]) -> bool:
        """
        Expire in a single conditional UPDATE.

        A request paid a moment earlier no longer matches status=invoice_sent
        and is left alone.
        """
        stmt = (
            update(ChangeRequestRecord)
            .where(
                ChangeRequestRecord.id == record_id,
                ChangeRequestRecord.status == ChangeStatus.INVOICE_SENT.value,
                ChangeRequestRecord.expires_at <= now,
            )
            .values(version=ChangeRequestRecord.version + 1, **changes)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def awaiting_payment_page(
        self,
        limit: int = 100,
        after: Optional[Tuple[datetime, uuid.UUID]] = None,
    ) -> List[Tuple[datetime, uuid.UUID]]:
        """
        One page of invoiced requests as (invoice_sent_at, id), oldest first.

        Pass the last key of the previous page as `after` to continue; rows
        that settle mid-scan do not shift later pages.
        """
        query = self.db.query(ChangeRequestRecord.invoice_sent_at, ChangeRequestRecord.id).filter(
            ChangeRequestRecord.status == ChangeStatus.INVOICE_SENT.value,
            ChangeRequestRecord.checkout_session_ref.isnot(None),
            ChangeRequestRecord.invoice_sent_at.isnot(None),
        )
        if after is not None:
            sent_at, last_id = after
            query = query.filter(
                or_(
                    ChangeRequestRecord.invoice_sent_at > sent_at,
                    and_(ChangeRequestRecord.invoice_sent_at == sent_at, ChangeRequestRecord.id > last_id),
                )
            )
        rows = query.order_by(ChangeRequestRecord.invoice_sent_at, ChangeRequestRecord.id).limit(limit).all()
        return [(row.invoice_sent_at, row.id) for row in rows]

    def ids_due_for_expiry(self, now: datetime, limit: int = 100) -> List[uuid.UUID]:
        rows = (
            self.db.query(ChangeRequestRecord.id)
            .filter(
                ChangeRequestRecord.status == ChangeStatus.INVOICE_SENT.value,
                ChangeRequestRecord.expires_at <= now,
            )
            .order_by(ChangeRequestRecord.expires_at)
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def append_event(
        self,
        record_id: uuid.UUID,
        from_status: Optional[str],
        to_status: str,
        actor: str,
        created_at: datetime,
        detail: Optional[Dict[str, Any]] = None,
    ) -> ChangeRequestEvent:
        event = ChangeRequestEvent(
            change_request_id=record_id,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            detail=detail,
            created_at=created_at,
        )
        self.db.add(event)
        return event

    def events_for(self, record_id: uuid.UUID) -> List[ChangeRequestEvent]:
        return (
            self.db.query(ChangeRequestEvent)
            .filter(ChangeRequestEvent.change_request_id == record_id)
            .order_by(ChangeRequestEvent.id)
            .all()
        )
