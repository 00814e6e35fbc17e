"""SQLAlchemy ORM models for change requests"""

import uuid
from sqlalchemy import Column, String, BigInteger, DateTime, Integer, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class ChangeRequestRecord(Base):
    """One modification attempt for an order"""

    __tablename__ = "change_request"
    __table_args__ = (
        # NULL once terminal, so only active rows compete for the order
        UniqueConstraint("active_order_ref", name="uq_change_request_active_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_ref = Column(Text, nullable=False, index=True)
    active_order_ref = Column(Text, nullable=True)
    kind = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)

    customer_name = Column(Text, nullable=False)
    customer_email = Column(Text, nullable=False)

    original_address = Column(JSON, nullable=True)
    proposed_address = Column(JSON, nullable=True)
    original_package = Column(JSON, nullable=True)
    proposed_package = Column(JSON, nullable=True)

    customer_paid_cents = Column(BigInteger, nullable=False)
    original_rate_cents = Column(BigInteger, nullable=True)
    new_rate_cents = Column(BigInteger, nullable=False)
    additional_cost_cents = Column(BigInteger, nullable=False)
    original_margin_cents = Column(BigInteger, nullable=True)
    rate_service_code = Column(Text, nullable=True)

    checkout_session_id = Column(Text, nullable=True)
    checkout_session_ref = Column(Text, nullable=True, index=True)
    payment_url = Column(Text, nullable=True)
    settled_order_ref = Column(Text, nullable=True)
    payment_method = Column(Text, nullable=True)

    reminder_count = Column(Integer, nullable=False, default=0)
    last_reminder_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    invoice_sent_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    paid_at = Column(DateTime, nullable=True)
    applied_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    events = relationship(
        "ChangeRequestEvent",
        back_populates="change_request",
        order_by="ChangeRequestEvent.id",
    )


class ChangeRequestEvent(Base):
    """Audit row written with every committed transition"""

    __tablename__ = "change_request_event"

    id = Column(Integer, primary_key=True, autoincrement=True)
    change_request_id = Column(UUID(as_uuid=True), ForeignKey("change_request.id"), nullable=False, index=True)
    from_status = Column(String(16), nullable=True)
    to_status = Column(String(16), nullable=False)
    actor = Column(Text, nullable=False)
    detail = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    change_request = relationship("ChangeRequestRecord", back_populates="events")
