"""SQLAlchemy ORM models for pools, members, round payments and payouts"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class PoolRow(Base):
    """Pool configuration and lifecycle state"""

    __tablename__ = "pool"

    pool_id = Column(Text, primary_key=True)
    status = Column(Text, nullable=False, default="pending")
    current_round = Column(Integer, nullable=False, default=1)
    open_round = Column(Integer, nullable=True)  # NULL between close and open, and once completed
    contribution_amount_cents = Column(BigInteger, nullable=False)
    frequency = Column(Text, nullable=False)
    total_rounds = Column(Integer, nullable=False)
    allowed_payment_methods = Column(JSON, nullable=False)
    recipient_contributes_to_pot = Column(Boolean, nullable=False, default=False)
    start_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    members = relationship("PoolMemberRow", back_populates="pool", cascade="all, delete-orphan")
    payments = relationship("RoundPaymentRow", back_populates="pool", cascade="all, delete-orphan")


class PoolMemberRow(Base):
    """Roster entry with running totals"""

    __tablename__ = "pool_member"
    __table_args__ = (
        UniqueConstraint("pool_id", "member_id", name="uq_pool_member"),
        UniqueConstraint("pool_id", "position", name="uq_pool_member_position"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pool_id = Column(Text, ForeignKey("pool.pool_id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Text, nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="active")
    payout_method = Column(Text, nullable=True)
    payout_handle = Column(Text, nullable=True)
    payout_display_name = Column(Text, nullable=True)
    total_contributed_cents = Column(BigInteger, nullable=False, default=0)
    total_received_cents = Column(BigInteger, nullable=False, default=0)
    payments_on_time = Column(Integer, nullable=False, default=0)
    payments_missed = Column(Integer, nullable=False, default=0)
    payout_received = Column(Boolean, nullable=False, default=False)
    payout_date = Column(DateTime(timezone=True), nullable=True)

    pool = relationship("PoolRow", back_populates="members")


class RoundPaymentRow(Base):
    """One member's contribution for one round; rows of closed rounds are never updated"""

    __tablename__ = "round_payment"
    __table_args__ = (UniqueConstraint("pool_id", "round", "member_id", name="uq_round_payment"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pool_id = Column(Text, ForeignKey("pool.pool_id", ondelete="CASCADE"), nullable=False, index=True)
    round = Column(Integer, nullable=False)
    member_id = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    due_date = Column(Date, nullable=False)
    member_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    member_confirmed_via = Column(Text, nullable=True)
    admin_verified_at = Column(DateTime(timezone=True), nullable=True)
    admin_verified_by = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    was_late = Column(Boolean, nullable=False, default=False)

    pool = relationship("PoolRow", back_populates="payments")


class PayoutRecordRow(Base):
    """Settlement log entry; the unique constraint is the concurrency gate for payout release"""

    __tablename__ = "payout_record"
    __table_args__ = (UniqueConstraint("pool_id", "round", name="uq_payout_record_pool_round"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pool_id = Column(Text, nullable=False, index=True)
    round = Column(Integer, nullable=False)
    recipient_member_id = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    scheduled_date = Column(Date, nullable=True)
    actual_payout_date = Column(DateTime(timezone=True), nullable=False)
    was_early_payout = Column(Boolean, nullable=False, default=False)
    early_payout_reason = Column(Text, nullable=True)
    initiated_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
