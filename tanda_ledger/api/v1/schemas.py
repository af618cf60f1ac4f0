"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from tanda_ledger.domain.models import (
    DEFAULT_PAYMENT_METHODS,
    EarlyPayoutVerification,
    Frequency,
    Member,
    MemberStatus,
    PaymentMethod,
    PaymentStatus,
    PayoutDecision,
    PayoutRecord,
    PoolStatus,
    PayoutStatus,
    RoundPayment,
)


class PayoutDestinationSchema(BaseModel):
    method: PaymentMethod
    handle: str = Field(..., min_length=1)
    display_name: Optional[str] = None


class MemberSnapshot(BaseModel):
    """Roster entry as supplied by the membership service"""

    member_id: str = Field(..., min_length=1)
    position: int = Field(..., ge=1)
    status: MemberStatus = MemberStatus.ACTIVE
    payout_destination: Optional[PayoutDestinationSchema] = None


class CreatePoolRequest(BaseModel):
    """Request body for POST /v1/pools"""

    pool_id: str = Field(..., min_length=1)
    contribution_amount: int = Field(..., gt=0, description="Whole currency units, e.g. 50 for $50")
    frequency: Frequency = Frequency.WEEKLY
    total_rounds: int = Field(..., ge=1)
    allowed_payment_methods: List[PaymentMethod] = Field(default_factory=lambda: list(DEFAULT_PAYMENT_METHODS))
    recipient_contributes_to_pot: bool = False
    start_date: Optional[date] = None
    members: List[MemberSnapshot] = Field(..., min_length=1)


class MemberSchema(BaseModel):
    member_id: str
    position: int
    status: MemberStatus
    has_payout_destination: bool
    total_contributed_cents: int
    total_received_cents: int
    payments_on_time: int
    payments_missed: int
    payout_received: bool
    payout_date: Optional[datetime] = None

    @classmethod
    def from_domain(cls, member: Member) -> "MemberSchema":
        return cls(
            member_id=member.member_id,
            position=member.position,
            status=member.status,
            has_payout_destination=member.payout_destination is not None,
            total_contributed_cents=member.total_contributed_cents,
            total_received_cents=member.total_received_cents,
            payments_on_time=member.payments_on_time,
            payments_missed=member.payments_missed,
            payout_received=member.payout_received,
            payout_date=member.payout_date,
        )


class PoolResponse(BaseModel):
    """Response for pool endpoints"""

    pool_id: str
    status: PoolStatus
    current_round: int
    total_rounds: int
    contribution_amount_cents: int
    frequency: Frequency
    start_date: Optional[date] = None
    payout_status: PayoutStatus
    members: List[MemberSchema]


class RoundPaymentSchema(BaseModel):
    member_id: str
    round: int
    amount_cents: int
    status: PaymentStatus
    due_date: date
    member_confirmed_at: Optional[datetime] = None
    member_confirmed_via: Optional[PaymentMethod] = None
    admin_verified_at: Optional[datetime] = None
    admin_verified_by: Optional[str] = None
    admin_notes: Optional[str] = None
    reminder_count: int = 0

    @classmethod
    def from_domain(cls, payment: RoundPayment) -> "RoundPaymentSchema":
        return cls(
            member_id=payment.member_id,
            round=payment.round,
            amount_cents=payment.amount_cents,
            status=payment.status,
            due_date=payment.due_date,
            member_confirmed_at=payment.member_confirmed_at,
            member_confirmed_via=payment.member_confirmed_via,
            admin_verified_at=payment.admin_verified_at,
            admin_verified_by=payment.admin_verified_by,
            admin_notes=payment.admin_notes,
            reminder_count=payment.reminder_count,
        )


class RoundStatusResponse(BaseModel):
    """Response for GET /v1/pools/{pool_id}/round-payments"""

    pool_id: str
    current_round: Optional[int]
    fully_collected: bool
    payout_status: PayoutStatus
    verified_amount_cents: int
    missing_contributions: List[str]
    payments: List[RoundPaymentSchema]


class PaymentActionRequest(BaseModel):
    """Request body for POST /v1/pools/{pool_id}/round-payments/{member_id}"""

    action: Literal["member_confirm", "admin_verify", "mark_late", "mark_missed", "excuse", "send_reminder"]
    actor_id: str = Field(..., min_length=1, description="Member or admin performing the action")
    method: PaymentMethod = PaymentMethod.OTHER
    notes: Optional[str] = None
    round: Optional[int] = Field(None, ge=1, description="Round the caller believes is open")


class PaymentActionResponse(BaseModel):
    payment: RoundPaymentSchema
    fully_collected: bool
    payout_status: PayoutStatus


class PayoutDecisionSchema(BaseModel):
    """In-turn decision or early payout verification"""

    allowed: bool
    early: bool
    round: int
    recipient_member_id: str
    amount_cents: int
    scheduled_date: Optional[date] = None
    missing_contributions: List[str]
    blockers: List[str]
    requested_by: Optional[str] = None
    payout_destination: Optional[PayoutDestinationSchema] = None

    @classmethod
    def from_domain(cls, decision: PayoutDecision) -> "PayoutDecisionSchema":
        destination = None
        requested_by = None
        if isinstance(decision, EarlyPayoutVerification):
            requested_by = decision.requested_by
            if decision.payout_destination is not None:
                destination = PayoutDestinationSchema(
                    method=decision.payout_destination.method,
                    handle=decision.payout_destination.handle,
                    display_name=decision.payout_destination.display_name,
                )
        return cls(
            allowed=decision.allowed,
            early=decision.is_early,
            round=decision.round,
            recipient_member_id=decision.recipient_member_id,
            amount_cents=decision.amount_cents,
            scheduled_date=decision.scheduled_date,
            missing_contributions=decision.missing_contributions,
            blockers=[b.value for b in decision.blockers],
            requested_by=requested_by,
            payout_destination=destination,
        )


class ReleasePayoutRequest(BaseModel):
    """Request body for POST /v1/pools/{pool_id}/payout"""

    initiated_by: str = Field(..., min_length=1)
    early: bool = False
    recipient_id: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)


class PayoutRecordSchema(BaseModel):
    pool_id: str
    round: int
    recipient_member_id: str
    amount_cents: int
    scheduled_date: Optional[date] = None
    actual_payout_date: datetime
    was_early_payout: bool
    early_payout_reason: Optional[str] = None
    initiated_by: Optional[str] = None

    @classmethod
    def from_domain(cls, record: PayoutRecord) -> "PayoutRecordSchema":
        return cls(
            pool_id=record.pool_id,
            round=record.round,
            recipient_member_id=record.recipient_member_id,
            amount_cents=record.amount_cents,
            scheduled_date=record.scheduled_date,
            actual_payout_date=record.actual_payout_date,
            was_early_payout=record.was_early_payout,
            early_payout_reason=record.early_payout_reason,
            initiated_by=record.initiated_by,
        )


class PayoutHistoryResponse(BaseModel):
    """Response for GET /v1/pools/{pool_id}/payouts"""

    pool_id: str
    payouts: List[PayoutRecordSchema]


class AdvanceRoundResponse(BaseModel):
    pool_id: str
    status: PoolStatus
    current_round: int
    closed_round: int
