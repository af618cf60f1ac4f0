"""Domain models - pure Python dataclasses representing pool entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class PoolStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    MEMBER_CONFIRMED = "member_confirmed"
    ADMIN_VERIFIED = "admin_verified"
    LATE = "late"
    EXCUSED = "excused"
    MISSED = "missed"


class PaymentMethod(str, Enum):
    VENMO = "venmo"
    CASHAPP = "cashapp"
    PAYPAL = "paypal"
    ZELLE = "zelle"
    CASH = "cash"
    OTHER = "other"


class PayoutStatus(str, Enum):
    PENDING_COLLECTION = "pending_collection"
    READY_TO_PAY = "ready_to_pay"
    PAID = "paid"


class Blocker(str, Enum):
    """Reasons a payout decision came back negative"""

    CONTRIBUTIONS_OUTSTANDING = "contributions_outstanding"
    RECIPIENT_ALREADY_PAID = "recipient_already_paid"
    RECIPIENT_INACTIVE = "recipient_inactive"
    PAYOUT_ALREADY_RELEASED = "payout_already_released"
    NO_PAYOUT_DESTINATION = "no_payout_destination"
    RECIPIENT_NOT_IN_TURN = "recipient_not_in_turn"


# Methods a member can pick when self-reporting, regardless of pool setup
ALWAYS_ACCEPTED_METHODS = (PaymentMethod.CASH, PaymentMethod.OTHER)

DEFAULT_PAYMENT_METHODS = [
    PaymentMethod.VENMO,
    PaymentMethod.CASHAPP,
    PaymentMethod.PAYPAL,
    PaymentMethod.ZELLE,
]


@dataclass
class PayoutDestination:
    """Where a recipient wants to be paid (Venmo handle, Zelle email, ...)"""

    method: PaymentMethod
    handle: str
    display_name: Optional[str] = None


@dataclass
class PoolConfig:
    """Pool configuration consumed from the pool-creation collaborator"""

    contribution_amount_cents: int
    frequency: Frequency
    total_rounds: int
    allowed_payment_methods: List[PaymentMethod] = field(default_factory=lambda: list(DEFAULT_PAYMENT_METHODS))
    recipient_contributes_to_pot: bool = False
    start_date: Optional[date] = None


@dataclass
class Pool:
    """Rotating savings pool"""

    pool_id: str
    config: PoolConfig
    status: PoolStatus = PoolStatus.PENDING
    current_round: int = 1

    @property
    def completed_round_sentinel(self) -> int:
        return self.config.total_rounds + 1


@dataclass
class Member:
    """Pool participant with running totals"""

    member_id: str
    position: int
    status: MemberStatus = MemberStatus.ACTIVE
    payout_destination: Optional[PayoutDestination] = None
    total_contributed_cents: int = 0
    total_received_cents: int = 0
    payments_on_time: int = 0
    payments_missed: int = 0
    payout_received: bool = False
    payout_date: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


@dataclass
class RoundPayment:
    """One member's contribution for one round"""

    member_id: str
    round: int
    amount_cents: int
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING
    member_confirmed_at: Optional[datetime] = None
    member_confirmed_via: Optional[PaymentMethod] = None
    admin_verified_at: Optional[datetime] = None
    admin_verified_by: Optional[str] = None
    admin_notes: Optional[str] = None
    reminder_count: int = 0
    reminder_sent_at: Optional[datetime] = None
    was_late: bool = False

    @property
    def paid_on_time(self) -> bool:
        """Confirmed (or verified, when the admin overrode) on or before the due date, never flagged late"""
        paid_at = self.member_confirmed_at or self.admin_verified_at
        return not self.was_late and paid_at is not None and paid_at.date() <= self.due_date


@dataclass(frozen=True)
class PayoutRecord:
    """Settlement Log entry - written once per (pool, round)"""

    pool_id: str
    round: int
    recipient_member_id: str
    amount_cents: int
    scheduled_date: Optional[date]
    actual_payout_date: datetime
    was_early_payout: bool = False
    early_payout_reason: Optional[str] = None
    initiated_by: Optional[str] = None


@dataclass
class PayoutDecision:
    """Output of in-turn payout evaluation"""

    allowed: bool
    round: int
    recipient_member_id: str
    amount_cents: int
    scheduled_date: Optional[date] = None
    missing_contributions: List[str] = field(default_factory=list)
    blockers: List[Blocker] = field(default_factory=list)

    @property
    def is_early(self) -> bool:
        return False


@dataclass
class EarlyPayoutVerification(PayoutDecision):
    """Output of early payout evaluation"""

    requested_by: Optional[str] = None
    payout_destination: Optional[PayoutDestination] = None
    reason: Optional[str] = None

    @property
    def is_early(self) -> bool:
        return True
