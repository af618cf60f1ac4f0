"""Round ledger - collection status of the currently open round"""

import dataclasses
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from tanda_ledger.domain.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ReminderCooldownError,
)
from tanda_ledger.domain.models import Member, PaymentMethod, PaymentStatus, Pool, RoundPayment
from tanda_ledger.domain.roster import MemberRoster
from tanda_ledger.domain.schedule import due_date_for_round
from tanda_ledger.utils.clock import Clock, SystemClock

# Forward-only: admin_verified, missed and excused have no exits
ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.LATE,
        PaymentStatus.MEMBER_CONFIRMED,
        PaymentStatus.ADMIN_VERIFIED,
        PaymentStatus.MISSED,
        PaymentStatus.EXCUSED,
    },
    PaymentStatus.LATE: {
        PaymentStatus.MEMBER_CONFIRMED,
        PaymentStatus.ADMIN_VERIFIED,
        PaymentStatus.MISSED,
        PaymentStatus.EXCUSED,
    },
    PaymentStatus.MEMBER_CONFIRMED: {
        PaymentStatus.ADMIN_VERIFIED,
        PaymentStatus.MISSED,
        PaymentStatus.EXCUSED,
    },
    PaymentStatus.ADMIN_VERIFIED: set(),
    PaymentStatus.MISSED: set(),
    PaymentStatus.EXCUSED: set(),
}

COLLECTED_STATUSES = frozenset({PaymentStatus.ADMIN_VERIFIED, PaymentStatus.EXCUSED})

DEFAULT_REMINDER_COOLDOWN = timedelta(hours=24)


def assert_transition(payment: RoundPayment, target: PaymentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[payment.status]:
        raise InvalidTransitionError(payment.member_id, payment.status.value, target.value)


class RoundLedger:
    """
    Per-pool ledger holding the open round's payments and the frozen history
    of closed rounds.

    At most one round is open at a time. Closing a round copies its payments
    into an immutable tuple; afterwards every mutation naming that round is
    rejected with InvalidStateError.
    """

    def __init__(
        self,
        pool_id: str,
        clock: Optional[Clock] = None,
        open_round_number: Optional[int] = None,
        payments: Iterable[RoundPayment] = (),
        closed_rounds: Optional[Dict[int, Tuple[RoundPayment, ...]]] = None,
    ):
        self.pool_id = pool_id
        self.clock = clock or SystemClock()
        self._round: Optional[int] = open_round_number
        self._payments: Dict[str, RoundPayment] = {p.member_id: p for p in payments}
        self._closed: Dict[int, Tuple[RoundPayment, ...]] = dict(closed_rounds or {})

    # Queries

    @property
    def is_open(self) -> bool:
        return self._round is not None

    @property
    def round_number(self) -> Optional[int]:
        return self._round

    def payments(self) -> List[RoundPayment]:
        return list(self._payments.values())

    def payment_for(self, member_id: str) -> RoundPayment:
        try:
            return self._payments[member_id]
        except KeyError:
            raise NotFoundError(f"No payment for member {member_id} in round {self._round}") from None

    def closed_round(self, round_number: int) -> Tuple[RoundPayment, ...]:
        try:
            return self._closed[round_number]
        except KeyError:
            raise NotFoundError(f"Round {round_number} is not closed") from None

    def closed_round_numbers(self) -> List[int]:
        return sorted(self._closed)

    def is_fully_collected(self) -> bool:
        """True iff the open round has payments and all are admin_verified or excused"""
        if not self.is_open or not self._payments:
            return False
        return all(p.status in COLLECTED_STATUSES for p in self._payments.values())

    def outstanding_members(self) -> List[str]:
        """Every member whose payment still blocks collection, in roster order"""
        return [p.member_id for p in self._payments.values() if p.status not in COLLECTED_STATUSES]

    def verified_amount_cents(self) -> int:
        return sum(p.amount_cents for p in self._payments.values() if p.status == PaymentStatus.ADMIN_VERIFIED)

    # Lifecycle

    def open_round(self, pool: Pool, roster: MemberRoster) -> List[RoundPayment]:
        """Create one pending payment per active member for the pool's current round"""
        if self.is_open:
            raise InvalidStateError(f"Round {self._round} is already open for pool {self.pool_id}")
        if pool.current_round in self._closed:
            raise InvalidStateError(f"Round {pool.current_round} was already closed for pool {self.pool_id}")

        start_date = pool.config.start_date or self.clock.today()
        due_date = due_date_for_round(start_date, pool.config.frequency, pool.current_round)

        self._round = pool.current_round
        self._payments = {
            member.member_id: RoundPayment(
                member_id=member.member_id,
                round=pool.current_round,
                amount_cents=pool.config.contribution_amount_cents,
                due_date=due_date,
            )
            for member in roster.active_members()
        }
        return self.payments()

    def close(self) -> Tuple[RoundPayment, ...]:
        """Freeze the open round into history"""
        if not self.is_open:
            raise InvalidStateError(f"No open round to close for pool {self.pool_id}")
        frozen = tuple(dataclasses.replace(p) for p in self._payments.values())
        self._closed[self._round] = frozen
        self._round = None
        self._payments = {}
        return frozen

    # Mutations

    def _require_open(self, round_number: Optional[int]) -> None:
        if not self.is_open:
            raise InvalidStateError(f"No round is open for pool {self.pool_id}")
        if round_number is not None and round_number != self._round:
            raise InvalidStateError(
                f"Round {round_number} is not the open round ({self._round}) for pool {self.pool_id}"
            )

    def _move(self, member_id: str, target: PaymentStatus, round_number: Optional[int]) -> RoundPayment:
        self._require_open(round_number)
        payment = self.payment_for(member_id)
        assert_transition(payment, target)
        payment.status = target
        return payment

    def record_member_confirmation(
        self,
        member_id: str,
        method: PaymentMethod,
        round_number: Optional[int] = None,
    ) -> RoundPayment:
        """Member self-reports a payment: pending/late -> member_confirmed"""
        payment = self._move(member_id, PaymentStatus.MEMBER_CONFIRMED, round_number)
        payment.member_confirmed_at = self.clock.now()
        payment.member_confirmed_via = method
        return payment

    def record_admin_verification(
        self,
        member_id: str,
        verified_by: str,
        notes: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> RoundPayment:
        """Admin confirms the money arrived; the only path that counts toward collection"""
        payment = self._move(member_id, PaymentStatus.ADMIN_VERIFIED, round_number)
        payment.admin_verified_at = self.clock.now()
        payment.admin_verified_by = verified_by
        if notes:
            payment.admin_notes = notes
        return payment

    def mark_late(self, member_id: str, notes: Optional[str] = None, round_number: Optional[int] = None) -> RoundPayment:
        self._require_open(round_number)
        payment = self.payment_for(member_id)
        if payment.status != PaymentStatus.PENDING:
            raise InvalidTransitionError(member_id, payment.status.value, PaymentStatus.LATE.value)
        payment.status = PaymentStatus.LATE
        payment.was_late = True
        if notes:
            payment.admin_notes = notes
        return payment

    def mark_overdue(self, today: Optional[date] = None) -> List[RoundPayment]:
        """Flag every pending payment past its due date as late"""
        self._require_open(None)
        today = today or self.clock.today()
        flagged = []
        for payment in self._payments.values():
            if payment.status == PaymentStatus.PENDING and payment.due_date < today:
                payment.status = PaymentStatus.LATE
                payment.was_late = True
                flagged.append(payment)
        return flagged

    def mark_missed(self, member_id: str, round_number: Optional[int] = None) -> RoundPayment:
        return self._move(member_id, PaymentStatus.MISSED, round_number)

    def mark_excused(self, member_id: str, reason: str, round_number: Optional[int] = None) -> RoundPayment:
        payment = self._move(member_id, PaymentStatus.EXCUSED, round_number)
        payment.admin_notes = reason
        return payment

    def record_reminder(
        self,
        member_id: str,
        cooldown: timedelta = DEFAULT_REMINDER_COOLDOWN,
        round_number: Optional[int] = None,
    ) -> RoundPayment:
        """Count a reminder; at most one per payment per cooldown window"""
        self._require_open(round_number)
        payment = self.payment_for(member_id)
        if payment.status in COLLECTED_STATUSES or payment.status == PaymentStatus.MISSED:
            raise InvalidStateError(f"Payment for member {member_id} is {payment.status.value}, no reminder needed")

        now = self.clock.now()
        if payment.reminder_sent_at is not None:
            elapsed = now - payment.reminder_sent_at
            if elapsed < cooldown:
                raise ReminderCooldownError(member_id, int((cooldown - elapsed).total_seconds()))

        payment.reminder_sent_at = now
        payment.reminder_count += 1
        return payment

    # Mid-round membership changes

    def backfill(self, member: Member, amount_cents: int) -> RoundPayment:
        """A member joining mid-round owes this round's contribution immediately"""
        self._require_open(None)
        if member.member_id in self._payments:
            raise InvalidStateError(f"Member {member.member_id} already has a payment in round {self._round}")
        payment = RoundPayment(
            member_id=member.member_id,
            round=self._round,
            amount_cents=amount_cents,
            due_date=self.clock.today(),
        )
        self._payments[member.member_id] = payment
        return payment

    def excuse_departed(self, member_id: str) -> Optional[RoundPayment]:
        """Excuse a removed member's outstanding payment; settled payments are left as they are"""
        if not self.is_open or member_id not in self._payments:
            return None
        payment = self._payments[member_id]
        if PaymentStatus.EXCUSED not in ALLOWED_TRANSITIONS[payment.status]:
            return None
        payment.status = PaymentStatus.EXCUSED
        payment.admin_notes = "member removed from pool"
        return payment
