"""Pool state machine - round lifecycle, payout release and rotation"""

import logging
from datetime import timedelta
from typing import Any, Iterable, List, Mapping, Optional

from tanda_ledger.domain.events import DomainEvent, EventRecorder, EventSink, EventType
from tanda_ledger.domain.exceptions import InvalidPaymentDataError, InvalidPoolConfigError, InvalidStateError
from tanda_ledger.domain.ledger import DEFAULT_REMINDER_COOLDOWN, RoundLedger
from tanda_ledger.domain.models import (
    ALWAYS_ACCEPTED_METHODS,
    EarlyPayoutVerification,
    Member,
    PaymentMethod,
    PayoutDecision,
    PayoutRecord,
    PayoutStatus,
    Pool,
    PoolConfig,
    PoolStatus,
    RoundPayment,
)
from tanda_ledger.domain.payout_policy import evaluate_early_payout, evaluate_in_turn_payout
from tanda_ledger.domain.roster import MemberRoster
from tanda_ledger.domain.settlement import SettlementLog
from tanda_ledger.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

CENTS_PER_UNIT = 100


def validate_config(config: PoolConfig, min_total_rounds: int = 2, max_total_rounds: int = 20) -> None:
    """Contribution must be a positive whole currency amount; rounds within limits"""
    if config.contribution_amount_cents <= 0 or config.contribution_amount_cents % CENTS_PER_UNIT:
        raise InvalidPoolConfigError(
            f"Contribution must be a positive whole amount, got {config.contribution_amount_cents} cents"
        )
    if not min_total_rounds <= config.total_rounds <= max_total_rounds:
        raise InvalidPoolConfigError(
            f"Total rounds must be between {min_total_rounds} and {max_total_rounds}, got {config.total_rounds}"
        )
    if not config.allowed_payment_methods:
        raise InvalidPoolConfigError("At least one payment method must be allowed")


class PoolStateMachine:
    """
    Orchestrates one pool: pending -> active -> (paused <-> active) -> completed.

    Every mutation commits against the in-memory ledger and roster only;
    persistence belongs to the caller. The settlement log's (pool, round)
    uniqueness is the single concurrency gate for payout release.
    """

    def __init__(
        self,
        pool: Pool,
        roster: MemberRoster,
        settlement: SettlementLog,
        ledger: Optional[RoundLedger] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
        reminder_cooldown: timedelta = DEFAULT_REMINDER_COOLDOWN,
    ):
        self.pool = pool
        self.roster = roster
        self.settlement = settlement
        self.clock = clock or SystemClock()
        self.ledger = ledger or RoundLedger(pool.pool_id, clock=self.clock)
        self.events = events or EventRecorder()
        self.reminder_cooldown = reminder_cooldown

    # Helpers

    def _emit(self, event_type: EventType, round_number: Optional[int] = None, **payload: Any) -> None:
        self.events.emit(
            DomainEvent(
                type=event_type,
                pool_id=self.pool.pool_id,
                round=round_number,
                occurred_at=self.clock.now(),
                payload=payload,
            )
        )

    def _require_mutable(self) -> None:
        if self.pool.status == PoolStatus.COMPLETED:
            raise InvalidStateError(f"Pool {self.pool.pool_id} is completed")

    def _require_active(self) -> None:
        self._require_mutable()
        if self.pool.status != PoolStatus.ACTIVE:
            raise InvalidStateError(f"Pool {self.pool.pool_id} is {self.pool.status.value}, not active")

    def _require_roster_change(self) -> None:
        """With a round open, roster changes write to the ledger and need an active pool"""
        if self.ledger.is_open:
            self._require_active()
        else:
            self._require_mutable()

    # Pool lifecycle

    def start(self) -> List[RoundPayment]:
        """pending -> active; opens round 1"""
        self._require_mutable()
        if self.pool.status != PoolStatus.PENDING:
            raise InvalidStateError(f"Pool {self.pool.pool_id} has already started")
        if not self.roster.active_members():
            raise InvalidStateError(f"Pool {self.pool.pool_id} has no active members")

        if self.pool.config.start_date is None:
            self.pool.config.start_date = self.clock.today()
        self.pool.status = PoolStatus.ACTIVE
        self.pool.current_round = 1
        payments = self.ledger.open_round(self.pool, self.roster)

        self._emit(EventType.POOL_STARTED, 1)
        self._emit(EventType.ROUND_OPENED, 1, due_date=payments[0].due_date.isoformat())
        logger.info("Pool started", extra={"pool_id": self.pool.pool_id, "members": len(payments)})
        return payments

    def pause(self) -> None:
        self._require_active()
        self.pool.status = PoolStatus.PAUSED
        self._emit(EventType.POOL_PAUSED, self.pool.current_round)

    def resume(self) -> None:
        self._require_mutable()
        if self.pool.status != PoolStatus.PAUSED:
            raise InvalidStateError(f"Pool {self.pool.pool_id} is {self.pool.status.value}, not paused")
        self.pool.status = PoolStatus.ACTIVE
        self._emit(EventType.POOL_RESUMED, self.pool.current_round)

    # Ledger events

    def confirm_payment(
        self, member_id: str, method: PaymentMethod, round_number: Optional[int] = None
    ) -> RoundPayment:
        self._require_active()
        if method not in self.pool.config.allowed_payment_methods and method not in ALWAYS_ACCEPTED_METHODS:
            raise InvalidPaymentDataError(f"Payment method {method.value} is not accepted by this pool")
        return self.ledger.record_member_confirmation(member_id, method, round_number=round_number)

    def verify_payment(
        self,
        member_id: str,
        verified_by: str,
        notes: Optional[str] = None,
        round_number: Optional[int] = None,
    ) -> RoundPayment:
        self._require_active()
        payment = self.ledger.record_admin_verification(member_id, verified_by, notes, round_number=round_number)
        self.roster.credit_contribution(member_id, payment.amount_cents, payment.paid_on_time)
        return payment

    def mark_late(self, member_id: str, notes: Optional[str] = None, round_number: Optional[int] = None) -> RoundPayment:
        self._require_active()
        return self.ledger.mark_late(member_id, notes, round_number=round_number)

    def mark_overdue(self) -> List[RoundPayment]:
        """Entry point for the external scheduler"""
        self._require_active()
        return self.ledger.mark_overdue(self.clock.today())

    def mark_missed(self, member_id: str, round_number: Optional[int] = None) -> RoundPayment:
        self._require_active()
        payment = self.ledger.mark_missed(member_id, round_number=round_number)
        self.roster.record_missed(member_id)
        self._emit(EventType.PAYMENT_MISSED, payment.round, member_id=member_id)
        return payment

    def excuse_payment(self, member_id: str, reason: str, round_number: Optional[int] = None) -> RoundPayment:
        self._require_active()
        return self.ledger.mark_excused(member_id, reason, round_number=round_number)

    def send_reminder(self, member_id: str, round_number: Optional[int] = None) -> RoundPayment:
        self._require_active()
        payment = self.ledger.record_reminder(member_id, self.reminder_cooldown, round_number=round_number)
        self._emit(
            EventType.REMINDER_REQUESTED,
            payment.round,
            member_id=member_id,
            reminder_count=payment.reminder_count,
            due_date=payment.due_date.isoformat(),
        )
        return payment

    # Membership changes

    def add_member(self, member: Member) -> Optional[RoundPayment]:
        """Join the roster; an open round gets a back-filled pending payment due today"""
        self._require_roster_change()
        if member.position > self.pool.config.total_rounds:
            raise InvalidPoolConfigError(
                f"Position {member.position} exceeds the pool's {self.pool.config.total_rounds} rounds"
            )
        self.roster.add(member)
        if self.ledger.is_open and member.is_active:
            return self.ledger.backfill(member, self.pool.config.contribution_amount_cents)
        return None

    def remove_member(self, member_id: str) -> Optional[RoundPayment]:
        """Deactivate a member; their outstanding payment in the open round is excused"""
        self._require_roster_change()
        self.roster.deactivate(member_id)
        return self.ledger.excuse_departed(member_id)

    # Payouts

    @property
    def payout_status(self) -> PayoutStatus:
        if self.pool.status == PoolStatus.COMPLETED:
            return PayoutStatus.PAID
        if self.settlement.has_payout(self.pool.pool_id, self.pool.current_round):
            return PayoutStatus.PAID
        if self.ledger.is_fully_collected():
            return PayoutStatus.READY_TO_PAY
        return PayoutStatus.PENDING_COLLECTION

    def evaluate_payout(self) -> PayoutDecision:
        self._require_mutable()
        return evaluate_in_turn_payout(self.pool, self.ledger, self.roster, self.settlement)

    def evaluate_early_payout(
        self,
        requested_by: str,
        recipient_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> EarlyPayoutVerification:
        self._require_mutable()
        return evaluate_early_payout(
            self.pool,
            self.ledger,
            self.roster,
            requested_by,
            recipient_id=recipient_id,
            reason=reason,
            settlement=self.settlement,
        )

    def release_payout(self, decision: PayoutDecision, initiated_by: Optional[str] = None) -> PayoutRecord:
        """
        Append the round's PayoutRecord and credit the recipient.

        The log append happens first: a duplicate raises ConflictError before
        any roster change, so a losing concurrent release leaves no trace.
        Does not advance the round.
        """
        self._require_active()
        if not decision.allowed:
            raise InvalidStateError(
                f"Payout for round {decision.round} is not allowed: {[b.value for b in decision.blockers]}"
            )
        if decision.round != self.pool.current_round:
            raise InvalidStateError(
                f"Decision is for round {decision.round}, pool {self.pool.pool_id} is on round {self.pool.current_round}"
            )
        if not self.ledger.is_fully_collected():
            raise InvalidStateError(f"Round {decision.round} is no longer fully collected")
        recipient = self.roster.get(decision.recipient_member_id)
        if recipient.position != decision.round:
            raise InvalidStateError(
                f"Member {recipient.member_id} holds position {recipient.position}, not round {decision.round}"
            )

        now = self.clock.now()
        early = isinstance(decision, EarlyPayoutVerification)
        record = PayoutRecord(
            pool_id=self.pool.pool_id,
            round=decision.round,
            recipient_member_id=decision.recipient_member_id,
            amount_cents=decision.amount_cents,
            scheduled_date=decision.scheduled_date,
            actual_payout_date=now,
            was_early_payout=early,
            early_payout_reason=decision.reason if early else None,
            initiated_by=initiated_by or (decision.requested_by if early else None),
        )
        self.settlement.append(record)
        self.roster.record_payout(record.recipient_member_id, record.amount_cents, now)

        self._emit(
            EventType.PAYOUT_RELEASED,
            record.round,
            recipient_member_id=record.recipient_member_id,
            amount_cents=record.amount_cents,
            was_early_payout=record.was_early_payout,
        )
        logger.info(
            "Payout released",
            extra={
                "pool_id": record.pool_id,
                "round": record.round,
                "recipient_member_id": record.recipient_member_id,
                "amount_cents": record.amount_cents,
                "was_early_payout": record.was_early_payout,
            },
        )
        return record

    def advance_round(self) -> Optional[List[RoundPayment]]:
        """
        Close the current round and open the next, or complete the pool after the last round.

        Requires full collection and a released payout for the current round.
        Returns the new round's payments, or None when the pool completed.
        """
        self._require_active()
        round_number = self.pool.current_round
        if not self.ledger.is_fully_collected():
            raise InvalidStateError(f"Round {round_number} is not fully collected")
        if not self.settlement.has_payout(self.pool.pool_id, round_number):
            raise InvalidStateError(f"Round {round_number} has no released payout")

        self.ledger.close()
        self._emit(EventType.ROUND_CLOSED, round_number)
        self.pool.current_round = round_number + 1

        if self.pool.current_round > self.pool.config.total_rounds:
            self.pool.status = PoolStatus.COMPLETED
            self._emit(EventType.POOL_COMPLETED, round_number)
            logger.info("Pool completed", extra={"pool_id": self.pool.pool_id, "rounds": round_number})
            return None

        payments = self.ledger.open_round(self.pool, self.roster)
        self._emit(
            EventType.ROUND_OPENED,
            self.pool.current_round,
            due_date=payments[0].due_date.isoformat() if payments else None,
        )
        logger.info("Round advanced", extra={"pool_id": self.pool.pool_id, "round": self.pool.current_round})
        return payments


def create_pool(
    pool_id: str,
    config: PoolConfig,
    roster_snapshot: Iterable[Mapping[str, Any]],
    settlement: SettlementLog,
    clock: Optional[Clock] = None,
    events: Optional[EventSink] = None,
    min_total_rounds: int = 2,
    max_total_rounds: int = 20,
    reminder_cooldown: timedelta = DEFAULT_REMINDER_COOLDOWN,
) -> PoolStateMachine:
    """Validate config and roster, returning a pending pool ready to start()"""
    validate_config(config, min_total_rounds, max_total_rounds)
    roster = MemberRoster.from_snapshot(roster_snapshot)
    for member in roster:
        if member.position > config.total_rounds:
            raise InvalidPoolConfigError(
                f"Member {member.member_id} position {member.position} exceeds {config.total_rounds} rounds"
            )
    return PoolStateMachine(
        Pool(pool_id=pool_id, config=config),
        roster,
        settlement,
        clock=clock,
        events=events,
        reminder_cooldown=reminder_cooldown,
    )

