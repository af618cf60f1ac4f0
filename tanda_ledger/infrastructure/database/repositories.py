"""Data access layer for pools and the settlement log"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tanda_ledger.domain.exceptions import ConflictError, NotFoundError
from tanda_ledger.domain.ledger import DEFAULT_REMINDER_COOLDOWN, RoundLedger
from tanda_ledger.domain.models import (
    Frequency,
    Member,
    MemberStatus,
    PaymentMethod,
    PaymentStatus,
    PayoutDestination,
    PayoutRecord,
    Pool,
    PoolConfig,
    PoolStatus,
    RoundPayment,
)
from tanda_ledger.domain.roster import MemberRoster
from tanda_ledger.domain.settlement import PayoutKey, SettlementLog
from tanda_ledger.domain.state_machine import PoolStateMachine
from tanda_ledger.infrastructure.database.models import (
    PayoutRecordRow,
    PoolMemberRow,
    PoolRow,
    RoundPaymentRow,
)
from tanda_ledger.utils.clock import Clock


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlPayoutRecordRepository:
    """Settlement log storage backed by the payout_record table"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, record: PayoutRecord) -> None:
        """Insert the record; a duplicate (pool_id, round) raises ConflictError"""
        self.db.add(
            PayoutRecordRow(
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
        )
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"Payout already recorded for pool {record.pool_id} round {record.round}"
            ) from e

    def find_by_key(self, key: PayoutKey) -> Optional[PayoutRecord]:
        pool_id, round_number = key
        row = (
            self.db.query(PayoutRecordRow)
            .filter(PayoutRecordRow.pool_id == pool_id, PayoutRecordRow.round == round_number)
            .first()
        )
        return self._to_domain(row) if row else None

    def iter_pool(self, pool_id: str) -> Iterator[PayoutRecord]:
        query = (
            self.db.query(PayoutRecordRow)
            .filter(PayoutRecordRow.pool_id == pool_id)
            .order_by(PayoutRecordRow.round.asc())
        )
        for row in query.yield_per(100):
            yield self._to_domain(row)

    @staticmethod
    def _to_domain(row: PayoutRecordRow) -> PayoutRecord:
        return PayoutRecord(
            pool_id=row.pool_id,
            round=row.round,
            recipient_member_id=row.recipient_member_id,
            amount_cents=row.amount_cents,
            scheduled_date=row.scheduled_date,
            actual_payout_date=_aware(row.actual_payout_date),
            was_early_payout=row.was_early_payout,
            early_payout_reason=row.early_payout_reason,
            initiated_by=row.initiated_by,
        )


class PoolRepository:
    """Loads and saves the whole pool aggregate (pool, roster, ledger) as a PoolStateMachine"""

    def __init__(
        self,
        db: Session,
        settlement: SettlementLog,
        clock: Optional[Clock] = None,
        reminder_cooldown: timedelta = DEFAULT_REMINDER_COOLDOWN,
    ):
        self.db = db
        self.settlement = settlement
        self.clock = clock
        self.reminder_cooldown = reminder_cooldown

    def exists(self, pool_id: str) -> bool:
        return self.db.get(PoolRow, pool_id) is not None

    def find_by_key(self, pool_id: str) -> PoolStateMachine:
        row = self.db.get(PoolRow, pool_id)
        if row is None:
            raise NotFoundError(f"Pool {pool_id} not found")

        pool = Pool(
            pool_id=row.pool_id,
            config=PoolConfig(
                contribution_amount_cents=row.contribution_amount_cents,
                frequency=Frequency(row.frequency),
                total_rounds=row.total_rounds,
                allowed_payment_methods=[PaymentMethod(m) for m in row.allowed_payment_methods],
                recipient_contributes_to_pot=row.recipient_contributes_to_pot,
                start_date=row.start_date,
            ),
            status=PoolStatus(row.status),
            current_round=row.current_round,
        )
        roster = MemberRoster(self._member_to_domain(m) for m in row.members)

        open_payments: List[RoundPayment] = []
        closed: Dict[int, List[RoundPayment]] = {}
        for payment_row in sorted(row.payments, key=lambda p: (p.round, p.member_id)):
            payment = self._payment_to_domain(payment_row)
            if payment.round == row.open_round:
                open_payments.append(payment)
            else:
                closed.setdefault(payment.round, []).append(payment)

        # Keep the open round in roster order so outstanding lists read naturally
        positions = {m.member_id: m.position for m in roster.members()}
        open_payments.sort(key=lambda p: positions.get(p.member_id, 0))

        machine = PoolStateMachine(
            pool, roster, self.settlement, clock=self.clock, reminder_cooldown=self.reminder_cooldown
        )
        machine.ledger = RoundLedger(
            pool_id,
            clock=machine.clock,
            open_round_number=row.open_round,
            payments=open_payments,
            closed_rounds={n: tuple(ps) for n, ps in closed.items()},
        )
        return machine

    def save(self, machine: PoolStateMachine) -> PoolRow:
        """Upsert pool, members and open-round payments; closed rounds are already stored"""
        pool = machine.pool
        row = self.db.get(PoolRow, pool.pool_id)
        if row is None:
            row = PoolRow(pool_id=pool.pool_id)
            self.db.add(row)

        row.status = pool.status.value
        row.current_round = pool.current_round
        row.open_round = machine.ledger.round_number
        row.contribution_amount_cents = pool.config.contribution_amount_cents
        row.frequency = pool.config.frequency.value
        row.total_rounds = pool.config.total_rounds
        row.allowed_payment_methods = [m.value for m in pool.config.allowed_payment_methods]
        row.recipient_contributes_to_pot = pool.config.recipient_contributes_to_pot
        row.start_date = pool.config.start_date

        member_rows = {m.member_id: m for m in row.members}
        for member in machine.roster.members():
            member_row = member_rows.get(member.member_id)
            if member_row is None:
                member_row = PoolMemberRow(member_id=member.member_id)
                row.members.append(member_row)
            self._fill_member_row(member_row, member)

        payment_rows: Dict[Tuple[int, str], RoundPaymentRow] = {(p.round, p.member_id): p for p in row.payments}
        for payment in machine.ledger.payments():
            payment_row = payment_rows.get((payment.round, payment.member_id))
            if payment_row is None:
                payment_row = RoundPaymentRow(round=payment.round, member_id=payment.member_id)
                row.payments.append(payment_row)
            self._fill_payment_row(payment_row, payment)

        self.db.flush()
        return row

    @staticmethod
    def _member_to_domain(row: PoolMemberRow) -> Member:
        destination = None
        if row.payout_method and row.payout_handle:
            destination = PayoutDestination(
                method=PaymentMethod(row.payout_method),
                handle=row.payout_handle,
                display_name=row.payout_display_name,
            )
        return Member(
            member_id=row.member_id,
            position=row.position,
            status=MemberStatus(row.status),
            payout_destination=destination,
            total_contributed_cents=row.total_contributed_cents,
            total_received_cents=row.total_received_cents,
            payments_on_time=row.payments_on_time,
            payments_missed=row.payments_missed,
            payout_received=row.payout_received,
            payout_date=_aware(row.payout_date),
        )

    @staticmethod
    def _fill_member_row(row: PoolMemberRow, member: Member) -> None:
        row.position = member.position
        row.status = member.status.value
        destination = member.payout_destination
        row.payout_method = destination.method.value if destination else None
        row.payout_handle = destination.handle if destination else None
        row.payout_display_name = destination.display_name if destination else None
        row.total_contributed_cents = member.total_contributed_cents
        row.total_received_cents = member.total_received_cents
        row.payments_on_time = member.payments_on_time
        row.payments_missed = member.payments_missed
        row.payout_received = member.payout_received
        row.payout_date = member.payout_date

    @staticmethod
    def _payment_to_domain(row: RoundPaymentRow) -> RoundPayment:
        return RoundPayment(
            member_id=row.member_id,
            round=row.round,
            amount_cents=row.amount_cents,
            due_date=row.due_date,
            status=PaymentStatus(row.status),
            member_confirmed_at=_aware(row.member_confirmed_at),
            member_confirmed_via=PaymentMethod(row.member_confirmed_via) if row.member_confirmed_via else None,
            admin_verified_at=_aware(row.admin_verified_at),
            admin_verified_by=row.admin_verified_by,
            admin_notes=row.admin_notes,
            reminder_count=row.reminder_count,
            reminder_sent_at=_aware(row.reminder_sent_at),
            was_late=row.was_late,
        )

    @staticmethod
    def _fill_payment_row(row: RoundPaymentRow, payment: RoundPayment) -> None:
        row.amount_cents = payment.amount_cents
        row.status = payment.status.value
        row.due_date = payment.due_date
        row.member_confirmed_at = payment.member_confirmed_at
        row.member_confirmed_via = payment.member_confirmed_via.value if payment.member_confirmed_via else None
        row.admin_verified_at = payment.admin_verified_at
        row.admin_verified_by = payment.admin_verified_by
        row.admin_notes = payment.admin_notes
        row.reminder_count = payment.reminder_count
        row.reminder_sent_at = payment.reminder_sent_at
        row.was_late = payment.was_late
