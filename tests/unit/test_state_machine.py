"""Unit tests for the pool state machine"""

import threading

import pytest
from tanda_ledger.domain.events import EventType
from tanda_ledger.domain.exceptions import (
    ConflictError,
    InvalidPaymentDataError,
    InvalidPoolConfigError,
    InvalidStateError,
    InvalidTransitionError,
)
from tanda_ledger.domain.models import (
    Member,
    PaymentMethod,
    PaymentStatus,
    PayoutStatus,
    PoolConfig,
    PoolStatus,
)
from tanda_ledger.domain.state_machine import create_pool
from tanda_ledger.infrastructure.memory import InMemoryPoolRepository


def _release_and_advance(machine, collect):
    collect(machine)
    record = machine.release_payout(machine.evaluate_payout(), initiated_by="admin-1")
    machine.advance_round()
    return record


# Pool creation


@pytest.mark.parametrize(
    "overrides",
    [
        {"contribution_amount_cents": 5050},
        {"contribution_amount_cents": 0},
        {"total_rounds": 1},
        {"total_rounds": 21},
        {"allowed_payment_methods": []},
    ],
)
def test_create_pool_rejects_invalid_config(pool_config, roster_snapshot, settlement, overrides):
    """Test pool creation with invalid config"""
    values = {**pool_config.__dict__, **overrides}

    with pytest.raises(InvalidPoolConfigError):
        create_pool("pool-x", PoolConfig(**values), roster_snapshot, settlement)


def test_create_pool_rejects_position_beyond_total_rounds(pool_config, roster_snapshot, settlement):
    """Test member position beyond total rounds"""
    roster_snapshot.append({"member_id": "m5", "position": 5})

    with pytest.raises(InvalidPoolConfigError):
        create_pool("pool-x", pool_config, roster_snapshot, settlement)


def test_start_opens_round_one(pending_machine):
    """Test pool start"""
    assert pending_machine.pool.status == PoolStatus.PENDING

    payments = pending_machine.start()

    assert pending_machine.pool.status == PoolStatus.ACTIVE
    assert pending_machine.pool.current_round == 1
    assert len(payments) == 4
    assert [e.type for e in pending_machine.events.events] == [EventType.POOL_STARTED, EventType.ROUND_OPENED]


def test_start_without_start_date_uses_clock(pool_config, roster_snapshot, settlement, clock):
    """Test start date defaults to today"""
    pool_config.start_date = None
    machine = create_pool("pool-x", pool_config, roster_snapshot, settlement, clock=clock)

    machine.start()

    assert machine.pool.config.start_date == clock.today()


def test_start_twice_is_invalid(machine):
    """Test starting an active pool"""
    with pytest.raises(InvalidStateError):
        machine.start()


# Lifecycle


def test_full_cycle_completes_pool(machine, collect, settlement):
    """4 members, 4 rounds: confirm, verify, release, advance once per round"""
    seen_rounds = []
    for expected_round in range(1, 5):
        seen_rounds.append(machine.pool.current_round)
        record = _release_and_advance(machine, collect)
        assert record.round == expected_round
        assert record.recipient_member_id == f"m{expected_round}"
        assert record.amount_cents == 15000

    assert seen_rounds == [1, 2, 3, 4]
    assert machine.pool.status == PoolStatus.COMPLETED
    assert machine.pool.current_round == machine.pool.completed_round_sentinel == 5
    assert [r.round for r in settlement.history("pool-1")] == [1, 2, 3, 4]
    assert machine.ledger.closed_round_numbers() == [1, 2, 3, 4]
    for member in machine.roster:
        assert member.payout_received is True
        assert member.total_received_cents == 15000
        assert member.total_contributed_cents == 20000
        assert member.payments_on_time == 4
    assert machine.payout_status == PayoutStatus.PAID
    assert machine.events.events[-1].type == EventType.POOL_COMPLETED


def test_advance_on_completed_pool_is_invalid(machine, collect):
    """Test lifecycle actions on a completed pool"""
    for _ in range(4):
        _release_and_advance(machine, collect)

    with pytest.raises(InvalidStateError):
        machine.advance_round()
    with pytest.raises(InvalidStateError):
        machine.pause()
    assert machine.pool.current_round == 5


def test_advance_requires_collection_and_payout(machine, collect):
    """Test advance before collection and payout"""
    with pytest.raises(InvalidStateError):
        machine.advance_round()

    collect(machine)
    with pytest.raises(InvalidStateError):
        machine.advance_round()
    assert machine.pool.current_round == 1


def test_pause_blocks_ledger_changes_until_resumed(machine):
    """Test pause and resume"""
    machine.pause()

    assert machine.pool.status == PoolStatus.PAUSED
    with pytest.raises(InvalidStateError):
        machine.confirm_payment("m1", PaymentMethod.VENMO)
    with pytest.raises(InvalidStateError):
        machine.pause()

    machine.resume()
    assert machine.confirm_payment("m1", PaymentMethod.VENMO).status == PaymentStatus.MEMBER_CONFIRMED


def test_resume_requires_paused(pending_machine):
    """Test resume and pause on a pending pool"""
    with pytest.raises(InvalidStateError):
        pending_machine.resume()
    with pytest.raises(InvalidStateError):
        pending_machine.pause()


# Ledger events


def test_verify_credits_contribution(machine):
    """Test verification credits the member"""
    machine.confirm_payment("m2", PaymentMethod.VENMO)
    machine.verify_payment("m2", "admin-1")

    member = machine.roster.get("m2")
    assert member.total_contributed_cents == 5000
    assert member.payments_on_time == 1


def test_verify_twice_does_not_double_credit(machine):
    """Test repeated verification"""
    machine.verify_payment("m2", "admin-1")

    with pytest.raises(InvalidTransitionError):
        machine.verify_payment("m2", "admin-1")
    assert machine.roster.get("m2").total_contributed_cents == 5000


def test_disallowed_payment_method_is_rejected(machine):
    """Test payment method outside the pool's allowed list"""
    machine.pool.config.allowed_payment_methods = [PaymentMethod.VENMO]

    with pytest.raises(InvalidPaymentDataError):
        machine.confirm_payment("m1", PaymentMethod.ZELLE)
    assert machine.confirm_payment("m1", PaymentMethod.CASH).member_confirmed_via == PaymentMethod.CASH


def test_mark_missed_counts_against_member_and_emits(machine):
    """Test missed payment"""
    machine.mark_missed("m3")

    assert machine.roster.get("m3").payments_missed == 1
    assert machine.events.events[-1].type == EventType.PAYMENT_MISSED
    assert machine.payout_status == PayoutStatus.PENDING_COLLECTION


def test_send_reminder_emits_event(machine):
    """Test reminder event"""
    machine.send_reminder("m2")

    event = machine.events.events[-1]
    assert event.type == EventType.REMINDER_REQUESTED
    assert event.payload["member_id"] == "m2"
    assert event.to_dict()["reminder_count"] == 1


def test_mark_overdue_uses_clock(machine, clock):
    """Test overdue sweep after the due date"""
    clock.advance(days=7)

    assert [p.member_id for p in machine.mark_overdue()] == ["m1", "m2", "m3", "m4"]


# Membership


def test_removed_member_payment_is_excused(machine, collect):
    """Test member removal mid-round"""
    collect(machine, {"m1", "m2", "m3"})

    excused = machine.remove_member("m4")

    assert excused.status == PaymentStatus.EXCUSED
    assert machine.ledger.is_fully_collected() is True
    assert machine.evaluate_payout().amount_cents == 10000


def test_added_member_owes_open_round(pool_config, roster_snapshot, settlement, clock, collect):
    """Test member added mid-round"""
    pool_config.total_rounds = 5
    machine = create_pool("pool-5", pool_config, roster_snapshot, settlement, clock=clock)
    machine.start()
    collect(machine)

    payment = machine.add_member(Member("m5", 5))

    assert payment.due_date == clock.today()
    assert machine.ledger.is_fully_collected() is False
    assert machine.ledger.outstanding_members() == ["m5"]


def test_add_member_beyond_total_rounds_is_rejected(machine):
    """Test member added with no free round"""
    with pytest.raises(InvalidPoolConfigError):
        machine.add_member(Member("m5", 5))


# Payout release


def test_release_then_status_is_paid(machine, collect):
    """Test in-turn payout release"""
    collect(machine)
    assert machine.payout_status == PayoutStatus.READY_TO_PAY

    record = machine.release_payout(machine.evaluate_payout(), initiated_by="admin-1")

    assert record.was_early_payout is False
    assert record.initiated_by == "admin-1"
    assert machine.payout_status == PayoutStatus.PAID
    assert machine.roster.get("m1").payout_received is True
    assert machine.pool.current_round == 1


def test_release_refuses_disallowed_decision(machine):
    """Test release of a blocked decision"""
    with pytest.raises(InvalidStateError):
        machine.release_payout(machine.evaluate_payout())


def test_release_refuses_stale_decision(pool_config, roster_snapshot, settlement, clock, collect):
    """A member joining after evaluation reopens collection"""
    pool_config.total_rounds = 5
    machine = create_pool("pool-5", pool_config, roster_snapshot, settlement, clock=clock)
    machine.start()
    collect(machine)
    decision = machine.evaluate_payout()

    machine.add_member(Member("m5", 5))

    with pytest.raises(InvalidStateError):
        machine.release_payout(decision)


def test_second_release_for_round_conflicts(machine, collect):
    """Test second release for the same round"""
    collect(machine)
    decision = machine.evaluate_payout()
    machine.release_payout(decision)

    with pytest.raises(ConflictError):
        machine.release_payout(decision)
    assert machine.roster.get("m1").total_received_cents == 15000


def test_early_release_records_reason(machine, collect):
    """Test early payout release"""
    collect(machine)
    verification = machine.evaluate_early_payout("admin-2", reason="medical bills")

    record = machine.release_payout(verification)

    assert record.was_early_payout is True
    assert record.early_payout_reason == "medical bills"
    assert record.initiated_by == "admin-2"
    assert record.recipient_member_id == "m1"


def test_concurrent_releases_for_same_round(machine, collect, settlement, clock):
    """Two requests load the same pool and race to release; exactly one wins"""
    collect(machine)
    repository = InMemoryPoolRepository(settlement, clock=clock)
    repository.save(machine)
    first, second = repository.find_by_key("pool-1"), repository.find_by_key("pool-1")
    decisions = {id(m): m.evaluate_payout() for m in (first, second)}

    barrier = threading.Barrier(2)
    outcomes = []

    def release(m):
        barrier.wait()
        try:
            outcomes.append(m.release_payout(decisions[id(m)]))
        except ConflictError as e:
            outcomes.append(e)

    threads = [threading.Thread(target=release, args=(m,)) for m in (first, second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
    assert len(list(settlement.history("pool-1"))) == 1


def test_every_payout_goes_to_member_holding_that_round(machine, collect, settlement):
    """Mixing early and in-turn releases still pays position N in round N, once per member"""
    for round_number in range(1, 5):
        collect(machine)
        if round_number % 2:
            decision = machine.evaluate_early_payout("admin-1", reason="asked early")
        else:
            decision = machine.evaluate_payout()
        machine.release_payout(decision)
        machine.advance_round()

    records = list(settlement.history("pool-1"))
    assert [r.was_early_payout for r in records] == [True, False, True, False]
    for record in records:
        assert machine.roster.get(record.recipient_member_id).position == record.round
    for member in machine.roster:
        assert member.payout_received is True
        assert [r.round for r in records if r.recipient_member_id == member.member_id] == [member.position]


def test_release_refuses_recipient_outside_their_round(machine, collect):
    """A decision naming someone other than the round's position holder is never settled"""
    collect(machine)
    decision = machine.evaluate_payout()
    decision.recipient_member_id = "m3"

    with pytest.raises(InvalidStateError):
        machine.release_payout(decision)
    assert machine.roster.get("m3").payout_received is False
    assert machine.payout_status == PayoutStatus.READY_TO_PAY


def test_roster_changes_wait_while_paused(pool_config, roster_snapshot, settlement, clock):
    """Paused pools keep the open round's payments untouched"""
    pool_config.total_rounds = 5
    machine = create_pool("pool-5", pool_config, roster_snapshot, settlement, clock=clock)
    machine.start()
    machine.pause()

    with pytest.raises(InvalidStateError):
        machine.remove_member("m4")
    with pytest.raises(InvalidStateError):
        machine.add_member(Member("m5", 5))

    assert machine.ledger.payment_for("m4").status == PaymentStatus.PENDING
    assert machine.roster.get("m4").is_active
    assert "m5" not in machine.roster


def test_roster_changes_allowed_before_start(pending_machine):
    """No round is open yet, so a pending pool takes roster changes"""
    assert pending_machine.remove_member("m4") is None
    assert not pending_machine.roster.get("m4").is_active
