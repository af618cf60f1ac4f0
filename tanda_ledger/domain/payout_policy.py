"""Payout policy - pure decision logic for in-turn and early payouts"""

from typing import List, Optional

from tanda_ledger.domain.exceptions import InvalidStateError
from tanda_ledger.domain.ledger import RoundLedger
from tanda_ledger.domain.models import (
    Blocker,
    EarlyPayoutVerification,
    Member,
    PaymentStatus,
    PayoutDecision,
    Pool,
)
from tanda_ledger.domain.roster import MemberRoster
from tanda_ledger.domain.schedule import due_date_for_round
from tanda_ledger.domain.settlement import SettlementLog


def calculate_pot(pool: Pool, ledger: RoundLedger, recipient_id: str) -> int:
    """
    Pot for the open round: contribution amount x contributing members.

    Excused payments never count. The recipient's own payment is left out
    unless the pool says recipients pay into their own round.

    Example:
        4 members x $50, nobody excused, recipient excluded -> 3 x 5000 = 15000 cents
    """
    contributing = [
        p
        for p in ledger.payments()
        if p.status != PaymentStatus.EXCUSED
        and (pool.config.recipient_contributes_to_pot or p.member_id != recipient_id)
    ]
    return pool.config.contribution_amount_cents * len(contributing)


def _check_round(pool: Pool, ledger: RoundLedger) -> int:
    round_number = pool.current_round
    if not 1 <= round_number <= pool.config.total_rounds:
        raise InvalidStateError(f"Round {round_number} is out of range for pool {pool.pool_id}")
    if ledger.round_number != round_number:
        raise InvalidStateError(f"Round {round_number} is not open for pool {pool.pool_id}")
    return round_number


def _common_blockers(
    pool: Pool,
    ledger: RoundLedger,
    recipient: Member,
    settlement: Optional[SettlementLog],
) -> List[Blocker]:
    blockers = []
    if not ledger.is_fully_collected():
        blockers.append(Blocker.CONTRIBUTIONS_OUTSTANDING)
    if not recipient.is_active:
        blockers.append(Blocker.RECIPIENT_INACTIVE)
    if recipient.payout_received:
        blockers.append(Blocker.RECIPIENT_ALREADY_PAID)
    if settlement is not None and settlement.has_payout(pool.pool_id, pool.current_round):
        blockers.append(Blocker.PAYOUT_ALREADY_RELEASED)
    return blockers


def _scheduled_date(pool: Pool, round_number: int):
    if pool.config.start_date is None:
        return None
    return due_date_for_round(pool.config.start_date, pool.config.frequency, round_number)


def evaluate_in_turn_payout(
    pool: Pool,
    ledger: RoundLedger,
    roster: MemberRoster,
    settlement: Optional[SettlementLog] = None,
) -> PayoutDecision:
    """
    Decide whether the designated recipient (position == current round) can be paid.

    Not being eligible yet is a normal result with allowed=False and the full
    list of blockers. Raises only for structurally invalid input: a round out
    of range or not open (InvalidStateError), no member at the round's
    position (NotFoundError).
    """
    round_number = _check_round(pool, ledger)
    recipient = roster.designated_recipient(round_number)
    blockers = _common_blockers(pool, ledger, recipient, settlement)

    return PayoutDecision(
        allowed=not blockers,
        round=round_number,
        recipient_member_id=recipient.member_id,
        amount_cents=calculate_pot(pool, ledger, recipient.member_id),
        scheduled_date=_scheduled_date(pool, round_number),
        missing_contributions=ledger.outstanding_members(),
        blockers=blockers,
    )


def evaluate_early_payout(
    pool: Pool,
    ledger: RoundLedger,
    roster: MemberRoster,
    requested_by: str,
    recipient_id: Optional[str] = None,
    reason: Optional[str] = None,
    settlement: Optional[SettlementLog] = None,
) -> EarlyPayoutVerification:
    """
    Decide whether the current round's pot can be released ahead of schedule.

    The recipient defaults to the designated one. Naming any other member is
    blocked with RECIPIENT_NOT_IN_TURN: a payout for round N always goes to
    the member at position N. The collection bar is the *current* open round,
    and the recipient needs a payout destination with a handle.
    missing_contributions lists every blocking member, not just the first.
    """
    round_number = _check_round(pool, ledger)
    if recipient_id is None:
        recipient = roster.designated_recipient(round_number)
    else:
        recipient = roster.get(recipient_id)

    blockers = _common_blockers(pool, ledger, recipient, settlement)
    if recipient.position != round_number:
        blockers.append(Blocker.RECIPIENT_NOT_IN_TURN)
    destination = recipient.payout_destination
    if destination is None or not destination.handle.strip():
        blockers.append(Blocker.NO_PAYOUT_DESTINATION)

    return EarlyPayoutVerification(
        allowed=not blockers,
        round=round_number,
        recipient_member_id=recipient.member_id,
        amount_cents=calculate_pot(pool, ledger, recipient.member_id),
        scheduled_date=_scheduled_date(pool, round_number),
        missing_contributions=ledger.outstanding_members(),
        blockers=blockers,
        requested_by=requested_by,
        payout_destination=destination,
        reason=reason,
    )
