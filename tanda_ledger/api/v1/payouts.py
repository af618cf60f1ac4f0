"""Payout endpoints - eligibility, release, round rotation and history"""

import time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from tanda_ledger.api.dependencies import (
    commit_pool,
    get_notification_client,
    get_pool_repository,
    get_request_id,
    get_settlement_log,
)
from tanda_ledger.api.v1.schemas import (
    AdvanceRoundResponse,
    PayoutDecisionSchema,
    PayoutHistoryResponse,
    PayoutRecordSchema,
    ReleasePayoutRequest,
)
from tanda_ledger.domain.exceptions import ConflictError
from tanda_ledger.domain.models import PoolStatus
from tanda_ledger.domain.settlement import SettlementLog
from tanda_ledger.infrastructure.clients.notifications import NotificationClient
from tanda_ledger.infrastructure.database.repositories import PoolRepository
from tanda_ledger.infrastructure.database.session import get_db
from tanda_ledger.infrastructure.observability.logging import log_payout_decision, log_round_advanced
from tanda_ledger.infrastructure.observability.metrics import (
    record_blockers,
    record_payout,
    rounds_advanced_counter,
    settlement_conflict_counter,
)

router = APIRouter()


@router.get("/pools/{pool_id}/payout", response_model=PayoutDecisionSchema)
def get_payout_decision(
    pool_id: str,
    request: Request,
    repository: PoolRepository = Depends(get_pool_repository),
):
    """In-turn payout eligibility for the current round's designated recipient"""
    machine = repository.find_by_key(pool_id)
    decision = machine.evaluate_payout()
    record_blockers(decision.blockers)
    log_payout_decision(
        get_request_id(request), pool_id, decision.round, decision.allowed, False, len(decision.missing_contributions)
    )
    return PayoutDecisionSchema.from_domain(decision)


@router.get("/pools/{pool_id}/early-payout", response_model=PayoutDecisionSchema)
def get_early_payout_verification(
    pool_id: str,
    request: Request,
    requested_by: str = Query(..., min_length=1, description="Admin asking for the early payout"),
    recipient_id: Optional[str] = Query(None, description="Defaults to the current round's recipient"),
    repository: PoolRepository = Depends(get_pool_repository),
):
    """
    Check whether the current round's pot can be released early.

    Returns every blocker and every member still owing, so the admin UI can
    show the full picture in one call.
    """
    machine = repository.find_by_key(pool_id)
    verification = machine.evaluate_early_payout(requested_by, recipient_id=recipient_id)
    record_blockers(verification.blockers)
    log_payout_decision(
        get_request_id(request),
        pool_id,
        verification.round,
        verification.allowed,
        True,
        len(verification.missing_contributions),
    )
    return PayoutDecisionSchema.from_domain(verification)


@router.post("/pools/{pool_id}/payout", response_model=PayoutRecordSchema)
def release_payout(
    pool_id: str,
    request_body: ReleasePayoutRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Record that the current round's pot was paid out.

    Flow:
    1. Re-evaluate eligibility (in-turn, or early when requested)
    2. Append the settlement record; a concurrent duplicate fails with 409
    3. Credit the recipient and persist
    4. Queue the payout_released event for notifications
    """
    machine = repository.find_by_key(pool_id)
    if request_body.early:
        decision = machine.evaluate_early_payout(
            request_body.initiated_by,
            recipient_id=request_body.recipient_id,
            reason=request_body.reason,
        )
    else:
        decision = machine.evaluate_payout()

    try:
        record = machine.release_payout(decision, initiated_by=request_body.initiated_by)
    except ConflictError:
        settlement_conflict_counter.inc()
        raise

    commit_pool(db, repository, machine, background_tasks, notifier)
    record_payout(record.amount_cents, record.was_early_payout)
    return PayoutRecordSchema.from_domain(record)


@router.post("/pools/{pool_id}/advance", response_model=AdvanceRoundResponse)
def advance_round(
    pool_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Close the paid-out round and open the next one (or complete the pool)"""
    start_time = time.time()
    machine = repository.find_by_key(pool_id)
    closed_round = machine.pool.current_round

    machine.advance_round()
    commit_pool(db, repository, machine, background_tasks, notifier)

    completed = machine.pool.status == PoolStatus.COMPLETED
    rounds_advanced_counter.labels(result="pool_completed" if completed else "next_round").inc()
    log_round_advanced(
        get_request_id(request), pool_id, closed_round, completed, (time.time() - start_time) * 1000
    )
    return AdvanceRoundResponse(
        pool_id=pool_id,
        status=machine.pool.status,
        current_round=machine.pool.current_round,
        closed_round=closed_round,
    )


@router.get("/pools/{pool_id}/payouts", response_model=PayoutHistoryResponse)
def get_payout_history(
    pool_id: str,
    repository: PoolRepository = Depends(get_pool_repository),
    settlement: SettlementLog = Depends(get_settlement_log),
):
    """Settlement log for a pool, ordered by round"""
    repository.find_by_key(pool_id)
    return PayoutHistoryResponse(
        pool_id=pool_id,
        payouts=[PayoutRecordSchema.from_domain(r) for r in settlement.history(pool_id)],
    )
