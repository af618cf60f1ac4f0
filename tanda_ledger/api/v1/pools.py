"""Pool lifecycle endpoints - create, inspect, start, pause, resume, membership"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tanda_ledger.api.dependencies import (
    commit_pool,
    get_clock,
    get_notification_client,
    get_pool_repository,
)
from tanda_ledger.api.v1.schemas import (
    CreatePoolRequest,
    MemberSchema,
    MemberSnapshot,
    PoolResponse,
    RoundPaymentSchema,
)
from tanda_ledger.config import settings
from tanda_ledger.domain.models import Member, PayoutDestination, PoolConfig
from tanda_ledger.domain.state_machine import PoolStateMachine, create_pool
from tanda_ledger.infrastructure.clients.notifications import NotificationClient
from tanda_ledger.infrastructure.database.repositories import PoolRepository
from tanda_ledger.infrastructure.database.session import get_db
from tanda_ledger.utils.clock import Clock

router = APIRouter()


def pool_response(machine: PoolStateMachine) -> PoolResponse:
    pool = machine.pool
    return PoolResponse(
        pool_id=pool.pool_id,
        status=pool.status,
        current_round=pool.current_round,
        total_rounds=pool.config.total_rounds,
        contribution_amount_cents=pool.config.contribution_amount_cents,
        frequency=pool.config.frequency,
        start_date=pool.config.start_date,
        payout_status=machine.payout_status,
        members=[MemberSchema.from_domain(m) for m in machine.roster.members()],
    )


@router.post("/pools", response_model=PoolResponse, status_code=status.HTTP_201_CREATED)
def create_pool_endpoint(
    request_body: CreatePoolRequest,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    clock: Clock = Depends(get_clock),
):
    """Create a pending pool from its configuration and roster snapshot"""
    if repository.exists(request_body.pool_id):
        raise HTTPException(status_code=409, detail="Pool already exists")

    config = PoolConfig(
        contribution_amount_cents=request_body.contribution_amount * 100,
        frequency=request_body.frequency,
        total_rounds=request_body.total_rounds,
        allowed_payment_methods=request_body.allowed_payment_methods,
        recipient_contributes_to_pot=request_body.recipient_contributes_to_pot,
        start_date=request_body.start_date,
    )
    machine = create_pool(
        request_body.pool_id,
        config,
        [m.model_dump() for m in request_body.members],
        repository.settlement,
        clock=clock,
        min_total_rounds=settings.min_total_rounds,
        max_total_rounds=settings.max_total_rounds,
        reminder_cooldown=repository.reminder_cooldown,
    )
    repository.save(machine)
    db.commit()
    return pool_response(machine)


@router.get("/pools/{pool_id}", response_model=PoolResponse)
def get_pool(pool_id: str, repository: PoolRepository = Depends(get_pool_repository)):
    return pool_response(repository.find_by_key(pool_id))


@router.post("/pools/{pool_id}/start", response_model=PoolResponse)
def start_pool(
    pool_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Activate a pending pool and open round 1"""
    machine = repository.find_by_key(pool_id)
    machine.start()
    commit_pool(db, repository, machine, background_tasks, notifier)
    return pool_response(machine)


@router.post("/pools/{pool_id}/pause", response_model=PoolResponse)
def pause_pool(
    pool_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    machine = repository.find_by_key(pool_id)
    machine.pause()
    commit_pool(db, repository, machine, background_tasks, notifier)
    return pool_response(machine)


@router.post("/pools/{pool_id}/resume", response_model=PoolResponse)
def resume_pool(
    pool_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    machine = repository.find_by_key(pool_id)
    machine.resume()
    commit_pool(db, repository, machine, background_tasks, notifier)
    return pool_response(machine)


@router.post("/pools/{pool_id}/members", response_model=PoolResponse, status_code=status.HTTP_201_CREATED)
def add_member(
    pool_id: str,
    request_body: MemberSnapshot,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Add a member mid-pool.

    If a round is open the new member owes its contribution immediately.
    """
    machine = repository.find_by_key(pool_id)
    destination = request_body.payout_destination
    machine.add_member(
        Member(
            member_id=request_body.member_id,
            position=request_body.position,
            status=request_body.status,
            payout_destination=(
                PayoutDestination(destination.method, destination.handle, destination.display_name)
                if destination
                else None
            ),
        )
    )
    commit_pool(db, repository, machine, background_tasks, notifier)
    return pool_response(machine)


@router.delete("/pools/{pool_id}/members/{member_id}", response_model=RoundPaymentSchema | None)
def remove_member(
    pool_id: str,
    member_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """Deactivate a member; returns their excused payment when one was outstanding"""
    machine = repository.find_by_key(pool_id)
    excused = machine.remove_member(member_id)
    commit_pool(db, repository, machine, background_tasks, notifier)
    return RoundPaymentSchema.from_domain(excused) if excused else None
