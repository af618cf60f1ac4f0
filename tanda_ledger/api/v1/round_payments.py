"""Round payment tracking - status of the open round and per-member actions"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from tanda_ledger.api.dependencies import commit_pool, get_notification_client, get_pool_repository, get_request_id
from tanda_ledger.api.v1.schemas import (
    PaymentActionRequest,
    PaymentActionResponse,
    RoundPaymentSchema,
    RoundStatusResponse,
)
from tanda_ledger.domain.exceptions import DomainException, NotFoundError, ReminderCooldownError
from tanda_ledger.domain.state_machine import PoolStateMachine
from tanda_ledger.infrastructure.clients.notifications import NotificationClient
from tanda_ledger.infrastructure.database.repositories import PoolRepository
from tanda_ledger.infrastructure.database.session import get_db
from tanda_ledger.infrastructure.observability.logging import log_payment_action
from tanda_ledger.infrastructure.observability.metrics import payment_action_counter

router = APIRouter()


def _apply_action(machine: PoolStateMachine, member_id: str, body: PaymentActionRequest):
    if body.action == "member_confirm":
        return machine.confirm_payment(member_id, body.method, round_number=body.round)
    if body.action == "admin_verify":
        return machine.verify_payment(member_id, body.actor_id, body.notes, round_number=body.round)
    if body.action == "mark_late":
        return machine.mark_late(member_id, body.notes, round_number=body.round)
    if body.action == "mark_missed":
        return machine.mark_missed(member_id, round_number=body.round)
    if body.action == "excuse":
        return machine.excuse_payment(member_id, body.notes or "excused by admin", round_number=body.round)
    return machine.send_reminder(member_id, round_number=body.round)


@router.get("/pools/{pool_id}/round-payments", response_model=RoundStatusResponse)
def get_round_payments(pool_id: str, repository: PoolRepository = Depends(get_pool_repository)):
    """Current round's collection status for the admin dashboard"""
    machine = repository.find_by_key(pool_id)
    ledger = machine.ledger
    return RoundStatusResponse(
        pool_id=pool_id,
        current_round=ledger.round_number,
        fully_collected=ledger.is_fully_collected(),
        payout_status=machine.payout_status,
        verified_amount_cents=ledger.verified_amount_cents(),
        missing_contributions=ledger.outstanding_members(),
        payments=[RoundPaymentSchema.from_domain(p) for p in ledger.payments()],
    )


@router.post("/pools/{pool_id}/round-payments/{member_id}", response_model=PaymentActionResponse)
def update_round_payment(
    pool_id: str,
    member_id: str,
    request_body: PaymentActionRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    repository: PoolRepository = Depends(get_pool_repository),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Apply one action to a member's payment in the open round.

    Actions:
    - member_confirm: member self-reports paying (pending/late -> member_confirmed)
    - admin_verify: admin confirms receipt; the only status that counts toward payout
    - mark_late / mark_missed / excuse: admin bookkeeping
    - send_reminder: queue a reminder, at most once per cooldown window
    """
    request_id = get_request_id(request)
    machine = repository.find_by_key(pool_id)

    try:
        payment = _apply_action(machine, member_id, request_body)
    except ReminderCooldownError:
        payment_action_counter.labels(action=request_body.action, outcome="cooldown").inc()
        log_payment_action(request_id, pool_id, member_id, request_body.action, None, "cooldown")
        raise
    except NotFoundError:
        payment_action_counter.labels(action=request_body.action, outcome="not_found").inc()
        log_payment_action(request_id, pool_id, member_id, request_body.action, None, "not_found")
        raise
    except DomainException:
        payment_action_counter.labels(action=request_body.action, outcome="rejected").inc()
        log_payment_action(request_id, pool_id, member_id, request_body.action, None, "rejected")
        raise

    commit_pool(db, repository, machine, background_tasks, notifier)
    payment_action_counter.labels(action=request_body.action, outcome="ok").inc()
    log_payment_action(request_id, pool_id, member_id, request_body.action, payment.status.value, "ok")

    return PaymentActionResponse(
        payment=RoundPaymentSchema.from_domain(payment),
        fully_collected=machine.ledger.is_fully_collected(),
        payout_status=machine.payout_status,
    )
