"""Dependency injection for FastAPI endpoints"""

from datetime import timedelta

from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from tanda_ledger.config import settings
from tanda_ledger.domain.settlement import SettlementLog
from tanda_ledger.domain.state_machine import PoolStateMachine
from tanda_ledger.infrastructure.clients.notifications import NotificationClient
from tanda_ledger.infrastructure.database.repositories import PoolRepository, SqlPayoutRecordRepository
from tanda_ledger.infrastructure.database.session import get_db
from tanda_ledger.utils.clock import Clock, SystemClock


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Clock:
    """Provide the time source; tests override this with a FixedClock"""
    return SystemClock()


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def get_settlement_log(db: Session = Depends(get_db)) -> SettlementLog:
    return SettlementLog(SqlPayoutRecordRepository(db))


def get_pool_repository(
    db: Session = Depends(get_db),
    settlement: SettlementLog = Depends(get_settlement_log),
    clock: Clock = Depends(get_clock),
) -> PoolRepository:
    return PoolRepository(db, settlement, clock, reminder_cooldown=timedelta(hours=settings.reminder_cooldown_hours))


def commit_pool(
    db: Session,
    repository: PoolRepository,
    machine: PoolStateMachine,
    background_tasks: BackgroundTasks,
    notifier: NotificationClient,
) -> None:
    """Persist the aggregate, commit, then hand buffered events to the notifier"""
    repository.save(machine)
    db.commit()
    events = machine.events.drain()
    if events:
        background_tasks.add_task(notifier.publish, events)
