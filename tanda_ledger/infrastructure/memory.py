"""In-process repositories for tests and embedding"""

import copy
import threading
from typing import Dict, Iterator, Optional

from tanda_ledger.domain.exceptions import ConflictError, NotFoundError
from tanda_ledger.domain.ledger import RoundLedger
from tanda_ledger.domain.models import PayoutRecord
from tanda_ledger.domain.settlement import PayoutKey, SettlementLog
from tanda_ledger.domain.state_machine import PoolStateMachine
from tanda_ledger.utils.clock import Clock


class InMemoryPayoutRecordRepository:
    """Payout records keyed by (pool_id, round); the lock makes check-and-insert atomic"""

    def __init__(self):
        self._records: Dict[PayoutKey, PayoutRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: PayoutRecord) -> None:
        key = (record.pool_id, record.round)
        with self._lock:
            if key in self._records:
                raise ConflictError(f"Payout already recorded for pool {record.pool_id} round {record.round}")
            self._records[key] = record

    def find_by_key(self, key: PayoutKey) -> Optional[PayoutRecord]:
        return self._records.get(key)

    def iter_pool(self, pool_id: str) -> Iterator[PayoutRecord]:
        with self._lock:
            rounds = sorted(r for (p, r) in self._records if p == pool_id)
        for round_number in rounds:
            yield self._records[(pool_id, round_number)]


class InMemoryPoolRepository:
    """
    Stores deep copies of pool state so each find_by_key() behaves like a
    fresh load, the way two HTTP requests would each read the pool.
    """

    def __init__(self, settlement: SettlementLog, clock: Optional[Clock] = None):
        self.settlement = settlement
        self.clock = clock
        self._pools: Dict[str, tuple] = {}

    def save(self, machine: PoolStateMachine) -> None:
        ledger = machine.ledger
        self._pools[machine.pool.pool_id] = copy.deepcopy(
            (
                machine.pool,
                machine.roster,
                ledger.round_number,
                ledger.payments(),
                {n: ledger.closed_round(n) for n in ledger.closed_round_numbers()},
            )
        )

    def find_by_key(self, pool_id: str) -> PoolStateMachine:
        try:
            stored = self._pools[pool_id]
        except KeyError:
            raise NotFoundError(f"Pool {pool_id} not found") from None

        pool, roster, open_round, payments, closed = copy.deepcopy(stored)
        machine = PoolStateMachine(pool, roster, self.settlement, clock=self.clock)
        machine.ledger = RoundLedger(
            pool_id,
            clock=machine.clock,
            open_round_number=open_round,
            payments=payments,
            closed_rounds=closed,
        )
        return machine
