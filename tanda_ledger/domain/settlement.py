"""Settlement log - append-only audit trail of payouts"""

from typing import Iterator, Optional, Protocol, Tuple

from tanda_ledger.domain.models import PayoutRecord

PayoutKey = Tuple[str, int]


class PayoutRecordRepository(Protocol):
    """
    Storage contract for payout records.

    save() must enforce (pool_id, round) uniqueness atomically and raise
    ConflictError on a duplicate; that constraint is the only concurrency
    gate between two releases of the same round.
    """

    def save(self, record: PayoutRecord) -> None: ...

    def find_by_key(self, key: PayoutKey) -> Optional[PayoutRecord]: ...

    def iter_pool(self, pool_id: str) -> Iterator[PayoutRecord]:
        """Yield the pool's records ordered by round ascending"""
        ...


class PayoutHistory:
    """Lazy, restartable view of a pool's payouts ordered by round; each iteration re-reads storage"""

    def __init__(self, repository: PayoutRecordRepository, pool_id: str):
        self._repository = repository
        self.pool_id = pool_id

    def __iter__(self) -> Iterator[PayoutRecord]:
        yield from self._repository.iter_pool(self.pool_id)


class SettlementLog:
    """Append-only log of PayoutRecords, exactly one per (pool, round)"""

    def __init__(self, repository: PayoutRecordRepository):
        self.repository = repository

    def append(self, record: PayoutRecord) -> PayoutRecord:
        """Raises ConflictError when the round already has a payout"""
        self.repository.save(record)
        return record

    def for_round(self, pool_id: str, round_number: int) -> Optional[PayoutRecord]:
        return self.repository.find_by_key((pool_id, round_number))

    def has_payout(self, pool_id: str, round_number: int) -> bool:
        return self.for_round(pool_id, round_number) is not None

    def history(self, pool_id: str) -> PayoutHistory:
        return PayoutHistory(self.repository, pool_id)
