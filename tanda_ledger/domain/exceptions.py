"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidStateError(DomainException):
    """Pool or round is in a state that forbids the operation"""

    pass


class InvalidTransitionError(DomainException):
    """Round payment status change not permitted from its current status"""

    def __init__(self, member_id: str, current: str, target: str):
        self.member_id = member_id
        self.current = current
        self.target = target
        super().__init__(f"Payment for member {member_id} cannot move from {current} to {target}")


class NotFoundError(DomainException):
    """Referenced member, round, pool or payment does not exist"""

    pass


class ConflictError(DomainException):
    """Uniqueness violation, e.g. a second payout for the same round"""

    pass


class InvalidPoolConfigError(DomainException):
    """Pool configuration or roster snapshot is malformed"""

    pass


class InvalidPaymentDataError(DomainException):
    """Payment data is malformed or uses a method the pool does not accept"""

    pass


class ReminderCooldownError(InvalidStateError):
    """A reminder was already sent for this payment within the cooldown window"""

    def __init__(self, member_id: str, retry_after_seconds: int):
        self.member_id = member_id
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Reminder for member {member_id} is cooling down for {retry_after_seconds}s")
