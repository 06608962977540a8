"""Custom exceptions for SplitLedger."""


class SplitLedgerError(Exception):
    """Base exception for all SplitLedger errors."""

    pass


class ConfigurationError(SplitLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(SplitLedgerError):
    """Raised when split values or amounts are inconsistent with an expense."""

    pass


class MembershipError(SplitLedgerError):
    """Raised when an operation references a user who is not a group member."""

    def __init__(self, group_id: str, user_ids: list[str], message: str | None = None):
        self.group_id = group_id
        self.user_ids = user_ids
        super().__init__(
            message
            or f"User(s) {', '.join(user_ids)} not a member of group {group_id}"
        )


class PreconditionError(SplitLedgerError):
    """Raised when a member with open balances tries to leave a group."""

    def __init__(self, group_id: str, user_id: str, message: str | None = None):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(
            message
            or f"User {user_id} has unsettled balances in group {group_id}"
        )


class NotFoundError(SplitLedgerError):
    """Base class for lookup failures in the registry."""

    pass


class UserNotFoundError(NotFoundError):
    """Raised when a user id is not registered."""

    pass


class GroupNotFoundError(NotFoundError):
    """Raised when a group id is not registered."""

    pass


class SnapshotError(SplitLedgerError):
    """Raised when a stored snapshot cannot be rebuilt into a valid ledger."""

    pass
