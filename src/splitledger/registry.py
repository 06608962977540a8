"""In-memory registry of users, groups and individual expenses."""

import itertools
import logging
import threading

from .exceptions import GroupNotFoundError, UserNotFoundError
from .group import Group
from .models import Expense, User

logger = logging.getLogger(__name__)


class Registry:
    """
    Id-keyed lookup for users and groups.

    Each registry owns its own id counters, so separate instances never
    share state. Registration is append-only; entries are never deleted.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._lock = threading.Lock()
        self._counters: dict[str, itertools.count] = {}
        self._users: dict[str, User] = {}
        self._groups: dict[str, Group] = {}
        self._expenses: dict[str, Expense] = {}

    def next_id(self, prefix: str) -> str:
        """Allocate the next id for a prefix, e.g. ``user_0``."""
        with self._lock:
            counter = self._counters.setdefault(prefix, itertools.count())
            return f"{prefix}_{next(counter)}"

    def reserve_id(self, entity_id: str) -> None:
        """Make sure later ids for this prefix never collide with ``entity_id``."""
        prefix, _, suffix = entity_id.rpartition("_")
        if not prefix or not suffix.isdigit():
            return
        with self._lock:
            current = self._counters.get(prefix)
            start = next(current) if current else 0
            self._counters[prefix] = itertools.count(max(start, int(suffix) + 1))

    # ========================================================================
    # Users
    # ========================================================================

    def create_user(self, name: str, email: str | None = None) -> User:
        """Register a new user."""
        user = User(id=self.next_id("user"), name=name, email=email)
        with self._lock:
            self._users[user.id] = user

        logger.info(f"User created: {name} (ID: {user.id})")
        return user

    def restore_user(self, user: User) -> None:
        """Register a user loaded from storage, keeping its id."""
        self.reserve_id(user.id)
        with self._lock:
            self._users[user.id] = user

    def get_user(self, user_id: str) -> User:
        """
        Look up a user by id.

        Raises:
            UserNotFoundError: If no user has this id
        """
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotFoundError(f"User {user_id} not found") from None

    def users(self) -> list[User]:
        """All users in registration order."""
        with self._lock:
            return list(self._users.values())

    # ========================================================================
    # Groups
    # ========================================================================

    def create_group(self, name: str) -> Group:
        """Register a new, empty group."""
        group = Group(self.next_id("group"), name)
        with self._lock:
            self._groups[group.id] = group

        logger.info(f"Group created: {name} (ID: {group.id})")
        return group

    def restore_group(self, group: Group) -> None:
        """Register a group loaded from storage, keeping its id."""
        self.reserve_id(group.id)
        with self._lock:
            self._groups[group.id] = group

    def get_group(self, group_id: str) -> Group:
        """
        Look up a group by id.

        Raises:
            GroupNotFoundError: If no group has this id
        """
        try:
            return self._groups[group_id]
        except KeyError:
            raise GroupNotFoundError(f"Group {group_id} not found") from None

    def groups(self) -> list[Group]:
        """All groups in creation order."""
        with self._lock:
            return list(self._groups.values())

    # ========================================================================
    # Individual expenses
    # ========================================================================

    def add_expense(self, expense: Expense) -> None:
        """Keep an individual expense for history."""
        self.reserve_id(expense.id)
        with self._lock:
            self._expenses[expense.id] = expense

    def expenses(self) -> list[Expense]:
        """Individual expenses, oldest first."""
        with self._lock:
            return list(self._expenses.values())
