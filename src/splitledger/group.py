"""Groups: members, the group's balance sheet, and the membership guard."""

import logging
import threading
from collections.abc import Iterable
from decimal import Decimal

from .balance_sheet import BalanceSheet
from .exceptions import MembershipError, PreconditionError
from .models import Expense, Payment, User
from .simplifier import payments_to_sheet, propose_payments

logger = logging.getLogger(__name__)


class Group:
    """
    A group of users sharing one balance sheet.

    All reads and writes of the sheet hold ``lock``; callers that need
    several steps to be atomic (check, compute, apply) hold it too.
    """

    def __init__(self, group_id: str, name: str):
        """Initialize an empty group."""
        self.id = group_id
        self.name = name
        self.lock = threading.RLock()
        self._members: list[User] = []
        self._sheet = BalanceSheet()
        self._expenses: list[Expense] = []

    def __repr__(self) -> str:
        return f"Group({self.id!r}, {self.name!r}, members={len(self._members)})"

    @property
    def members(self) -> list[User]:
        """Members in the order they joined."""
        with self.lock:
            return list(self._members)

    @property
    def expenses(self) -> list[Expense]:
        """Expenses recorded against this group, oldest first."""
        with self.lock:
            return list(self._expenses)

    def member_ids(self) -> list[str]:
        """Member ids in join order."""
        with self.lock:
            return [member.id for member in self._members]

    def is_member(self, user_id: str) -> bool:
        """Whether the user currently belongs to the group."""
        with self.lock:
            return any(member.id == user_id for member in self._members)

    def get_member(self, user_id: str) -> User:
        """Look up a member by id."""
        with self.lock:
            for member in self._members:
                if member.id == user_id:
                    return member
        raise MembershipError(self.id, [user_id])

    def check_members(self, user_ids: Iterable[str]) -> None:
        """
        Verify every id is a member of this group.

        Raises:
            MembershipError: Listing every id that is not a member
        """
        with self.lock:
            outsiders = [
                user_id
                for user_id in dict.fromkeys(user_ids)
                if not self.is_member(user_id)
            ]
        if outsiders:
            raise MembershipError(self.id, outsiders)

    # ========================================================================
    # Membership
    # ========================================================================

    def add_member(self, user: User) -> bool:
        """
        Add a user to the group with an empty balance row.

        Returns:
            False if the user was already a member
        """
        with self.lock:
            if self.is_member(user.id):
                return False
            self._members.append(user)
            self._sheet.add_row(user.id)

        logger.info(f"User {user.name} added to group {self.name}")
        return True

    def can_leave(self, user_id: str) -> bool:
        """True if the member has no open balance with anyone in the group."""
        with self.lock:
            self.check_members([user_id])
            return self._sheet.is_fully_settled(user_id)

    def remove_member(self, user_id: str) -> User:
        """
        Remove a member whose balances are fully settled.

        Raises:
            MembershipError: If the user is not a member
            PreconditionError: If the member still owes or is owed money
        """
        with self.lock:
            if not self.can_leave(user_id):
                logger.info(
                    f"User {user_id} cannot leave group {self.name}: unsettled balances"
                )
                raise PreconditionError(self.id, user_id)

            user = self.get_member(user_id)
            self._members.remove(user)
            self._sheet.drop_row(user_id)

        logger.info(f"User {user.name} removed from group {self.name}")
        return user

    # ========================================================================
    # Balances
    # ========================================================================

    def add_expense(self, expense: Expense) -> None:
        """
        Record an expense and apply its splits to the sheet.

        Membership of the payer and every participant is checked before the
        sheet is touched.
        """
        with self.lock:
            self.check_members(
                [expense.paid_by, *(split.user_id for split in expense.splits)]
            )
            self._expenses.append(expense)
            self._sheet.apply_expense(expense)

        logger.info(
            f"Expense {expense.id} '{expense.description}' ({expense.total}) "
            f"added to group {self.name}"
        )

    def settle(self, from_id: str, to_id: str, amount: Decimal) -> None:
        """Record that ``from_id`` paid ``to_id`` directly."""
        with self.lock:
            self.check_members([from_id, to_id])
            self._sheet.apply_transfer(to_id, from_id, amount)

        logger.info(f"Settlement in group {self.name}: {from_id} paid {to_id} {amount}")

    def balances_of(self, user_id: str) -> dict[str, Decimal]:
        """Copy of a member's balances with the other members."""
        with self.lock:
            self.check_members([user_id])
            return self._sheet.row(user_id)

    def balance_sheet(self) -> dict[str, dict[str, Decimal]]:
        """Copy of the whole sheet."""
        with self.lock:
            return self._sheet.as_dict()

    def proposed_payments(self) -> list[Payment]:
        """Payments the simplifier would leave, without changing anything."""
        with self.lock:
            return propose_payments(self._sheet)

    def simplify(self) -> list[Payment]:
        """
        Replace the sheet with its simplified form.

        Prior pairwise amounts are discarded; only net positions survive.

        Returns:
            The payments that make up the new sheet
        """
        with self.lock:
            payments = propose_payments(self._sheet)
            self._sheet = payments_to_sheet(self._sheet.member_ids(), payments)

        logger.info(
            f"Debts simplified for group {self.name}: {len(payments)} payment(s) remain"
        )
        return payments

    def restore(
        self,
        members: list[User],
        sheet: BalanceSheet,
        expenses: list[Expense],
    ) -> None:
        """Load stored state into an empty group."""
        with self.lock:
            self._members = list(members)
            self._sheet = sheet
            for member in members:
                self._sheet.add_row(member.id)
            self._expenses = list(expenses)
