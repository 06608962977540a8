"""Ledger facade: records expenses and settlements, simplifies group debts.

This is the entry point callers use. It validates everything up front,
applies the change atomically under the right lock, then publishes an
event describing what happened.
"""

import logging
import threading
from collections.abc import Sequence
from decimal import Decimal

from .balance_sheet import BalanceSheet
from .exceptions import ValidationError
from .group import Group
from .models import (
    Expense,
    LedgerEvent,
    Payment,
    SplitType,
    User,
    to_amount,
)
from .notifications import NotificationHub
from .registry import Registry
from .splits import calculate_splits, parse_split_type

logger = logging.getLogger(__name__)


def _positive_amount(value: Decimal | float | int | str, what: str) -> Decimal:
    amount = to_amount(value)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{what} must be a positive amount, got {value}")
    return amount


class Ledger:
    """Expense and settlement operations over a registry."""

    def __init__(self, registry: Registry, hub: NotificationHub | None = None):
        """Initialize the ledger with its registry and notification hub."""
        self.registry = registry
        self.hub = hub or NotificationHub()
        self._pair_locks_guard = threading.Lock()
        self._pair_locks: dict[frozenset[str], threading.Lock] = {}

    def _pair_lock(self, user_a: str, user_b: str) -> threading.Lock:
        """One lock per unordered pair of users for individual balances."""
        key = frozenset((user_a, user_b))
        with self._pair_locks_guard:
            return self._pair_locks.setdefault(key, threading.Lock())

    def _publish(self, event: LedgerEvent) -> None:
        self.hub.publish(event)

    # ========================================================================
    # Users and groups
    # ========================================================================

    def create_user(self, name: str, email: str | None = None) -> User:
        return self.registry.create_user(name, email)

    def create_group(self, name: str, member_ids: Sequence[str] = ()) -> Group:
        """Create a group, optionally adding existing users as members."""
        members = [self.registry.get_user(user_id) for user_id in member_ids]
        group = self.registry.create_group(name)
        for member in members:
            group.add_member(member)
        return group

    def add_member(self, group_id: str, user_id: str) -> bool:
        """
        Add a registered user to a group.

        Returns:
            False if the user was already a member
        """
        group = self.registry.get_group(group_id)
        user = self.registry.get_user(user_id)
        added = group.add_member(user)
        if added:
            self._publish(
                LedgerEvent(
                    kind="member_added",
                    group_id=group.id,
                    message=f"{user.name} joined {group.name}",
                )
            )
        return added

    def remove_member(self, group_id: str, user_id: str) -> User:
        """
        Remove a member from a group.

        Raises:
            PreconditionError: If the member has unsettled balances
            MembershipError: If the user is not a member
        """
        group = self.registry.get_group(group_id)
        user = group.remove_member(user_id)
        self._publish(
            LedgerEvent(
                kind="member_removed",
                group_id=group.id,
                message=f"{user.name} left {group.name}",
            )
        )
        return user

    # ========================================================================
    # Expenses
    # ========================================================================

    def record_expense(
        self,
        group_id: str | None,
        description: str,
        total: Decimal | float | int | str,
        paid_by: str,
        participant_ids: Sequence[str],
        split_type: SplitType | str = SplitType.EQUAL,
        values: Sequence[Decimal | float | int | str] | None = None,
    ) -> Expense:
        """
        Record an expense and apply its splits.

        With a group id the group's sheet is updated; without one the
        individual balances between the payer and each participant are.

        Args:
            group_id: Owning group, or None for an individual expense
            description: What the expense was for
            total: Expense total
            paid_by: Id of the user who paid
            participant_ids: Ids of everyone sharing the expense
            split_type: Policy for dividing the total
            values: Amounts (exact) or percentages (percent) per participant

        Returns:
            The recorded expense

        Raises:
            ValidationError: If the total or split values are invalid
            MembershipError: If the payer or a participant is not a member
            UserNotFoundError: If an individual expense names an unknown user
            GroupNotFoundError: If the group does not exist
        """
        amount = _positive_amount(total, "Expense total")
        policy = parse_split_type(split_type)

        if group_id is None:
            return self._record_individual_expense(
                description, amount, paid_by, participant_ids, policy, values
            )

        group = self.registry.get_group(group_id)
        with group.lock:
            group.check_members([paid_by, *participant_ids])
            splits = calculate_splits(policy, amount, participant_ids, values)
            expense = Expense(
                id=self.registry.next_id("expense"),
                description=description,
                total=amount,
                paid_by=paid_by,
                splits=tuple(splits),
                split_type=policy,
                group_id=group.id,
            )
            group.add_expense(expense)
            payer = group.get_member(paid_by)

        self._publish(
            LedgerEvent(
                kind="expense_added",
                group_id=group.id,
                message=(
                    f"New expense in {group.name}: {description}, "
                    f"amount {amount}, paid by {payer.name}"
                ),
            )
        )
        return expense

    def _record_individual_expense(
        self,
        description: str,
        amount: Decimal,
        paid_by: str,
        participant_ids: Sequence[str],
        policy: SplitType,
        values: Sequence[Decimal | float | int | str] | None,
    ) -> Expense:
        payer = self.registry.get_user(paid_by)
        participants = {
            user_id: self.registry.get_user(user_id) for user_id in participant_ids
        }
        splits = calculate_splits(policy, amount, participant_ids, values)

        expense = Expense(
            id=self.registry.next_id("expense"),
            description=description,
            total=amount,
            paid_by=payer.id,
            splits=tuple(splits),
            split_type=policy,
        )

        for split in expense.splits:
            if split.user_id == payer.id:
                continue
            participant = participants[split.user_id]
            with self._pair_lock(payer.id, participant.id):
                _pair_view(payer, participant).apply_transfer(
                    participant.id, payer.id, split.amount
                )

        self.registry.add_expense(expense)
        logger.info(
            f"Individual expense {expense.id} '{description}' ({amount}) "
            f"paid by {payer.name}"
        )

        self._publish(
            LedgerEvent(
                kind="expense_added",
                message=(
                    f"New expense: {description}, amount {amount}, "
                    f"paid by {payer.name}"
                ),
            )
        )
        return expense

    def group_expenses(self, group_id: str) -> list[Expense]:
        return self.registry.get_group(group_id).expenses

    # ========================================================================
    # Settlements
    # ========================================================================

    def settle(
        self,
        group_id: str | None,
        from_id: str,
        to_id: str,
        amount: Decimal | float | int | str,
    ) -> None:
        """
        Record that ``from_id`` paid ``to_id`` outside of any expense.

        Raises:
            ValidationError: If the amount is not positive or both ids match
            MembershipError: If either party is not a member of the group
        """
        value = _positive_amount(amount, "Settlement amount")
        if from_id == to_id:
            raise ValidationError("A user cannot settle with themselves")

        if group_id is None:
            payer = self.registry.get_user(from_id)
            payee = self.registry.get_user(to_id)
            with self._pair_lock(payer.id, payee.id):
                _pair_view(payer, payee).apply_transfer(payee.id, payer.id, value)
            logger.info(f"{payer.name} settled {value} with {payee.name}")
            self._publish(
                LedgerEvent(
                    kind="settlement",
                    message=f"Settlement: {payer.name} paid {payee.name} {value}",
                )
            )
            return

        group = self.registry.get_group(group_id)
        with group.lock:
            group.settle(from_id, to_id, value)
            payer = group.get_member(from_id)
            payee = group.get_member(to_id)

        self._publish(
            LedgerEvent(
                kind="settlement",
                group_id=group.id,
                message=(
                    f"Settlement in {group.name}: "
                    f"{payer.name} paid {payee.name} {value}"
                ),
            )
        )

    def simplify_group(self, group_id: str) -> list[Payment]:
        """
        Collapse a group's debts into the greedy set of payments.

        Returns:
            The payments that now make up the group's balance sheet
        """
        group = self.registry.get_group(group_id)
        payments = group.simplify()
        self._publish(
            LedgerEvent(
                kind="debts_simplified",
                group_id=group.id,
                message=(
                    f"Debts have been simplified for {group.name}: "
                    f"{len(payments)} payment(s) settle everything"
                ),
            )
        )
        return payments

    # ========================================================================
    # Queries
    # ========================================================================

    def balances_of(self, user_id: str) -> dict[str, Decimal]:
        """Individual balances of a user (positive = they owe this user)."""
        return self.registry.get_user(user_id).balances

    def group_balances_of(self, group_id: str, user_id: str) -> dict[str, Decimal]:
        """A member's balances with the other members of a group."""
        return self.registry.get_group(group_id).balances_of(user_id)


def _pair_view(user_a: User, user_b: User) -> BalanceSheet:
    """Sheet over two users' own individual balance mappings."""
    return BalanceSheet.view(
        {user_a.id: user_a._balances, user_b.id: user_b._balances}
    )
