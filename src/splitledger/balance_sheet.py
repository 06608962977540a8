"""Symmetric pairwise balance sheet shared by group and individual debts."""

import logging
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from decimal import Decimal

from .exceptions import SnapshotError
from .models import EPSILON, Expense

logger = logging.getLogger(__name__)

Row = MutableMapping[str, Decimal]


class BalanceSheet:
    """
    Pairwise balances between members of one scope.

    ``balance[a][b] > 0`` means ``b`` owes ``a``. Two invariants hold after
    every call:

    - ``balance[a][b] == -balance[b][a]`` for every pair present
    - an entry with magnitude below EPSILON is removed from both rows
    """

    def __init__(self, member_ids: Iterable[str] = ()):
        """Initialize an empty sheet with one row per member."""
        self._rows: dict[str, Row] = {member_id: {} for member_id in member_ids}

    @classmethod
    def view(cls, rows: Mapping[str, Row]) -> "BalanceSheet":
        """
        Build a sheet over rows owned elsewhere.

        Transfers mutate the given row mappings in place, which is how the
        individual balance mappings of two users are updated as a pair.
        """
        sheet = cls()
        sheet._rows = dict(rows)
        return sheet

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Decimal]]) -> "BalanceSheet":
        """Rebuild a sheet from ``as_dict`` output, checking both invariants."""
        sheet = cls(data.keys())
        for member_id, row in data.items():
            for other_id, amount in row.items():
                if other_id not in data:
                    raise SnapshotError(
                        f"Balance {member_id}->{other_id} references unknown member"
                    )
                if abs(amount) < EPSILON:
                    raise SnapshotError(
                        f"Balance {member_id}->{other_id} is below tolerance"
                    )
                mirror = data[other_id].get(member_id)
                if mirror is None or abs(amount + mirror) > EPSILON:
                    raise SnapshotError(
                        f"Balance {member_id}->{other_id} has no matching mirror entry"
                    )
                sheet._rows[member_id][other_id] = amount
        return sheet

    # ========================================================================
    # Rows
    # ========================================================================

    def __contains__(self, member_id: object) -> bool:
        return member_id in self._rows

    def member_ids(self) -> list[str]:
        """Row ids in insertion order."""
        return list(self._rows)

    def add_row(self, member_id: str) -> None:
        """Add an empty row for a member. Existing rows are kept."""
        self._rows.setdefault(member_id, {})

    def drop_row(self, member_id: str) -> None:
        """Drop a member's row. The row must be empty."""
        if self._rows.get(member_id):
            raise ValueError(f"Cannot drop non-empty balance row for {member_id}")
        self._rows.pop(member_id, None)

    def row(self, member_id: str) -> dict[str, Decimal]:
        """Copy of one member's balances with the others."""
        return dict(self._rows[member_id])

    def as_dict(self) -> dict[str, dict[str, Decimal]]:
        """Deep copy of the whole sheet."""
        return {member_id: dict(row) for member_id, row in self._rows.items()}

    def is_fully_settled(self, member_id: str) -> bool:
        """True if the member has no open balance with anyone."""
        return not self._rows.get(member_id)

    def entries(self) -> Iterator[tuple[str, str, Decimal]]:
        """Yield each open pair once as (creditor, debtor, amount)."""
        for creditor_id, row in self._rows.items():
            for debtor_id, amount in row.items():
                if amount > 0:
                    yield creditor_id, debtor_id, amount

    # ========================================================================
    # Mutations
    # ========================================================================

    def apply_transfer(self, from_id: str, to_id: str, amount: Decimal) -> None:
        """
        Record that ``from_id`` now owes ``to_id`` ``amount`` more.

        Both rows must exist. Entries that end up below EPSILON are pruned
        from both sides.
        """
        if from_id == to_id:
            return

        from_row = self._rows[from_id]
        to_row = self._rows[to_id]

        to_row[from_id] = to_row.get(from_id, Decimal("0")) + amount
        from_row[to_id] = from_row.get(to_id, Decimal("0")) - amount

        if abs(to_row[from_id]) < EPSILON or abs(from_row[to_id]) < EPSILON:
            del to_row[from_id]
            del from_row[to_id]

        logger.debug(f"Transfer {from_id} -> {to_id}: {amount}")

    def apply_expense(self, expense: Expense) -> None:
        """Every non-payer participant owes the payer their share."""
        for split in expense.splits:
            if split.user_id == expense.paid_by:
                continue
            self.apply_transfer(split.user_id, expense.paid_by, split.amount)
