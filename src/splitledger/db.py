"""SQLite snapshot storage for SplitLedger."""

import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from .balance_sheet import BalanceSheet
from .exceptions import SnapshotError
from .group import Group
from .models import Expense, Split, SplitType, User
from .registry import Registry

_TABLES = (
    "expense_splits",
    "expenses",
    "group_balances",
    "group_members",
    "groups",
    "user_balances",
    "users",
)


class Database:
    """
    SQLite database manager.

    Stores the full state of a registry as a snapshot. Amounts are kept as
    TEXT so Decimal values survive the round trip unchanged.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                position INTEGER NOT NULL
            )
        """
        )

        # Individual (non-group) balances, both sides of every pair
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS user_balances (
                user_id TEXT NOT NULL REFERENCES users(id),
                other_id TEXT NOT NULL REFERENCES users(id),
                amount TEXT NOT NULL,
                PRIMARY KEY (user_id, other_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS groups (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                position INTEGER NOT NULL
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id TEXT NOT NULL REFERENCES groups(id),
                user_id TEXT NOT NULL REFERENCES users(id),
                position INTEGER NOT NULL,
                PRIMARY KEY (group_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_balances (
                group_id TEXT NOT NULL REFERENCES groups(id),
                member_id TEXT NOT NULL,
                other_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                PRIMARY KEY (group_id, member_id, other_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                group_id TEXT REFERENCES groups(id),
                description TEXT NOT NULL,
                total TEXT NOT NULL,
                paid_by TEXT NOT NULL REFERENCES users(id),
                split_type TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                position INTEGER NOT NULL
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_splits (
                expense_id TEXT NOT NULL REFERENCES expenses(id),
                position INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                PRIMARY KEY (expense_id, position)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Saving
    # ========================================================================

    def save_registry(self, registry: Registry) -> None:
        """Replace the stored snapshot with the registry's current state."""
        cursor = self.conn.cursor()
        try:
            for table in _TABLES:
                cursor.execute(f"DELETE FROM {table}")

            for position, user in enumerate(registry.users()):
                cursor.execute(
                    "INSERT INTO users (id, name, email, position) VALUES (?, ?, ?, ?)",
                    (user.id, user.name, user.email, position),
                )
                cursor.executemany(
                    """
                    INSERT INTO user_balances (user_id, other_id, amount)
                    VALUES (?, ?, ?)
                    """,
                    [
                        (user.id, other_id, str(amount))
                        for other_id, amount in user.balances.items()
                    ],
                )

            expense_position = 0
            for position, group in enumerate(registry.groups()):
                with group.lock:
                    cursor.execute(
                        "INSERT INTO groups (id, name, position) VALUES (?, ?, ?)",
                        (group.id, group.name, position),
                    )
                    cursor.executemany(
                        """
                        INSERT INTO group_members (group_id, user_id, position)
                        VALUES (?, ?, ?)
                        """,
                        [
                            (group.id, member_id, index)
                            for index, member_id in enumerate(group.member_ids())
                        ],
                    )
                    cursor.executemany(
                        """
                        INSERT INTO group_balances (
                            group_id, member_id, other_id, amount
                        ) VALUES (?, ?, ?, ?)
                        """,
                        [
                            (group.id, member_id, other_id, str(amount))
                            for member_id, row in group.balance_sheet().items()
                            for other_id, amount in row.items()
                        ],
                    )
                    for expense in group.expenses:
                        self._insert_expense(cursor, expense, expense_position)
                        expense_position += 1

            for expense in registry.expenses():
                self._insert_expense(cursor, expense, expense_position)
                expense_position += 1

            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def _insert_expense(
        self, cursor: sqlite3.Cursor, expense: Expense, position: int
    ) -> None:
        cursor.execute(
            """
            INSERT INTO expenses (
                id, group_id, description, total, paid_by,
                split_type, created_at, position
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                expense.id,
                expense.group_id,
                expense.description,
                str(expense.total),
                expense.paid_by,
                expense.split_type.value,
                expense.created_at.isoformat(),
                position,
            ),
        )
        cursor.executemany(
            """
            INSERT INTO expense_splits (expense_id, position, user_id, amount)
            VALUES (?, ?, ?, ?)
            """,
            [
                (expense.id, index, split.user_id, str(split.amount))
                for index, split in enumerate(expense.splits)
            ],
        )

    # ========================================================================
    # Loading
    # ========================================================================

    def load_registry(self) -> Registry:
        """
        Rebuild a registry from the stored snapshot.

        Raises:
            SnapshotError: If stored balances break symmetry or reference
                unknown users
        """
        registry = Registry()
        cursor = self.conn.cursor()

        cursor.execute("SELECT id, name, email FROM users ORDER BY position")
        users = {
            row["id"]: User(id=row["id"], name=row["name"], email=row["email"])
            for row in cursor.fetchall()
        }

        cursor.execute("SELECT user_id, other_id, amount FROM user_balances")
        individual: dict[str, dict[str, Decimal]] = {user_id: {} for user_id in users}
        for row in cursor.fetchall():
            if row["user_id"] not in users or row["other_id"] not in users:
                raise SnapshotError(
                    f"Balance {row['user_id']}->{row['other_id']} "
                    f"references unknown user"
                )
            individual[row["user_id"]][row["other_id"]] = Decimal(row["amount"])

        # Validate symmetry, then hand the rows over to their users
        BalanceSheet.from_dict(individual)
        for user_id, user in users.items():
            user._balances.update(individual[user_id])
            registry.restore_user(user)

        expenses = self._load_expenses(cursor)

        cursor.execute("SELECT id, name FROM groups ORDER BY position")
        for group_row in cursor.fetchall():
            group = Group(group_row["id"], group_row["name"])

            cursor.execute(
                """
                SELECT user_id FROM group_members
                WHERE group_id = ? ORDER BY position
                """,
                (group.id,),
            )
            member_ids = [row["user_id"] for row in cursor.fetchall()]
            unknown = [user_id for user_id in member_ids if user_id not in users]
            if unknown:
                raise SnapshotError(
                    f"Group {group.id} lists unknown member(s): {', '.join(unknown)}"
                )

            cursor.execute(
                """
                SELECT member_id, other_id, amount FROM group_balances
                WHERE group_id = ?
                """,
                (group.id,),
            )
            rows: dict[str, dict[str, Decimal]] = {
                user_id: {} for user_id in member_ids
            }
            for row in cursor.fetchall():
                if row["member_id"] not in rows:
                    raise SnapshotError(
                        f"Group {group.id} has a balance row for non-member "
                        f"{row['member_id']}"
                    )
                rows[row["member_id"]][row["other_id"]] = Decimal(row["amount"])

            group.restore(
                members=[users[user_id] for user_id in member_ids],
                sheet=BalanceSheet.from_dict(rows),
                expenses=[e for e in expenses if e.group_id == group.id],
            )
            registry.restore_group(group)

        for expense in expenses:
            if expense.group_id is None:
                registry.add_expense(expense)
            else:
                registry.reserve_id(expense.id)

        return registry

    def _load_expenses(self, cursor: sqlite3.Cursor) -> list[Expense]:
        cursor.execute(
            """
            SELECT expense_id, user_id, amount FROM expense_splits
            ORDER BY expense_id, position
            """
        )
        splits: dict[str, list[Split]] = {}
        for row in cursor.fetchall():
            splits.setdefault(row["expense_id"], []).append(
                Split(user_id=row["user_id"], amount=Decimal(row["amount"]))
            )

        cursor.execute(
            """
            SELECT id, group_id, description, total, paid_by, split_type, created_at
            FROM expenses
            ORDER BY position
            """
        )
        return [
            Expense(
                id=row["id"],
                group_id=row["group_id"],
                description=row["description"],
                total=Decimal(row["total"]),
                paid_by=row["paid_by"],
                splits=tuple(splits.get(row["id"], [])),
                split_type=SplitType(row["split_type"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in cursor.fetchall()
        ]
