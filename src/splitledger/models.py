"""Pydantic domain models for SplitLedger."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .exceptions import ValidationError

# Balances smaller than this are treated as settled
EPSILON = Decimal("0.01")


def to_amount(value: Decimal | float | int | str) -> Decimal:
    """
    Coerce a caller supplied number into a Decimal amount.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return amount


# ============================================================================
# Expense Models
# ============================================================================


class SplitType(str, Enum):
    """Policy used to divide an expense among its participants."""

    EQUAL = "equal"
    EXACT = "exact"
    PERCENT = "percent"


class Split(BaseModel):
    """One participant's share of an expense."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    amount: Decimal


class Expense(BaseModel):
    """A recorded expense. Kept for history, never replayed."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    total: Decimal
    paid_by: str
    splits: tuple[Split, ...]
    split_type: SplitType
    group_id: str | None = None  # None = individual expense
    created_at: datetime = Field(default_factory=datetime.now)


class Payment(BaseModel):
    """A proposed payment from a debtor to a creditor."""

    model_config = ConfigDict(frozen=True)

    from_user: str
    to_user: str
    amount: Decimal


# ============================================================================
# User Models
# ============================================================================


class User(BaseModel):
    """
    A registered user.

    The private balance mapping holds individual (non-group) obligations:
    positive means the other user owes this user, negative means this user
    owes them. It is only mutated by the ledger, always together with the
    counterpart user's mapping.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str | None = None

    _balances: dict[str, Decimal] = PrivateAttr(default_factory=dict)

    @property
    def balances(self) -> dict[str, Decimal]:
        """Copy of the individual balances with other users."""
        return dict(self._balances)

    def total_owed(self) -> Decimal:
        """Total this user has to pay back to others."""
        return sum(
            (-amount for amount in self._balances.values() if amount < 0), Decimal("0")
        )

    def total_receivable(self) -> Decimal:
        """Total others have to pay this user."""
        return sum(
            (amount for amount in self._balances.values() if amount > 0), Decimal("0")
        )


# ============================================================================
# Event Models
# ============================================================================


EventKind = Literal[
    "expense_added",
    "settlement",
    "debts_simplified",
    "member_added",
    "member_removed",
]


class LedgerEvent(BaseModel):
    """Something that happened to the ledger, delivered to notifiers."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    message: str
    group_id: str | None = None
