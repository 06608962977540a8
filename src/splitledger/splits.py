"""Split policies that turn one expense total into per-participant shares."""

from collections.abc import Callable, Sequence
from decimal import Decimal

from .exceptions import ValidationError
from .models import EPSILON, Split, SplitType, to_amount

HUNDRED = Decimal("100")

SplitFunction = Callable[[Decimal, Sequence[str], Sequence[Decimal]], list[Split]]


def _check_value_count(
    split_type: SplitType, participants: Sequence[str], values: Sequence[Decimal]
) -> None:
    if len(values) != len(participants):
        raise ValidationError(
            f"{split_type.value} split needs one value per participant: "
            f"got {len(values)} values for {len(participants)} participants"
        )


def equal_split(
    total: Decimal, participants: Sequence[str], values: Sequence[Decimal]
) -> list[Split]:
    """Every participant owes ``total / n``. Values are ignored."""
    if not participants:
        raise ValidationError("Equal split needs at least one participant")

    share = total / len(participants)
    return [Split(user_id=user_id, amount=share) for user_id in participants]


def exact_split(
    total: Decimal, participants: Sequence[str], values: Sequence[Decimal]
) -> list[Split]:
    """Every participant owes the matching value verbatim."""
    _check_value_count(SplitType.EXACT, participants, values)

    split_total = sum(values, Decimal("0"))
    if abs(split_total - total) > EPSILON:
        raise ValidationError(
            f"Exact split amounts sum to {split_total}, expected {total}"
        )

    return [
        Split(user_id=user_id, amount=value)
        for user_id, value in zip(participants, values, strict=True)
    ]


def percent_split(
    total: Decimal, participants: Sequence[str], values: Sequence[Decimal]
) -> list[Split]:
    """Every participant owes ``value`` percent of the total."""
    _check_value_count(SplitType.PERCENT, participants, values)

    percent_total = sum(values, Decimal("0"))
    if abs(percent_total - HUNDRED) > EPSILON:
        raise ValidationError(
            f"Percent split values sum to {percent_total}, expected 100"
        )

    return [
        Split(user_id=user_id, amount=percent / HUNDRED * total)
        for user_id, percent in zip(participants, values, strict=True)
    ]


def parse_split_type(value: SplitType | str) -> SplitType:
    """Resolve a split policy name such as ``"percent"``."""
    try:
        return SplitType(value)
    except ValueError:
        choices = ", ".join(policy.value for policy in SplitType)
        raise ValidationError(
            f"Unknown split type {value!r}, expected one of: {choices}"
        ) from None


SPLIT_FUNCTIONS: dict[SplitType, SplitFunction] = {
    SplitType.EQUAL: equal_split,
    SplitType.EXACT: exact_split,
    SplitType.PERCENT: percent_split,
}


def calculate_splits(
    split_type: SplitType | str,
    total: Decimal | float | int | str,
    participants: Sequence[str],
    values: Sequence[Decimal | float | int | str] | None = None,
) -> list[Split]:
    """
    Divide an expense total among participants.

    This is a pure function: it only validates and computes.

    Args:
        split_type: Policy to apply (equal, exact or percent)
        total: Expense total
        participants: Participant ids, in the order splits are returned
        values: Per-participant amounts (exact) or percentages (percent)

    Returns:
        One Split per participant, in participant order

    Raises:
        ValidationError: If values are missing, mismatched or inconsistent
    """
    policy = parse_split_type(split_type)
    amounts = [to_amount(value) for value in values or []]
    return SPLIT_FUNCTIONS[policy](to_amount(total), list(participants), amounts)
