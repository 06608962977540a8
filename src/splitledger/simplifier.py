"""Debt simplification: collapse pairwise group debts into fewer payments."""

import logging
from decimal import Decimal

from .balance_sheet import BalanceSheet
from .models import EPSILON, Payment

logger = logging.getLogger(__name__)


def compute_net_positions(sheet: BalanceSheet) -> dict[str, Decimal]:
    """
    Compute each member's net position in a sheet.

    Each pair is counted once, from its positive side, so the mirrored
    entry is not double counted. Positive = owed money overall.

    Returns:
        Net position for every row in the sheet (zero if flat)
    """
    net = {member_id: Decimal("0") for member_id in sheet.member_ids()}
    for creditor_id, debtor_id, amount in sheet.entries():
        net[creditor_id] += amount
        net[debtor_id] -= amount
    return net


def propose_payments(sheet: BalanceSheet) -> list[Payment]:
    """
    Propose a small set of payments that zeroes every net position.

    Creditors and debtors are each sorted by magnitude, largest first; the
    sort is stable, so ties keep the sheet's row order. The largest
    remaining creditor and debtor are then matched greedily. This yields at
    most ``creditors + debtors - 1`` payments, which is a heuristic and not
    a guaranteed minimum.

    Args:
        sheet: The group's current balance sheet

    Returns:
        Payments in the order they were matched
    """
    net = compute_net_positions(sheet)

    # [member_id, remaining magnitude]
    creditors = [
        [member_id, amount] for member_id, amount in net.items() if amount > EPSILON
    ]
    debtors = [
        [member_id, -amount] for member_id, amount in net.items() if amount < -EPSILON
    ]

    creditors.sort(key=lambda entry: entry[1], reverse=True)
    debtors.sort(key=lambda entry: entry[1], reverse=True)

    payments: list[Payment] = []
    i = j = 0
    while i < len(creditors) and j < len(debtors):
        creditor_id, credit = creditors[i]
        debtor_id, debt = debtors[j]

        settle_amount = min(credit, debt)
        payments.append(
            Payment(from_user=debtor_id, to_user=creditor_id, amount=settle_amount)
        )

        creditors[i][1] = credit - settle_amount
        debtors[j][1] = debt - settle_amount

        if creditors[i][1] < EPSILON:
            i += 1
        if debtors[j][1] < EPSILON:
            j += 1

    logger.debug(
        f"Matched {len(creditors)} creditors and {len(debtors)} debtors "
        f"into {len(payments)} payments"
    )
    return payments


def simplify_debts(sheet: BalanceSheet) -> BalanceSheet:
    """
    Build a new sheet holding only the proposed payments.

    The input sheet is not modified. The result keeps a row for every
    member of the input and the same net position for each of them.
    """
    return payments_to_sheet(sheet.member_ids(), propose_payments(sheet))


def payments_to_sheet(
    member_ids: list[str], payments: list[Payment]
) -> BalanceSheet:
    """Build a fresh sheet for the given members holding only these payments."""
    sheet = BalanceSheet(member_ids)
    for payment in payments:
        sheet.apply_transfer(payment.from_user, payment.to_user, payment.amount)
    return sheet
