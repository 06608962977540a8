"""Tests for the Ledger facade."""

import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from splitledger.balance_sheet import BalanceSheet
from splitledger.exceptions import (
    GroupNotFoundError,
    MembershipError,
    PreconditionError,
    UserNotFoundError,
    ValidationError,
)
from splitledger.ledger import Ledger
from splitledger.models import EPSILON, SplitType
from splitledger.notifications import LoggingNotifier, NotificationHub
from splitledger.registry import Registry
from splitledger.simplifier import compute_net_positions


@pytest.fixture
def notifier():
    """A notification sink that records calls."""
    return MagicMock()


@pytest.fixture
def ledger(notifier):
    """A fresh ledger with its own registry."""
    return Ledger(Registry(), NotificationHub([notifier]))


@pytest.fixture
def users(ledger):
    """Four users A, B, C, D."""
    return [ledger.create_user(name) for name in ("A", "B", "C", "D")]


@pytest.fixture
def group(ledger, users):
    """Group G with all four users."""
    return ledger.create_group("G", [user.id for user in users])


def net_positions(ledger: Ledger, group_id: str) -> dict[str, Decimal]:
    """Net position per member, by summing each member's row."""
    group = ledger.registry.get_group(group_id)
    return {
        member_id: sum(
            ledger.group_balances_of(group_id, member_id).values(), Decimal("0")
        )
        for member_id in group.member_ids()
    }


class TestHostelScenario:
    """The Lunch / Dinner walkthrough."""

    def test_lunch_equal_split(self, ledger, users, group):
        """B, C and D each owe A 200."""
        a, b, c, d = users

        ledger.record_expense(
            group.id, "Lunch", 800, a.id, [a.id, b.id, c.id, d.id], SplitType.EQUAL
        )

        assert ledger.group_balances_of(group.id, a.id) == {
            b.id: Decimal("200"),
            c.id: Decimal("200"),
            d.id: Decimal("200"),
        }
        for debtor in (b, c, d):
            assert ledger.group_balances_of(group.id, debtor.id) == {
                a.id: Decimal("-200")
            }

    def test_dinner_exact_split(self, ledger, users, group):
        """A owes C 200, C's own share is ignored, D owes both A and C."""
        a, b, c, d = users
        ledger.record_expense(
            group.id, "Lunch", 800, a.id, [a.id, b.id, c.id, d.id], "equal"
        )

        ledger.record_expense(
            group.id, "Dinner", 700, c.id, [a.id, c.id, d.id], "exact", [200, 300, 200]
        )

        # C owed A 200 from lunch, so the pair nets to zero and is pruned
        assert ledger.group_balances_of(group.id, a.id) == {
            b.id: Decimal("200"),
            d.id: Decimal("200"),
        }
        assert ledger.group_balances_of(group.id, c.id) == {d.id: Decimal("200")}
        assert ledger.group_balances_of(group.id, d.id) == {
            a.id: Decimal("-200"),
            c.id: Decimal("-200"),
        }

    def test_simplify_conserves_net_positions(self, ledger, users, group):
        """Net positions before and after simplification match."""
        a, b, c, d = users
        ledger.record_expense(
            group.id, "Lunch", 800, a.id, [a.id, b.id, c.id, d.id], "equal"
        )
        ledger.record_expense(
            group.id, "Dinner", 700, c.id, [a.id, c.id, d.id], "exact", [200, 300, 200]
        )
        before = net_positions(ledger, group.id)

        payments = ledger.simplify_group(group.id)

        after = net_positions(ledger, group.id)
        for member_id in before:
            assert abs(before[member_id] - after[member_id]) <= EPSILON
        assert before == {
            a.id: Decimal("400"),
            b.id: Decimal("-200"),
            c.id: Decimal("200"),
            d.id: Decimal("-400"),
        }
        assert [(p.from_user, p.to_user, p.amount) for p in payments] == [
            (d.id, a.id, Decimal("400")),
            (b.id, c.id, Decimal("200")),
        ]

    def test_member_leaves_after_settling(self, ledger, users, group):
        """B cannot leave while owing C, and can once settled."""
        a, b, c, d = users
        ledger.record_expense(
            group.id, "Lunch", 800, a.id, [a.id, b.id, c.id, d.id], "equal"
        )
        ledger.record_expense(
            group.id, "Dinner", 700, c.id, [a.id, c.id, d.id], "exact", [200, 300, 200]
        )
        ledger.simplify_group(group.id)

        with pytest.raises(PreconditionError):
            ledger.remove_member(group.id, b.id)
        assert b.id in group.member_ids()

        ledger.settle(group.id, b.id, c.id, 200)
        ledger.remove_member(group.id, b.id)

        assert group.member_ids() == [a.id, c.id, d.id]


class TestRecordExpense:
    """Tests for record_expense validation and atomicity."""

    def test_expense_is_kept_in_group_history(self, ledger, users, group):
        """Group expenses are retained with their splits."""
        a, b, _, _ = users

        expense = ledger.record_expense(group.id, "Taxi", 30, a.id, [a.id, b.id])

        assert ledger.group_expenses(group.id) == [expense]
        assert expense.group_id == group.id
        assert expense.total == Decimal("30")
        assert [s.amount for s in expense.splits] == [Decimal("15"), Decimal("15")]

    def test_percent_split(self, ledger, users, group):
        """Percent shares become balances owed to the payer."""
        a, b, c, _ = users

        ledger.record_expense(
            group.id, "Rent", 1000, a.id, [a.id, b.id, c.id], "percent", [50, 30, 20]
        )

        assert ledger.group_balances_of(group.id, a.id) == {
            b.id: Decimal("300"),
            c.id: Decimal("200"),
        }

    def test_outsider_rejects_whole_expense(self, ledger, users, group):
        """No balance changes and no history when a participant is not a member."""
        a, b, _, _ = users
        outsider = ledger.create_user("E")

        with pytest.raises(MembershipError):
            ledger.record_expense(group.id, "Taxi", 30, a.id, [a.id, b.id, outsider.id])

        assert ledger.group_balances_of(group.id, a.id) == {}
        assert ledger.group_expenses(group.id) == []

    def test_validation_error_leaves_state_untouched(self, ledger, users, group):
        """Inconsistent split values are rejected before any mutation."""
        a, b, _, _ = users

        with pytest.raises(ValidationError):
            ledger.record_expense(
                group.id, "Taxi", 30, a.id, [a.id, b.id], "exact", [10, 10]
            )

        assert ledger.group_balances_of(group.id, b.id) == {}
        assert ledger.group_expenses(group.id) == []

    @pytest.mark.parametrize("total", [0, -10, "abc"])
    def test_rejects_non_positive_total(self, ledger, users, group, total):
        """Totals must be positive numbers."""
        a, b, _, _ = users

        with pytest.raises(ValidationError):
            ledger.record_expense(group.id, "Taxi", total, a.id, [a.id, b.id])

    def test_unknown_group(self, ledger, users):
        """Recording against a missing group fails."""
        with pytest.raises(GroupNotFoundError):
            ledger.record_expense("group_99", "Taxi", 30, users[0].id, [users[0].id])

    def test_notifies_after_recording(self, ledger, users, group, notifier):
        """Subscribers hear about new expenses."""
        a, b, _, _ = users
        notifier.reset_mock()

        ledger.record_expense(group.id, "Taxi", 30, a.id, [a.id, b.id])

        notifier.notify.assert_called_once()
        assert "Taxi" in notifier.notify.call_args.args[0]

    def test_failing_notifier_does_not_roll_back(self, ledger, users, group):
        """A broken subscriber neither blocks others nor undoes the expense."""
        a, b, _, _ = users
        broken = MagicMock()
        broken.notify.side_effect = RuntimeError("smtp down")
        healthy = MagicMock()
        ledger.hub.subscribe(broken)
        ledger.hub.subscribe(healthy)

        ledger.record_expense(group.id, "Taxi", 30, a.id, [a.id, b.id])

        healthy.notify.assert_called_once()
        assert ledger.group_balances_of(group.id, a.id) == {b.id: Decimal("15")}


class TestIndividualScope:
    """Tests for expenses and settlements outside of groups."""

    def test_individual_expense_updates_both_users(self, ledger, users):
        """Payer and participant mappings move in lockstep."""
        _, b, _, d = users

        ledger.record_expense(None, "Coffee", 40, b.id, [b.id, d.id], "equal")

        assert ledger.balances_of(b.id) == {d.id: Decimal("20")}
        assert ledger.balances_of(d.id) == {b.id: Decimal("-20")}
        assert ledger.registry.expenses()[0].group_id is None

    def test_individual_expense_with_several_participants(self, ledger, users):
        """Each participant owes the payer separately."""
        a, b, c, _ = users

        ledger.record_expense(
            None, "Tickets", 90, a.id, [a.id, b.id, c.id], "exact", [30, 20, 40]
        )

        assert ledger.balances_of(a.id) == {b.id: Decimal("20"), c.id: Decimal("40")}
        assert ledger.balances_of(c.id) == {a.id: Decimal("-40")}

    def test_individual_settlement_clears_balance(self, ledger, users):
        """Paying back in full removes the entry on both sides."""
        _, b, _, d = users
        ledger.record_expense(None, "Coffee", 40, b.id, [b.id, d.id])

        ledger.settle(None, d.id, b.id, 20)

        assert ledger.balances_of(b.id) == {}
        assert ledger.balances_of(d.id) == {}

    def test_overpaying_flips_direction(self, ledger, users):
        """Paying more than owed leaves the payer as creditor."""
        _, b, _, d = users
        ledger.record_expense(None, "Coffee", 40, b.id, [b.id, d.id])

        ledger.settle(None, d.id, b.id, 25)

        assert ledger.balances_of(d.id) == {b.id: Decimal("5")}
        assert ledger.balances_of(b.id) == {d.id: Decimal("-5")}

    def test_user_totals(self, ledger, users):
        """A user's totals split owed and receivable amounts."""
        a, b, c, _ = users
        ledger.record_expense(None, "Coffee", 40, a.id, [a.id, b.id])
        ledger.record_expense(None, "Lunch", 30, c.id, [a.id, c.id])

        assert a.total_receivable() == Decimal("20")
        assert a.total_owed() == Decimal("15")

    def test_unknown_user(self, ledger, users):
        """Individual expenses need registered users."""
        with pytest.raises(UserNotFoundError):
            ledger.record_expense(None, "Coffee", 40, users[0].id, ["user_99"])

        assert ledger.balances_of(users[0].id) == {}

    def test_group_balances_are_separate(self, ledger, users, group):
        """Group debts do not show up as individual balances."""
        a, b, _, _ = users

        ledger.record_expense(group.id, "Taxi", 30, a.id, [a.id, b.id])

        assert ledger.balances_of(a.id) == {}


class TestSettle:
    """Tests for settle validation."""

    def test_settle_with_self_rejected(self, ledger, users, group):
        """A user cannot pay themselves."""
        with pytest.raises(ValidationError):
            ledger.settle(group.id, users[0].id, users[0].id, 10)

    def test_non_positive_amount_rejected(self, ledger, users, group):
        """Settlements must move a positive amount."""
        with pytest.raises(ValidationError):
            ledger.settle(group.id, users[0].id, users[1].id, 0)

    def test_outsider_rejected(self, ledger, users, group):
        """Both parties must be members."""
        outsider = ledger.create_user("E")

        with pytest.raises(MembershipError):
            ledger.settle(group.id, users[0].id, outsider.id, 10)

        assert ledger.group_balances_of(group.id, users[0].id) == {}

    def test_settlement_notifies(self, ledger, users, group, notifier):
        """Subscribers hear about settlements."""
        notifier.reset_mock()

        ledger.settle(group.id, users[1].id, users[0].id, 10)

        message = notifier.notify.call_args.args[0]
        assert "Settlement" in message
        assert "B paid A" in message


class TestRegistryIsolation:
    """Each registry keeps its own ids and state."""

    def test_ids_restart_per_registry(self):
        """Two ledgers do not share counters or users."""
        first = Ledger(Registry())
        second = Ledger(Registry())

        assert first.create_user("x").id == "user_0"
        assert second.create_user("y").id == "user_0"
        assert len(first.registry.users()) == 1

    def test_reserve_id_skips_restored_ids(self):
        """New ids never collide with restored ones."""
        registry = Registry()
        registry.reserve_id("user_7")

        assert registry.create_user("x").id == "user_8"

    def test_logging_notifier(self, caplog):
        """The logging notifier writes messages to the log."""
        ledger = Ledger(Registry(), NotificationHub([LoggingNotifier()]))

        with caplog.at_level("INFO", logger="splitledger.notifications"):
            ledger.create_group("Trip")
            user = ledger.create_user("x")
            ledger.add_member("group_0", user.id)

        assert "x joined Trip" in caplog.text


class TestConcurrency:
    """Concurrent writers on one group stay consistent."""

    def test_parallel_expenses_and_simplify(self, ledger, users, group):
        """No expense or settlement is lost while simplification races them."""
        ids = [user.id for user in users]
        rounds = [20, 40, 60, 80]
        errors: list[Exception] = []

        def worker(n: int):
            payer = ids[n]
            payee = ids[(n + 1) % len(ids)]
            try:
                for i in range(rounds[n]):
                    ledger.record_expense(group.id, f"e{n}-{i}", 12, payer, ids)
                    ledger.settle(group.id, payer, payee, 1)
                    if i % 5 == 0:
                        ledger.simplify_group(group.id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(ledger.group_expenses(group.id)) == sum(rounds)

        # Each expense of 12 owes 3 to its payer from every member,
        # and each settlement of 1 moves the payer up and the payee down
        expected = {}
        for n, user_id in enumerate(ids):
            paid = 12 * rounds[n] - 3 * sum(rounds)
            settled = rounds[n] - rounds[n - 1]
            expected[user_id] = Decimal(paid + settled)

        sheet = BalanceSheet.from_dict(group.balance_sheet())
        net = compute_net_positions(sheet)
        for user_id in ids:
            assert abs(net[user_id] - expected[user_id]) <= EPSILON
