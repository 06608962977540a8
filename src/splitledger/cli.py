"""CLI for SplitLedger using Typer."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .db import Database
from .exceptions import SplitLedgerError
from .ledger import Ledger
from .models import Expense, Payment
from .notifications import NotificationHub
from .registry import Registry

app = typer.Typer(
    name="splitledger",
    help="Track shared expenses and settle group debts",
)
user_app = typer.Typer(help="Register users and inspect their balances")
group_app = typer.Typer(help="Manage groups, members and group balances")
expense_app = typer.Typer(help="Record expenses")

app.add_typer(user_app, name="user")
app.add_typer(group_app, name="group")
app.add_typer(expense_app, name="expense")

console = Console()

VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class ConsoleNotifier:
    """Prints ledger notifications to the terminal."""

    def __init__(self, output: Console):
        self.output = output

    def notify(self, message: str) -> None:
        self.output.print(f"[dim]» {message}[/dim]")


@contextmanager
def ledger_session(verbose: bool = False, persist: bool = True) -> Iterator[Ledger]:
    """
    Load the stored ledger, yield it, then save it back.

    Domain errors are reported and turned into exit code 1; nothing is
    saved when the command fails.
    """
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)

        hub = NotificationHub()
        if settings.console_notifications:
            hub.subscribe(ConsoleNotifier(console))

        ledger = Ledger(db.load_registry(), hub)
        yield ledger

        if persist:
            db.save_registry(ledger.registry)
    except SplitLedgerError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        raise typer.Exit(1) from e
    finally:
        if db is not None:
            db.close()


# ============================================================================
# Display helpers
# ============================================================================


def format_money(amount: Decimal | float, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (85.02)
    Positive amounts have spaces:      85.02
    """
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"([red]{abs_amount:,.2f}[/red])"
        return f"({abs_amount:,.2f})"
    if use_color:
        return f" [green]{abs_amount:,.2f}[/green] "
    return f" {abs_amount:,.2f} "


def display_balances(ledger: Ledger, title: str, balances: dict[str, Decimal]):
    """Show one user's balances with everyone else."""
    if not balances:
        console.print(f"[bold]{title}[/bold]: no outstanding balances")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("With", style="cyan")
    table.add_column("Direction")
    table.add_column("Amount", justify="right")

    for other_id, amount in balances.items():
        other = ledger.registry.get_user(other_id)
        direction = "owes you" if amount > 0 else "you owe"
        table.add_row(f"{other.name} ({other.id})", direction, format_money(amount))

    console.print(table)

    owed = sum((-a for a in balances.values() if a < 0), Decimal("0"))
    receivable = sum((a for a in balances.values() if a > 0), Decimal("0"))
    console.print(f"  Total you owe: {format_money(-owed)}")
    console.print(f"  Total others owe you: {format_money(receivable)}")


def display_group_balances(ledger: Ledger, group_id: str):
    """Show every member's balances in a group."""
    group = ledger.registry.get_group(group_id)
    console.print(f"\n[bold]=== Group Balances for {group.name} ===[/bold]")
    for member in group.members:
        display_balances(
            ledger,
            f"{member.name}'s balances in group",
            group.balances_of(member.id),
        )


def display_payments(ledger: Ledger, payments: list[Payment]):
    """Show simplified payments."""
    if not payments:
        console.print("[green]✓ Everyone is settled up[/green]")
        return

    table = Table(title="Payments", show_header=True, header_style="bold magenta")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")
    for payment in payments:
        table.add_row(
            ledger.registry.get_user(payment.from_user).name,
            ledger.registry.get_user(payment.to_user).name,
            format_money(payment.amount),
        )
    console.print(table)


def display_expenses(ledger: Ledger, expenses: list[Expense]):
    """Show an expense history table."""
    table = Table(title="Expenses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Description", style="cyan", width=30)
    table.add_column("Paid by")
    table.add_column("Split")
    table.add_column("Total", justify="right")
    for expense in expenses:
        desc = expense.description
        table.add_row(
            expense.id,
            desc[:30] + "..." if len(desc) > 30 else desc,
            ledger.registry.get_user(expense.paid_by).name,
            expense.split_type.value,
            format_money(expense.total),
        )
    console.print(table)


# ============================================================================
# Users
# ============================================================================


@user_app.command("add")
def user_add(
    name: str = typer.Argument(..., help="Display name"),
    email: str | None = typer.Option(None, "--email", "-e", help="Email address"),
    verbose: bool = VerboseOption,
):
    """Register a new user."""
    with ledger_session(verbose) as ledger:
        user = ledger.create_user(name, email)
        console.print(f"[green]✓ Created user {user.name} (ID: {user.id})[/green]")


@user_app.command("list")
def user_list(verbose: bool = VerboseOption):
    """List registered users."""
    with ledger_session(verbose, persist=False) as ledger:
        table = Table(title="Users", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Email")
        for user in ledger.registry.users():
            table.add_row(user.id, user.name, user.email or "—")
        console.print(table)


@user_app.command("balances")
def user_balances(
    user_id: str = typer.Argument(..., help="User ID"),
    verbose: bool = VerboseOption,
):
    """Show a user's individual (non-group) balances."""
    with ledger_session(verbose, persist=False) as ledger:
        user = ledger.registry.get_user(user_id)
        display_balances(
            ledger, f"Balance for {user.name}", ledger.balances_of(user_id)
        )


# ============================================================================
# Groups
# ============================================================================


@group_app.command("create")
def group_create(
    name: str = typer.Argument(..., help="Group name"),
    members: list[str] | None = typer.Option(
        None, "--member", "-m", help="User ID to add (repeatable)"
    ),
    verbose: bool = VerboseOption,
):
    """Create a group, optionally with initial members."""
    with ledger_session(verbose) as ledger:
        group = ledger.create_group(name, members or [])
        console.print(f"[green]✓ Created group {group.name} (ID: {group.id})[/green]")


@group_app.command("list")
def group_list(verbose: bool = VerboseOption):
    """List groups and their members."""
    with ledger_session(verbose, persist=False) as ledger:
        table = Table(title="Groups", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Members")
        for group in ledger.registry.groups():
            names = ", ".join(member.name for member in group.members)
            table.add_row(group.id, group.name, names or "—")
        console.print(table)


@group_app.command("add-member")
def group_add_member(
    group_id: str = typer.Argument(..., help="Group ID"),
    user_id: str = typer.Argument(..., help="User ID"),
    verbose: bool = VerboseOption,
):
    """Add a user to a group."""
    with ledger_session(verbose) as ledger:
        if ledger.add_member(group_id, user_id):
            console.print(f"[green]✓ Added {user_id} to {group_id}[/green]")
        else:
            console.print(f"[yellow]{user_id} is already in {group_id}[/yellow]")


@group_app.command("remove-member")
def group_remove_member(
    group_id: str = typer.Argument(..., help="Group ID"),
    user_id: str = typer.Argument(..., help="User ID"),
    verbose: bool = VerboseOption,
):
    """Remove a member whose group balances are settled."""
    with ledger_session(verbose) as ledger:
        user = ledger.remove_member(group_id, user_id)
        console.print(f"[green]✓ {user.name} left {group_id}[/green]")


@group_app.command("balances")
def group_balances(
    group_id: str = typer.Argument(..., help="Group ID"),
    user_id: str | None = typer.Option(
        None, "--user", "-u", help="Only show this member"
    ),
    verbose: bool = VerboseOption,
):
    """Show balances inside a group."""
    with ledger_session(verbose, persist=False) as ledger:
        if user_id:
            user = ledger.registry.get_user(user_id)
            display_balances(
                ledger,
                f"{user.name}'s balances in group",
                ledger.group_balances_of(group_id, user_id),
            )
        else:
            display_group_balances(ledger, group_id)


@group_app.command("simplify")
def group_simplify(
    group_id: str = typer.Argument(..., help="Group ID"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show the payments without changing balances"
    ),
    verbose: bool = VerboseOption,
):
    """Collapse a group's debts into a small set of payments."""
    with ledger_session(verbose, persist=not dry_run) as ledger:
        if dry_run:
            payments = ledger.registry.get_group(group_id).proposed_payments()
        else:
            payments = ledger.simplify_group(group_id)
        display_payments(ledger, payments)


@group_app.command("expenses")
def group_expenses(
    group_id: str = typer.Argument(..., help="Group ID"),
    verbose: bool = VerboseOption,
):
    """Show the expense history of a group."""
    with ledger_session(verbose, persist=False) as ledger:
        display_expenses(ledger, ledger.group_expenses(group_id))


# ============================================================================
# Expenses and settlements
# ============================================================================


@expense_app.command("add")
def expense_add(
    description: str = typer.Argument(..., help="What the expense was for"),
    total: str = typer.Argument(..., help="Expense total"),
    paid_by: str = typer.Option(..., "--paid-by", "-p", help="ID of the payer"),
    participants: list[str] = typer.Option(
        ..., "--with", "-w", help="Participant ID (repeatable, in split order)"
    ),
    group_id: str | None = typer.Option(
        None, "--group", "-g", help="Group ID (omit for an individual expense)"
    ),
    split: str = typer.Option(
        "equal", "--split", "-s", help="Split type: equal, exact or percent"
    ),
    values: list[str] | None = typer.Option(
        None, "--value", help="Amount or percent per participant (repeatable)"
    ),
    verbose: bool = VerboseOption,
):
    """Record an expense, in a group or between individuals."""
    with ledger_session(verbose) as ledger:
        expense = ledger.record_expense(
            group_id=group_id,
            description=description,
            total=total,
            paid_by=paid_by,
            participant_ids=participants,
            split_type=split,
            values=values,
        )

        console.print(
            f"[green]✓ Recorded {expense.id}: {expense.description} "
            f"({format_money(expense.total, use_color=False).strip()})[/green]"
        )
        for item in expense.splits:
            name = ledger.registry.get_user(item.user_id).name
            console.print(f"  {name}: {format_money(item.amount)}")


@app.command()
def settle(
    from_id: str = typer.Argument(..., help="ID of the user paying"),
    to_id: str = typer.Argument(..., help="ID of the user being paid"),
    amount: str = typer.Argument(..., help="Amount paid"),
    group_id: str | None = typer.Option(
        None, "--group", "-g", help="Group ID (omit for individual balances)"
    ),
    verbose: bool = VerboseOption,
):
    """Record a direct payment between two users."""
    with ledger_session(verbose) as ledger:
        ledger.settle(group_id, from_id, to_id, amount)
        console.print(f"[green]✓ {from_id} paid {to_id} {amount}[/green]")


@app.command()
def demo(verbose: bool = VerboseOption):
    """Run a walkthrough against a throwaway in-memory ledger."""
    setup_logging(verbose)
    ledger = Ledger(Registry(), NotificationHub([ConsoleNotifier(console)]))

    console.print("\n[bold blue]Creating users...[/bold blue]")
    raj = ledger.create_user("Raj", "raj@example.com")
    manoj = ledger.create_user("Manoj", "manoj@example.com")
    pradeep = ledger.create_user("Pradeep", "pradeep@example.com")
    gavendra = ledger.create_user("Gavendra", "gavendra@example.com")

    console.print("\n[bold blue]Creating group and adding members...[/bold blue]")
    hostel = ledger.create_group("Hostel Expenses")
    for user in (raj, manoj, pradeep, gavendra):
        ledger.add_member(hostel.id, user.id)

    console.print("\n[bold blue]Adding expenses in group...[/bold blue]")
    ledger.record_expense(
        hostel.id,
        "Lunch",
        800,
        raj.id,
        [raj.id, manoj.id, pradeep.id, gavendra.id],
        "equal",
    )
    ledger.record_expense(
        hostel.id,
        "Dinner",
        700,
        pradeep.id,
        [raj.id, pradeep.id, gavendra.id],
        "exact",
        [200, 300, 200],
    )
    display_group_balances(ledger, hostel.id)

    console.print("\n[bold blue]Simplifying debts...[/bold blue]")
    display_payments(ledger, ledger.simplify_group(hostel.id))
    display_group_balances(ledger, hostel.id)

    console.print("\n[bold blue]Adding individual expense...[/bold blue]")
    ledger.record_expense(None, "Coffee", 40, manoj.id, [manoj.id, gavendra.id])
    for user in (raj, manoj, pradeep, gavendra):
        display_balances(
            ledger, f"Balance for {user.name}", ledger.balances_of(user.id)
        )

    console.print(f"\n[bold blue]Attempting to remove {manoj.name}...[/bold blue]")
    try:
        ledger.remove_member(hostel.id, manoj.id)
    except SplitLedgerError as e:
        console.print(f"[yellow]⚠️  {e}[/yellow]")

    console.print(f"\n[bold blue]Settling {manoj.name}'s group debt...[/bold blue]")
    for other_id, amount in ledger.group_balances_of(hostel.id, manoj.id).items():
        if amount < 0:
            ledger.settle(hostel.id, manoj.id, other_id, -amount)

    console.print(f"\n[bold blue]Removing {manoj.name} again...[/bold blue]")
    ledger.remove_member(hostel.id, manoj.id)
    display_group_balances(ledger, hostel.id)

    console.print("\n[bold green]✓ Demo complete[/bold green]")


if __name__ == "__main__":
    app()
