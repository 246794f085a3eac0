"""CLI for Bill Split using Typer."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .db import Database
from .exceptions import BillSplitError
from .models import (
    YOU,
    AnyTransaction,
    PaymentDetails,
    SettlementTransaction,
    SplitTransaction,
    TransactionTemplate,
)
from .money import format_cents, to_cents
from .service import LedgerService
from .ui import confirm, select_category_interactive

app = typer.Typer(
    name="bill-split",
    help="Track shared expenses with friends and settle up",
)
friend_app = typer.Typer(help="Manage friends")
settlement_app = typer.Typer(help="Manage settlement status")
budget_app = typer.Typer(help="Manage budgets")
template_app = typer.Typer(help="Manage split templates")
reminders_app = typer.Typer(help="Balance reminders")
app.add_typer(friend_app, name="friend")
app.add_typer(settlement_app, name="settlement")
app.add_typer(budget_app, name="budget")
app.add_typer(template_app, name="template")
app.add_typer(reminders_app, name="reminders")

console = Console()

VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[tuple[LedgerService, Settings]]:
    """Load settings and the stored ledger; report errors and close the database."""
    setup_logging(verbose)
    db = None
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        yield LedgerService(settings, db), settings
    except BillSplitError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def format_money(cents: int, symbol: str = "€", use_color: bool = True) -> str:
    """
    Format a balance in accounting style.

    Negative amounts (the user owes) use parentheses: (€85.02)
    Positive amounts have spaces so decimal points align:  €85.02
    """
    amount = format_cents(abs(cents), symbol)
    if cents < 0:
        return f"([red]{amount}[/red])" if use_color else f"({amount})"
    return f" [green]{amount}[/green] " if use_color else f" {amount} "


def parse_shares(entries: list[str], total: str) -> dict[str, object]:
    """
    Parse ``friend=amount`` share arguments.

    Entries without an amount split the total evenly with the user; any
    leftover cent stays with the user.
    """
    shares: dict[str, object] = {}
    even = [entry.strip() for entry in entries if "=" not in entry]
    for entry in entries:
        if "=" in entry:
            key, amount = entry.split("=", 1)
            shares[key.strip()] = amount.strip()
    if even:
        per_person = to_cents(total) // (len(even) + 1)
        for key in even:
            shares[key] = per_person / 100
    return shares


def _friend_names(service: LedgerService) -> dict[str, str]:
    return {friend.id: friend.name for friend in service.state.friends}


def _describe(tx: AnyTransaction, names: dict[str, str]) -> str:
    if isinstance(tx, SettlementTransaction):
        return f"Settlement with {names.get(tx.friend_id, tx.friend_id)}"
    if isinstance(tx, SplitTransaction):
        friends = ", ".join(names.get(fid, fid) for fid in tx.friend_ids) or "nobody"
        payer = "you" if tx.payer == YOU else names.get(tx.payer, tx.payer)
        return f"{payer} paid, split with {friends}"
    return "[dim]Unrecognized record[/dim]"


# ============================================================================
# Friends
# ============================================================================


@friend_app.command("add")
def friend_add(
    name: str = typer.Argument(..., help="Friend's name"),
    email: str | None = typer.Option(None, "--email", "-e", help="Email address"),
    tag: str = typer.Option("friend", "--tag", "-t", help="Grouping tag"),
    verbose: bool = VERBOSE_OPTION,
):
    """Add a friend."""
    with open_service(verbose) as (service, _):
        friend = service.add_friend(name, email=email, tag=tag)
        console.print(f"[green]✓ Friend {friend.name} ({friend.id})[/green]")


@friend_app.command("list")
def friend_list(verbose: bool = VERBOSE_OPTION):
    """List friends with their balances."""
    with open_service(verbose) as (service, settings):
        rows = service.balances()
        if not rows:
            console.print("[yellow]No friends yet.[/yellow]")
            return

        table = Table(title="Friends", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Email")
        table.add_column("Tag", style="dim")
        table.add_column("Balance", justify="right")
        for friend, balance in rows:
            marker = " *" if friend.id == service.state.selected_id else ""
            table.add_row(
                friend.id,
                friend.name + marker,
                friend.email or "",
                friend.tag,
                format_money(balance, settings.currency_symbol),
            )
        console.print(table)


@friend_app.command("remove")
def friend_remove(
    friend: str = typer.Argument(..., help="Friend id, email or name"),
    verbose: bool = VERBOSE_OPTION,
):
    """Remove a friend whose balance is settled."""
    with open_service(verbose) as (service, _):
        removed = service.remove_friend(friend)
        console.print(f"[green]✓ Removed {removed.name}[/green]")


# ============================================================================
# Splits and history
# ============================================================================


@app.command()
def split(
    total: str = typer.Argument(..., help="Total amount"),
    shares: list[str] = typer.Option(
        ..., "--with", "-w", help="Friend share as name=amount, or name for an even split"
    ),
    payer: str = typer.Option(YOU, "--payer", "-p", help="'you' or the friend who paid"),
    your_share: str | None = typer.Option(None, "--your-share", help="Your own share"),
    category: str | None = typer.Option(None, "--category", "-c", help="Expense category"),
    pick: bool = typer.Option(False, "--pick", help="Choose the category interactively"),
    note: str = typer.Option("", "--note", "-n", help="Note"),
    verbose: bool = VERBOSE_OPTION,
):
    """Record a shared expense."""
    with open_service(verbose) as (service, settings):
        if pick and category is None:
            category = select_category_interactive(
                settings.categories, note or f"Split of {total}"
            )
        tx = service.add_split(
            total,
            parse_shares(shares, total),
            payer=payer,
            your_share=your_share,
            category=category,
            note=note,
        )
        names = _friend_names(service)
        console.print(
            f"[green]✓ Recorded {format_cents(tx.total_cents, settings.currency_symbol)} "
            f"({tx.category}): {_describe(tx, names)}[/green]"
        )
        for effect in tx.effects:
            console.print(
                f"  {names.get(effect.friend_id, effect.friend_id)}: "
                f"{format_money(effect.delta_cents, settings.currency_symbol)}"
            )


@app.command()
def history(
    friend: str | None = typer.Option(None, "--friend", "-f", help="Only this friend"),
    category: str = typer.Option("All", "--category", "-c", help="Only this category"),
    start: str | None = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    limit: int = typer.Option(20, "--limit", "-l", help="Rows to show"),
    verbose: bool = VERBOSE_OPTION,
):
    """Show recent transactions."""
    with open_service(verbose) as (service, settings):
        transactions = service.history(friend, category, start, end)
        if not transactions:
            console.print("[yellow]No transactions found.[/yellow]")
            return

        names = _friend_names(service)
        table = Table(title="Transactions", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim", width=10)
        table.add_column("Date")
        table.add_column("Description", style="cyan")
        table.add_column("Category", style="yellow")
        table.add_column("Amount", justify="right")
        table.add_column("Status", style="dim")
        for tx in transactions[:limit]:
            if isinstance(tx, SplitTransaction):
                row = [
                    tx.id[:8],
                    tx.created_at.date().isoformat(),
                    _describe(tx, names),
                    tx.category,
                    format_money(tx.total_cents, settings.currency_symbol, use_color=False),
                    "",
                ]
            elif isinstance(tx, SettlementTransaction):
                row = [
                    tx.id[:8],
                    tx.created_at.date().isoformat(),
                    _describe(tx, names),
                    tx.category or "",
                    format_money(tx.delta_cents, settings.currency_symbol),
                    tx.settlement_status,
                ]
            else:
                row = [tx.id or "", "", _describe(tx, names), "", "", ""]
            table.add_row(*row)
        console.print(table)


# ============================================================================
# Settlements
# ============================================================================


@app.command()
def settle(
    friend: str = typer.Argument(..., help="Friend id, email or name"),
    amount: str | None = typer.Option(None, "--amount", "-a", help="Amount (default: all)"),
    paid: bool = typer.Option(False, "--paid", help="Record the payment as confirmed"),
    method: str | None = typer.Option(None, "--method", help="Payment method"),
    reference: str | None = typer.Option(None, "--reference", help="Payment reference"),
    due_date: str | None = typer.Option(None, "--due-date", help="Due date"),
    memo: str | None = typer.Option(None, "--memo", help="Payment memo"),
    note: str = typer.Option("", "--note", "-n", help="Note"),
    verbose: bool = VERBOSE_OPTION,
):
    """Settle up the balance with a friend."""
    with open_service(verbose) as (service, settings):
        payment = None
        if any((method, reference, due_date, memo)):
            payment = PaymentDetails(
                method=method, reference=reference, due_date=due_date, memo=memo
            )
        settlement = service.settle_up(
            friend, amount, mark_paid=paid, payment=payment, note=note
        )
        console.print(
            f"[green]✓ Settlement {settlement.id} ({settlement.settlement_status}): "
            f"{format_cents(settlement.delta_cents, settings.currency_symbol)}[/green]"
        )


@settlement_app.command("confirm")
def settlement_confirm(
    transaction_id: str = typer.Argument(..., help="Settlement id"),
    verbose: bool = VERBOSE_OPTION,
):
    """Mark a settlement as paid."""
    with open_service(verbose) as (service, _):
        tx = service.confirm_settlement(transaction_id)
        console.print(f"[green]✓ Settlement {tx.id} is {tx.settlement_status}[/green]")


@settlement_app.command("cancel")
def settlement_cancel(
    transaction_id: str = typer.Argument(..., help="Settlement id"),
    verbose: bool = VERBOSE_OPTION,
):
    """Cancel a settlement."""
    with open_service(verbose) as (service, _):
        tx = service.cancel_settlement(transaction_id)
        console.print(f"[green]✓ Settlement {tx.id} is {tx.settlement_status}[/green]")


@settlement_app.command("reopen")
def settlement_reopen(
    transaction_id: str = typer.Argument(..., help="Settlement id"),
    verbose: bool = VERBOSE_OPTION,
):
    """Move a confirmed or cancelled settlement back to pending."""
    with open_service(verbose) as (service, _):
        tx = service.reopen_settlement(transaction_id)
        console.print(f"[green]✓ Settlement {tx.id} is {tx.settlement_status}[/green]")


@settlement_app.command("list")
def settlement_list(verbose: bool = VERBOSE_OPTION):
    """Show the latest settlement per friend."""
    with open_service(verbose) as (service, settings):
        summaries = service.settlement_summaries()
        if not summaries:
            console.print("[yellow]No settlements yet.[/yellow]")
            return

        names = _friend_names(service)
        table = Table(title="Latest Settlements", show_header=True, header_style="bold magenta")
        table.add_column("Friend", style="cyan")
        table.add_column("ID", style="dim")
        table.add_column("Status")
        table.add_column("Cleared", justify="right")
        table.add_column("Updated", style="dim")
        for friend_id, summary in summaries.items():
            table.add_row(
                names.get(friend_id, friend_id),
                summary.transaction_id,
                summary.status,
                format_money(summary.balance_cents, settings.currency_symbol),
                summary.timestamp.isoformat(timespec="minutes") if summary.timestamp else "",
            )
        console.print(table)


@app.command()
def balances(verbose: bool = VERBOSE_OPTION):
    """Show who owes whom."""
    with open_service(verbose) as (service, settings):
        rows = [(friend, balance) for friend, balance in service.balances() if balance != 0]
        if not rows:
            console.print("[green]✓ All settled up.[/green]")
            return

        table = Table(title="Balances", show_header=True, header_style="bold magenta")
        table.add_column("Friend", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("", style="dim")
        for friend, balance in rows:
            direction = "owes you" if balance > 0 else "you owe"
            table.add_row(
                friend.name, format_money(balance, settings.currency_symbol), direction
            )
        console.print(table)


# ============================================================================
# Templates
# ============================================================================


def _describe_recurrence(template: TransactionTemplate) -> str:
    recurrence = template.recurrence
    if recurrence is None:
        return ""
    return f"{recurrence.frequency}, next {recurrence.next_occurrence.isoformat()}"


@template_app.command("add")
def template_add(
    name: str = typer.Argument(..., help="Template name"),
    total: str = typer.Argument(..., help="Total amount"),
    shares: list[str] = typer.Option(
        ..., "--with", "-w", help="Friend share as name=amount, or name for an even split"
    ),
    payer: str = typer.Option(YOU, "--payer", "-p", help="'you' or the friend who pays"),
    your_share: str | None = typer.Option(None, "--your-share", help="Your own share"),
    category: str | None = typer.Option(None, "--category", "-c", help="Expense category"),
    note: str | None = typer.Option(None, "--note", "-n", help="Note"),
    every: str | None = typer.Option(None, "--every", help="Repeat weekly, monthly or yearly"),
    next_due: str | None = typer.Option(None, "--next", help="Next due date (YYYY-MM-DD)"),
    remind_days: int | None = typer.Option(
        None, "--remind-days", help="Flag the template this many days before it is due"
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Save a split preset."""
    with open_service(verbose) as (service, settings):
        template = service.add_template(
            name,
            total,
            parse_shares(shares, total),
            payer=payer,
            your_share=your_share,
            category=category,
            note=note,
            frequency=every,
            next_occurrence=next_due,
            reminder_days_before=remind_days,
        )
        console.print(
            f"[green]✓ Template {template.name}: "
            f"{format_cents(template.total_cents, settings.currency_symbol)} "
            f"({template.category})[/green]"
        )


@template_app.command("save")
def template_save(
    transaction_id: str = typer.Argument(..., help="Split id"),
    name: str = typer.Argument(..., help="Template name"),
    every: str | None = typer.Option(None, "--every", help="Repeat weekly, monthly or yearly"),
    next_due: str | None = typer.Option(None, "--next", help="Next due date (YYYY-MM-DD)"),
    remind_days: int | None = typer.Option(
        None, "--remind-days", help="Flag the template this many days before it is due"
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Save an existing split as a template."""
    with open_service(verbose) as (service, _):
        template = service.save_split_as_template(
            transaction_id,
            name,
            frequency=every,
            next_occurrence=next_due,
            reminder_days_before=remind_days,
        )
        console.print(f"[green]✓ Template {template.name} ({template.id})[/green]")


@template_app.command("list")
def template_list(verbose: bool = VERBOSE_OPTION):
    """List saved templates."""
    with open_service(verbose) as (service, settings):
        templates = service.list_templates()
        if not templates:
            console.print("[yellow]No templates yet.[/yellow]")
            return

        names = _friend_names(service)
        table = Table(title="Templates", show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Total", justify="right")
        table.add_column("Category", style="yellow")
        table.add_column("With")
        table.add_column("Repeats", style="dim")
        for template in templates:
            friends = ", ".join(
                names.get(p.id, p.id) for p in template.participants if p.id != YOU
            )
            table.add_row(
                template.name,
                format_cents(template.total_cents, settings.currency_symbol),
                template.category,
                friends,
                _describe_recurrence(template),
            )
        console.print(table)


@template_app.command("remove")
def template_remove(
    template: str = typer.Argument(..., help="Template id or name"),
    verbose: bool = VERBOSE_OPTION,
):
    """Delete a template."""
    with open_service(verbose) as (service, _):
        removed = service.remove_template(template)
        console.print(f"[green]✓ Removed template {removed.name}[/green]")


@template_app.command("use")
def template_use(
    template: str = typer.Argument(..., help="Template id or name"),
    verbose: bool = VERBOSE_OPTION,
):
    """Record a split from a template."""
    with open_service(verbose) as (service, settings):
        tx = service.use_template(template)
        console.print(
            f"[green]✓ Recorded {format_cents(tx.total_cents, settings.currency_symbol)} "
            f"from {tx.template_name}: {_describe(tx, _friend_names(service))}[/green]"
        )


@template_app.command("due")
def template_due(verbose: bool = VERBOSE_OPTION):
    """Show recurring templates that are due or coming up."""
    with open_service(verbose) as (service, _):
        due = service.due_templates()
        upcoming = service.upcoming_templates()
        if not due and not upcoming:
            console.print("[green]✓ Nothing due.[/green]")
            return
        for template in due:
            console.print(f"[red]Due:[/red] {template.name} ({_describe_recurrence(template)})")
        for template in upcoming:
            console.print(
                f"[yellow]Upcoming:[/yellow] {template.name} ({_describe_recurrence(template)})"
            )


# ============================================================================
# Reminders
# ============================================================================


@reminders_app.command("check")
def reminders_check(
    mark_sent: bool = typer.Option(
        False, "--mark-sent", help="Record the due reminders as sent"
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Show friends who should be reminded about what they owe."""
    with open_service(verbose) as (service, settings):
        evaluation = service.check_reminders()
        symbol = settings.currency_symbol
        if not evaluation.due and not evaluation.snoozed:
            console.print(
                f"[green]✓ Nobody owes {format_cents(evaluation.threshold_cents, symbol)} "
                f"or more.[/green]"
            )
            return

        names = _friend_names(service)
        table = Table(title="Reminders", show_header=True, header_style="bold magenta")
        table.add_column("Friend", style="cyan")
        table.add_column("Owes", justify="right")
        table.add_column("Status")
        table.add_column("Channels / retry", style="dim")
        for job in evaluation.due:
            table.add_row(
                names.get(job.friend_id, job.friend_id),
                format_money(job.balance_cents, symbol),
                "[red]due[/red]",
                ", ".join(job.channels),
            )
        for snoozed in evaluation.snoozed:
            table.add_row(
                names.get(snoozed.friend_id, snoozed.friend_id),
                format_money(snoozed.balance_cents, symbol),
                "snoozed",
                snoozed.retry_at.isoformat(timespec="minutes"),
            )
        console.print(table)

        if mark_sent and evaluation.due:
            service.mark_reminders_sent(job.friend_id for job in evaluation.due)
            console.print(f"[green]✓ Marked {len(evaluation.due)} reminder(s) as sent[/green]")


@reminders_app.command("config")
def reminders_config(
    level: str | None = typer.Option(None, "--level", help="Trigger level: low, medium or high"),
    threshold: str | None = typer.Option(None, "--threshold", help="Minimum balance to remind"),
    snooze_hours: int | None = typer.Option(
        None, "--snooze-hours", help="Hours to wait between reminders"
    ),
    channels: list[str] | None = typer.Option(
        None, "--channel", help="Reminder channel: email, sms or push"
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Show or change the reminder preferences."""
    with open_service(verbose) as (service, settings):
        if any(value is not None for value in (level, threshold, snooze_hours)) or channels:
            reminders = service.configure_reminders(
                trigger_level=level,
                threshold=threshold,
                snooze_hours=snooze_hours,
                channels=channels or None,
            )
        else:
            reminders = service.state.reminders
        console.print(
            f"Reminders: {reminders.trigger_level}, from "
            f"{format_cents(reminders.threshold_cents, settings.currency_symbol)}, "
            f"every {reminders.snooze_hours}h via {', '.join(reminders.channels)}"
        )


# ============================================================================
# Analytics and budgets
# ============================================================================


@app.command()
def analytics(
    category: str = typer.Option("All", "--category", "-c", help="Only this category"),
    start: str | None = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    verbose: bool = VERBOSE_OPTION,
):
    """Show spending analytics."""
    with open_service(verbose) as (service, settings):
        report = service.analytics(category, start, end)
        symbol = settings.currency_symbol
        overview = report.overview

        console.print("\n[bold]Overview:[/bold]")
        console.print(f"  Transactions: {overview.count}")
        console.print(f"  Volume: {format_cents(overview.total_volume_cents, symbol)}")
        console.print(f"  Average: {format_cents(overview.average_cents, symbol)}")
        console.print(f"  Owed to you: {format_money(overview.owed_to_you_cents, symbol)}")
        console.print(f"  You owe: {format_money(-overview.you_owe_cents, symbol)}")
        console.print(f"  Net: {format_money(overview.net_balance_cents, symbol)}")

        if report.categories:
            table = Table(title="Categories", show_header=True, header_style="bold magenta")
            table.add_column("Category", style="yellow")
            table.add_column("Count", justify="right")
            table.add_column("Your share", justify="right")
            table.add_column("%", justify="right")
            for entry in report.categories:
                table.add_row(
                    entry.category,
                    str(entry.count),
                    format_cents(entry.total_cents, symbol),
                    f"{entry.percentage:.1f}",
                )
            console.print(table)

        if report.monthly_trend:
            console.print("\n[bold]Monthly trend:[/bold]")
            for point in report.monthly_trend:
                amount = format_cents(point.amount_cents, symbol)
                console.print(f"  {point.label} {point.key[:4]}: {amount}")

        budget = report.budget
        color = {"on-track": "green", "warning": "yellow", "over": "red"}[budget.status]
        console.print(
            f"\n[bold]Budget:[/bold] [{color}]{budget.status}[/{color}] "
            f"{format_cents(budget.spent_cents, symbol)} of "
            f"{format_cents(budget.budget_cents, symbol)} ({budget.utilization:.0%})"
        )


@budget_app.command("set")
def budget_set(
    category: str = typer.Argument(..., help="Category name, or 'monthly'"),
    amount: str = typer.Argument(..., help="Budget amount"),
    verbose: bool = VERBOSE_OPTION,
):
    """Set the monthly budget or a category budget."""
    with open_service(verbose) as (service, settings):
        if category.lower() == "monthly":
            service.set_monthly_budget(amount)
        else:
            service.set_category_budget(category, amount)
        console.print(
            f"[green]✓ Budget for {category}: "
            f"{format_cents(to_cents(amount), settings.currency_symbol)}[/green]"
        )


@budget_app.command("clear")
def budget_clear(
    category: str = typer.Argument(..., help="Category name"),
    verbose: bool = VERBOSE_OPTION,
):
    """Remove a category budget."""
    with open_service(verbose) as (service, _):
        service.set_category_budget(category, None)
        console.print(f"[green]✓ Removed budget for {category}[/green]")


@budget_app.command("status")
def budget_status(verbose: bool = VERBOSE_OPTION):
    """Show budget usage."""
    with open_service(verbose) as (service, settings):
        report = service.budget_report()
        symbol = settings.currency_symbol
        status = report.status
        console.print(
            f"\n[bold]This month:[/bold] {status.status} "
            f"{format_cents(status.spent_cents, symbol)} of "
            f"{format_cents(status.budget_cents, symbol)}, "
            f"{format_cents(status.remaining_cents, symbol)} left"
        )

        table = Table(title="Category Budgets", show_header=True, header_style="bold magenta")
        table.add_column("Category", style="yellow")
        table.add_column("Budget", justify="right")
        table.add_column("Spent", justify="right")
        table.add_column("Remaining", justify="right")
        for entry in report.categories:
            table.add_row(
                entry.category,
                format_cents(entry.budget_cents, symbol) if entry.budget_cents is not None else "-",
                format_cents(entry.spent_cents, symbol),
                format_money(entry.remaining_cents, symbol)
                if entry.remaining_cents is not None
                else "-",
            )
        console.print(table)

        totals = report.totals
        console.print(
            f"  Budgeted: {format_cents(totals.total_budgeted_cents, symbol)}  "
            f"Over budget: {format_cents(totals.total_over_budget_cents, symbol)}"
        )


# ============================================================================
# Import / export
# ============================================================================


@app.command("import")
def import_snapshot(
    path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True, dir_okay=False),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = VERBOSE_OPTION,
):
    """Replace the ledger with a snapshot file."""
    with open_service(verbose) as (service, _):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"\n[bold red]Error:[/bold red] Could not read {path}: {e}")
            sys.exit(1)

        if not yes and not confirm("⚠️  This replaces the current ledger. Continue?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        result = service.import_snapshot(data)
        console.print(
            f"[green]✓ Imported {len(result.friends)} friend(s) and "
            f"{len(result.transactions)} transaction(s)[/green]"
        )
        if result.skipped_transactions:
            console.print(
                f"[yellow]⚠️  Skipped {len(result.skipped_transactions)} transaction(s):[/yellow]"
            )
            for skipped in result.skipped_transactions:
                console.print(f"  - {skipped.reason}")


@app.command("export")
def export_snapshot(
    path: Path | None = typer.Argument(None, help="Output file (default: stdout)"),
    verbose: bool = VERBOSE_OPTION,
):
    """Write the ledger as a snapshot file."""
    with open_service(verbose) as (service, _):
        text = json.dumps(service.export_snapshot(), indent=2)
        if path is None:
            print(text)
        else:
            path.write_text(text + "\n", encoding="utf-8")
            console.print(f"[green]✓ Exported to {path}[/green]")


if __name__ == "__main__":
    app()
