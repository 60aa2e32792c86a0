"""Rich output formatting for the renewals CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that ``--json`` output on *stdout* stays clean.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from renewal_engine.models import RenewalOrder, Subscription, SubscriptionNote
    from renewal_engine.renewal.scheduler import RenewalRunResult
    from renewal_engine.upgrades.paypal_suspended import RepairPassResult


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "active": "green",
    "completed": "green",
    "processing": "cyan",
    "pending": "yellow",
    "on-hold": "yellow",
    "failed": "red",
    "cancelled": "dim red",
    "expired": "dim",
}


def _coloured_status(status: str) -> str:
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _fmt_dt(value: object) -> str:
    return value.isoformat(timespec="seconds") if value is not None else "-"  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def display_repair_result(console: Console, result: RepairPassResult) -> None:
    """Summarise one PayPal repair pass."""
    lines = [
        f"[bold]Selected:[/bold]  {result.selected_count}",
        f"[bold]Repaired:[/bold]  [green]{result.processed_count}[/green]",
        f"[bold]Failed:[/bold]    {'[red]' if result.failed_count else ''}{result.failed_count}"
        f"{'[/red]' if result.failed_count else ''}",
    ]
    if result.more_remaining:
        lines.append("[yellow]Batch was full; another pass has been scheduled.[/yellow]")
    else:
        lines.append("[dim]No further passes needed.[/dim]")
    console.print(Panel("\n".join(lines), title="PayPal Repair Pass", border_style="blue"))


def display_renewal_run(console: Console, result: RenewalRunResult) -> None:
    """Summarise a due-renewal run."""
    table = Table(title="Due Renewals", show_lines=False)
    table.add_column("Scanned", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Errors", justify="right", style="red")
    table.add_row(str(result.scanned), str(result.created), str(result.skipped), str(result.errors))
    console.print(table)
    if result.order_ids:
        console.print(f"Created order(s): {', '.join(f'#{oid}' for oid in result.order_ids)}")


# ---------------------------------------------------------------------------
# Orders & subscriptions
# ---------------------------------------------------------------------------


def display_order(console: Console, order: RenewalOrder) -> None:
    lines = [
        f"[bold]Order:[/bold]    #{order.id} ({order.kind.value})",
        f"[bold]Status:[/bold]   {_coloured_status(order.status.value)}",
        f"[bold]Total:[/bold]    {order.total} {order.currency}",
        f"[bold]Renews:[/bold]   {', '.join(f'#{sid}' for sid in order.subscription_ids) or '-'}",
        f"[bold]Cycle:[/bold]    {_fmt_dt(order.billing_cycle_at)}",
    ]
    if order.replaces_order_id is not None:
        lines.append(f"[bold]Replaces:[/bold] #{order.replaces_order_id}")
    if order.paid_at is not None:
        lines.append(f"[bold]Paid:[/bold]     {_fmt_dt(order.paid_at)}")
    console.print(Panel("\n".join(lines), title="Renewal Order", border_style="blue"))


def display_subscription(
    console: Console,
    subscription: Subscription,
    notes: list[SubscriptionNote],
    orders: list[RenewalOrder],
) -> None:
    """Render a subscription with its orders and audit trail.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    subscription:
        The subscription to display.
    notes:
        Audit notes, oldest first.
    orders:
        Orders linked to the subscription, oldest first.
    """
    header = [
        f"[bold]Subscription:[/bold] #{subscription.id}",
        f"[bold]Status:[/bold]       {_coloured_status(subscription.status.value)}",
        f"[bold]Billing:[/bold]      every {subscription.billing_interval} "
        f"{subscription.billing_period.value}(s), {subscription.recurring_total()} {subscription.currency}",
        f"[bold]Next payment:[/bold] {_fmt_dt(subscription.next_payment_at)}",
        f"[bold]Method:[/bold]       {subscription.payment_method}"
        f"{' (manual)' if subscription.is_manual else ''}",
    ]
    if subscription.external_ref:
        header.append(f"[bold]External ref:[/bold] {subscription.external_ref}")
    console.print(Panel("\n".join(header), title="Subscription", border_style="blue"))

    if orders:
        order_table = Table(title="Orders")
        order_table.add_column("Order", justify="right")
        order_table.add_column("Kind")
        order_table.add_column("Status")
        order_table.add_column("Cycle")
        order_table.add_column("Total", justify="right")
        for order in orders:
            order_table.add_row(
                f"#{order.id}",
                order.kind.value,
                _coloured_status(order.status.value),
                _fmt_dt(order.billing_cycle_at),
                f"{order.total} {order.currency}",
            )
        console.print(order_table)

    if not notes:
        console.print("[dim]No notes recorded.[/dim]")
        return

    note_table = Table(title="Notes")
    note_table.add_column("When")
    note_table.add_column("Source", style="cyan")
    note_table.add_column("Message")
    for note in notes:
        note_table.add_row(_fmt_dt(note.created_at), note.source.value, note.message)
    console.print(note_table)
