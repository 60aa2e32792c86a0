"""Renewals CLI application -- Typer-based operator interface.

Provides commands for running the PayPal repair job, creating due renewal
orders, applying order status changes and payments, inspecting
subscriptions, and draining the delayed-action queue.  Human-readable
output goes to *stderr* via Rich; ``--json`` writes machine-readable
results to *stdout*.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console

from renewal_cli.display import (
    display_order,
    display_renewal_run,
    display_repair_result,
    display_subscription,
)
from renewal_engine.bootstrap import build_event_bus, build_worker
from renewal_engine.config import Settings, load_settings
from renewal_engine.context import ProcessingContext
from renewal_engine.exceptions import NotFound, RenewalEngineError
from renewal_engine.models import NoteSource, OrderStatus
from renewal_engine.renewal import RenewalOrderFactory, RenewalOrderService, RenewalScheduler
from renewal_engine.state import (
    RenewalOrderRepository,
    SubscriptionRepository,
    create_local_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from renewal_engine.upgrades import PayPalSuspendedRepair

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="renewals",
    help="Subscription renewals - scheduling, reconciliation and repair",
    no_args_is_help=True,
)
console = Console(stderr=True)

db_app = typer.Typer(name="db", help="Manage the state database.", no_args_is_help=True)
repair_app = typer.Typer(name="repair", help="PayPal suspended-subscription repair.", no_args_is_help=True)
renewals_app = typer.Typer(name="renewals", help="Create renewal orders.", no_args_is_help=True)
orders_app = typer.Typer(name="orders", help="Renewal order status and payments.", no_args_is_help=True)
subscriptions_app = typer.Typer(name="subscriptions", help="Inspect subscriptions.", no_args_is_help=True)
worker_app = typer.Typer(name="worker", help="Delayed-action worker.", no_args_is_help=True)

app.add_typer(db_app, name="db")
app.add_typer(repair_app, name="repair")
app.add_typer(renewals_app, name="renewals")
app.add_typer(orders_app, name="orders")
app.add_typer(subscriptions_app, name="subscriptions")
app.add_typer(worker_app, name="worker")

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="State database URL (defaults to RENEWALS_DATABASE_URL).",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> Settings:
    if _database_url is not None:
        return load_settings(database_url=_database_url)
    return load_settings()


def _write_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


async def _in_context(fn: Callable[[ProcessingContext], Awaitable[T]], settings: Settings) -> T:
    engine = get_engine(settings.database_url, settings.database_pool_size, settings.database_max_overflow)
    try:
        async with get_session(engine) as session:
            ctx = ProcessingContext(
                session=session,
                events=build_event_bus(),
                settings=settings,
                source=NoteSource.ADMIN,
            )
            return await fn(ctx)
    finally:
        await engine.dispose()


def _run(fn: Callable[[ProcessingContext], Awaitable[T]]) -> T:
    """Run *fn* in a committed unit of work; engine errors exit with code 3."""
    settings = _settings()
    try:
        return asyncio.run(_in_context(fn, settings))
    except NotFound as exc:
        console.print(f"[red]Not found:[/red] {exc}")
        raise typer.Exit(code=3) from exc
    except RenewalEngineError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=3) from exc


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------


@db_app.command("init")
def db_init() -> None:
    """Create the state tables if they do not exist."""
    settings = _settings()

    async def _init() -> None:
        engine = get_engine(settings.database_url, settings.database_pool_size, settings.database_max_overflow)
        try:
            await create_local_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    if _json_output:
        _write_json({"initialised": True})
    else:
        console.print("[green]State database ready.[/green]")


# ---------------------------------------------------------------------------
# repair
# ---------------------------------------------------------------------------


@repair_app.command("run")
def repair_run() -> None:
    """Run one batch of the PayPal suspended-subscription repair."""
    result = _run(lambda ctx: PayPalSuspendedRepair(ctx).run_repair_pass())
    if _json_output:
        _write_json(
            {
                "selected_count": result.selected_count,
                "processed_count": result.processed_count,
                "failed_count": result.failed_count,
                "more_remaining": result.more_remaining,
                "repaired_ids": list(result.repaired_ids),
            }
        )
    else:
        display_repair_result(console, result)
    if result.failed_count:
        raise typer.Exit(code=1)


@repair_app.command("schedule")
def repair_schedule() -> None:
    """Queue a repair pass for the action worker."""
    scheduled = _run(lambda ctx: PayPalSuspendedRepair(ctx).schedule_repair())
    if _json_output:
        _write_json({"scheduled": scheduled})
    elif scheduled:
        console.print("[green]Repair pass scheduled.[/green]")
    else:
        console.print("[yellow]A repair pass is already scheduled.[/yellow]")


# ---------------------------------------------------------------------------
# renewals
# ---------------------------------------------------------------------------


@renewals_app.command("process-due")
def renewals_process_due(
    limit: int | None = typer.Option(
        None,
        "--limit",
        min=1,
        help="Maximum subscriptions to renew (defaults to RENEWALS_RENEWAL_BATCH_SIZE).",
    ),
) -> None:
    """Create renewal orders for subscriptions whose payment is due."""
    result = _run(lambda ctx: RenewalScheduler(ctx).process_due_renewals(limit))
    if _json_output:
        _write_json(
            {
                "scanned": result.scanned,
                "created": result.created,
                "skipped": result.skipped,
                "errors": result.errors,
                "order_ids": result.order_ids,
            }
        )
    else:
        display_renewal_run(console, result)


# ---------------------------------------------------------------------------
# orders
# ---------------------------------------------------------------------------


def _show_order(order: Any) -> None:
    if _json_output:
        _write_json(order.model_dump(mode="json"))
    else:
        display_order(console, order)


@orders_app.command("set-status")
def orders_set_status(
    order_id: int = typer.Argument(..., help="Renewal order id."),
    status: OrderStatus = typer.Argument(..., help="New order status."),
) -> None:
    """Change an order's status and reconcile its subscriptions."""
    _show_order(_run(lambda ctx: RenewalOrderService(ctx).update_status(order_id, status)))


@orders_app.command("payment-complete")
def orders_payment_complete(
    order_id: int = typer.Argument(..., help="Renewal order id."),
) -> None:
    """Record a gateway-confirmed payment for an order."""
    _show_order(_run(lambda ctx: RenewalOrderService(ctx).record_payment(order_id)))


@orders_app.command("retry")
def orders_retry(
    order_id: int = typer.Argument(..., help="Failed renewal order id."),
) -> None:
    """Create a replacement order for a failed renewal order."""
    _show_order(_run(lambda ctx: RenewalOrderFactory(ctx).create_retry_order(order_id)))


# ---------------------------------------------------------------------------
# subscriptions
# ---------------------------------------------------------------------------


@subscriptions_app.command("show")
def subscriptions_show(
    subscription_id: int = typer.Argument(..., help="Subscription id."),
) -> None:
    """Show a subscription with its orders and notes."""

    async def _load(ctx: ProcessingContext) -> tuple[Any, Any, Any]:
        subscriptions = SubscriptionRepository(ctx.session)
        subscription = await subscriptions.load_subscription(subscription_id)
        notes = await subscriptions.list_notes(subscription_id)
        orders = await RenewalOrderRepository(ctx.session).orders_for_subscription(subscription_id)
        return subscription, notes, orders

    subscription, notes, orders = _run(_load)
    if _json_output:
        _write_json(
            {
                "subscription": subscription.model_dump(mode="json"),
                "orders": [order.model_dump(mode="json") for order in orders],
                "notes": [note.model_dump(mode="json") for note in notes],
            }
        )
    else:
        display_subscription(console, subscription, notes, orders)


# ---------------------------------------------------------------------------
# worker
# ---------------------------------------------------------------------------


@worker_app.command("run-due")
def worker_run_due() -> None:
    """Run every delayed action that is due, once."""
    settings = _settings()

    async def _drain() -> int:
        engine = get_engine(settings.database_url, settings.database_pool_size, settings.database_max_overflow)
        try:
            worker = build_worker(get_session_factory(engine), build_event_bus(), settings)
            return await worker.run_due()
        finally:
            await engine.dispose()

    completed = asyncio.run(_drain())
    if _json_output:
        _write_json({"completed": completed})
    else:
        console.print(f"Completed [bold]{completed}[/bold] scheduled action(s).")
