"""Console interface for ``spendro``.

Commands
--------
- ``ingest``: accept a PDF statement for a user, run the pipeline and print
  the statement's final status.
- ``expenses``: open the live view once and print it as a table.
- ``categories``: list (optionally seed) a user's category vocabulary.
- ``map-merchant``: create or replace a merchant mapping, optionally
  recategorizing existing expenses.
"""

from __future__ import annotations

import asyncio
import dataclasses
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .config import ConfigError, Settings
from .intake import UploadRejected
from .logging_setup import configure_logging
from .models import DisplayExpense, StatementStatus
from .runtime import Runtime, build_runtime
from .sync import ExpenseFilters, StatementRow, wait_for_statement

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Ingest bank statements into expenses and browse them. "
        "Loads DATABASE_URL / OPENAI_API_KEY / EXCHANGE_RATE_API_KEY from a local .env."
    ),
)

_console = Console()

# Module-level option objects (no calls in parameter defaults).
USER_OPTION: OptionInfo = typer.Option("--user", help="Owning user id")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


def _settings(database_url: str | None) -> Settings:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(2) from e
    if database_url:
        settings = dataclasses.replace(settings, database_url=database_url)
    return settings


def _fmt_amount(value: object) -> str:
    return f"{value:,.2f}"


def _expense_table(rows: tuple[DisplayExpense, ...], *, title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Date")
    table.add_column("Merchant")
    table.add_column("Description")
    table.add_column("Category")
    table.add_column("Amount", justify="right")
    table.add_column("Original", justify="right")
    table.add_column("Dup", justify="center")
    for e in rows:
        original = (
            f"{_fmt_amount(e.original_amount)} {e.original_currency}"
            if e.original_currency != e.currency
            else ""
        )
        table.add_row(
            e.date.isoformat(),
            e.merchant,
            e.description,
            e.category,
            f"{_fmt_amount(e.amount)} {e.currency}",
            original,
            "[yellow]possible[/yellow]" if e.is_duplicate else "",
        )
    return table


# ---- ingest -------------------------------------------------------------------


async def _ingest(runtime: Runtime, user_id: str, path: Path, data: bytes) -> StatementRow:
    def _on_change(row: StatementRow) -> None:
        _console.print(f"[dim]{row.file_name}[/dim] status={row.status}")

    try:
        async with runtime.supervisor() as supervisor:
            statement_id = await supervisor.submit_upload(user_id, path.name, data)
            return await wait_for_statement(
                runtime.shapes,
                user_id=user_id,
                statement_id=statement_id,
                on_change=_on_change,
            )
    finally:
        await runtime.aclose()


@app.command("ingest")
def ingest_cmd(
    file: Annotated[Path, typer.Option("--file", help="PDF statement to ingest")],
    user: Annotated[str, USER_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Upload one statement and wait until it is completed or failed."""

    try:
        data = file.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {file}", file=sys.stderr)
        raise typer.Exit(1) from None
    except PermissionError:
        print(f"Error: Permission denied: {file}", file=sys.stderr)
        raise typer.Exit(1) from None

    runtime = build_runtime(_settings(database_url))
    try:
        final = asyncio.run(_ingest(runtime, user, file, data))
    except UploadRejected as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e

    _console.print(f"statement {final.id}: [bold]{final.status}[/bold]")
    if final.status != StatementStatus.COMPLETED:
        raise typer.Exit(1)


# ---- expenses -----------------------------------------------------------------


async def _snapshot(
    runtime: Runtime, user_id: str, *, historical: bool, search: str | None
) -> tuple[tuple[DisplayExpense, ...], str | None]:
    try:
        async with runtime.expense_view(
            user_id, filters=ExpenseFilters.build(search_text=search)
        ) as view:
            if historical:
                await view.load_historical()
            state = view.state
            return view.expenses, state.recent_error or state.historical_error
    finally:
        await runtime.aclose()


@app.command("expenses")
def expenses_cmd(
    user: Annotated[str, USER_OPTION],
    *,
    historical: bool = typer.Option(False, help="Also load the historical window."),
    search: str | None = typer.Option(
        None, help="Free-text filter over description, merchant and category."
    ),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Print the user's expenses (recent window, optionally historical)."""

    runtime = build_runtime(_settings(database_url))
    rows, error = asyncio.run(_snapshot(runtime, user, historical=historical, search=search))
    if error:
        print(f"Error: {error}", file=sys.stderr)
        raise typer.Exit(1)
    dupes = sum(1 for r in rows if r.is_duplicate)
    title = f"{len(rows)} expenses ({dupes} possible duplicates)"
    _console.print(_expense_table(rows, title=title))


# ---- categories / merchant mappings ------------------------------------------------


@app.command("categories")
def categories_cmd(
    user: Annotated[str, USER_OPTION],
    *,
    seed: bool = typer.Option(False, help="Install the default categories when none exist."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """List the user's categories."""

    runtime = build_runtime(_settings(database_url))

    async def _run() -> list[str]:
        try:
            return await runtime.resolver.category_names(user, seed_defaults=seed)
        finally:
            await runtime.aclose()

    for name in asyncio.run(_run()):
        print(name)


@app.command("map-merchant")
def map_merchant_cmd(
    user: Annotated[str, USER_OPTION],
    merchant: Annotated[str, typer.Option("--merchant", help="Merchant name")],
    category: Annotated[str, typer.Option("--category", help="Category to assign")],
    *,
    replace: bool = typer.Option(False, help="Replace an existing mapping."),
    apply: bool = typer.Option(False, help="Also recategorize existing expenses."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Map a merchant to a category for future (and optionally past) expenses."""

    runtime = build_runtime(_settings(database_url))

    async def _run() -> tuple[bool, int]:
        try:
            ok = await runtime.review.create_merchant_mapping(user, merchant, category)
            if not ok and replace:
                ok = await runtime.review.update_merchant_mapping(user, merchant, category)
            moved = 0
            if ok and apply:
                moved = await runtime.review.recategorize_merchant(user, merchant, category)
            return ok, moved
        finally:
            await runtime.aclose()

    try:
        ok, moved = asyncio.run(_run())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    if not ok:
        print(
            f"Error: a mapping for {merchant!r} already exists (use --replace).", file=sys.stderr
        )
        raise typer.Exit(1)
    print(f"{merchant.upper()} -> {category} ({moved} expenses recategorized)")


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
