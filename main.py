import logging
from datetime import datetime
from decimal import Decimal
from functools import wraps
from typing import List, Optional

import typer
from pydantic import ValidationError

from circulation import database
from circulation.errors import CirculationError, CirculationFault
from circulation.library import Library
from circulation.models import utcnow
from circulation.policy import FinePolicy
from circulation.seed import seed_demo_data
from circulation.ui import (
    print_error,
    print_fine_summary,
    print_inventory,
    print_loans,
    print_policy,
    print_record,
    set_output_mode,
)
from config import settings

logger = logging.getLogger(__name__)

app = typer.Typer(help=f"{settings.app_name} CLI (v{settings.app_version})")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose or settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.debug(f"Running in {settings.environment} mode")


def _parse_when(value: Optional[str], option: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{value!r} is not an ISO 8601 date", param_hint=option) from None


def _library(ctx: typer.Context, at: Optional[datetime] = None) -> Library:
    db_file = (ctx.obj or {}).get("db_file") or database.DATABASE_FILE
    clock = (lambda: at) if at is not None else utcnow
    return Library(db_file=db_file, clock=clock)


def handle_errors(func):
    """Print circulation errors and exit non-zero instead of dumping a traceback."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CirculationError as e:
            print_error(e)
            raise typer.Exit(code=1)
        except CirculationFault as e:
            logger.error(f"{func.__name__} failed: {e}")
            print_error(e)
            raise typer.Exit(code=2)
    return wrapper


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Database file (default: LIBRARY_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global options (output mode, database file)."""
    # Set on every run; the mode is kept in the environment and would otherwise carry over
    set_output_mode(output or "plain")
    _configure_logging(verbose)
    ctx.obj = {"db_file": db}


@app.command("init-db")
@handle_errors
def cli_init_db(ctx: typer.Context):
    """Create the circulation tables."""
    lib = _library(ctx)
    print(f"Database ready: {lib.db_file}")


@app.command("seed")
@handle_errors
def cli_seed(ctx: typer.Context):
    """Insert demo students and books."""
    db_file = (ctx.obj or {}).get("db_file") or database.DATABASE_FILE
    counts = seed_demo_data(db_file)
    print(f"Seeded {counts['students']} students and {counts['books']} books")


@app.command("borrow")
@handle_errors
def cli_borrow(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Requesting student id"),
    book_id: str = typer.Argument(..., help="Book id"),
    with_emails: Optional[List[str]] = typer.Option(None, "--with", "-w", help="Email of another group member (repeatable)"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date (ISO 8601), default: today + loan period"),
    borrow_type: Optional[str] = typer.Option(None, "--type", "-t", help="INDIVIDUAL or GROUP (inferred when omitted)"),
):
    """Borrow a book, alone or as a group."""
    receipt = _library(ctx).borrow(
        student_id,
        book_id,
        participant_emails=with_emails or [],
        due_date=_parse_when(due, "--due"),
        borrow_type=borrow_type,
    )
    print_record("Borrowed", receipt)


@app.command("return")
@handle_errors
def cli_return(
    ctx: typer.Context,
    loan_id: str = typer.Argument(..., help="Loan id"),
    student_id: str = typer.Argument(..., help="Returning participant id"),
    damage: str = typer.Option("NONE", "--damage", "-d", help="NONE | SMALL | LARGE"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Damage notes"),
    at: Optional[str] = typer.Option(None, "--at", help="Return time (ISO 8601), default: now"),
):
    """Return a borrowed book and settle its fine."""
    lib = _library(ctx, at=_parse_when(at, "--at"))
    receipt = lib.return_book(loan_id, student_id, damage_level=damage, damage_notes=notes)
    print_record("Returned", receipt)


@app.command("report-lost")
@handle_errors
def cli_report_lost(
    ctx: typer.Context,
    loan_id: str = typer.Argument(..., help="Loan id"),
    student_id: str = typer.Argument(..., help="Reporting participant id"),
):
    """Report a borrowed book as lost."""
    report = _library(ctx).report_lost(loan_id, student_id)
    print_record("Reported lost", report)


@app.command("loans")
@handle_errors
def cli_loans(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student id"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="ACTIVE | RETURNED | OVERDUE | LOST"),
):
    """List a student's borrowings, newest first."""
    print_loans(_library(ctx).list_loans(student_id, status=status))


@app.command("fines")
@handle_errors
def cli_fines(ctx: typer.Context, student_id: str = typer.Argument(..., help="Student id")):
    """Show a student's fined borrowings and their total."""
    print_fine_summary(_library(ctx).fine_summary(student_id))


@app.command("policy")
@handle_errors
def cli_policy(ctx: typer.Context):
    """Show the fine policy in force."""
    print_policy(_library(ctx).get_fine_policy())


@app.command("set-policy")
@handle_errors
def cli_set_policy(
    ctx: typer.Context,
    daily_rate: Optional[str] = typer.Option(None, "--daily-rate", help="Fine per overdue day"),
    lost_multiplier: Optional[str] = typer.Option(None, "--lost-multiplier", help="Lost fine as a multiple of the price"),
    small_damage: Optional[str] = typer.Option(None, "--small-damage", help="Small damage share of the price (0-1)"),
    large_damage: Optional[str] = typer.Option(None, "--large-damage", help="Large damage share of the price (0-1)"),
    threshold: Optional[int] = typer.Option(None, "--threshold", help="Overdue days after which a return counts as lost"),
    reset: bool = typer.Option(False, "--reset", help="Restore the default policy"),
):
    """Change the fine policy. Unset options keep their current value."""
    lib = _library(ctx)
    if reset:
        print_policy(lib.reset_fine_policy())
        return

    updates = {
        "daily_rate": daily_rate,
        "lost_multiplier": lost_multiplier,
        "small_damage_pct": small_damage,
        "large_damage_pct": large_damage,
        "overdue_threshold_days": threshold,
    }
    updates = {key: value for key, value in updates.items() if value is not None}
    if not updates:
        print("Nothing to change.")
        return
    try:
        updates = {key: value if isinstance(value, int) else Decimal(value) for key, value in updates.items()}
        policy = FinePolicy(**{**lib.get_fine_policy().model_dump(), **updates})
    except (ArithmeticError, ValidationError) as e:
        print(f"Invalid policy: {e}")
        raise typer.Exit(code=1)
    print_policy(lib.update_fine_policy(policy))


@app.command("inventory")
@handle_errors
def cli_inventory(ctx: typer.Context, book_id: str = typer.Argument(..., help="Book id")):
    """Show copy counts for a book."""
    print_inventory(_library(ctx).inventory(book_id))


if __name__ == "__main__":
    app()
