import json
import os
from typing import Any, Dict, List, Union

from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from circulation.errors import CirculationError, CirculationFault
from circulation.policy import FinePolicy
from circulation.receipts import FineSummary, InventorySnapshot, LoanSummary

# Environment variable holding the CLI output mode: 'plain' (default), 'json' or 'rich'
OUTPUT_MODE_ENV = "CIRCULATION_CLI_OUTPUT"
OUTPUT_MODES = ("plain", "json", "rich")

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in OUTPUT_MODES:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def print_record(title: str, model: BaseModel) -> None:
    """Print one receipt.

    - plain: ``key: value`` lines under the title
    - json: the model as a JSON object
    - rich: a panel of key/value rows
    """
    mode = get_output_mode()
    data = _dump(model)
    if mode == "json":
        _print_json(data)
    elif mode == "rich":
        body = "\n".join(f"[bold]{key}:[/] {escape(_format(value))}" for key, value in data.items())
        _console.print(Panel.fit(body, title=title, border_style="green"))
    else:
        print(title)
        for key, value in data.items():
            print(f"{key}: {_format(value)}")


def print_loans(loans: List[LoanSummary]) -> None:
    mode = get_output_mode()

    if not loans:
        print("No borrowings found.")
        return

    if mode == "json":
        _print_json([_dump(loan) for loan in loans])
    elif mode == "rich":
        table = Table(title="Borrowings", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Type")
        table.add_column("Due")
        table.add_column("Status")
        table.add_column("Fine", justify="right")
        for loan in loans:
            table.add_row(
                loan.loan_id,
                loan.book_title or "-",
                loan.borrow_type.value,
                loan.due_date.date().isoformat(),
                loan.status.value,
                str(loan.total_fine),
            )
        _console.print(table)
    else:
        for loan in loans:
            print(
                f"{loan.loan_id} - {loan.book_title or '-'} [{loan.status.value}] "
                f"due {loan.due_date.date().isoformat()} fine {loan.total_fine}"
            )


def print_fine_summary(summary: FineSummary) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(_dump(summary))
        return
    if not summary.loans:
        print("No fines.")
    else:
        print_loans(summary.loans)
    if mode == "rich":
        _console.print(f"[bold]Total fines:[/] {summary.total_fine}")
    else:
        print(f"Total fines: {summary.total_fine}")


def print_policy(policy: FinePolicy) -> None:
    mode = get_output_mode()
    data = _dump(policy)
    if mode == "json":
        _print_json(data)
    elif mode == "rich":
        table = Table(title="Fine policy", header_style="bold cyan")
        table.add_column("Setting", style="magenta")
        table.add_column("Value", justify="right")
        for key, value in data.items():
            table.add_row(key, _format(value))
        _console.print(table)
    else:
        for key, value in data.items():
            print(f"{key}: {value}")


def print_inventory(snapshot: InventorySnapshot) -> None:
    if get_output_mode() == "plain":
        print(
            f"{snapshot.book_id}: {snapshot.available_copies}/{snapshot.total_copies} available, "
            f"{snapshot.active_loans} on loan, {snapshot.lost_copies} lost"
        )
        return
    print_record("Inventory", snapshot)


def print_error(error: Union[CirculationError, CirculationFault]) -> None:
    mode = get_output_mode()
    if isinstance(error, CirculationError):
        payload = error.to_dict()
    else:
        payload = {"kind": error.kind, "message": str(error)}
    if mode == "json":
        _print_json({"error": payload})
    elif mode == "rich":
        _console.print(f"[bold red]Error ({payload['kind']}):[/] {escape(payload['message'])}")
    else:
        print(f"Error ({payload['kind']}): {payload['message']}")


def _format(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(_format(v) for v in value) or "-"
    if isinstance(value, dict):
        return " ".join(str(v) for v in value.values())
    return str(value)
