import json
import os
from typing import Any, Dict, List, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

# (header, record key) pairs shown for each record kind
BOOK_COLUMNS: Sequence[Tuple[str, str]] = (("ID", "id"), ("ISBN", "isbn"), ("Title", "title"),
                                           ("Author", "author"), ("Copies", "copies"))
MEMBER_COLUMNS: Sequence[Tuple[str, str]] = (("ID", "id"), ("Name", "name"), ("Email", "email"),
                                             ("Joined", "joinedAt"))
LOAN_COLUMNS: Sequence[Tuple[str, str]] = (("ID", "id"), ("Member", "memberId"), ("Book", "bookId"),
                                           ("Due", "dueAt"), ("Status", "status"))


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode
    # Unknown values keep the current mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_records(title: str, records: List[Dict[str, Any]], columns: Sequence[Tuple[str, str]],
                  empty_message: str) -> None:
    """Print records (``to_dict()`` payloads) in the current output mode.
    - plain: one ' | '-separated line per record
    - json: JSON array of the full payloads
    - rich: Rich table
    """
    mode = get_output_mode()

    if not records:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(records, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for header, _ in columns:
            table.add_column(header, style="white", no_wrap=header == "ID")
        for record in records:
            table.add_row(*(str(record.get(key, "")) for _, key in columns))
        _console.print(table)
    else:
        for record in records:
            print(" | ".join(str(record.get(key, "")) for _, key in columns))


def print_stats_result(stats: Dict[str, int]) -> None:
    """Print loan statistics in the current output mode."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.capitalize()} loans:[/] {value}" for key, value in stats.items())
        _console.print(Panel.fit(content, title="📊 Loan Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.capitalize()} loans: {value}")
