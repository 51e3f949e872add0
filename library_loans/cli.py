import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from library_loans.config import settings
from library_loans.errors import LibraryError
from library_loans.library import Library
from library_loans.ui_helpers import (
    BOOK_COLUMNS,
    LOAN_COLUMNS,
    MEMBER_COLUMNS,
    print_records,
    print_stats_result,
    set_output_mode,
)

console = Console()

app = typer.Typer(help="Library loans CLI")


def _library() -> Library:
    # Resolved per command so LIBRARY_DB_FILE changes are honored.
    return Library()


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("books")
def cli_books():
    """List every book in the catalog."""
    books = _library().books.list_books()
    print_records("📚 Books", [b.to_dict() for b in books], BOOK_COLUMNS, "No books in library.")


@app.command("members")
def cli_members():
    """List every registered member."""
    members = _library().members.list_members()
    print_records("👥 Members", [m.to_dict() for m in members], MEMBER_COLUMNS, "No members registered.")


@app.command("loans")
def cli_loans(status: Optional[str] = typer.Option(None, "--status", "-s", help="active | returned | overdue")):
    """List loans, newest first."""
    try:
        loans = _library().loans.list_loans(status)
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    print_records("📖 Loans", [loan.to_dict() for loan in loans], LOAN_COLUMNS, "No loans found.")


@app.command("overdue")
def cli_overdue():
    """Mark loans past their due date as overdue and list them."""
    loans = _library().loans.list_overdue()
    print_records("⏰ Overdue Loans", [loan.to_dict() for loan in loans], LOAN_COLUMNS, "No overdue loans.")


@app.command("stats")
def cli_stats():
    """Show loan statistics."""
    print_stats_result(_library().loans.stats())


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart the server on code changes")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_loans.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not start uvicorn. Make sure it is installed in this environment.")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
