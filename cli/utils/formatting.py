"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_dead_letter_table(entries: list[dict[str, Any]]) -> Table:
    """Create a formatted table for dead-letter entries"""
    table = Table(title="Dead Letters", box=box.ROUNDED)

    table.add_column("Job ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Retries", justify="center", style="yellow")
    table.add_column("Dead At", justify="center", style="white")
    table.add_column("Error", justify="left", style="red")

    for entry in entries:
        table.add_row(
            str(entry.get("original_job_id", ""))[:8],  # Short ID
            entry.get("job_type", ""),
            str(entry.get("retry_count", 0)),
            _format_timestamp(entry.get("dead_at")),
            _truncate(entry.get("error_message") or "—"),
        )

    return table


def create_queue_panel(depth: int, by_status: dict[str, int]) -> Panel:
    """Create formatted panel for queue status"""
    content = f"""
📬 [bold blue]Queue Status[/bold blue]

• Pending: [green]{depth}[/green]
• Running: [yellow]{by_status.get("running", 0)}[/yellow]
• Completed: [cyan]{by_status.get("completed", 0)}[/cyan]
• Dead: [red]{by_status.get("dead", 0)}[/red]
"""

    return Panel(content, title="Queue Depth", border_style="green")


def _format_timestamp(value: Any) -> str:
    if value is None:
        return "—"
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def _truncate(text: str, length: int = 60) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."
