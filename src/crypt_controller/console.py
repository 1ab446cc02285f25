"""Rich console utilities for styled controller output.

This module provides a consistent interface for all controller log
output using the Rich library. Every message is timestamped since the
controller runs as a long-lived process.
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# Custom theme with consistent colors
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
    }
)

# Shared console instance; Console serializes writes so worker threads can share it
console = Console(theme=_THEME, stderr=True, log_path=False)


def info(message: str) -> None:
    """Log an informational message.

    Args:
        message: The message to display.

    """
    console.log(f"[info]ℹ[/info] {message}")


def success(message: str) -> None:
    """Log a success message.

    Args:
        message: The message to display.

    """
    console.log(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    """Log a warning message.

    Args:
        message: The message to display.

    """
    console.log(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    """Log an error message.

    Args:
        message: The message to display.

    """
    console.log(f"[error]✗[/error] {message}")


def action(message: str) -> None:
    """Log an action/progress message.

    Args:
        message: The message to display.

    """
    console.log(f"[info]→[/info] {message}")


def step(message: str) -> None:
    """Log a sub-step message."""
    console.log(f"[muted]•[/muted] {message}")


def highlight(text: str) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting, with any markup
        already present in the text escaped.

    """
    return f"[highlight]{escape(text)}[/highlight]"


def summary_panel(title: str, items: dict[str, str]) -> None:
    """Print a summary panel with key-value pairs.

    Args:
        title: Title for the panel.
        items: Dictionary of label -> value pairs to display.

    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(style="cyan")

    for label, value in items.items():
        table.add_row(f"{label}:", value)

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style="green"))
