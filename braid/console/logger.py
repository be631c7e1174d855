"""Rich-based logger with braid theming.

Merge layers, checkpoints and the CLI all report through this logger:
- Semantic colors (cyan=info, green=success, amber=warning, red=error)
- Structured output (tables, key-value pairs, headers)
- Merge-specific helpers for consistent branch summaries
"""
from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


BRAID_THEME = Theme(
    {
        "info": "bold #7dcfff",  # Soft cyan - informational
        "success": "bold #9ece6a",  # Muted green - success
        "warning": "bold #e0af68",  # Warm amber - warnings
        "error": "bold #f7768e",  # Soft coral red - errors
        "highlight": "bold #bb9af7",  # Lavender purple - emphasis
        "muted": "dim #565f89",  # Slate gray - secondary info
        "metric": "#7aa2f7",  # Sky blue - metrics/numbers
        "path": "italic #73daca",  # Teal - file paths
    }
)


class Logger:
    """Unified logging interface with rich console output.

    Wraps Rich Console to provide semantic log levels and structured data
    display with consistent theming.
    """

    def __init__(self) -> None:
        """Initialize with the braid theme."""
        self.console = Console(theme=BRAID_THEME)

    # ─────────────────────────────────────────────────────────────────────
    # Basic Logging
    # ─────────────────────────────────────────────────────────────────────

    def info(self, message: str) -> None:
        """Log an informational message (cyan ℹ)."""
        self.console.print(f"[info]ℹ[/info] {message}")

    def success(self, message: str) -> None:
        """Log a success message (green ✓)."""
        self.console.print(f"[success]✓[/success] {message}")

    def warning(self, message: str) -> None:
        """Log a warning message (amber ⚠)."""
        self.console.print(f"[warning]⚠[/warning] {message}")

    def error(self, message: str) -> None:
        """Log an error message (red ✗)."""
        self.console.print(f"[error]✗[/error] {message}")

    # ─────────────────────────────────────────────────────────────────────
    # Structured Output
    # ─────────────────────────────────────────────────────────────────────

    def header(self, title: str, subtitle: str | None = None) -> None:
        """Print a prominent section header."""
        header_text = Text()
        header_text.append("━" * 3 + " ", style="muted")
        header_text.append(title, style="highlight")
        if subtitle:
            header_text.append(f" • {subtitle}", style="muted")
        header_text.append(" " + "━" * 40, style="muted")
        self.console.print()
        self.console.print(header_text)
        self.console.print()

    def subheader(self, text: str) -> None:
        """Print a subtle subheader for subsections."""
        self.console.print(f"[muted]──[/muted] [highlight]{text}[/highlight]")

    def table(
        self,
        title: str | None = None,
        columns: list[str] | None = None,
        rows: list[list[str]] | None = None,
    ) -> Table:
        """Create and optionally populate a styled table.

        If columns and rows are provided, prints immediately. Otherwise
        returns the Table for manual population.
        """
        table = Table(
            title=title,
            title_style="highlight",
            header_style="info",
            border_style="muted",
            row_styles=["", "dim"],
        )

        if columns and rows:
            for col in columns:
                table.add_column(col)
            for row in rows:
                table.add_row(*row)
            self.console.print(table)

        return table

    def key_value(self, data: dict[str, Any], title: str | None = None) -> None:
        """Display key-value pairs in a clean format."""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="muted")
        table.add_column("Value", style="metric")

        for key, value in data.items():
            table.add_row(f"{key}:", str(value))

        if title:
            self.subheader(title)
        self.console.print(table)

    def path(self, filepath: str, label: str = "") -> None:
        """Display a file path with optional label."""
        if label:
            self.console.print(f"  [muted]{label}:[/muted] [path]{filepath}[/path]")
        else:
            self.console.print(f"  [path]{filepath}[/path]")

    # ─────────────────────────────────────────────────────────────────────
    # Merge-Specific Helpers
    # ─────────────────────────────────────────────────────────────────────

    def branches(self, rows: list[tuple[str, int, str]], title: str | None = None) -> None:
        """Print one row per branch: kind, parameter count, output shape."""
        self.table(
            title=title,
            columns=["#", "kind", "params", "output"],
            rows=[
                [str(i), kind, f"{n_params:,}", shape]
                for i, (kind, n_params, shape) in enumerate(rows)
            ],
        )


# ─────────────────────────────────────────────────────────────────────────────
# Module-Level Singleton
# ─────────────────────────────────────────────────────────────────────────────

_logger: Logger | None = None


def get_logger() -> Logger:
    """Get or create the singleton Logger instance.

    Using a singleton ensures consistent theming and avoids creating
    multiple Console instances.
    """
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
