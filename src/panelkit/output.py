"""Output formatting helpers for the panelkit CLI."""

import json
import sys
from datetime import datetime
from typing import Any

from rich.box import ROUNDED
from rich.console import Console
from rich.table import Table
from rich.text import Text


# Status indicators with colors
STATUS_INDICATORS = {
    # Success states
    "active": ("green", "●"),
    "free": ("green", "●"),
    "success": ("green", "✓"),
    "ok": ("green", "✓"),
    # Warning states
    "busy": ("yellow", "◐"),
    "waiting": ("yellow", "○"),
    "running": ("yellow", "◐"),
    # Error states
    "inactive": ("red", "○"),
    "failed": ("red", "✗"),
    "error": ("red", "✗"),
    # Unknown states
    "unknown": ("dim", "?"),
}


def get_status_display(status: str) -> str:
    """Get colored status display with indicator."""
    status_lower = status.lower()
    if status_lower in STATUS_INDICATORS:
        color, indicator = STATUS_INDICATORS[status_lower]
        return f"[{color}]{indicator} {status}[/{color}]"
    return status


class OutputFormatter:
    """Handles output formatting for both JSON and pretty (human) modes."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize the formatter."""
        self.json_mode = json_mode
        self.console = Console()

    def success(self, data: Any, message: str = "Operation completed") -> None:
        """Output a success response."""
        if self.json_mode:
            self._json_output(True, data=data, message=message)
        else:
            self._pretty_success(data, message)

    def error(
        self,
        code: str,
        message: str,
        suggestion: str | None = None,
        exit_code: int = 1,
    ) -> None:
        """Output an error response and exit."""
        if self.json_mode:
            self._json_output(
                False,
                error={"code": code, "message": message, "suggestion": suggestion},
            )
        else:
            self._pretty_error(code, message, suggestion)
        sys.exit(exit_code)

    def table(
        self,
        data: list[dict[str, Any]],
        columns: list[tuple[str, str]],
        title: str | None = None,
        message: str = "Data retrieved",
    ) -> None:
        """Output data as a table (pretty mode) or list (JSON mode)."""
        if self.json_mode:
            self._json_output(True, data=data, message=message)
        else:
            self._pretty_table(data, columns, title)

    def status_panel(
        self,
        title: str,
        sections: dict[str, Any],
        message: str = "Status retrieved",
    ) -> None:
        """Output a status panel with multiple sections."""
        if self.json_mode:
            self._json_output(True, data=sections, message=message)
        else:
            self._pretty_status_panel(title, sections)

    def _json_output(
        self,
        success: bool,
        data: Any = None,
        message: str | None = None,
        error: dict[str, Any] | None = None,
    ) -> None:
        """Output in JSON format."""
        output: dict[str, Any] = {
            "success": success,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

        if success:
            output["data"] = data
            output["message"] = message
        else:
            output["error"] = error

        print(json.dumps(output, indent=2, default=str))

    def _pretty_success(self, data: Any, message: str) -> None:
        """Output a success message in pretty format."""
        self.console.print(f"[green]{message}[/green]")

        if isinstance(data, dict):
            for key, value in data.items():
                self.console.print(f"  [cyan]{key}:[/cyan] {value}")
        elif isinstance(data, list):
            for item in data:
                self.console.print(f"  - {item}")
        elif data is not None:
            self.console.print(f"  {data}")

    def _pretty_error(self, code: str, message: str, suggestion: str | None) -> None:
        """Output an error in pretty format."""
        error_text = Text()
        error_text.append("Error: ", style="bold red")
        error_text.append(f"[{code}] ", style="red")
        error_text.append(message)

        self.console.print(error_text)

        if suggestion:
            self.console.print(f"[yellow]Suggestion:[/yellow] {suggestion}")

    def _pretty_table(
        self,
        data: list[dict[str, Any]],
        columns: list[tuple[str, str]],
        title: str | None,
    ) -> None:
        """Output data as a pretty table."""
        if not data:
            self.console.print("[dim]No data to display[/dim]")
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")

        for _, col_header in columns:
            table.add_column(col_header)

        for row in data:
            table.add_row(*[str(row.get(col_key, "")) for col_key, _ in columns])

        self.console.print(table)

    def _pretty_status_panel(self, title: str, sections: dict[str, Any]) -> None:
        """Output a status panel with one mini-table per section."""
        self.console.print()
        self.console.print(f"[bold cyan]╔══ {title} ══╗[/bold cyan]")
        self.console.print()

        for section_name, section_data in sections.items():
            section_title = section_name.replace("_", " ").title()

            if isinstance(section_data, dict):
                table = Table(
                    show_header=False,
                    box=ROUNDED,
                    padding=(0, 1),
                    title=f"[bold]{section_title}[/bold]",
                    title_style="cyan",
                    border_style="dim",
                )
                table.add_column("Key", style="cyan", width=20)
                table.add_column("Value")

                for key, value in section_data.items():
                    display_value = str(value)
                    if isinstance(value, str):
                        display_value = get_status_display(value)
                    elif isinstance(value, int) and key.lower() == "errors":
                        color = "red" if value > 0 else "green"
                        display_value = f"[{color}]{value}[/{color}]"
                    table.add_row(key.replace("_", " ").title(), display_value)

                self.console.print(table)
            else:
                self.console.print(f"[bold cyan]{section_title}:[/bold cyan] {section_data}")

            self.console.print()
