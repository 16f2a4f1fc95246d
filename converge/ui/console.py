"""
Converge UI - Console implementation.

Rich-based rendering of plans, apply reports, outputs and state.
Sensitive output values are always shown as a placeholder here.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from converge.config.constants import SENSITIVE_PLACEHOLDER
from converge.core.types import ItemAction, ItemStatus, RunStatus
from converge.utils.security import redact_sensitive_info

if TYPE_CHECKING:
    from converge.engine.outputs import OutputValue
    from converge.engine.planner import Plan
    from converge.engine.report import ApplyReport
    from converge.state.models import ResourceState

# Custom theme
CONVERGE_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "red bold",
        "success": "green",
        "muted": "dim",
        "highlight": "magenta",
        "create": "green",
        "update": "yellow",
        "destroy": "red",
    }
)

_ACTION_STYLE = {
    ItemAction.CREATE: ("+", "create"),
    ItemAction.UPDATE: ("~", "update"),
    ItemAction.DESTROY: ("-", "destroy"),
    ItemAction.NOOP: (" ", "muted"),
}

_STATUS_ICON = {
    ItemStatus.SUCCEEDED: "[green]✅[/green]",
    ItemStatus.FAILED: "[red]❌[/red]",
    ItemStatus.NOT_ATTEMPTED: "[dim]⊘[/dim]",
    ItemStatus.CANCELLED: "[yellow]🛑[/yellow]",
}


class ConsoleUI:
    """
    Console user interface.

    Provides rich formatting for output.
    """

    def __init__(self, theme: Theme | None = None, console: Console | None = None) -> None:
        """Initialize console."""
        self.console = console or Console(theme=theme or CONVERGE_THEME)

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Print to console."""
        self.console.print(*args, **kwargs)

    def panel(self, content: str, title: str | None = None, style: str = "info") -> None:
        """Display a panel."""
        self.console.print(Panel(content, title=title, border_style=style))

    def success(self, message: str) -> None:
        """Display success message."""
        self.console.print(f"[success]{message}[/success]")

    def error(self, message: str) -> None:
        """Display error message."""
        self.console.print(f"[error]{escape(redact_sensitive_info(message) or '')}[/error]")

    def warning(self, message: str) -> None:
        """Display warning message."""
        self.console.print(f"[warning]{message}[/warning]")

    def info(self, message: str) -> None:
        """Display info message."""
        self.console.print(f"[info]{message}[/info]")

    def muted(self, message: str) -> None:
        """Display muted message."""
        self.console.print(f"[muted]{message}[/muted]")

    def newline(self) -> None:
        """Print empty line."""
        self.console.print()

    def table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: str | None = None,
    ) -> None:
        """Display a table."""
        table = Table(title=title, show_header=True, header_style="bold")

        for header in headers:
            table.add_column(header)

        for row in rows:
            table.add_row(*row)

        self.console.print(table)

    def json(self, data: Any) -> None:
        """Print structured data as JSON (no markup, no highlighting)."""
        self.console.print_json(json.dumps(data, default=str))

    # =========================================================================
    # Engine rendering
    # =========================================================================

    def render_plan(self, plan: Plan) -> None:
        """Display the changes a plan would make."""
        changed = [item for item in plan.items if item.action != ItemAction.NOOP]
        if not changed:
            self.success("No changes. Infrastructure matches the declarations.")
            return

        table = Table(title="Execution plan", show_header=True, header_style="bold")
        table.add_column("#", justify="right", style="muted")
        table.add_column("Action")
        table.add_column("Resource")
        table.add_column("Changed fields", style="muted")

        for item in changed:
            symbol, style = _ACTION_STYLE[item.action]
            action = f"[{style}]{symbol} {item.action}[/{style}]"
            if item.replace:
                action += " [highlight](replace)[/highlight]"
            elif item.deposed_only:
                action += " [muted](deposed)[/muted]"

            change = plan.change_for(item.resource_id)
            fields = ", ".join(change.changed_fields) if change and item.action != ItemAction.DESTROY else ""
            table.add_row(str(item.index), action, str(item.resource_id), fields)

        self.console.print(table)

        summary = plan.summary
        self.console.print(
            f"Plan: [create]{summary['add']} to add[/create], "
            f"[update]{summary['change']} to change[/update], "
            f"[highlight]{summary['replace']} to replace[/highlight], "
            f"[destroy]{summary['destroy']} to destroy[/destroy]."
        )

    def render_apply(self, report: ApplyReport) -> None:
        """Display the per-item outcome of an apply run."""
        secrets = [str(out.value) for out in report.outputs.values() if out.sensitive]

        for result in report.results:
            if result.action == ItemAction.NOOP and result.status == ItemStatus.SUCCEEDED:
                continue
            icon = _STATUS_ICON.get(result.status, "❓")
            line = f"  {icon} {result.item.label} [muted]({result.status})[/muted]"
            if result.error:
                line += f": {escape(redact_sensitive_info(result.error, extra_secrets=secrets) or '')}"
            self.console.print(line)

        counts = report.counts
        summary = (
            f"{counts['added']} added, {counts['changed']} changed, {counts['destroyed']} destroyed"
        )
        if report.status == RunStatus.SUCCEEDED:
            self.success(f"Apply complete! {summary}.")
        elif report.status == RunStatus.CANCELLED:
            self.warning(f"Apply cancelled: {summary}, {len(report.not_attempted)} not attempted.")
        else:
            self.error(
                f"Apply {report.status}: {summary}, {len(report.not_attempted)} not attempted. "
                f"Re-run to resume."
            )

        if report.outputs:
            self.newline()
            self.render_outputs(report.outputs)

    def render_outputs(self, outputs: dict[str, OutputValue]) -> None:
        """Display outputs (sensitive values redacted)."""
        table = Table(title="Outputs", show_header=True, header_style="bold")
        table.add_column("Name", style="highlight")
        table.add_column("Value")

        for name, out in outputs.items():
            value = f"[muted]{SENSITIVE_PLACEHOLDER}[/muted]" if out.sensitive else escape(out.display)
            table.add_row(name, value)

        self.console.print(table)

    def render_state(self, entries: list[ResourceState]) -> None:
        """Display stored resources."""
        if not entries:
            self.muted("State is empty.")
            return

        rows = []
        for entry in entries:
            deposed = f"{len(entry.deposed)} deposed" if entry.deposed else ""
            rows.append([
                str(entry.resource_id),
                entry.remote_id,
                entry.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
                deposed,
            ])
        self.table(["Resource", "Remote ID", "Updated", "Notes"], rows, title="State")
