"""
Converge Engine - Plan and apply reports.

`as_dict()` is the structured form and carries sensitive output values.
`render_text()` is the plain human-readable form and never does.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from converge.config.constants import UNKNOWN_PLACEHOLDER
from converge.core.types import ItemAction, ItemStatus, RunStatus
from converge.engine.differ import UNKNOWN
from converge.state.models import utcnow
from converge.utils.security import redact_sensitive_info

if TYPE_CHECKING:
    from converge.engine.outputs import OutputValue
    from converge.engine.planner import Plan, PlanItem
    from converge.model.resources import ResourceId

_ACTION_SYMBOLS = {
    ItemAction.CREATE: "+",
    ItemAction.UPDATE: "~",
    ItemAction.DESTROY: "-",
    ItemAction.NOOP: " ",
}


def _jsonable(value: Any) -> Any:
    if value is UNKNOWN:
        return UNKNOWN_PLACEHOLDER
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


@dataclass
class ItemResult:
    """Outcome of one plan item."""

    item: PlanItem
    status: ItemStatus = ItemStatus.NOT_ATTEMPTED
    error: str | None = None
    attempts: int = 0
    duration: float = 0.0
    remote_id: str | None = None

    @property
    def resource_id(self) -> ResourceId:
        return self.item.resource_id

    @property
    def action(self) -> ItemAction:
        return self.item.action

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.item.index,
            "resource": str(self.item.resource_id),
            "action": str(self.item.action),
            "status": str(self.status),
        }
        if self.item.replace:
            data["replace"] = True
        if self.item.deposed_only:
            data["deposed_only"] = True
        if self.remote_id:
            data["remote_id"] = self.remote_id
        if self.error:
            data["error"] = self.error
        if self.attempts:
            data["attempts"] = self.attempts
        return data


@dataclass
class PlanReport:
    """Human and structured views of a plan."""

    plan: Plan

    def as_dict(self) -> dict[str, Any]:
        changes = []
        for change in self.plan.changes:
            entry: dict[str, Any] = {
                "resource": str(change.resource_id),
                "action": str(change.action),
            }
            if change.changed_fields:
                entry["changed_fields"] = list(change.changed_fields)
            if change.replace_fields:
                entry["replace_fields"] = list(change.replace_fields)
            if change.planned:
                entry["planned"] = _jsonable(change.planned)
            changes.append(entry)

        return {
            "destroy": self.plan.destroy,
            "summary": self.plan.summary,
            "items": [
                {
                    "index": item.index,
                    "resource": str(item.resource_id),
                    "action": str(item.action),
                    "replace": item.replace,
                    "deposed_only": item.deposed_only,
                    "depends_on": list(item.depends_on),
                }
                for item in self.plan.items
            ],
            "changes": changes,
        }

    def render_text(self) -> str:
        lines = []
        for item in self.plan.items:
            if item.action == ItemAction.NOOP:
                continue
            symbol = _ACTION_SYMBOLS[item.action]
            note = ""
            if item.replace:
                note = " (replace)"
            elif item.deposed_only:
                note = " (deposed)"
            lines.append(f"  {symbol} {item.resource_id}{note}")

        if not lines:
            return "No changes. Infrastructure matches the declarations."

        summary = self.plan.summary
        lines.append("")
        lines.append(
            f"Plan: {summary['add']} to add, {summary['change']} to change, "
            f"{summary['replace']} to replace, {summary['destroy']} to destroy."
        )
        return redact_sensitive_info("\n".join(lines)) or ""


@dataclass
class ApplyReport:
    """
    Outcome of an apply run.

    Items are listed in plan order. Items never started because an earlier
    item failed are `not_attempted`; items never started because the run
    was cancelled are `cancelled`.
    """

    plan: Plan
    results: list[ItemResult] = field(default_factory=list)
    outputs: dict[str, OutputValue] = field(default_factory=dict)
    cancelled: bool = False
    started_at: datetime = field(default_factory=utcnow)
    duration: float = 0.0

    def _with_status(self, *statuses: ItemStatus) -> list[ItemResult]:
        return [r for r in self.results if r.status in statuses]

    @property
    def succeeded(self) -> list[ItemResult]:
        return self._with_status(ItemStatus.SUCCEEDED)

    @property
    def failed(self) -> list[ItemResult]:
        return self._with_status(ItemStatus.FAILED)

    @property
    def failed_item(self) -> ItemResult | None:
        """The first failed item (plan order)."""
        failed = self.failed
        return failed[0] if failed else None

    @property
    def not_attempted(self) -> list[ItemResult]:
        return self._with_status(ItemStatus.NOT_ATTEMPTED, ItemStatus.CANCELLED)

    @property
    def status(self) -> RunStatus:
        if self.failed:
            changed = [r for r in self.succeeded if r.action != ItemAction.NOOP]
            return RunStatus.PARTIAL if changed else RunStatus.FAILED
        if self.cancelled and self.not_attempted:
            return RunStatus.CANCELLED
        return RunStatus.SUCCEEDED

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def counts(self) -> dict[str, int]:
        counts = {"added": 0, "changed": 0, "destroyed": 0}
        for result in self.succeeded:
            if result.action == ItemAction.CREATE:
                counts["added"] += 1
            elif result.action == ItemAction.UPDATE:
                counts["changed"] += 1
            elif result.action == ItemAction.DESTROY and not result.item.deposed_only:
                counts["destroyed"] += 1
        return counts

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "started_at": self.started_at.isoformat(),
            "duration": round(self.duration, 3),
            "items": [r.as_dict() for r in self.results],
            "outputs": {
                name: {"value": _jsonable(out.value), "sensitive": out.sensitive}
                for name, out in self.outputs.items()
            },
        }

    def render_text(self) -> str:
        lines = []
        for result in self.results:
            if result.action == ItemAction.NOOP and result.status == ItemStatus.SUCCEEDED:
                continue
            line = f"  {result.status:<13} {result.item.label}"
            if result.error:
                line += f": {result.error}"
            lines.append(line)

        counts = self.counts
        lines.append("")
        lines.append(
            f"Apply {self.status}: {counts['added']} added, {counts['changed']} changed, "
            f"{counts['destroyed']} destroyed."
        )

        if self.outputs:
            lines.append("")
            lines.append("Outputs:")
            for name, out in self.outputs.items():
                lines.append(f"  {name} = {out.display}")

        secrets = [str(out.value) for out in self.outputs.values() if out.sensitive]
        return redact_sensitive_info("\n".join(lines), extra_secrets=secrets) or ""

