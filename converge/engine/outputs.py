"""
Converge Engine - Output resolver.

Evaluates declared outputs against final state attributes. Sensitive
values are kept in the structured result but registered for log
redaction and hidden from repr.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from converge.config.constants import SENSITIVE_PLACEHOLDER
from converge.core.exceptions import UnresolvedReferenceError
from converge.model.resources import (
    Reference,
    ResourceId,
    format_path,
    iter_references,
    lookup_path,
    substitute,
)
from converge.utils.security import register_secret

if TYPE_CHECKING:
    from converge.model.resources import OutputDecl
    from converge.state.models import ResourceState


@dataclass(frozen=True)
class OutputValue:
    """A resolved output."""

    name: str
    value: Any = field(repr=False)
    sensitive: bool = False
    description: str = ""

    def __repr__(self) -> str:
        shown = SENSITIVE_PLACEHOLDER if self.sensitive else repr(self.value)
        return f"OutputValue(name={self.name!r}, value={shown}, sensitive={self.sensitive})"

    @property
    def display(self) -> str:
        """Human-readable value (redacted when sensitive)."""
        if self.sensitive:
            return SENSITIVE_PLACEHOLDER
        return self.value if isinstance(self.value, str) else repr(self.value)


def _register(value: Any) -> None:
    if isinstance(value, Mapping):
        for item in value.values():
            _register(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _register(item)
    elif value is not None and not isinstance(value, bool):
        register_secret(value)


def resolve_outputs(
    outputs: Iterable[OutputDecl],
    state: Mapping[ResourceId, ResourceState],
) -> dict[str, OutputValue]:
    """
    Resolve outputs against final state.

    Raises:
        UnresolvedReferenceError: An output points at a resource or
            attribute that is not in state
    """
    resolved: dict[str, OutputValue] = {}

    for output in outputs:
        def resolve(ref: Reference, _name: str = output.name) -> Any:
            entry = state.get(ref.target)
            if entry is None:
                raise UnresolvedReferenceError(_output_source(_name), ref.target, format_path(ref.path))
            try:
                return lookup_path(entry.attributes, ref.path)
            except KeyError:
                raise UnresolvedReferenceError(
                    _output_source(_name), ref.target, format_path(ref.path)
                ) from None

        value = substitute(output.value, resolve)
        if output.sensitive:
            _register(value)
        resolved[output.name] = OutputValue(
            name=output.name,
            value=value,
            sensitive=output.sensitive,
            description=output.description,
        )

    logger.debug(f"Resolved {len(resolved)} output(s): {', '.join(resolved) or '-'}")
    return resolved


def _output_source(name: str) -> ResourceId:
    return ResourceId("output", name)


def output_references(outputs: Iterable[OutputDecl]) -> list[Reference]:
    """Every reference made by the outputs."""
    return [ref for output in outputs for ref in iter_references(output.value)]
