"""
Converge Engine - Differ.

Compares declared resources to the state store and decides, per resource,
one of create / update / replace / destroy / no-op.

References are resolved against the *planned* values of their producers,
walking in topological order. A value that cannot be known until apply is
represented by the UNKNOWN marker and always counts as a change.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from converge.config.constants import UNKNOWN_PLACEHOLDER
from converge.core.types import ChangeAction
from converge.model.resources import Reference, lookup_path, substitute

if TYPE_CHECKING:
    from converge.engine.graph import DependencyGraph
    from converge.model.resources import Declarations, ResourceId
    from converge.providers.base import ProviderRegistry
    from converge.state.models import ResourceState


class _Unknown:
    """Marker for a value only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return UNKNOWN_PLACEHOLDER

    def __deepcopy__(self, memo: dict) -> _Unknown:
        return self


UNKNOWN = _Unknown()


def contains_unknown(value: Any) -> bool:
    """True if value is UNKNOWN or holds it at any depth."""
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(v) for v in value)
    return False


@dataclass(frozen=True)
class ResourceChange:
    """
    Reconciliation decision for one resource.

    Attributes:
        resource_id: Resource identity
        action: create, update, replace, destroy or no-op
        changed_fields: Attribute names that differ (sorted)
        replace_fields: Changed fields that forced a replacement
        prior: Stored attributes (None when not in state)
        planned: Declared attributes with references resolved as far as
            possible (UNKNOWN where not yet known)
        deposed: Leftover objects of an earlier replacement to delete
        create_before_destroy: Lifecycle flag of the declaration
    """

    resource_id: ResourceId
    action: ChangeAction
    changed_fields: tuple[str, ...] = ()
    replace_fields: tuple[str, ...] = ()
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] = field(default_factory=dict)
    deposed: tuple[str, ...] = ()
    create_before_destroy: bool = False

    @property
    def forced_replacement(self) -> bool:
        return self.action == ChangeAction.REPLACE

    @property
    def has_deposed(self) -> bool:
        return bool(self.deposed)


def _planned_view(change: ResourceChange) -> dict[str, Any]:
    """What dependents may assume about a producer before apply."""
    if change.action == ChangeAction.NOOP:
        return dict(change.prior or {})
    if change.action == ChangeAction.UPDATE:
        return {**(change.prior or {}), **change.planned}
    return dict(change.planned)


def _diff_fields(
    desired: dict[str, Any],
    entry: ResourceState,
    computed: frozenset[str],
) -> list[str]:
    changed = []
    for key, value in desired.items():
        if key in computed:
            continue
        if contains_unknown(value) or key not in entry.attributes or entry.attributes[key] != value:
            changed.append(key)
    for key in entry.inputs:
        if key not in desired and key not in computed:
            changed.append(key)
    return sorted(changed)


def compute_changes(
    declarations: Declarations,
    graph: DependencyGraph,
    state: Mapping[ResourceId, ResourceState],
    registry: ProviderRegistry,
) -> list[ResourceChange]:
    """
    Decide the action for every declared or stored resource.

    Args:
        declarations: Desired resources
        graph: Dependency graph of the declarations
        state: Snapshot of the state store
        registry: Provider lookup (schemas classify fields)

    Returns:
        Changes for declared resources in declaration order, followed by
        destroys of stored-only resources in identity order.

    Raises:
        UnknownResourceKindError: A kind has no registered provider
    """
    views: dict[ResourceId, dict[str, Any]] = {}
    by_id: dict[ResourceId, ResourceChange] = {}

    def resolve(ref: Reference) -> Any:
        try:
            return lookup_path(views[ref.target], ref.path)
        except KeyError:
            return UNKNOWN

    for rid in graph.topological_order():
        decl = declarations.get(rid)
        schema = registry.schema(rid.kind)
        desired = substitute(decl.attributes, resolve)
        entry = state.get(rid)

        if entry is None:
            change = ResourceChange(
                resource_id=rid,
                action=ChangeAction.CREATE,
                changed_fields=tuple(sorted(desired)),
                planned=desired,
                create_before_destroy=decl.create_before_destroy,
            )
        else:
            changed = _diff_fields(desired, entry, schema.computed_fields)
            forcing = [f for f in changed if schema.requires_replacement(f)]
            if forcing:
                action = ChangeAction.REPLACE
            elif changed:
                action = ChangeAction.UPDATE
            else:
                action = ChangeAction.NOOP
            change = ResourceChange(
                resource_id=rid,
                action=action,
                changed_fields=tuple(changed),
                replace_fields=tuple(forcing),
                prior=entry.attributes,
                planned=desired,
                deposed=tuple(entry.deposed),
                create_before_destroy=decl.create_before_destroy,
            )

        by_id[rid] = change
        views[rid] = _planned_view(change)

    changes = [by_id[rid] for rid in declarations.ids]

    for rid in sorted(state):
        if rid in declarations:
            continue
        registry.get(rid.kind)
        entry = state[rid]
        changes.append(ResourceChange(
            resource_id=rid,
            action=ChangeAction.DESTROY,
            prior=entry.attributes,
            deposed=tuple(entry.deposed),
        ))

    for change in changes:
        if change.action != ChangeAction.NOOP:
            logger.debug(
                f"{change.resource_id}: {change.action}"
                + (f" ({', '.join(change.changed_fields)})" if change.changed_fields else "")
            )
    return changes
