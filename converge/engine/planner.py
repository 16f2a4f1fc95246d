"""
Converge Engine - Planner.

Turns per-resource changes into an ordered plan. Every resource change
becomes one or two plan nodes:

    create / update / no-op   -> one "apply" node
    destroy                   -> one "destroy" node (current object)
    replace                   -> destroy + create, or for
                                 create_before_destroy: create + a
                                 deposed-only destroy of the old object
    deposed leftovers         -> an extra deposed-only destroy

Ordering constraints are edges between nodes; the plan is a Kahn
topological sort with ready nodes taken in declaration order.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from converge.core.exceptions import PlanConflictError
from converge.core.metrics import track_plan_item
from converge.core.types import ChangeAction, ItemAction
from converge.engine.differ import ResourceChange, contains_unknown

if TYPE_CHECKING:
    from converge.engine.graph import DependencyGraph
    from converge.model.resources import Declarations, OutputDecl, ResourceId
    from converge.providers.base import ProviderRegistry
    from converge.state.models import ResourceState

# Tie-break among ready nodes of the same resource
_PHASE_RANK = {"destroy": 0, "apply": 1, "deposed": 2}


@dataclass(frozen=True)
class PlanItem:
    """
    One executable step of a plan.

    Attributes:
        index: Position in the plan
        resource_id: Resource the step acts on
        action: create, update, destroy or no-op
        attributes: Desired attributes (References resolved at apply time)
        depends_on: Indices of items that must succeed first
        dependencies: Producers recorded in state after a create/update
        replace: Item is half of a replacement
        deposed_only: Destroy only deposed objects, keep the current one
        create_before_destroy: Create half of a create-before-destroy replace
    """

    index: int
    resource_id: ResourceId
    action: ItemAction
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[int, ...] = ()
    dependencies: tuple[ResourceId, ...] = ()
    replace: bool = False
    deposed_only: bool = False
    create_before_destroy: bool = False

    @property
    def label(self) -> str:
        suffix = " (deposed)" if self.deposed_only else ""
        return f"{self.action} {self.resource_id}{suffix}"

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Plan:
    """Ordered plan items plus the per-resource changes behind them."""

    items: tuple[PlanItem, ...] = ()
    changes: tuple[ResourceChange, ...] = ()
    outputs: tuple[OutputDecl, ...] = ()
    destroy: bool = False

    def __iter__(self) -> Iterator[PlanItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def summary(self) -> dict[str, int]:
        counts = {"add": 0, "change": 0, "destroy": 0, "replace": 0}
        for change in self.changes:
            if change.action == ChangeAction.CREATE:
                counts["add"] += 1
            elif change.action == ChangeAction.UPDATE:
                counts["change"] += 1
            elif change.action == ChangeAction.DESTROY:
                counts["destroy"] += 1
            elif change.action == ChangeAction.REPLACE:
                counts["replace"] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return any(item.action != ItemAction.NOOP for item in self.items)

    def change_for(self, resource_id: ResourceId) -> ResourceChange | None:
        for change in self.changes:
            if change.resource_id == resource_id:
                return change
        return None

    def index_of(self, resource_id: ResourceId, action: ItemAction, deposed_only: bool = False) -> int:
        """Plan index of an item (ValueError if absent)."""
        for item in self.items:
            if (
                item.resource_id == resource_id
                and item.action == action
                and item.deposed_only == deposed_only
            ):
                return item.index
        raise ValueError(f"No {action} item for {resource_id} in plan")


@dataclass
class _Node:
    resource_id: ResourceId
    phase: str
    action: ItemAction
    attributes: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[ResourceId, ...] = ()
    replace: bool = False
    deposed_only: bool = False
    create_before_destroy: bool = False
    after: set[int] = field(default_factory=set)

    @property
    def label(self) -> str:
        suffix = " (deposed)" if self.deposed_only else ""
        return f"{self.action} {self.resource_id}{suffix}"


class _PlanBuilder:
    def __init__(
        self,
        changes: list[ResourceChange],
        graph: DependencyGraph,
        state: Mapping[ResourceId, ResourceState],
        registry: ProviderRegistry,
        declarations: Declarations,
    ) -> None:
        self.changes = {c.resource_id: c for c in changes}
        self.graph = graph
        self.state = state
        self.registry = registry
        self.declarations = declarations
        self.nodes: list[_Node] = []
        self.apply_node: dict[ResourceId, int] = {}
        self.old_node: dict[ResourceId, int] = {}  # destroy of current or deposed objects

        undeclared = sorted(rid for rid in self.changes if rid not in declarations)
        offset = len(declarations)
        self.position = {rid: declarations.position(rid) for rid in declarations.ids}
        self.position.update({rid: offset + i for i, rid in enumerate(undeclared)})

    def _add(self, node: _Node) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def _edge(self, before: int | None, after: int | None) -> None:
        if before is None or after is None or before == after:
            return
        self.nodes[after].after.add(before)

    def expand(self) -> None:
        for rid, change in self.changes.items():
            decl = self.declarations.get(rid)
            deps = tuple(self.graph.dependencies_of(rid)) if decl else ()
            attrs = dict(decl.attributes) if decl else {}

            if change.action in (ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.NOOP):
                action = {
                    ChangeAction.CREATE: ItemAction.CREATE,
                    ChangeAction.UPDATE: ItemAction.UPDATE,
                    ChangeAction.NOOP: ItemAction.NOOP,
                }[change.action]
                self.apply_node[rid] = self._add(_Node(rid, "apply", action, attrs, deps))
                if change.has_deposed:
                    self.old_node[rid] = self._add(
                        _Node(rid, "deposed", ItemAction.DESTROY, deposed_only=True)
                    )

            elif change.action == ChangeAction.DESTROY:
                self.old_node[rid] = self._add(_Node(rid, "destroy", ItemAction.DESTROY))

            elif change.create_before_destroy:
                self.apply_node[rid] = self._add(_Node(
                    rid, "apply", ItemAction.CREATE, attrs, deps,
                    replace=True, create_before_destroy=True,
                ))
                self.old_node[rid] = self._add(_Node(
                    rid, "deposed", ItemAction.DESTROY, replace=True, deposed_only=True,
                ))
                self._edge(self.apply_node[rid], self.old_node[rid])

            else:
                self.old_node[rid] = self._add(_Node(rid, "destroy", ItemAction.DESTROY, replace=True))
                self.apply_node[rid] = self._add(_Node(
                    rid, "apply", ItemAction.CREATE, attrs, deps, replace=True,
                ))
                self._edge(self.old_node[rid], self.apply_node[rid])

    def _old_dependencies(self, rid: ResourceId, deposed_only: bool) -> set[ResourceId]:
        deps: set[ResourceId] = set()
        entry = self.state.get(rid)
        if entry is not None:
            deps.update(entry.dependencies)
        # Deposed objects were created against the recorded producers only
        if rid in self.declarations and not deposed_only:
            deps.update(self.graph.dependencies_of(rid))
        deps.discard(rid)
        return deps

    def _is_destroy_before_create(self, rid: ResourceId) -> bool:
        change = self.changes.get(rid)
        return (
            change is not None
            and change.action == ChangeAction.REPLACE
            and not change.create_before_destroy
        )

    def constrain(self) -> None:
        # Producers are applied before their dependents
        for rid, node in self.apply_node.items():
            for producer in self.graph.dependencies_of(rid):
                self._edge(self.apply_node.get(producer), node)

        # Old objects go before the old objects they depended on
        for rid, node in self.old_node.items():
            for producer in self._old_dependencies(rid, self.nodes[node].deposed_only):
                self._edge(node, self.old_node.get(producer))

        # Resources still recorded as depending on P move off P before P goes
        for rid, node in self.apply_node.items():
            entry = self.state.get(rid)
            recorded = set(entry.dependencies) if entry else set()
            current = set(self.graph.dependencies_of(rid))
            for producer in recorded:
                if producer in current and self._is_destroy_before_create(producer):
                    continue
                self._edge(node, self.old_node.get(producer))

        # Create-before-destroy: dependents use the new object before the old one goes
        for rid, change in self.changes.items():
            if change.action == ChangeAction.REPLACE and change.create_before_destroy:
                for dependent in self.graph.dependents_of(rid):
                    self._edge(self.apply_node.get(dependent), self.old_node[rid])

        self._constrain_unique_names()

    def _held_unique_values(self, rid: ResourceId) -> dict[str, Any]:
        change = self.changes[rid]
        node = self.nodes[self.old_node[rid]]
        if node.deposed_only and not change.forced_replacement:
            return {}
        schema = self.registry.schema(rid.kind)
        prior = change.prior or {}
        return {f: prior[f] for f in schema.unique_fields if f in prior}

    def _constrain_unique_names(self) -> None:
        for rid in self.old_node:
            held = self._held_unique_values(rid)
            if not held:
                continue
            for other, node in self.apply_node.items():
                if other.kind != rid.kind or self.nodes[node].action != ItemAction.CREATE:
                    continue
                planned = self.changes[other].planned
                for field_name, value in held.items():
                    wanted = planned.get(field_name)
                    if not contains_unknown(wanted) and wanted == value:
                        self._edge(self.old_node[rid], node)

    def order(self) -> list[int]:
        remaining = {i: len(node.after) for i, node in enumerate(self.nodes)}
        successors: dict[int, list[int]] = {i: [] for i in range(len(self.nodes))}
        for i, node in enumerate(self.nodes):
            for before in node.after:
                successors[before].append(i)

        def key(i: int) -> tuple[int, int, int]:
            node = self.nodes[i]
            return (self.position[node.resource_id], _PHASE_RANK[node.phase], i)

        ready = [key(i) for i, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[int] = []
        while ready:
            i = heapq.heappop(ready)[2]
            ordered.append(i)
            for succ in successors[i]:
                remaining[succ] -= 1
                if remaining[succ] == 0:
                    heapq.heappush(ready, key(succ))

        if len(ordered) != len(self.nodes):
            placed = set(ordered)
            members = [self.nodes[i].label for i in range(len(self.nodes)) if i not in placed]
            logger.error(f"Contradictory ordering constraints: {', '.join(members)}")
            raise PlanConflictError(members)
        return ordered


def build_plan(
    changes: list[ResourceChange],
    graph: DependencyGraph,
    state: Mapping[ResourceId, ResourceState],
    registry: ProviderRegistry,
    declarations: Declarations,
    destroy: bool = False,
) -> Plan:
    """
    Order changes into a plan.

    Raises:
        PlanConflictError: Ordering constraints form a cycle
    """
    builder = _PlanBuilder(changes, graph, state, registry, declarations)
    builder.expand()
    builder.constrain()
    ordered = builder.order()

    new_index = {node_idx: plan_idx for plan_idx, node_idx in enumerate(ordered)}
    items = []
    for plan_idx, node_idx in enumerate(ordered):
        node = builder.nodes[node_idx]
        items.append(PlanItem(
            index=plan_idx,
            resource_id=node.resource_id,
            action=node.action,
            attributes=node.attributes,
            depends_on=tuple(sorted(new_index[b] for b in node.after)),
            dependencies=node.dependencies,
            replace=node.replace,
            deposed_only=node.deposed_only,
            create_before_destroy=node.create_before_destroy,
        ))
        track_plan_item(str(node.action))

    plan = Plan(
        items=tuple(items),
        changes=tuple(changes),
        outputs=declarations.outputs,
        destroy=destroy,
    )
    summary = plan.summary
    logger.info(
        f"Plan: {summary['add']} to add, {summary['change']} to change, "
        f"{summary['replace']} to replace, {summary['destroy']} to destroy"
    )
    return plan
