"""
Converge Engine - Dependency graph builder.

Edges point from a dependent resource to the resource it references
(its producer). The graph must be acyclic.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from loguru import logger

from converge.core.exceptions import CyclicDependencyError, UnresolvedReferenceError
from converge.model.resources import Declarations, ResourceId, format_path


class DependencyGraph:
    """Directed acyclic graph of declared resources."""

    def __init__(self, nodes: Iterable[ResourceId], edges: Iterable[tuple[ResourceId, ResourceId]]):
        self._nodes: list[ResourceId] = list(nodes)
        self._position = {node: i for i, node in enumerate(self._nodes)}
        self._deps: dict[ResourceId, set[ResourceId]] = {node: set() for node in self._nodes}
        self._dependents: dict[ResourceId, set[ResourceId]] = {node: set() for node in self._nodes}
        for dependent, producer in edges:
            self._deps[dependent].add(producer)
            self._dependents[producer].add(dependent)

    @property
    def nodes(self) -> list[ResourceId]:
        return list(self._nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._position

    def _ordered(self, nodes: Iterable[ResourceId]) -> list[ResourceId]:
        return sorted(nodes, key=self._position.__getitem__)

    def dependencies_of(self, node: ResourceId) -> list[ResourceId]:
        """Producers the node references, in declaration order."""
        return self._ordered(self._deps.get(node, ()))

    def dependents_of(self, node: ResourceId) -> list[ResourceId]:
        """Resources referencing the node, in declaration order."""
        return self._ordered(self._dependents.get(node, ()))

    def edges(self) -> set[tuple[ResourceId, ResourceId]]:
        """All (dependent, producer) pairs."""
        return {(dependent, producer) for dependent, producers in self._deps.items() for producer in producers}

    def topological_order(self) -> list[ResourceId]:
        """Producers before dependents; ties broken by declaration order."""
        remaining = {node: len(self._deps[node]) for node in self._nodes}
        ready = [self._position[node] for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[ResourceId] = []
        while ready:
            node = self._nodes[heapq.heappop(ready)]
            order.append(node)
            for dependent in self._dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, self._position[dependent])

        if len(order) != len(self._nodes):
            cyclic = [node for node in self._nodes if node not in set(order)]
            raise CyclicDependencyError(cyclic)
        return order


def _strongly_connected(
    nodes: list[ResourceId], deps: dict[ResourceId, list[ResourceId]]
) -> list[list[ResourceId]]:
    """Tarjan's algorithm, iterative."""
    index: dict[ResourceId, int] = {}
    lowlink: dict[ResourceId, int] = {}
    on_stack: set[ResourceId] = set()
    stack: list[ResourceId] = []
    components: list[list[ResourceId]] = []
    counter = 0

    for root in nodes:
        if root in index:
            continue
        work: list[tuple[ResourceId, int]] = [(root, 0)]
        while work:
            node, child_idx = work.pop()
            if child_idx == 0:
                index[node] = lowlink[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)

            children = deps[node]
            recurse = False
            while child_idx < len(children):
                child = children[child_idx]
                child_idx += 1
                if child not in index:
                    work.append((node, child_idx))
                    work.append((child, 0))
                    recurse = True
                    break
                if child in on_stack:
                    lowlink[node] = min(lowlink[node], index[child])
            if recurse:
                continue

            if lowlink[node] == index[node]:
                component: list[ResourceId] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

    return components


def build_graph(declarations: Declarations) -> DependencyGraph:
    """
    Build the dependency graph of a declaration set.

    Raises:
        UnresolvedReferenceError: A reference or depends_on target is not declared
        CyclicDependencyError: Declarations form a cycle (all members reported)
    """
    edges: list[tuple[ResourceId, ResourceId]] = []

    for decl in declarations:
        for ref in decl.references():
            if ref.target not in declarations:
                raise UnresolvedReferenceError(decl.id, ref.target, format_path(ref.path))
            edges.append((decl.id, ref.target))
        for dep in decl.depends_on:
            if dep not in declarations:
                raise UnresolvedReferenceError(decl.id, dep)
            edges.append((decl.id, dep))

    graph = DependencyGraph(declarations.ids, edges)

    nodes = graph.nodes
    adjacency = {node: graph.dependencies_of(node) for node in nodes}
    cyclic: set[ResourceId] = set()
    for component in _strongly_connected(nodes, adjacency):
        if len(component) > 1 or component[0] in adjacency[component[0]]:
            cyclic.update(component)
    if cyclic:
        members = sorted(cyclic, key=lambda rid: declarations.position(rid))
        logger.error(f"Dependency cycle detected: {', '.join(str(m) for m in members)}")
        raise CyclicDependencyError(members)

    logger.debug(f"Built dependency graph: {len(nodes)} node(s), {len(graph.edges())} edge(s)")
    return graph
