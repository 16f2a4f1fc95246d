"""
Converge Model - Declared resources and references.

Attribute values are plain JSON-like data (str, int, float, bool, None,
lists, dicts) that may contain `Reference` markers at any depth. A
reference stays a placeholder until its producer has been applied; the
executor substitutes it in plan order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from converge.core.exceptions import DeclarationError, DuplicateResourceError

PathElement = str | int


@dataclass(frozen=True, order=True)
class ResourceId:
    """Declaration identity of a resource: (kind, local name)."""

    kind: str
    name: str

    def __post_init__(self) -> None:
        if not self.kind or not self.name:
            raise DeclarationError("Resource kind and name must be non-empty")
        if "." in self.kind or "." in self.name:
            raise DeclarationError(
                f"Resource kind and name may not contain '.': {self.kind!r}, {self.name!r}"
            )

    def __str__(self) -> str:
        return f"{self.kind}.{self.name}"

    @classmethod
    def parse(cls, text: str) -> ResourceId:
        """Parse 'kind.name'."""
        parts = text.split(".")
        if len(parts) != 2:
            raise DeclarationError(f"Expected 'kind.name', got {text!r}")
        return cls(parts[0], parts[1])


def _parse_path(parts: list[str]) -> tuple[PathElement, ...]:
    return tuple(int(p) if p.isdigit() else p for p in parts)


def format_path(path: tuple[PathElement, ...]) -> str:
    return ".".join(str(p) for p in path)


@dataclass(frozen=True)
class Reference:
    """Pending value: the attribute at `path` of resource `target`."""

    target: ResourceId
    path: tuple[PathElement, ...] = ("id",)

    def __post_init__(self) -> None:
        if not self.path:
            raise DeclarationError(f"Reference to {self.target} needs an attribute path")

    def __str__(self) -> str:
        return f"${{{self.target}.{format_path(self.path)}}}"

    @classmethod
    def parse(cls, text: str) -> Reference:
        """Parse 'kind.name.attr[.sub...]' (numeric segments index lists)."""
        parts = text.split(".")
        if len(parts) < 3 or not all(parts):
            raise DeclarationError(f"Expected 'kind.name.attribute', got {text!r}")
        return cls(ResourceId(parts[0], parts[1]), _parse_path(parts[2:]))


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference contained in an attribute value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def has_references(value: Any) -> bool:
    return next(iter_references(value), None) is not None


def substitute(value: Any, resolve: Callable[[Reference], Any]) -> Any:
    """Return a copy of value with every Reference replaced by resolve(ref)."""
    if isinstance(value, Reference):
        return resolve(value)
    if isinstance(value, Mapping):
        return {k: substitute(v, resolve) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, resolve) for v in value]
    if isinstance(value, tuple):
        return [substitute(v, resolve) for v in value]
    return value


def lookup_path(attributes: Mapping[str, Any], path: tuple[PathElement, ...]) -> Any:
    """
    Walk path through nested dicts/lists.

    Raises:
        KeyError: If any segment is missing.
    """
    current: Any = attributes
    for element in path:
        if isinstance(current, Mapping) and element in current:
            current = current[element]
        elif isinstance(current, Mapping) and str(element) in current:
            current = current[str(element)]
        elif isinstance(current, (list, tuple)) and isinstance(element, int) and -len(current) <= element < len(current):
            current = current[element]
        else:
            raise KeyError(format_path(path))
    return current


@dataclass(frozen=True)
class ResourceDecl:
    """A declared resource. Not modified once parsed for an apply cycle."""

    id: ResourceId
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[ResourceId, ...] = ()
    create_before_destroy: bool = False

    @property
    def kind(self) -> str:
        return self.id.kind

    @property
    def name(self) -> str:
        return self.id.name

    def references(self) -> list[Reference]:
        return list(iter_references(self.attributes))


@dataclass(frozen=True)
class OutputDecl:
    """A named value exposed after apply."""

    name: str
    value: Any
    sensitive: bool = False
    description: str = ""


@dataclass(frozen=True)
class Declarations:
    """Ordered set of resource and output declarations."""

    resources: tuple[ResourceDecl, ...] = ()
    outputs: tuple[OutputDecl, ...] = ()
    _index: dict[ResourceId, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "outputs", tuple(self.outputs))

        for position, decl in enumerate(self.resources):
            if decl.id in self._index:
                raise DuplicateResourceError(decl.id)
            self._index[decl.id] = position

        seen_outputs: set[str] = set()
        for output in self.outputs:
            if output.name in seen_outputs:
                raise DeclarationError(f"Output '{output.name}' is declared more than once")
            seen_outputs.add(output.name)

    def __iter__(self) -> Iterator[ResourceDecl]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._index

    def get(self, resource_id: ResourceId) -> ResourceDecl | None:
        position = self._index.get(resource_id)
        return None if position is None else self.resources[position]

    def position(self, resource_id: ResourceId) -> int | None:
        """Declaration order of a resource (None if not declared)."""
        return self._index.get(resource_id)

    @property
    def ids(self) -> list[ResourceId]:
        return [decl.id for decl in self.resources]

    @classmethod
    def empty(cls) -> Declarations:
        return cls()
