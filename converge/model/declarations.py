"""
Converge Model - Declaration document loader.

Parses a YAML/JSON document into `Declarations`:

    resources:
      - kind: network
        name: main
        attributes:
          cidr_block: 10.0.0.0/16
      - kind: subnet
        name: web
        attributes:
          network_id: {ref: network.main.id}
          cidr_block: 10.0.1.0/24
        lifecycle:
          create_before_destroy: false
    outputs:
      - name: subnet_id
        value: "${subnet.web.id}"
        sensitive: false

A reference is either a single-key mapping `{ref: kind.name.path}` or a
string that is exactly `${kind.name.path}`.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from converge.core.exceptions import DeclarationError
from converge.model.resources import (
    Declarations,
    OutputDecl,
    Reference,
    ResourceDecl,
    ResourceId,
)

_INTERPOLATION = re.compile(r"^\$\{([^{}]+)\}$")


class LifecycleDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool = False


class ResourceDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: str = Field(min_length=1)
    name: str = Field(min_length=1)
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    lifecycle: LifecycleDocument = Field(default_factory=LifecycleDocument)


class OutputDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    value: Any = None
    sensitive: bool = False
    description: str = ""


class DeclarationDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resources: list[ResourceDocument] = Field(default_factory=list)
    outputs: list[OutputDocument] = Field(default_factory=list)


def parse_value(value: Any) -> Any:
    """Convert reference notation inside a raw value into Reference markers."""
    if isinstance(value, dict):
        if set(value) == {"ref"} and isinstance(value["ref"], str):
            return Reference.parse(value["ref"])
        return {k: parse_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_value(v) for v in value]
    if isinstance(value, str):
        match = _INTERPOLATION.match(value)
        if match:
            return Reference.parse(match.group(1))
    return value


def declarations_from_dict(data: dict[str, Any]) -> Declarations:
    """
    Build Declarations from an already-parsed document.

    Raises:
        DeclarationError: On schema violations, bad references or duplicates.
    """
    try:
        document = DeclarationDocument.model_validate(data or {})
    except ValidationError as e:
        raise DeclarationError(
            f"Invalid declaration document: {e.error_count()} error(s)", {"errors": str(e)}
        ) from e

    resources = [
        ResourceDecl(
            id=ResourceId(doc.kind, doc.name),
            attributes={k: parse_value(v) for k, v in doc.attributes.items()},
            depends_on=tuple(ResourceId.parse(dep) for dep in doc.depends_on),
            create_before_destroy=doc.lifecycle.create_before_destroy,
        )
        for doc in document.resources
    ]
    outputs = [
        OutputDecl(
            name=doc.name,
            value=parse_value(doc.value),
            sensitive=doc.sensitive,
            description=doc.description,
        )
        for doc in document.outputs
    ]
    return Declarations(resources=tuple(resources), outputs=tuple(outputs))


def load_declarations(path: Path) -> Declarations:
    """Load a declaration file (.yaml, .yml or .json)."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DeclarationError(f"Cannot read {path}: {e}", {"path": str(path)}) from e

    try:
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DeclarationError(f"Cannot parse {path}: {e}", {"path": str(path)}) from e

    if data is not None and not isinstance(data, dict):
        raise DeclarationError(f"{path} must contain a mapping", {"path": str(path)})
    return declarations_from_dict(data or {})
