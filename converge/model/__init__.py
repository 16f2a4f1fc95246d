"""
Converge Model - Resource declarations.
"""

from converge.model.declarations import declarations_from_dict, load_declarations
from converge.model.resources import (
    Declarations,
    OutputDecl,
    Reference,
    ResourceDecl,
    ResourceId,
    iter_references,
    lookup_path,
    substitute,
)

__all__ = [
    "Declarations",
    "OutputDecl",
    "Reference",
    "ResourceDecl",
    "ResourceId",
    "declarations_from_dict",
    "iter_references",
    "load_declarations",
    "lookup_path",
    "substitute",
]
