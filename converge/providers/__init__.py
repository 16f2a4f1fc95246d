"""
Converge Providers - Pluggable CRUD capabilities per resource kind.
"""

from converge.providers.base import ProviderRegistry, ResourceProvider, ResourceSchema
from converge.providers.simulated import SimulatedCloud, SimulatedResource, build_registry

__all__ = [
    "ProviderRegistry",
    "ResourceProvider",
    "ResourceSchema",
    "SimulatedCloud",
    "SimulatedResource",
    "build_registry",
]
