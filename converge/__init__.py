"""
Converge - declarative resource reconciliation engine.

Builds a dependency graph from resource declarations, diffs it against
the last observed state, and applies the difference through pluggable
providers in a safe, resumable order.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("converge")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml
    __version__ = "0.4.0"

__author__ = "Converge Contributors"
