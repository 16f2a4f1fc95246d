"""
Converge Engine - Graph, diff, plan, execute and output resolution.
"""

from converge.engine.differ import UNKNOWN, ResourceChange, compute_changes
from converge.engine.engine import Engine
from converge.engine.executor import Executor
from converge.engine.graph import DependencyGraph, build_graph
from converge.engine.outputs import OutputValue, resolve_outputs
from converge.engine.planner import Plan, PlanItem, build_plan
from converge.engine.report import ApplyReport, ItemResult, PlanReport

__all__ = [
    "UNKNOWN",
    "ApplyReport",
    "DependencyGraph",
    "Engine",
    "Executor",
    "ItemResult",
    "OutputValue",
    "Plan",
    "PlanItem",
    "PlanReport",
    "ResourceChange",
    "build_graph",
    "build_plan",
    "compute_changes",
    "resolve_outputs",
]
