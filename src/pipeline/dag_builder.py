# src/pipeline/dag_builder.py — v3
"""Dependency graph checks for the registry and execution plans.

Builds a networkx DiGraph (edge dep -> step) from the registry's
dependency map, rejects cycles, groups steps into dependency stages and
reports plan entries whose dependencies are not scheduled earlier.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import networkx as nx

from callagents.core.errors import DAGError

if TYPE_CHECKING:
    from callagents.pipeline.planner import ExecutionPlan

logger = logging.getLogger(__name__)


def build_dependency_graph(dependency_map: dict[str, list[str]]) -> nx.DiGraph:
    """Build a dependency graph.

    Args:
        dependency_map: step name -> list of dependency step names.

    Returns:
        DiGraph with one node per step and an edge dep -> step.

    Raises:
        DAGError: If a dependency is not a key of dependency_map.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(dependency_map)
    for step, deps in dependency_map.items():
        for dep in deps:
            if dep not in dependency_map:
                raise DAGError(f"Step '{step}' depends on '{dep}' which is not registered")
            graph.add_edge(dep, step)
    return graph


def check_acyclic(graph: nx.DiGraph) -> None:
    """Raise DAGError if the dependency graph contains a cycle."""
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return
    path = " -> ".join([edge[0] for edge in cycle] + [cycle[-1][1]])
    raise DAGError(f"Cycle detected: {path}")


def dependency_stages(dependency_map: dict[str, list[str]]) -> list[list[str]]:
    """Group steps into levels; a level only depends on earlier levels.

    Raises:
        DAGError: On a missing dependency or a cycle.
    """
    graph = build_dependency_graph(dependency_map)
    check_acyclic(graph)
    stages = [sorted(level) for level in nx.topological_generations(graph)]
    logger.debug("Dependency stages: %s", stages)
    return stages


def plan_order_warnings(
    plan: ExecutionPlan, dependency_map: dict[str, list[str]]
) -> list[str]:
    """List plan steps whose dependencies are not scheduled strictly earlier.

    A dependency in the same parallel phase, a later phase, or absent
    from the plan means the step will be skipped at run time.
    """
    warnings: list[str] = []
    phase_of: dict[str, int] = {}
    position: dict[str, int] = {}
    for phase_idx, phase in enumerate(plan.phases):
        for step in phase.step_names:
            phase_of.setdefault(step, phase_idx)
            position.setdefault(step, len(position))

    for phase_idx, phase in enumerate(plan.phases):
        for step in phase.step_names:
            for dep in dependency_map.get(step, []):
                if dep not in phase_of:
                    warnings.append(f"'{step}' depends on '{dep}' which is not in the plan")
                elif phase_of[dep] > phase_idx or (
                    phase_of[dep] == phase_idx
                    and (phase.parallel or position[dep] > position[step])
                ):
                    warnings.append(f"'{step}' depends on '{dep}' which is not scheduled earlier")
    return warnings
