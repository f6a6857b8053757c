"""Graph algorithms over the pipeline IR.

The IR keeps edges on the jobs themselves; these helpers project them into
a NetworkX digraph (edge direction: dependency -> dependent) for cycle
detection and ordering. Every result is ordered by source position so the
output never depends on set or hash iteration order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import networkx as nx

from ci_translate.diagnostics.exceptions import StructuralError

if TYPE_CHECKING:
    from ci_translate.ir.graph import PipelineGraph


def to_digraph(graph: PipelineGraph, emittable_only: bool = True) -> nx.DiGraph:
    """Project the pipeline graph onto a NetworkX digraph.

    Args:
    ----
        graph: The pipeline graph.
        emittable_only: Skip expanded matrix templates.

    Returns:
    -------
        Digraph with one node per job and an edge per resolvable dependency.

    """
    digraph = nx.DiGraph()
    jobs = graph.emittable_jobs() if emittable_only else list(graph.jobs.values())
    for position, job in enumerate(jobs):
        digraph.add_node(job.id, position=position)

    for job in jobs:
        for dep_id, edge in job.depends_on.items():
            if digraph.has_node(dep_id):
                digraph.add_edge(dep_id, job.id, allow_failure=edge.allow_failure)

    return digraph


def find_dangling_edges(graph: PipelineGraph) -> list[tuple[str, str]]:
    """Find dependency edges pointing at unknown jobs.

    Returns
    -------
        (job id, missing dependency id) pairs in source order.

    """
    dangling: list[tuple[str, str]] = []
    for job in graph.jobs.values():
        for dep_id in job.depends_on:
            if not graph.has_job(dep_id):
                dangling.append((job.id, dep_id))
    return dangling


def find_cycles(graph: PipelineGraph) -> list[list[str]]:
    """Find groups of jobs that depend on themselves transitively.

    Returns
    -------
        One list of job ids per strongly connected component that contains
        a cycle, members and groups ordered by source position.

    """
    digraph = to_digraph(graph)
    position = {job_id: i for i, job_id in enumerate(graph.job_ids)}

    cycles: list[list[str]] = []
    for component in nx.strongly_connected_components(digraph):
        members = sorted(component, key=position.__getitem__)
        if len(members) > 1 or digraph.has_edge(members[0], members[0]):
            cycles.append(members)

    cycles.sort(key=lambda members: position[members[0]])
    return cycles


def topological_order(graph: PipelineGraph) -> list[str]:
    """Order emittable jobs so every job follows its dependencies.

    Ties are broken by source position, which makes the order stable.

    Raises
    ------
        StructuralError: If the graph still contains a cycle.

    """
    digraph = to_digraph(graph)
    position = nx.get_node_attributes(digraph, "position")
    try:
        return list(nx.lexicographical_topological_sort(digraph, key=position.__getitem__))
    except nx.NetworkXUnfeasible as e:
        raise StructuralError(f"Cannot order jobs: {e}") from e


def ancestors(graph: PipelineGraph, job_id: str) -> list[str]:
    """Get every job the given job depends on, directly or transitively.

    Returns
    -------
        Ancestor ids in source order.

    """
    digraph = to_digraph(graph, emittable_only=False)
    if not digraph.has_node(job_id):
        return []
    found = nx.ancestors(digraph, job_id)
    return [jid for jid in graph.job_ids if jid in found]


def preserves_edges(graph: PipelineGraph, order: list[str]) -> bool:
    """Check that an ordering lists every dependency before its dependent."""
    index = {job_id: i for i, job_id in enumerate(order)}
    for job in graph.emittable_jobs():
        for dep_id in job.depends_on:
            if dep_id in index and job.id in index and index[dep_id] >= index[job.id]:
                return False
    return True
