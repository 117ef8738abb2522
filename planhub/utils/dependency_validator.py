"""
Dependency validation for activities.

An activity's dependencies must reference activities of the same planner
and the resulting dependency graph must stay acyclic.
"""

import logging
from typing import Dict, List, Iterable, Optional

logger = logging.getLogger(__name__)


class DependencyValidator:
    """
    Validate activity dependencies for cycles and dangling references.

    The graph maps activity id -> ids it depends on.
    """

    def __init__(self, graph: Dict[str, List[str]]):
        self.graph = {node: list(deps or []) for node, deps in graph.items()}

    def with_edges(self, activity_id: str, dependencies: Iterable[str]) -> "DependencyValidator":
        """Return a validator whose graph has activity_id's edges replaced."""
        graph = dict(self.graph)
        graph[activity_id] = list(dependencies)
        return DependencyValidator(graph)

    def detect_circular_dependencies(self) -> List[List[str]]:
        """
        Detect cycles using Depth-First Search (DFS).

        Returns:
            List of cycles, each a list of ids that starts and ends on the same node
        """
        visited = set()
        rec_stack = set()
        cycles = []

        def dfs(node: str, path: List[str]) -> None:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in self.graph.get(node, []):
                if neighbor not in visited:
                    dfs(neighbor, path.copy())
                elif neighbor in rec_stack:
                    cycle_start = path.index(neighbor)
                    cycle = path[cycle_start:] + [neighbor]

                    # Normalize so the same loop found from two entry points dedupes
                    min_idx = cycle.index(min(cycle[:-1]))
                    normalized = cycle[min_idx:-1] + cycle[:min_idx] + [cycle[min_idx]]

                    if normalized not in cycles:
                        cycles.append(normalized)

            rec_stack.remove(node)

        for node in list(self.graph):
            if node not in visited:
                dfs(node, [])

        if cycles:
            logger.warning(f"Detected {len(cycles)} circular dependencies")

        return cycles

    def invalid_references(self, known_ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        List dependency ids that point outside the known activity set.

        Args:
            known_ids: Valid targets (defaults to the graph's own nodes)
        """
        known = set(known_ids) if known_ids is not None else set(self.graph)
        invalid = []

        for node, deps in self.graph.items():
            for dep in deps:
                if dep == node or dep not in known:
                    invalid.append(dep)

        return invalid
