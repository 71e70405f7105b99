"""Deterministic dependency ordering shared by variable and action resolution."""
from __future__ import annotations

from typing import Any, Callable, Dict, Hashable, List, Mapping, Sequence
import heapq


class CycleError(ValueError):
    """Raised when a dependency map cannot be ordered."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        if self.cycle:
            message = f"Circular dependency detected: {' -> '.join(self.cycle)}"
        else:
            message = "Circular dependency detected"
        super().__init__(message)


def find_cycle(dependency_map: Mapping[str, Sequence[str]]) -> list[str]:
    """Return one cycle from *dependency_map* as a closed path, or ``[]``."""

    visited: set[str] = set()
    active: set[str] = set()
    path: list[str] = []

    def _dfs(node: str) -> list[str] | None:
        visited.add(node)
        active.add(node)
        path.append(node)
        for dep in dependency_map.get(node, ()):
            if dep not in dependency_map:
                continue
            if dep in active:
                start_index = path.index(dep)
                return path[start_index:] + [dep]
            if dep not in visited:
                result = _dfs(dep)
                if result:
                    return result
        active.remove(node)
        path.pop()
        return None

    for node in sorted(dependency_map):
        if node not in visited:
            cycle = _dfs(node)
            if cycle:
                return cycle
    return []


def topological_order(
    dependency_map: Mapping[str, Sequence[str]],
    *,
    priority: Callable[[str], Hashable] | None = None,
) -> list[str]:
    """Order nodes so every node follows the nodes it depends on.

    ``dependency_map`` maps a node to the nodes that must precede it. Among the
    nodes that are ready at any point, the one with the smallest ``priority``
    key is emitted first (the node name itself when no key function is given),
    which makes the result independent of mapping iteration order.

    Raises :class:`CycleError` naming one offending cycle.
    """

    key_of: Callable[[str], Any] = priority or (lambda node: node)
    nodes = list(dependency_map.keys())
    dependents: Dict[str, List[str]] = {node: [] for node in nodes}
    indegree: Dict[str, int] = {node: 0 for node in nodes}

    for node, deps in dependency_map.items():
        filtered_deps = {dep for dep in deps if dep in dependency_map}
        indegree[node] = len(filtered_deps)
        for dep in filtered_deps:
            dependents[dep].append(node)

    ready = [(key_of(node), node) for node, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, (key_of(dependent), dependent))

    if len(order) != len(nodes):
        raise CycleError(find_cycle(dependency_map))

    return order


__all__ = ["CycleError", "find_cycle", "topological_order"]
