"""Dependency graph validator.

The dependency relation is held as an adjacency structure keyed by task id:
``forward[dependent]`` lists the tasks it depends on and ``reverse[dependency]``
lists the tasks depending on it.  Every traversal is iterative and guarded by a
visited set, so it terminates on malformed (cyclic) data and never hits the
recursion limit on long chains.
"""

from __future__ import annotations

import heapq
from collections import deque
from typing import Iterable, Optional

from ..errors import CyclicDependencyError, NotFoundError
from .model import DependencyEdge

# DFS node colours for cycle search
_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """Directed graph over task ids built from a set of dependency edges.

    Parameters
    ----------
    edges:
        Existing ``dependent -> dependency`` edges.
    nodes:
        Task ids that exist even if they have no edges.  When omitted, the
        node set is the set of edge endpoints.
    """

    def __init__(
        self,
        edges: Iterable[DependencyEdge] = (),
        nodes: Optional[Iterable[str]] = None,
    ) -> None:
        self.forward: dict[str, list[str]] = {}
        self.reverse: dict[str, list[str]] = {}
        self._edge_keys: set[tuple[str, str]] = set()
        for node in nodes or ():
            self._ensure(node)
        for edge in edges:
            self.add_edge(edge.dependent_id, edge.dependency_id)

    def _ensure(self, node: str) -> None:
        self.forward.setdefault(node, [])
        self.reverse.setdefault(node, [])

    # -- structure ----------------------------------------------------------

    def __contains__(self, node: object) -> bool:
        return node in self.forward

    @property
    def nodes(self) -> list[str]:
        return list(self.forward)

    @property
    def edge_count(self) -> int:
        return len(self._edge_keys)

    def has_edge(self, dependent_id: str, dependency_id: str) -> bool:
        return (dependent_id, dependency_id) in self._edge_keys

    def add_edge(self, dependent_id: str, dependency_id: str) -> None:
        """Insert an edge without validation (duplicates are ignored)."""
        self._ensure(dependent_id)
        self._ensure(dependency_id)
        if (dependent_id, dependency_id) in self._edge_keys:
            return
        self._edge_keys.add((dependent_id, dependency_id))
        self.forward[dependent_id].append(dependency_id)
        self.reverse[dependency_id].append(dependent_id)

    def direct_dependencies(self, task_id: str) -> list[str]:
        self._require(task_id)
        return list(self.forward[task_id])

    def direct_dependents(self, task_id: str) -> list[str]:
        self._require(task_id)
        return list(self.reverse[task_id])

    def _require(self, task_id: str) -> None:
        if task_id not in self.forward:
            raise NotFoundError(f"Task {task_id} not found", task_id=task_id)

    # -- reachability -------------------------------------------------------

    def reaches(self, start: str, target: str) -> bool:
        """Return True if *target* is reachable from *start* along forward edges."""
        if start == target:
            return True
        if start not in self.forward:
            return False
        visited: set[str] = {start}
        stack: list[str] = [start]
        while stack:
            current = stack.pop()
            for nxt in self.forward.get(current, ()):
                if nxt == target:
                    return True
                if nxt not in visited:
                    visited.add(nxt)
                    stack.append(nxt)
        return False

    def would_create_cycle(self, dependent_id: str, dependency_id: str) -> bool:
        """Return True if adding ``dependent_id -> dependency_id`` closes a cycle.

        A cycle appears exactly when *dependent_id* is already reachable from
        *dependency_id*.  A self-edge is the trivial one-node cycle.
        """
        return self.reaches(dependency_id, dependent_id)

    def _closure(self, task_id: str, adjacency: dict[str, list[str]]) -> list[str]:
        self._require(task_id)
        visited: set[str] = {task_id}
        order: list[str] = []
        queue: deque[str] = deque([task_id])
        while queue:
            current = queue.popleft()
            for nxt in adjacency.get(current, ()):
                if nxt in visited:
                    continue
                visited.add(nxt)
                order.append(nxt)
                queue.append(nxt)
        return order

    def transitive_dependencies(self, task_id: str) -> list[str]:
        """All tasks *task_id* depends on, directly or not, in discovery order."""
        return self._closure(task_id, self.forward)

    def transitive_dependents(self, task_id: str) -> list[str]:
        """All tasks depending on *task_id*, directly or not, in discovery order."""
        return self._closure(task_id, self.reverse)

    # -- whole-graph checks -------------------------------------------------

    def find_cycle(self) -> Optional[list[str]]:
        """Return one cycle as a closed path (``[a, b, a]``), or None for a DAG."""
        colour: dict[str, int] = {}
        for root in self.forward:
            if colour.get(root, _WHITE) != _WHITE:
                continue
            colour[root] = _GREY
            path: list[str] = [root]
            iters = [iter(self.forward[root])]
            while iters:
                advanced = False
                for nxt in iters[-1]:
                    state = colour.get(nxt, _WHITE)
                    if state == _GREY:
                        start = path.index(nxt)
                        return path[start:] + [nxt]
                    if state == _WHITE:
                        colour[nxt] = _GREY
                        path.append(nxt)
                        iters.append(iter(self.forward.get(nxt, ())))
                        advanced = True
                        break
                if not advanced:
                    colour[path.pop()] = _BLACK
                    iters.pop()
        return None

    def topological_order(self) -> list[str]:
        """Kahn's algorithm: dependencies before dependents, ties broken by id."""
        in_degree = {node: len(deps) for node, deps in self.forward.items()}
        ready = [node for node, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in self.reverse.get(node, ()):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)
        if len(order) != len(in_degree):
            cycle = self.find_cycle()
            raise CyclicDependencyError(
                "Dependency graph contains a cycle",
                cycle=cycle,
            )
        return order


# ---------------------------------------------------------------------------
# Functional helpers
# ---------------------------------------------------------------------------

def would_create_cycle(edges: Iterable[DependencyEdge], new_edge: DependencyEdge) -> bool:
    """Return True if adding *new_edge* to *edges* would create a cycle."""
    if new_edge.dependent_id == new_edge.dependency_id:
        return True
    graph = DependencyGraph(edges)
    return graph.would_create_cycle(new_edge.dependent_id, new_edge.dependency_id)


def transitive_dependencies(
    edges: Iterable[DependencyEdge],
    task_id: str,
    nodes: Optional[Iterable[str]] = None,
) -> list[str]:
    return DependencyGraph(edges, nodes).transitive_dependencies(task_id)


def transitive_dependents(
    edges: Iterable[DependencyEdge],
    task_id: str,
    nodes: Optional[Iterable[str]] = None,
) -> list[str]:
    return DependencyGraph(edges, nodes).transitive_dependents(task_id)
