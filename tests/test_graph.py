"""Tests for the dependency graph validator (engine/graph.py)."""

from __future__ import annotations

import random
import time

import pytest

from taskdeps.engine.graph import (
    DependencyGraph,
    transitive_dependencies,
    transitive_dependents,
    would_create_cycle,
)
from taskdeps.engine.model import DependencyEdge
from taskdeps.errors import CyclicDependencyError, NotFoundError


def _edges(*pairs: tuple[str, str]) -> list[DependencyEdge]:
    return [DependencyEdge(a, b) for a, b in pairs]


class TestWouldCreateCycle:
    def test_empty_graph_accepts_edge(self) -> None:
        assert not would_create_cycle([], DependencyEdge("a", "b"))

    def test_self_edge_is_a_cycle(self) -> None:
        assert would_create_cycle([], DependencyEdge("a", "a"))

    def test_reverse_edge_is_a_cycle(self) -> None:
        edges = _edges(("a", "b"))
        assert would_create_cycle(edges, DependencyEdge("b", "a"))

    def test_long_cycle_detected(self) -> None:
        # a -> b -> c -> d ; d -> a closes the loop
        edges = _edges(("a", "b"), ("b", "c"), ("c", "d"))
        assert would_create_cycle(edges, DependencyEdge("d", "a"))

    def test_diamond_is_not_a_cycle(self) -> None:
        edges = _edges(("a", "b"), ("a", "c"), ("b", "d"))
        assert not would_create_cycle(edges, DependencyEdge("c", "d"))

    def test_unrelated_edge_accepted(self) -> None:
        edges = _edges(("a", "b"), ("c", "d"))
        assert not would_create_cycle(edges, DependencyEdge("b", "c"))


class TestClosure:
    def test_transitive_dependencies_in_discovery_order(self) -> None:
        edges = _edges(("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("d", "e"))
        assert transitive_dependencies(edges, "a") == ["b", "c", "d", "e"]

    def test_transitive_dependents(self) -> None:
        edges = _edges(("a", "b"), ("c", "b"), ("d", "a"))
        assert transitive_dependents(edges, "b") == ["a", "c", "d"]

    def test_isolated_node_has_empty_closure(self) -> None:
        assert transitive_dependencies([], "solo", nodes=["solo"]) == []
        assert transitive_dependents([], "solo", nodes=["solo"]) == []

    def test_unknown_node_raises_not_found(self) -> None:
        with pytest.raises(NotFoundError):
            transitive_dependencies(_edges(("a", "b")), "zzz")

    def test_terminates_on_malformed_cyclic_data(self) -> None:
        graph = DependencyGraph(_edges(("a", "b"), ("b", "c"), ("c", "a")))
        assert graph.transitive_dependencies("a") == ["b", "c"]
        assert graph.transitive_dependents("a") == ["c", "b"]

    def test_direct_neighbours(self) -> None:
        graph = DependencyGraph(_edges(("a", "b"), ("a", "c"), ("d", "a")))
        assert graph.direct_dependencies("a") == ["b", "c"]
        assert graph.direct_dependents("a") == ["d"]


class TestWholeGraph:
    def test_find_cycle_none_for_dag(self) -> None:
        graph = DependencyGraph(_edges(("a", "b"), ("b", "c"), ("a", "c")))
        assert graph.find_cycle() is None

    def test_find_cycle_returns_closed_path(self) -> None:
        graph = DependencyGraph(_edges(("x", "a"), ("a", "b"), ("b", "c"), ("c", "a")))
        cycle = graph.find_cycle()
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_find_cycle_self_loop(self) -> None:
        graph = DependencyGraph()
        graph.add_edge("a", "a")
        assert graph.find_cycle() == ["a", "a"]

    def test_topological_order_puts_dependencies_first(self) -> None:
        graph = DependencyGraph(_edges(("c", "b"), ("b", "a")), nodes=["a", "b", "c", "z"])
        order = graph.topological_order()
        assert order.index("a") < order.index("b") < order.index("c")
        assert "z" in order

    def test_topological_order_rejects_cycle(self) -> None:
        graph = DependencyGraph(_edges(("a", "b"), ("b", "a")))
        with pytest.raises(CyclicDependencyError):
            graph.topological_order()

    def test_duplicate_edges_collapse(self) -> None:
        graph = DependencyGraph(_edges(("a", "b"), ("a", "b")))
        assert graph.edge_count == 1
        assert graph.has_edge("a", "b")
        assert not graph.has_edge("b", "a")


class TestScale:
    def test_long_chain_does_not_recurse(self) -> None:
        n = 20_000
        graph = DependencyGraph(_edges(*[(f"t{i}", f"t{i + 1}") for i in range(n)]))
        assert graph.would_create_cycle(f"t{n}", "t0")
        assert len(graph.transitive_dependencies("t0")) == n
        assert graph.find_cycle() is None

    def test_ten_thousand_edges_within_interactive_latency(self) -> None:
        rng = random.Random(7)
        nodes = [f"t{i:05d}" for i in range(3000)]
        pairs = set()
        while len(pairs) < 10_000:
            i, j = sorted(rng.sample(range(len(nodes)), 2))
            pairs.add((nodes[i], nodes[j]))  # lower index depends on higher: a DAG
        graph = DependencyGraph(_edges(*pairs), nodes=nodes)

        start = time.perf_counter()
        # Edges only point from lower to higher index, so this keeps the DAG.
        assert not graph.would_create_cycle(nodes[0], nodes[-1])
        elapsed = time.perf_counter() - start
        assert elapsed < 0.1

        start = time.perf_counter()
        graph.transitive_dependencies(nodes[0])
        graph.transitive_dependents(nodes[-1])
        elapsed = time.perf_counter() - start
        assert elapsed < 0.1
