"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from scw_provisioner.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Dependencies on nodes outside the graph are ignored. Lower ``priorities``
    run first among nodes that are ready at the same time.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = dict(priorities or {})
        self._deps: dict[str, set[str]] = {
            node: {d for d in dependencies.get(node, []) if d in self._nodes and d != node}
            for node in self._nodes
        }
        self._dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                self._dependents[dep].add(node)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._nodes

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents_of(self, node: str) -> set[str]:
        return set(self._dependents[node])

    def sort_key(self, node: str) -> tuple[int, str]:
        return (self._priorities.get(node, 0), node)

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break).

        Raises:
            DependencyCycleError: some nodes can never become ready.
        """
        indegree = {node: len(deps) for node, deps in self._deps.items()}
        ready = [self.sort_key(n) for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in self._dependents[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, self.sort_key(child))

        if len(order) != len(self._nodes):
            raise DependencyCycleError(sorted(self._nodes - set(order)))
        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def scheduler(self) -> Scheduler:
        self.topological_order()
        return Scheduler(self)


class Scheduler:
    """Hands out nodes whose dependencies have all completed.

    Used by the apply loop to run independent nodes concurrently while
    keeping dependents strictly after their dependencies. Not thread-safe;
    drive it from a single thread.
    """

    def __init__(self, graph: DependencyGraph) -> None:
        self._graph = graph
        self._waiting: dict[str, set[str]] = {
            n: graph.dependencies_of(n) for n in graph.topological_order()
        }
        self._running: set[str] = set()
        self._done: set[str] = set()

    @property
    def finished(self) -> bool:
        return not self._waiting and not self._running

    @property
    def running(self) -> set[str]:
        return set(self._running)

    def take_ready(self, limit: int | None = None) -> list[str]:
        """Mark up to *limit* ready nodes as running and return them in order."""
        ready = sorted(
            (n for n, deps in self._waiting.items() if not deps),
            key=self._graph.sort_key,
        )
        if limit is not None:
            ready = ready[: max(0, limit)]
        for node in ready:
            del self._waiting[node]
            self._running.add(node)
        return ready

    def mark_done(self, node: str) -> None:
        self._running.discard(node)
        self._done.add(node)
        for child in self._graph.dependents_of(node):
            if child in self._waiting:
                self._waiting[child].discard(node)

    def abandon(self) -> list[str]:
        """Drop every node that has not started yet; return them."""
        skipped = sorted(self._waiting, key=self._graph.sort_key)
        self._waiting.clear()
        return skipped
