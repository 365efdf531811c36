"""
Reachability utilities for workflow step graphs.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set

from hrflow.ir.schema import Transition


class ReachabilityResolver:
    def adjacency(self, step_ids: Iterable[str], transitions: Iterable[Transition]) -> Dict[str, Set[str]]:
        graph: Dict[str, Set[str]] = {step_id: set() for step_id in step_ids}
        for item in transitions:
            if item.from_step_id in graph and item.to_step_id in graph:
                graph[item.from_step_id].add(item.to_step_id)
        return graph

    def reachable_from(self, graph: Dict[str, Set[str]], source: str) -> Set[str]:
        if source not in graph:
            return set()
        queue = deque([source])
        visited: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            for nxt in sorted(graph[current]):
                if nxt not in visited:
                    queue.append(nxt)
        return visited

    def unreachable(self, graph: Dict[str, Set[str]], source: str) -> List[str]:
        seen = self.reachable_from(graph, source)
        return sorted(node for node in graph if node not in seen)

