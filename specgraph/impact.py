"""Impact analysis: bounded graph walks from one spec node."""

from __future__ import annotations

from collections import deque
from typing import Dict, FrozenSet, List, Set, Tuple

from .errors import InvalidInputError, NotFoundError
from .models import DirectDependency, EdgeType, ImpactReport, Snapshot

DIRECT_TYPES = frozenset({EdgeType.DEPENDS_ON, EdgeType.IMPACTS})
REVIEW_TYPES = frozenset({EdgeType.DEPENDS_ON, EdgeType.IMPACTS, EdgeType.TESTS})


class GraphAnalyzer:
    """Answer "what does changing this node touch?" over one snapshot.

    Every walk keeps a visited set and stops expanding at ``depth`` hops,
    so cycles and dangling edge targets are both harmless.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        # target id -> [(source id, edge type)] in snapshot (id) order
        self._incoming: Dict[str, List[Tuple[str, EdgeType]]] = {}
        for node in snapshot:
            for edge in node.edges:
                self._incoming.setdefault(edge.to, []).append((node.node_id, edge.edge_type))

    def impact(self, node_id: str, depth: int = 2) -> ImpactReport:
        """Build the full impact report for *node_id*.

        Raises:
            NotFoundError: *node_id* is not in the snapshot.
            InvalidInputError: *depth* is negative.
        """
        node = self.snapshot.get(node_id)
        if node is None:
            raise NotFoundError(f"node not found: {node_id}")
        if depth < 0:
            raise InvalidInputError("depth must be >= 0")

        direct = [
            DirectDependency(
                to=e.to,
                edge_type=e.edge_type.value,
                status=e.status.value,
                confidence=e.confidence,
                rationale=e.rationale,
            )
            for e in node.edges
            if e.edge_type in DIRECT_TYPES
        ]
        direct.sort(key=lambda d: (d.to, d.edge_type))

        return ImpactReport(
            node_id=node_id,
            depth=depth,
            direct_dependencies=direct,
            reverse_dependents=self.reverse_dependents(node_id, depth),
            test_coverage_chain=self.test_coverage_chain(node_id, depth),
            conflict_risks=self.conflict_risks(node_id),
            recommended_review_order=self.review_order(node_id, depth),
        )

    def reverse_dependents(self, seed: str, max_depth: int) -> List[str]:
        """Nodes that (transitively) depend on *seed*, sorted."""
        return sorted(self._walk(seed, max_depth, frozenset({EdgeType.DEPENDS_ON}), both_ways=False))

    def test_coverage_chain(self, seed: str, max_depth: int) -> List[str]:
        """Nodes joined to *seed* through ``tests`` edges in either direction, sorted."""
        return sorted(self._walk(seed, max_depth, frozenset({EdgeType.TESTS}), both_ways=True))

    def conflict_risks(self, seed: str) -> List[str]:
        """One-hop ``conflicts_with`` neighbours in either direction, sorted."""
        found: Set[str] = set()
        node = self.snapshot.get(seed)
        if node is not None:
            found.update(e.to for e in node.edges if e.edge_type == EdgeType.CONFLICTS_WITH)
        found.update(
            source for source, etype in self._incoming.get(seed, [])
            if etype == EdgeType.CONFLICTS_WITH
        )
        return sorted(found)

    def review_order(self, seed: str, max_depth: int) -> List[str]:
        """BFS discovery order from *seed* (included first).

        Follows depends_on, impacts and tests edges both ways; outgoing
        edges are queued before incoming ones.
        """
        order: List[str] = []
        visited = {seed}
        queue = deque([(seed, 0)])

        while queue:
            current, depth = queue.popleft()
            order.append(current)
            if depth >= max_depth:
                continue
            for nxt in self._neighbours(current, REVIEW_TYPES, both_ways=True):
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append((nxt, depth + 1))
        return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _walk(self, seed: str, max_depth: int, types: FrozenSet[EdgeType], both_ways: bool) -> Set[str]:
        """Reached node ids, excluding the seed."""
        visited = {seed}
        found: Set[str] = set()
        queue = deque([(seed, 0)])

        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                continue
            for nxt in self._neighbours(current, types, both_ways=both_ways):
                if nxt not in visited:
                    visited.add(nxt)
                    found.add(nxt)
                    queue.append((nxt, depth + 1))
        return found

    def _neighbours(self, node_id: str, types: FrozenSet[EdgeType], both_ways: bool) -> List[str]:
        """Incoming neighbours over *types*, preceded by outgoing ones when *both_ways*."""
        out: List[str] = []
        if both_ways:
            node = self.snapshot.get(node_id)
            if node is not None:
                out.extend(e.to for e in node.edges if e.edge_type in types)
        seen_sources: Set[str] = set()
        for source, etype in self._incoming.get(node_id, []):
            if etype in types and source not in seen_sources:
                seen_sources.add(source)
                out.append(source)
        return out
