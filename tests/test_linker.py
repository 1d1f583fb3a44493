"""Tests for overlap-based link proposals."""

import pytest

from specgraph.errors import NotFoundError
from specgraph.linker import overlap_candidates, propose_links, score_to_confidence
from specgraph.models import EdgeStatus, EdgeType


class TestScoring:
    """Tests for overlap scoring."""

    def test_score_to_confidence(self):
        assert [score_to_confidence(s) for s in range(0, 7)] == [0.0, 0.5, 0.6, 0.7, 0.8, 0.9, 0.9]

    def test_overlap_candidates(self, sample_spec):
        scored = overlap_candidates(sample_spec.snapshot(), "SPC-001")

        assert scored == [
            ("SPC-004", 3),
            ("SPC-002", 2),
            ("SPC-003", 1),
            ("SPC-006", 1),
            ("SPC-007", 1),
        ]

    def test_term_style_variants_overlap(self, make_node, make_snapshot):
        snapshot = make_snapshot(
            make_node("A-1", title="Alpha", terms=["User_ID"]),
            make_node("B-1", title="Beta", terms=["user id"]),
        )
        assert overlap_candidates(snapshot, "A-1") == [("B-1", 2)]

    def test_unknown_node(self, sample_spec):
        with pytest.raises(NotFoundError):
            overlap_candidates(sample_spec.snapshot(), "SPC-404")


class TestProposeLinks:
    """Tests for writing proposals."""

    def test_writes_proposed_impacts_edges(self, sample_spec):
        proposals = propose_links(sample_spec.store, sample_spec.snapshot(), "SPC-001", limit=2)

        assert [(p.target, p.score, p.confidence, p.outcome) for p in proposals] == [
            ("SPC-004", 3, 0.7, "added"),
            ("SPC-002", 2, 0.6, "added"),
        ]
        edges = sample_spec.snapshot().get("SPC-001").edges
        proposed = [e for e in edges if e.edge_type == EdgeType.IMPACTS]
        assert [e.to for e in proposed] == ["SPC-004", "SPC-002"]
        assert all(e.status == EdgeStatus.PROPOSED for e in proposed)
        assert proposed[0].rationale == "auto proposal based on term/title overlap score=3"

    def test_rerun_updates(self, sample_spec):
        propose_links(sample_spec.store, sample_spec.snapshot(), "SPC-001", limit=1)
        proposals = propose_links(sample_spec.store, sample_spec.snapshot(), "SPC-001", limit=1)

        assert proposals[0].outcome == "updated"

    def test_zero_limit(self, sample_spec):
        assert propose_links(sample_spec.store, sample_spec.snapshot(), "SPC-001", limit=0) == []
