"""Tests for the file-backed spec store."""

import json
from pathlib import Path

import pytest

from specgraph.errors import InvalidInputError, NotFoundError
from specgraph.models import EdgeStatus, EdgeType, NodeStatus, NodeType
from specgraph.spec_store import (
    SpecStore,
    extract_title,
    incoming_edges,
    md_to_meta_path,
    next_available_id,
    node_from_dict,
)

VALID_HASH = "a" * 64


def _raw(**overrides):
    raw = {
        "id": "SPC-001",
        "type": "feature_requirement",
        "status": "draft",
        "title": "Checkout flow",
        "body_md_path": "spec/checkout.md",
        "terms": ["checkout"],
        "hash": VALID_HASH,
        "edges": [],
    }
    raw.update(overrides)
    return raw


class TestNodeFromDict:
    """Tests for metadata validation."""

    def test_valid_record(self):
        node = node_from_dict(_raw(edges=[{"to": "SPC-002", "type": "depends_on"}]))

        assert node.node_id == "SPC-001"
        assert node.node_type == NodeType.FEATURE_REQUIREMENT
        assert node.status == NodeStatus.DRAFT
        assert node.edges[0].edge_type == EdgeType.DEPENDS_ON
        assert node.edges[0].status == EdgeStatus.CONFIRMED
        assert node.edges[0].confidence == 1.0

    @pytest.mark.parametrize("overrides", [
        {"id": "spc-1"},
        {"title": "  "},
        {"body_md_path": ""},
        {"hash": "xyz"},
        {"type": "epic"},
        {"status": "finished"},
        {"terms": "checkout"},
        {"edges": [{"to": "SPC-002", "type": "blocks"}]},
        {"edges": [{"to": "SPC-002", "type": "tests", "confidence": 1.5}]},
    ])
    def test_invalid_records(self, overrides):
        with pytest.raises(InvalidInputError):
            node_from_dict(_raw(**overrides))

    def test_to_dict_uses_wire_names(self):
        data = node_from_dict(_raw()).to_dict()

        assert data["id"] == "SPC-001"
        assert data["body_md_path"] == "spec/checkout.md"
        assert "meta_path" not in data


class TestLoadSnapshot:
    """Tests for SpecStore.load_snapshot."""

    def test_loads_sorted(self, sample_spec):
        snapshot = sample_spec.snapshot()

        assert list(snapshot.nodes) == [f"SPC-00{i}" for i in range(1, 8)]
        assert snapshot.errors == []
        assert "SPC-003" in snapshot
        assert len(snapshot) == 7

    def test_invalid_and_duplicate_records_are_excluded(self, sample_spec):
        (sample_spec.spec_root / "broken.meta.json").write_text("{not json", encoding="utf-8")
        (sample_spec.spec_root / "dup.meta.json").write_text(
            json.dumps(_raw(id="SPC-001", body_md_path="spec/dup.md")), encoding="utf-8",
        )
        (sample_spec.spec_root / "bad-hash.meta.json").write_text(
            json.dumps(_raw(id="SPC-099", hash="nope")), encoding="utf-8",
        )
        snapshot = sample_spec.snapshot()

        assert len(snapshot) == 7
        assert "SPC-099" not in snapshot
        assert len(snapshot.errors) == 3
        assert any(e.startswith("duplicate node id SPC-001") for e in snapshot.errors)

    def test_missing_spec_root(self, temp_dir: Path):
        snapshot = SpecStore(temp_dir / "nowhere").load_snapshot()
        assert len(snapshot) == 0

    def test_body_paths_resolve_against_root(self, sample_spec):
        store = sample_spec.store
        node = sample_spec.snapshot().get("SPC-002")

        assert store.body_path(node) == sample_spec.spec_root / "20-payment-gateway.md"
        assert store.read_body(node).startswith("# Payment gateway")
        assert store.head_snippet(node, 17) == "# Payment gateway"

    def test_head_snippet_unavailable(self, sample_spec):
        node = sample_spec.snapshot().get("SPC-002")
        (sample_spec.spec_root / "20-payment-gateway.md").unlink()

        assert sample_spec.store.head_snippet(node, 50) == "(snippet unavailable)"

    def test_head_snippet_invalid_utf8(self, sample_spec):
        node = sample_spec.snapshot().get("SPC-002")
        (sample_spec.spec_root / "20-payment-gateway.md").write_bytes(b"# Payment \xff\xfe gateway\n")

        assert sample_spec.store.head_snippet(node, 50) == "(snippet unavailable)"


class TestEdges:
    """Tests for edge writes."""

    def test_add_then_update(self, sample_spec):
        store = sample_spec.store
        outcome = store.upsert_edge(sample_spec.snapshot(), "SPC-005", "SPC-001", "refines", "first")
        assert outcome == "added"

        outcome = store.upsert_edge(
            sample_spec.snapshot(), "SPC-005", "SPC-001", "refines", "second",
            confidence=0.4, status="proposed",
        )
        assert outcome == "updated"

        edges = sample_spec.snapshot().get("SPC-005").edges
        assert len(edges) == 1
        assert (edges[0].rationale, edges[0].confidence, edges[0].status) == (
            "second", 0.4, EdgeStatus.PROPOSED,
        )

    def test_same_pair_different_type_is_new_edge(self, sample_spec):
        store = sample_spec.store
        outcome = store.upsert_edge(sample_spec.snapshot(), "SPC-001", "SPC-002", "impacts", "x")

        assert outcome == "added"
        assert len(sample_spec.snapshot().get("SPC-001").edges) == 2

    def test_unknown_nodes(self, sample_spec):
        store = sample_spec.store
        with pytest.raises(NotFoundError):
            store.upsert_edge(sample_spec.snapshot(), "SPC-001", "SPC-999", "tests", "x")
        with pytest.raises(NotFoundError):
            store.upsert_edge(sample_spec.snapshot(), "SPC-999", "SPC-001", "tests", "x")

    def test_invalid_values(self, sample_spec):
        store = sample_spec.store
        with pytest.raises(InvalidInputError):
            store.upsert_edge(sample_spec.snapshot(), "SPC-001", "SPC-002", "blocks", "x")
        with pytest.raises(InvalidInputError):
            store.upsert_edge(sample_spec.snapshot(), "SPC-001", "SPC-002", "tests", "x", confidence=2.0)

    def test_remove(self, sample_spec):
        store = sample_spec.store

        assert store.remove_edge(sample_spec.snapshot(), "SPC-001", "SPC-002", "depends_on") is True
        assert store.remove_edge(sample_spec.snapshot(), "SPC-001", "SPC-002", "depends_on") is False
        assert sample_spec.snapshot().get("SPC-001").edges == []

    def test_incoming_edges(self, sample_spec):
        sources = [source for source, _ in incoming_edges(sample_spec.snapshot(), "SPC-001")]
        assert sources == ["SPC-003", "SPC-004", "SPC-006"]


class TestSyncMarkdown:
    """Tests for markdown -> metadata sync."""

    def test_creates_metadata(self, spec_tree):
        (spec_tree.spec_root / "a-login.md").write_text("# Login\n\nUsers sign in.\n", encoding="utf-8")
        (spec_tree.spec_root / "b-notes.md").write_text("no heading here\n", encoding="utf-8")

        summary = spec_tree.store.sync_markdown()
        snapshot = spec_tree.snapshot()

        assert (summary.created, summary.updated, summary.skipped) == (2, 0, 0)
        assert snapshot.get("SPC-001").title == "Login"
        assert snapshot.get("SPC-001").body_path == "spec/a-login.md"
        assert snapshot.get("SPC-002").title == "b-notes"
        assert snapshot.get("SPC-002").status == NodeStatus.DRAFT

    def test_second_run_skips_then_refreshes_hash(self, spec_tree):
        md = spec_tree.spec_root / "a-login.md"
        md.write_text("# Login\n", encoding="utf-8")
        store = spec_tree.store
        store.sync_markdown()

        assert store.sync_markdown().skipped == 1

        md.write_text("# Sign in\n\nChanged.\n", encoding="utf-8")
        summary = store.sync_markdown()
        node = spec_tree.snapshot().get("SPC-001")

        assert summary.updated == 1
        assert node.title == "Login"
        assert node.hash != "a" * 64

        store.sync_markdown(sync_titles=True)
        assert spec_tree.snapshot().get("SPC-001").title == "Sign in"

    def test_new_ids_follow_existing(self, sample_spec):
        (sample_spec.spec_root / "80-new.md").write_text("# New\n", encoding="utf-8")
        summary = sample_spec.store.sync_markdown()

        assert summary.created == 1
        assert sample_spec.snapshot().get("SPC-008").title == "New"


class TestHelpers:
    """Tests for module helpers."""

    def test_extract_title(self):
        assert extract_title("intro\n#  Title  \n", Path("x.md")) == "Title"
        assert extract_title("## Sub\n", Path("notes.md")) == "notes"

    def test_md_to_meta_path(self):
        assert md_to_meta_path(Path("spec/a.md")) == Path("spec/a.meta.json")
        with pytest.raises(InvalidInputError):
            md_to_meta_path(Path("spec/a.txt"))

    def test_next_available_id(self):
        assert next_available_id(set()) == 1
        assert next_available_id({"SPC-002", "SPC-010", "OTHER-99"}) == 11
