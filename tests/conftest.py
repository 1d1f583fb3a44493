"""Pytest configuration and fixtures for specgraph tests."""

import hashlib
import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from specgraph.indexer import Indexer
from specgraph.models import Edge, EdgeType, Node, NodeStatus, NodeType, Snapshot
from specgraph.spec_store import SpecStore
from specgraph.storage import SearchIndex


class SpecTree:
    """Writes markdown bodies and matching ``.meta.json`` files under ``<root>/spec``."""

    def __init__(self, root: Path):
        self.root = root
        self.spec_root = root / "spec"
        self.spec_root.mkdir(parents=True, exist_ok=True)
        self.slugs: Dict[str, str] = {}

    @property
    def store(self) -> SpecStore:
        return SpecStore(self.spec_root)

    def snapshot(self) -> Snapshot:
        return self.store.load_snapshot()

    def add(
        self,
        node_id: str,
        slug: str,
        title: str,
        body: str,
        node_type: str = "feature_requirement",
        status: str = "draft",
        terms: Optional[List[str]] = None,
        edges: Optional[List[dict]] = None,
    ) -> Path:
        md_path = self.spec_root / f"{slug}.md"
        md_path.write_text(body, encoding="utf-8")
        meta = {
            "id": node_id,
            "type": node_type,
            "status": status,
            "title": title,
            "body_md_path": f"spec/{slug}.md",
            "terms": terms or [],
            "hash": hashlib.sha256(body.encode("utf-8")).hexdigest(),
            "edges": edges or [],
        }
        self.meta_path(slug).write_text(json.dumps(meta, indent=2), encoding="utf-8")
        self.slugs[node_id] = slug
        return md_path

    def meta_path(self, slug: str) -> Path:
        return self.spec_root / f"{slug}.meta.json"

    def rewrite(self, node_id: str, body: str) -> None:
        """Change a body and refresh the stored hash, as ``sg init`` would."""
        slug = self.slugs[node_id]
        (self.spec_root / f"{slug}.md").write_text(body, encoding="utf-8")
        meta_path = self.meta_path(slug)
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        meta["hash"] = hashlib.sha256(body.encode("utf-8")).hexdigest()
        meta_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")

    def remove(self, node_id: str) -> None:
        slug = self.slugs.pop(node_id)
        (self.spec_root / f"{slug}.md").unlink()
        self.meta_path(slug).unlink()


def _edge(to: str, edge_type: str, rationale: str = "") -> dict:
    return {"to": to, "type": edge_type, "rationale": rationale, "confidence": 1.0, "status": "confirmed"}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def spec_tree(temp_dir: Path) -> SpecTree:
    """An empty spec tree rooted in a temporary directory."""
    return SpecTree(temp_dir)


@pytest.fixture
def sample_spec(spec_tree: SpecTree) -> SpecTree:
    """A small checkout-themed spec graph.

    SPC-001 Checkout flow        depends_on SPC-002
    SPC-002 Payment gateway
    SPC-003 Checkout tests       tests SPC-001
    SPC-004 Guest checkout       conflicts_with SPC-001
    SPC-005 User profile
    SPC-006 Implement checkout API (task)  depends_on SPC-001
    SPC-007 Write checkout tests (task)    depends_on SPC-006

    Only SPC-001's body mentions both "checkout" and "payment".
    """
    spec_tree.add(
        "SPC-001", "10-checkout-flow", "Checkout flow",
        "# Checkout flow\n\n"
        "The checkout flow collects the cart, confirms the shipping address "
        "and submits the payment.\n\n"
        "A failed payment returns the shopper to the cart with the items intact.\n",
        status="active",
        terms=["checkout", "payment"],
        edges=[_edge("SPC-002", "depends_on", "charges go through the gateway")],
    )
    spec_tree.add(
        "SPC-002", "20-payment-gateway", "Payment gateway",
        "# Payment gateway\n\n"
        "The gateway authorizes card charges and reports settlement status.\n\n"
        "Every payment request carries an idempotency key.\n",
        status="active",
        terms=["payment", "gateway"],
    )
    spec_tree.add(
        "SPC-003", "30-checkout-tests", "Checkout tests",
        "# Checkout tests\n\n"
        "End-to-end scenarios cover the checkout happy path and address validation.\n",
        node_type="test_spec",
        edges=[_edge("SPC-001", "tests")],
    )
    spec_tree.add(
        "SPC-004", "40-guest-checkout", "Guest checkout",
        "# Guest checkout\n\n"
        "Shoppers may complete checkout without an account by providing an email address.\n",
        terms=["checkout"],
        edges=[_edge("SPC-001", "conflicts_with", "account requirement differs")],
    )
    spec_tree.add(
        "SPC-005", "50-user-profile", "User profile",
        "# User profile\n\n"
        "Users edit their display name, avatar and notification settings.\n",
        terms=["profile"],
    )
    spec_tree.add(
        "SPC-006", "60-implement-checkout-api", "Implement checkout API",
        "# Implement checkout API\n\n"
        "Expose the checkout endpoint and wire it to the order service.\n",
        node_type="implementation_task",
        status="todo",
        edges=[_edge("SPC-001", "depends_on")],
    )
    spec_tree.add(
        "SPC-007", "70-write-checkout-tests", "Write checkout tests",
        "# Write checkout tests\n\n"
        "Automate the checkout scenarios in the integration suite.\n",
        node_type="test_task",
        status="todo",
        edges=[_edge("SPC-006", "depends_on")],
    )
    return spec_tree


@pytest.fixture
def search_index(temp_dir: Path) -> Generator[SearchIndex, None, None]:
    """A SearchIndex on a temporary file, using the local vector scan."""
    index = SearchIndex(temp_dir / "index" / "index.db", vector_search=False)
    yield index
    index.close()


@pytest.fixture
def indexed_sample(sample_spec: SpecTree, search_index: SearchIndex) -> SearchIndex:
    """The sample spec graph, fully indexed."""
    Indexer(search_index, sample_spec.store).reindex(sample_spec.snapshot())
    return search_index


@pytest.fixture
def make_node():
    """Factory for in-memory nodes: ``make_node("A", depends_on=["B"])``."""

    def _make(
        node_id: str,
        node_type: str = "feature_requirement",
        status: str = "draft",
        title: Optional[str] = None,
        terms: Optional[List[str]] = None,
        **edges_by_type: List[str],
    ) -> Node:
        edges = [
            Edge(to=target, edge_type=EdgeType(edge_type))
            for edge_type, targets in edges_by_type.items()
            for target in targets
        ]
        return Node(
            node_id=node_id,
            node_type=NodeType(node_type),
            status=NodeStatus(status),
            title=title or f"Node {node_id}",
            body_path=f"spec/{node_id.lower()}.md",
            hash="0" * 64,
            terms=terms or [],
            edges=edges,
        )

    return _make


@pytest.fixture
def make_snapshot():
    """Build a Snapshot from nodes, keyed and ordered by id."""

    def _make(*nodes: Node) -> Snapshot:
        return Snapshot(nodes={n.node_id: n for n in sorted(nodes, key=lambda n: n.node_id)})

    return _make
