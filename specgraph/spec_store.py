"""File-backed spec store: markdown bodies with ``.meta.json`` sidecars.

Layout::

    spec/
      10-domain-model.md
      10-domain-model.meta.json   # {id, type, status, title, body_md_path,
                                  #  terms, hash, edges: [...]}

The store produces immutable :class:`~specgraph.models.Snapshot` values
for the core and owns every write to the metadata files.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import InvalidInputError, NotFoundError
from .models import Edge, EdgeStatus, EdgeType, Node, NodeStatus, NodeType, Snapshot

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"
ID_PREFIX = "SPC"

_NODE_ID_RE = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")
_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass
class SyncSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class SpecStore:
    """Read snapshots from, and write metadata to, a ``spec/`` tree.

    Body paths recorded in metadata (``spec/foo.md``) are resolved
    against *root*, which defaults to the parent of *spec_root*.
    """

    def __init__(self, spec_root: Path, root: Optional[Path] = None) -> None:
        self.spec_root = spec_root
        self.root = root if root is not None else spec_root.parent

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def meta_files(self) -> List[Path]:
        if not self.spec_root.exists():
            return []
        return sorted(p for p in self.spec_root.rglob(f"*{META_SUFFIX}") if p.is_file())

    def load_snapshot(self) -> Snapshot:
        """Load every valid node; invalid records are excluded and reported."""
        loaded: Dict[str, Node] = {}
        errors: List[str] = []
        for meta_path in self.meta_files():
            try:
                raw = json.loads(meta_path.read_text(encoding="utf-8"))
            except OSError as exc:
                errors.append(f"cannot read {meta_path}: {exc}")
                continue
            except json.JSONDecodeError as exc:
                errors.append(f"invalid json {meta_path}: {exc}")
                continue
            try:
                node = node_from_dict(raw, meta_path=str(meta_path))
            except InvalidInputError as exc:
                errors.append(f"invalid meta {meta_path}: {exc}")
                continue
            if node.node_id in loaded:
                errors.append(f"duplicate node id {node.node_id} in {meta_path}")
                continue
            loaded[node.node_id] = node

        for message in errors:
            logger.warning("Excluded from snapshot: %s", message)
        nodes = {node_id: loaded[node_id] for node_id in sorted(loaded)}
        return Snapshot(nodes=nodes, errors=errors)

    def body_path(self, node: Node) -> Path:
        path = Path(node.body_path)
        return path if path.is_absolute() else self.root / path

    def read_body(self, node: Node) -> str:
        """Read a node's markdown body.

        Raises :class:`OSError` when the file is unreadable and
        :class:`UnicodeDecodeError` when it is not valid UTF-8.
        """
        return self.body_path(node).read_text(encoding="utf-8")

    def head_snippet(self, node: Node, max_len: int) -> str:
        """First *max_len* characters of the body on one line, best effort."""
        try:
            text = self.read_body(node)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Snippet unavailable for %s: %s", node.node_id, exc)
            return "(snippet unavailable)"
        return text[:max_len].replace("\n", " ")

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write_node(self, node: Node) -> None:
        if not node.meta_path:
            raise InvalidInputError(f"node {node.node_id} has no metadata path")
        Path(node.meta_path).write_text(
            json.dumps(node.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )

    def upsert_edge(
        self,
        snapshot: Snapshot,
        source: str,
        target: str,
        edge_type: str,
        rationale: str,
        confidence: float = 1.0,
        status: str = "confirmed",
    ) -> str:
        """Add or update the edge keyed by (source, target, type).

        Returns ``"added"`` or ``"updated"``.
        """
        etype = EdgeType.parse(edge_type)
        estatus = EdgeStatus.parse(status)
        if not 0.0 <= confidence <= 1.0:
            raise InvalidInputError("confidence must be between 0.0 and 1.0")
        if target not in snapshot:
            raise NotFoundError(f"target node not found: {target}")
        node = snapshot.get(source)
        if node is None:
            raise NotFoundError(f"source node not found: {source}")

        for edge in node.edges:
            if edge.to == target and edge.edge_type == etype:
                edge.rationale = rationale
                edge.confidence = confidence
                edge.status = estatus
                outcome = "updated"
                break
        else:
            node.edges.append(Edge(
                to=target,
                edge_type=etype,
                rationale=rationale,
                confidence=confidence,
                status=estatus,
            ))
            outcome = "added"

        self.write_node(node)
        logger.info("Edge %s: %s -> %s (%s)", outcome, source, target, etype)
        return outcome

    def remove_edge(self, snapshot: Snapshot, source: str, target: str, edge_type: str) -> bool:
        etype = EdgeType.parse(edge_type)
        node = snapshot.get(source)
        if node is None:
            raise NotFoundError(f"source node not found: {source}")
        before = len(node.edges)
        node.edges = [e for e in node.edges if not (e.to == target and e.edge_type == etype)]
        if len(node.edges) == before:
            return False
        self.write_node(node)
        return True

    # ------------------------------------------------------------------
    # Markdown -> metadata sync
    # ------------------------------------------------------------------

    def markdown_files(self) -> List[Path]:
        if not self.spec_root.exists():
            return []
        return sorted(
            p for p in self.spec_root.rglob("*.md")
            if p.is_file() and not p.name.endswith(".meta.md")
        )

    def sync_markdown(self, sync_titles: bool = False) -> SyncSummary:
        """Create or refresh metadata for every markdown body.

        New files get the next free ``SPC-NNN`` id, type
        ``feature_requirement`` and status ``draft``. Existing metadata
        always gets its hash refreshed; title and body path are refreshed
        when empty or when *sync_titles* is set.
        """
        summary = SyncSummary()
        used_ids = self._existing_ids()
        next_id = next_available_id(used_ids)

        for md_path in self.markdown_files():
            meta_path = md_to_meta_path(md_path)
            rel = md_path.relative_to(self.root).as_posix() if _is_under(md_path, self.root) else md_path.as_posix()
            try:
                body = md_path.read_text(encoding="utf-8")
            except OSError as exc:
                summary.errors += 1
                logger.warning("Error reading %s: %s", md_path, exc)
                continue
            title = extract_title(body, md_path)
            digest = sha256_hex(body.encode("utf-8"))

            if not meta_path.exists():
                while True:
                    candidate = f"{ID_PREFIX}-{next_id:03d}"
                    next_id += 1
                    if candidate not in used_ids:
                        used_ids.add(candidate)
                        break
                meta = {
                    "id": candidate,
                    "type": NodeType.FEATURE_REQUIREMENT.value,
                    "status": NodeStatus.DRAFT.value,
                    "title": title,
                    "body_md_path": rel,
                    "terms": [],
                    "hash": digest,
                    "edges": [],
                }
                _write_raw(meta_path, meta)
                summary.created += 1
                continue

            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                summary.errors += 1
                logger.warning("Error parsing %s: %s", meta_path, exc)
                continue

            changed = False
            if not str(meta.get("id", "")).strip():
                meta["id"] = f"{ID_PREFIX}-{next_id:03d}"
                next_id += 1
                changed = True
            used_ids.add(meta["id"])
            for key, default in (
                ("type", NodeType.FEATURE_REQUIREMENT.value),
                ("status", NodeStatus.DRAFT.value),
            ):
                if not str(meta.get(key, "")).strip():
                    meta[key] = default
                    changed = True
            for key, fresh in (("title", title), ("body_md_path", rel)):
                current = str(meta.get(key, ""))
                if (not current.strip() or sync_titles) and current != fresh:
                    meta[key] = fresh
                    changed = True
            meta.setdefault("terms", [])
            meta.setdefault("edges", [])
            if meta.get("hash") != digest:
                meta["hash"] = digest
                changed = True

            if changed:
                _write_raw(meta_path, meta)
                summary.updated += 1
            else:
                summary.skipped += 1

        return summary

    def _existing_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for meta_path in self.meta_files():
            try:
                raw = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
            node_id = raw.get("id") if isinstance(raw, dict) else None
            if node_id:
                ids.add(str(node_id))
        return ids


# ===================================================================
# Helpers
# ===================================================================

def node_from_dict(raw: Any, meta_path: str = "") -> Node:
    """Validate a metadata record and build a :class:`Node`."""
    if not isinstance(raw, dict):
        raise InvalidInputError("metadata must be a JSON object")
    node_id = str(raw.get("id", ""))
    if not _NODE_ID_RE.match(node_id):
        raise InvalidInputError(f"invalid node id: {node_id!r}")
    title = str(raw.get("title", "")).strip()
    if not title:
        raise InvalidInputError(f"empty title (id={node_id})")
    body_path = str(raw.get("body_md_path", "")).strip()
    if not body_path:
        raise InvalidInputError(f"empty body_md_path (id={node_id})")
    digest = str(raw.get("hash", ""))
    if not _HASH_RE.match(digest):
        raise InvalidInputError(f"invalid hash (id={node_id}): {digest!r}")
    terms = raw.get("terms", [])
    if not isinstance(terms, list):
        raise InvalidInputError(f"terms must be a list (id={node_id})")

    edges: List[Edge] = []
    for item in raw.get("edges", []) or []:
        if not isinstance(item, dict):
            raise InvalidInputError(f"edge must be an object (id={node_id})")
        try:
            confidence = float(item.get("confidence", 1.0))
        except (TypeError, ValueError):
            raise InvalidInputError(f"invalid edge confidence (id={node_id})") from None
        edges.append(Edge(
            to=str(item.get("to", "")),
            edge_type=EdgeType.parse(str(item.get("type", ""))),
            rationale=str(item.get("rationale", "")),
            confidence=confidence,
            status=EdgeStatus.parse(str(item.get("status", "confirmed"))),
        ))

    return Node(
        node_id=node_id,
        node_type=NodeType.parse(str(raw.get("type", ""))),
        status=NodeStatus.parse(str(raw.get("status", ""))),
        title=title,
        body_path=body_path,
        hash=digest,
        terms=[str(t) for t in terms],
        edges=edges,
        meta_path=meta_path,
    )


def incoming_edges(snapshot: Snapshot, node_id: str) -> List[Tuple[str, Edge]]:
    """Every (source id, edge) pair whose edge targets *node_id*."""
    return [
        (node.node_id, edge)
        for node in snapshot
        for edge in node.edges
        if edge.to == node_id
    ]


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def extract_title(body: str, path: Path) -> str:
    """First level-1 markdown heading, else the file stem."""
    for line in body.splitlines():
        line = line.strip()
        if line.startswith("# "):
            value = line[2:].strip()
            if value:
                return value
    return path.stem or "untitled"


def md_to_meta_path(md_path: Path) -> Path:
    if md_path.suffix != ".md":
        raise InvalidInputError(f"markdown file must end with .md: {md_path}")
    return md_path.with_name(md_path.name[: -len(".md")] + META_SUFFIX)


def next_available_id(existing: Set[str]) -> int:
    numbers = []
    for node_id in existing:
        prefix, _, num = node_id.partition("-")
        if prefix == ID_PREFIX and num.isdigit():
            numbers.append(int(num))
    return max(numbers, default=0) + 1


def _write_raw(path: Path, payload: Dict[str, Any]) -> None:
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _is_under(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
