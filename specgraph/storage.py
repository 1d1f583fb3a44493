"""Persisted search index for spec nodes.

Architecture:
- **nodes** mirrors one row per live spec node (title, paths, hash, terms).
- **chunks** / **fts_chunks** hold chunk text and its FTS5 full-text entry.
- **chunk_vectors** (and ``vec_chunks`` when sqlite-vec loads) hold the
  hash embeddings, managed by :mod:`specgraph.vector_store`.

Every command opens its own :class:`SearchIndex`; nothing about the
current index location is global.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from . import config
from .models import DoctorReport, Node, Snapshot
from .vector_store import LocalScanBackend, probe_vector_backend

logger = logging.getLogger(__name__)


class SearchIndex:
    """SQLite-backed chunk index with FTS5 and vector tables.

    Args:
        db_path: Database file, or ``":memory:"`` for an ephemeral index.
        vector_search: Try to load sqlite-vec. Defaults to
            ``config.SQLITE_VEC_ENABLED``.
    """

    def __init__(
        self,
        db_path: Union[Path, str] = config.INDEX_DB,
        vector_search: Optional[bool] = None,
    ) -> None:
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit; writes go through transaction().
        self.conn = sqlite3.connect(str(db_path), isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()
        enabled = config.SQLITE_VEC_ENABLED if vector_search is None else vector_search
        self.vectors: LocalScanBackend = probe_vector_backend(self.conn, enabled=enabled)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SearchIndex":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS nodes (
                id         TEXT PRIMARY KEY,
                title      TEXT NOT NULL,
                md_path    TEXT NOT NULL,
                meta_path  TEXT NOT NULL,
                hash       TEXT NOT NULL,
                terms_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                chunk_id  TEXT PRIMARY KEY,
                node_id   TEXT NOT NULL,
                ord       INTEGER NOT NULL,
                text      TEXT NOT NULL,
                token_len INTEGER NOT NULL
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_chunks_node ON chunks(node_id)")
        cur.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS fts_chunks USING fts5(
                chunk_id UNINDEXED,
                node_id UNINDEXED,
                text,
                tokenize = 'unicode61'
            )
        """)
        self.conn.commit()

    @property
    def accelerated(self) -> bool:
        return self.vectors.accelerated

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """All-or-nothing unit of work; any exception rolls everything back."""
        cur = self.conn.cursor()
        cur.execute("BEGIN")
        try:
            yield cur
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    # ------------------------------------------------------------------
    # Writes (inside a transaction)
    # ------------------------------------------------------------------

    def clear(self, cur: sqlite3.Cursor) -> None:
        cur.execute("DELETE FROM fts_chunks")
        cur.execute("DELETE FROM chunks")
        self.vectors.clear(cur)
        cur.execute("DELETE FROM nodes")

    def delete_chunks(self, cur: sqlite3.Cursor, node_id: str) -> None:
        cur.execute("DELETE FROM fts_chunks WHERE node_id = ?", (node_id,))
        cur.execute("DELETE FROM chunks WHERE node_id = ?", (node_id,))
        self.vectors.delete_node(cur, node_id)

    def delete_node(self, cur: sqlite3.Cursor, node_id: str) -> None:
        self.delete_chunks(cur, node_id)
        cur.execute("DELETE FROM nodes WHERE id = ?", (node_id,))

    def upsert_node(self, cur: sqlite3.Cursor, node: Node) -> None:
        cur.execute(
            """
            INSERT INTO nodes (id, title, md_path, meta_path, hash, terms_json, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                md_path = excluded.md_path,
                meta_path = excluded.meta_path,
                hash = excluded.hash,
                terms_json = excluded.terms_json,
                updated_at = excluded.updated_at
            """,
            (
                node.node_id,
                node.title,
                node.body_path,
                node.meta_path,
                node.hash,
                json.dumps(node.terms, ensure_ascii=False),
                int(time.time()),
            ),
        )

    def add_chunk(
        self,
        cur: sqlite3.Cursor,
        node_id: str,
        ordinal: int,
        text: str,
        token_len: int,
        embedding: List[float],
    ) -> str:
        chunk_id = f"{node_id}:{ordinal}"
        cur.execute(
            "INSERT INTO chunks (chunk_id, node_id, ord, text, token_len) VALUES (?, ?, ?, ?, ?)",
            (chunk_id, node_id, ordinal, text, token_len),
        )
        cur.execute(
            "INSERT INTO fts_chunks (chunk_id, node_id, text) VALUES (?, ?, ?)",
            (chunk_id, node_id, text),
        )
        self.vectors.add(cur, chunk_id, embedding)
        return chunk_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def stored_hash(self, node_id: str) -> Optional[str]:
        row = self.conn.execute("SELECT hash FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return row["hash"] if row else None

    def stored_hashes(self) -> Dict[str, str]:
        rows = self.conn.execute("SELECT id, hash FROM nodes ORDER BY id").fetchall()
        return {row["id"]: row["hash"] for row in rows}

    def indexed_ids(self) -> List[str]:
        return [row["id"] for row in self.conn.execute("SELECT id FROM nodes ORDER BY id")]

    def chunk_texts(self, node_id: str) -> List[str]:
        rows = self.conn.execute(
            "SELECT text FROM chunks WHERE node_id = ? ORDER BY ord", (node_id,),
        ).fetchall()
        return [row["text"] for row in rows]

    def orphan_chunk_count(self) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM chunks c LEFT JOIN nodes n ON n.id = c.node_id WHERE n.id IS NULL"
        ).fetchone()
        return int(row[0])

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for table in ("nodes", "chunks", "fts_chunks", "chunk_vectors"):
            out[table] = int(self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        return out

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def doctor(self, snapshot: Snapshot) -> DoctorReport:
        """Compare index rows with the live snapshot.

        Reports hash mismatches, stale rows (no live node), missing rows
        (live node never indexed) and chunks whose node row is gone.
        """
        expected = {node.node_id: node.hash for node in snapshot}
        issues: List[str] = []

        indexed = self.stored_hashes()
        for node_id, digest in indexed.items():
            live = expected.get(node_id)
            if live is None:
                issues.append(f"stale indexed node: {node_id}")
            elif live != digest:
                issues.append(
                    f"hash mismatch in index for {node_id}: indexed={digest} expected={live}"
                )
        for node_id in sorted(expected):
            if node_id not in indexed:
                issues.append(f"missing indexed node: {node_id}")

        orphans = self.orphan_chunk_count()
        if orphans > 0:
            issues.append(f"orphan chunks: {orphans}")

        return DoctorReport(issues=issues)
