"""Chunk vector backends living inside the search index database.

Two interchangeable backends share one contract (store a vector per
chunk, return per-chunk :class:`~specgraph.models.Candidate` rows whose
similarity clears ``SEMANTIC_FLOOR``):

- :class:`LocalScanBackend` keeps little-endian float64 blobs in
  ``chunk_vectors`` and scores every row with a cosine scan. Always on.
- :class:`SqliteVecBackend` additionally mirrors vectors into a
  ``vec0`` virtual table and answers with approximate top-k search.
  Used only when the ``sqlite-vec`` extension loads into the connection.

:func:`probe_vector_backend` picks one per connection.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import List

from .config import EMBEDDING_DIM, EMBEDDING_MODEL_TAG, SEMANTIC_FLOOR, SNIPPET_CHARS, VEC_TOP_K
from .embeddings import blob_to_vector, cosine_similarity, vector_to_blob, vector_to_json
from .models import Candidate
from .text import decode_terms, one_line

logger = logging.getLogger(__name__)

try:
    import sqlite_vec  # type: ignore[import-untyped]
    SQLITE_VEC_AVAILABLE = True
except ImportError:
    SQLITE_VEC_AVAILABLE = False


class LocalScanBackend:
    """Exhaustive cosine scan over ``chunk_vectors``."""

    name = "local-scan"
    accelerated = False

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chunk_vectors (
                chunk_id TEXT PRIMARY KEY,
                model TEXT NOT NULL,
                dim INTEGER NOT NULL,
                embedding BLOB
            )
            """
        )

    def add(self, cur: sqlite3.Cursor, chunk_id: str, vec: List[float]) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO chunk_vectors (chunk_id, model, dim, embedding) VALUES (?, ?, ?, ?)",
            (chunk_id, EMBEDDING_MODEL_TAG, len(vec), vector_to_blob(vec)),
        )

    def delete_node(self, cur: sqlite3.Cursor, node_id: str) -> None:
        cur.execute("DELETE FROM chunk_vectors WHERE chunk_id LIKE ?", (f"{node_id}:%",))

    def clear(self, cur: sqlite3.Cursor) -> None:
        cur.execute("DELETE FROM chunk_vectors")

    def query(self, conn: sqlite3.Connection, query_vec: List[float]) -> List[Candidate]:
        rows = conn.execute(
            f"""
            SELECT n.id, n.title, n.md_path, n.terms_json,
                   SUBSTR(c.text, 1, {SNIPPET_CHARS}) AS snippet,
                   cv.embedding
            FROM chunk_vectors cv
            JOIN chunks c ON c.chunk_id = cv.chunk_id
            JOIN nodes n ON n.id = c.node_id
            WHERE cv.model = ?
            """,
            (EMBEDDING_MODEL_TAG,),
        ).fetchall()

        out: List[Candidate] = []
        for row in rows:
            chunk_vec = blob_to_vector(row["embedding"] or b"")
            if not chunk_vec:
                continue
            score = cosine_similarity(query_vec, chunk_vec)
            if score < SEMANTIC_FLOOR:
                continue
            out.append(_candidate(row, score))
        return out


class SqliteVecBackend(LocalScanBackend):
    """Local blobs plus a ``vec0`` table for approximate nearest neighbours."""

    name = "sqlite-vec"
    accelerated = True

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        super().ensure_schema(conn)
        conn.execute(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS vec_chunks USING vec0(
                chunk_id TEXT PRIMARY KEY,
                embedding FLOAT[{EMBEDDING_DIM}]
            )
            """
        )
        # Runs made without the extension leave vec_chunks behind chunk_vectors.
        vec_count = conn.execute("SELECT COUNT(*) FROM vec_chunks").fetchone()[0]
        blob_count = conn.execute("SELECT COUNT(*) FROM chunk_vectors").fetchone()[0]
        if vec_count != blob_count:
            logger.info("Resyncing vec_chunks (%d rows) from chunk_vectors (%d rows)", vec_count, blob_count)
            self.resync(conn)

    def resync(self, conn: sqlite3.Connection) -> None:
        """Rebuild ``vec_chunks`` from ``chunk_vectors`` in one transaction."""
        conn.execute("BEGIN")
        try:
            conn.execute("DELETE FROM vec_chunks")
            for chunk_id, blob in conn.execute(
                "SELECT chunk_id, embedding FROM chunk_vectors"
                " WHERE model = ? AND dim = ? AND embedding IS NOT NULL",
                (EMBEDDING_MODEL_TAG, EMBEDDING_DIM),
            ).fetchall():
                conn.execute(
                    "INSERT INTO vec_chunks (chunk_id, embedding) VALUES (?, ?)",
                    (chunk_id, vector_to_json(blob_to_vector(blob))),
                )
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def add(self, cur: sqlite3.Cursor, chunk_id: str, vec: List[float]) -> None:
        super().add(cur, chunk_id, vec)
        # vec0 has no INSERT OR REPLACE
        cur.execute("DELETE FROM vec_chunks WHERE chunk_id = ?", (chunk_id,))
        cur.execute(
            "INSERT INTO vec_chunks (chunk_id, embedding) VALUES (?, ?)",
            (chunk_id, vector_to_json(vec)),
        )

    def delete_node(self, cur: sqlite3.Cursor, node_id: str) -> None:
        super().delete_node(cur, node_id)
        cur.execute("DELETE FROM vec_chunks WHERE chunk_id LIKE ?", (f"{node_id}:%",))

    def clear(self, cur: sqlite3.Cursor) -> None:
        super().clear(cur)
        cur.execute("DELETE FROM vec_chunks")

    def query(self, conn: sqlite3.Connection, query_vec: List[float]) -> List[Candidate]:
        rows = conn.execute(
            f"""
            SELECT n.id, n.title, n.md_path, n.terms_json,
                   SUBSTR(c.text, 1, {SNIPPET_CHARS}) AS snippet,
                   vc.distance
            FROM vec_chunks vc
            JOIN chunks c ON c.chunk_id = vc.chunk_id
            JOIN nodes n ON n.id = c.node_id
            WHERE vc.embedding MATCH ? AND vc.k = ?
            """,
            (vector_to_json(query_vec), VEC_TOP_K),
        ).fetchall()

        out: List[Candidate] = []
        for row in rows:
            score = 1.0 / (1.0 + max(float(row["distance"]), 0.0))
            if score < SEMANTIC_FLOOR:
                continue
            out.append(_candidate(row, score))
        return out


def probe_vector_backend(conn: sqlite3.Connection, enabled: bool = True) -> LocalScanBackend:
    """Load sqlite-vec into *conn* when possible; otherwise use the local scan.

    The choice never affects which results are correct, only how the
    semantic candidate list is produced.
    """
    if enabled and SQLITE_VEC_AVAILABLE:
        try:
            conn.enable_load_extension(True)
            try:
                sqlite_vec.load(conn)
            finally:
                conn.enable_load_extension(False)
            backend: LocalScanBackend = SqliteVecBackend()
            backend.ensure_schema(conn)
            logger.debug("Vector backend: sqlite-vec")
            return backend
        except (AttributeError, OSError, sqlite3.Error) as exc:
            logger.debug("sqlite-vec unavailable, using local scan: %s", exc)

    backend = LocalScanBackend()
    backend.ensure_schema(conn)
    logger.debug("Vector backend: local scan")
    return backend


def _candidate(row: sqlite3.Row, score: float) -> Candidate:
    return Candidate(
        node_id=row["id"],
        title=row["title"],
        path=row["md_path"],
        terms=decode_terms(row["terms_json"]),
        snippet=one_line(row["snippet"] or ""),
        score=score,
    )
