"""Hash-gated, transactional re-indexing of a spec snapshot."""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional, Set

from .chunking import split_into_chunks
from .config import CHUNK_TARGET_LEN
from .embeddings import HashEmbeddingModel
from .errors import IndexTransactionError
from .models import IndexSummary, Snapshot
from .spec_store import SpecStore
from .storage import SearchIndex
from .text import tokenize

logger = logging.getLogger(__name__)


class Indexer:
    """Bring a :class:`SearchIndex` in line with a snapshot.

    A node is re-chunked only when its content hash differs from the one
    stored in the index (or on ``rebuild``). Index rows for nodes that
    left the snapshot are deleted. The whole run is one transaction.
    """

    def __init__(
        self,
        index: SearchIndex,
        store: SpecStore,
        embedder: Optional[HashEmbeddingModel] = None,
        target_len: int = CHUNK_TARGET_LEN,
    ) -> None:
        self.index = index
        self.store = store
        self.embedder = embedder or HashEmbeddingModel()
        self.target_len = target_len

    def reindex(self, snapshot: Snapshot, rebuild: bool = False) -> IndexSummary:
        """Index *snapshot*.

        Args:
            snapshot: Live nodes, keyed by id.
            rebuild: Drop every index row first and re-chunk all nodes.

        Returns:
            Counts of indexed, skipped (unchanged) and deleted (stale) nodes.

        Raises:
            IndexTransactionError: A body could not be read or a write
                failed; nothing from this run is committed.
        """
        summary = IndexSummary()
        live_ids: Set[str] = set()

        try:
            with self.index.transaction() as cur:
                if rebuild:
                    self.index.clear(cur)

                for node in snapshot:
                    live_ids.add(node.node_id)
                    if not rebuild and self.index.stored_hash(node.node_id) == node.hash:
                        logger.debug("Unchanged, skipping %s", node.node_id)
                        summary.skipped += 1
                        continue

                    body = self.store.read_body(node)
                    chunks = split_into_chunks(body, self.target_len)

                    self.index.delete_chunks(cur, node.node_id)
                    self.index.upsert_node(cur, node)
                    for ordinal, chunk in enumerate(chunks):
                        self.index.add_chunk(
                            cur,
                            node.node_id,
                            ordinal,
                            chunk,
                            len(tokenize(chunk)),
                            self.embedder.embed_text(chunk),
                        )
                    logger.debug("Indexed %s (%d chunks)", node.node_id, len(chunks))
                    summary.indexed += 1

                for node_id in self.index.indexed_ids():
                    if node_id not in live_ids:
                        self.index.delete_node(cur, node_id)
                        logger.debug("Removed stale index row %s", node_id)
                        summary.deleted += 1
        except (OSError, UnicodeDecodeError, sqlite3.Error) as exc:
            raise IndexTransactionError(f"reindex aborted, no changes committed: {exc}") from exc

        logger.info(
            "Index summary: indexed=%d skipped=%d deleted=%d",
            summary.indexed, summary.skipped, summary.deleted,
        )
        return summary
