"""Hybrid retrieval over the chunk index.

Lexical candidates come from FTS5 BM25 plus a title/term boost. Semantic
candidates come from the active vector backend. In hybrid mode the two
ranked lists are merged with reciprocal rank fusion. Every sort breaks
ties on node id, so identical inputs always give identical output.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Union

from .config import LEXICAL_CANDIDATE_FACTOR, RRF_K, SNIPPET_CHARS
from .embeddings import HashEmbeddingModel
from .errors import InvalidInputError
from .models import Candidate, SearchHit, SearchMode, SearchResult
from .storage import SearchIndex
from .text import (
    ascii_lower,
    decode_terms,
    matched_terms,
    normalize_term_key,
    one_line,
    query_terms,
    tokenize,
)
from .vector_store import LocalScanBackend

logger = logging.getLogger(__name__)

TITLE_TOKEN_WEIGHT = 3.0
TERM_WEIGHT = 2.5
TITLE_PHRASE_WEIGHT = 4.0


class HybridRetriever:
    """Rank spec nodes for a free-text query.

    Example::

        retriever = HybridRetriever(SearchIndex(path))
        result = retriever.search("checkout flow", top_k=5, mode="hybrid")
        for hit in result.hits:
            print(hit.node_id, hit.score)
    """

    def __init__(self, index: SearchIndex, embedder: Optional[HashEmbeddingModel] = None) -> None:
        self.index = index
        self.embedder = embedder or HashEmbeddingModel()

    def search(
        self,
        query: str,
        top_k: int = 10,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
    ) -> SearchResult:
        """Return up to *top_k* hits, best first.

        Raises:
            InvalidInputError: The query has no alphanumeric tokens, or the
                mode is unknown.
        """
        search_mode = SearchMode.parse(mode)
        terms = query_terms(query)
        if not terms:
            raise InvalidInputError("query is empty after normalization")

        lexical = self.lexical_candidates(query, max(top_k, 1) * LEXICAL_CANDIDATE_FACTOR)
        if search_mode == SearchMode.LEXICAL:
            hits = [_to_hit(query, c, c.score) for c in lexical[:top_k]]
        else:
            semantic = self.semantic_candidates(query)
            hits = fuse(query, lexical, semantic, top_k)

        logger.debug("search %r (%s): %d hit(s)", query, search_mode, len(hits))
        return SearchResult(query=query, mode=search_mode.value, hits=hits)

    # ------------------------------------------------------------------
    # Candidate lists
    # ------------------------------------------------------------------

    def lexical_candidates(self, query: str, limit: int) -> List[Candidate]:
        """Best chunk per node by ``-bm25 + ranking_boost``."""
        match = " ".join(f'"{term}"' for term in query_terms(query))
        rows = self.index.conn.execute(
            f"""
            SELECT n.id, n.title, n.md_path,
                   bm25(fts_chunks) AS bm25_score,
                   SUBSTR(c.text, 1, {SNIPPET_CHARS}) AS snippet,
                   n.terms_json
            FROM fts_chunks
            JOIN chunks c ON c.chunk_id = fts_chunks.chunk_id
            JOIN nodes n ON n.id = fts_chunks.node_id
            WHERE fts_chunks MATCH ?
            ORDER BY bm25_score ASC
            LIMIT ?
            """,
            (match, limit),
        ).fetchall()

        candidates = []
        for row in rows:
            terms = decode_terms(row["terms_json"])
            score = -float(row["bm25_score"]) + ranking_boost(query, row["title"], terms)
            candidates.append(Candidate(
                node_id=row["id"],
                title=row["title"],
                path=row["md_path"],
                terms=terms,
                snippet=one_line(row["snippet"] or ""),
                score=score,
            ))
        return best_per_node(candidates)

    def semantic_candidates(self, query: str) -> List[Candidate]:
        """Best chunk per node by embedding similarity.

        The accelerated backend is tried first; an empty answer or a
        failure falls back to the exhaustive local scan.
        """
        query_vec = self.embedder.embed_text(query)
        backend = self.index.vectors
        if backend.accelerated:
            try:
                found = backend.query(self.index.conn, query_vec)
            except sqlite3.Error as exc:
                logger.warning("sqlite-vec query failed, falling back to local scan: %s", exc)
                found = []
            if found:
                return best_per_node(found)
        return best_per_node(LocalScanBackend().query(self.index.conn, query_vec))


# ===================================================================
# Scoring helpers
# ===================================================================

def ranking_boost(query: str, title: str, terms: Iterable[str]) -> float:
    """Title token overlap, classification-term overlap and exact title phrase."""
    q_tokens = tokenize(query)
    q_norm_tokens = {normalize_term_key(part) for part in query.split()} - {""}
    title_overlap = len(q_tokens & tokenize(title))
    term_overlap = 0
    for term in terms:
        key = normalize_term_key(term)
        if key in q_tokens or key in q_norm_tokens:
            term_overlap += 1
    exact_phrase = 1 if ascii_lower(query) in ascii_lower(title) else 0
    return (
        title_overlap * TITLE_TOKEN_WEIGHT
        + term_overlap * TERM_WEIGHT
        + exact_phrase * TITLE_PHRASE_WEIGHT
    )


def reciprocal_rank_fusion(rank: Optional[int]) -> float:
    """``1 / (RRF_K + rank)`` for a 1-based rank; ``0.0`` when absent."""
    if rank is None:
        return 0.0
    return 1.0 / (RRF_K + rank)


def best_per_node(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Keep each node's highest-scoring candidate; order by score desc, id asc."""
    by_node: Dict[str, Candidate] = {}
    for cand in candidates:
        existing = by_node.get(cand.node_id)
        if existing is None or cand.score > existing.score:
            by_node[cand.node_id] = cand
    return sorted(by_node.values(), key=lambda c: (-c.score, c.node_id))


def fuse(
    query: str,
    lexical: List[Candidate],
    semantic: List[Candidate],
    top_k: int,
) -> List[SearchHit]:
    """Merge two ranked lists by reciprocal rank fusion.

    Display fields come from the lexical candidate when a node is in both
    lists.
    """
    lexical_rank = {c.node_id: idx for idx, c in enumerate(lexical, start=1)}
    semantic_rank = {c.node_id: idx for idx, c in enumerate(semantic, start=1)}

    merged: Dict[str, Candidate] = {}
    for cand in list(lexical) + list(semantic):
        merged.setdefault(cand.node_id, cand)

    hits = [
        _to_hit(
            query,
            cand,
            reciprocal_rank_fusion(lexical_rank.get(node_id))
            + reciprocal_rank_fusion(semantic_rank.get(node_id)),
        )
        for node_id, cand in merged.items()
    ]
    hits.sort(key=lambda h: (-h.score, h.node_id))
    return hits[:top_k]


def _to_hit(query: str, cand: Candidate, score: float) -> SearchHit:
    return SearchHit(
        node_id=cand.node_id,
        title=cand.title,
        path=cand.path,
        score=score,
        matched_terms=matched_terms(query, cand.terms),
        snippet=cand.snippet,
    )
