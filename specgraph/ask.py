"""Retrieval-augmented answers over the spec graph.

Pipeline for :meth:`AskSynthesizer.ask`:

1. Retrieve primary hits with :class:`~specgraph.rag.HybridRetriever`.
2. Expand one hop over the graph around the hits, scoring neighbours by
   configurable per-edge-type weights (incoming edges count 0.9x).
3. Assemble citations, evidence, a templated answer, a confidence score,
   known gaps, and (optionally) per-node explanations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Union

from .config import SNIPPET_CHARS
from .config_manager import AskConfig, EdgeWeights
from .models import (
    AskResult,
    Citation,
    EdgeType,
    Evidence,
    Explanation,
    SearchHit,
    SearchMode,
    Snapshot,
)
from .rag import HybridRetriever
from .spec_store import SpecStore
from .text import query_terms

logger = logging.getLogger(__name__)

REVERSE_EDGE_FACTOR = 0.9
ANSWER_TITLE_COUNT = 3
ANSWER_RELATED_COUNT = 5
ANSWER_SNIPPET_CHARS = 100

NO_HITS_ANSWER = "No relevant spec nodes were found for this question."
NO_HITS_GAP = "No matching spec nodes. Try a broader query or run `sg search index --rebuild`."
LOW_EVIDENCE_GAP = "Low evidence count: fewer than 2 strong retrieval hits."
LIMITED_CONTEXT_GAP = "Limited cross-spec context: consider adding more explicit links."

_CONTEXT_TYPES = frozenset({
    EdgeType.DEPENDS_ON,
    EdgeType.TESTS,
    EdgeType.REFINES,
    EdgeType.IMPACTS,
    EdgeType.CONFLICTS_WITH,
})


@dataclass
class _EdgeReason:
    label: str
    weight: float


class AskSynthesizer:
    """Answer a free-text question with citations from the spec graph."""

    def __init__(
        self,
        retriever: HybridRetriever,
        snapshot: Snapshot,
        store: SpecStore,
        ask_config: Optional[AskConfig] = None,
    ) -> None:
        self.retriever = retriever
        self.snapshot = snapshot
        self.store = store
        self.config = ask_config or AskConfig()

    def ask(
        self,
        question: str,
        top_k: int = 5,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        explain: bool = False,
    ) -> AskResult:
        """Retrieve, expand and synthesise an answer to *question*.

        Raises:
            InvalidInputError: The question has no searchable tokens.
        """
        result = self.retriever.search(question, top_k=top_k, mode=mode)
        hits = result.hits
        if not hits:
            return AskResult(
                question=question,
                mode=result.mode,
                answer=NO_HITS_ANSWER,
                confidence=0.0,
                gaps=[NO_HITS_GAP],
            )

        weights = self.config.edge_weight
        related_ids, conflict_risks = expand_context(
            hits, self.snapshot, self.config.neighbor_limit, weights,
        )
        primary_ids = {hit.node_id for hit in hits}
        neighbours = [
            self.snapshot.nodes[node_id]
            for node_id in related_ids
            if node_id not in primary_ids and node_id in self.snapshot
        ]

        citations = [Citation(node_id=h.node_id, title=h.title, path=h.path) for h in hits]
        citations.extend(
            Citation(node_id=n.node_id, title=n.title, path=n.body_path) for n in neighbours
        )

        evidence = [Evidence(node_id=h.node_id, snippet=h.snippet, score=h.score) for h in hits]
        evidence.extend(
            Evidence(
                node_id=n.node_id,
                snippet=self.store.head_snippet(n, SNIPPET_CHARS),
                score=0.0,
            )
            for n in neighbours
        )

        confidence = confidence_from_hits(hits[0].score, len(hits), not conflict_risks)
        answer = _render_answer(
            citations, related_ids, conflict_risks, evidence,
            self.config.snippet_count_in_answer,
        )

        gaps = []
        if len(hits) < 2:
            gaps.append(LOW_EVIDENCE_GAP)
        if len(citations) <= 1:
            gaps.append(LIMITED_CONTEXT_GAP)

        explanations = (
            build_explanations(question, hits, related_ids, self.snapshot, weights)
            if explain else []
        )

        logger.debug(
            "ask %r: %d hit(s), %d neighbour(s), confidence=%.3f",
            question, len(hits), len(neighbours), confidence,
        )
        return AskResult(
            question=question,
            mode=result.mode,
            answer=answer,
            confidence=confidence,
            citations=citations,
            evidence=evidence,
            explanations=explanations,
            gaps=gaps,
        )


# ===================================================================
# Context expansion
# ===================================================================

def expand_context(
    hits: List[SearchHit],
    snapshot: Snapshot,
    limit: int,
    weights: EdgeWeights,
) -> Tuple[List[str], List[str]]:
    """Score one-hop neighbours of the primary hits.

    Returns:
        ``(related_ids, conflict_ids)``: neighbours ranked by accumulated
        edge weight (desc, then id), and ``conflicts_with`` neighbours
        sorted by id. Both exclude the hits themselves and hold at most
        *limit* ids.
    """
    seed_ids = [hit.node_id for hit in hits]
    seeds = set(seed_ids)
    scores: Dict[str, float] = {}
    conflicts: Set[str] = set()

    for seed_id in seed_ids:
        seed = snapshot.get(seed_id)
        if seed is not None:
            for edge in seed.edges:
                if edge.edge_type not in _CONTEXT_TYPES:
                    continue
                scores[edge.to] = scores.get(edge.to, 0.0) + weights.weight(edge.edge_type)
                if edge.edge_type == EdgeType.CONFLICTS_WITH:
                    conflicts.add(edge.to)
        for node in snapshot:
            for edge in node.edges:
                if edge.to != seed_id or edge.edge_type not in _CONTEXT_TYPES:
                    continue
                scores[node.node_id] = (
                    scores.get(node.node_id, 0.0)
                    + weights.weight(edge.edge_type) * REVERSE_EDGE_FACTOR
                )
                if edge.edge_type == EdgeType.CONFLICTS_WITH:
                    conflicts.add(node.node_id)

    ranked = sorted(
        ((node_id, score) for node_id, score in scores.items() if node_id not in seeds),
        key=lambda item: (-item[1], item[0]),
    )
    related = [node_id for node_id, _ in ranked[:limit]]
    conflict_ids = sorted(conflicts - seeds)[:limit]
    return related, conflict_ids


def confidence_from_hits(top_score: float, hit_count: int, no_conflict_risk: bool) -> float:
    """Blend of top score, hit coverage and conflict risk, in [0, 1].

    RRF scores are tiny (at most 2/61), so scores up to 1.0 are scaled by
    30 before clamping; larger lexical scores clamp directly.
    """
    if hit_count == 0:
        return 0.0
    if top_score <= 1.0:
        score_signal = min(abs(top_score) * 30.0, 1.0)
    else:
        score_signal = min(abs(top_score), 1.0)
    coverage_signal = min(hit_count / 5.0, 1.0)
    risk_signal = 1.0 if no_conflict_risk else 0.6
    return max(0.0, min(score_signal * 0.5 + coverage_signal * 0.35 + risk_signal * 0.15, 1.0))


def _render_answer(
    citations: List[Citation],
    related_ids: List[str],
    conflict_risks: List[str],
    evidence: List[Evidence],
    snippet_count: int,
) -> str:
    focus = ", ".join(f"{c.title} ({c.node_id})" for c in citations[:ANSWER_TITLE_COUNT])
    if related_ids:
        related = f"Related context nodes: {', '.join(related_ids[:ANSWER_RELATED_COUNT])}."
    else:
        related = "No adjacent dependency/test nodes were found."
    if conflict_risks:
        risk = f"Conflict risks to review: {', '.join(conflict_risks)}."
    else:
        risk = "No direct conflict edges were detected in the 1-hop context."
    highlights = " | ".join(
        f"[{e.node_id}] {e.snippet[:ANSWER_SNIPPET_CHARS]}"
        for e in evidence[:max(snippet_count, 1)]
    )
    return (
        f"Primary relevant specs: {focus}. {related} {risk} "
        f"Evidence highlights: {highlights}. "
        "Use `sg impact <ID>` on the first cited node for deeper propagation checks."
    )


# ===================================================================
# Explanations
# ===================================================================

def build_explanations(
    question: str,
    hits: List[SearchHit],
    related_ids: List[str],
    snapshot: Snapshot,
    weights: EdgeWeights,
) -> List[Explanation]:
    """Why each hit and each graph neighbour made it into the answer."""
    out: List[Explanation] = []
    primary_ids = {hit.node_id for hit in hits}
    question_tokens = set(query_terms(question))

    for rank, hit in enumerate(hits, start=1):
        parts = [f"retrieval rank #{rank} (score={hit.score:.4f})"]
        if hit.matched_terms:
            parts.append(f"matched terms: {','.join(hit.matched_terms)}")
        title_matches = _token_matches(question_tokens, hit.title)
        snippet_matches = _token_matches(question_tokens, hit.snippet)
        if title_matches:
            parts.append(f"title token match: {','.join(title_matches)}")
        if snippet_matches:
            parts.append(f"snippet token match: {','.join(snippet_matches)}")
        out.append(Explanation(node_id=hit.node_id, reason="; ".join(parts)))

    for related in related_ids:
        if related in primary_ids:
            continue
        reasons = _edge_reasons(related, primary_ids, snapshot, weights)
        if not reasons:
            continue
        total = sum(r.weight for r in reasons)
        labels = ", ".join(r.label for r in reasons)
        out.append(Explanation(
            node_id=related,
            reason=f"graph neighbor via {labels} (weighted_score={total:.2f})",
        ))
    return out


def _token_matches(question_tokens: Set[str], text: str) -> List[str]:
    return sorted(question_tokens & set(query_terms(text)))


def _edge_reasons(
    candidate_id: str,
    primary_ids: Set[str],
    snapshot: Snapshot,
    weights: EdgeWeights,
) -> List[_EdgeReason]:
    reasons: Dict[str, _EdgeReason] = {}

    candidate = snapshot.get(candidate_id)
    if candidate is not None:
        for edge in candidate.edges:
            if edge.to in primary_ids:
                weight = weights.weight(edge.edge_type) * REVERSE_EDGE_FACTOR
                label = f"{candidate_id} -> {edge.to} ({edge.edge_type.value},w={weight:.2f})"
                reasons.setdefault(label, _EdgeReason(label, weight))

    for primary_id in sorted(primary_ids):
        primary = snapshot.get(primary_id)
        if primary is None:
            continue
        for edge in primary.edges:
            if edge.to == candidate_id:
                weight = weights.weight(edge.edge_type)
                label = f"{primary_id} -> {candidate_id} ({edge.edge_type.value},w={weight:.2f})"
                reasons.setdefault(label, _EdgeReason(label, weight))

    return sorted(reasons.values(), key=lambda r: (-r.weight, r.label))
