"""Suggest ``impacts`` edges between nodes that share vocabulary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from .errors import NotFoundError
from .models import EdgeStatus, EdgeType, Snapshot
from .spec_store import SpecStore
from .text import normalize_term_key, tokenize

logger = logging.getLogger(__name__)

TERM_OVERLAP_WEIGHT = 2


@dataclass
class ProposedLink:
    source: str
    target: str
    score: int
    confidence: float
    outcome: str


def score_to_confidence(score: int) -> float:
    if score <= 0:
        return 0.0
    return {1: 0.5, 2: 0.6, 3: 0.7, 4: 0.8}.get(score, 0.9)


def overlap_candidates(snapshot: Snapshot, node_id: str) -> List[Tuple[str, int]]:
    """Other nodes scored by ``2 * shared terms + shared title tokens``.

    Only positive scores are returned, best first, ties by id.
    """
    source = snapshot.get(node_id)
    if source is None:
        raise NotFoundError(f"node not found: {node_id}")

    source_terms = {normalize_term_key(t) for t in source.terms} - {""}
    source_title = tokenize(source.title)

    scored = []
    for node in snapshot:
        if node.node_id == node_id:
            continue
        target_terms = {normalize_term_key(t) for t in node.terms} - {""}
        score = (
            len(source_terms & target_terms) * TERM_OVERLAP_WEIGHT
            + len(source_title & tokenize(node.title))
        )
        if score > 0:
            scored.append((node.node_id, score))
    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored


def propose_links(store: SpecStore, snapshot: Snapshot, node_id: str, limit: int = 3) -> List[ProposedLink]:
    """Write up to *limit* proposed ``impacts`` edges from *node_id*."""
    proposals = []
    for target, score in overlap_candidates(snapshot, node_id)[:limit]:
        confidence = score_to_confidence(score)
        outcome = store.upsert_edge(
            snapshot,
            node_id,
            target,
            EdgeType.IMPACTS.value,
            f"auto proposal based on term/title overlap score={score}",
            confidence=confidence,
            status=EdgeStatus.PROPOSED.value,
        )
        proposals.append(ProposedLink(node_id, target, score, confidence, outcome))
    logger.info("Proposed %d link(s) from %s", len(proposals), node_id)
    return proposals
