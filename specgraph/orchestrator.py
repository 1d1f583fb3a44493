"""Composition root: one snapshot, one index handle, all components."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from .ask import AskSynthesizer
from .config_manager import AskConfig, load_ask_config
from .embeddings import HashEmbeddingModel
from .impact import GraphAnalyzer
from .indexer import Indexer
from .linker import ProposedLink, propose_links
from .models import (
    AskResult,
    BatchPlan,
    DoctorReport,
    ImpactReport,
    IndexSummary,
    ReadyPlan,
    SearchMode,
    SearchResult,
    Snapshot,
)
from .planner import Scheduler
from .rag import HybridRetriever
from .spec_store import SpecStore
from .storage import SearchIndex


class SpecGraph:
    """Coordinates the spec store, the search index and the analyzers.

    The snapshot is loaded once, lazily, and treated as read-only for the
    lifetime of the instance. The index is opened lazily so graph-only
    commands (impact, plan) never touch the database.
    """

    def __init__(
        self,
        store: SpecStore,
        index_path: Union[Path, str],
        ask_config: Optional[AskConfig] = None,
        vector_search: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.index_path = index_path
        self.ask_config = ask_config or load_ask_config()
        self.vector_search = vector_search
        self.embedding_model = HashEmbeddingModel()
        self._snapshot: Optional[Snapshot] = None
        self._index: Optional[SearchIndex] = None

    @property
    def snapshot(self) -> Snapshot:
        if self._snapshot is None:
            self._snapshot = self.store.load_snapshot()
        return self._snapshot

    @property
    def index(self) -> SearchIndex:
        if self._index is None:
            self._index = SearchIndex(self.index_path, vector_search=self.vector_search)
        return self._index

    def close(self) -> None:
        if self._index is not None:
            self._index.close()
            self._index = None

    def __enter__(self) -> "SpecGraph":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def reindex(self, rebuild: bool = False) -> IndexSummary:
        return Indexer(self.index, self.store, self.embedding_model).reindex(self.snapshot, rebuild=rebuild)

    def doctor(self) -> DoctorReport:
        return self.index.doctor(self.snapshot)

    def search(self, query: str, top_k: int = 10, mode: Union[SearchMode, str] = SearchMode.HYBRID) -> SearchResult:
        return self._retriever().search(query, top_k=top_k, mode=mode)

    def ask(
        self,
        question: str,
        top_k: int = 5,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        explain: bool = False,
    ) -> AskResult:
        synthesizer = AskSynthesizer(self._retriever(), self.snapshot, self.store, self.ask_config)
        return synthesizer.ask(question, top_k=top_k, mode=mode, explain=explain)

    def impact(self, node_id: str, depth: int = 2) -> ImpactReport:
        return GraphAnalyzer(self.snapshot).impact(node_id, depth=depth)

    def plan_batches(self) -> BatchPlan:
        return Scheduler(self.snapshot).batches()

    def plan_ready(self) -> ReadyPlan:
        return Scheduler(self.snapshot).ready()

    def propose_links(self, node_id: str, limit: int = 3) -> List[ProposedLink]:
        return propose_links(self.store, self.snapshot, node_id, limit=limit)

    def _retriever(self) -> HybridRetriever:
        return HybridRetriever(self.index, self.embedding_model)
