"""Core data models shared by indexing, retrieval, graph analysis, and planning."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional

from .errors import InvalidInputError


class _StrEnum(str, Enum):
    """String-valued enum that rejects unknown values with InvalidInputError."""

    @classmethod
    def parse(cls, value: str):
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidInputError(
                f"invalid {cls.label()}: {value!r} (expected one of: {allowed})"
            ) from None

    @classmethod
    def label(cls) -> str:
        return cls.__name__

    def __str__(self) -> str:
        return self.value


class NodeType(_StrEnum):
    PRODUCT_GOAL = "product_goal"
    FEATURE_REQUIREMENT = "feature_requirement"
    NON_FUNCTIONAL_REQUIREMENT = "non_functional_requirement"
    CONSTRAINT = "constraint"
    DOMAIN_CONCEPT = "domain_concept"
    DECISION = "decision"
    WORKFLOW = "workflow"
    API_CONTRACT = "api_contract"
    DATA_CONTRACT = "data_contract"
    TEST_SPEC = "test_spec"
    TASK = "task"
    IMPLEMENTATION_TASK = "implementation_task"
    TEST_TASK = "test_task"
    MIGRATION_TASK = "migration_task"

    @classmethod
    def label(cls) -> str:
        return "node type"

    @property
    def is_task(self) -> bool:
        return self in _TASK_TYPES


_TASK_TYPES = frozenset({
    NodeType.TASK,
    NodeType.IMPLEMENTATION_TASK,
    NodeType.TEST_TASK,
    NodeType.MIGRATION_TASK,
})


class NodeStatus(_StrEnum):
    DRAFT = "draft"
    TODO = "todo"
    REVIEW = "review"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"

    @classmethod
    def label(cls) -> str:
        return "node status"

    @property
    def is_done(self) -> bool:
        return self in (NodeStatus.DONE, NodeStatus.ARCHIVED, NodeStatus.DEPRECATED)


class EdgeType(_StrEnum):
    DEPENDS_ON = "depends_on"
    REFINES = "refines"
    CONFLICTS_WITH = "conflicts_with"
    TESTS = "tests"
    IMPACTS = "impacts"

    @classmethod
    def label(cls) -> str:
        return "edge type"


class EdgeStatus(_StrEnum):
    CONFIRMED = "confirmed"
    PROPOSED = "proposed"

    @classmethod
    def label(cls) -> str:
        return "edge status"


class SearchMode(_StrEnum):
    LEXICAL = "lexical"
    HYBRID = "hybrid"

    @classmethod
    def label(cls) -> str:
        return "search mode"


@dataclass
class Edge:
    to: str
    edge_type: EdgeType
    rationale: str = ""
    confidence: float = 1.0
    status: EdgeStatus = EdgeStatus.CONFIRMED

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise InvalidInputError("confidence must be between 0.0 and 1.0")

    def to_dict(self) -> Dict[str, object]:
        return {
            "to": self.to,
            "type": self.edge_type.value,
            "rationale": self.rationale,
            "confidence": self.confidence,
            "status": self.status.value,
        }


@dataclass
class Node:
    node_id: str
    node_type: NodeType
    status: NodeStatus
    title: str
    body_path: str
    hash: str
    terms: List[str] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    meta_path: str = ""

    @property
    def is_pending_task(self) -> bool:
        return self.node_type.is_task and not self.status.is_done

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.node_id,
            "type": self.node_type.value,
            "status": self.status.value,
            "title": self.title,
            "body_md_path": self.body_path,
            "terms": list(self.terms),
            "hash": self.hash,
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass
class Snapshot:
    """Read-only view of the spec store for one command."""

    nodes: Dict[str, Node] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)


# ----------------------------------------------------------------------
# Index / retrieval
# ----------------------------------------------------------------------

@dataclass
class IndexSummary:
    indexed: int = 0
    skipped: int = 0
    deleted: int = 0


@dataclass
class DoctorReport:
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


@dataclass
class Candidate:
    """Best-scoring chunk of one node within a single candidate list."""

    node_id: str
    title: str
    path: str
    terms: List[str]
    snippet: str
    score: float


@dataclass
class SearchHit:
    node_id: str
    title: str
    path: str
    score: float
    matched_terms: List[str] = field(default_factory=list)
    snippet: str = ""


@dataclass
class SearchResult:
    query: str
    mode: str
    hits: List[SearchHit] = field(default_factory=list)


# ----------------------------------------------------------------------
# Graph analysis / planning
# ----------------------------------------------------------------------

@dataclass
class DirectDependency:
    to: str
    edge_type: str
    status: str
    confidence: float
    rationale: str


@dataclass
class ImpactReport:
    node_id: str
    depth: int
    direct_dependencies: List[DirectDependency] = field(default_factory=list)
    reverse_dependents: List[str] = field(default_factory=list)
    test_coverage_chain: List[str] = field(default_factory=list)
    conflict_risks: List[str] = field(default_factory=list)
    recommended_review_order: List[str] = field(default_factory=list)


@dataclass
class TaskSummary:
    node_id: str
    title: str
    path: str
    status: str


@dataclass
class BlockedTask:
    node_id: str
    title: str
    path: str
    status: str
    blocked_by: List[str] = field(default_factory=list)


@dataclass
class PlanBatch:
    batch: int
    task_ids: List[str] = field(default_factory=list)
    tasks: List[TaskSummary] = field(default_factory=list)


@dataclass
class BatchPlan:
    batches: List[PlanBatch] = field(default_factory=list)
    blocked_or_cyclic: List[str] = field(default_factory=list)
    blocked_or_cyclic_tasks: List[TaskSummary] = field(default_factory=list)


@dataclass
class ReadyPlan:
    ready: List[TaskSummary] = field(default_factory=list)
    blocked: List[BlockedTask] = field(default_factory=list)


# ----------------------------------------------------------------------
# Ask
# ----------------------------------------------------------------------

@dataclass
class Citation:
    node_id: str
    title: str
    path: str


@dataclass
class Evidence:
    node_id: str
    snippet: str
    score: float


@dataclass
class Explanation:
    node_id: str
    reason: str


@dataclass
class AskResult:
    question: str
    mode: str
    answer: str
    confidence: float
    citations: List[Citation] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    explanations: List[Explanation] = field(default_factory=list)
    gaps: List[str] = field(default_factory=list)
