"""Dependency-aware scheduling of pending task nodes."""

from __future__ import annotations

import logging
from typing import Dict, List, Set

from .models import (
    BatchPlan,
    BlockedTask,
    EdgeType,
    Node,
    PlanBatch,
    ReadyPlan,
    Snapshot,
    TaskSummary,
)

logger = logging.getLogger(__name__)


class Scheduler:
    """Plan work over task-typed nodes that are not yet done.

    Only ``depends_on`` edges between two pending tasks constrain the
    order; edges to requirements, decisions or finished tasks never block.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot

    def pending_tasks(self) -> List[Node]:
        return [node for node in self.snapshot if node.is_pending_task]

    def batches(self) -> BatchPlan:
        """Layer pending tasks into batches that can run in parallel.

        Kahn's algorithm, one layer per batch, members sorted by id. Tasks
        that never reach in-degree zero sit on or behind a dependency
        cycle and are reported as ``blocked_or_cyclic``.
        """
        pending = {node.node_id: node for node in self.pending_tasks()}
        indegree: Dict[str, int] = {node_id: 0 for node_id in pending}
        dependents: Dict[str, List[str]] = {}

        for node_id, node in pending.items():
            for edge in node.edges:
                if edge.edge_type != EdgeType.DEPENDS_ON or edge.to not in pending:
                    continue
                indegree[node_id] += 1
                dependents.setdefault(edge.to, []).append(node_id)

        plan = BatchPlan()
        processed: Set[str] = set()
        while True:
            current = sorted(
                node_id for node_id, degree in indegree.items()
                if degree == 0 and node_id not in processed
            )
            if not current:
                break
            for node_id in current:
                processed.add(node_id)
                for dependent in dependents.get(node_id, []):
                    indegree[dependent] = max(indegree[dependent] - 1, 0)
            plan.batches.append(PlanBatch(
                batch=len(plan.batches) + 1,
                task_ids=current,
                tasks=[_summary(pending[node_id]) for node_id in current],
            ))

        plan.blocked_or_cyclic = sorted(set(pending) - processed)
        plan.blocked_or_cyclic_tasks = [_summary(pending[node_id]) for node_id in plan.blocked_or_cyclic]
        if plan.blocked_or_cyclic:
            logger.info("%d task(s) blocked or cyclic", len(plan.blocked_or_cyclic))
        return plan

    def ready(self) -> ReadyPlan:
        """Split pending tasks into ready ones and ones waiting on unfinished tasks."""
        plan = ReadyPlan()
        for node in self.pending_tasks():
            blockers = self.unresolved_dependencies(node)
            if blockers:
                summary = _summary(node)
                plan.blocked.append(BlockedTask(
                    node_id=summary.node_id,
                    title=summary.title,
                    path=summary.path,
                    status=summary.status,
                    blocked_by=blockers,
                ))
            else:
                plan.ready.append(_summary(node))
        plan.ready.sort(key=lambda t: t.node_id)
        plan.blocked.sort(key=lambda t: t.node_id)
        return plan

    def unresolved_dependencies(self, node: Node) -> List[str]:
        blocked_by = []
        for edge in node.edges:
            if edge.edge_type != EdgeType.DEPENDS_ON:
                continue
            dep = self.snapshot.get(edge.to)
            if dep is None or not dep.node_type.is_task:
                continue
            if not dep.status.is_done:
                blocked_by.append(dep.node_id)
        return sorted(blocked_by)


def _summary(node: Node) -> TaskSummary:
    return TaskSummary(
        node_id=node.node_id,
        title=node.title,
        path=node.body_path,
        status=node.status.value,
    )
