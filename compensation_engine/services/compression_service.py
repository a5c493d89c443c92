# compensation_engine/services/compression_service.py
"""
Depth compression for the leadership plan.

Each direct referral of a root starts one line. Inside a line the
sponsor subtree is walked breadth-first and only manager-ranked nodes
consume a level:

    root
     └─ A (step 2)            line A
         └─ B (step 5) ........ compressed level 1
             └─ C (step 1)
                 └─ D (step 5)  compressed level 2

Non-qualifying nodes are still expanded, they just do not count.
"""
from dataclasses import dataclass, field
from collections import deque
from typing import Dict, Optional, Set, Tuple
from sqlalchemy.orm import Session
import logging

from compensation_engine.config.plan import PlanConfig, VisitedPolicy
from compensation_engine.storage.graph_store import GraphStore, ReferralSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompressedLine:
    """Qualifying nodes of one line, in BFS order, with their compressed levels."""
    line_root_id: str
    entries: Tuple[Tuple[str, int], ...] = ()

    @property
    def is_qualifying(self) -> bool:
        """A line counts toward eligibility when it holds at least one manager."""
        return len(self.entries) > 0

    @property
    def max_level(self) -> int:
        return self.entries[-1][1] if self.entries else 0

    def level_of(self, nodeId: str) -> Optional[int]:
        for entryId, level in self.entries:
            if entryId == nodeId:
                return level
        return None


@dataclass
class CompressionResult:
    root_id: str
    lines: Dict[str, CompressedLine] = field(default_factory=dict)
    truncated: bool = False
    visited_count: int = 0

    @property
    def lines_with_managers(self) -> int:
        return sum(1 for line in self.lines.values() if line.is_qualifying)

    def find(self, nodeId: str) -> Optional[Tuple[str, int]]:
        """(line root, compressed level) of the first line holding the node."""
        for lineRootId, line in self.lines.items():
            level = line.level_of(nodeId)
            if level is not None:
                return lineRootId, level
        return None


class CompressionService:
    """Builds compressed lines under a root from a referral snapshot."""

    def __init__(self, session: Session):
        self.session = session
        self.graph = GraphStore(session)

    def compress(
            self,
            rootId: str,
            plan: PlanConfig,
            snapshot: Optional[ReferralSnapshot] = None
    ) -> CompressionResult:
        """
        Compute the compressed lines of rootId.

        Args:
            rootId: Node whose downline is compressed
            plan: Supplies manager step, depth cap, visit limit and visited policy
            snapshot: Reuse an existing snapshot (one per sale is enough)

        Returns:
            CompressionResult, truncated=True if the visit limit was hit
        """
        if snapshot is None:
            snapshot = self.graph.snapshotReferralTree()

        managerStep = plan.manager_step
        maxDepth = plan.max_compressed_depth
        visitLimit = plan.compression_visit_limit

        result = CompressionResult(root_id=rootId)

        sharedVisited: Set[str] = {rootId}
        budget = [visitLimit]

        for lineRootId in snapshot.children_of(rootId):
            if plan.visited_policy is VisitedPolicy.SHARED:
                visited = sharedVisited
                if lineRootId in visited:
                    logger.debug(f"Line {lineRootId} of {rootId} already claimed by an earlier line")
                    continue
            else:
                visited = {rootId}

            if budget[0] <= 0:
                result.truncated = True
                break

            entries, cut = self._compressLine(
                lineRootId, snapshot, managerStep, maxDepth, visited, budget
            )
            result.lines[lineRootId] = CompressedLine(line_root_id=lineRootId, entries=entries)

            if cut:
                result.truncated = True
                break

        result.visited_count = visitLimit - budget[0]

        if result.truncated:
            logger.warning(
                f"Compression of {rootId} truncated after {result.visited_count} nodes "
                f"(limit {visitLimit}), result is partial"
            )

        logger.debug(
            f"Compressed {rootId}: {len(result.lines)} lines, "
            f"{result.lines_with_managers} with managers, {result.visited_count} visited"
        )
        return result

    @staticmethod
    def _compressLine(
            lineRootId: str,
            snapshot: ReferralSnapshot,
            managerStep: int,
            maxDepth: int,
            visited: Set[str],
            budget: list
    ) -> Tuple[Tuple[Tuple[str, int], ...], bool]:
        """
        BFS over one line. budget is a one-item list shared across lines.

        Returns:
            (entries, cut) where cut means the visit budget ran out mid-line
        """
        entries = []
        level = 0
        queue = deque([lineRootId])
        visited.add(lineRootId)

        while queue and level < maxDepth:
            if budget[0] <= 0:
                return tuple(entries), True

            nodeId = queue.popleft()
            budget[0] -= 1

            if managerStep > 0 and snapshot.step_of(nodeId) == managerStep:
                level += 1
                entries.append((nodeId, level))
                if level == maxDepth:
                    break

            for childId in snapshot.children_of(nodeId):
                if childId in visited:
                    continue
                visited.add(childId)
                queue.append(childId)

        return tuple(entries), False
