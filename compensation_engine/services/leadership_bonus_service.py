# compensation_engine/services/leadership_bonus_service.py
"""
Leadership bonus - a share of every manager sale paid to the manager's
compressed upline managers.

An ancestor earns the bonus on a sale when:
1. It is manager-ranked itself
2. At least two of its lines hold a manager (after compression)
3. The seller appears in one of its compressed lines (level <= max depth)
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from models.commission_entry import CommissionEntry
from compensation_engine.config.plan import PlanConfig, PlanType
from compensation_engine.services.compression_service import CompressionResult, CompressionService
from compensation_engine.storage.commission_ledger import CommissionLedger
from compensation_engine.storage.graph_store import GraphStore, ReferralSnapshot

logger = logging.getLogger(__name__)

MIN_QUALIFYING_LINES = 2


class LeadershipBonusService:
    """Service for the leadership (compressed manager) bonus."""

    def __init__(self, session: Session):
        self.session = session
        self.graph = GraphStore(session)
        self.ledger = CommissionLedger(session)
        self.compression = CompressionService(session)

    def isEligible(
            self,
            nodeId: str,
            plan: PlanConfig,
            snapshot: Optional[ReferralSnapshot] = None,
            compressed: Optional[CompressionResult] = None
    ) -> bool:
        """Manager-ranked with at least two lines holding a manager."""
        if snapshot is None:
            snapshot = self.graph.snapshotReferralTree()

        managerStep = plan.manager_step
        if managerStep <= 0 or snapshot.step_of(nodeId) != managerStep:
            return False

        if compressed is None:
            compressed = self.compression.compress(nodeId, plan, snapshot)

        return compressed.lines_with_managers >= MIN_QUALIFYING_LINES

    def onManagerSale(
            self,
            managerNodeId: str,
            salesAmount: Decimal,
            plan: PlanConfig,
            occurredAt: Optional[datetime] = None,
            eventId: Optional[str] = None,
            snapshot: Optional[ReferralSnapshot] = None
    ) -> List[CommissionEntry]:
        """
        Pay leadership bonuses for a sale made by a manager.

        Walks the seller's sponsor chain; every eligible ancestor that has
        the seller in its compressed lines gets salesAmount * bonus percent,
        recorded with the seller's compressed level. Ineligible ancestors
        are skipped and the walk continues.

        Returns:
            Appended entries, nearest ancestor first
        """
        salesAmount = Decimal(str(salesAmount))
        entries = []

        if snapshot is None:
            snapshot = self.graph.snapshotReferralTree()

        managerStep = plan.manager_step
        if managerStep <= 0 or snapshot.step_of(managerNodeId) != managerStep:
            logger.debug(f"Seller {managerNodeId} is not manager-ranked, no leadership bonus")
            return entries

        bonus = salesAmount * plan.leadership_bonus_percent
        cache: Dict[str, CompressionResult] = {}

        # Managers between the seller and the current ancestor (seller included).
        # The seller's compressed level can never be lower than this count.
        managersOnPath = 1
        currentId = managerNodeId
        seen = {managerNodeId}
        depth = 0

        while depth < plan.max_chain_depth:
            ancestorId = snapshot.sponsor_of(currentId)
            if ancestorId is None or ancestorId not in snapshot:
                break
            if ancestorId in seen:
                logger.error(f"Cycle detected in sponsor chain at node {ancestorId}")
                break
            seen.add(ancestorId)
            depth += 1

            if managersOnPath > plan.max_compressed_depth:
                logger.debug(
                    f"Seller {managerNodeId} is deeper than {plan.max_compressed_depth} "
                    f"compressed levels above {currentId}, walk stops"
                )
                break

            if snapshot.step_of(ancestorId) == managerStep:
                compressed = cache.get(ancestorId)
                if compressed is None:
                    compressed = self.compression.compress(ancestorId, plan, snapshot)
                    cache[ancestorId] = compressed

                if self.isEligible(ancestorId, plan, snapshot, compressed):
                    found = compressed.find(managerNodeId)
                    if found is not None:
                        lineRootId, level = found
                        entry = self.ledger.append(
                            recipientId=ancestorId,
                            sourceId=managerNodeId,
                            planType=PlanType.LEADERSHIP,
                            amount=bonus,
                            basisAmount=salesAmount,
                            level=level,
                            rate=plan.leadership_bonus_percent,
                            eventId=eventId,
                            occurredAt=occurredAt,
                            notes=f"line {lineRootId}",
                        )
                        entries.append(entry)
                        logger.debug(
                            f"Leadership bonus {entry.amount} to {ancestorId} "
                            f"(seller {managerNodeId} at level {level} of line {lineRootId})"
                        )
                    else:
                        logger.debug(f"Seller {managerNodeId} not in compressed lines of {ancestorId}")
                else:
                    logger.debug(
                        f"Manager {ancestorId} ineligible: "
                        f"{compressed.lines_with_managers} lines with managers"
                    )

                managersOnPath += 1

            currentId = ancestorId

        if entries:
            logger.info(
                f"Leadership bonus for sale of {salesAmount} by {managerNodeId}: "
                f"{len(entries)} recipients"
            )
        return entries
