# compensation_engine/services/unilevel_service.py
"""
Unilevel plan - a fixed pool of each sale split over the first sponsor levels.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from models.affiliate_node import AffiliateNode
from models.commission_entry import CommissionEntry
from compensation_engine.config.plan import PlanConfig, PlanType
from compensation_engine.storage.commission_ledger import CommissionLedger
from compensation_engine.storage.graph_store import GraphStore
from compensation_engine.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class UnilevelService:
    """Service for unilevel (fixed level split) commissions."""

    def __init__(self, session: Session):
        self.session = session
        self.graph = GraphStore(session)
        self.ledger = CommissionLedger(session)

    def distribute(
            self,
            sourceNodeId: str,
            amount: Decimal,
            plan: PlanConfig,
            occurredAt: Optional[datetime] = None,
            eventId: Optional[str] = None
    ) -> List[CommissionEntry]:
        """
        Pay the unilevel pool of one sale to the seller's sponsors.

        pool = amount * unilevel_pool_percent; sponsor N levels up gets
        pool * unilevel_levels[N - 1]. Ranks play no part. A chain shorter
        than the level table leaves the remaining shares unpaid.

        Returns:
            Appended entries, level 1 first
        """
        if not plan.unilevel_enabled:
            return []

        amount = Decimal(str(amount))
        pool = amount * plan.unilevel_pool_percent
        seller = self.graph.requireNode(sourceNodeId)

        levels = plan.unilevel_levels
        entries = []

        def pay(sponsor: AffiliateNode, level: int) -> bool:
            share = levels[level - 1]
            if share > 0:
                entries.append(self.ledger.append(
                    recipientId=sponsor.nodeID,
                    sourceId=sourceNodeId,
                    planType=PlanType.UNILEVEL,
                    amount=pool * share,
                    basisAmount=amount,
                    level=level,
                    rate=plan.unilevel_pool_percent * share,
                    eventId=eventId,
                    occurredAt=occurredAt,
                ))
            return level < len(levels)

        walker = ChainWalker(self.session)
        walker.walk_sponsor_chain(seller, pay, plan.max_chain_depth)

        if entries:
            logger.info(
                f"Unilevel pool {pool:.2f} of sale {amount} by {sourceNodeId}: "
                f"{len(entries)} of {len(plan.unilevel_levels)} levels paid"
            )
        else:
            logger.debug(f"Unilevel: no sponsors above {sourceNodeId}")
        return entries
