# compensation_engine/services/stair_step_service.py
"""
Stair-step plan - differential commissions along the sponsor chain.
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


class StairStepService:
    """Service for stair-step (rank differential) commissions."""

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
        Pay stair-step commissions for one sale.

        The seller earns its own step percentage. Each sponsor above earns
        only the part of its percentage not already paid on this sale:

            seller   step 1  5%  -> 5%
            sponsor  step 1  5%  -> nothing
            sponsor  step 3 13%  -> 13% - 5% = 8%
            sponsor  step 5 21%  -> 21% - 13% = 8%, walk stops (top step)

        Returns:
            Appended entries, seller first
        """
        amount = Decimal(str(amount))
        topPercentage = plan.max_percentage
        entries = []

        if topPercentage <= 0:
            return entries

        seller = self.graph.requireNode(sourceNodeId)
        lastPaidPercentage = Decimal("0")

        def pay(recipient: AffiliateNode, level: int) -> bool:
            nonlocal lastPaidPercentage

            percentage = plan.step_percentage(recipient.currentStep)
            differential = percentage - lastPaidPercentage

            if differential > 0:
                entry = self.ledger.append(
                    recipientId=recipient.nodeID,
                    sourceId=sourceNodeId,
                    planType=PlanType.STAIRSTEP,
                    amount=amount * differential,
                    basisAmount=amount,
                    level=level,
                    rate=differential,
                    eventId=eventId,
                    occurredAt=occurredAt,
                )
                entries.append(entry)
                lastPaidPercentage = percentage

                logger.debug(
                    f"Stair-step {recipient.nodeID} (step {recipient.currentStep}): "
                    f"{float(percentage * 100):.1f}% differential "
                    f"{float(differential * 100):.1f}% = {entry.amount}"
                )

            # Stop at the top percentage
            return lastPaidPercentage < topPercentage

        if pay(seller, 0):
            walker = ChainWalker(self.session)
            walker.walk_sponsor_chain(seller, pay, plan.max_chain_depth)

        if entries:
            logger.info(
                f"Stair-step for sale of {amount} by {sourceNodeId}: "
                f"{len(entries)} entries, top paid {float(lastPaidPercentage * 100):.1f}%"
            )
        return entries
