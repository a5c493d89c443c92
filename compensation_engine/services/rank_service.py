"""
Rank management service for the stair-step plan.

A node's rank is its stair-step number (0 = no step). The highest
configured step is the manager step used by the leadership plan.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from models.affiliate_node import AffiliateNode
from models.rank_history import RankHistory
from models.sale_event import ProcessedSaleEvent
from compensation_engine.config.plan import PlanConfig
from compensation_engine.errors import NodeNotFoundError
from compensation_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


def _month_key(when: datetime) -> str:
    return when.strftime('%Y-%m')


def _previous_months(asOf: datetime, count: int) -> List[str]:
    """YYYY-MM keys of `count` months ending with the month of asOf (newest first)."""
    year, month = asOf.year, asOf.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return keys


class RankService:
    """Service for reading and managing stair-step ranks."""

    def __init__(self, session: Session):
        self.session = session

    def currentStep(self, nodeId: str) -> int:
        """Current step of a node. Unknown nodes and missing ranks are step 0."""
        node = self.session.query(AffiliateNode).filter_by(nodeID=nodeId).first()
        if not node:
            logger.debug(f"currentStep: node {nodeId} not found, treating as step 0")
            return 0
        return node.currentStep or 0

    @staticmethod
    def managerStep(plan: PlanConfig) -> int:
        return plan.manager_step

    def isManager(self, nodeId: str, plan: PlanConfig) -> bool:
        managerStep = plan.manager_step
        return managerStep > 0 and self.currentStep(nodeId) == managerStep

    def updateStep(
            self,
            nodeId: str,
            newStep: int,
            method: str = "natural",
            allowDowngrade: bool = False
    ) -> bool:
        """
        Update node's step and record it in history.

        Steps are not downgraded unless allowDowngrade is set.

        Args:
            nodeId: Node ID
            newStep: New step number
            method: "natural" (quota qualification) or "assigned" (admin)
            allowDowngrade: Permit a lower step

        Returns:
            True if the step changed

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        node = self.session.query(AffiliateNode).filter_by(nodeID=nodeId).first()
        if not node:
            raise NodeNotFoundError(nodeId)

        oldStep = node.currentStep or 0

        if newStep == oldStep:
            return False

        if newStep < oldStep and not allowDowngrade:
            logger.info(f"Node {nodeId} keeps step {oldStep}, refusing downgrade to {newStep}")
            return False

        node.currentStep = newStep

        self.session.add(RankHistory(
            nodeID=nodeId,
            previousStep=oldStep,
            newStep=newStep,
            method=method,
        ))
        self.session.flush()

        logger.info(f"Node {nodeId} step {oldStep} -> {newStep} ({method})")
        return True

    def monthlySales(self, nodeId: str, months: Optional[List[str]] = None) -> Dict[str, Decimal]:
        """
        Personal sales per month from the processed sale history.

        Args:
            nodeId: Seller node
            months: Restrict to these YYYY-MM keys

        Returns:
            Dict month -> total amount
        """
        rows = self.session.query(
            ProcessedSaleEvent.occurredAt,
            ProcessedSaleEvent.amount,
        ).filter(ProcessedSaleEvent.sourceID == nodeId).all()

        totals: Dict[str, Decimal] = {}
        for occurredAt, amount in rows:
            key = _month_key(occurredAt)
            if months is not None and key not in months:
                continue
            totals[key] = totals.get(key, Decimal("0")) + Decimal(str(amount))

        return totals

    def checkStepQualification(
            self,
            nodeId: str,
            plan: PlanConfig,
            asOf: Optional[datetime] = None
    ) -> Optional[int]:
        """
        Find the highest step the node qualifies for above its current one.

        A step qualifies when its salesQuota was met in each of the last
        monthsToQualify calendar months (the month of asOf included).

        Returns:
            Step number, or None if no higher step qualifies
        """
        asOf = asOf or timeMachine.now
        current = self.currentStep(nodeId)

        longest = max((s.monthsToQualify for s in plan.stair_steps), default=0)
        if longest == 0:
            return None

        window = _previous_months(asOf, longest)
        sales = self.monthlySales(nodeId, window)

        for step in reversed(plan.stair_steps):
            if step.number <= current:
                break

            required = window[:step.monthsToQualify]
            if all(sales.get(month, Decimal("0")) >= step.salesQuota for month in required):
                logger.info(
                    f"Node {nodeId} qualified for step {step.number} ({step.name}): "
                    f"quota {step.salesQuota} met in {', '.join(required)}"
                )
                return step.number

            logger.debug(
                f"Node {nodeId} not qualified for step {step.number}: "
                f"sales {[str(sales.get(m, 0)) for m in required]} < {step.salesQuota}"
            )

        return None
