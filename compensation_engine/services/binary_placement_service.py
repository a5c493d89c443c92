# compensation_engine/services/binary_placement_service.py
"""
Binary plan service - placement, volume propagation and cycle matching.

Placement rule:
- 1st referral goes to the sponsor's left leg, 2nd to the right leg
- 3rd+ referral needs the sponsor to choose a leg; the node lands on the
  next open slot of that leg's subtree (breadth-first, left slot first)

Cycle rule: every cycleAmount matched on BOTH legs pays cycleCommission,
up to maxCyclesPerDay per node per calendar day.
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union
from sqlalchemy.orm import Session
import logging

from models.affiliate_node import AffiliateNode
from models.commission_entry import CommissionEntry
from models.pending_placement import PendingPlacement
from compensation_engine.config.plan import AccountStatus, Leg, PlanConfig, PlanType
from compensation_engine.errors import (
    AlreadyPlacedError,
    InvalidSaleError,
    PlacementError,
    PropagationError,
    SpilloverRequiredError,
)
from compensation_engine.storage.commission_ledger import CommissionLedger
from compensation_engine.storage.graph_store import GraphStore
from compensation_engine.utils.chain_walker import ChainWalker, DEFAULT_MAX_DEPTH
from compensation_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass
class PlacementResult:
    """Where a node ended up (or that it is waiting for a leg)."""
    nodeId: str
    sponsorId: str
    parentId: Optional[str] = None
    leg: Optional[Leg] = None
    spillover: bool = False
    pendingId: Optional[int] = None

    @property
    def isPending(self) -> bool:
        return self.pendingId is not None and self.parentId is None


@dataclass
class CycleMatchResult:
    nodeId: str
    cycles: int = 0
    capped: bool = False
    entries: List[CommissionEntry] = field(default_factory=list)
    leftVolume: Decimal = Decimal("0")
    rightVolume: Decimal = Decimal("0")

    @property
    def totalAmount(self) -> Decimal:
        return sum((e.amount for e in self.entries), Decimal("0"))


def _as_leg(leg: Union[Leg, str, None]) -> Optional[Leg]:
    if leg is None or isinstance(leg, Leg):
        return leg
    try:
        return Leg(str(leg).lower())
    except ValueError:
        raise PlacementError(f"Unknown leg '{leg}', expected 'left' or 'right'")


class BinaryPlacementService:
    """Service for the binary placement / cycle-matching plan."""

    def __init__(self, session: Session):
        self.session = session
        self.graph = GraphStore(session)
        self.ledger = CommissionLedger(session)

    # ============================================================
    # PLACEMENT
    # ============================================================

    def createRoot(self, nodeId: str, currentStep: int = 0) -> AffiliateNode:
        """Create a node without sponsor and binary parent."""
        node = self.graph.createNode(nodeId, sponsorId=None, currentStep=currentStep)
        logger.info(f"Created root node {nodeId}")
        return node

    def placeNode(
            self,
            newNodeId: str,
            sponsorId: str,
            preferredLeg: Union[Leg, str, None] = None
    ) -> PlacementResult:
        """
        Place a referral in the sponsor's binary tree.

        Args:
            newNodeId: Node to place (created when missing)
            sponsorId: Referring node
            preferredLeg: Leg chosen by the sponsor, used when both legs are full

        Returns:
            PlacementResult

        Raises:
            SpilloverRequiredError: Both legs full and no leg chosen
            AlreadyPlacedError: Node already has a binary parent
            PlacementError: Self-sponsoring or sponsor mismatch
            NodeNotFoundError: Sponsor does not exist
        """
        preferredLeg = _as_leg(preferredLeg)

        if newNodeId == sponsorId:
            raise PlacementError(f"Node {newNodeId} cannot sponsor itself")

        sponsor = self.graph.requireNode(sponsorId, lock=True)
        node = self._getOrCreateReferral(newNodeId, sponsorId)

        # Decide the target slot
        if sponsor.leftChildID is None:
            parentId, leg, spillover = sponsor.nodeID, Leg.LEFT, False
        elif sponsor.rightChildID is None:
            parentId, leg, spillover = sponsor.nodeID, Leg.RIGHT, False
        elif preferredLeg is None:
            raise SpilloverRequiredError(sponsorId)
        else:
            parentId, leg = self._findOpenSlot(sponsor, preferredLeg)
            spillover = True

        self.graph.setChild(parentId, leg, node.nodeID)

        logger.info(
            f"Placed {newNodeId} under {parentId} ({leg.value})"
            f"{' via spillover in ' + preferredLeg.value + ' leg of ' + sponsorId if spillover else ''}"
        )

        return PlacementResult(
            nodeId=newNodeId,
            sponsorId=sponsorId,
            parentId=parentId,
            leg=leg,
            spillover=spillover,
        )

    def _getOrCreateReferral(self, nodeId: str, sponsorId: str) -> AffiliateNode:
        node = self.graph.getNode(nodeId, lock=True)
        if node is None:
            return self.graph.createNode(nodeId, sponsorId=sponsorId)

        if node.isPlaced:
            raise AlreadyPlacedError(f"Node {nodeId} is already placed under {node.parentID}")
        if node.sponsorID != sponsorId:
            raise PlacementError(
                f"Node {nodeId} is sponsored by {node.sponsorID}, not {sponsorId}"
            )
        return node

    def _findOpenSlot(self, sponsor: AffiliateNode, leg: Leg):
        """
        Breadth-first search of the open slot in the sponsor's chosen leg.

        Returns:
            (parentId, leg) of the first node with a free slot
        """
        queue = deque([sponsor.childOnLeg(leg.value)])
        seen = set()

        while queue:
            currentId = queue.popleft()
            if currentId in seen:
                logger.error(f"Cycle detected in binary subtree at node {currentId}")
                continue
            seen.add(currentId)

            current = self.graph.requireNode(currentId)
            if current.leftChildID is None:
                return current.nodeID, Leg.LEFT
            if current.rightChildID is None:
                return current.nodeID, Leg.RIGHT

            queue.append(current.leftChildID)
            queue.append(current.rightChildID)

        # Only reachable on a corrupted tree
        raise PlacementError(f"No open slot found in {leg.value} leg of {sponsor.nodeID}")

    def requestPlacement(self, newNodeId: str, sponsorId: str) -> PlacementResult:
        """
        Place a referral if a sponsor leg is free, otherwise queue it.

        Returns:
            PlacementResult; isPending is True when the node waits for a leg choice
        """
        try:
            return self.placeNode(newNodeId, sponsorId)
        except SpilloverRequiredError:
            pass

        existing = self.session.query(PendingPlacement).filter_by(nodeID=newNodeId).first()
        if existing:
            logger.info(f"Node {newNodeId} already waits for placement ({existing.status})")
            return PlacementResult(nodeId=newNodeId, sponsorId=sponsorId, pendingId=existing.pendingID)

        pending = PendingPlacement(nodeID=newNodeId, sponsorID=sponsorId, status="pending")
        self.session.add(pending)
        self.session.flush()

        logger.info(f"Queued {newNodeId} for spillover placement by sponsor {sponsorId}")
        return PlacementResult(nodeId=newNodeId, sponsorId=sponsorId, pendingId=pending.pendingID)

    def getPendingPlacements(self, sponsorId: str) -> List[PendingPlacement]:
        return self.session.query(PendingPlacement).filter_by(
            sponsorID=sponsorId,
            status="pending"
        ).order_by(PendingPlacement.pendingID).all()

    def resolvePendingPlacement(self, pendingId: int, leg: Union[Leg, str]) -> PlacementResult:
        """
        Place a queued referral in the leg chosen by its sponsor.

        Raises:
            PlacementError: Unknown or already resolved pending placement
        """
        leg = _as_leg(leg)
        if leg is None:
            raise PlacementError("A leg is required to resolve a pending placement")

        pending = self.session.query(PendingPlacement).filter_by(pendingID=pendingId).first()
        if not pending:
            raise PlacementError(f"Pending placement {pendingId} not found")
        if pending.status != "pending":
            raise PlacementError(f"Pending placement {pendingId} is already {pending.status}")

        result = self.placeNode(pending.nodeID, pending.sponsorID, preferredLeg=leg)

        pending.status = "placed"
        pending.chosenLeg = leg.value
        pending.placedAt = timeMachine.now
        result.pendingId = pending.pendingID
        self.session.flush()

        return result

    # ============================================================
    # VOLUME
    # ============================================================

    def recordSale(
            self,
            nodeId: str,
            amount: Decimal,
            maxDepth: int = DEFAULT_MAX_DEPTH
    ) -> List[AffiliateNode]:
        """
        Add sale volume to every binary ancestor of the selling node.

        Each ancestor gets the amount on the leg the sale came up through.
        Rows are locked for the caller's transaction.

        Returns:
            Touched ancestors, nearest first

        Raises:
            PropagationError: The walk stopped before the binary root (depth
                ceiling, cycle, dangling parent); the caller must roll back
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise InvalidSaleError(f"Sale amount must be positive, got {amount}")

        node = self.graph.requireNode(nodeId)
        walker = ChainWalker(self.session, lock=True)
        touched = []

        def add_volume(ancestor: AffiliateNode, leg: Leg, level: int) -> bool:
            if leg is Leg.LEFT:
                self.graph.updateVolumes(ancestor.nodeID, leftDelta=amount, node=ancestor)
            else:
                self.graph.updateVolumes(ancestor.nodeID, rightDelta=amount, node=ancestor)
            touched.append(ancestor)
            return True

        walker.walk_placement_chain(node, add_volume, maxDepth)

        last = touched[-1] if touched else node
        if last.parentID is not None:
            raise PropagationError(
                f"Sale volume from {nodeId} stopped at {last.nodeID} "
                f"({len(touched)} ancestors, max depth {maxDepth}) before the binary root"
            )

        self.session.flush()

        logger.debug(f"Sale volume {amount} from {nodeId} added to {len(touched)} ancestors")
        return touched

    # ============================================================
    # CYCLES
    # ============================================================

    def matchCycles(
            self,
            nodeId: str,
            plan: PlanConfig,
            occurredAt: Optional[datetime] = None,
            sourceNodeId: Optional[str] = None,
            eventId: Optional[str] = None
    ) -> CycleMatchResult:
        """
        Convert matched leg volume into binary commissions.

        Args:
            nodeId: Node whose legs are matched
            plan: Plan configuration
            occurredAt: Sale time, decides the day for the daily cap
            sourceNodeId: Seller recorded on the entries (defaults to nodeId)
            eventId: Sale event recorded on the entries

        Returns:
            CycleMatchResult
        """
        occurredAt = occurredAt or timeMachine.now
        node = self.graph.requireNode(nodeId, lock=True)

        weakerLeg = min(node.leftVolume, node.rightVolume)
        available = int(weakerLeg // plan.cycle_amount)

        result = CycleMatchResult(nodeId=nodeId)

        if available > 0:
            alreadyToday = self.ledger.countCyclesOnDay(nodeId, occurredAt.date())
            remaining = max(0, plan.max_cycles_per_day - alreadyToday)
            cycles = min(available, remaining)
            result.capped = cycles < available

            if result.capped:
                logger.info(
                    f"Node {nodeId}: {available} cycles available, daily cap leaves {remaining} "
                    f"({alreadyToday}/{plan.max_cycles_per_day} used on {occurredAt.date()})"
                )

            for _ in range(cycles):
                self.graph.updateVolumes(
                    nodeId,
                    leftDelta=-plan.cycle_amount,
                    rightDelta=-plan.cycle_amount,
                    node=node
                )
                self.graph.incrementCycles(nodeId, node=node)

                withheld = self._withholdForDeferred(node, plan.cycle_commission)
                entry = self.ledger.append(
                    recipientId=nodeId,
                    sourceId=sourceNodeId or nodeId,
                    planType=PlanType.BINARY,
                    amount=plan.cycle_commission,
                    basisAmount=plan.cycle_amount,
                    withheldAmount=withheld,
                    eventId=eventId,
                    occurredAt=occurredAt,
                    notes=f"cycle {node.totalCyclesMatched}",
                )
                result.entries.append(entry)

            result.cycles = cycles

        result.leftVolume = node.leftVolume
        result.rightVolume = node.rightVolume

        if result.cycles:
            logger.info(
                f"Node {nodeId} matched {result.cycles} cycles "
                f"(L={node.leftVolume}, R={node.rightVolume}, total={node.totalCyclesMatched})"
            )
        return result

    # ============================================================
    # DEFERRED PAYMENT
    # ============================================================

    def _withholdForDeferred(self, node: AffiliateNode, amount: Decimal) -> Decimal:
        """Part of a payout kept back to recover the node's package cost."""
        if node.accountStatus != AccountStatus.DEFERRED.value:
            return Decimal("0")

        balance = node.deferredBalance or Decimal("0")
        withheld = min(amount, balance)
        node.deferredBalance = balance - withheld

        if node.deferredBalance <= 0:
            node.deferredBalance = Decimal("0")
            node.accountStatus = AccountStatus.ACTIVE.value
            logger.info(f"Node {node.nodeID} recovered deferred balance, account active")

        return withheld

    def startDeferredPayment(
            self,
            nodeId: str,
            plan: PlanConfig,
            amount: Optional[Decimal] = None
    ) -> AffiliateNode:
        """
        Put a node on deferred payment: binary payouts are withheld
        until `amount` (default plan.deferred_recovery_amount) is recovered.
        """
        node = self.graph.requireNode(nodeId, lock=True)
        balance = Decimal(str(amount)) if amount is not None else plan.deferred_recovery_amount

        if balance <= 0:
            logger.warning(f"Deferred payment for {nodeId} not started: nothing to recover")
            return node

        node.accountStatus = AccountStatus.DEFERRED.value
        node.deferredBalance = balance
        self.session.flush()

        logger.info(f"Node {nodeId} on deferred payment, recovering {balance}")
        return node

    def activateByAdmin(self, nodeId: str) -> AffiliateNode:
        """Admin override: pay in full from now on, outstanding balance is kept for reference."""
        node = self.graph.requireNode(nodeId, lock=True)
        node.accountStatus = AccountStatus.ADMIN_ACTIVATED.value
        self.session.flush()

        logger.info(f"Node {nodeId} activated by admin (deferred balance {node.deferredBalance})")
        return node
