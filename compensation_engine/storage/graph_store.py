# compensation_engine/storage/graph_store.py
"""
Graph store - read/write access to affiliate nodes and their tree pointers.

Every write the compensation engine makes to the referral graph goes
through here, inside the caller's session/transaction.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from models.affiliate_node import AffiliateNode
from compensation_engine.config.plan import AccountStatus, Leg
from compensation_engine.errors import (
    LegOccupiedError,
    NegativeVolumeError,
    NodeNotFoundError,
    PlacementError,
)

logger = logging.getLogger(__name__)


@dataclass
class ReferralSnapshot:
    """
    Point-in-time copy of the sponsor tree and node steps.

    Compression runs on this instead of the live tables so that a
    placement committed mid-traversal cannot show up half-applied.
    """
    children: Dict[str, List[str]] = field(default_factory=dict)
    sponsors: Dict[str, Optional[str]] = field(default_factory=dict)
    steps: Dict[str, int] = field(default_factory=dict)

    def children_of(self, nodeId: str) -> List[str]:
        return self.children.get(nodeId, [])

    def sponsor_of(self, nodeId: str) -> Optional[str]:
        return self.sponsors.get(nodeId)

    def step_of(self, nodeId: str) -> int:
        # Missing rank data counts as the lowest step
        return self.steps.get(nodeId) or 0

    def __contains__(self, nodeId: str) -> bool:
        return nodeId in self.sponsors

    def __len__(self) -> int:
        return len(self.sponsors)


class GraphStore:
    """Storage operations on the referral graph."""

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # READS
    # ============================================================

    def getNode(self, nodeId: Optional[str], lock: bool = False) -> Optional[AffiliateNode]:
        """
        Get node by ID.

        Args:
            nodeId: Node ID
            lock: Take a row lock (SELECT ... FOR UPDATE) where the database supports it

        Returns:
            AffiliateNode or None
        """
        if nodeId is None:
            return None

        query = self.session.query(AffiliateNode).filter(AffiliateNode.nodeID == nodeId)
        if lock:
            query = query.with_for_update()
        return query.first()

    def requireNode(self, nodeId: str, lock: bool = False) -> AffiliateNode:
        """Get node or raise NodeNotFoundError."""
        node = self.getNode(nodeId, lock=lock)
        if node is None:
            raise NodeNotFoundError(nodeId)
        return node

    def getChildren(self, nodeId: str) -> List[AffiliateNode]:
        """
        Get direct referrals (sponsor tree children) in join order.

        Each direct referral starts one "line" for compression.
        """
        return self.session.query(AffiliateNode).filter(
            AffiliateNode.sponsorID == nodeId
        ).order_by(AffiliateNode.createdAt, AffiliateNode.nodeID).all()

    def getBinaryChildren(self, nodeId: str) -> Tuple[Optional[AffiliateNode], Optional[AffiliateNode]]:
        """Get (left, right) binary children."""
        node = self.requireNode(nodeId)
        return self.getNode(node.leftChildID), self.getNode(node.rightChildID)

    def snapshotReferralTree(self) -> ReferralSnapshot:
        """
        Read sponsor pointers and steps of all nodes in one query.

        Returns:
            ReferralSnapshot with children lists in join order
        """
        rows = self.session.query(
            AffiliateNode.nodeID,
            AffiliateNode.sponsorID,
            AffiliateNode.currentStep,
        ).order_by(AffiliateNode.createdAt, AffiliateNode.nodeID).all()

        snapshot = ReferralSnapshot()
        for nodeId, sponsorId, step in rows:
            snapshot.sponsors[nodeId] = sponsorId
            snapshot.steps[nodeId] = step or 0
            if sponsorId is not None:
                snapshot.children.setdefault(sponsorId, []).append(nodeId)

        logger.debug(f"Referral snapshot taken: {len(snapshot)} nodes")
        return snapshot

    # ============================================================
    # WRITES
    # ============================================================

    def createNode(
            self,
            nodeId: str,
            sponsorId: Optional[str] = None,
            currentStep: int = 0,
            accountStatus: AccountStatus = AccountStatus.ACTIVE,
            deferredBalance: Decimal = Decimal("0")
    ) -> AffiliateNode:
        """
        Register a new affiliate node (not yet placed in the binary tree).

        Raises:
            PlacementError: If the node already exists
            NodeNotFoundError: If the sponsor does not exist
        """
        if self.getNode(nodeId) is not None:
            raise PlacementError(f"Affiliate node {nodeId} already exists")

        if sponsorId is not None:
            if sponsorId == nodeId:
                raise PlacementError(f"Node {nodeId} cannot sponsor itself")
            self.requireNode(sponsorId)

        node = AffiliateNode(
            nodeID=nodeId,
            sponsorID=sponsorId,
            leftVolume=Decimal("0"),
            rightVolume=Decimal("0"),
            totalCyclesMatched=0,
            currentStep=currentStep,
            accountStatus=accountStatus.value,
            deferredBalance=deferredBalance,
        )
        self.session.add(node)
        self.session.flush()

        logger.debug(f"Created node {nodeId} (sponsor={sponsorId}, step={currentStep})")
        return node

    def setChild(self, nodeId: str, leg: Leg, childId: str) -> AffiliateNode:
        """
        Attach child on a leg. Leg pointers are write-once.

        Raises:
            LegOccupiedError: If the leg already holds a child
        """
        node = self.requireNode(nodeId, lock=True)
        child = self.requireNode(childId, lock=True)

        occupant = node.childOnLeg(leg.value)
        if occupant is not None:
            raise LegOccupiedError(nodeId, leg.value, occupant)

        if child.parentID is not None:
            raise PlacementError(f"Node {childId} already has binary parent {child.parentID}")

        if leg is Leg.LEFT:
            node.leftChildID = childId
        else:
            node.rightChildID = childId

        child.parentID = nodeId
        child.placementLeg = leg.value
        self.session.flush()

        logger.debug(f"Placed {childId} on {leg.value} leg of {nodeId}")
        return node

    def updateVolumes(
            self,
            nodeId: str,
            leftDelta: Decimal = Decimal("0"),
            rightDelta: Decimal = Decimal("0"),
            node: Optional[AffiliateNode] = None
    ) -> AffiliateNode:
        """
        Add deltas to leg volumes.

        Raises:
            NegativeVolumeError: If a leg would drop below zero
        """
        if node is None:
            node = self.requireNode(nodeId, lock=True)

        newLeft = (node.leftVolume or Decimal("0")) + leftDelta
        newRight = (node.rightVolume or Decimal("0")) + rightDelta

        if newLeft < 0 or newRight < 0:
            raise NegativeVolumeError(
                f"Volume update for {nodeId} would go negative: L={newLeft}, R={newRight}"
            )

        node.leftVolume = newLeft
        node.rightVolume = newRight
        return node

    def incrementCycles(self, nodeId: str, count: int = 1, node: Optional[AffiliateNode] = None) -> AffiliateNode:
        """Increase totalCyclesMatched (never decreases)."""
        if count < 0:
            raise ValueError("Cycle counter cannot decrease")

        if node is None:
            node = self.requireNode(nodeId, lock=True)

        node.totalCyclesMatched = (node.totalCyclesMatched or 0) + count
        return node
