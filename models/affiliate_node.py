# models/affiliate_node.py
"""
AffiliateNode model - one member of the referral network.

Holds both trees the compensation plans work on:
- sponsor tree (sponsorID) - who referred whom, used by stair-step and leadership
- binary tree (parentID/leftChildID/rightChildID) - placement for cycle matching
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, CheckConstraint
from models.base import Base, AuditMixin


class AffiliateNode(Base, AuditMixin):
    __tablename__ = 'affiliate_nodes'

    # Primary identification
    nodeID = Column(String(64), primary_key=True)
    sponsorID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=True, index=True)

    # Binary tree - child pointers are written once, never retargeted
    parentID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=True, index=True)
    placementLeg = Column(String(8), nullable=True)  # left, right (null for roots)
    leftChildID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=True)
    rightChildID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=True)

    # Binary volume accumulators
    leftVolume = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    rightVolume = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    totalCyclesMatched = Column(Integer, nullable=False, default=0)

    # Stair-step rank (0 = no step)
    currentStep = Column(Integer, nullable=False, default=0, index=True)

    # Deferred payment: active, deferred, admin_activated
    accountStatus = Column(String(20), nullable=False, default="active")
    deferredBalance = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Optimistic lock, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False)

    # Note: createdAt, updatedAt - from AuditMixin

    __table_args__ = (
        CheckConstraint('"leftVolume" >= 0', name='ck_affiliate_nodes_left_volume'),
        CheckConstraint('"rightVolume" >= 0', name='ck_affiliate_nodes_right_volume'),
        CheckConstraint('"totalCyclesMatched" >= 0', name='ck_affiliate_nodes_cycles'),
        CheckConstraint('"deferredBalance" >= 0', name='ck_affiliate_nodes_deferred_balance'),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def isRoot(self) -> bool:
        return self.sponsorID is None

    @property
    def isPlaced(self) -> bool:
        return self.parentID is not None

    def childOnLeg(self, leg: str):
        """Child ID on the given leg ('left' or 'right')."""
        return self.leftChildID if leg == "left" else self.rightChildID

    def __repr__(self):
        return (
            f"<AffiliateNode(nodeID={self.nodeID}, step={self.currentStep}, "
            f"L={self.leftVolume}, R={self.rightVolume})>"
        )
