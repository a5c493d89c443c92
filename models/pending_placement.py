# models/pending_placement.py
"""
PendingPlacement model - 3rd+ referral waiting for the sponsor to choose a leg.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from models.base import Base, AuditMixin


class PendingPlacement(Base, AuditMixin):
    __tablename__ = 'pending_placements'

    pendingID = Column(Integer, primary_key=True, autoincrement=True)
    nodeID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, unique=True)
    sponsorID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, index=True)

    status = Column(String(20), default="pending", index=True)  # pending, placed
    chosenLeg = Column(String(8), nullable=True)
    placedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<PendingPlacement(nodeID={self.nodeID}, sponsor={self.sponsorID}, status={self.status})>"
