# models/rank_history.py
"""
RankHistory model - audit trail of stair-step changes.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from models.base import Base, _get_current_time


class RankHistory(Base):
    __tablename__ = 'rank_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    nodeID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, index=True)

    previousStep = Column(Integer, nullable=False)
    newStep = Column(Integer, nullable=False)
    method = Column(String(20), nullable=False)  # natural, assigned
    createdAt = Column(DateTime, default=_get_current_time)

    def __repr__(self):
        return f"<RankHistory(node={self.nodeID}, {self.previousStep}->{self.newStep}, {self.method})>"
