# models/sale_event.py
"""
ProcessedSaleEvent model - idempotency marker for consumed sale events.
Also serves as the sales history for stair-step qualification.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from models.base import Base, _get_current_time


class ProcessedSaleEvent(Base):
    __tablename__ = 'processed_sale_events'

    eventID = Column(String(64), primary_key=True)
    sourceID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, index=True)
    amount = Column(DECIMAL(18, 2), nullable=False)
    occurredAt = Column(DateTime, nullable=False, index=True)
    processedAt = Column(DateTime, default=_get_current_time)

    # Summary of what the engine emitted
    entriesCount = Column(Integer, default=0)
    totalCommission = Column(DECIMAL(18, 2), default=Decimal("0"))
    cyclesMatched = Column(Integer, default=0)

    def __repr__(self):
        return f"<ProcessedSaleEvent(eventID={self.eventID}, source={self.sourceID}, amount={self.amount})>"
