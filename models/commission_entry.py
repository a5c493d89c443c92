# models/commission_entry.py
"""
CommissionEntry model - append-only ledger of everything the engine pays.
Downstream wallet/balance services read it; the engine never updates rows.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, Date, DateTime, Text, ForeignKey
from models.base import Base, _get_current_time


class CommissionEntry(Base):
    __tablename__ = 'commission_entries'

    # Primary key
    entryID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    recipientID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, index=True)
    sourceID = Column(String(64), ForeignKey('affiliate_nodes.nodeID'), nullable=False, index=True)
    eventID = Column(String(64), nullable=True, index=True)  # SaleEvent that produced the entry

    # Plan details
    planType = Column(String(20), nullable=False, index=True)  # binary, stairstep, leadership, unilevel
    level = Column(Integer, nullable=True)  # upline level or compressed level

    # Calculation
    basisAmount = Column(DECIMAL(18, 2), nullable=False)
    rate = Column(DECIMAL(9, 6), nullable=True)  # 0.02 for 2%, null for flat cycle payouts
    amount = Column(DECIMAL(18, 2), nullable=False)
    withheldAmount = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))  # deferred payment
    payableAmount = Column(DECIMAL(18, 2), nullable=False)

    # Calendar day of the sale - daily cycle cap is counted per ledgerDay
    ledgerDay = Column(Date, nullable=False, index=True)

    # Status
    status = Column(String(20), default="pending")  # pending, paid, cancelled
    notes = Column(Text, nullable=True)

    createdAt = Column(DateTime, default=_get_current_time)

    def __repr__(self):
        return (
            f"<CommissionEntry(entryID={self.entryID}, plan={self.planType}, "
            f"recipient={self.recipientID}, amount={self.amount})>"
        )
