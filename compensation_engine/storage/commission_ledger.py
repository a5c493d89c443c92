# compensation_engine/storage/commission_ledger.py
"""
Commission ledger - append-only sink for commission entries.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.commission_entry import CommissionEntry
from compensation_engine.config.plan import CENT, PlanType
from compensation_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class CommissionLedger:
    """Appends and reads commission entries. Never updates or deletes."""

    def __init__(self, session: Session):
        self.session = session

    def append(
            self,
            recipientId: str,
            sourceId: str,
            planType: PlanType,
            amount: Decimal,
            basisAmount: Decimal,
            level: Optional[int] = None,
            rate: Optional[Decimal] = None,
            withheldAmount: Decimal = Decimal("0"),
            eventId: Optional[str] = None,
            occurredAt: Optional[datetime] = None,
            notes: Optional[str] = None
    ) -> CommissionEntry:
        """
        Append one commission entry.

        Args:
            recipientId: Node receiving the commission
            sourceId: Node whose sale produced it
            planType: binary, stairstep, leadership or unilevel
            amount: Computed commission amount
            basisAmount: Amount the commission was computed from
            level: Upline level or compressed level
            rate: Fraction applied to basisAmount (None for flat payouts)
            withheldAmount: Part kept back for deferred payment
            eventId: Sale event ID
            occurredAt: Sale time, decides the ledger day
            notes: Free text

        Returns:
            Flushed CommissionEntry
        """
        when = occurredAt or timeMachine.now
        amount = Decimal(amount).quantize(CENT)
        withheldAmount = Decimal(withheldAmount).quantize(CENT)

        entry = CommissionEntry(
            recipientID=recipientId,
            sourceID=sourceId,
            eventID=eventId,
            planType=planType.value,
            level=level,
            basisAmount=Decimal(basisAmount).quantize(CENT),
            rate=rate,
            amount=amount,
            withheldAmount=withheldAmount,
            payableAmount=amount - withheldAmount,
            ledgerDay=when.date(),
            status="pending",
            notes=notes,
            createdAt=when,
        )

        self.session.add(entry)
        self.session.flush()

        logger.debug(
            f"Ledger +{planType.value}: {recipientId} <- {sourceId} "
            f"amount={amount} withheld={withheldAmount} level={level}"
        )
        return entry

    def countCyclesOnDay(self, recipientId: str, day: date) -> int:
        """Binary cycles already paid to a node on a calendar day (one entry per cycle)."""
        return self.session.query(func.count(CommissionEntry.entryID)).filter(
            CommissionEntry.recipientID == recipientId,
            CommissionEntry.planType == PlanType.BINARY.value,
            CommissionEntry.ledgerDay == day,
        ).scalar() or 0

    def entriesForEvent(self, eventId: str) -> List[CommissionEntry]:
        return self.session.query(CommissionEntry).filter(
            CommissionEntry.eventID == eventId
        ).order_by(CommissionEntry.entryID).all()

    def entriesForRecipient(
            self,
            recipientId: str,
            planType: Optional[PlanType] = None
    ) -> List[CommissionEntry]:
        query = self.session.query(CommissionEntry).filter(
            CommissionEntry.recipientID == recipientId
        )
        if planType is not None:
            query = query.filter(CommissionEntry.planType == planType.value)
        return query.order_by(CommissionEntry.entryID).all()

    def totalForRecipient(self, recipientId: str, planType: Optional[PlanType] = None) -> Decimal:
        """Sum of computed amounts for a recipient."""
        query = self.session.query(
            func.coalesce(func.sum(CommissionEntry.amount), 0)
        ).filter(CommissionEntry.recipientID == recipientId)
        if planType is not None:
            query = query.filter(CommissionEntry.planType == planType.value)
        return Decimal(str(query.scalar()))
