# compensation_engine/events/sale_event.py
"""
SaleEvent - the immutable trigger the engine consumes exactly once.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from compensation_engine.errors import InvalidSaleError
from compensation_engine.utils.time_machine import timeMachine


def _now() -> datetime:
    return timeMachine.now


@dataclass(frozen=True)
class SaleEvent:
    eventId: str
    sourceNodeId: str
    amount: Decimal
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self):
        if not self.eventId:
            raise InvalidSaleError("Sale event without eventId")
        if not self.sourceNodeId:
            raise InvalidSaleError(f"Sale event {self.eventId} without sourceNodeId")

        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise InvalidSaleError(
                    f"Sale event {self.eventId}: malformed amount {self.amount!r}"
                ) from e

        if not self.amount.is_finite():
            raise InvalidSaleError(f"Sale event {self.eventId}: amount must be finite")

        if isinstance(self.timestamp, str):
            try:
                object.__setattr__(self, "timestamp", datetime.fromisoformat(self.timestamp))
            except ValueError as e:
                raise InvalidSaleError(
                    f"Sale event {self.eventId}: malformed timestamp {self.timestamp!r}"
                ) from e

        if not isinstance(self.timestamp, datetime):
            raise InvalidSaleError(
                f"Sale event {self.eventId}: timestamp must be a datetime, got {self.timestamp!r}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SaleEvent":
        """Build from an event bus payload."""
        try:
            eventId = data["eventId"]
            sourceNodeId = data["sourceNodeId"]
            amount = data["amount"]
        except KeyError as e:
            raise InvalidSaleError(f"Sale payload missing {e.args[0]}") from e

        timestamp = data.get("timestamp")
        if timestamp is None:
            return cls(eventId=eventId, sourceNodeId=sourceNodeId, amount=amount)
        return cls(eventId=eventId, sourceNodeId=sourceNodeId, amount=amount, timestamp=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.eventId,
            "sourceNodeId": self.sourceNodeId,
            "amount": str(self.amount),
            "timestamp": self.timestamp.isoformat(),
        }
