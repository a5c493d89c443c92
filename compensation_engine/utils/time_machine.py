# compensation_engine/utils/time_machine.py
"""
Engine clock. Default sale timestamps, ledger days and audit columns all
read timeMachine.now, so tests and replays can pin it.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class TimeMachine:
    """Process-wide clock, real UTC time unless pinned."""

    _instance = None
    _pinned: Optional[datetime] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def now(self) -> datetime:
        if self._pinned is not None:
            return self._pinned
        return datetime.now(timezone.utc)

    def setTime(self, newTime: datetime, source: str = "manual"):
        """Pin the clock (e.g. to replay a day of sales)."""
        self._pinned = newTime
        logger.info(f"Engine clock pinned to {newTime} ({source})")

    def advanceTime(self, days: int = 0, hours: int = 0):
        """Move a pinned clock forward."""
        if self._pinned is None:
            raise ValueError("Engine clock is not pinned, nothing to advance")

        self._pinned += timedelta(days=days, hours=hours)
        logger.debug(f"Engine clock advanced to {self._pinned}")

    def resetToRealTime(self):
        self._pinned = None
        logger.info("Engine clock back on real time")


timeMachine = TimeMachine()
