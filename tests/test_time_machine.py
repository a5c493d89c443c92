# tests/test_time_machine.py
"""
Tests for the engine clock.
"""
from datetime import datetime, timezone

import pytest

from compensation_engine.utils.time_machine import TimeMachine, timeMachine

FIXED_NOW = datetime(2026, 3, 15, 12)


class TestTimeMachine:

    def test_singleton(self):
        assert TimeMachine() is timeMachine

    def test_pinned_by_fixture(self):
        assert timeMachine.now == FIXED_NOW

    def test_advance(self):
        timeMachine.advanceTime(days=1, hours=2)

        assert timeMachine.now == datetime(2026, 3, 16, 14)

    def test_real_time_after_reset(self):
        timeMachine.resetToRealTime()

        assert timeMachine.now.tzinfo is timezone.utc

    def test_advance_requires_pinned_clock(self):
        timeMachine.resetToRealTime()

        with pytest.raises(ValueError):
            timeMachine.advanceTime(days=1)
