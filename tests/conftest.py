# tests/conftest.py
"""
Pytest configuration and shared fixtures for compensation engine tests.

Every test gets a fresh in-memory SQLite database and a pinned engine clock.

Run:
    pytest tests -v
"""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config, DEFAULT_STAIR_STEP_TABLE
from models import Base, AffiliateNode
from compensation_engine.config.plan import PlanConfig, parse_stair_steps
from compensation_engine.services.binary_placement_service import BinaryPlacementService
from compensation_engine.storage.graph_store import GraphStore
from compensation_engine.utils.time_machine import timeMachine

# =============================================================================
# CONSTANTS
# =============================================================================

FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)
MANAGER_STEP = 5


# =============================================================================
# CONFIG / CLOCK
# =============================================================================

@pytest.fixture(autouse=True)
def pinned_clock():
    """Freeze engine time for every test."""
    timeMachine.setTime(FIXED_NOW, source="pytest")
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture
def clean_config():
    """Config emptied before and after the test."""
    Config.reset()
    yield Config
    Config.reset()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """In-memory database shared by all connections of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


# =============================================================================
# PLAN FIXTURE
# =============================================================================

@pytest.fixture
def plan():
    """Default plan: 2000/200 cycles, cap 10/day, 2% leadership, 5 steps (21% manager)."""
    return PlanConfig(
        cycle_amount=Decimal("2000"),
        cycle_commission=Decimal("200"),
        max_cycles_per_day=10,
        leadership_bonus_percent=Decimal("0.02"),
        stair_steps=parse_stair_steps(DEFAULT_STAIR_STEP_TABLE),
    )


# =============================================================================
# TREE BUILDER
# =============================================================================

class TreeBuilder:
    """Shortcuts for building referral structures in tests."""

    def __init__(self, session):
        self.session = session
        self.graph = GraphStore(session)
        self.binary = BinaryPlacementService(session)

    def root(self, nodeId, step=0) -> AffiliateNode:
        return self.graph.createNode(nodeId, currentStep=step)

    def sponsor(self, nodeId, sponsorId, step=0) -> AffiliateNode:
        """Sponsor-tree only node (no binary placement)."""
        return self.graph.createNode(nodeId, sponsorId=sponsorId, currentStep=step)

    def place(self, nodeId, sponsorId, step=0, leg=None) -> AffiliateNode:
        """Sponsored and placed in the binary tree."""
        self.binary.placeNode(nodeId, sponsorId, preferredLeg=leg)
        node = self.graph.requireNode(nodeId)
        node.currentStep = step
        self.session.flush()
        return node

    def chain(self, ids, sponsorId, step=0):
        """Sponsor chain ids[0] -> ids[1] -> ... hanging below sponsorId."""
        parent = sponsorId
        for nodeId in ids:
            self.sponsor(nodeId, parent, step=step)
            parent = nodeId
        return parent

    def set_volumes(self, nodeId, left, right):
        node = self.graph.requireNode(nodeId)
        node.leftVolume = Decimal(str(left))
        node.rightVolume = Decimal(str(right))
        self.session.flush()
        return node

    def node(self, nodeId) -> AffiliateNode:
        return self.graph.requireNode(nodeId)


@pytest.fixture
def tree(session):
    return TreeBuilder(session)
