# compensation_engine/__init__.py
"""
Affiliate compensation engine - binary, stair-step, unilevel and leadership plans.
"""

# Services
from compensation_engine.services.binary_placement_service import BinaryPlacementService
from compensation_engine.services.compression_service import CompressionService
from compensation_engine.services.leadership_bonus_service import LeadershipBonusService
from compensation_engine.services.rank_service import RankService
from compensation_engine.services.stair_step_service import StairStepService
from compensation_engine.services.unilevel_service import UnilevelService
from compensation_engine.services.compensation_service import CompensationService, SaleResult

# Storage
from compensation_engine.storage.graph_store import GraphStore, ReferralSnapshot
from compensation_engine.storage.commission_ledger import CommissionLedger

# Configuration
from compensation_engine.config.plan import (
    AccountStatus,
    Leg,
    PlanConfig,
    PlanType,
    StairStep,
    VisitedPolicy,
)

# Utilities
from compensation_engine.utils.time_machine import timeMachine

# Events
from compensation_engine.events.event_bus import eventBus, CompensationEvents
from compensation_engine.events.sale_event import SaleEvent

__all__ = [
    # Services
    'BinaryPlacementService',
    'CompressionService',
    'LeadershipBonusService',
    'RankService',
    'StairStepService',
    'UnilevelService',
    'CompensationService',
    'SaleResult',

    # Storage
    'GraphStore',
    'ReferralSnapshot',
    'CommissionLedger',

    # Config
    'AccountStatus',
    'Leg',
    'PlanConfig',
    'PlanType',
    'StairStep',
    'VisitedPolicy',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'CompensationEvents',
    'SaleEvent',
]
