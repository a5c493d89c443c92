"""
Database models for the affiliate compensation engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.affiliate_node import AffiliateNode
from models.commission_entry import CommissionEntry
from models.sale_event import ProcessedSaleEvent
from models.pending_placement import PendingPlacement
from models.rank_history import RankHistory

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'AffiliateNode',
    'CommissionEntry',
    'ProcessedSaleEvent',
    'PendingPlacement',
    'RankHistory',
]
