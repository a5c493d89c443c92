# compensation_engine/errors.py
"""
Exceptions raised by the compensation engine.

Validation and placement errors point at a caller mistake and are never
retried. PropagationError means storage kept conflicting after retries and
the sale was rolled back as a whole.
"""


class CompensationError(Exception):
    """Base class for engine errors."""
    pass


class NodeNotFoundError(CompensationError):
    """Referenced affiliate node does not exist."""

    def __init__(self, nodeId: str):
        super().__init__(f"Affiliate node {nodeId} not found")
        self.nodeId = nodeId


class InvalidSaleError(CompensationError):
    """Sale event rejected before any propagation."""
    pass


class PropagationError(CompensationError):
    """Volume/commission writes could not be applied atomically."""
    pass


class NegativeVolumeError(CompensationError):
    """A leg volume update would drop below zero."""
    pass


class PlacementError(CompensationError):
    """Binary tree placement rejected."""
    pass


class LegOccupiedError(PlacementError):
    """Target leg already holds a child."""

    def __init__(self, nodeId: str, leg: str, occupantId: str):
        super().__init__(f"{leg} leg of {nodeId} is already occupied by {occupantId}")
        self.nodeId = nodeId
        self.leg = leg
        self.occupantId = occupantId


class SpilloverRequiredError(PlacementError):
    """Sponsor has both legs filled and no leg was chosen."""

    def __init__(self, sponsorId: str):
        super().__init__(f"Both legs of sponsor {sponsorId} are occupied, choose a leg for spillover")
        self.sponsorId = sponsorId


class AlreadyPlacedError(PlacementError):
    """Node already has a binary position."""
    pass
