# tests/test_binary_placement.py
"""
Tests for binary placement, spillover and volume propagation.

Placement rule:
    1st referral -> left, 2nd -> right,
    3rd+ -> sponsor picks a leg, node goes to the first open slot
    of that leg's subtree (breadth-first, left before right)
"""
from decimal import Decimal

import pytest

from models import PendingPlacement
from compensation_engine.config.plan import Leg
from compensation_engine.errors import (
    AlreadyPlacedError,
    InvalidSaleError,
    NodeNotFoundError,
    PlacementError,
    PropagationError,
    SpilloverRequiredError,
)
from compensation_engine.services.binary_placement_service import BinaryPlacementService


@pytest.fixture
def service(session):
    return BinaryPlacementService(session)


@pytest.fixture
def full_sponsor(tree):
    """root with both legs filled: root -> (a, b)."""
    tree.root("root")
    tree.place("a", "root")
    tree.place("b", "root")
    return tree


# =============================================================================
# TEST CLASS: placeNode
# =============================================================================

class TestPlaceNode:

    def test_first_referral_goes_left(self, service, tree):
        tree.root("root")

        result = service.placeNode("a", "root")

        assert result.parentId == "root"
        assert result.leg is Leg.LEFT
        assert not result.spillover
        assert tree.node("root").leftChildID == "a"
        assert tree.node("a").placementLeg == "left"
        assert tree.node("a").sponsorID == "root"

    def test_second_referral_goes_right(self, service, tree):
        tree.root("root")
        service.placeNode("a", "root")

        result = service.placeNode("b", "root")

        assert result.leg is Leg.RIGHT
        assert tree.node("root").rightChildID == "b"

    def test_preferred_leg_ignored_while_direct_slot_free(self, service, tree):
        tree.root("root")

        result = service.placeNode("a", "root", preferredLeg="right")

        assert result.leg is Leg.LEFT

    def test_third_referral_without_leg_requires_spillover(self, service, full_sponsor):
        with pytest.raises(SpilloverRequiredError) as exc:
            service.placeNode("c", "root")

        assert exc.value.sponsorId == "root"
        assert full_sponsor.node("c").parentID is None

    def test_spillover_left_leg(self, service, full_sponsor):
        result = service.placeNode("c", "root", preferredLeg=Leg.LEFT)

        assert result.spillover
        assert result.parentId == "a"
        assert result.leg is Leg.LEFT
        assert full_sponsor.node("c").sponsorID == "root"

    def test_spillover_fills_breadth_first(self, service, full_sponsor):
        placements = [
            service.placeNode(nodeId, "root", preferredLeg="right")
            for nodeId in ["c", "d", "e", "f", "g"]
        ]

        assert [(p.parentId, p.leg) for p in placements] == [
            ("b", Leg.LEFT),
            ("b", Leg.RIGHT),
            ("c", Leg.LEFT),
            ("c", Leg.RIGHT),
            ("d", Leg.LEFT),
        ]

    def test_already_placed_rejected(self, service, full_sponsor):
        with pytest.raises(AlreadyPlacedError):
            service.placeNode("a", "root", preferredLeg="left")

    def test_self_sponsor_rejected(self, service, tree):
        tree.root("root")

        with pytest.raises(PlacementError):
            service.placeNode("root", "root")

    def test_unknown_sponsor_rejected(self, service):
        with pytest.raises(NodeNotFoundError):
            service.placeNode("a", "ghost")

    def test_sponsor_mismatch_rejected(self, service, tree):
        tree.root("root")
        tree.root("other")
        tree.sponsor("a", "other")

        with pytest.raises(PlacementError):
            service.placeNode("a", "root")

    def test_unknown_leg_rejected(self, service, full_sponsor):
        with pytest.raises(PlacementError):
            service.placeNode("c", "root", preferredLeg="middle")


# =============================================================================
# TEST CLASS: pending placements
# =============================================================================

class TestPendingPlacement:

    def test_request_places_when_leg_free(self, service, tree):
        tree.root("root")

        result = service.requestPlacement("a", "root")

        assert not result.isPending
        assert result.leg is Leg.LEFT

    def test_request_queues_third_referral(self, service, session, full_sponsor):
        result = service.requestPlacement("c", "root")

        assert result.isPending
        pending = session.query(PendingPlacement).filter_by(nodeID="c").one()
        assert pending.status == "pending"
        assert [p.nodeID for p in service.getPendingPlacements("root")] == ["c"]

    def test_request_twice_returns_same_pending(self, service, full_sponsor):
        first = service.requestPlacement("c", "root")
        second = service.requestPlacement("c", "root")

        assert first.pendingId == second.pendingId

    def test_resolve_places_in_chosen_leg(self, service, session, full_sponsor):
        pendingId = service.requestPlacement("c", "root").pendingId

        result = service.resolvePendingPlacement(pendingId, "right")

        assert result.parentId == "b"
        assert result.leg is Leg.LEFT
        pending = session.query(PendingPlacement).filter_by(pendingID=pendingId).one()
        assert pending.status == "placed"
        assert pending.chosenLeg == "right"
        assert service.getPendingPlacements("root") == []

    def test_resolve_twice_rejected(self, service, full_sponsor):
        pendingId = service.requestPlacement("c", "root").pendingId
        service.resolvePendingPlacement(pendingId, "left")

        with pytest.raises(PlacementError):
            service.resolvePendingPlacement(pendingId, "left")

    def test_resolve_unknown_rejected(self, service):
        with pytest.raises(PlacementError):
            service.resolvePendingPlacement(999, "left")


# =============================================================================
# TEST CLASS: recordSale
# =============================================================================

class TestRecordSale:

    def test_volume_goes_to_leg_of_path(self, service, tree):
        tree.root("root")
        tree.place("l", "root")
        tree.place("r", "root")
        tree.place("rl", "r")

        touched = service.recordSale("rl", Decimal("500"))

        assert [n.nodeID for n in touched] == ["r", "root"]
        assert tree.node("r").leftVolume == Decimal("500")
        assert tree.node("r").rightVolume == 0
        assert tree.node("root").rightVolume == Decimal("500")
        assert tree.node("root").leftVolume == 0

    def test_volume_accumulates(self, service, tree):
        tree.root("root")
        tree.place("l", "root")

        service.recordSale("l", Decimal("100"))
        service.recordSale("l", Decimal("250.50"))

        assert tree.node("root").leftVolume == Decimal("350.50")

    def test_seller_volume_not_added_to_itself(self, service, tree):
        tree.root("root")
        tree.place("l", "root")

        service.recordSale("l", Decimal("100"))

        assert tree.node("l").leftVolume == 0
        assert tree.node("l").rightVolume == 0

    def test_root_sale_touches_nothing(self, service, tree):
        tree.root("root")

        assert service.recordSale("root", Decimal("100")) == []

    def test_spillover_volume_reaches_sponsor(self, service, full_sponsor):
        service.placeNode("c", "root", preferredLeg="left")

        service.recordSale("c", Decimal("300"))

        assert full_sponsor.node("a").leftVolume == Decimal("300")
        assert full_sponsor.node("root").leftVolume == Decimal("300")

    def test_non_positive_amount_rejected(self, service, tree):
        tree.root("root")

        with pytest.raises(InvalidSaleError):
            service.recordSale("root", Decimal("0"))

    def test_chain_deeper_than_limit_is_rejected(self, service, tree):
        tree.root("n0")
        for i in range(1, 5):
            tree.place(f"n{i}", f"n{i - 1}")

        with pytest.raises(PropagationError):
            service.recordSale("n4", Decimal("10"), maxDepth=2)

    def test_chain_exactly_at_limit(self, service, tree):
        tree.root("n0")
        for i in range(1, 5):
            tree.place(f"n{i}", f"n{i - 1}")

        touched = service.recordSale("n4", Decimal("10"), maxDepth=4)

        assert [n.nodeID for n in touched] == ["n3", "n2", "n1", "n0"]

    def test_placement_cycle_is_rejected(self, service, session, tree):
        tree.root("root")
        tree.place("l", "root")
        root = tree.node("root")
        root.parentID = "l"
        root.placementLeg = "left"
        session.flush()

        with pytest.raises(PropagationError):
            service.recordSale("l", Decimal("10"))
