# tests/test_graph_store.py
"""
Tests for GraphStore, CommissionLedger and ChainWalker.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from compensation_engine.config.plan import Leg, PlanType
from compensation_engine.errors import (
    LegOccupiedError,
    NegativeVolumeError,
    NodeNotFoundError,
    PlacementError,
)
from compensation_engine.storage.commission_ledger import CommissionLedger
from compensation_engine.storage.graph_store import GraphStore
from compensation_engine.utils.chain_walker import ChainWalker


@pytest.fixture
def graph(session):
    return GraphStore(session)


class TestNodes:

    def test_create_and_get(self, graph):
        graph.createNode("root")
        node = graph.createNode("a", sponsorId="root", currentStep=2)

        assert graph.getNode("a") is node
        assert node.sponsorID == "root"
        assert node.currentStep == 2
        assert node.leftVolume == 0
        assert node.accountStatus == "active"
        assert not node.isPlaced
        assert graph.getNode("root").isRoot

    def test_get_missing_returns_none(self, graph):
        assert graph.getNode("ghost") is None
        assert graph.getNode(None) is None

    def test_require_missing_raises(self, graph):
        with pytest.raises(NodeNotFoundError):
            graph.requireNode("ghost")

    def test_duplicate_node_rejected(self, graph):
        graph.createNode("root")

        with pytest.raises(PlacementError):
            graph.createNode("root")

    def test_unknown_sponsor_rejected(self, graph):
        with pytest.raises(NodeNotFoundError):
            graph.createNode("a", sponsorId="ghost")

    def test_children_in_join_order(self, graph, pinned_clock):
        graph.createNode("root")
        for nodeId in ["c", "a", "b"]:
            pinned_clock.advanceTime(hours=1)
            graph.createNode(nodeId, sponsorId="root")

        assert [c.nodeID for c in graph.getChildren("root")] == ["c", "a", "b"]


class TestLegs:

    def test_set_child_records_leg_and_parent(self, graph):
        graph.createNode("root")
        graph.createNode("a", sponsorId="root")

        graph.setChild("root", Leg.LEFT, "a")

        root, child = graph.getNode("root"), graph.getNode("a")
        assert root.leftChildID == "a"
        assert root.rightChildID is None
        assert child.parentID == "root"
        assert child.placementLeg == "left"

    def test_occupied_leg_is_not_retargeted(self, graph):
        graph.createNode("root")
        graph.createNode("a", sponsorId="root")
        graph.createNode("b", sponsorId="root")
        graph.setChild("root", Leg.LEFT, "a")

        with pytest.raises(LegOccupiedError) as exc:
            graph.setChild("root", Leg.LEFT, "b")

        assert exc.value.occupantId == "a"
        assert graph.getNode("root").leftChildID == "a"

    def test_binary_children(self, graph):
        graph.createNode("root")
        graph.createNode("a", sponsorId="root")
        graph.setChild("root", Leg.RIGHT, "a")

        left, right = graph.getBinaryChildren("root")
        assert left is None
        assert right.nodeID == "a"


class TestVolumes:

    def test_update_volumes(self, graph):
        graph.createNode("root")

        graph.updateVolumes("root", leftDelta=Decimal("100"))
        node = graph.updateVolumes("root", rightDelta=Decimal("40.50"))

        assert node.leftVolume == Decimal("100")
        assert node.rightVolume == Decimal("40.50")

    def test_negative_volume_rejected(self, graph):
        graph.createNode("root")
        graph.updateVolumes("root", leftDelta=Decimal("10"))

        with pytest.raises(NegativeVolumeError):
            graph.updateVolumes("root", leftDelta=Decimal("-20"))

        assert graph.getNode("root").leftVolume == Decimal("10")

    def test_cycles_never_decrease(self, graph):
        graph.createNode("root")
        graph.incrementCycles("root", 2)

        with pytest.raises(ValueError):
            graph.incrementCycles("root", -1)

        assert graph.getNode("root").totalCyclesMatched == 2


class TestSnapshot:

    def test_snapshot_reflects_tree(self, graph):
        graph.createNode("root", currentStep=5)
        graph.createNode("a", sponsorId="root", currentStep=1)
        graph.createNode("b", sponsorId="a")

        snapshot = graph.snapshotReferralTree()

        assert len(snapshot) == 3
        assert "b" in snapshot
        assert snapshot.children_of("root") == ["a"]
        assert snapshot.children_of("b") == []
        assert snapshot.sponsor_of("b") == "a"
        assert snapshot.step_of("root") == 5
        assert snapshot.step_of("ghost") == 0

    def test_snapshot_is_point_in_time(self, graph):
        graph.createNode("root")
        snapshot = graph.snapshotReferralTree()

        graph.createNode("late", sponsorId="root")

        assert snapshot.children_of("root") == []


class TestLedger:

    def test_append_quantizes_and_splits_payable(self, session, graph):
        graph.createNode("root")
        ledger = CommissionLedger(session)

        entry = ledger.append(
            recipientId="root",
            sourceId="root",
            planType=PlanType.BINARY,
            amount=Decimal("200"),
            basisAmount=Decimal("2000"),
            withheldAmount=Decimal("50"),
            occurredAt=datetime(2026, 3, 15, 23, 59),
        )

        assert entry.amount == Decimal("200.00")
        assert entry.payableAmount == Decimal("150.00")
        assert entry.ledgerDay == date(2026, 3, 15)

    def test_count_cycles_per_day(self, session, graph):
        graph.createNode("root")
        ledger = CommissionLedger(session)

        for day in (15, 15, 16):
            ledger.append("root", "root", PlanType.BINARY, Decimal("200"), Decimal("2000"),
                          occurredAt=datetime(2026, 3, day, 10))
        ledger.append("root", "root", PlanType.STAIRSTEP, Decimal("5"), Decimal("100"),
                      occurredAt=datetime(2026, 3, 15, 10))

        assert ledger.countCyclesOnDay("root", date(2026, 3, 15)) == 2
        assert ledger.countCyclesOnDay("root", date(2026, 3, 16)) == 1
        assert ledger.countCyclesOnDay("root", date(2026, 3, 17)) == 0

    def test_totals(self, session, graph):
        graph.createNode("root")
        ledger = CommissionLedger(session)
        ledger.append("root", "root", PlanType.BINARY, Decimal("200"), Decimal("2000"), eventId="e1")
        ledger.append("root", "root", PlanType.LEADERSHIP, Decimal("2.50"), Decimal("125"), eventId="e1")

        assert ledger.totalForRecipient("root") == Decimal("202.50")
        assert ledger.totalForRecipient("root", PlanType.BINARY) == Decimal("200")
        assert len(ledger.entriesForEvent("e1")) == 2
        assert len(ledger.entriesForRecipient("root", PlanType.LEADERSHIP)) == 1


class TestChainWalker:

    def test_sponsor_chain(self, session, tree):
        tree.root("root")
        tree.chain(["a", "b", "c"], "root")

        walker = ChainWalker(session)
        chain = walker.get_sponsor_chain(tree.node("c"))

        assert [n.nodeID for n in chain] == ["b", "a", "root"]

    def test_sponsor_chain_max_depth(self, session, tree):
        tree.root("root")
        tree.chain(["a", "b", "c"], "root")

        chain = ChainWalker(session).get_sponsor_chain(tree.node("c"), max_depth=2)

        assert [n.nodeID for n in chain] == ["b", "a"]

    def test_callback_can_stop_walk(self, session, tree):
        tree.root("root")
        tree.chain(["a", "b"], "root")
        levels = []

        def stop_at_first(node, level):
            levels.append(level)
            return False

        processed = ChainWalker(session).walk_sponsor_chain(tree.node("b"), stop_at_first)

        assert processed == 1
        assert levels == [1]

    def test_sponsor_cycle_detected(self, session, tree):
        tree.root("a")
        tree.sponsor("b", "a")
        tree.node("a").sponsorID = "b"
        session.flush()

        chain = ChainWalker(session).get_sponsor_chain(tree.node("b"))

        assert [n.nodeID for n in chain] == ["a"]

    def test_placement_chain_reports_legs(self, session, tree):
        tree.root("root")
        tree.place("l", "root")
        tree.place("r", "root")
        tree.place("rl", "r")
        seen = []

        ChainWalker(session).walk_placement_chain(
            tree.node("rl"), lambda node, leg, level: seen.append((node.nodeID, leg, level)) or True
        )

        assert seen == [("r", Leg.LEFT, 1), ("root", Leg.RIGHT, 2)]
