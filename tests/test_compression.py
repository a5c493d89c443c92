# tests/test_compression.py
"""
Tests for depth compression of manager lines.

Manager step in the default plan is 5; only step-5 nodes consume a
compressed level.
"""
import logging

import pytest

from compensation_engine.config.plan import VisitedPolicy
from compensation_engine.services.compression_service import CompressionService
from compensation_engine.storage.graph_store import ReferralSnapshot

MANAGER_STEP = 5


@pytest.fixture
def service(session):
    return CompressionService(session)


def snapshot_of(edges, steps):
    """Hand-built snapshot; edges may attach one node to several parents."""
    snapshot = ReferralSnapshot()
    for parentId, childIds in edges.items():
        snapshot.sponsors.setdefault(parentId, None)
        for childId in childIds:
            snapshot.children.setdefault(parentId, []).append(childId)
            snapshot.sponsors.setdefault(childId, parentId)
    snapshot.steps.update(steps)
    return snapshot


class TestCompress:

    def test_scenario_c_deep_manager_is_level_one(self, service, tree, plan):
        """Manager at raw depth 9 of a line, all above it non-managers -> level 1."""
        tree.root("root", step=MANAGER_STEP)
        tree.sponsor("line1", "root", step=1)
        tree.chain([f"d{i}" for i in range(2, 9)], "line1", step=2)
        tree.sponsor("deep", "d8", step=MANAGER_STEP)

        result = service.compress("root", plan)

        line = result.lines["line1"]
        assert line.entries == (("deep", 1),)
        assert line.level_of("deep") == 1
        assert result.find("deep") == ("line1", 1)
        assert result.lines_with_managers == 1

    def test_one_line_per_direct_referral(self, service, tree, plan):
        tree.root("root")
        for nodeId in ["a", "b", "c"]:
            tree.sponsor(nodeId, "root", step=MANAGER_STEP)

        result = service.compress("root", plan)

        assert set(result.lines) == {"a", "b", "c"}
        assert result.lines_with_managers == 3

    def test_non_managers_consume_no_level(self, service, tree, plan):
        tree.root("root")
        tree.sponsor("m1", "root", step=MANAGER_STEP)
        tree.sponsor("x", "m1", step=3)
        tree.sponsor("y", "x", step=4)
        tree.sponsor("m2", "y", step=MANAGER_STEP)

        line = service.compress("root", plan).lines["m1"]

        assert line.entries == (("m1", 1), ("m2", 2))
        assert line.max_level == 2

    def test_line_without_manager_is_empty(self, service, tree, plan):
        tree.root("root")
        tree.sponsor("a", "root", step=4)
        tree.sponsor("b", "a", step=1)

        result = service.compress("root", plan)

        assert result.lines["a"].entries == ()
        assert not result.lines["a"].is_qualifying
        assert result.lines_with_managers == 0

    def test_breadth_first_order_within_line(self, service, tree, plan):
        tree.root("root")
        tree.sponsor("a", "root")
        tree.sponsor("a1", "a")
        tree.sponsor("deep", "a1", step=MANAGER_STEP)
        tree.sponsor("shallow", "a", step=MANAGER_STEP)

        line = service.compress("root", plan).lines["a"]

        assert line.entries == (("shallow", 1), ("deep", 2))

    def test_depth_cap(self, service, tree, plan):
        tree.root("root")
        tree.chain([f"m{i}" for i in range(1, 11)], "root", step=MANAGER_STEP)

        line = service.compress("root", plan).lines["m1"]

        assert line.max_level == 7
        assert [level for _, level in line.entries] == list(range(1, 8))
        assert line.level_of("m8") is None

    def test_custom_depth_cap(self, service, tree, plan):
        tree.root("root")
        tree.chain([f"m{i}" for i in range(1, 6)], "root", step=MANAGER_STEP)

        line = service.compress("root", plan.replace(max_compressed_depth=3)).lines["m1"]

        assert line.entries == (("m1", 1), ("m2", 2), ("m3", 3))

    def test_no_steps_configured_qualifies_nobody(self, service, tree, plan):
        tree.root("root")
        tree.sponsor("a", "root", step=0)

        result = service.compress("root", plan.replace(stair_steps=()))

        assert result.lines_with_managers == 0

    def test_leaf_root_has_no_lines(self, service, tree, plan):
        tree.root("root")

        result = service.compress("root", plan)

        assert result.lines == {}
        assert result.lines_with_managers == 0

    def test_reuses_given_snapshot(self, service, tree, plan, session):
        tree.root("root")
        tree.sponsor("a", "root", step=MANAGER_STEP)
        snapshot = service.graph.snapshotReferralTree()

        tree.sponsor("b", "root", step=MANAGER_STEP)
        result = service.compress("root", plan, snapshot)

        assert set(result.lines) == {"a"}


class TestVisitedPolicy:

    @pytest.fixture
    def shared_node_snapshot(self):
        """'m' is reachable from both lines a and b."""
        return snapshot_of(
            {"root": ["a", "b"], "a": ["m"], "b": ["m"]},
            {"m": MANAGER_STEP},
        )

    def test_shared_is_default_and_first_line_wins(self, service, plan, shared_node_snapshot):
        assert plan.visited_policy is VisitedPolicy.SHARED

        result = service.compress("root", plan, shared_node_snapshot)

        assert result.lines["a"].entries == (("m", 1),)
        assert result.lines["b"].entries == ()
        assert result.lines_with_managers == 1

    def test_per_line_counts_node_in_every_line(self, service, plan, shared_node_snapshot):
        per_line = plan.replace(visited_policy=VisitedPolicy.PER_LINE)

        result = service.compress("root", per_line, shared_node_snapshot)

        assert result.lines["a"].entries == (("m", 1),)
        assert result.lines["b"].entries == (("m", 1),)
        assert result.lines_with_managers == 2

    def test_cycle_in_snapshot_terminates(self, service, plan):
        snapshot = snapshot_of(
            {"root": ["a"], "a": ["b"], "b": ["a", "root"]},
            {"b": MANAGER_STEP},
        )

        result = service.compress("root", plan, snapshot)

        assert result.lines["a"].entries == (("b", 1),)


class TestVisitLimit:

    def test_truncates_and_warns(self, service, tree, plan, caplog):
        tree.root("root")
        tree.chain([f"n{i}" for i in range(1, 21)], "root", step=1)

        with caplog.at_level(logging.WARNING):
            result = service.compress("root", plan.replace(compression_visit_limit=5))

        assert result.truncated
        assert result.visited_count == 5
        assert "truncated" in caplog.text

    def test_limit_spans_lines(self, service, tree, plan):
        tree.root("root")
        tree.chain(["a1", "a2", "a3"], "root")
        tree.chain(["b1", "b2", "b3"], "root", step=MANAGER_STEP)

        result = service.compress("root", plan.replace(compression_visit_limit=4))

        assert result.truncated
        assert result.lines["b1"].entries == (("b1", 1),)

    def test_exact_fit_is_not_truncated(self, service, tree, plan):
        tree.root("root")
        tree.chain(["a1", "a2", "a3"], "root")

        result = service.compress("root", plan.replace(compression_visit_limit=3))

        assert not result.truncated
        assert result.visited_count == 3
