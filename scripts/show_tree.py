#!/usr/bin/env python3
"""
Display the referral structure.

Shows the sponsor tree (default) or the binary placement tree with
steps, leg volumes and compressed line summary.

Usage:
    python scripts/show_tree.py --root-id ROOT [--max-depth DEPTH]
    python scripts/show_tree.py --root-id ROOT --binary
    python scripts/show_tree.py --stats
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from config import Config
from core.db import get_session
from models.affiliate_node import AffiliateNode
from compensation_engine.config.plan import AccountStatus, PlanConfig
from compensation_engine.services.compression_service import CompressionService
from compensation_engine.services.leadership_bonus_service import LeadershipBonusService
from compensation_engine.storage.graph_store import GraphStore
from compensation_engine.utils.chain_walker import ChainWalker

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def node_label(node, plan):
    manager_marker = "👑 " if plan.manager_step and node.currentStep == plan.manager_step else ""
    deferred_marker = "⏳ " if node.accountStatus == AccountStatus.DEFERRED.value else ""
    step_display = f"[step {node.currentStep}]" if node.currentStep else ""
    volume_display = f"L={node.leftVolume} R={node.rightVolume}"
    return f"{manager_marker}{deferred_marker}{node.nodeID} {step_display} {volume_display}"


def print_tree(root, plan, binary=False, max_depth=None):
    """Print ASCII tree of the structure."""
    session = get_session()
    try:
        graph = GraphStore(session)

        def children_of(node):
            if binary:
                return [c for c in graph.getBinaryChildren(node.nodeID) if c is not None]
            return graph.getChildren(node.nodeID)

        def print_node(node, prefix="", is_last=True, depth=0, seen=None):
            seen = seen if seen is not None else set()
            if max_depth and depth > max_depth:
                return
            if node.nodeID in seen:
                print(f"{prefix}└─ ⚠️ cycle at {node.nodeID}")
                return
            seen.add(node.nodeID)

            connector = "└─ " if is_last else "├─ "
            leg = f"({node.placementLeg[0].upper()}) " if binary and node.placementLeg else ""
            print(f"{prefix}{connector}{leg}{node_label(node, plan)}")

            children = children_of(node)
            for i, child in enumerate(children):
                new_prefix = prefix + ("    " if is_last else "│   ")
                print_node(child, new_prefix, i == len(children) - 1, depth + 1, seen)

        print("\n" + "=" * 80)
        print("BINARY TREE" if binary else "SPONSOR TREE")
        print("=" * 80)
        print("\nLegend:")
        print("  👑 = Manager step")
        print("  ⏳ = Deferred payment")
        print("  (L)/(R) = Placement leg")
        print("\n" + "=" * 80 + "\n")

        upline = ChainWalker(session).get_sponsor_chain(root, max_depth=plan.max_chain_depth)
        if upline:
            print("Upline: " + " <- ".join(n.nodeID for n in upline) + "\n")

        print_node(root)

        if not binary:
            compressed = CompressionService(session).compress(root.nodeID, plan)
            eligible = LeadershipBonusService(session).isEligible(root.nodeID, plan, compressed=compressed)
            print("\nCompressed lines:")
            for line_root_id, line in compressed.lines.items():
                managers = ", ".join(f"{n}@{lvl}" for n, lvl in line.entries) or "-"
                print(f"  {line_root_id:15} {managers}")
            print(f"\nLines with managers: {compressed.lines_with_managers}"
                  f"{' (truncated)' if compressed.truncated else ''}")
            print(f"Leadership eligible: {'✅' if eligible else '❌'}")

        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


def print_statistics():
    """Print database statistics."""
    session = get_session()
    try:
        total = session.query(AffiliateNode).count()

        print("\n" + "=" * 80)
        print("DATABASE STATISTICS")
        print("=" * 80 + "\n")
        print(f"Total nodes:   {total}")

        if total:
            placed = session.query(AffiliateNode).filter(AffiliateNode.parentID.isnot(None)).count()
            print(f"Placed nodes:  {placed}")

            print("\nNodes by step:")
            for step, count in session.query(
                    AffiliateNode.currentStep,
                    func.count(AffiliateNode.nodeID)
            ).group_by(AffiliateNode.currentStep).order_by(AffiliateNode.currentStep).all():
                print(f"  step {step:<3} {count:5} ({count / total * 100:.1f}%)")

            print("\nNodes by account status:")
            for status, count in session.query(
                    AffiliateNode.accountStatus,
                    func.count(AffiliateNode.nodeID)
            ).group_by(AffiliateNode.accountStatus).all():
                print(f"  {status:16} {count:5}")

            cycles = session.query(func.coalesce(func.sum(AffiliateNode.totalCyclesMatched), 0)).scalar()
            print(f"\nCycles matched: {cycles}")

        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display referral structure')
    parser.add_argument('--root-id', help='Node ID to start from')
    parser.add_argument('--max-depth', type=int, help='Maximum depth to display')
    parser.add_argument('--binary', action='store_true', help='Show binary placement tree')
    parser.add_argument('--stats', action='store_true', help='Show statistics only')
    args = parser.parse_args()

    Config.initialize_from_env()

    if args.stats:
        print_statistics()
        return

    if not args.root_id:
        print("❌ Specify --root-id or --stats")
        return

    plan = PlanConfig.from_config()
    session = get_session()
    try:
        root = GraphStore(session).getNode(args.root_id)
        if not root:
            print(f"❌ Node {args.root_id} not found!")
            return

        print_tree(root, plan, args.binary, args.max_depth)
        print_statistics()

    finally:
        session.close()


if __name__ == "__main__":
    main()
