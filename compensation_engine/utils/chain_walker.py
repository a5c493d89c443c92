# compensation_engine/utils/chain_walker.py
"""
Safe chain walking utilities for the sponsor and binary trees.
Prevents infinite loops and validates chain integrity.
"""
from typing import Optional, Callable, List
from sqlalchemy.orm import Session
import logging

from models.affiliate_node import AffiliateNode
from compensation_engine.config.plan import Leg

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 500


class ChainWalker:
    """
    Safe utilities for walking upline chains in either tree.

    Sponsor chain: node -> sponsor -> sponsor's sponsor ...
    Placement chain: node -> binary parent -> ... -> binary root
    """

    def __init__(self, session: Session, lock: bool = False):
        self.session = session
        self.lock = lock

    def _load(self, nodeId: str) -> Optional[AffiliateNode]:
        query = self.session.query(AffiliateNode).filter(AffiliateNode.nodeID == nodeId)
        if self.lock:
            query = query.with_for_update()
        return query.first()

    def walk_sponsor_chain(
            self,
            start_node: AffiliateNode,
            callback: Callable[[AffiliateNode, int], bool],
            max_depth: int = DEFAULT_MAX_DEPTH
    ) -> int:
        """
        Walk up the sponsor chain, calling callback for each ancestor.

        Args:
            start_node: Starting node (not passed to callback)
            callback: Function(ancestor, level) -> continue_walking (bool)
            max_depth: Maximum depth to prevent runaway loops

        Returns:
            Number of ancestors processed

        Example:
            def show(ancestor, level):
                print(f"Level {level}: {ancestor.nodeID}")
                return True  # Continue walking

            walker.walk_sponsor_chain(node, show)
        """
        current = start_node
        level = 1
        processed = 0
        visited = {start_node.nodeID}

        while current.sponsorID and level <= max_depth:
            # Check for cycles
            if current.sponsorID in visited:
                logger.error(f"Cycle detected in sponsor chain at node {current.sponsorID}")
                break

            sponsor = self._load(current.sponsorID)
            if not sponsor:
                logger.warning(
                    f"Sponsor not found: {current.sponsorID} for node {current.nodeID}"
                )
                break

            visited.add(sponsor.nodeID)

            should_continue = callback(sponsor, level)
            processed += 1

            if not should_continue:
                break

            current = sponsor
            level += 1

        if level > max_depth and current.sponsorID:
            logger.error(f"Max depth ({max_depth}) exceeded starting from node {start_node.nodeID}")

        return processed

    def walk_placement_chain(
            self,
            start_node: AffiliateNode,
            callback: Callable[[AffiliateNode, Leg, int], bool],
            max_depth: int = DEFAULT_MAX_DEPTH
    ) -> int:
        """
        Walk up the binary placement chain.

        The callback gets the ancestor together with the leg of that
        ancestor the walk came up through.

        Args:
            start_node: Starting node (not passed to callback)
            callback: Function(ancestor, leg, level) -> continue_walking (bool)
            max_depth: Maximum depth

        Returns:
            Number of ancestors processed
        """
        current = start_node
        level = 1
        processed = 0
        visited = {start_node.nodeID}

        while current.parentID and level <= max_depth:
            if current.parentID in visited:
                logger.error(f"Cycle detected in placement chain at node {current.parentID}")
                break

            if current.placementLeg not in (Leg.LEFT.value, Leg.RIGHT.value):
                logger.error(
                    f"Node {current.nodeID} has parent {current.parentID} "
                    f"but invalid placementLeg={current.placementLeg!r}"
                )
                break

            parent = self._load(current.parentID)
            if not parent:
                logger.warning(f"Binary parent not found: {current.parentID} for node {current.nodeID}")
                break

            visited.add(parent.nodeID)

            should_continue = callback(parent, Leg(current.placementLeg), level)
            processed += 1

            if not should_continue:
                break

            current = parent
            level += 1

        if level > max_depth and current.parentID:
            logger.error(
                f"Max placement depth ({max_depth}) exceeded starting from node {start_node.nodeID}"
            )

        return processed

    def get_sponsor_chain(self, node: AffiliateNode, max_depth: int = DEFAULT_MAX_DEPTH) -> List[AffiliateNode]:
        """
        Get list of all ancestors in the sponsor chain.

        Returns:
            List of nodes from direct sponsor to root
        """
        chain = []

        def collect(ancestor, level):
            chain.append(ancestor)
            return True

        self.walk_sponsor_chain(node, collect, max_depth)
        return chain
