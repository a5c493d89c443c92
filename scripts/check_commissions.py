#!/usr/bin/env python3
"""
Check commissions for a sale event.

Displays the ledger entries one sale produced, grouped by plan, and
verifies the stair-step total against the top step percentage.

Usage:
    python scripts/check_commissions.py --event-id SALE-1
    python scripts/check_commissions.py --last  # Check last processed sale
"""

import sys
import os
import argparse
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from models.sale_event import ProcessedSaleEvent
from compensation_engine.config.plan import CENT, PlanConfig, PlanType
from compensation_engine.storage.commission_ledger import CommissionLedger
from compensation_engine.storage.graph_store import GraphStore

import logging

logging.basicConfig(level=logging.WARNING)


def main():
    """Check commissions."""
    parser = argparse.ArgumentParser(description='Check commissions for a sale')
    parser.add_argument('--event-id', help='Sale event ID to check')
    parser.add_argument('--last', action='store_true', help='Check last processed sale')
    args = parser.parse_args()

    Config.initialize_from_env()
    plan = PlanConfig.from_config()
    session = get_session()

    try:
        if args.last:
            sale = session.query(ProcessedSaleEvent).order_by(
                ProcessedSaleEvent.processedAt.desc()
            ).first()
        elif args.event_id:
            sale = session.query(ProcessedSaleEvent).filter_by(eventID=args.event_id).first()
        else:
            print("❌ Specify --event-id or --last")
            return

        if not sale:
            print("❌ Sale not found")
            return

        seller = GraphStore(session).getNode(sale.sourceID)

        print("\n" + "=" * 80)
        print("COMMISSION CHECK")
        print("=" * 80)
        print(f"\nSale: {sale.eventID}")
        print(f"Seller: {sale.sourceID} (step {seller.currentStep if seller else '?'})")
        print(f"Amount: {sale.amount}")
        print(f"Date: {sale.occurredAt}")

        entries = CommissionLedger(session).entriesForEvent(sale.eventID)
        if not entries:
            print("\n❌ No commissions found for this sale")
            return

        print(f"\n{len(entries)} commission(s) found:")

        totals = {}
        for planType in PlanType:
            plan_entries = [e for e in entries if e.planType == planType.value]
            if not plan_entries:
                continue

            print("-" * 80)
            print(planType.value.upper())
            for entry in plan_entries:
                rate = f"{entry.rate * 100:5.2f}%" if entry.rate is not None else "  flat"
                withheld = f" (withheld {entry.withheldAmount})" if entry.withheldAmount else ""
                print(
                    f"  Level {entry.level if entry.level is not None else '-':>2}: "
                    f"{entry.recipientID:15} {rate} = {float(entry.amount):10.2f}"
                    f"{withheld} [{entry.status}]"
                )
            totals[planType] = sum((e.amount for e in plan_entries), Decimal("0"))

        print("-" * 80)
        for planType, total in totals.items():
            print(f"Total {planType.value:12} {float(total):10.2f}")

        stair_total = totals.get(PlanType.STAIRSTEP, Decimal("0"))
        ceiling = (Decimal(str(sale.amount)) * plan.max_percentage).quantize(CENT)

        print(f"\nStair-step paid:   {float(stair_total):.2f}")
        print(f"Top step ceiling:  {float(ceiling):.2f}")

        if stair_total <= ceiling:
            print("\n✅ STAIR-STEP WITHIN CEILING")
        else:
            print("\n❌ STAIR-STEP EXCEEDS TOP PERCENTAGE")

        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


if __name__ == "__main__":
    main()
