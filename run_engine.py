# run_engine.py
"""
Affiliate compensation engine - command line entry point.

Usage:
    python run_engine.py init-db
    python run_engine.py reset-db --yes
    python run_engine.py root ROOT_ID [--step N]
    python run_engine.py place NODE_ID SPONSOR_ID [--leg left|right]
    python run_engine.py resolve PENDING_ID --leg left|right
    python run_engine.py sale EVENT_ID SOURCE_ID AMOUNT
    python run_engine.py emit EVENT_ID SOURCE_ID AMOUNT   # through the event bus
"""
import argparse
import asyncio
import logging
import sys

from config import Config, ConfigurationError
from core.db import drop_all_tables, get_session, session_scope, setup_database
from compensation_engine.config.plan import PlanConfig
from compensation_engine.errors import CompensationError
from compensation_engine.events.event_bus import eventBus, CompensationEvents
from compensation_engine.events.sale_event import SaleEvent
from compensation_engine.events.setup import (
    setup_compensation_event_handlers,
    teardown_compensation_event_handlers,
)
from compensation_engine.services.binary_placement_service import BinaryPlacementService
from compensation_engine.services.compensation_service import CompensationService

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=Config.get(Config.LOG_LEVEL, "INFO"),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def cmd_init_db(args):
    setup_database()
    print("✓ Database ready")


def cmd_reset_db(args):
    if not args.yes:
        print("❌ reset-db drops the ledger too, pass --yes to confirm")
        return
    drop_all_tables()
    setup_database()
    print("✓ Database recreated")


def cmd_root(args):
    with session_scope() as session:
        BinaryPlacementService(session).createRoot(args.node_id, currentStep=args.step)
    print(f"✓ Root {args.node_id} created")


def cmd_place(args):
    with session_scope() as session:
        service = BinaryPlacementService(session)
        if args.leg:
            result = service.placeNode(args.node_id, args.sponsor_id, preferredLeg=args.leg)
        else:
            result = service.requestPlacement(args.node_id, args.sponsor_id)

    if result.isPending:
        print(f"⏳ {args.node_id} queued for placement (pending #{result.pendingId}), "
              f"sponsor must choose a leg")
    else:
        print(f"✓ {args.node_id} placed under {result.parentId} ({result.leg.value})"
              f"{' via spillover' if result.spillover else ''}")


def cmd_resolve(args):
    with session_scope() as session:
        result = BinaryPlacementService(session).resolvePendingPlacement(args.pending_id, args.leg)
    print(f"✓ {result.nodeId} placed under {result.parentId} ({result.leg.value})")


def cmd_sale(args):
    plan = PlanConfig.from_config()
    event = SaleEvent(eventId=args.event_id, sourceNodeId=args.source_id, amount=args.amount)

    session = get_session()
    try:
        result = CompensationService(session).processSale(event, plan)
        if result.duplicate:
            print(f"= Sale {event.eventId} already processed")
            return

        print(f"✓ Sale {event.eventId}: {len(result.entries)} entries, "
              f"{result.cyclesMatched} cycles, total {result.totalAmount}")
        for entry in result.entries:
            print(f"  {entry.planType:10} -> {entry.recipientID:12} "
                  f"level={entry.level} amount={entry.amount} payable={entry.payableAmount}")
    finally:
        session.close()


def cmd_emit(args):
    setup_compensation_event_handlers()
    try:
        event = SaleEvent(eventId=args.event_id, sourceNodeId=args.source_id, amount=args.amount)
        asyncio.run(eventBus.emit(CompensationEvents.SALE_RECORDED, event.to_dict()))
        print(f"✓ {CompensationEvents.SALE_RECORDED} emitted for {event.eventId}")
    finally:
        teardown_compensation_event_handlers()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Affiliate compensation engine')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('init-db', help='Create all tables')
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser('reset-db', help='Drop and recreate all tables')
    p.add_argument('--yes', action='store_true')
    p.set_defaults(func=cmd_reset_db)

    p = sub.add_parser('root', help='Create a root node')
    p.add_argument('node_id')
    p.add_argument('--step', type=int, default=0)
    p.set_defaults(func=cmd_root)

    p = sub.add_parser('place', help='Place a referral in the binary tree')
    p.add_argument('node_id')
    p.add_argument('sponsor_id')
    p.add_argument('--leg', choices=['left', 'right'])
    p.set_defaults(func=cmd_place)

    p = sub.add_parser('resolve', help='Resolve a pending spillover placement')
    p.add_argument('pending_id', type=int)
    p.add_argument('--leg', choices=['left', 'right'], required=True)
    p.set_defaults(func=cmd_resolve)

    for name, func, help_text in (
            ('sale', cmd_sale, 'Process a sale directly'),
            ('emit', cmd_emit, 'Emit a sale on the event bus'),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('event_id')
        p.add_argument('source_id')
        p.add_argument('amount')
        p.set_defaults(func=func)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        Config.initialize_from_env()
        configure_logging()
        Config.validate_critical_keys()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    try:
        args.func(args)
    except CompensationError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
