# compensation_engine/events/handlers.py
"""
Event handlers for the compensation engine.
Process events from the event bus.
"""
import logging
from typing import Dict, Any

from core.db import get_session
from compensation_engine.config.plan import PlanConfig
from compensation_engine.errors import InvalidSaleError
from compensation_engine.events.event_bus import eventBus, CompensationEvents
from compensation_engine.events.sale_event import SaleEvent
from compensation_engine.services.compensation_service import CompensationService
from compensation_engine.services.rank_service import RankService

logger = logging.getLogger(__name__)


async def handle_sale_recorded(data: Dict[str, Any]):
    """
    Handle SALE_RECORDED event.

    Steps:
    1. Process the sale through all plans (one transaction)
    2. Check whether the seller now qualifies for a higher step
    3. Emit COMMISSION_CALCULATED / CYCLES_MATCHED / RANK_ACHIEVED

    Args:
        data: Event data with eventId, sourceNodeId, amount and optional timestamp
    """
    try:
        event = SaleEvent.from_dict(data)
    except InvalidSaleError as e:
        logger.warning(f"Rejected SALE_RECORDED payload {data}: {e}")
        return

    logger.info(f"Processing compensation for sale {event.eventId}")

    session = get_session()

    try:
        plan = PlanConfig.from_config()

        # ═══════════════════════════════════════════════════════════
        # STEP 1: Volumes and commissions
        # ═══════════════════════════════════════════════════════════
        try:
            result = CompensationService(session).processSale(event, plan)
        except InvalidSaleError as e:
            logger.warning(f"Sale {event.eventId} rejected: {e}")
            return

        if result.duplicate:
            logger.info(f"Sale {event.eventId} was already processed")
            return

        commissionPayload = {
            "eventId": event.eventId,
            "sourceNodeId": event.sourceNodeId,
            "entries": [
                {
                    "recipientId": e.recipientID,
                    "planType": e.planType,
                    "amount": str(e.amount),
                    "payableAmount": str(e.payableAmount),
                    "level": e.level,
                }
                for e in result.entries
            ],
            "totalAmount": str(result.totalAmount),
        }

        # ═══════════════════════════════════════════════════════════
        # STEP 2: Stair-step qualification of the seller
        # ═══════════════════════════════════════════════════════════
        newStep = None
        try:
            rankService = RankService(session)
            newStep = rankService.checkStepQualification(event.sourceNodeId, plan, event.timestamp)
            if newStep is not None and rankService.updateStep(event.sourceNodeId, newStep):
                session.commit()
            else:
                newStep = None
        except Exception as e:
            session.rollback()
            newStep = None
            logger.error(
                f"Error checking step qualification for {event.sourceNodeId}: {e}",
                exc_info=True
            )

        # ═══════════════════════════════════════════════════════════
        # STEP 3: Follow-up events
        # ═══════════════════════════════════════════════════════════
        if result.entries:
            await eventBus.emit(CompensationEvents.COMMISSION_CALCULATED, commissionPayload)

        if result.cyclesMatched:
            await eventBus.emit(CompensationEvents.CYCLES_MATCHED, {
                "eventId": event.eventId,
                "cycles": result.cyclesMatched,
            })

        if newStep is not None:
            await eventBus.emit(CompensationEvents.RANK_ACHIEVED, {
                "nodeId": event.sourceNodeId,
                "newStep": newStep,
            })

        logger.info(
            f"✓ Compensation processed for sale {event.eventId}: "
            f"{len(result.entries)} entries, total {result.totalAmount}"
        )

    except Exception as e:
        logger.error(f"Error processing sale {event.eventId}: {e}", exc_info=True)

    finally:
        session.close()
