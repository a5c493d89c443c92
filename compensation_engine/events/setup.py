# compensation_engine/events/setup.py
"""
Register compensation handlers with the event bus.
"""
import logging

from compensation_engine.events.event_bus import eventBus, CompensationEvents
from compensation_engine.events.handlers import handle_sale_recorded

logger = logging.getLogger(__name__)


def setup_compensation_event_handlers():
    """
    Register all compensation event handlers with the event bus.

    Call once during application start-up.
    """
    logger.info("Setting up compensation event handlers...")

    eventBus.subscribe(CompensationEvents.SALE_RECORDED, handle_sale_recorded)
    logger.debug(f"Registered handler for {CompensationEvents.SALE_RECORDED}")

    logger.info("Compensation event handlers registered successfully")


def teardown_compensation_event_handlers():
    """
    Unregister all compensation event handlers.
    Useful for testing or shutdown.
    """
    logger.info("Tearing down compensation event handlers...")

    eventBus.unsubscribe(CompensationEvents.SALE_RECORDED, handle_sale_recorded)

    logger.info("Compensation event handlers unregistered")
