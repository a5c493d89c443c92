# compensation_engine/services/compensation_service.py
"""
Compensation service - processes one sale event through every plan.

Order inside ONE transaction:
1. Idempotency marker (ProcessedSaleEvent) - redelivery becomes a no-op
2. Binary volume propagation up the placement chain
3. Cycle matching on every touched ancestor
4. Stair-step differential commissions up the sponsor chain
5. Unilevel pool split over the first sponsor levels (when enabled)
6. Leadership bonus if the seller is manager-ranked
7. Commit once; any failure rolls everything back
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
import logging

from config import Config
from models.commission_entry import CommissionEntry
from models.sale_event import ProcessedSaleEvent
from compensation_engine.config.plan import PlanConfig
from compensation_engine.errors import InvalidSaleError, PropagationError
from compensation_engine.events.sale_event import SaleEvent
from compensation_engine.services.binary_placement_service import BinaryPlacementService
from compensation_engine.services.leadership_bonus_service import LeadershipBonusService
from compensation_engine.services.stair_step_service import StairStepService
from compensation_engine.services.unilevel_service import UnilevelService
from compensation_engine.storage.graph_store import GraphStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass
class SaleResult:
    eventId: str
    duplicate: bool = False
    entries: List[CommissionEntry] = field(default_factory=list)
    cyclesMatched: int = 0
    touchedNodes: int = 0
    attempts: int = 1

    @property
    def totalAmount(self) -> Decimal:
        return sum((e.amount for e in self.entries), Decimal("0"))

    @property
    def byPlan(self) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for entry in self.entries:
            totals[entry.planType] = totals.get(entry.planType, Decimal("0")) + entry.amount
        return totals


class CompensationService:
    """Transactional, idempotent processing of sale events."""

    def __init__(self, session: Session, maxRetries: Optional[int] = None):
        self.session = session
        if maxRetries is None:
            maxRetries = int(Config.get(Config.TRANSACTION_MAX_RETRIES, DEFAULT_MAX_RETRIES))
        self.maxRetries = max(1, maxRetries)

    def isProcessed(self, eventId: str) -> bool:
        return self.session.query(ProcessedSaleEvent).filter_by(eventID=eventId).first() is not None

    def processSale(self, event: SaleEvent, plan: PlanConfig) -> SaleResult:
        """
        Apply a sale event to the binary, stair-step, unilevel and leadership plans.

        Args:
            event: SaleEvent to consume
            plan: Plan configuration

        Returns:
            SaleResult (duplicate=True when the event was already processed)

        Raises:
            InvalidSaleError: Amount not positive or unknown seller (nothing written)
            PropagationError: Storage conflicts persisted after retries
        """
        self._validate(event)

        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._applySale(event, plan)
                self.session.commit()
                result.attempts = attempt
                break

            except IntegrityError as e:
                self.session.rollback()
                if self.isProcessed(event.eventId):
                    logger.warning(f"Sale {event.eventId} processed concurrently, treating as duplicate")
                    return SaleResult(eventId=event.eventId, duplicate=True, attempts=attempt)
                logger.error(f"Integrity error while processing sale {event.eventId}: {e}")
                raise

            except (StaleDataError, OperationalError) as e:
                self.session.rollback()
                if attempt >= self.maxRetries:
                    logger.error(
                        f"Sale {event.eventId} failed after {attempt} attempts: {e}"
                    )
                    raise PropagationError(
                        f"Could not apply sale {event.eventId} after {attempt} attempts"
                    ) from e
                logger.warning(
                    f"Write conflict on sale {event.eventId} (attempt {attempt}/{self.maxRetries}), retrying: {e}"
                )

            except Exception:
                self.session.rollback()
                logger.error(f"Sale {event.eventId} rolled back", exc_info=True)
                raise

        if not result.duplicate:
            logger.info(
                f"Processed sale {event.eventId} ({event.amount} by {event.sourceNodeId}): "
                f"{len(result.entries)} entries, total {result.totalAmount}, "
                f"{result.cyclesMatched} cycles"
            )
        return result

    def _validate(self, event: SaleEvent):
        if event.amount <= 0:
            raise InvalidSaleError(f"Sale {event.eventId}: amount must be positive, got {event.amount}")

        if GraphStore(self.session).getNode(event.sourceNodeId) is None:
            raise InvalidSaleError(f"Sale {event.eventId}: unknown source node {event.sourceNodeId}")

    def _applySale(self, event: SaleEvent, plan: PlanConfig) -> SaleResult:
        """All writes of one sale; the caller commits or rolls back."""
        if self.isProcessed(event.eventId):
            logger.warning(f"Sale {event.eventId} already processed, skipping")
            return SaleResult(eventId=event.eventId, duplicate=True)

        marker = ProcessedSaleEvent(
            eventID=event.eventId,
            sourceID=event.sourceNodeId,
            amount=event.amount,
            occurredAt=event.timestamp,
        )
        self.session.add(marker)
        self.session.flush()

        result = SaleResult(eventId=event.eventId)

        # Binary plan
        binary = BinaryPlacementService(self.session)
        touched = binary.recordSale(event.sourceNodeId, event.amount, plan.max_chain_depth)
        result.touchedNodes = len(touched)

        for ancestor in touched:
            cycles = binary.matchCycles(
                ancestor.nodeID,
                plan,
                occurredAt=event.timestamp,
                sourceNodeId=event.sourceNodeId,
                eventId=event.eventId,
            )
            result.cyclesMatched += cycles.cycles
            result.entries.extend(cycles.entries)

        # Stair-step plan
        result.entries.extend(StairStepService(self.session).distribute(
            event.sourceNodeId,
            event.amount,
            plan,
            occurredAt=event.timestamp,
            eventId=event.eventId,
        ))

        # Unilevel plan
        result.entries.extend(UnilevelService(self.session).distribute(
            event.sourceNodeId,
            event.amount,
            plan,
            occurredAt=event.timestamp,
            eventId=event.eventId,
        ))

        # Leadership plan
        result.entries.extend(LeadershipBonusService(self.session).onManagerSale(
            event.sourceNodeId,
            event.amount,
            plan,
            occurredAt=event.timestamp,
            eventId=event.eventId,
        ))

        marker.entriesCount = len(result.entries)
        marker.totalCommission = result.totalAmount
        marker.cyclesMatched = result.cyclesMatched
        self.session.flush()

        return result
