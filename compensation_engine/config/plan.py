"""
Compensation plan configuration and constants.
Loads from the Config module into an immutable PlanConfig value.
"""
import dataclasses
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

from config import Config, ConfigurationError

logger = logging.getLogger(__name__)


class Leg(Enum):
    """Binary tree leg."""
    LEFT = "left"
    RIGHT = "right"

    @property
    def other(self) -> "Leg":
        return Leg.RIGHT if self is Leg.LEFT else Leg.LEFT


class PlanType(Enum):
    """Commission plan an entry belongs to."""
    BINARY = "binary"
    STAIRSTEP = "stairstep"
    LEADERSHIP = "leadership"
    UNILEVEL = "unilevel"


class AccountStatus(Enum):
    """Deferred payment status of a node."""
    ACTIVE = "active"
    DEFERRED = "deferred"
    ADMIN_ACTIVATED = "admin_activated"


class VisitedPolicy(Enum):
    """How compression shares its visited set between lines of one root."""
    SHARED = "shared"  # first line to reach a node owns it
    PER_LINE = "per_line"


CENT = Decimal("0.01")
DEFAULT_MAX_COMPRESSED_DEPTH = 7
DEFAULT_UNILEVEL_SHARES = (Decimal("0.5"), Decimal("0.3"), Decimal("0.2"))


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ConfigurationError(f"Invalid decimal for {name}: {value!r}") from e


@dataclass(frozen=True)
class StairStep:
    """One row of the stair-step table."""
    number: int
    name: str
    percentage: Decimal  # fraction, 0.21 for 21%
    salesQuota: Decimal = Decimal("0")
    monthsToQualify: int = 1


def parse_stair_steps(rows: List[Dict[str, Any]]) -> Tuple[StairStep, ...]:
    """
    Convert raw stair-step rows (percent values) into StairStep objects.

    Args:
        rows: Dicts with step, name, percentage, salesQuota, monthsToQualify

    Returns:
        Steps sorted by number

    Raises:
        ConfigurationError: On missing keys, duplicates or non-positive step numbers
    """
    steps = []
    seen = set()

    for row in rows:
        try:
            number = int(row["step"])
            step = StairStep(
                number=number,
                name=str(row.get("name", f"Step {number}")),
                percentage=_to_decimal(row["percentage"], f"step {number} percentage") / 100,
                salesQuota=_to_decimal(row.get("salesQuota", "0"), f"step {number} salesQuota"),
                monthsToQualify=int(row.get("monthsToQualify", 1)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid stair-step row {row!r}: {e}") from e

        if number <= 0:
            raise ConfigurationError(f"Stair-step numbers start at 1, got {number}")
        if number in seen:
            raise ConfigurationError(f"Duplicate stair-step {number}")
        if step.monthsToQualify < 1:
            raise ConfigurationError(f"Step {number}: monthsToQualify must be >= 1")

        seen.add(number)
        steps.append(step)

    return tuple(sorted(steps, key=lambda s: s.number))


def parse_unilevel_levels(rows: List[Any]) -> Tuple[Decimal, ...]:
    """Percent shares of the unilevel pool (level 1 first) as fractions."""
    if not isinstance(rows, (list, tuple)):
        raise ConfigurationError(f"Unilevel level table must be a list, got {rows!r}")
    return tuple(_to_decimal(share, f"unilevel level {i}") / 100 for i, share in enumerate(rows, start=1))


@dataclass(frozen=True)
class PlanConfig:
    """
    Everything a computation needs to know about the compensation plans.

    Passed explicitly into every engine call, so two configurations
    (e.g. old and new rates during a rollout) can run side by side.
    """
    cycle_amount: Decimal
    cycle_commission: Decimal
    max_cycles_per_day: int
    leadership_bonus_percent: Decimal  # fraction, 0.02 for 2%
    stair_steps: Tuple[StairStep, ...] = field(default_factory=tuple)
    max_compressed_depth: int = DEFAULT_MAX_COMPRESSED_DEPTH
    compression_visit_limit: int = 10000
    visited_policy: VisitedPolicy = VisitedPolicy.SHARED
    deferred_recovery_amount: Decimal = Decimal("0")
    max_chain_depth: int = 500
    unilevel_pool_percent: Decimal = Decimal("0")  # fraction of the sale, 0 = plan off
    unilevel_levels: Tuple[Decimal, ...] = DEFAULT_UNILEVEL_SHARES

    def __post_init__(self):
        if self.cycle_amount <= 0:
            raise ConfigurationError(f"cycle_amount must be positive, got {self.cycle_amount}")
        if self.cycle_commission < 0:
            raise ConfigurationError(f"cycle_commission must be >= 0, got {self.cycle_commission}")
        if self.max_cycles_per_day < 0:
            raise ConfigurationError(f"max_cycles_per_day must be >= 0, got {self.max_cycles_per_day}")
        if self.leadership_bonus_percent < 0:
            raise ConfigurationError("leadership_bonus_percent must be >= 0")
        if self.max_compressed_depth < 1:
            raise ConfigurationError(f"max_compressed_depth must be >= 1, got {self.max_compressed_depth}")
        if self.compression_visit_limit < 1:
            raise ConfigurationError("compression_visit_limit must be >= 1")
        if self.deferred_recovery_amount < 0:
            raise ConfigurationError("deferred_recovery_amount must be >= 0")
        if self.max_chain_depth < 1:
            raise ConfigurationError("max_chain_depth must be >= 1")
        if not 0 <= self.unilevel_pool_percent <= 1:
            raise ConfigurationError(f"unilevel_pool_percent must be within 0..100%, got {self.unilevel_pool_percent}")
        if any(share < 0 for share in self.unilevel_levels):
            raise ConfigurationError("unilevel level shares must be >= 0")
        if sum(self.unilevel_levels, Decimal("0")) > 1:
            raise ConfigurationError("unilevel level shares add up to more than 100% of the pool")

    @classmethod
    def from_config(cls) -> "PlanConfig":
        """
        Build plan configuration from the Config module.

        Returns:
            PlanConfig with percent values converted to fractions

        Raises:
            ConfigurationError: If a value is invalid
        """
        if not Config.is_initialized():
            logger.warning("Config not initialized, loading from environment")
            Config.initialize_from_env()

        policy_raw = Config.get(Config.COMPRESSION_VISITED_POLICY, VisitedPolicy.SHARED.value)
        try:
            policy = VisitedPolicy(policy_raw)
        except ValueError as e:
            raise ConfigurationError(f"Unknown COMPRESSION_VISITED_POLICY '{policy_raw}'") from e

        plan = cls(
            cycle_amount=_to_decimal(Config.get(Config.BINARY_CYCLE_AMOUNT, "2000"), "BINARY_CYCLE_AMOUNT"),
            cycle_commission=_to_decimal(
                Config.get(Config.BINARY_CYCLE_COMMISSION, "200"), "BINARY_CYCLE_COMMISSION"
            ),
            max_cycles_per_day=int(Config.get(Config.BINARY_MAX_CYCLES_PER_DAY, 10)),
            leadership_bonus_percent=_to_decimal(
                Config.get(Config.LEADERSHIP_BONUS_PERCENT, "2"), "LEADERSHIP_BONUS_PERCENT"
            ) / 100,
            stair_steps=parse_stair_steps(Config.get_stair_steps()),
            max_compressed_depth=int(Config.get(Config.MAX_COMPRESSED_DEPTH, DEFAULT_MAX_COMPRESSED_DEPTH)),
            compression_visit_limit=int(Config.get(Config.COMPRESSION_VISIT_LIMIT, 10000)),
            visited_policy=policy,
            deferred_recovery_amount=_to_decimal(
                Config.get(Config.DEFERRED_RECOVERY_AMOUNT, "0"), "DEFERRED_RECOVERY_AMOUNT"
            ),
            max_chain_depth=int(Config.get(Config.MAX_CHAIN_DEPTH, 500)),
            unilevel_pool_percent=_to_decimal(
                Config.get(Config.UNILEVEL_POOL_PERCENT, "0"), "UNILEVEL_POOL_PERCENT"
            ) / 100,
            unilevel_levels=parse_unilevel_levels(Config.get_unilevel_levels()),
        )

        logger.info(
            f"Loaded plan: cycle={plan.cycle_amount}/{plan.cycle_commission}, "
            f"cap={plan.max_cycles_per_day}/day, steps={len(plan.stair_steps)}, "
            f"managerStep={plan.manager_step}"
        )
        return plan

    def replace(self, **changes) -> "PlanConfig":
        """Copy with some fields changed (validated again)."""
        return dataclasses.replace(self, **changes)

    @property
    def manager_step(self) -> int:
        """Highest configured step; 0 when no steps are configured."""
        if not self.stair_steps:
            return 0
        return self.stair_steps[-1].number

    @property
    def max_percentage(self) -> Decimal:
        if not self.stair_steps:
            return Decimal("0")
        return max(s.percentage for s in self.stair_steps)

    @property
    def unilevel_enabled(self) -> bool:
        return self.unilevel_pool_percent > 0 and any(self.unilevel_levels)

    def get_step(self, number: int) -> Optional[StairStep]:
        for step in self.stair_steps:
            if step.number == number:
                return step
        return None

    def step_percentage(self, number: Optional[int]) -> Decimal:
        """Commission fraction for a step; unknown steps and step 0 earn nothing."""
        step = self.get_step(number or 0)
        return step.percentage if step else Decimal("0")
