# affiliate_engine/config.py
"""
Configuration management for the affiliate compensation engine.
Loads from .env, keeps plan settings that admins manage at runtime.
"""
import os
import json
import logging
from typing import Any, Dict, List
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


DEFAULT_STAIR_STEP_TABLE = [
    {"step": 1, "name": "Associate", "percentage": 5, "salesQuota": 5000, "monthsToQualify": 1},
    {"step": 2, "name": "Senior Associate", "percentage": 9, "salesQuota": 15000, "monthsToQualify": 2},
    {"step": 3, "name": "Supervisor", "percentage": 13, "salesQuota": 30000, "monthsToQualify": 3},
    {"step": 4, "name": "Senior Supervisor", "percentage": 17, "salesQuota": 60000, "monthsToQualify": 3},
    {"step": 5, "name": "Manager", "percentage": 21, "salesQuota": 100000, "monthsToQualify": 3},
]

# Share of the unilevel pool per sponsor level, in percent (level 1 first)
DEFAULT_UNILEVEL_LEVELS = [50, 30, 20]


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Set dynamic value (admin changed the cycle amount)
        Config.set(Config.BINARY_CYCLE_AMOUNT, "2500")
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Logging
    LOG_LEVEL = "LOG_LEVEL"

    # Binary plan
    BINARY_CYCLE_AMOUNT = "BINARY_CYCLE_AMOUNT"
    BINARY_CYCLE_COMMISSION = "BINARY_CYCLE_COMMISSION"
    BINARY_MAX_CYCLES_PER_DAY = "BINARY_MAX_CYCLES_PER_DAY"
    DEFERRED_RECOVERY_AMOUNT = "DEFERRED_RECOVERY_AMOUNT"

    # Stair-step plan
    STAIR_STEP_TABLE = "STAIR_STEP_TABLE"

    # Leadership plan
    LEADERSHIP_BONUS_PERCENT = "LEADERSHIP_BONUS_PERCENT"
    MAX_COMPRESSED_DEPTH = "MAX_COMPRESSED_DEPTH"
    COMPRESSION_VISIT_LIMIT = "COMPRESSION_VISIT_LIMIT"
    COMPRESSION_VISITED_POLICY = "COMPRESSION_VISITED_POLICY"

    # Unilevel plan
    UNILEVEL_POOL_PERCENT = "UNILEVEL_POOL_PERCENT"
    UNILEVEL_LEVEL_TABLE = "UNILEVEL_LEVEL_TABLE"

    # Engine
    MAX_CHAIN_DEPTH = "MAX_CHAIN_DEPTH"
    TRANSACTION_MAX_RETRIES = "TRANSACTION_MAX_RETRIES"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
        BINARY_CYCLE_AMOUNT,
        BINARY_CYCLE_COMMISSION,
        STAIR_STEP_TABLE,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///affiliate_engine.db"
            )

            cls._config[cls.LOG_LEVEL] = os.getenv("LOG_LEVEL", "INFO").upper()

            # Binary plan - amounts stay strings, PlanConfig converts them to Decimal
            cls._config[cls.BINARY_CYCLE_AMOUNT] = os.getenv("BINARY_CYCLE_AMOUNT", "2000")
            cls._config[cls.BINARY_CYCLE_COMMISSION] = os.getenv("BINARY_CYCLE_COMMISSION", "200")
            cls._config[cls.BINARY_MAX_CYCLES_PER_DAY] = int(
                os.getenv("BINARY_MAX_CYCLES_PER_DAY", "10")
            )
            cls._config[cls.DEFERRED_RECOVERY_AMOUNT] = os.getenv("DEFERRED_RECOVERY_AMOUNT", "0")

            # Leadership plan
            cls._config[cls.LEADERSHIP_BONUS_PERCENT] = os.getenv("LEADERSHIP_BONUS_PERCENT", "2")
            cls._config[cls.MAX_COMPRESSED_DEPTH] = int(os.getenv("MAX_COMPRESSED_DEPTH", "7"))
            cls._config[cls.COMPRESSION_VISIT_LIMIT] = int(
                os.getenv("COMPRESSION_VISIT_LIMIT", "10000")
            )
            cls._config[cls.COMPRESSION_VISITED_POLICY] = os.getenv(
                "COMPRESSION_VISITED_POLICY", "shared"
            ).lower()

            # Unilevel plan - pool percent of the sale, 0 disables the plan
            cls._config[cls.UNILEVEL_POOL_PERCENT] = os.getenv("UNILEVEL_POOL_PERCENT", "0")
            levels_str = os.getenv("UNILEVEL_LEVEL_TABLE")
            if levels_str:
                try:
                    cls._config[cls.UNILEVEL_LEVEL_TABLE] = json.loads(levels_str)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse UNILEVEL_LEVEL_TABLE JSON: {e}")
                    raise
            else:
                cls._config[cls.UNILEVEL_LEVEL_TABLE] = list(DEFAULT_UNILEVEL_LEVELS)

            # Engine
            cls._config[cls.MAX_CHAIN_DEPTH] = int(os.getenv("MAX_CHAIN_DEPTH", "500"))
            cls._config[cls.TRANSACTION_MAX_RETRIES] = int(
                os.getenv("TRANSACTION_MAX_RETRIES", "3")
            )

            # Stair-step table (JSON format)
            table_str = os.getenv("STAIR_STEP_TABLE")
            if table_str:
                try:
                    cls._config[cls.STAIR_STEP_TABLE] = json.loads(table_str)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse STAIR_STEP_TABLE JSON: {e}")
                    raise
            else:
                cls._config[cls.STAIR_STEP_TABLE] = list(DEFAULT_STAIR_STEP_TABLE)

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()

    @classmethod
    def get_stair_steps(cls) -> List[Dict[str, Any]]:
        """Raw stair-step rows, falling back to the built-in table."""
        return cls.get(cls.STAIR_STEP_TABLE) or list(DEFAULT_STAIR_STEP_TABLE)

    @classmethod
    def get_unilevel_levels(cls) -> List[Any]:
        """Pool share per sponsor level in percent, level 1 first."""
        levels = cls.get(cls.UNILEVEL_LEVEL_TABLE)
        return list(DEFAULT_UNILEVEL_LEVELS) if levels is None else levels

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def reset(cls) -> None:
        """Drop all loaded values. Used by tests between configurations."""
        cls._config = {}
        cls._initialized = False
