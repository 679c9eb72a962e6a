"""
Legal Review Hub - Configuration Service

Working-hours calendar provider for time tracking.

Admins maintain the calendar as rows in the ``configuration`` collection:
    {"key": "WorkingHoursStart", "value": "8", "is_active": true}
    {"key": "WorkingHoursEnd", "value": "17", "is_active": true}
    {"key": "WorkingDays", "value": "1,2,3,4,5", "is_active": true}

Values are cached for CONFIG_CACHE_TTL_SECONDS. Missing rows use the env defaults,
and any load or parse error falls back to the env calendar so that time tracking
never blocks on configuration.
"""

import logging
import time
from typing import Optional, Dict, Callable

from services import legal_config
from services.business_hours import WorkingHoursConfig, parse_working_hours_config

logger = logging.getLogger(__name__)

WORKING_HOURS_START_KEY = "WorkingHoursStart"
WORKING_HOURS_END_KEY = "WorkingHoursEnd"
WORKING_DAYS_KEY = "WorkingDays"

WORKING_HOURS_KEYS = [WORKING_HOURS_START_KEY, WORKING_HOURS_END_KEY, WORKING_DAYS_KEY]


def get_default_working_hours_config() -> WorkingHoursConfig:
    """Calendar from the WORKING_HOURS_* environment settings."""
    return parse_working_hours_config(
        legal_config.WORKING_HOURS_START,
        legal_config.WORKING_HOURS_END,
        legal_config.WORKING_DAYS,
        legal_config.WORKING_HOURS_TIMEZONE,
    )


class StaticWorkingHoursProvider:
    """Always returns the same calendar."""

    def __init__(self, config: WorkingHoursConfig = None):
        self.config = config or get_default_working_hours_config()

    async def get_working_hours_config(self) -> WorkingHoursConfig:
        return self.config


class ConfigurationService:
    """Mongo-backed working-hours provider with a TTL cache."""

    def __init__(
        self,
        db,
        collection_name: str = legal_config.CONFIGURATION_COLLECTION,
        ttl_seconds: int = legal_config.CONFIG_CACHE_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic
    ):
        self.collection = db[collection_name]
        self.ttl_seconds = ttl_seconds
        self.timer = timer
        self._cached: Optional[WorkingHoursConfig] = None
        self._cached_at: float = 0.0

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    async def _load_values(self) -> Dict[str, str]:
        rows = await self.collection.find(
            {"key": {"$in": WORKING_HOURS_KEYS}, "is_active": True},
            {"_id": 0, "key": 1, "value": 1}
        ).to_list(len(WORKING_HOURS_KEYS) * 10)
        return {row["key"]: row.get("value") for row in rows}

    async def get_working_hours_config(self) -> WorkingHoursConfig:
        if self._cached is not None and (self.timer() - self._cached_at) < self.ttl_seconds:
            return self._cached

        try:
            values = await self._load_values()
            config = parse_working_hours_config(
                values.get(WORKING_HOURS_START_KEY, legal_config.WORKING_HOURS_START),
                values.get(WORKING_HOURS_END_KEY, legal_config.WORKING_HOURS_END),
                values.get(WORKING_DAYS_KEY, legal_config.WORKING_DAYS),
                legal_config.WORKING_HOURS_TIMEZONE,
            )
        except Exception as e:
            logger.warning("Failed to load working hours configuration, using defaults: %s", str(e))
            config = get_default_working_hours_config()

        self._cached = config
        self._cached_at = self.timer()
        logger.debug("Working hours configuration loaded: %s", config.to_dict())
        return config
