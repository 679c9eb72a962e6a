"""
Unit tests for the working-hours configuration provider.
The Mongo collection is mocked.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from services.configuration_service import (
    ConfigurationService,
    StaticWorkingHoursProvider,
    get_default_working_hours_config,
)
from services.business_hours import WorkingHoursConfig


class FakeTimer:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def make_db(rows=None, error=None):
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=rows or [], side_effect=error)
    collection = MagicMock()
    collection.find = MagicMock(return_value=cursor)
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db, collection


class TestConfigurationService:

    @pytest.mark.asyncio
    async def test_loads_active_rows(self):
        db, collection = make_db([
            {"key": "WorkingHoursStart", "value": "9"},
            {"key": "WorkingHoursEnd", "value": "18"},
            {"key": "WorkingDays", "value": "1,2,3,4"},
        ])
        config = await ConfigurationService(db).get_working_hours_config()

        assert (config.start_hour, config.end_hour, config.working_days) == (9, 18, [1, 2, 3, 4])
        query = collection.find.call_args.args[0]
        assert query["is_active"] is True

    @pytest.mark.asyncio
    async def test_missing_rows_use_defaults(self):
        db, _ = make_db([{"key": "WorkingHoursEnd", "value": "16"}])
        config = await ConfigurationService(db).get_working_hours_config()
        assert (config.start_hour, config.end_hour) == (8, 16)
        assert config.working_days == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self):
        db, collection = make_db([{"key": "WorkingHoursStart", "value": "7"}])
        timer = FakeTimer()
        service = ConfigurationService(db, ttl_seconds=300, timer=timer)

        await service.get_working_hours_config()
        timer.value += 299
        await service.get_working_hours_config()
        assert collection.find.call_count == 1

        timer.value += 2
        await service.get_working_hours_config()
        assert collection.find.call_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache_forces_reload(self):
        db, collection = make_db([])
        service = ConfigurationService(db, timer=FakeTimer())
        await service.get_working_hours_config()
        service.clear_cache()
        await service.get_working_hours_config()
        assert collection.find.call_count == 2

    @pytest.mark.asyncio
    async def test_load_error_falls_back_to_defaults(self):
        db, _ = make_db(error=RuntimeError("connection refused"))
        config = await ConfigurationService(db).get_working_hours_config()
        assert config == get_default_working_hours_config()

    @pytest.mark.asyncio
    async def test_invalid_rows_fall_back_to_defaults(self):
        db, _ = make_db([
            {"key": "WorkingHoursStart", "value": "18"},
            {"key": "WorkingHoursEnd", "value": "9"},
        ])
        config = await ConfigurationService(db).get_working_hours_config()
        assert (config.start_hour, config.end_hour) == (8, 17)


class TestStaticWorkingHoursProvider:

    @pytest.mark.asyncio
    async def test_returns_given_config(self):
        config = WorkingHoursConfig(start_hour=10, end_hour=14, working_days=[1])
        assert await StaticWorkingHoursProvider(config).get_working_hours_config() is config
