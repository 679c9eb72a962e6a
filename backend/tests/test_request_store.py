"""
Unit tests for request persistence.
Tests services/request_store.py and the request model codecs.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from pymongo.errors import AutoReconnect

from services.legal_request import LegalRequest, serialize_fields
from services.request_store import InMemoryRequestStore, MongoRequestStore
from services.workflow_types import (
    RequestStatus,
    ReviewOutcome,
    Principal,
    RequestNotFoundError,
    RequestStoreError,
)

NOW = datetime(2024, 1, 8, 17, 30, tzinfo=timezone.utc)


def make_db(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db


class TestSerialization:

    def test_serialize_fields(self):
        payload = serialize_fields({
            "status": RequestStatus.ON_HOLD,
            "on_hold_since": NOW,
            "on_hold_by": Principal(id="u-1"),
            "legal_review_outcome": ReviewOutcome.APPROVED,
        })
        assert payload == {
            "status": "On Hold",
            "on_hold_since": "2024-01-08T17:30:00+00:00",
            "on_hold_by": {"id": "u-1", "display_name": None, "email": None},
            "legal_review_outcome": "Approved",
        }

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="Unknown request fields"):
            serialize_fields({"workflow_status": "x"})

    def test_from_dict_ignores_mongo_keys_and_nulls(self):
        request = LegalRequest.from_dict({
            "_id": "abc",
            "id": 3,
            "status": "In Review",
            "attorney": [{"id": "u-3"}],
            "legal_status_updated_on": "2024-01-08T17:30:00+00:00",
            "legal_review_attorney_hours": None,
            "modified_utc": "2024-01-08T17:30:00+00:00",
        })
        assert request.status == RequestStatus.IN_REVIEW
        assert request.attorney == [Principal(id="u-3")]
        assert request.legal_status_updated_on == NOW
        assert request.legal_review_attorney_hours == 0.0


class TestInMemoryRequestStore:

    @pytest.mark.asyncio
    async def test_create_and_load(self):
        store = InMemoryRequestStore()
        item_id = await store.create_request({"title": "Brochure"})
        request = await store.load_request_by_id(item_id)
        assert request.id == item_id
        assert request.title == "Brochure"
        assert request.status == RequestStatus.DRAFT

    @pytest.mark.asyncio
    async def test_load_missing(self):
        with pytest.raises(RequestNotFoundError):
            await InMemoryRequestStore().load_request_by_id(1)

    @pytest.mark.asyncio
    async def test_update_missing(self):
        with pytest.raises(RequestStoreError, match="Failed to update item"):
            await InMemoryRequestStore().update_request(1, {"title": "x"})

    @pytest.mark.asyncio
    async def test_update_unknown_field(self):
        store = InMemoryRequestStore()
        store.seed(LegalRequest(id=1))
        with pytest.raises(RequestStoreError):
            await store.update_request(1, {"not_a_field": 1})


class TestMongoRequestStore:

    @pytest.mark.asyncio
    async def test_load(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value={"id": 1, "status": "Closeout"})
        request = await MongoRequestStore(make_db(collection)).load_request_by_id(1)

        assert request.status == RequestStatus.CLOSEOUT
        collection.find_one.assert_awaited_once_with({"id": 1}, {"_id": 0})

    @pytest.mark.asyncio
    async def test_load_not_found(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value=None)
        with pytest.raises(RequestNotFoundError):
            await MongoRequestStore(make_db(collection)).load_request_by_id(1)

    @pytest.mark.asyncio
    async def test_update_uses_set(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        await MongoRequestStore(make_db(collection)).update_request(1, {"status": RequestStatus.COMPLETED})

        query, update = collection.update_one.await_args.args
        assert query == {"id": 1}
        assert update["$set"]["status"] == "Completed"
        assert "modified_utc" in update["$set"]

    @pytest.mark.asyncio
    async def test_update_no_match_fails(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        with pytest.raises(RequestStoreError, match="not found"):
            await MongoRequestStore(make_db(collection)).update_request(1, {"title": "x"})

    @pytest.mark.asyncio
    async def test_update_retries_transient_errors(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(side_effect=[AutoReconnect("stepdown"), MagicMock(matched_count=1)])
        with patch("services.throttle_retry.asyncio.sleep", new=AsyncMock()):
            await MongoRequestStore(make_db(collection)).update_request(1, {"title": "x"})
        assert collection.update_one.await_count == 2

    @pytest.mark.asyncio
    async def test_update_failure_is_wrapped(self):
        collection = MagicMock()
        collection.update_one = AsyncMock(side_effect=RuntimeError("write concern error"))
        with pytest.raises(RequestStoreError, match="Failed to update item: write concern error"):
            await MongoRequestStore(make_db(collection)).update_request(1, {"title": "x"})

    @pytest.mark.asyncio
    async def test_create_assigns_next_id(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value={"id": 41})
        collection.insert_one = AsyncMock()
        item_id = await MongoRequestStore(make_db(collection)).create_request({"title": "New"})

        assert item_id == 42
        doc = collection.insert_one.await_args.args[0]
        assert doc["id"] == 42
        assert doc["title"] == "New"
        assert doc["status"] == "Draft"
