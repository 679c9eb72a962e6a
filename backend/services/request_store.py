"""
Legal Review Hub - Request Store

The store is the authoritative copy of every legal request. The workflow engine
writes a field diff and always re-reads the request afterwards.

RequestStore is the abstraction the engine depends on; MongoRequestStore is the
production implementation and InMemoryRequestStore backs tests and local runs.
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any

from services.legal_request import LegalRequest, serialize_fields
from services.throttle_retry import with_retry, DEFAULT_MAX_RETRIES
from services.workflow_types import RequestNotFoundError, RequestStoreError

logger = logging.getLogger(__name__)


class RequestStore(ABC):
    """Persistence contract for legal requests."""

    @abstractmethod
    async def load_request_by_id(self, item_id: int) -> LegalRequest:
        """
        Raises:
            RequestNotFoundError: if no request has this id
            RequestStoreError: on any other read failure
        """
        pass

    @abstractmethod
    async def update_request(self, item_id: int, diff: Dict[str, Any]) -> None:
        """
        Persist a partial field diff. Fails loudly.

        Raises:
            RequestStoreError: on any write failure
        """
        pass

    @abstractmethod
    async def create_request(self, fields: Dict[str, Any]) -> int:
        """Insert a new request and return its id."""
        pass


class InMemoryRequestStore(RequestStore):
    """Dict-backed store holding requests in their serialized form."""

    def __init__(self):
        self._items: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1

    def seed(self, request: LegalRequest) -> LegalRequest:
        self._items[request.id] = request.to_dict()
        self._next_id = max(self._next_id, request.id + 1)
        return request

    async def load_request_by_id(self, item_id: int) -> LegalRequest:
        if item_id not in self._items:
            raise RequestNotFoundError(item_id)
        try:
            return LegalRequest.from_dict(copy.deepcopy(self._items[item_id]))
        except (TypeError, ValueError) as e:
            raise RequestStoreError(f"Failed to load item: {e}", details={"item_id": item_id}) from e

    async def update_request(self, item_id: int, diff: Dict[str, Any]) -> None:
        if item_id not in self._items:
            raise RequestStoreError(f"Failed to update item: Request {item_id} not found", details={"item_id": item_id})
        try:
            self._items[item_id].update(serialize_fields(diff))
        except ValueError as e:
            raise RequestStoreError(f"Failed to update item: {e}", details={"item_id": item_id}) from e

    async def create_request(self, fields: Dict[str, Any]) -> int:
        item_id = self._next_id
        self._next_id += 1
        self._items[item_id] = LegalRequest(id=item_id).to_dict()
        await self.update_request(item_id, fields)
        return item_id


class MongoRequestStore(RequestStore):
    """
    Requests in a MongoDB collection, one document per request keyed by ``id``.

    Writes use ``$set`` with the serialized diff. Throttling and transient
    connection errors are retried with backoff.
    """

    def __init__(self, db, collection_name: str = "legal_requests", max_retries: int = DEFAULT_MAX_RETRIES):
        self.db = db
        self.collection = db[collection_name]
        self.collection_name = collection_name
        self.max_retries = max_retries

    async def load_request_by_id(self, item_id: int) -> LegalRequest:
        try:
            doc = await with_retry(
                lambda: self.collection.find_one({"id": item_id}, {"_id": 0}),
                operation_name=f"load request {item_id}",
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to load request %s: %s", item_id, str(e))
            raise RequestStoreError(f"Failed to load item: {e}", details={"item_id": item_id}) from e

        if doc is None:
            raise RequestNotFoundError(item_id)

        try:
            return LegalRequest.from_dict(doc)
        except (TypeError, ValueError) as e:
            raise RequestStoreError(f"Failed to load item: {e}", details={"item_id": item_id}) from e

    async def update_request(self, item_id: int, diff: Dict[str, Any]) -> None:
        try:
            payload = serialize_fields(diff)
            payload["modified_utc"] = datetime.now(timezone.utc).isoformat()
            result = await with_retry(
                lambda: self.collection.update_one({"id": item_id}, {"$set": payload}),
                operation_name=f"update request {item_id}",
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to update request %s: %s", item_id, str(e))
            raise RequestStoreError(f"Failed to update item: {e}", details={"item_id": item_id}) from e

        if result.matched_count == 0:
            raise RequestStoreError(
                f"Failed to update item: Request {item_id} not found",
                details={"item_id": item_id}
            )

    async def create_request(self, fields: Dict[str, Any]) -> int:
        try:
            last = await self.collection.find_one({}, {"_id": 0, "id": 1}, sort=[("id", -1)])
            item_id = (last["id"] if last else 0) + 1
            doc = LegalRequest(id=item_id).to_dict()
            doc.update(serialize_fields(fields))
            doc["modified_utc"] = datetime.now(timezone.utc).isoformat()
            await with_retry(
                lambda: self.collection.insert_one(doc),
                operation_name="create request",
                max_retries=self.max_retries,
            )
        except Exception as e:
            logger.error("Failed to create request: %s", str(e))
            raise RequestStoreError(f"Failed to create item: {e}") from e

        logger.info("Created request %s in %s", item_id, self.collection_name)
        return item_id
