"""
Legal Review Hub - Permission Service

Item-level permissions are owned by Azure Functions behind API Management (APIM).
The workflow engine calls this service after a status change; failures are
logged by the engine and never roll back the transition.

Endpoints:
- POST {APIM_BASE_URL}/api/permissions/initialize  (on submit)
- POST {APIM_BASE_URL}/api/permissions/manage      (on status changes)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

import httpx

from services import legal_config
from services.workflow_types import PermissionServiceError, RequestStatus

logger = logging.getLogger(__name__)


class PermissionService(ABC):
    """Access-control collaborator. Both calls raise PermissionServiceError on failure."""

    @abstractmethod
    async def initialize_permissions(self, item_id: int, title: str) -> None:
        pass

    @abstractmethod
    async def manage_permissions(self, item_id: int, new_status: RequestStatus) -> None:
        pass


class NoOpPermissionService(PermissionService):
    """Used when the Azure Functions integration is disabled."""

    async def initialize_permissions(self, item_id: int, title: str) -> None:
        logger.info("Permission initialization skipped (integration disabled): item=%s", item_id)

    async def manage_permissions(self, item_id: int, new_status: RequestStatus) -> None:
        logger.info(
            "Permission management skipped (integration disabled): item=%s, status=%s",
            item_id, new_status.value
        )


class ApimPermissionService(PermissionService):
    """Calls the permission Azure Functions through APIM with httpx."""

    def __init__(
        self,
        base_url: str = None,
        client_id: str = None,
        site_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url if base_url is not None else legal_config.APIM_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else legal_config.APIM_API_CLIENT_ID
        self.site_url = site_url if site_url is not None else legal_config.SITE_URL
        self.timeout = timeout or legal_config.PERMISSION_REQUEST_TIMEOUT
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.client_id:
            headers["X-Client-Id"] = self.client_id
        return headers

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise PermissionServiceError("APIM base URL is not configured")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise PermissionServiceError(f"Permission service request failed: {e}", details={"url": url}) from e

        if resp.status_code != 200:
            raise PermissionServiceError(
                f"Permission service error: {resp.status_code} - {resp.text[:300]}",
                status_code=resp.status_code,
                details={"url": url}
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PermissionServiceError(f"Invalid permission service response: {e}", details={"url": url}) from e

        if not isinstance(data, dict):
            data = {}
        if not data.get("success"):
            raise PermissionServiceError(
                f"Permission service reported failure: {data.get('message') or data.get('error') or 'unknown error'}",
                status_code=resp.status_code,
                details={"url": url, "response": data}
            )
        return data

    async def initialize_permissions(self, item_id: int, title: str) -> None:
        await self._post("/api/permissions/initialize", {
            "requestId": item_id,
            "requestTitle": title,
            "siteUrl": self.site_url,
            "listTitle": legal_config.REQUESTS_LIST_TITLE,
        })
        logger.info("Permissions initialized: item=%s, title=%s", item_id, title)

    async def manage_permissions(self, item_id: int, new_status: RequestStatus) -> None:
        await self._post("/api/permissions/manage", {
            "requestId": item_id,
            "status": new_status.value,
            "siteUrl": self.site_url,
            "listTitle": legal_config.REQUESTS_LIST_TITLE,
        })
        logger.info("Permissions updated: item=%s, status=%s", item_id, new_status.value)


def create_permission_service() -> PermissionService:
    """Pick the implementation from the AZURE_FUNCTIONS_ENABLED flag."""
    if legal_config.AZURE_FUNCTIONS_ENABLED:
        return ApimPermissionService()
    return NoOpPermissionService()
