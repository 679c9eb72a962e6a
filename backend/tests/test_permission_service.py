"""
Unit tests for the APIM permission service client.
Outbound calls are served by httpx.MockTransport.
"""
import json
import pytest
import httpx
from unittest.mock import patch

from services.permission_service import (
    ApimPermissionService,
    NoOpPermissionService,
    create_permission_service,
)
from services.workflow_types import PermissionServiceError, RequestStatus


def make_service(handler, base_url="https://apim.example.com/"):
    return ApimPermissionService(
        base_url=base_url,
        client_id="client-123",
        site_url="https://tenant.sharepoint.com/sites/legal",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestApimPermissionService:

    @pytest.mark.asyncio
    async def test_initialize_posts_request_details(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True})

        await make_service(handler).initialize_permissions(12, "CRR-12")

        assert len(calls) == 1
        assert str(calls[0].url) == "https://apim.example.com/api/permissions/initialize"
        assert calls[0].headers["X-Client-Id"] == "client-123"
        body = json.loads(calls[0].content)
        assert body == {
            "requestId": 12,
            "requestTitle": "CRR-12",
            "siteUrl": "https://tenant.sharepoint.com/sites/legal",
            "listTitle": "Requests",
        }

    @pytest.mark.asyncio
    async def test_manage_posts_status(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True})

        await make_service(handler).manage_permissions(12, RequestStatus.CLOSEOUT)

        assert calls[0].url.path == "/api/permissions/manage"
        assert json.loads(calls[0].content)["status"] == "Closeout"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        service = make_service(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(PermissionServiceError) as exc:
            await service.manage_permissions(1, RequestStatus.IN_REVIEW)
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_unsuccessful_response_raises(self):
        service = make_service(lambda request: httpx.Response(200, json={"success": False, "message": "no group"}))
        with pytest.raises(PermissionServiceError, match="no group"):
            await service.initialize_permissions(1, "CRR-1")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(PermissionServiceError, match="request failed"):
            await make_service(handler).manage_permissions(1, RequestStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_missing_base_url_raises(self):
        service = make_service(lambda request: httpx.Response(200, json={"success": True}), base_url="")
        with pytest.raises(PermissionServiceError, match="not configured"):
            await service.manage_permissions(1, RequestStatus.CANCELLED)


class TestCreatePermissionService:

    def test_disabled_flag_uses_no_op(self):
        with patch("services.legal_config.AZURE_FUNCTIONS_ENABLED", False):
            assert isinstance(create_permission_service(), NoOpPermissionService)

    def test_enabled_flag_uses_apim(self):
        with patch("services.legal_config.AZURE_FUNCTIONS_ENABLED", True):
            assert isinstance(create_permission_service(), ApimPermissionService)

    @pytest.mark.asyncio
    async def test_no_op_never_raises(self):
        service = NoOpPermissionService()
        await service.initialize_permissions(1, "CRR-1")
        await service.manage_permissions(1, RequestStatus.COMPLETED)
