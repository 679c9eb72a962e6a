"""
API tests for the requests router.
Runs the router against an in-memory store with FastAPI's TestClient.
"""
import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from routes import requests as requests_routes
from services.business_hours import WorkingHoursConfig
from services.configuration_service import StaticWorkingHoursProvider
from services.legal_request import LegalRequest
from services.permission_service import PermissionService
from services.request_store import InMemoryRequestStore
from services.time_tracking_service import TimeTrackingService
from services.workflow_engine import WorkflowEngine
from services.workflow_types import (
    RequestStatus,
    LegalReviewStatus,
    ReviewOutcome,
    Principal,
)

MON_9 = datetime(2024, 1, 8, 9, 0)
ACTOR = {"id": "u-1", "display_name": "Lee Admin"}
ATTORNEY = {"id": "u-3", "display_name": "Ari Attorney"}


@pytest.fixture
def store():
    return InMemoryRequestStore()


@pytest.fixture
def client(store):
    clock = lambda: MON_9
    engine = WorkflowEngine(
        store,
        AsyncMock(spec=PermissionService),
        TimeTrackingService(StaticWorkingHoursProvider(WorkingHoursConfig()), clock=clock),
        clock=clock,
    )
    requests_routes.set_dependencies(engine)
    app = FastAPI()
    app.include_router(requests_routes.router, prefix="/api")
    return TestClient(app)


class TestRequestLifecycleApi:
    """Drive a request from draft to completion over HTTP."""

    def test_create_submit_assign_review_closeout(self, client):
        created = client.post("/api/requests", json={"actor": ACTOR, "title": "Fact sheet"})
        assert created.status_code == 200
        item_id = created.json()["item_id"]
        assert created.json()["new_status"] == "Draft"

        submitted = client.post(f"/api/requests/{item_id}/submit", json={"actor": ACTOR})
        assert submitted.json()["new_status"] == "Legal Intake"

        assigned = client.post(
            f"/api/requests/{item_id}/assign-attorney",
            json={"actor": ACTOR, "attorneys": [ATTORNEY]}
        )
        assert assigned.json()["new_status"] == "In Review"
        assert assigned.json()["updated_request"]["attorney"][0]["id"] == "u-3"

        progress = client.post(f"/api/requests/{item_id}/legal-review/progress", json={"actor": ATTORNEY})
        assert progress.json()["updated_request"]["legal_review_status"] == "In Progress"

        reviewed = client.post(
            f"/api/requests/{item_id}/legal-review",
            json={"actor": ATTORNEY, "outcome": "Approved"}
        )
        assert reviewed.json()["new_status"] == "Closeout"

        closed = client.post(f"/api/requests/{item_id}/closeout", json={"actor": ACTOR, "tracking_id": "TRK-9"})
        assert closed.json()["new_status"] == "Completed"
        assert closed.json()["updated_request"]["tracking_id"] == "TRK-9"

    def test_update_legal_review_status(self, client, store):
        store.seed(LegalRequest(
            id=2,
            status=RequestStatus.IN_REVIEW,
            legal_review_status=LegalReviewStatus.IN_PROGRESS,
            legal_status_updated_on=MON_9,
        ))
        response = client.post(
            "/api/requests/2/legal-review/status",
            json={"actor": ATTORNEY, "status": "Waiting On Submitter"}
        )
        assert response.status_code == 200
        assert response.json()["updated_request"]["legal_review_status"] == "Waiting On Submitter"

        rejected = client.post("/api/requests/2/legal-review/status", json={"actor": ATTORNEY, "status": "Completed"})
        assert rejected.status_code == 409

    def test_complete_regulatory_documents_comments_received(self, client, store):
        store.seed(LegalRequest(id=5, status=RequestStatus.AWAITING_REGULATORY_DOCUMENTS))
        response = client.post(
            "/api/requests/5/regulatory-documents/complete",
            json={"actor": ACTOR, "notes": "Letters in", "comments_received": False}
        )
        assert response.status_code == 200
        assert response.json()["new_status"] == "Completed"
        assert response.json()["updated_request"]["regulatory_comments_received"] is False

    def test_get_request(self, client, store):
        store.seed(LegalRequest(id=3, title="Brochure"))
        response = client.get("/api/requests/3")
        assert response.status_code == 200
        assert response.json()["title"] == "Brochure"
        assert response.json()["status"] == "Draft"

    def test_time_tracking_summary(self, client, store):
        store.seed(LegalRequest(
            id=4,
            status=RequestStatus.IN_REVIEW,
            legal_review_status=LegalReviewStatus.IN_PROGRESS,
            legal_status_updated_on=MON_9,
            legal_review_attorney_hours=1.5,
            total_reviewer_hours=1.5,
        ))
        response = client.get("/api/requests/4/time-tracking")
        assert response.status_code == 200
        data = response.json()
        assert data["stages"]["LegalReview"]["current_owner"] == "Attorney"
        assert data["total_reviewer_hours"] == 1.5


class TestErrorMapping:
    """Workflow errors become HTTP errors."""

    def test_not_found(self, client):
        response = client.post("/api/requests/999/submit", json={"actor": ACTOR})
        assert response.status_code == 404

    def test_get_not_found(self, client):
        assert client.get("/api/requests/999").status_code == 404

    def test_invalid_transition_is_conflict(self, client, store):
        store.seed(LegalRequest(id=1, status=RequestStatus.COMPLETED))
        response = client.post("/api/requests/1/hold", json={"actor": ACTOR, "reason": "x"})
        assert response.status_code == 409

    def test_resubmit_precondition_is_conflict(self, client, store):
        store.seed(LegalRequest(
            id=1,
            status=RequestStatus.IN_REVIEW,
            legal_review_status=LegalReviewStatus.IN_PROGRESS,
            legal_review_outcome=ReviewOutcome.APPROVED,
        ))
        response = client.post("/api/requests/1/legal-review/resubmit", json={"actor": ACTOR})
        assert response.status_code == 409
        assert "Waiting On Submitter" in response.json()["detail"]

    def test_invalid_outcome_is_validation_error(self, client, store):
        store.seed(LegalRequest(id=1, status=RequestStatus.IN_REVIEW))
        response = client.post("/api/requests/1/legal-review", json={"actor": ACTOR, "outcome": "Maybe"})
        assert response.status_code == 422

    def test_missing_actor_is_validation_error(self, client):
        assert client.post("/api/requests/1/submit", json={}).status_code == 422


class TestHoldResumeApi:

    def test_hold_and_resume(self, client, store):
        store.seed(LegalRequest(
            id=2,
            status=RequestStatus.LEGAL_INTAKE,
            submitted_by=Principal(id="u-9"),
            submitted_on=MON_9,
        ))
        held = client.post("/api/requests/2/hold", json={"actor": ACTOR, "reason": "Vendor delay"})
        assert held.json()["new_status"] == "On Hold"
        assert held.json()["updated_request"]["previous_status"] == "Legal Intake"

        resumed = client.post("/api/requests/2/resume", json={"actor": ACTOR})
        assert resumed.json()["new_status"] == "Legal Intake"
        assert resumed.json()["updated_request"]["on_hold_reason"] is None

    def test_cancel(self, client, store):
        store.seed(LegalRequest(id=8, status=RequestStatus.DRAFT))
        response = client.post("/api/requests/8/cancel", json={"actor": ACTOR, "reason": "Duplicate"})
        assert response.json()["new_status"] == "Cancelled"
        assert response.json()["updated_request"]["cancel_reason"] == "Duplicate"
