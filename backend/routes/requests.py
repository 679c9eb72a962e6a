"""
Legal Review Hub - Requests Router

Workflow actions on legal review requests. Each POST runs one engine action and
returns the reloaded request with the action's correlation id.
"""

from fastapi import APIRouter, HTTPException
from typing import Optional, List
from pydantic import BaseModel
import logging

from services.time_tracking_service import get_time_tracking_summary
from services.workflow_types import (
    ComplianceReviewStatus,
    LegalReviewStatus,
    Principal,
    ReviewAudience,
    ReviewOutcome,
    WorkflowError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])

# Workflow engine - set by main app
workflow_engine = None

def set_dependencies(engine):
    global workflow_engine
    workflow_engine = engine


# ==================== MODELS ====================

class Actor(BaseModel):
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    def to_principal(self) -> Principal:
        return Principal(id=self.id, display_name=self.display_name, email=self.email)


class ActorBody(BaseModel):
    actor: Actor


class CreateDraftBody(ActorBody):
    title: str
    review_audience: ReviewAudience = ReviewAudience.LEGAL
    request_id: Optional[str] = None


class AssignAttorneyBody(ActorBody):
    attorneys: List[Actor] = []
    notes: Optional[str] = None
    review_audience: Optional[ReviewAudience] = None


class CommitteeBody(ActorBody):
    notes: Optional[str] = None
    review_audience: Optional[ReviewAudience] = None


class NotesBody(ActorBody):
    notes: Optional[str] = None


class RegulatoryFlags(BaseModel):
    is_foreside_review_required: Optional[bool] = None
    is_retail_use: Optional[bool] = None


class SubmitLegalReviewBody(ActorBody):
    outcome: ReviewOutcome
    notes: Optional[str] = None


class SubmitComplianceReviewBody(SubmitLegalReviewBody, RegulatoryFlags):
    pass


class ComplianceChangesBody(NotesBody, RegulatoryFlags):
    pass


class SaveLegalProgressBody(ActorBody):
    outcome: Optional[ReviewOutcome] = None
    notes: Optional[str] = None


class SaveComplianceProgressBody(SaveLegalProgressBody, RegulatoryFlags):
    pass


class LegalStatusBody(ActorBody):
    status: LegalReviewStatus


class ComplianceStatusBody(ActorBody):
    status: ComplianceReviewStatus


class CloseoutBody(ActorBody):
    tracking_id: Optional[str] = None
    notes: Optional[str] = None
    comments_acknowledged: Optional[bool] = None


class RegulatoryDocumentsBody(NotesBody):
    comments_received: Optional[bool] = None


class ReasonBody(ActorBody):
    reason: str


# ==================== HELPERS ====================

async def _run(action_name: str, coro):
    try:
        result = await coro
    except WorkflowError as e:
        logger.warning("Workflow action %s failed: %s", action_name, e.message)
        raise HTTPException(status_code=e.status_code or 500, detail=e.message)
    return result.to_dict()


# ==================== READ ENDPOINTS ====================

@router.get("/{item_id}")
async def get_request(item_id: int):
    """Get the current state of a request."""
    try:
        request = await workflow_engine.get_request(item_id)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code or 500, detail=e.message)
    return request.to_dict()


@router.get("/{item_id}/time-tracking")
async def get_time_tracking(item_id: int):
    """Per-stage hour buckets, current owners and totals."""
    try:
        request = await workflow_engine.get_request(item_id)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code or 500, detail=e.message)
    return get_time_tracking_summary(request)


# ==================== ACTION ENDPOINTS ====================

@router.post("")
async def create_draft(body: CreateDraftBody):
    """Create a new draft request."""
    return await _run("create_draft", workflow_engine.create_draft(
        body.actor.to_principal(), body.title, body.review_audience, body.request_id
    ))


@router.post("/{item_id}/submit")
async def submit_request(item_id: int, body: ActorBody):
    return await _run("submit", workflow_engine.submit_request(item_id, body.actor.to_principal()))


@router.post("/{item_id}/assign-attorney")
async def assign_attorney(item_id: int, body: AssignAttorneyBody):
    return await _run("assign_attorney", workflow_engine.assign_attorney(
        item_id,
        body.actor.to_principal(),
        attorneys=[a.to_principal() for a in body.attorneys],
        notes=body.notes,
        review_audience=body.review_audience,
    ))


@router.post("/{item_id}/send-to-committee")
async def send_to_committee(item_id: int, body: CommitteeBody):
    return await _run("send_to_committee", workflow_engine.send_to_committee(
        item_id, body.actor.to_principal(), notes=body.notes, review_audience=body.review_audience
    ))


@router.post("/{item_id}/assign-from-committee")
async def assign_from_committee(item_id: int, body: AssignAttorneyBody):
    return await _run("assign_from_committee", workflow_engine.assign_from_committee(
        item_id,
        body.actor.to_principal(),
        [a.to_principal() for a in body.attorneys],
        notes=body.notes,
        review_audience=body.review_audience,
    ))


@router.post("/{item_id}/legal-review")
async def submit_legal_review(item_id: int, body: SubmitLegalReviewBody):
    return await _run("submit_legal_review", workflow_engine.submit_legal_review(
        item_id, body.actor.to_principal(), body.outcome, notes=body.notes
    ))


@router.post("/{item_id}/compliance-review")
async def submit_compliance_review(item_id: int, body: SubmitComplianceReviewBody):
    return await _run("submit_compliance_review", workflow_engine.submit_compliance_review(
        item_id,
        body.actor.to_principal(),
        body.outcome,
        notes=body.notes,
        is_foreside_review_required=body.is_foreside_review_required,
        is_retail_use=body.is_retail_use,
    ))


@router.post("/{item_id}/legal-review/request-changes")
async def request_legal_review_changes(item_id: int, body: NotesBody):
    return await _run("request_legal_review_changes", workflow_engine.request_legal_review_changes(
        item_id, body.actor.to_principal(), notes=body.notes
    ))


@router.post("/{item_id}/compliance-review/request-changes")
async def request_compliance_review_changes(item_id: int, body: ComplianceChangesBody):
    return await _run("request_compliance_review_changes", workflow_engine.request_compliance_review_changes(
        item_id,
        body.actor.to_principal(),
        notes=body.notes,
        is_foreside_review_required=body.is_foreside_review_required,
        is_retail_use=body.is_retail_use,
    ))


@router.post("/{item_id}/legal-review/resubmit")
async def resubmit_for_legal_review(item_id: int, body: NotesBody):
    return await _run("resubmit_for_legal_review", workflow_engine.resubmit_for_legal_review(
        item_id, body.actor.to_principal(), notes=body.notes
    ))


@router.post("/{item_id}/compliance-review/resubmit")
async def resubmit_for_compliance_review(item_id: int, body: NotesBody):
    return await _run("resubmit_for_compliance_review", workflow_engine.resubmit_for_compliance_review(
        item_id, body.actor.to_principal(), notes=body.notes
    ))


@router.post("/{item_id}/legal-review/progress")
async def save_legal_review_progress(item_id: int, body: SaveLegalProgressBody):
    return await _run("save_legal_review_progress", workflow_engine.save_legal_review_progress(
        item_id, body.actor.to_principal(), outcome=body.outcome, notes=body.notes
    ))


@router.post("/{item_id}/compliance-review/progress")
async def save_compliance_review_progress(item_id: int, body: SaveComplianceProgressBody):
    return await _run("save_compliance_review_progress", workflow_engine.save_compliance_review_progress(
        item_id,
        body.actor.to_principal(),
        outcome=body.outcome,
        notes=body.notes,
        is_foreside_review_required=body.is_foreside_review_required,
        is_retail_use=body.is_retail_use,
    ))


@router.post("/{item_id}/legal-review/status")
async def update_legal_review_status(item_id: int, body: LegalStatusBody):
    return await _run("update_legal_review_status", workflow_engine.update_legal_review_status(
        item_id, body.actor.to_principal(), body.status
    ))


@router.post("/{item_id}/compliance-review/status")
async def update_compliance_review_status(item_id: int, body: ComplianceStatusBody):
    return await _run("update_compliance_review_status", workflow_engine.update_compliance_review_status(
        item_id, body.actor.to_principal(), body.status
    ))


@router.post("/{item_id}/move-to-closeout")
async def move_to_closeout(item_id: int, body: ActorBody):
    return await _run("move_to_closeout", workflow_engine.move_to_closeout(item_id, body.actor.to_principal()))


@router.post("/{item_id}/closeout")
async def closeout_request(item_id: int, body: CloseoutBody):
    """Close out a request. Tracking id is required by callers when the review produced comments."""
    return await _run("closeout", workflow_engine.closeout_request(
        item_id,
        body.actor.to_principal(),
        tracking_id=body.tracking_id,
        notes=body.notes,
        comments_acknowledged=body.comments_acknowledged,
    ))


@router.post("/{item_id}/regulatory-documents/complete")
async def complete_regulatory_documents(item_id: int, body: RegulatoryDocumentsBody):
    return await _run("complete_regulatory_documents", workflow_engine.complete_regulatory_documents(
        item_id, body.actor.to_principal(), notes=body.notes, comments_received=body.comments_received
    ))


@router.post("/{item_id}/hold")
async def hold_request(item_id: int, body: ReasonBody):
    return await _run("hold", workflow_engine.hold_request(item_id, body.actor.to_principal(), body.reason))


@router.post("/{item_id}/resume")
async def resume_request(item_id: int, body: ActorBody):
    return await _run("resume", workflow_engine.resume_request(item_id, body.actor.to_principal()))


@router.post("/{item_id}/cancel")
async def cancel_request(item_id: int, body: ReasonBody):
    return await _run("cancel", workflow_engine.cancel_request(item_id, body.actor.to_principal(), body.reason))
