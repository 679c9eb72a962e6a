"""
Legal Review Hub - Legal Review Workflow Engine

This module implements the status state machine for legal review requests and the
side effects of each named workflow action.

Lifecycle:
    Draft -> Legal Intake -> (Assign Attorney ->) In Review -> Closeout
          -> [Awaiting Regulatory Documents ->] Completed
    Any active status -> On Hold -> back to the previous status
    Any non-terminal status -> Cancelled

Inside In Review the legal and compliance tracks run independent sub-state
machines (Not Started / In Progress / Waiting On Submitter / Waiting On
Attorney|Compliance / Completed). When every track the review audience requires
is Completed the request moves to Closeout.

Every action follows the same steps:
    load snapshot -> check transition -> compute field diff -> write diff
    -> best-effort permission sync -> reload and return

Store failures are fatal and propagate. Time tracking and permission failures are
logged and returned as SecondaryFailure entries; they never block a transition.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Tuple, Any, Callable
import logging

from services.correlation import generate_correlation_id
from services.legal_request import LegalRequest
from services.permission_service import PermissionService
from services.request_store import RequestStore
from services.stage_ownership import COMPLIANCE_REVIEW_OWNERS, LEGAL_REVIEW_OWNERS, get_stage_current_owner
from services.time_tracking_service import (
    TimeTrackingService,
    TOTAL_REVIEWER_FIELD,
    calculate_totals,
    initial_time_tracking_fields,
)
from services.workflow_types import (
    RequestStatus,
    LegalReviewStatus,
    ComplianceReviewStatus,
    ReviewOutcome,
    ReviewAudience,
    TimeTrackingStage,
    StageOwner,
    Principal,
    WorkflowError,
    WorkflowPreconditionError,
    RequestStoreError,
    SecondaryFailure,
    SecondaryOperation,
    WorkflowActionResult,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


# =============================================================================
# WORKFLOW ACTIONS
# =============================================================================

class WorkflowAction(str, Enum):
    """Named actions that move a request through its lifecycle."""
    SUBMIT = "submit"
    ASSIGN_ATTORNEY = "assign_attorney"
    SEND_TO_COMMITTEE = "send_to_committee"
    ASSIGN_FROM_COMMITTEE = "assign_from_committee"
    SUBMIT_LEGAL_REVIEW = "submit_legal_review"
    SUBMIT_COMPLIANCE_REVIEW = "submit_compliance_review"
    REQUEST_LEGAL_REVIEW_CHANGES = "request_legal_review_changes"
    REQUEST_COMPLIANCE_REVIEW_CHANGES = "request_compliance_review_changes"
    RESUBMIT_FOR_LEGAL_REVIEW = "resubmit_for_legal_review"
    RESUBMIT_FOR_COMPLIANCE_REVIEW = "resubmit_for_compliance_review"
    SAVE_LEGAL_REVIEW_PROGRESS = "save_legal_review_progress"
    SAVE_COMPLIANCE_REVIEW_PROGRESS = "save_compliance_review_progress"
    UPDATE_LEGAL_REVIEW_STATUS = "update_legal_review_status"
    UPDATE_COMPLIANCE_REVIEW_STATUS = "update_compliance_review_status"
    MOVE_TO_CLOSEOUT = "move_to_closeout"
    CLOSEOUT = "closeout"
    COMPLETE_REGULATORY_DOCUMENTS = "complete_regulatory_documents"
    HOLD = "hold"
    RESUME = "resume"
    CANCEL = "cancel"


# Correlation id prefixes, one per action
ACTION_PREFIXES = {
    WorkflowAction.SUBMIT: "submit",
    WorkflowAction.ASSIGN_ATTORNEY: "assign",
    WorkflowAction.SEND_TO_COMMITTEE: "committee",
    WorkflowAction.ASSIGN_FROM_COMMITTEE: "committee-assign",
    WorkflowAction.SUBMIT_LEGAL_REVIEW: "legal-review",
    WorkflowAction.SUBMIT_COMPLIANCE_REVIEW: "compliance-review",
    WorkflowAction.REQUEST_LEGAL_REVIEW_CHANGES: "legal-changes",
    WorkflowAction.REQUEST_COMPLIANCE_REVIEW_CHANGES: "compliance-changes",
    WorkflowAction.RESUBMIT_FOR_LEGAL_REVIEW: "legal-resubmit",
    WorkflowAction.RESUBMIT_FOR_COMPLIANCE_REVIEW: "compliance-resubmit",
    WorkflowAction.SAVE_LEGAL_REVIEW_PROGRESS: "legal-progress",
    WorkflowAction.SAVE_COMPLIANCE_REVIEW_PROGRESS: "compliance-progress",
    WorkflowAction.UPDATE_LEGAL_REVIEW_STATUS: "legal-status",
    WorkflowAction.UPDATE_COMPLIANCE_REVIEW_STATUS: "compliance-status",
    WorkflowAction.MOVE_TO_CLOSEOUT: "move-closeout",
    WorkflowAction.CLOSEOUT: "closeout",
    WorkflowAction.COMPLETE_REGULATORY_DOCUMENTS: "regulatory-docs",
    WorkflowAction.HOLD: "hold",
    WorkflowAction.RESUME: "resume",
    WorkflowAction.CANCEL: "cancel",
}

_REVIEW_ACTIONS = {
    WorkflowAction.SUBMIT_LEGAL_REVIEW: RequestStatus.IN_REVIEW,
    WorkflowAction.SUBMIT_COMPLIANCE_REVIEW: RequestStatus.IN_REVIEW,
    WorkflowAction.REQUEST_LEGAL_REVIEW_CHANGES: RequestStatus.IN_REVIEW,
    WorkflowAction.REQUEST_COMPLIANCE_REVIEW_CHANGES: RequestStatus.IN_REVIEW,
    WorkflowAction.RESUBMIT_FOR_LEGAL_REVIEW: RequestStatus.IN_REVIEW,
    WorkflowAction.RESUBMIT_FOR_COMPLIANCE_REVIEW: RequestStatus.IN_REVIEW,
    WorkflowAction.SAVE_LEGAL_REVIEW_PROGRESS: RequestStatus.IN_REVIEW,
    WorkflowAction.SAVE_COMPLIANCE_REVIEW_PROGRESS: RequestStatus.IN_REVIEW,
    WorkflowAction.UPDATE_LEGAL_REVIEW_STATUS: RequestStatus.IN_REVIEW,
    WorkflowAction.UPDATE_COMPLIANCE_REVIEW_STATUS: RequestStatus.IN_REVIEW,
}

_HOLD_AND_CANCEL = {
    WorkflowAction.HOLD: RequestStatus.ON_HOLD,
    WorkflowAction.CANCEL: RequestStatus.CANCELLED,
}


# =============================================================================
# STATE MACHINE TRANSITIONS
# =============================================================================
# Format: {current_status: {action: default_next_status}}
# Closeout resolves to Awaiting Regulatory Documents when both regulatory flags are
# set; a review submission resolves to Closeout once all required reviews complete;
# Resume (None) restores previous_status.

WORKFLOW_TRANSITIONS: Dict[RequestStatus, Dict[WorkflowAction, Optional[RequestStatus]]] = {
    RequestStatus.DRAFT: {
        WorkflowAction.SUBMIT: RequestStatus.LEGAL_INTAKE,
        WorkflowAction.CANCEL: RequestStatus.CANCELLED,
    },
    RequestStatus.LEGAL_INTAKE: {
        WorkflowAction.ASSIGN_ATTORNEY: RequestStatus.IN_REVIEW,
        WorkflowAction.SEND_TO_COMMITTEE: RequestStatus.ASSIGN_ATTORNEY,
        **_HOLD_AND_CANCEL,
    },
    RequestStatus.ASSIGN_ATTORNEY: {
        WorkflowAction.ASSIGN_FROM_COMMITTEE: RequestStatus.IN_REVIEW,
        **_HOLD_AND_CANCEL,
    },
    RequestStatus.IN_REVIEW: {
        **_REVIEW_ACTIONS,
        WorkflowAction.MOVE_TO_CLOSEOUT: RequestStatus.CLOSEOUT,
        WorkflowAction.CLOSEOUT: RequestStatus.COMPLETED,
        **_HOLD_AND_CANCEL,
    },
    RequestStatus.CLOSEOUT: {
        WorkflowAction.CLOSEOUT: RequestStatus.COMPLETED,
        **_HOLD_AND_CANCEL,
    },
    RequestStatus.AWAITING_REGULATORY_DOCUMENTS: {
        WorkflowAction.COMPLETE_REGULATORY_DOCUMENTS: RequestStatus.COMPLETED,
        **_HOLD_AND_CANCEL,
    },
    RequestStatus.ON_HOLD: {
        WorkflowAction.RESUME: None,
        WorkflowAction.CANCEL: RequestStatus.CANCELLED,
    },
    # Terminal states
    RequestStatus.COMPLETED: {},
    RequestStatus.CANCELLED: {},
}


def can_transition(
    current_status: RequestStatus,
    action: WorkflowAction
) -> Tuple[bool, Optional[RequestStatus], str]:
    """
    Check whether an action is allowed from the current status.

    Returns:
        (can_transition, default_next_status, reason)
    """
    status_transitions = WORKFLOW_TRANSITIONS.get(current_status)
    if status_transitions is None:
        return (False, None, f"No transitions defined for status '{current_status.value}'")

    if action not in status_transitions:
        valid = [a.value for a in status_transitions]
        return (
            False,
            None,
            f"Action '{action.value}' not valid for status '{current_status.value}'. Valid: {valid}"
        )

    return (True, status_transitions[action], "Transition allowed")


def are_all_reviews_complete(
    audience: ReviewAudience,
    legal_status: LegalReviewStatus,
    compliance_status: ComplianceReviewStatus
) -> bool:
    """True when every review track the audience requires is Completed."""
    legal_done = legal_status == LegalReviewStatus.COMPLETED
    compliance_done = compliance_status == ComplianceReviewStatus.COMPLETED
    if audience == ReviewAudience.LEGAL:
        return legal_done
    if audience == ReviewAudience.COMPLIANCE:
        return compliance_done
    return legal_done and compliance_done


# =============================================================================
# REVIEW TRACKS
# =============================================================================

@dataclass(frozen=True)
class ReviewTrack:
    """Field layout of one review sub-process (legal or compliance)."""
    label: str
    stage: TimeTrackingStage
    status_enum: type
    waiting_on_reviewer: Enum
    reviewer_owner: StageOwner
    status_field: str
    outcome_field: str
    notes_field: str
    updated_by_field: str
    updated_on_field: str
    completed_by_field: str
    completed_on_field: str

    def includes(self, audience: ReviewAudience) -> bool:
        if self.stage == TimeTrackingStage.LEGAL_REVIEW:
            return audience.includes_legal
        return audience.includes_compliance

    def status_of(self, request: LegalRequest):
        return getattr(request, self.status_field)

    def outcome_of(self, request: LegalRequest) -> Optional[ReviewOutcome]:
        return getattr(request, self.outcome_field)


LEGAL_TRACK = ReviewTrack(
    label="Legal",
    stage=TimeTrackingStage.LEGAL_REVIEW,
    status_enum=LegalReviewStatus,
    waiting_on_reviewer=LegalReviewStatus.WAITING_ON_ATTORNEY,
    reviewer_owner=StageOwner.ATTORNEY,
    status_field="legal_review_status",
    outcome_field="legal_review_outcome",
    notes_field="legal_review_notes",
    updated_by_field="legal_status_updated_by",
    updated_on_field="legal_status_updated_on",
    completed_by_field="legal_review_completed_by",
    completed_on_field="legal_review_completed_on",
)

COMPLIANCE_TRACK = ReviewTrack(
    label="Compliance",
    stage=TimeTrackingStage.COMPLIANCE_REVIEW,
    status_enum=ComplianceReviewStatus,
    waiting_on_reviewer=ComplianceReviewStatus.WAITING_ON_COMPLIANCE,
    reviewer_owner=StageOwner.REVIEWER,
    status_field="compliance_review_status",
    outcome_field="compliance_review_outcome",
    notes_field="compliance_review_notes",
    updated_by_field="compliance_status_updated_by",
    updated_on_field="compliance_status_updated_on",
    completed_by_field="compliance_review_completed_by",
    completed_on_field="compliance_review_completed_on",
)


# =============================================================================
# ENGINE
# =============================================================================

@dataclass
class ActionContext:
    """Per-invocation state shared by the steps of one action."""
    action: WorkflowAction
    item_id: int
    correlation_id: str
    request: LegalRequest
    now: datetime
    failures: List[SecondaryFailure] = field(default_factory=list)


class WorkflowEngine:
    """
    Runs workflow actions against a request store.

    Args:
        store: authoritative request persistence
        permission_service: access-control collaborator, called best-effort
        time_tracking: accrual service for stage hours
        clock: returns the current aware datetime
    """

    def __init__(
        self,
        store: RequestStore,
        permission_service: PermissionService,
        time_tracking: TimeTrackingService,
        clock: Callable[[], datetime] = None
    ):
        self.store = store
        self.permission_service = permission_service
        self.time_tracking = time_tracking
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    async def get_request(self, item_id: int) -> LegalRequest:
        try:
            return await self.store.load_request_by_id(item_id)
        except WorkflowError:
            raise
        except Exception as e:
            raise RequestStoreError(f"Failed to load item: {e}", details={"item_id": item_id}) from e

    async def _begin(self, action: WorkflowAction, item_id: int) -> ActionContext:
        correlation_id = generate_correlation_id(ACTION_PREFIXES[action])
        logger.info("Workflow action started: action=%s, item=%s, correlation=%s", action.value, item_id, correlation_id)
        request = await self.get_request(item_id)
        return ActionContext(
            action=action,
            item_id=item_id,
            correlation_id=correlation_id,
            request=request,
            now=self.clock(),
        )

    @staticmethod
    def _require_transition(ctx: ActionContext) -> Optional[RequestStatus]:
        allowed, next_status, reason = can_transition(ctx.request.status, ctx.action)
        if not allowed:
            logger.warning(
                "Invalid workflow transition: item=%s, status=%s, action=%s, correlation=%s, reason=%s",
                ctx.item_id, ctx.request.status.value, ctx.action.value, ctx.correlation_id, reason
            )
            raise WorkflowPreconditionError(
                f"Cannot {ctx.action.value.replace('_', ' ')}: {reason}",
                details={"item_id": ctx.item_id, "status": ctx.request.status.value, "action": ctx.action.value}
            )
        return next_status

    def _record_failure(self, ctx: ActionContext, operation: SecondaryOperation, error: Exception) -> None:
        failure = SecondaryFailure(
            operation=operation.value,
            message=str(error),
            details={"item_id": ctx.item_id, "action": ctx.action.value, "correlation_id": ctx.correlation_id},
        )
        ctx.failures.append(failure)
        logger.warning(
            "Secondary %s failure (continuing): item=%s, action=%s, correlation=%s, error=%s",
            operation.value, ctx.item_id, ctx.action.value, ctx.correlation_id, str(error)
        )

    async def _accrue(
        self,
        ctx: ActionContext,
        stage: TimeTrackingStage,
        new_owner: Optional[StageOwner] = None
    ) -> Dict[str, float]:
        try:
            return await self.time_tracking.accrue(ctx.request, stage, new_owner)
        except Exception as e:
            self._record_failure(ctx, SecondaryOperation.TIME_TRACKING, e)
            return {}

    async def _commit(
        self,
        ctx: ActionContext,
        diff: Dict[str, Any],
        manage_status: Optional[RequestStatus] = None,
        initialize_title: Optional[str] = None
    ) -> WorkflowActionResult:
        try:
            await self.store.update_request(ctx.item_id, diff)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error(
                "Failed to update item: item=%s, action=%s, correlation=%s, error=%s",
                ctx.item_id, ctx.action.value, ctx.correlation_id, str(e)
            )
            raise RequestStoreError(f"Failed to update item: {e}", details={"item_id": ctx.item_id}) from e

        if "status" in diff:
            logger.info(
                "Workflow transition: item=%s, %s -> %s (action=%s, correlation=%s)",
                ctx.item_id, ctx.request.status.value, diff["status"].value, ctx.action.value, ctx.correlation_id
            )

        if initialize_title is not None:
            try:
                await self.permission_service.initialize_permissions(ctx.item_id, initialize_title)
            except Exception as e:
                self._record_failure(ctx, SecondaryOperation.PERMISSIONS, e)
        if manage_status is not None:
            try:
                await self.permission_service.manage_permissions(ctx.item_id, manage_status)
            except Exception as e:
                self._record_failure(ctx, SecondaryOperation.PERMISSIONS, e)

        updated = await self.get_request(ctx.item_id)
        logger.info(
            "Workflow action completed: action=%s, item=%s, status=%s, fields=%d, degraded=%s, correlation=%s",
            ctx.action.value, ctx.item_id, updated.status.value, len(diff), bool(ctx.failures), ctx.correlation_id
        )
        return WorkflowActionResult(
            item_id=ctx.item_id,
            new_status=updated.status.value,
            updated_request=updated,
            fields_updated=list(diff.keys()),
            correlation_id=ctx.correlation_id,
            secondary_failures=list(ctx.failures),
        )

    async def _finalize_open_reviews(self, ctx: ActionContext, actor: Principal) -> Dict[str, Any]:
        """
        Close every review track that still has an owner when the request leaves
        In Review. The running segment is accrued and the track is marked Completed
        without an outcome, so the sub-status agrees with the new request status.
        """
        diff: Dict[str, Any] = {}
        for track in (LEGAL_TRACK, COMPLIANCE_TRACK):
            if get_stage_current_owner(ctx.request, track.stage) is None:
                continue
            diff.update(await self._accrue(ctx, track.stage))
            diff[track.status_field] = track.status_enum.COMPLETED
            diff[track.updated_by_field] = actor
            diff[track.updated_on_field] = ctx.now
            logger.info(
                "%s review closed without outcome: item=%s, was=%s, correlation=%s",
                track.label, ctx.item_id, track.status_of(ctx.request).value, ctx.correlation_id
            )
        return _with_totals(ctx.request, diff)

    @staticmethod
    def _require_track(ctx: ActionContext, track: ReviewTrack) -> None:
        if not track.includes(ctx.request.review_audience) or track.status_of(ctx.request) == track.status_enum.NOT_REQUIRED:
            raise WorkflowPreconditionError(
                f"{track.label} review is not required for this request "
                f"(audience \"{ctx.request.review_audience.value}\")",
                details={"item_id": ctx.item_id, "action": ctx.action.value}
            )

    # -------------------------------------------------------------------------
    # Draft and submission
    # -------------------------------------------------------------------------

    async def create_draft(
        self,
        actor: Principal,
        title: str,
        review_audience: ReviewAudience = ReviewAudience.LEGAL,
        request_id: Optional[str] = None
    ) -> WorkflowActionResult:
        """Create a new Draft request with zeroed hour buckets."""
        correlation_id = generate_correlation_id("create")
        fields = {
            "title": title,
            "request_id": request_id,
            "status": RequestStatus.DRAFT,
            "review_audience": review_audience,
            "legal_review_status": LegalReviewStatus.NOT_REQUIRED,
            "compliance_review_status": ComplianceReviewStatus.NOT_REQUIRED,
            "created_by": actor,
            "created_on": self.clock(),
        }
        fields.update(initial_time_tracking_fields())

        try:
            item_id = await self.store.create_request(fields)
        except WorkflowError:
            raise
        except Exception as e:
            raise RequestStoreError(f"Failed to create item: {e}") from e

        created = await self.get_request(item_id)
        logger.info("Draft created: item=%s, audience=%s, correlation=%s", item_id, review_audience.value, correlation_id)
        return WorkflowActionResult(
            item_id=item_id,
            new_status=created.status.value,
            updated_request=created,
            fields_updated=list(fields.keys()),
            correlation_id=correlation_id,
        )

    async def submit_request(self, item_id: int, actor: Principal) -> WorkflowActionResult:
        """Draft -> Legal Intake. Initializes item permissions."""
        ctx = await self._begin(WorkflowAction.SUBMIT, item_id)
        next_status = self._require_transition(ctx)

        diff = {
            "status": next_status,
            "submitted_by": actor,
            "submitted_on": ctx.now,
        }
        title = ctx.request.request_id or f"Request-{item_id}"
        return await self._commit(ctx, diff, initialize_title=title)

    # -------------------------------------------------------------------------
    # Attorney assignment
    # -------------------------------------------------------------------------

    def _assignment_diff(
        self,
        ctx: ActionContext,
        actor: Principal,
        next_status: RequestStatus,
        attorneys: Optional[List[Principal]],
        notes: Optional[str],
        review_audience: Optional[ReviewAudience],
        attorney_required: bool
    ) -> Dict[str, Any]:
        audience = review_audience or ctx.request.review_audience
        if not attorneys and (attorney_required or audience.includes_legal):
            raise WorkflowPreconditionError(
                "At least one attorney must be assigned"
                + (" by the committee" if attorney_required else f" for a {audience.value} review"),
                details={"item_id": ctx.item_id, "audience": audience.value}
            )

        diff: Dict[str, Any] = {
            "status": next_status,
            "submitted_for_review_by": actor,
            "submitted_for_review_on": ctx.now,
        }
        if attorneys:
            diff["attorney"] = list(attorneys)
            diff["legal_review_status"] = LegalReviewStatus.NOT_STARTED
        if audience.includes_compliance and ctx.request.compliance_review_status == ComplianceReviewStatus.NOT_REQUIRED:
            diff["compliance_review_status"] = ComplianceReviewStatus.NOT_STARTED
        if notes:
            diff["attorney_assign_notes"] = notes
        if review_audience is not None:
            diff["review_audience"] = review_audience
        return diff

    async def assign_attorney(
        self,
        item_id: int,
        actor: Principal,
        attorneys: Optional[List[Principal]] = None,
        notes: Optional[str] = None,
        review_audience: Optional[ReviewAudience] = None
    ) -> WorkflowActionResult:
        """
        Legal Intake -> In Review.

        Attorneys are required whenever the audience includes Legal; a
        Compliance-only request goes straight to compliance review.
        """
        ctx = await self._begin(WorkflowAction.ASSIGN_ATTORNEY, item_id)
        next_status = self._require_transition(ctx)
        diff = self._assignment_diff(ctx, actor, next_status, attorneys, notes, review_audience, attorney_required=False)
        return await self._commit(ctx, diff, manage_status=next_status)

    async def send_to_committee(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None,
        review_audience: Optional[ReviewAudience] = None
    ) -> WorkflowActionResult:
        """Legal Intake -> Assign Attorney. The committee picks the attorney."""
        ctx = await self._begin(WorkflowAction.SEND_TO_COMMITTEE, item_id)
        next_status = self._require_transition(ctx)

        diff: Dict[str, Any] = {
            "status": next_status,
            "submitted_to_assign_attorney_by": actor,
            "submitted_to_assign_attorney_on": ctx.now,
        }
        if notes:
            diff["attorney_assign_notes"] = notes
        if review_audience is not None:
            diff["review_audience"] = review_audience
        return await self._commit(ctx, diff, manage_status=next_status)

    async def assign_from_committee(
        self,
        item_id: int,
        actor: Principal,
        attorneys: List[Principal],
        notes: Optional[str] = None,
        review_audience: Optional[ReviewAudience] = None
    ) -> WorkflowActionResult:
        """Assign Attorney -> In Review. An attorney is mandatory."""
        ctx = await self._begin(WorkflowAction.ASSIGN_FROM_COMMITTEE, item_id)
        next_status = self._require_transition(ctx)
        diff = self._assignment_diff(ctx, actor, next_status, attorneys, notes, review_audience, attorney_required=True)
        return await self._commit(ctx, diff, manage_status=next_status)

    # -------------------------------------------------------------------------
    # Review submission
    # -------------------------------------------------------------------------

    async def _submit_review(
        self,
        ctx: ActionContext,
        track: ReviewTrack,
        actor: Principal,
        outcome: ReviewOutcome,
        notes: Optional[str],
        extra: Optional[Dict[str, Any]] = None
    ) -> WorkflowActionResult:
        self._require_transition(ctx)
        self._require_track(ctx, track)
        if track.status_of(ctx.request) == track.status_enum.COMPLETED:
            raise WorkflowPreconditionError(
                f"{track.label} review is already completed",
                details={"item_id": ctx.item_id}
            )

        resubmit = outcome == ReviewOutcome.RESPOND_TO_COMMENTS_AND_RESUBMIT
        new_sub_status = track.status_enum.WAITING_ON_SUBMITTER if resubmit else track.status_enum.COMPLETED

        # Reviewer time for the segment that just ended
        hours = await self._accrue(ctx, track.stage, StageOwner.SUBMITTER if resubmit else None)

        diff: Dict[str, Any] = {
            track.outcome_field: outcome,
            track.status_field: new_sub_status,
            track.updated_by_field: actor,
            track.updated_on_field: ctx.now,
        }
        if notes is not None:
            diff[track.notes_field] = notes
        if not resubmit:
            diff[track.completed_by_field] = actor
            diff[track.completed_on_field] = ctx.now
        diff.update(extra or {})
        diff.update(hours)

        manage_status = None
        if not resubmit:
            legal_status = diff.get("legal_review_status", ctx.request.legal_review_status)
            compliance_status = diff.get("compliance_review_status", ctx.request.compliance_review_status)
            if are_all_reviews_complete(ctx.request.review_audience, legal_status, compliance_status):
                diff["status"] = RequestStatus.CLOSEOUT
                manage_status = RequestStatus.CLOSEOUT
                logger.info(
                    "All reviews complete: item=%s, audience=%s, correlation=%s",
                    ctx.item_id, ctx.request.review_audience.value, ctx.correlation_id
                )

        return await self._commit(ctx, diff, manage_status=manage_status)

    async def submit_legal_review(
        self,
        item_id: int,
        actor: Principal,
        outcome: ReviewOutcome,
        notes: Optional[str] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.SUBMIT_LEGAL_REVIEW, item_id)
        return await self._submit_review(ctx, LEGAL_TRACK, actor, outcome, notes)

    async def submit_compliance_review(
        self,
        item_id: int,
        actor: Principal,
        outcome: ReviewOutcome,
        notes: Optional[str] = None,
        is_foreside_review_required: Optional[bool] = None,
        is_retail_use: Optional[bool] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.SUBMIT_COMPLIANCE_REVIEW, item_id)
        extra = _regulatory_flags(is_foreside_review_required, is_retail_use)
        return await self._submit_review(ctx, COMPLIANCE_TRACK, actor, outcome, notes, extra)

    # -------------------------------------------------------------------------
    # Resubmission loop
    # -------------------------------------------------------------------------

    async def _request_changes(
        self,
        ctx: ActionContext,
        track: ReviewTrack,
        actor: Principal,
        notes: Optional[str],
        extra: Optional[Dict[str, Any]] = None
    ) -> WorkflowActionResult:
        self._require_transition(ctx)
        self._require_track(ctx, track)

        current = track.status_of(ctx.request)
        if current not in (track.status_enum.IN_PROGRESS, track.waiting_on_reviewer):
            logger.warning(
                "%s review changes requested from unexpected state: item=%s, status=%s, correlation=%s",
                track.label, ctx.item_id, current.value, ctx.correlation_id
            )

        hours = await self._accrue(ctx, track.stage, StageOwner.SUBMITTER)

        diff: Dict[str, Any] = {
            track.status_field: track.status_enum.WAITING_ON_SUBMITTER,
            track.outcome_field: ReviewOutcome.RESPOND_TO_COMMENTS_AND_RESUBMIT,
            track.updated_by_field: actor,
            track.updated_on_field: ctx.now,
        }
        if notes:
            diff[track.notes_field] = notes
        diff.update(extra or {})
        diff.update(hours)
        return await self._commit(ctx, diff)

    async def request_legal_review_changes(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None
    ) -> WorkflowActionResult:
        """Attorney sends the request back to the submitter."""
        ctx = await self._begin(WorkflowAction.REQUEST_LEGAL_REVIEW_CHANGES, item_id)
        return await self._request_changes(ctx, LEGAL_TRACK, actor, notes)

    async def request_compliance_review_changes(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None,
        is_foreside_review_required: Optional[bool] = None,
        is_retail_use: Optional[bool] = None
    ) -> WorkflowActionResult:
        """Compliance reviewer sends the request back to the submitter."""
        ctx = await self._begin(WorkflowAction.REQUEST_COMPLIANCE_REVIEW_CHANGES, item_id)
        extra = _regulatory_flags(is_foreside_review_required, is_retail_use)
        return await self._request_changes(ctx, COMPLIANCE_TRACK, actor, notes, extra)

    async def _resubmit(
        self,
        ctx: ActionContext,
        track: ReviewTrack,
        actor: Principal,
        notes: Optional[str]
    ) -> WorkflowActionResult:
        self._require_transition(ctx)

        current = track.status_of(ctx.request)
        if current != track.status_enum.WAITING_ON_SUBMITTER:
            raise WorkflowPreconditionError(
                f"Cannot resubmit: {track.label} review status is \"{current.value}\", "
                f"expected \"{track.status_enum.WAITING_ON_SUBMITTER.value}\"",
                details={"item_id": ctx.item_id}
            )
        outcome = track.outcome_of(ctx.request)
        if outcome != ReviewOutcome.RESPOND_TO_COMMENTS_AND_RESUBMIT:
            raise WorkflowPreconditionError(
                f"Cannot resubmit: {track.label} review outcome is "
                f"\"{outcome.value if outcome else None}\", "
                f"expected \"{ReviewOutcome.RESPOND_TO_COMMENTS_AND_RESUBMIT.value}\"",
                details={"item_id": ctx.item_id}
            )

        # Submitter time for the segment that just ended
        hours = await self._accrue(ctx, track.stage, track.reviewer_owner)

        diff: Dict[str, Any] = {
            track.status_field: track.waiting_on_reviewer,
            track.updated_by_field: actor,
            track.updated_on_field: ctx.now,
        }
        if notes:
            diff[track.notes_field] = notes
        diff.update(hours)
        return await self._commit(ctx, diff)

    async def resubmit_for_legal_review(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.RESUBMIT_FOR_LEGAL_REVIEW, item_id)
        return await self._resubmit(ctx, LEGAL_TRACK, actor, notes)

    async def resubmit_for_compliance_review(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.RESUBMIT_FOR_COMPLIANCE_REVIEW, item_id)
        return await self._resubmit(ctx, COMPLIANCE_TRACK, actor, notes)

    # -------------------------------------------------------------------------
    # Save progress
    # -------------------------------------------------------------------------

    async def _save_progress(
        self,
        ctx: ActionContext,
        track: ReviewTrack,
        actor: Principal,
        outcome: Optional[ReviewOutcome],
        notes: Optional[str],
        extra: Optional[Dict[str, Any]] = None
    ) -> WorkflowActionResult:
        self._require_transition(ctx)
        self._require_track(ctx, track)

        current = track.status_of(ctx.request)
        if current == track.status_enum.COMPLETED:
            raise WorkflowPreconditionError(
                f"{track.label} review is already completed",
                details={"item_id": ctx.item_id}
            )

        diff: Dict[str, Any] = {
            track.status_field: track.status_enum.IN_PROGRESS,
            track.updated_by_field: actor,
        }
        # Re-saving while already In Progress keeps the accrual clock running
        if current != track.status_enum.IN_PROGRESS:
            diff[track.updated_on_field] = ctx.now
        if outcome is not None:
            diff[track.outcome_field] = outcome
        if notes is not None:
            diff[track.notes_field] = notes
        diff.update(extra or {})
        return await self._commit(ctx, diff)

    async def save_legal_review_progress(
        self,
        item_id: int,
        actor: Principal,
        outcome: Optional[ReviewOutcome] = None,
        notes: Optional[str] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.SAVE_LEGAL_REVIEW_PROGRESS, item_id)
        return await self._save_progress(ctx, LEGAL_TRACK, actor, outcome, notes)

    async def save_compliance_review_progress(
        self,
        item_id: int,
        actor: Principal,
        outcome: Optional[ReviewOutcome] = None,
        notes: Optional[str] = None,
        is_foreside_review_required: Optional[bool] = None,
        is_retail_use: Optional[bool] = None
    ) -> WorkflowActionResult:
        ctx = await self._begin(WorkflowAction.SAVE_COMPLIANCE_REVIEW_PROGRESS, item_id)
        extra = _regulatory_flags(is_foreside_review_required, is_retail_use)
        return await self._save_progress(ctx, COMPLIANCE_TRACK, actor, outcome, notes, extra)

    # -------------------------------------------------------------------------
    # Sub-status updates
    # -------------------------------------------------------------------------

    async def _update_review_status(
        self,
        ctx: ActionContext,
        track: ReviewTrack,
        actor: Principal,
        new_status: Enum
    ) -> WorkflowActionResult:
        self._require_transition(ctx)
        self._require_track(ctx, track)

        if new_status in (track.status_enum.COMPLETED, track.status_enum.NOT_REQUIRED):
            raise WorkflowPreconditionError(
                f"Cannot set {track.label} review status to \"{new_status.value}\"; "
                f"submit the review to complete it",
                details={"item_id": ctx.item_id, "status": new_status.value}
            )
        current = track.status_of(ctx.request)
        if current == track.status_enum.COMPLETED:
            raise WorkflowPreconditionError(
                f"{track.label} review is already completed",
                details={"item_id": ctx.item_id}
            )

        # The handoff timestamp moves, so the running segment is accrued first
        next_owner = (LEGAL_REVIEW_OWNERS if track is LEGAL_TRACK else COMPLIANCE_REVIEW_OWNERS).get(new_status)
        hours = await self._accrue(ctx, track.stage, next_owner)

        diff: Dict[str, Any] = {
            track.status_field: new_status,
            track.updated_by_field: actor,
            track.updated_on_field: ctx.now,
        }
        diff.update(hours)
        logger.info(
            "%s review status update: item=%s, %s -> %s, correlation=%s",
            track.label, ctx.item_id, current.value, new_status.value, ctx.correlation_id
        )
        return await self._commit(ctx, diff)

    async def update_legal_review_status(
        self,
        item_id: int,
        actor: Principal,
        status: LegalReviewStatus
    ) -> WorkflowActionResult:
        """Set the legal sub-status directly (in-progress tracking)."""
        ctx = await self._begin(WorkflowAction.UPDATE_LEGAL_REVIEW_STATUS, item_id)
        return await self._update_review_status(ctx, LEGAL_TRACK, actor, status)

    async def update_compliance_review_status(
        self,
        item_id: int,
        actor: Principal,
        status: ComplianceReviewStatus
    ) -> WorkflowActionResult:
        """Set the compliance sub-status directly (in-progress tracking)."""
        ctx = await self._begin(WorkflowAction.UPDATE_COMPLIANCE_REVIEW_STATUS, item_id)
        return await self._update_review_status(ctx, COMPLIANCE_TRACK, actor, status)

    # -------------------------------------------------------------------------
    # Closeout and completion
    # -------------------------------------------------------------------------

    async def move_to_closeout(self, item_id: int, actor: Principal) -> WorkflowActionResult:
        """
        In Review -> Closeout without waiting for review completion.

        Open review tracks are accrued and closed, and closeout_on starts the
        Closeout clock.
        """
        ctx = await self._begin(WorkflowAction.MOVE_TO_CLOSEOUT, item_id)
        next_status = self._require_transition(ctx)
        logger.info("Manual move to closeout: item=%s, actor=%s, correlation=%s", item_id, actor.id, ctx.correlation_id)

        diff: Dict[str, Any] = {"status": next_status, "closeout_on": ctx.now}
        diff.update(await self._finalize_open_reviews(ctx, actor))
        return await self._commit(ctx, diff, manage_status=next_status)

    async def closeout_request(
        self,
        item_id: int,
        actor: Principal,
        tracking_id: Optional[str] = None,
        notes: Optional[str] = None,
        comments_acknowledged: Optional[bool] = None
    ) -> WorkflowActionResult:
        """
        Closeout (or In Review) -> Completed, or -> Awaiting Regulatory Documents
        when the compliance review flagged both Foreside review and retail use.
        """
        ctx = await self._begin(WorkflowAction.CLOSEOUT, item_id)
        self._require_transition(ctx)

        awaiting = ctx.request.is_foreside_review_required and ctx.request.is_retail_use
        next_status = RequestStatus.AWAITING_REGULATORY_DOCUMENTS if awaiting else RequestStatus.COMPLETED

        # Straight from In Review the Closeout stage never ran; close the open reviews instead
        if ctx.request.status == RequestStatus.IN_REVIEW:
            hours = await self._finalize_open_reviews(ctx, actor)
        else:
            hours = await self._accrue(ctx, TimeTrackingStage.CLOSEOUT)

        diff: Dict[str, Any] = {
            "status": next_status,
            "closeout_by": actor,
            "closeout_on": ctx.now,
        }
        if tracking_id:
            diff["tracking_id"] = tracking_id
        if notes:
            diff["closeout_notes"] = notes
        if comments_acknowledged:
            diff["comments_acknowledged"] = True
            diff["comments_acknowledged_on"] = ctx.now
        if awaiting:
            diff["awaiting_regulatory_since"] = ctx.now
        else:
            diff["completed_by"] = actor
            diff["completed_on"] = ctx.now
        diff.update(hours)
        return await self._commit(ctx, diff, manage_status=next_status)

    async def complete_regulatory_documents(
        self,
        item_id: int,
        actor: Principal,
        notes: Optional[str] = None,
        comments_received: Optional[bool] = None
    ) -> WorkflowActionResult:
        """Awaiting Regulatory Documents -> Completed. This phase accrues no hours."""
        ctx = await self._begin(WorkflowAction.COMPLETE_REGULATORY_DOCUMENTS, item_id)
        if ctx.request.status != RequestStatus.AWAITING_REGULATORY_DOCUMENTS:
            raise WorkflowPreconditionError(
                f"Cannot complete regulatory documents: Request status is \"{ctx.request.status.value}\", "
                f"expected \"{RequestStatus.AWAITING_REGULATORY_DOCUMENTS.value}\"",
                details={"item_id": item_id}
            )
        next_status = self._require_transition(ctx)

        diff: Dict[str, Any] = {
            "status": next_status,
            "completed_by": actor,
            "completed_on": ctx.now,
        }
        if notes:
            diff["regulatory_documents_notes"] = notes
        if comments_received is not None:
            diff["regulatory_comments_received"] = comments_received
        return await self._commit(ctx, diff, manage_status=next_status)

    # -------------------------------------------------------------------------
    # Hold, resume, cancel
    # -------------------------------------------------------------------------

    async def hold_request(self, item_id: int, actor: Principal, reason: str) -> WorkflowActionResult:
        """Any active status -> On Hold. Finalizes accrued hours up to now."""
        ctx = await self._begin(WorkflowAction.HOLD, item_id)
        next_status = self._require_transition(ctx)
        _require_reason(reason, "hold", item_id)

        try:
            hours = await self.time_tracking.pause(ctx.request)
        except Exception as e:
            self._record_failure(ctx, SecondaryOperation.TIME_TRACKING, e)
            hours = {}

        diff: Dict[str, Any] = {
            "status": next_status,
            "previous_status": ctx.request.status,
            "on_hold_reason": reason.strip(),
            "on_hold_by": actor,
            "on_hold_since": ctx.now,
        }
        diff.update(hours)
        return await self._commit(ctx, diff)

    async def resume_request(self, item_id: int, actor: Principal) -> WorkflowActionResult:
        """
        On Hold -> previous status.

        The status and the handoff timestamps of every stage that has an owner in
        the resumed status are written together, so accrual restarts from now and
        the hold period is never counted.
        """
        ctx = await self._begin(WorkflowAction.RESUME, item_id)
        self._require_transition(ctx)

        resumed_status = ctx.request.previous_status
        if resumed_status is None or resumed_status in TERMINAL_STATUSES or resumed_status == RequestStatus.ON_HOLD:
            raise WorkflowPreconditionError(
                f"Cannot resume: no valid previous status recorded "
                f"(\"{resumed_status.value if resumed_status else None}\")",
                details={"item_id": item_id}
            )

        diff: Dict[str, Any] = {
            "status": resumed_status,
            "previous_status": RequestStatus.ON_HOLD,
            "on_hold_reason": None,
            "on_hold_by": None,
            "on_hold_since": None,
        }
        diff.update(_resume_handoffs(ctx.request, resumed_status, ctx.now))

        try:
            diff.update(await self.time_tracking.resume(ctx.request, resumed_status))
        except Exception as e:
            self._record_failure(ctx, SecondaryOperation.TIME_TRACKING, e)

        logger.info(
            "Resuming request: item=%s, status=%s, actor=%s, correlation=%s",
            item_id, resumed_status.value, actor.id, ctx.correlation_id
        )
        return await self._commit(ctx, diff)

    async def cancel_request(self, item_id: int, actor: Principal, reason: str) -> WorkflowActionResult:
        """Any non-terminal status -> Cancelled (terminal). No time accrual."""
        ctx = await self._begin(WorkflowAction.CANCEL, item_id)
        next_status = self._require_transition(ctx)
        _require_reason(reason, "cancel", item_id)

        diff: Dict[str, Any] = {
            "status": next_status,
            "previous_status": ctx.request.status,
            "cancel_reason": reason.strip(),
            "cancelled_by": actor,
            "cancelled_on": ctx.now,
        }
        return await self._commit(ctx, diff, manage_status=next_status)


# =============================================================================
# HELPERS
# =============================================================================

def _regulatory_flags(is_foreside_review_required: Optional[bool], is_retail_use: Optional[bool]) -> Dict[str, bool]:
    flags = {}
    if is_foreside_review_required is not None:
        flags["is_foreside_review_required"] = is_foreside_review_required
    if is_retail_use is not None:
        flags["is_retail_use"] = is_retail_use
    return flags


def _require_reason(reason: Optional[str], action: str, item_id: int) -> None:
    if not reason or not reason.strip():
        raise WorkflowPreconditionError(f"A reason is required to {action} a request", details={"item_id": item_id})


def _resume_handoffs(request: LegalRequest, resumed_status: RequestStatus, now: datetime) -> Dict[str, datetime]:
    """New handoff timestamps for the stages that own the clock after resume."""
    handoffs = {}
    if resumed_status == RequestStatus.IN_REVIEW:
        for track in (LEGAL_TRACK, COMPLIANCE_TRACK):
            if get_stage_current_owner(request, track.stage) is not None:
                handoffs[track.updated_on_field] = now
    elif resumed_status == RequestStatus.CLOSEOUT:
        handoffs["closeout_on"] = now
    return handoffs


def _with_totals(request: LegalRequest, diff: Dict[str, Any]) -> Dict[str, Any]:
    """Recompute totals when more than one accrual was merged into diff."""
    if TOTAL_REVIEWER_FIELD in diff:
        diff.update(calculate_totals(request, diff))
    return diff
