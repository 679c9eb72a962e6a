"""
Legal Review Hub - Time Tracking Service

Handoff-based accounting of business hours per stage and per side
(reviewer vs. submitter). At every handoff the hours since the previous handoff
are added to the bucket of the owner who held the stage until now.

The service never writes to the store. Every method returns a partial field
update that the workflow engine merges into its own diff.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Callable, Tuple, Any
import logging

from services.business_hours import WorkingHoursConfig, calculate_business_hours
from services.legal_request import LegalRequest
from services.stage_ownership import get_stage_current_owner, get_stage_last_handoff
from services.workflow_types import (
    RequestStatus,
    StageOwner,
    TimeTrackingStage,
    TimeTrackingError,
)

logger = logging.getLogger(__name__)


# (reviewer-side field, submitter-side field) per stage
STAGE_HOUR_FIELDS: Dict[TimeTrackingStage, Tuple[str, str]] = {
    TimeTrackingStage.LEGAL_INTAKE: ("legal_intake_legal_admin_hours", "legal_intake_submitter_hours"),
    TimeTrackingStage.LEGAL_REVIEW: ("legal_review_attorney_hours", "legal_review_submitter_hours"),
    TimeTrackingStage.COMPLIANCE_REVIEW: ("compliance_review_reviewer_hours", "compliance_review_submitter_hours"),
    TimeTrackingStage.CLOSEOUT: ("closeout_reviewer_hours", "closeout_submitter_hours"),
}

# Status a request must be in for Hold to fold the stage
STAGE_ACTIVE_STATUS: Dict[TimeTrackingStage, RequestStatus] = {
    TimeTrackingStage.LEGAL_REVIEW: RequestStatus.IN_REVIEW,
    TimeTrackingStage.COMPLIANCE_REVIEW: RequestStatus.IN_REVIEW,
    TimeTrackingStage.CLOSEOUT: RequestStatus.CLOSEOUT,
}

TOTAL_REVIEWER_FIELD = "total_reviewer_hours"
TOTAL_SUBMITTER_FIELD = "total_submitter_hours"


def hour_field_for(stage: TimeTrackingStage, owner: StageOwner) -> str:
    reviewer_field, submitter_field = STAGE_HOUR_FIELDS[stage]
    return reviewer_field if owner.is_reviewer_side else submitter_field


def calculate_totals(request: LegalRequest, overrides: Optional[Dict[str, float]] = None) -> Dict[str, float]:
    """Sum all stage buckets per side, preferring values in overrides."""
    overrides = overrides or {}

    def value(name: str) -> float:
        return overrides[name] if name in overrides else (getattr(request, name) or 0.0)

    reviewer = sum(value(r) for r, _ in STAGE_HOUR_FIELDS.values())
    submitter = sum(value(s) for _, s in STAGE_HOUR_FIELDS.values())
    return {
        TOTAL_REVIEWER_FIELD: round(reviewer, 1),
        TOTAL_SUBMITTER_FIELD: round(submitter, 1),
    }


def initial_time_tracking_fields() -> Dict[str, float]:
    """Zeroed buckets and totals for a new draft."""
    fields = {}
    for reviewer_field, submitter_field in STAGE_HOUR_FIELDS.values():
        fields[reviewer_field] = 0.0
        fields[submitter_field] = 0.0
    fields[TOTAL_REVIEWER_FIELD] = 0.0
    fields[TOTAL_SUBMITTER_FIELD] = 0.0
    return fields


def get_time_tracking_summary(request: LegalRequest) -> Dict[str, Any]:
    stages = {}
    for stage, (reviewer_field, submitter_field) in STAGE_HOUR_FIELDS.items():
        owner = get_stage_current_owner(request, stage)
        handoff = get_stage_last_handoff(request, stage)
        stages[stage.value] = {
            "reviewer_hours": getattr(request, reviewer_field) or 0.0,
            "submitter_hours": getattr(request, submitter_field) or 0.0,
            "current_owner": owner.value if owner else None,
            "last_handoff": handoff.isoformat() if handoff else None,
        }
    return {
        "item_id": request.id,
        "status": request.status.value,
        "stages": stages,
        TOTAL_REVIEWER_FIELD: request.total_reviewer_hours,
        TOTAL_SUBMITTER_FIELD: request.total_submitter_hours,
    }


class TimeTrackingService:
    """
    Accrues business hours at stage handoffs.

    Args:
        hours_provider: object with an async get_working_hours_config() method,
            consulted once per accrual call
        clock: returns the current aware datetime
    """

    def __init__(self, hours_provider, clock: Callable[[], datetime] = None):
        self.hours_provider = hours_provider
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _stage_increment(
        self,
        request: LegalRequest,
        stage: TimeTrackingStage,
        config: WorkingHoursConfig,
        now: datetime
    ) -> Optional[Tuple[str, float]]:
        owner = get_stage_current_owner(request, stage)
        handoff = get_stage_last_handoff(request, stage)
        if owner is None or handoff is None:
            return None

        hours = calculate_business_hours(handoff, now, config)
        field_name = hour_field_for(stage, owner)
        current = getattr(request, field_name) or 0.0
        # Buckets never decrease, even if a stored value was not rounded
        updated = max(current, round(current + hours, 1))

        logger.debug(
            "Stage time: request=%s, stage=%s, owner=%s, handoff=%s, +%.1fh -> %s=%.1f",
            request.id, stage.value, owner.value, handoff.isoformat(), hours, field_name, updated
        )
        return field_name, updated

    async def accrue(
        self,
        request: LegalRequest,
        stage: TimeTrackingStage,
        new_owner: Optional[StageOwner] = None
    ) -> Dict[str, float]:
        """
        Close out the current ownership segment of a stage.

        Hours since the last handoff go to the outgoing owner's bucket; new_owner is
        informational. Returns an empty dict when the stage has no derivable owner or
        handoff, otherwise the updated bucket plus recomputed totals.

        Raises:
            TimeTrackingError: if hours could not be calculated
        """
        try:
            if get_stage_current_owner(request, stage) is None or get_stage_last_handoff(request, stage) is None:
                logger.debug("No active time tracking for request=%s, stage=%s", request.id, stage.value)
                return {}

            config = await self.hours_provider.get_working_hours_config()
            increment = self._stage_increment(request, stage, config, self.clock())
            if increment is None:
                return {}

            field_name, value = increment
            updates = {field_name: value}
            updates.update(calculate_totals(request, updates))

            logger.info(
                "Accrued stage time: request=%s, stage=%s, next_owner=%s, %s=%.1f",
                request.id, stage.value, new_owner.value if new_owner else None, field_name, value
            )
            return updates
        except Exception as e:
            raise TimeTrackingError(
                f"Failed to calculate stage time: {e}",
                details={"item_id": request.id, "stage": stage.value}
            ) from e

    async def pause(self, request: LegalRequest) -> Dict[str, float]:
        """
        Finalize hours up to now for every stage that has an owner (used by Hold).

        A stage is only folded while the request is in the status that runs it
        (review tracks in In Review, Closeout in Closeout). Outside that status its
        handoff timestamp is stale and would count time the stage did not own.
        Totals are always returned.

        Raises:
            TimeTrackingError: if hours could not be calculated
        """
        try:
            config = await self.hours_provider.get_working_hours_config()
            now = self.clock()
            updates: Dict[str, float] = {}
            for stage in STAGE_HOUR_FIELDS:
                active_status = STAGE_ACTIVE_STATUS.get(stage)
                if active_status is not None and request.status != active_status:
                    continue
                increment = self._stage_increment(request, stage, config, now)
                if increment:
                    updates[increment[0]] = increment[1]

            updates.update(calculate_totals(request, updates))
            logger.info("Paused time tracking: request=%s, updates=%s", request.id, updates)
            return updates
        except Exception as e:
            raise TimeTrackingError(
                f"Failed to pause time tracking: {e}",
                details={"item_id": request.id}
            ) from e

    async def resume(self, request: LegalRequest, resumed_status: RequestStatus) -> Dict[str, float]:
        """
        Nothing to accrue on resume. The status timestamps written together with the
        resumed status become the next handoff reference.
        """
        logger.debug("Resumed time tracking: request=%s, status=%s", request.id, resumed_status.value)
        return {}
