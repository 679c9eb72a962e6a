"""
Legal Review Hub - Stage Ownership Resolver

Who holds a time-tracking stage, and since when, is never stored on the request.
Both are derived from the review sub-status fields and their timestamps:

    Stage             Reviewer-side owner when...          Submitter when...        Handoff timestamp
    LegalIntake       (not tracked by status)              -                        submitted_on
    LegalReview       In Progress / Waiting On Attorney    Waiting On Submitter     legal_status_updated_on
    ComplianceReview  In Progress / Waiting On Compliance  Waiting On Submitter     compliance_status_updated_on
    Closeout          always                               never                    closeout_on, else compliance
                                                                                    then legal completion time
"""

from datetime import datetime
from typing import Optional

from services.legal_request import LegalRequest
from services.workflow_types import (
    LegalReviewStatus,
    ComplianceReviewStatus,
    StageOwner,
    TimeTrackingStage,
)


LEGAL_REVIEW_OWNERS = {
    LegalReviewStatus.IN_PROGRESS: StageOwner.ATTORNEY,
    LegalReviewStatus.WAITING_ON_ATTORNEY: StageOwner.ATTORNEY,
    LegalReviewStatus.WAITING_ON_SUBMITTER: StageOwner.SUBMITTER,
}

COMPLIANCE_REVIEW_OWNERS = {
    ComplianceReviewStatus.IN_PROGRESS: StageOwner.REVIEWER,
    ComplianceReviewStatus.WAITING_ON_COMPLIANCE: StageOwner.REVIEWER,
    ComplianceReviewStatus.WAITING_ON_SUBMITTER: StageOwner.SUBMITTER,
}


def get_stage_current_owner(request: LegalRequest, stage: TimeTrackingStage) -> Optional[StageOwner]:
    """Party holding the stage right now, or None when it is not status-tracked."""
    if stage == TimeTrackingStage.LEGAL_REVIEW:
        return LEGAL_REVIEW_OWNERS.get(request.legal_review_status)
    if stage == TimeTrackingStage.COMPLIANCE_REVIEW:
        return COMPLIANCE_REVIEW_OWNERS.get(request.compliance_review_status)
    if stage == TimeTrackingStage.CLOSEOUT:
        return StageOwner.REVIEWER
    return None


def get_stage_last_handoff(request: LegalRequest, stage: TimeTrackingStage) -> Optional[datetime]:
    """Timestamp of the last ownership change for the stage."""
    if stage == TimeTrackingStage.LEGAL_INTAKE:
        return request.submitted_on
    if stage == TimeTrackingStage.LEGAL_REVIEW:
        return request.legal_status_updated_on
    if stage == TimeTrackingStage.COMPLIANCE_REVIEW:
        return request.compliance_status_updated_on
    if stage == TimeTrackingStage.CLOSEOUT:
        return (
            request.closeout_on
            or request.compliance_review_completed_on
            or request.legal_review_completed_on
        )
    return None
