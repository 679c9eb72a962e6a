"""
Legal Review Hub - Legal Request Model

The request aggregate as read back from the request store. Workflow actions never
mutate a LegalRequest; they build a field diff (field name -> Python value) that the
store persists, then reload.

Stored form: enums as their display value, datetimes as ISO-8601 strings,
principals as dicts.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any

from dateutil import parser as date_parser

from services.workflow_types import (
    RequestStatus,
    LegalReviewStatus,
    ComplianceReviewStatus,
    ReviewOutcome,
    ReviewAudience,
    Principal,
)


@dataclass
class LegalRequest:
    id: int
    title: str = ""
    request_id: Optional[str] = None
    status: RequestStatus = RequestStatus.DRAFT
    previous_status: Optional[RequestStatus] = None
    review_audience: ReviewAudience = ReviewAudience.LEGAL

    created_by: Optional[Principal] = None
    created_on: Optional[datetime] = None

    # Submission and routing
    submitted_by: Optional[Principal] = None
    submitted_on: Optional[datetime] = None
    submitted_to_assign_attorney_by: Optional[Principal] = None
    submitted_to_assign_attorney_on: Optional[datetime] = None
    submitted_for_review_by: Optional[Principal] = None
    submitted_for_review_on: Optional[datetime] = None
    attorney: List[Principal] = field(default_factory=list)
    attorney_assign_notes: Optional[str] = None

    # Legal review
    legal_review_status: LegalReviewStatus = LegalReviewStatus.NOT_REQUIRED
    legal_review_outcome: Optional[ReviewOutcome] = None
    legal_review_notes: Optional[str] = None
    legal_status_updated_by: Optional[Principal] = None
    legal_status_updated_on: Optional[datetime] = None
    legal_review_completed_by: Optional[Principal] = None
    legal_review_completed_on: Optional[datetime] = None

    # Compliance review
    compliance_review_status: ComplianceReviewStatus = ComplianceReviewStatus.NOT_REQUIRED
    compliance_review_outcome: Optional[ReviewOutcome] = None
    compliance_review_notes: Optional[str] = None
    compliance_status_updated_by: Optional[Principal] = None
    compliance_status_updated_on: Optional[datetime] = None
    compliance_review_completed_by: Optional[Principal] = None
    compliance_review_completed_on: Optional[datetime] = None
    is_foreside_review_required: bool = False
    is_retail_use: bool = False

    # Closeout and regulatory documents
    closeout_by: Optional[Principal] = None
    closeout_on: Optional[datetime] = None
    closeout_notes: Optional[str] = None
    tracking_id: Optional[str] = None
    comments_acknowledged: bool = False
    comments_acknowledged_on: Optional[datetime] = None
    awaiting_regulatory_since: Optional[datetime] = None
    regulatory_documents_notes: Optional[str] = None
    regulatory_comments_received: Optional[bool] = None
    completed_by: Optional[Principal] = None
    completed_on: Optional[datetime] = None

    # Hold and cancel
    on_hold_reason: Optional[str] = None
    on_hold_by: Optional[Principal] = None
    on_hold_since: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[Principal] = None
    cancelled_on: Optional[datetime] = None

    # Hour buckets
    legal_intake_legal_admin_hours: float = 0.0
    legal_intake_submitter_hours: float = 0.0
    legal_review_attorney_hours: float = 0.0
    legal_review_submitter_hours: float = 0.0
    compliance_review_reviewer_hours: float = 0.0
    compliance_review_submitter_hours: float = 0.0
    closeout_reviewer_hours: float = 0.0
    closeout_submitter_hours: float = 0.0
    total_reviewer_hours: float = 0.0
    total_submitter_hours: float = 0.0

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LegalRequest":
        """Build a request from its stored form. Unknown keys (e.g. Mongo _id) are ignored."""
        known = set(cls.field_names())
        values = {}
        for key, raw in data.items():
            # Cleared fields fall back to their defaults
            if key in known and raw is not None:
                values[key] = deserialize_value(key, raw)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {name: serialize_value(getattr(self, name)) for name in self.field_names()}


# =============================================================================
# FIELD CODECS
# =============================================================================

ENUM_FIELDS = {
    "status": RequestStatus,
    "previous_status": RequestStatus,
    "review_audience": ReviewAudience,
    "legal_review_status": LegalReviewStatus,
    "legal_review_outcome": ReviewOutcome,
    "compliance_review_status": ComplianceReviewStatus,
    "compliance_review_outcome": ReviewOutcome,
}

PRINCIPAL_FIELDS = {
    "created_by", "submitted_by", "submitted_to_assign_attorney_by",
    "submitted_for_review_by", "legal_status_updated_by", "legal_review_completed_by",
    "compliance_status_updated_by", "compliance_review_completed_by", "closeout_by",
    "completed_by", "on_hold_by", "cancelled_by",
}

DATETIME_FIELDS = {
    "created_on", "submitted_on", "submitted_to_assign_attorney_on",
    "submitted_for_review_on", "legal_status_updated_on", "legal_review_completed_on",
    "compliance_status_updated_on", "compliance_review_completed_on", "closeout_on",
    "comments_acknowledged_on", "awaiting_regulatory_since", "completed_on",
    "on_hold_since", "cancelled_on",
}


def serialize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Principal):
        return value.to_dict()
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def deserialize_value(key: str, raw: Any) -> Any:
    if key in ENUM_FIELDS:
        return ENUM_FIELDS[key](raw)
    if key in DATETIME_FIELDS:
        return raw if isinstance(raw, datetime) else date_parser.isoparse(raw)
    if key in PRINCIPAL_FIELDS:
        return raw if isinstance(raw, Principal) else Principal.from_dict(raw)
    if key == "attorney":
        return [a if isinstance(a, Principal) else Principal.from_dict(a) for a in raw]
    return raw


def serialize_fields(diff: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a field diff to its stored form.

    Raises:
        ValueError: if the diff names a field the request model does not have
    """
    known = set(LegalRequest.field_names())
    unknown = [k for k in diff if k not in known]
    if unknown:
        raise ValueError(f"Unknown request fields: {unknown}")
    return {key: serialize_value(value) for key, value in diff.items()}
