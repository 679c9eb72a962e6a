"""
Legal Review Hub - Workflow Types

Shared enums, error types and result objects for the legal review workflow.
Enum values are the display strings stored on request records.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any


# =============================================================================
# STATUS ENUMS
# =============================================================================

class RequestStatus(str, Enum):
    """Top-level lifecycle state of a legal review request."""
    DRAFT = "Draft"
    LEGAL_INTAKE = "Legal Intake"
    ASSIGN_ATTORNEY = "Assign Attorney"        # Committee picks the attorney
    IN_REVIEW = "In Review"
    CLOSEOUT = "Closeout"
    AWAITING_REGULATORY_DOCUMENTS = "Awaiting Regulatory Documents"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ON_HOLD = "On Hold"


TERMINAL_STATUSES = (RequestStatus.COMPLETED, RequestStatus.CANCELLED)


class LegalReviewStatus(str, Enum):
    NOT_REQUIRED = "Not Required"
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    WAITING_ON_SUBMITTER = "Waiting On Submitter"
    WAITING_ON_ATTORNEY = "Waiting On Attorney"
    COMPLETED = "Completed"


class ComplianceReviewStatus(str, Enum):
    NOT_REQUIRED = "Not Required"
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    WAITING_ON_SUBMITTER = "Waiting On Submitter"
    WAITING_ON_COMPLIANCE = "Waiting On Compliance"
    COMPLETED = "Completed"


class ReviewOutcome(str, Enum):
    APPROVED = "Approved"
    APPROVED_WITH_COMMENTS = "Approved With Comments"
    RESPOND_TO_COMMENTS_AND_RESUBMIT = "Respond To Comments And Resubmit"
    NOT_APPROVED = "Not Approved"


class ReviewAudience(str, Enum):
    """Which review tracks a request must pass through."""
    LEGAL = "Legal"
    COMPLIANCE = "Compliance"
    BOTH = "Both"

    @property
    def includes_legal(self) -> bool:
        return self in (ReviewAudience.LEGAL, ReviewAudience.BOTH)

    @property
    def includes_compliance(self) -> bool:
        return self in (ReviewAudience.COMPLIANCE, ReviewAudience.BOTH)


# =============================================================================
# TIME TRACKING ENUMS
# =============================================================================

class TimeTrackingStage(str, Enum):
    LEGAL_INTAKE = "LegalIntake"
    LEGAL_REVIEW = "LegalReview"
    COMPLIANCE_REVIEW = "ComplianceReview"
    CLOSEOUT = "Closeout"


class StageOwner(str, Enum):
    """Party currently holding a stage. Attorney and Reviewer are both reviewer-side."""
    ATTORNEY = "Attorney"
    REVIEWER = "Reviewer"
    SUBMITTER = "Submitter"

    @property
    def is_reviewer_side(self) -> bool:
        return self != StageOwner.SUBMITTER


# =============================================================================
# PRINCIPAL
# =============================================================================

@dataclass
class Principal:
    """The user performing a workflow action."""
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "email": self.email}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Principal"]:
        if not data:
            return None
        return cls(id=str(data["id"]), display_name=data.get("display_name"), email=data.get("email"))


# =============================================================================
# ERRORS
# =============================================================================

class WorkflowError(Exception):
    """Base exception for legal review workflow errors."""
    def __init__(self, message: str, status_code: int = None, details: Dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class WorkflowPreconditionError(WorkflowError):
    """Raised when an action is not allowed in the request's current state."""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, status_code=409, details=details)


class RequestNotFoundError(WorkflowError):
    """Raised when a request id does not exist in the store."""
    def __init__(self, item_id: int):
        super().__init__(f"Request {item_id} not found", status_code=404, details={"item_id": item_id})


class RequestStoreError(WorkflowError):
    """Raised when a read or write against the request store fails."""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, status_code=502, details=details)


class PermissionServiceError(WorkflowError):
    """Raised by permission service clients. Never surfaced from a transition."""
    pass


class TimeTrackingError(WorkflowError):
    """Raised when hours for a stage cannot be calculated."""
    pass


# =============================================================================
# RESULT TYPES
# =============================================================================

class SecondaryOperation(str, Enum):
    TIME_TRACKING = "time_tracking"
    PERMISSIONS = "permissions"


@dataclass
class SecondaryFailure:
    """A best-effort side effect that failed without blocking the transition."""
    operation: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"operation": self.operation, "message": self.message, "details": self.details}


@dataclass
class WorkflowActionResult:
    """Outcome of a workflow action, returned after the request is reloaded."""
    item_id: int
    new_status: str
    updated_request: Any
    fields_updated: List[str]
    correlation_id: str
    success: bool = True
    secondary_failures: List[SecondaryFailure] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.secondary_failures)

    def to_dict(self) -> Dict[str, Any]:
        request = self.updated_request
        return {
            "success": self.success,
            "item_id": self.item_id,
            "new_status": self.new_status,
            "updated_request": request.to_dict() if hasattr(request, "to_dict") else request,
            "fields_updated": list(self.fields_updated),
            "correlation_id": self.correlation_id,
            "secondary_failures": [f.to_dict() for f in self.secondary_failures],
        }
