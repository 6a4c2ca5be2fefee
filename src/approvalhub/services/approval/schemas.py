"""Approval workflow schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from approvalhub.core.schemas import CamelModel


class ApprovalType(str, Enum):
    """Kinds of approvals a service can request."""

    TASK = "TASK"
    DOCUMENT = "DOCUMENT"
    PROJECT = "PROJECT"
    CUSTOM = "CUSTOM"


class ApprovalPriority(str, Enum):
    """Approval priority."""

    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class ApprovalUrgency(str, Enum):
    """Approval urgency."""

    URGENT = "URGENT"
    NORMAL = "NORMAL"
    LOW = "LOW"


class ApprovalStatus(str, Enum):
    """Approval status. Everything but PENDING is terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class DecisionValue(str, Enum):
    """Value of a single level's decision."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset(
    {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.CANCELLED}
)

DEFAULT_CANCEL_COMMENT = "Approval cancelled by service"


# =============================================================================
# Requests
# =============================================================================


class ApproverEntry(CamelModel):
    """One approver in the ordered chain."""

    user_id: str = Field(..., description="Approver user ID")
    level: int = Field(..., description="1-based approval level")
    role: str | None = Field(None, description="Approver role label")
    department: str | None = Field(None, description="Approver department")

    def to_json(self) -> dict[str, Any]:
        """Stored representation."""
        return {
            "userId": self.user_id,
            "level": self.level,
            "role": self.role,
            "department": self.department,
        }


class ApprovalCreate(CamelModel):
    """Request to create an approval."""

    title: str = Field("", description="Approval title")
    description: str | None = Field(None, description="Free text description")
    approval_type: ApprovalType = Field(
        ApprovalType.CUSTOM, alias="type", description="Approval type"
    )
    priority: ApprovalPriority = Field(ApprovalPriority.NORMAL, description="Priority")
    urgency: ApprovalUrgency = Field(ApprovalUrgency.NORMAL, description="Urgency")
    due_date: datetime | None = Field(None, description="Optional due date")
    external_id: str | None = Field(None, description="Caller-side reference")
    approvers: list[ApproverEntry] = Field(
        default_factory=list, description="Approver chain, one per level"
    )
    metadata: dict[str, Any] | None = Field(None, description="Opaque caller data")


class ApprovalUpdate(CamelModel):
    """Editable approval fields. Only keys present in the request apply."""

    title: str | None = Field(None, description="New title")
    description: str | None = Field(None, description="New description")
    priority: ApprovalPriority | None = Field(None, description="New priority")
    urgency: ApprovalUrgency | None = Field(None, description="New urgency")
    due_date: datetime | None = Field(None, description="New due date")
    metadata: dict[str, Any] | None = Field(None, description="Replacement metadata")

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set by the caller, keyed by column name."""
        data = self.model_dump(exclude_unset=True)
        for key in ("priority", "urgency"):
            if isinstance(data.get(key), Enum):
                data[key] = data[key].value
        if "metadata" in data:
            data["metadata_"] = data.pop("metadata")
        return data


class BulkApprovalUpdate(CamelModel):
    """Apply the same update to several approvals."""

    approval_ids: list[str] = Field(..., min_length=1, description="Approval IDs")
    updates: ApprovalUpdate = Field(..., description="Fields to apply")


class TransitionRequest(CamelModel):
    """Body of approve/reject/cancel."""

    comments: str | None = Field(None, description="Decision comment")
    expected_level: int | None = Field(
        None, description="Level the caller believes is current"
    )


class ApprovalListFilters(CamelModel):
    """Query filters for listing approvals."""

    approval_type: ApprovalType | None = None
    status: ApprovalStatus | None = None
    priority: ApprovalPriority | None = None
    urgency: ApprovalUrgency | None = None
    external_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    def as_kwargs(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        return {k: v.value if isinstance(v, Enum) else v for k, v in data.items()}


# =============================================================================
# Responses
# =============================================================================


class DecisionView(CamelModel):
    """Decision as returned to callers."""

    id: str
    approver_id: str
    level: int
    decision: DecisionValue
    comments: str | None = None
    decision_date: datetime | None = None


class WorkflowApprover(CamelModel):
    """Approver entry merged with its decision."""

    user_id: str
    level: int
    role: str | None = None
    department: str | None = None
    decision: DecisionValue = DecisionValue.PENDING
    decision_date: datetime | None = None
    comments: str | None = None


class WorkflowView(CamelModel):
    """Progress of an approval through its levels."""

    current_level: int
    total_levels: int
    approvers: list[WorkflowApprover]
    next_approver: dict[str, Any] | None = None
    is_complete: bool


class ApprovalView(CamelModel):
    """Approval with workflow and decisions."""

    id: str
    service_id: str
    service_type: str
    approval_type: ApprovalType
    external_id: str | None = None
    title: str
    description: str | None = None
    status: ApprovalStatus
    priority: ApprovalPriority
    urgency: ApprovalUrgency
    due_date: datetime | None = None
    current_level: int
    total_levels: int
    metadata: dict[str, Any] | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    workflow: WorkflowView
    decisions: list[DecisionView]

    @classmethod
    def from_model(cls, approval: Any, decisions: list[Any] | None = None) -> "ApprovalView":
        """Build the view from an ORM approval.

        Args:
            approval: ServiceApproval instance
            decisions: Decision rows (defaults to the loaded relationship)
        """
        rows = sorted(
            decisions if decisions is not None else approval.decisions,
            key=lambda d: d.level,
        )
        by_slot = {(d.approver_id, d.level): d for d in rows}
        approvers = approval.approvers or []

        merged = []
        for entry in approvers:
            decision = by_slot.get((entry.get("userId"), entry.get("level")))
            merged.append(
                WorkflowApprover(
                    user_id=entry.get("userId"),
                    level=entry.get("level"),
                    role=entry.get("role"),
                    department=entry.get("department"),
                    decision=decision.decision if decision else DecisionValue.PENDING,
                    decision_date=decision.decision_date if decision else None,
                    comments=decision.comments if decision else None,
                )
            )

        workflow = WorkflowView(
            current_level=approval.current_level,
            total_levels=approval.total_levels,
            approvers=merged,
            next_approver=next(
                (a for a in approvers if a.get("level") == approval.current_level), None
            ),
            is_complete=approval.current_level > approval.total_levels,
        )

        return cls(
            id=approval.id,
            service_id=approval.service_id,
            service_type=approval.service_type,
            approval_type=approval.approval_type,
            external_id=approval.external_id,
            title=approval.title,
            description=approval.description,
            status=approval.status,
            priority=approval.priority,
            urgency=approval.urgency,
            due_date=approval.due_date,
            current_level=approval.current_level,
            total_levels=approval.total_levels,
            metadata=approval.metadata_,
            completed_at=approval.completed_at,
            created_at=approval.created_at,
            updated_at=approval.updated_at,
            workflow=workflow,
            decisions=[DecisionView.model_validate(d) for d in rows],
        )
