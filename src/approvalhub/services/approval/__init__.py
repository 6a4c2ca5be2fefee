"""Approval workflow module."""

from approvalhub.services.approval.directory import (
    AllowAllDirectory,
    ApproverDirectory,
    StaticApproverDirectory,
)
from approvalhub.services.approval.schemas import (
    ApprovalCreate,
    ApprovalStatus,
    ApprovalUpdate,
    ApprovalView,
)
from approvalhub.services.approval.workflow import (
    ApprovalWorkflowEngine,
    get_approval_workflow_engine,
    reset_approval_workflow_engine,
)

__all__ = [
    "AllowAllDirectory",
    "ApprovalCreate",
    "ApprovalStatus",
    "ApprovalUpdate",
    "ApprovalView",
    "ApprovalWorkflowEngine",
    "ApproverDirectory",
    "StaticApproverDirectory",
    "get_approval_workflow_engine",
    "reset_approval_workflow_engine",
]
