"""Service approval and per-level decision models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approvalhub.models.base import Base, JSONType, TimestampMixin, generate_id


class ServiceApproval(Base, TimestampMixin):
    """Multi-level sequential approval owned by a service identity."""

    __tablename__ = "service_approvals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("service_identities.id"), nullable=False, index=True
    )

    # Classification
    service_type: Mapped[str] = mapped_column(String(30), nullable=False, default="api")
    approval_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="NORMAL")
    urgency: Mapped[str] = mapped_column(String(10), nullable=False, default="NORMAL")
    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # Workflow
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_levels: Mapped[int] = mapped_column(Integer, nullable=False)
    approvers: Mapped[list[dict]] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING", index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    decisions: Mapped[list["ServiceApprovalDecision"]] = relationship(
        "ServiceApprovalDecision",
        back_populates="approval",
        lazy="selectin",
        order_by="ServiceApprovalDecision.level",
    )

    __table_args__ = (
        Index("idx_service_approval_service_status", "service_id", "status"),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_service_approval_status",
        ),
        CheckConstraint(
            "approval_type IN ('TASK', 'DOCUMENT', 'PROJECT', 'CUSTOM')",
            name="ck_service_approval_type",
        ),
        CheckConstraint("current_level >= 1", name="ck_service_approval_level"),
        CheckConstraint("total_levels >= 1", name="ck_service_approval_total_levels"),
    )


class ServiceApprovalDecision(Base):
    """Decision slot for one level of one approval."""

    __tablename__ = "service_approval_decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    approval_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("service_approvals.id"), nullable=False, index=True
    )
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False, default="PENDING")
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decision_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    approval: Mapped["ServiceApproval"] = relationship(
        "ServiceApproval", back_populates="decisions"
    )

    __table_args__ = (
        UniqueConstraint("approval_id", "level", name="uq_decision_approval_level"),
        CheckConstraint(
            "decision IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_decision_value",
        ),
    )
