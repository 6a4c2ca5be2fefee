"""Approval workflow engine with database persistence.

Features:
- Multi-level sequential approval chains (one approver per level)
- Race-safe transitions (row lock plus compare-and-set on level)
- Event log rows written in the same transaction as each transition
- Post-commit hand-off of events to webhook delivery
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.errors import BadRequestError, ConflictError, NotFoundError
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.models.approval import ServiceApproval, ServiceApprovalDecision
from approvalhub.repositories.approval import (
    ServiceApprovalDecisionRepository,
    ServiceApprovalRepository,
)
from approvalhub.repositories.webhook import WebhookEventRepository
from approvalhub.services.approval.directory import AllowAllDirectory, ApproverDirectory
from approvalhub.services.approval.schemas import (
    DEFAULT_CANCEL_COMMENT,
    ApprovalCreate,
    ApprovalListFilters,
    ApprovalStatus,
    ApprovalUpdate,
    ApprovalView,
    DecisionValue,
)
from approvalhub.services.auth.gate import ServiceAuthContext
from approvalhub.services.webhook.events import (
    EventSink,
    build_event_payload,
    enqueue_delivery,
    publish_events,
    record_event,
)
from approvalhub.services.webhook.schemas import WebhookEventType

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class ApprovalWorkflowEngine:
    """Engine for managing service approvals with database persistence.

    Every public method runs as one unit of work on its own session. State
    changes and their events commit together; events are handed to the
    event sink only after the commit succeeded.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        directory: ApproverDirectory | None = None,
        event_sink: EventSink | None = None,
    ):
        """Initialize approval workflow engine.

        @param session_factory - Optional factory for creating database sessions
        @param directory - Approver resolution (accepts any id when None)
        @param event_sink - Receives committed event ids (defaults to Celery enqueue)
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self.directory = directory or AllowAllDirectory()
        self.event_sink = event_sink or enqueue_delivery

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _snapshot(view: ApprovalView) -> dict[str, Any]:
        data = view.model_dump(mode="json", by_alias=True)
        data.pop("decisions", None)
        return data

    async def _decisions(
        self, session: AsyncSession, approval_id: str
    ) -> Sequence[ServiceApprovalDecision]:
        return await ServiceApprovalDecisionRepository(session).get_by_filter(
            approval_id=approval_id, order_by=ServiceApprovalDecision.level
        )

    async def _view(self, session: AsyncSession, approval: ServiceApproval) -> ApprovalView:
        return ApprovalView.from_model(approval, list(await self._decisions(session, approval.id)))

    async def _emit(
        self,
        session: AsyncSession,
        service: ServiceAuthContext,
        event_type: WebhookEventType,
        view: ApprovalView,
        **extra: Any,
    ) -> str:
        payload = build_event_payload(
            event_type.value,
            service.service_id,
            service.service_name,
            approval=self._snapshot(view),
            **extra,
        )
        event = await record_event(
            session,
            service_id=service.service_id,
            event_type=event_type.value,
            payload=payload,
            approval_id=view.id,
        )
        return event.id

    async def _validate_approvers(self, data: ApprovalCreate) -> list[dict[str, Any]]:
        if not data.approvers:
            raise BadRequestError("At least one approver is required")

        for entry in data.approvers:
            if not entry.user_id or not entry.user_id.strip() or entry.level < 1:
                raise BadRequestError(
                    "Each approver must have a userId and a level of at least 1"
                )

        missing = await self.directory.missing([a.user_id for a in data.approvers])
        if missing:
            raise BadRequestError(f"Approver not found: {', '.join(missing)}")

        ordered = sorted(data.approvers, key=lambda a: a.level)
        levels = [a.level for a in ordered]
        if levels != list(range(1, len(ordered) + 1)):
            raise BadRequestError(
                "Approval levels must be sequential starting from 1 "
                f"(got {levels})"
            )
        return [a.to_json() for a in ordered]

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    async def create(
        self, service: ServiceAuthContext, data: ApprovalCreate
    ) -> ApprovalView:
        """Create a new approval with one pending decision per level.

        @param service - Calling service
        @param data - Approval creation data
        @returns Created approval view
        @raises BadRequestError if validation fails (nothing is persisted)
        """
        if not data.title or not data.title.strip():
            raise BadRequestError("Title is required")
        approvers = await self._validate_approvers(data)

        metadata = data.metadata or {
            "source": "service-api",
            "serviceName": service.service_name,
        }

        async with self._session_factory() as session:
            repo = ServiceApprovalRepository(session)
            decision_repo = ServiceApprovalDecisionRepository(session)

            approval = await repo.create({
                "service_id": service.service_id,
                "service_type": "api",
                "approval_type": data.approval_type.value,
                "external_id": data.external_id,
                "title": data.title.strip(),
                "description": data.description,
                "priority": data.priority.value,
                "urgency": data.urgency.value,
                "due_date": data.due_date,
                "metadata_": metadata,
                "current_level": 1,
                "total_levels": len(approvers),
                "approvers": approvers,
                "status": ApprovalStatus.PENDING.value,
                "completed_at": None,
            })
            decisions = await decision_repo.create_many([
                {
                    "approval_id": approval.id,
                    "approver_id": entry["userId"],
                    "level": entry["level"],
                    "decision": DecisionValue.PENDING.value,
                    "comments": None,
                    "decision_date": None,
                }
                for entry in approvers
            ])

            view = ApprovalView.from_model(approval, decisions)
            event_id = await self._emit(
                session, service, WebhookEventType.APPROVAL_CREATED, view
            )
            await session.commit()

        logger.info(
            f"Created approval {view.id} with {view.total_levels} level(s)",
            extra={"service_id": service.service_id, "approval_id": view.id},
        )
        publish_events(self.event_sink, [event_id])
        return view

    async def get(self, service: ServiceAuthContext, approval_id: str) -> ApprovalView:
        """Get approval owned by the calling service.

        @raises NotFoundError if absent or foreign
        """
        async with self._session_factory() as session:
            approval = await ServiceApprovalRepository(session).get_owned(
                approval_id, service.service_id
            )
            if approval is None:
                raise NotFoundError("Approval not found")
            return await self._view(session, approval)

    async def list_approvals(
        self,
        service: ServiceAuthContext,
        filters: ApprovalListFilters | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[ApprovalView], int, int, int]:
        """List approvals with filters and pagination.

        @returns Tuple of (views, total, effective limit, effective offset)
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        kwargs = filters.as_kwargs() if filters else {}

        async with self._session_factory() as session:
            rows, total = await ServiceApprovalRepository(session).list_for_service(
                service.service_id,
                skip=offset,
                limit=limit,
                sort_by=sort_by,
                sort_order=sort_order,
                **kwargs,
            )
            views = [ApprovalView.from_model(row) for row in rows]
        return views, total, limit, offset

    # -------------------------------------------------------------------------
    # Edit / delete
    # -------------------------------------------------------------------------

    @staticmethod
    def _clean_changes(data: ApprovalUpdate) -> dict[str, Any]:
        changes = data.changes()
        if "title" in changes:
            title = changes["title"]
            if title is None or not title.strip():
                raise BadRequestError("Title cannot be empty")
            changes["title"] = title.strip()
        for key in ("priority", "urgency"):
            if key in changes and changes[key] is None:
                del changes[key]
        if not changes:
            raise BadRequestError("No updatable fields provided")
        return changes

    async def update(
        self, service: ServiceAuthContext, approval_id: str, data: ApprovalUpdate
    ) -> ApprovalView:
        """Edit descriptive fields of an approval.

        Allowed in any status, including terminal ones.

        @raises NotFoundError if absent or foreign
        @raises BadRequestError if no field is given or the title is blank
        """
        changes = self._clean_changes(data)

        async with self._session_factory() as session:
            repo = ServiceApprovalRepository(session)
            approval = await repo.get_owned(approval_id, service.service_id)
            if approval is None:
                raise NotFoundError("Approval not found")

            await repo.update(approval, changes)
            await session.refresh(approval)
            view = await self._view(session, approval)
            event_id = await self._emit(
                session,
                service,
                WebhookEventType.APPROVAL_UPDATED,
                view,
                changes=sorted(data.model_dump(exclude_unset=True, by_alias=True)),
            )
            await session.commit()

        publish_events(self.event_sink, [event_id])
        return view

    async def bulk_update(
        self, service: ServiceAuthContext, approval_ids: list[str], data: ApprovalUpdate
    ) -> int:
        """Apply one update to several approvals atomically.

        @raises NotFoundError if any id is absent or foreign
        @returns Number of updated approvals
        """
        changes = self._clean_changes(data)
        ids = list(dict.fromkeys(approval_ids))
        changed_keys = sorted(data.model_dump(exclude_unset=True, by_alias=True))

        async with self._session_factory() as session:
            repo = ServiceApprovalRepository(session)
            owned = await repo.get_owned_ids(service.service_id, ids)
            missing = [i for i in ids if i not in owned]
            if missing:
                raise NotFoundError(f"Approvals not found: {', '.join(missing)}")

            event_ids = []
            for approval_id in ids:
                approval = await repo.get_owned(approval_id, service.service_id)
                await repo.update(approval, changes)
                await session.refresh(approval)
                view = await self._view(session, approval)
                event_ids.append(
                    await self._emit(
                        session,
                        service,
                        WebhookEventType.APPROVAL_UPDATED,
                        view,
                        changes=changed_keys,
                    )
                )
            await session.commit()

        publish_events(self.event_sink, event_ids)
        return len(ids)

    async def _delete_ids(self, session: AsyncSession, ids: list[str]) -> int:
        # Children first: events keep their row with a nulled reference.
        await WebhookEventRepository(session).detach_approvals(ids)
        await ServiceApprovalDecisionRepository(session).delete_for_approvals(ids)
        return await ServiceApprovalRepository(session).delete_many(ids)

    async def delete(self, service: ServiceAuthContext, approval_id: str) -> None:
        """Delete an approval and its decisions in any status.

        @raises NotFoundError if absent or foreign
        """
        async with self._session_factory() as session:
            owned = await ServiceApprovalRepository(session).get_owned_ids(
                service.service_id, [approval_id]
            )
            if not owned:
                raise NotFoundError("Approval not found")
            await self._delete_ids(session, [approval_id])
            await session.commit()

        logger.info(
            f"Deleted approval {approval_id}",
            extra={"service_id": service.service_id, "approval_id": approval_id},
        )

    async def bulk_delete(self, service: ServiceAuthContext, approval_ids: list[str]) -> int:
        """Delete several approvals atomically.

        @raises NotFoundError if any id is absent or foreign
        @returns Number of deleted approvals
        """
        ids = list(dict.fromkeys(approval_ids))
        if not ids:
            raise BadRequestError("approvalIds is required")

        async with self._session_factory() as session:
            owned = await ServiceApprovalRepository(session).get_owned_ids(
                service.service_id, ids
            )
            missing = [i for i in ids if i not in owned]
            if missing:
                raise NotFoundError(f"Approvals not found: {', '.join(missing)}")
            deleted = await self._delete_ids(session, ids)
            await session.commit()

        logger.info(
            f"Deleted {deleted} approval(s)", extra={"service_id": service.service_id}
        )
        return deleted

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        service: ServiceAuthContext,
        approval_id: str,
        action: str,
        expected_level: int | None,
        comments: str | None,
    ) -> ApprovalView:
        async with self._session_factory() as session:
            repo = ServiceApprovalRepository(session)
            decision_repo = ServiceApprovalDecisionRepository(session)

            approval = await repo.get_owned(
                approval_id, service.service_id, for_update=True
            )
            if approval is None:
                raise NotFoundError("Approval not found")
            if approval.status != ApprovalStatus.PENDING.value:
                raise ConflictError(f"Approval is already {approval.status}")

            level = approval.current_level
            if expected_level is not None and expected_level != level:
                raise ConflictError(
                    f"Approval is at level {level}, not {expected_level}"
                )

            decision = await decision_repo.get_for_level(approval.id, level)
            if decision is None:
                raise BadRequestError("No approver found for current level")

            now = self._now()
            if action == "approve":
                if level >= approval.total_levels:
                    values = {
                        "status": ApprovalStatus.APPROVED.value,
                        "current_level": level + 1,
                        "completed_at": now,
                    }
                    event_type = WebhookEventType.APPROVAL_APPROVED
                else:
                    values = {"current_level": level + 1}
                    event_type = WebhookEventType.APPROVAL_UPDATED
                decision_values = {
                    "decision": DecisionValue.APPROVED.value,
                    "decision_date": now,
                    "comments": comments,
                }
            elif action == "reject":
                values = {"status": ApprovalStatus.REJECTED.value, "completed_at": now}
                event_type = WebhookEventType.APPROVAL_REJECTED
                decision_values = {
                    "decision": DecisionValue.REJECTED.value,
                    "decision_date": now,
                    "comments": comments,
                }
            else:
                values = {"status": ApprovalStatus.CANCELLED.value, "completed_at": now}
                event_type = WebhookEventType.APPROVAL_CANCELLED
                decision_values = {
                    "decision_date": now,
                    "comments": comments or DEFAULT_CANCEL_COMMENT,
                }

            if not await repo.transition(approval.id, service.service_id, level, values):
                raise ConflictError("Approval was modified concurrently")

            await decision_repo.update(decision, decision_values)
            await session.refresh(approval)

            view = await self._view(session, approval)
            event_id = await self._emit(
                session,
                service,
                event_type,
                view,
                decision={
                    "action": action,
                    "level": level,
                    "approverId": decision.approver_id,
                    "comments": decision_values["comments"],
                },
            )
            await session.commit()

        logger.info(
            f"Approval {approval_id} {action} at level {level} -> {view.status.value}",
            extra={
                "service_id": service.service_id,
                "approval_id": approval_id,
                "level": level,
            },
        )
        publish_events(self.event_sink, [event_id])
        return view

    async def approve(
        self,
        service: ServiceAuthContext,
        approval_id: str,
        *,
        expected_level: int | None = None,
        comments: str | None = None,
    ) -> ApprovalView:
        """Approve at the current level.

        The final level moves the approval to APPROVED; earlier levels
        advance ``current_level`` by one.

        @raises NotFoundError if absent or foreign
        @raises ConflictError if not PENDING, on level mismatch, or when a
            concurrent transition won
        @raises BadRequestError if no decision exists for the current level
        """
        return await self._transition(
            service, approval_id, "approve", expected_level, comments
        )

    async def reject(
        self,
        service: ServiceAuthContext,
        approval_id: str,
        *,
        expected_level: int | None = None,
        comments: str | None = None,
    ) -> ApprovalView:
        """Reject at the current level, ending the workflow."""
        return await self._transition(
            service, approval_id, "reject", expected_level, comments
        )

    async def cancel(
        self,
        service: ServiceAuthContext,
        approval_id: str,
        *,
        expected_level: int | None = None,
        comments: str | None = None,
    ) -> ApprovalView:
        """Cancel a pending approval on behalf of the owning service."""
        return await self._transition(
            service, approval_id, "cancel", expected_level, comments
        )


_workflow_engine: ApprovalWorkflowEngine | None = None


def get_approval_workflow_engine() -> ApprovalWorkflowEngine:
    """Get or create approval workflow engine singleton.

    @returns ApprovalWorkflowEngine instance
    """
    global _workflow_engine
    if _workflow_engine is None:
        _workflow_engine = ApprovalWorkflowEngine()
    return _workflow_engine


def reset_approval_workflow_engine() -> None:
    """Reset approval workflow engine singleton (for testing)."""
    global _workflow_engine
    _workflow_engine = None
