"""Signed webhook delivery with bounded retries.

Features:
- Canonical JSON body signed with the registration secret
- One delivery row per attempt; only the schedule of a row changes afterwards
- Per-attempt timeout from the registration
- Failed attempts scheduled for retry until ``retry_count`` is reached
- Retry sweep that claims each due row before re-attempting it
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.config import Settings, get_settings
from approvalhub.core.errors import BadRequestError, NotFoundError
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.models.webhook import ServiceWebhook, WebhookEvent
from approvalhub.repositories.webhook import (
    ServiceWebhookRepository,
    WebhookDeliveryRepository,
    WebhookEventRepository,
)
from approvalhub.services.auth.gate import ServiceAuthContext
from approvalhub.services.webhook.events import build_event_payload, record_event
from approvalhub.services.webhook.schemas import (
    DeliveryResult,
    DeliveryStatus,
    WebhookEventType,
    WebhookTestResult,
)
from approvalhub.services.webhook.signing import (
    ATTEMPT_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    WEBHOOK_ID_HEADER,
    canonical_json,
    sign_payload,
)

logger = logging.getLogger(__name__)

# Per-request timeouts from the registration override this
DEFAULT_CLIENT_TIMEOUT = 30.0


def build_request(
    webhook: ServiceWebhook, event: WebhookEvent
) -> tuple[dict[str, Any], bytes, str]:
    """Body, serialized bytes and signature for one event/webhook pair.

    Args:
        webhook: Target registration
        event: Event being delivered

    Returns:
        Tuple of (body dict, body bytes, hex signature)
    """
    body = {**(event.payload or {}), "eventId": event.id, "webhookId": webhook.id}
    raw = canonical_json(body)
    return body, raw, sign_payload(webhook.secret, raw)


class WebhookDispatcher:
    """Delivers events to subscribed webhooks over HTTP.

    Delivery errors are recorded on the delivery row and never raised to
    the caller.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        """Initialize dispatcher.

        Args:
            session_factory: Async session factory (defaults to AsyncSessionLocal)
            client: Shared HTTP client; a short-lived one is used per call when None
            settings: Application settings
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._client = client
        self.settings = settings or get_settings()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def _post(
        self, client: httpx.AsyncClient, url: str, raw: bytes, headers: dict[str, str], timeout: int
    ) -> httpx.Response:
        return await asyncio.wait_for(
            client.post(url, content=raw, headers=headers, timeout=httpx.Timeout(timeout)),
            timeout=timeout,
        )

    async def _attempt(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        webhook: ServiceWebhook,
        event: WebhookEvent,
        attempt: int,
    ) -> DeliveryResult:
        """Perform one HTTP attempt and record it.

        Args:
            session: Open session; the caller commits
            client: HTTP client
            webhook: Target registration
            event: Event being delivered
            attempt: 1-based attempt number

        Returns:
            DeliveryResult
        """
        _, raw, signature = build_request(webhook, event)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.webhook_user_agent,
            SIGNATURE_HEADER: signature,
            EVENT_HEADER: event.event_type,
            WEBHOOK_ID_HEADER: webhook.id,
            ATTEMPT_HEADER: str(attempt),
        }

        response_code: int | None = None
        response_body: str | None = None
        error: str | None = None
        started = time.monotonic()
        try:
            response = await self._post(client, webhook.url, raw, headers, webhook.timeout)
            response_code = response.status_code
            response_body = response.text
        except asyncio.TimeoutError:
            error = f"Timed out after {webhook.timeout}s"
        except httpx.HTTPError as exc:
            error = f"{type(exc).__name__}: {exc}"
        elapsed_ms = int((time.monotonic() - started) * 1000)

        ok = response_code is not None and 200 <= response_code < 300
        now = self._now()
        next_retry_at = None
        if not ok and attempt < webhook.retry_count:
            next_retry_at = now + timedelta(seconds=self.settings.webhook_retry_delay_seconds)

        snippet = response_body if response_body is not None else error
        if snippet is not None:
            snippet = snippet[: self.settings.webhook_response_snippet_chars]

        delivery = await WebhookDeliveryRepository(session).create({
            "webhook_id": webhook.id,
            "event_id": event.id,
            "status": DeliveryStatus.SUCCESS.value if ok else DeliveryStatus.FAILED.value,
            "response_code": response_code,
            "response_body": snippet,
            "attempt_count": attempt,
            "delivered_at": now if ok else None,
            "next_retry_at": next_retry_at,
        })

        if ok:
            logger.info(
                f"Delivered {event.event_type} to webhook {webhook.id} (attempt {attempt})",
                extra={"webhook_id": webhook.id, "event_id": event.id, "status": response_code},
            )
        else:
            logger.warning(
                f"Webhook {webhook.id} delivery failed (attempt {attempt}/"
                f"{webhook.retry_count}): {error or response_code}",
                extra={
                    "webhook_id": webhook.id,
                    "event_id": event.id,
                    "retry_scheduled": next_retry_at is not None,
                },
            )

        return DeliveryResult(
            delivery_id=delivery.id,
            webhook_id=webhook.id,
            status=DeliveryStatus.SUCCESS if ok else DeliveryStatus.FAILED,
            response_code=response_code,
            response_time_ms=elapsed_ms,
            attempt=attempt,
            error=error,
        )

    async def _with_client(self, func: Callable[[httpx.AsyncClient], Any]) -> Any:
        if self._client is not None:
            return await func(self._client)
        async with httpx.AsyncClient(timeout=DEFAULT_CLIENT_TIMEOUT) as client:
            return await func(client)

    async def dispatch(self, event_id: str) -> list[DeliveryResult]:
        """Deliver an event to every active subscriber of its service.

        Args:
            event_id: Committed event ID

        Returns:
            One DeliveryResult per subscribed registration
        """

        async def run(client: httpx.AsyncClient) -> list[DeliveryResult]:
            results = []
            async with self._session_factory() as session:
                event = await WebhookEventRepository(session).get_by_id(event_id)
                if event is None:
                    logger.warning(f"Event {event_id} not found; nothing to dispatch")
                    return results

                webhooks = await ServiceWebhookRepository(session).get_subscribers(
                    event.service_id, event.event_type
                )
                for webhook in webhooks:
                    results.append(await self._attempt(session, client, webhook, event, 1))
                    await session.commit()
            return results

        return await self._with_client(run)

    async def _retry_one(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        delivery_id: str,
        scheduled_at: datetime,
        webhook_id: str,
        event_id: str,
        attempt: int,
    ) -> bool:
        """Claim one due delivery and record its follow-up attempt.

        The claim is committed as a lease before the HTTP call; the old row
        is released in the same transaction that writes the new attempt.

        Returns:
            True if an attempt was made
        """
        delivery_repo = WebhookDeliveryRepository(session)
        lease_until = self._now() + timedelta(seconds=self.settings.webhook_retry_lease_seconds)
        claimed = await delivery_repo.claim_retry(delivery_id, scheduled_at, lease_until)
        await session.commit()
        if not claimed:
            return False

        webhook = await ServiceWebhookRepository(session).get_by_id(webhook_id)
        event = await WebhookEventRepository(session).get_by_id(event_id)
        if webhook is None or not webhook.is_active or event is None:
            logger.info(
                f"Dropping retry of delivery {delivery_id}; webhook inactive or event gone"
            )
            await delivery_repo.release_retry(delivery_id)
            await session.commit()
            return False

        await self._attempt(session, client, webhook, event, attempt)
        await delivery_repo.release_retry(delivery_id)
        await session.commit()
        return True

    async def retry_due(self, limit: int = 100) -> int:
        """Re-attempt failed deliveries whose retry time has passed.

        A failure on one delivery is logged and leaves its lease in place,
        so the delivery comes due again once the lease lapses.

        Args:
            limit: Maximum deliveries handled per sweep

        Returns:
            Number of attempts made
        """

        async def run(client: httpx.AsyncClient) -> int:
            attempted = 0
            async with self._session_factory() as session:
                due = [
                    (d.id, d.next_retry_at, d.webhook_id, d.event_id, d.attempt_count + 1)
                    for d in await WebhookDeliveryRepository(session).get_due_retries(
                        self._now(), limit
                    )
                ]
                for delivery_id, scheduled_at, webhook_id, event_id, attempt in due:
                    try:
                        if await self._retry_one(
                            session,
                            client,
                            delivery_id,
                            scheduled_at,
                            webhook_id,
                            event_id,
                            attempt,
                        ):
                            attempted += 1
                    except Exception:
                        await session.rollback()
                        logger.exception(
                            f"Retry of delivery {delivery_id} failed; it stays leased",
                            extra={"delivery_id": delivery_id, "webhook_id": webhook_id},
                        )
            return attempted

        return await self._with_client(run)

    async def test(
        self, service: ServiceAuthContext, webhook_id: str
    ) -> WebhookTestResult:
        """Send a synthetic signed event to one registration.

        Args:
            service: Calling service
            webhook_id: Registration ID

        Returns:
            WebhookTestResult

        Raises:
            NotFoundError: If the registration is absent or foreign
            BadRequestError: If the registration is inactive
        """

        async def run(client: httpx.AsyncClient) -> WebhookTestResult:
            async with self._session_factory() as session:
                webhook = await ServiceWebhookRepository(session).get_owned(
                    webhook_id, service.service_id
                )
                if webhook is None:
                    raise NotFoundError("Webhook not found")
                if not webhook.is_active:
                    raise BadRequestError("Webhook is not active")

                event_type = WebhookEventType.APPROVAL_CREATED.value
                event = await record_event(
                    session,
                    service_id=service.service_id,
                    event_type=event_type,
                    payload=build_event_payload(
                        event_type,
                        service.service_id,
                        service.service_name,
                        test=True,
                        message="This is a test webhook event",
                        webhookName=webhook.name,
                    ),
                )
                await session.commit()

                body, _, signature = build_request(webhook, event)
                result = await self._attempt(session, client, webhook, event, 1)
                await session.commit()

            return WebhookTestResult(
                webhook_id=webhook.id,
                webhook_name=webhook.name,
                url=webhook.url,
                event_id=event.id,
                delivery_id=result.delivery_id,
                status=result.status,
                response_code=result.response_code,
                response_time=result.response_time_ms,
                signature=signature,
                payload=body,
                error=result.error,
            )

        return await self._with_client(run)


_dispatcher: WebhookDispatcher | None = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get singleton dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher


def reset_webhook_dispatcher() -> None:
    """Drop the singleton (tests)."""
    global _dispatcher
    _dispatcher = None
