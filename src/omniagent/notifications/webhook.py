"""Webhook delivery — signed fan-out with retries and an append-only log.

``publish`` hands each interested subscription its own delivery task and
returns without waiting. A task makes up to ``max_attempts`` POSTs, sleeping
``backoff_base ** attempt`` seconds between failures, and records every try
(including ones that never got a response) as a ``DeliveryAttempt`` row.
Delivery failures are never raised to the publisher.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import HttpUrl, TypeAdapter, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from omniagent.errors.webhook_errors import (
    InvalidSubscriptionError,
    SubscriptionNotFoundError,
    UnknownEventError,
)
from omniagent.models.base import utc_now
from omniagent.models.webhook import DeliveryAttempt, WebhookSubscription
from omniagent.notifications.events import WebhookEnvelope, WebhookEvent, format_timestamp
from omniagent.notifications.signing import EVENT_HEADER, SIGNATURE_HEADER, sign_payload
from omniagent.utils.crypto import random_secret

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from omniagent.config.settings import WebhookConfig
    from omniagent.datastore.client import Datastore
    from omniagent.metrics.collector import EngineMetrics

logger = logging.getLogger(__name__)

_URL_ADAPTER: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)

TEST_PING_MESSAGE = "Test ping from OmniAgent"


@dataclass(frozen=True)
class WebhookTestResult:
    """Outcome of a one-off test delivery."""

    success: bool
    status_code: int
    message: str


@dataclass(frozen=True)
class _Target:
    """Detached copy of the subscription fields a delivery task needs."""

    subscription_id: str
    url: str
    secret: str


def _validate_url(url: str) -> str:
    try:
        _URL_ADAPTER.validate_python(url)
    except ValidationError as exc:
        raise InvalidSubscriptionError(f"invalid webhook url: {url!r}") from exc
    return url


def _validate_events(events: Iterable[str]) -> list[str]:
    kinds: list[str] = []
    for event in events:
        try:
            kinds.append(WebhookEvent(event).value)
        except ValueError as exc:
            raise InvalidSubscriptionError(f"unknown event kind: {event!r}") from exc
    if not kinds:
        raise InvalidSubscriptionError("a subscription needs at least one event kind")
    return list(dict.fromkeys(kinds))


class WebhookDispatcher:
    """Registers subscriptions and delivers events to them.

    Usage::

        dispatcher = WebhookDispatcher(datastore, config.webhooks)
        await dispatcher.start()
        sub, secret = await dispatcher.register_subscription(user_id, url, ["lead.created"])
        await dispatcher.publish(user_id, "lead.created", {"id": 1})
        ...
        await dispatcher.close()  # waits for in-flight deliveries
    """

    def __init__(
        self,
        datastore: Datastore,
        config: WebhookConfig,
        *,
        metrics: EngineMetrics | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._datastore = datastore
        self._config = config
        self._metrics = metrics
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self) -> None:  # noqa: ASYNC910
        """Create the HTTP client used for deliveries."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout,
            headers={"User-Agent": self._config.user_agent},
            transport=self._transport,
        )

    async def close(self) -> None:
        """Wait for in-flight deliveries, then close the HTTP client."""
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    @property
    def pending(self) -> int:
        """Number of delivery tasks still running (including backoff sleeps)."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Block until every scheduled delivery has finished or given up."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def register_subscription(
        self, user_id: str, url: str, events: Iterable[str]
    ) -> tuple[WebhookSubscription, str]:
        """Create a subscription with a freshly generated signing secret.

        The secret is returned here once; it is never regenerated.

        Raises:
            InvalidSubscriptionError: Empty or unknown event kinds, or a URL
                that is not an absolute http(s) URL.
        """
        url = _validate_url(url)
        kinds = _validate_events(events)
        secret = random_secret(self._config.secret_length)

        subscription = WebhookSubscription(
            user_id=user_id, url=url, events=kinds, secret=secret, active=True
        )
        async with self._datastore.session() as session:
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)

        logger.info("Webhook %s registered for %s (%s)", subscription.id, url, ", ".join(kinds))
        return subscription, secret

    async def get_subscription(self, user_id: str, subscription_id: str) -> WebhookSubscription:
        """Fetch one of the user's subscriptions.

        Raises:
            SubscriptionNotFoundError: Unknown ID or owned by another user.
        """
        async with self._datastore.session() as session:
            return await self._owned(session, user_id, subscription_id)

    async def list_subscriptions(self, user_id: str) -> list[WebhookSubscription]:
        """All of the user's subscriptions, newest first."""
        async with self._datastore.session() as session:
            result = await session.execute(
                select(WebhookSubscription)
                .where(WebhookSubscription.user_id == user_id)
                .order_by(WebhookSubscription.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_subscription(
        self,
        user_id: str,
        subscription_id: str,
        *,
        url: str | None = None,
        events: Iterable[str] | None = None,
        active: bool | None = None,
    ) -> WebhookSubscription:
        """Change the URL, event set or active flag. The secret is untouched."""
        new_url = _validate_url(url) if url is not None else None
        new_events = _validate_events(events) if events is not None else None

        async with self._datastore.session() as session:
            subscription = await self._owned(session, user_id, subscription_id)
            if new_url is not None:
                subscription.url = new_url
            if new_events is not None:
                subscription.events = new_events
            if active is not None:
                subscription.active = active
            await session.commit()
            await session.refresh(subscription)
            return subscription

    async def delete_subscription(self, user_id: str, subscription_id: str) -> None:
        """Delete a subscription together with its delivery log."""
        async with self._datastore.session() as session:
            subscription = await self._owned(session, user_id, subscription_id)
            await session.execute(
                delete(DeliveryAttempt).where(DeliveryAttempt.subscription_id == subscription.id)
            )
            await session.delete(subscription)
            await session.commit()
        logger.info("Webhook %s deleted", subscription_id)

    async def list_delivery_attempts(
        self, user_id: str, subscription_id: str | None = None, *, limit: int = 50
    ) -> list[DeliveryAttempt]:
        """Delivery log for one subscription (or all of the user's), newest first."""
        async with self._datastore.session() as session:
            query = (
                select(DeliveryAttempt)
                .join(WebhookSubscription)
                .where(WebhookSubscription.user_id == user_id)
            )
            if subscription_id is not None:
                await self._owned(session, user_id, subscription_id)
                query = query.where(DeliveryAttempt.subscription_id == subscription_id)
            result = await session.execute(
                query.order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.attempt.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, user_id: str, event: str, payload: Any) -> int:
        """Schedule delivery of *event* to every interested active subscription.

        Returns the number of deliveries scheduled. Never raises for
        delivery or lookup failures.

        Raises:
            UnknownEventError: *event* is not a known event kind.
        """
        try:
            kind = WebhookEvent(event).value
        except ValueError as exc:
            raise UnknownEventError(event) from exc
        try:
            async with self._datastore.session() as session:
                result = await session.execute(
                    select(WebhookSubscription).where(
                        WebhookSubscription.user_id == user_id,
                        WebhookSubscription.active.is_(True),
                    )
                )
                subscriptions = [s for s in result.scalars().all() if s.subscribes_to(kind)]
        except SQLAlchemyError:
            logger.exception("Could not load webhook subscriptions for %s", kind)
            return 0

        for subscription in subscriptions:
            target = _Target(subscription.id, subscription.url, subscription.secret)
            envelope = WebhookEnvelope(
                event=kind,
                timestamp=format_timestamp(self._clock()),
                webhook_id=subscription.id,
                data=payload,
            )
            task = asyncio.create_task(self._deliver(target, envelope))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(subscriptions)

    async def test_subscription(self, url: str) -> WebhookTestResult:
        """Send one unsigned ``test.ping`` envelope to *url* and report the result.

        Touches neither the subscription table nor the delivery log.
        """
        try:
            _validate_url(url)
        except InvalidSubscriptionError as exc:
            return WebhookTestResult(success=False, status_code=0, message=exc.message)

        client = self._ensure_started()
        envelope = WebhookEnvelope(
            event=WebhookEvent.TEST_PING.value,
            timestamp=format_timestamp(self._clock()),
            webhook_id="test",
            data={"message": TEST_PING_MESSAGE},
        )
        try:
            response = await client.post(
                url,
                content=envelope.to_json(),
                headers={"Content-Type": "application/json", EVENT_HEADER: envelope.event},
            )
        except httpx.HTTPError as exc:
            return WebhookTestResult(
                success=False, status_code=0, message=str(exc) or "Failed to reach webhook URL"
            )

        if response.is_success:
            message = f"Webhook responded with status {response.status_code}"
        else:
            message = f"Webhook returned error status {response.status_code}"
        return WebhookTestResult(
            success=response.is_success, status_code=response.status_code, message=message
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, target: _Target, envelope: WebhookEnvelope) -> None:
        body = envelope.to_json()
        signature = sign_payload(body, target.secret)
        max_attempts = self._config.max_attempts
        try:
            for attempt in range(1, max_attempts + 1):
                if await self._attempt(target, envelope, body, signature, attempt):
                    return
                if attempt < max_attempts:
                    await self._sleep(self._config.backoff_base**attempt)
                    if not await self._still_deliverable(target.subscription_id):
                        logger.info(
                            "Webhook %s was deleted or deactivated, abandoning %s",
                            target.subscription_id,
                            envelope.event,
                        )
                        return
            logger.warning(
                "Webhook %s: dropping %s after %d failed attempts",
                target.subscription_id,
                envelope.event,
                max_attempts,
            )
        except Exception:
            logger.exception("Webhook delivery task for %s crashed", target.subscription_id)

    async def _attempt(
        self,
        target: _Target,
        envelope: WebhookEnvelope,
        body: bytes,
        signature: str,
        attempt: int,
    ) -> bool:
        client = self._ensure_started()
        started_at = self._clock()
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature,
            EVENT_HEADER: envelope.event,
        }

        status = 0
        try:
            with self._track(envelope.event):
                response = await client.post(target.url, content=body, headers=headers)
            status = response.status_code
            response_body = response.text
            success = response.is_success
        except httpx.HTTPError as exc:
            response_body = str(exc) or exc.__class__.__name__
            success = False

        if not success:
            logger.warning(
                "Webhook %s returned %d for %s (attempt %d/%d)",
                target.url,
                status,
                envelope.event,
                attempt,
                self._config.max_attempts,
            )
        if self._metrics is not None:
            self._metrics.record_delivery(envelope.event, ok=success)

        async with self._datastore.session() as session:
            subscription = await session.get(WebhookSubscription, target.subscription_id)
            if subscription is None:
                logger.info(
                    "Webhook %s was deleted during delivery of %s, attempt %d not logged",
                    target.subscription_id,
                    envelope.event,
                    attempt,
                )
                return success
            session.add(
                DeliveryAttempt(
                    subscription_id=target.subscription_id,
                    event=envelope.event,
                    payload=json.loads(body),
                    response_status=status,
                    response_body=response_body[: self._config.response_body_limit],
                    success=success,
                    attempt=attempt,
                    created_at=started_at,
                )
            )
            if success:
                subscription.last_triggered = self._clock()
            await session.commit()
        return success

    def _track(self, event: str) -> contextlib.AbstractContextManager[None]:
        if self._metrics is None:
            return contextlib.nullcontext()
        return self._metrics.track_delivery(event)

    async def _still_deliverable(self, subscription_id: str) -> bool:
        async with self._datastore.session() as session:
            subscription = await session.get(WebhookSubscription, subscription_id)
            return subscription is not None and subscription.active

    @staticmethod
    async def _owned(
        session: AsyncSession, user_id: str, subscription_id: str
    ) -> WebhookSubscription:
        subscription = await session.get(WebhookSubscription, subscription_id)
        if subscription is None or subscription.user_id != user_id:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "WebhookDispatcher is not started. Call start() first."
            raise RuntimeError(msg)
        return self._client
