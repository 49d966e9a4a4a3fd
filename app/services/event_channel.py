"""In-process publish/subscribe channel addressed by (namespace, key) stream ids."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

ISSUE_INGESTED_NAMESPACE = "issue-ingested"
ANALYSIS_RESULTS_NAMESPACE = "analysis-results"
SUMMARY_STREAM_KEY = "00000000-0000-0000-0000-000000000000"

_REPOSITORY_KEY_NAMESPACE = uuid.UUID("6f1c3d0e-2b8a-4f57-9c1e-5a0d7e4b9f21")

EventHandler = Callable[["StreamId", Any], Awaitable[None]]


class PublishError(RuntimeError):
    """Raised when an event cannot be handed to the channel."""


@dataclass(frozen=True, slots=True)
class StreamId:
    namespace: str
    key: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.key}"


def repository_stream_key(repository: str) -> str:
    """Stable stream key for `owner/repo` (case-insensitive)."""
    return str(uuid.uuid5(_REPOSITORY_KEY_NAMESPACE, repository.strip().lower()))


def summary_stream_id() -> StreamId:
    return StreamId(ANALYSIS_RESULTS_NAMESPACE, SUMMARY_STREAM_KEY)


@dataclass(frozen=True, slots=True)
class Subscription:
    channel: "EventChannel"
    namespace: str
    handler: EventHandler
    subscription_id: str

    def cancel(self) -> None:
        self.channel.unsubscribe(self)


class EventChannel:
    """Delivers events to namespace subscribers in publish order.

    `publish` awaits each handler in turn; a failing handler is logged and does
    not stop delivery to the others.
    """

    def __init__(self, name: str = "primary") -> None:
        self.name = name
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def subscribe(self, namespace: str, handler: EventHandler) -> Subscription:
        if self._closed:
            raise PublishError(f"Channel '{self.name}' is closed")
        subscription = Subscription(
            channel=self,
            namespace=namespace,
            handler=handler,
            subscription_id=uuid.uuid4().hex,
        )
        self._subscriptions.setdefault(namespace, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        handlers = self._subscriptions.get(subscription.namespace, [])
        self._subscriptions[subscription.namespace] = [
            item for item in handlers if item.subscription_id != subscription.subscription_id
        ]

    def is_subscribed(self, subscription: Subscription | None) -> bool:
        if subscription is None or self._closed:
            return False
        return any(
            item.subscription_id == subscription.subscription_id
            for item in self._subscriptions.get(subscription.namespace, [])
        )

    def subscriber_count(self, namespace: str) -> int:
        return len(self._subscriptions.get(namespace, []))

    async def publish(self, stream_id: StreamId, event: Any) -> int:
        """Deliver `event` to every subscriber of the stream's namespace; returns the delivery count."""

        if self._closed:
            raise PublishError(f"Channel '{self.name}' is closed; cannot publish to {stream_id}")

        delivered = 0
        for subscription in list(self._subscriptions.get(stream_id.namespace, [])):
            try:
                await subscription.handler(stream_id, event)
                delivered += 1
            except Exception as exc:
                logger.exception(
                    "Event handler failed",
                    extra=sanitize_log_extra(channel=self.name, stream=str(stream_id), error=str(exc)),
                )
        return delivered

    def close(self) -> None:
        self._closed = True
        self._subscriptions.clear()
