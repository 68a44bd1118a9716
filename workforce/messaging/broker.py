"""RabbitMQ broker handle (aio-pika).

One ``RabbitMQBroker`` per process owns the connection, the channel, the
topic exchange and the consumer queue.  It is created in the FastAPI
lifespan and shared by the HTTP path (publishing) and the leave
auto-processor (consuming).

Delivery is at-least-once.  A failed handler is retried by nacking the
delivery and republishing a copy with an incremented ``x-retry-count``
header after a fixed delay; past ``max_retries`` the message is dropped
(dead-lettered when the queue has a DLX configured).
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPConnectionError, AMQPError

from workforce.config import Settings

logger = logging.getLogger(__name__)

RETRY_COUNT_HEADER = "x-retry-count"


class BrokerUnavailableError(Exception):
    """The broker is not connected or the transport rejected an operation."""


class MessageOutcome(str, enum.Enum):
    """What a handler wants done with the delivery."""

    ack = "ack"
    retry = "retry"
    drop = "drop"


@dataclass
class MessageMetadata:
    routing_key: Optional[str]
    retry_count: int = 0
    message_id: Optional[str] = None
    headers: dict[str, Any] = field(default_factory=dict)


MessageHandler = Callable[
    [dict[str, Any], MessageMetadata], Awaitable[Optional[MessageOutcome]]
]


class EventPublisher(Protocol):
    """Anything that can put a JSON event on a topic."""

    async def publish(self, routing_key: str, payload: dict[str, Any]) -> None:
        ...


def _retry_count(headers: Optional[dict[str, Any]]) -> int:
    try:
        return int((headers or {}).get(RETRY_COUNT_HEADER, 0))
    except (TypeError, ValueError):
        return 0


class RabbitMQBroker:
    """Managed connection + topic exchange + consumer queue."""

    def __init__(
        self,
        url: str,
        exchange_name: str,
        queue_name: str,
        *,
        binding_key: str = "leave.*",
        max_retries: int = 3,
        retry_delay: float = 5.0,
        prefetch_count: int = 1,
        connect_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
    ) -> None:
        self.url = url
        self.exchange_name = exchange_name
        self.queue_name = queue_name
        self.binding_key = binding_key
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.prefetch_count = prefetch_count
        self.connect_attempts = max(1, connect_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None
        self._queue: Optional[AbstractQueue] = None
        self._consumer_tag: Optional[str] = None
        self._pending_retries: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RabbitMQBroker":
        return cls(
            settings.RABBITMQ_URL,
            settings.RABBITMQ_EXCHANGE_NAME,
            settings.RABBITMQ_QUEUE_NAME,
            binding_key=settings.RABBITMQ_BINDING_KEY,
            max_retries=settings.RABBITMQ_MAX_RETRIES,
            retry_delay=settings.RABBITMQ_RETRY_DELAY_SECONDS,
            prefetch_count=settings.RABBITMQ_PREFETCH_COUNT,
            connect_attempts=settings.RABBITMQ_CONNECT_ATTEMPTS,
            backoff_max=settings.RABBITMQ_BACKOFF_MAX_SECONDS,
        )

    @property
    def is_connected(self) -> bool:
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._exchange is not None
        )

    # ── Lifecycle ───────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection and declare the topology.

        The first connection is retried with bounded exponential backoff;
        after that aio-pika's robust connection reconnects on its own.
        """
        if self.is_connected:
            return

        delay = self.backoff_base
        for attempt in range(1, self.connect_attempts + 1):
            try:
                self._connection = await aio_pika.connect_robust(self.url)
                break
            except (AMQPConnectionError, OSError) as exc:
                if attempt == self.connect_attempts:
                    raise BrokerUnavailableError(
                        f"Could not connect to RabbitMQ after {attempt} attempts"
                    ) from exc
                logger.warning(
                    "RabbitMQ connection attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt, self.connect_attempts, exc, delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.backoff_max)

        self._connection.close_callbacks.add(self._on_connection_closed)
        self._connection.reconnect_callbacks.add(self._on_reconnected)

        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self.prefetch_count)
        self._exchange = await self._channel.declare_exchange(
            self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True,
        )
        self._queue = await self._channel.declare_queue(self.queue_name, durable=True)
        await self._queue.bind(self._exchange, routing_key=self.binding_key)

        logger.info(
            "Connected to RabbitMQ (exchange=%s, queue=%s, binding=%s)",
            self.exchange_name, self.queue_name, self.binding_key,
        )

    async def close_connection(self) -> None:
        """Stop consuming, cancel scheduled retries, close channel + connection."""
        for task in list(self._pending_retries):
            task.cancel()
        self._pending_retries.clear()

        if self._queue is not None and self._consumer_tag is not None:
            try:
                await self._queue.cancel(self._consumer_tag)
            except AMQPError as exc:
                logger.warning("Failed to cancel consumer %s: %s", self._consumer_tag, exc)
        self._consumer_tag = None

        if self._channel is not None and not self._channel.is_closed:
            await self._channel.close()
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()

        self._channel = None
        self._exchange = None
        self._queue = None
        self._connection = None
        logger.info("RabbitMQ connection closed")

    def _on_connection_closed(self, *args: Any) -> None:
        exc = args[1] if len(args) > 1 else None
        if exc is not None:
            logger.warning("RabbitMQ connection lost: %s", exc)

    def _on_reconnected(self, *args: Any) -> None:
        logger.info("RabbitMQ connection re-established")

    # ── Publishing ──────────────────────────────────────────────────

    async def publish(
        self,
        routing_key: str,
        payload: dict[str, Any],
        *,
        headers: Optional[dict[str, Any]] = None,
    ) -> None:
        """Publish *payload* as a persistent JSON message on the exchange."""
        body = json.dumps(payload, default=str).encode("utf-8")
        await self._publish_raw(
            routing_key,
            body,
            headers=headers,
            message_id=str(payload.get("id") or uuid.uuid4()),
        )
        logger.info("Published %s (message_id=%s)", routing_key, payload.get("id"))

    async def _publish_raw(
        self,
        routing_key: str,
        body: bytes,
        *,
        headers: Optional[dict[str, Any]] = None,
        message_id: Optional[str] = None,
    ) -> None:
        if not self.is_connected:
            raise BrokerUnavailableError("RabbitMQ is not connected")
        message = aio_pika.Message(
            body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers=headers or {},
            message_id=message_id,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self._exchange.publish(message, routing_key=routing_key)
        except (AMQPError, ConnectionError, asyncio.TimeoutError) as exc:
            raise BrokerUnavailableError(f"Publish to {routing_key} failed: {exc}") from exc

    # ── Consuming ───────────────────────────────────────────────────

    async def subscribe(self, handler: MessageHandler) -> None:
        """Start delivering queue messages to *handler*, one at a time."""
        if self._queue is None:
            raise BrokerUnavailableError("RabbitMQ is not connected")

        async def _on_message(message: AbstractIncomingMessage) -> None:
            await self.dispatch(message, handler)

        self._consumer_tag = await self._queue.consume(_on_message)
        logger.info("Consuming from %s", self.queue_name)

    async def dispatch(
        self,
        message: AbstractIncomingMessage,
        handler: MessageHandler,
    ) -> MessageOutcome:
        """Decode, run *handler* and settle the delivery according to its outcome."""
        metadata = MessageMetadata(
            routing_key=message.routing_key,
            retry_count=_retry_count(message.headers),
            message_id=message.message_id,
            headers=dict(message.headers or {}),
        )

        try:
            payload = json.loads(message.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(
                "Dropping undecodable message %s on %s",
                metadata.message_id, metadata.routing_key,
            )
            await message.nack(requeue=False)
            return MessageOutcome.drop

        try:
            outcome = await handler(payload, metadata) or MessageOutcome.ack
        except Exception:
            logger.exception(
                "Handler failed for message %s on %s (attempt %d)",
                metadata.message_id, metadata.routing_key, metadata.retry_count + 1,
            )
            outcome = MessageOutcome.retry

        if outcome is MessageOutcome.ack:
            await message.ack()
            return outcome

        await message.nack(requeue=False)
        if outcome is MessageOutcome.drop:
            logger.warning("Dropped message %s on request of the handler", metadata.message_id)
            return outcome

        if metadata.retry_count >= self.max_retries:
            logger.error(
                "Max retries (%d) reached for message %s on %s; dead-lettering",
                self.max_retries, metadata.message_id, metadata.routing_key,
            )
            return MessageOutcome.drop

        self._schedule_retry(message, metadata)
        return outcome

    def _schedule_retry(
        self,
        message: AbstractIncomingMessage,
        metadata: MessageMetadata,
    ) -> None:
        headers = {**metadata.headers, RETRY_COUNT_HEADER: metadata.retry_count + 1}
        task = asyncio.create_task(
            self._republish_later(
                metadata.routing_key or "", message.body, headers, metadata.message_id,
            )
        )
        self._pending_retries.add(task)
        task.add_done_callback(self._pending_retries.discard)

    async def _republish_later(
        self,
        routing_key: str,
        body: bytes,
        headers: dict[str, Any],
        message_id: Optional[str],
    ) -> None:
        await asyncio.sleep(self.retry_delay)
        try:
            await self._publish_raw(
                routing_key, body, headers=headers, message_id=message_id,
            )
        except BrokerUnavailableError:
            logger.exception(
                "Retry %s of message %s could not be republished; message lost",
                headers[RETRY_COUNT_HEADER], message_id,
            )
            return
        logger.info(
            "Requeued message %s (retry %s/%d)",
            message_id, headers[RETRY_COUNT_HEADER], self.max_retries,
        )
