"""Messaging — RabbitMQ broker handle and the publisher contract."""

from workforce.messaging.broker import (
    BrokerUnavailableError,
    EventPublisher,
    MessageMetadata,
    MessageOutcome,
    RabbitMQBroker,
)

__all__ = [
    "BrokerUnavailableError",
    "EventPublisher",
    "MessageMetadata",
    "MessageOutcome",
    "RabbitMQBroker",
]
