"""
Notifications Package for the Credential Lifecycle Engine.

This package provides the outbound event queue, the notification
dispatcher, and the channels it delivers to.
"""

from .channels import (
    BaseChannel,
    ChannelResult,
    LoggingMailTransport,
    MailChannel,
    MailMessage,
    RealtimeChannel,
)
from .dispatcher import NotificationDispatcher
from .outbox import EventOutbox, OutboundEvent, OutboxProcessor

__all__ = [
    "BaseChannel",
    "ChannelResult",
    "LoggingMailTransport",
    "MailChannel",
    "MailMessage",
    "RealtimeChannel",
    "NotificationDispatcher",
    "EventOutbox",
    "OutboundEvent",
    "OutboxProcessor",
]
