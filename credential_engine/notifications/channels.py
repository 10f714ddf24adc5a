"""
Notification Channels for the Credential Lifecycle Engine.

A channel delivers one notification event to one medium: the in-process
real-time broadcast or outbound mail.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import NotificationEvent
from .templates import render

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Dict[str, Any]], None]

ADMIN_RECIPIENT_EVENTS = {NotificationEvent.ISSUE_REPORTED, NotificationEvent.OFFBOARDING_COMPLETE}


class ChannelResult:
    """Result of a channel delivery."""

    def __init__(self, success: bool, message: str = "", error: Optional[str] = None):
        self.success = success
        self.message = message
        self.error = error

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"


class BaseChannel(ABC):
    """Abstract base class for notification channels."""

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__.replace('Channel', '').lower()

    @abstractmethod
    def send(self, event: NotificationEvent, payload: Dict[str, Any]) -> ChannelResult:
        """
        Deliver one event.

        Args:
            event: The notification event
            payload: Event data (identity email, name, note, ...)

        Returns:
            ChannelResult; an unsuccessful result or an exception is retried
            by the dispatcher
        """
        pass


class RealtimeChannel(BaseChannel):
    """Broadcasts events to every in-process subscriber."""

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def send(self, event: NotificationEvent, payload: Dict[str, Any]) -> ChannelResult:
        with self._lock:
            subscribers = list(self._subscribers)

        failures = 0
        for callback in subscribers:
            try:
                callback(event.value, dict(payload))
            except Exception as e:
                failures += 1
                logger.error(f"Realtime subscriber failed for {event.value}: {e}")

        # Subscriber failures are not retried; a retry would re-deliver to the others.
        return ChannelResult(True, f"Broadcast {event.value} to {len(subscribers) - failures}/{len(subscribers)} subscribers")


class MailMessage(BaseModel):
    """Outbound mail handed to a transport."""
    sender: str
    to: str
    subject: str
    text: str
    event: NotificationEvent
    headers: Dict[str, str] = Field(default_factory=dict)


class LoggingMailTransport:
    """Transport used when no mail delivery is configured: logs the message and keeps nothing."""

    def __call__(self, message: MailMessage):
        logger.info(f"Email not configured. Would send email to {message.to}: {message.subject}")


class MailChannel(BaseChannel):
    """
    Renders events into mail messages and hands them to a transport.

    Identity-facing events go to the identity's email; issue reports and
    completed offboardings go to the admin address.
    """

    def __init__(
        self,
        transport: Optional[Callable[[MailMessage], None]] = None,
        sender: str = "noreply@example.com",
        admin_email: str = "admin@company.com",
        frontend_url: str = "http://localhost:3000",
        name: Optional[str] = None,
    ):
        super().__init__(name)
        self.transport = transport or LoggingMailTransport()
        self.sender = sender
        self.admin_email = admin_email
        self.frontend_url = frontend_url

    def recipient_for(self, event: NotificationEvent, payload: Dict[str, Any]) -> Optional[str]:
        if event in ADMIN_RECIPIENT_EVENTS:
            return self.admin_email
        return payload.get("email")

    def send(self, event: NotificationEvent, payload: Dict[str, Any]) -> ChannelResult:
        recipient = self.recipient_for(event, payload)
        if not recipient:
            return ChannelResult(True, f"No recipient for {event.value}; skipped")

        rendered = render(event, payload, self.frontend_url)
        message = MailMessage(
            sender=self.sender,
            to=recipient,
            subject=rendered.subject,
            text=rendered.text,
            event=event,
        )
        self.transport(message)
        return ChannelResult(True, f"Sent {event.value} mail to {recipient}")
