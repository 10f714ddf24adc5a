"""
Notification Dispatch for the Credential Lifecycle Engine.

Fans a notification event out to every channel. Delivery is best effort:
failures are retried per channel, then logged and swallowed, and never
reach the engine.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..models import NotificationEvent
from .channels import BaseChannel

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fire-and-forget fan-out of notification events to channels."""

    def __init__(
        self,
        channels: Optional[List[BaseChannel]] = None,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the dispatcher.

        Args:
            channels: Channels to deliver to
            max_attempts: Delivery attempts per channel before giving up
            retry_backoff_seconds: Base delay between attempts (linear backoff)
            sleep: Sleep function, replaceable in tests
        """
        self.channels: List[BaseChannel] = list(channels or [])
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    def add_channel(self, channel: BaseChannel):
        self.channels.append(channel)

    def get_channel(self, name: str) -> Optional[BaseChannel]:
        for channel in self.channels:
            if channel.name == name:
                return channel
        return None

    def notify(self, event: NotificationEvent, payload: Dict[str, Any]) -> Dict[str, bool]:
        """
        Deliver an event to every channel. Never raises.

        Returns:
            Mapping of channel name to whether delivery succeeded
        """
        try:
            event = NotificationEvent(event)
        except ValueError:
            logger.error(f"Unknown notification event: {event}")
            return {}

        outcome = {}
        for channel in self.channels:
            outcome[channel.name] = self._deliver(channel, event, payload)
        return outcome

    def _deliver(self, channel: BaseChannel, event: NotificationEvent, payload: Dict[str, Any]) -> bool:
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = channel.send(event, payload)
                if result.success:
                    logger.debug(f"{channel.name}: {result.message}")
                    return True
                last_error = result.error or result.message
            except Exception as e:
                last_error = str(e)

            logger.warning(
                f"Delivery of {event.value} via {channel.name} failed "
                f"(attempt {attempt}/{self.max_attempts}): {last_error}"
            )
            if attempt < self.max_attempts and self.retry_backoff_seconds > 0:
                self._sleep(self.retry_backoff_seconds * attempt)

        logger.error(f"Giving up on {event.value} via {channel.name}: {last_error}")
        return False
