"""
Service wiring for the Credential Lifecycle Engine.

Builds the store, audit log, notification dispatch, outbox, engine and
reporting service from an ``EngineConfig``.
"""

import logging
from typing import Callable, Optional

from .audit import AuditLogger
from .config import EngineConfig
from .engine import GrantStore, LifecycleEngine
from .notifications import (
    EventOutbox,
    MailChannel,
    MailMessage,
    NotificationDispatcher,
    OutboxProcessor,
    RealtimeChannel,
)
from .reporting import ReportingService

logger = logging.getLogger(__name__)


class EngineServices:
    """All engine components sharing one configuration."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        mail_transport: Optional[Callable[[MailMessage], None]] = None,
    ):
        self.config = config or EngineConfig()

        self.store = GrantStore(self.config.state_file)
        self.audit_logger = AuditLogger(self.config.audit_dir)

        self.realtime = RealtimeChannel()
        channels = [self.realtime]
        if self.config.mail.enabled:
            channels.append(MailChannel(
                transport=mail_transport,
                sender=self.config.mail.sender,
                admin_email=self.config.mail.admin_email,
                frontend_url=self.config.mail.frontend_url,
            ))

        self.dispatcher = NotificationDispatcher(
            channels,
            max_attempts=self.config.dispatch.max_attempts,
            retry_backoff_seconds=self.config.dispatch.retry_backoff_seconds,
        )
        self.outbox = EventOutbox()
        self.processor = OutboxProcessor(
            self.outbox,
            self.audit_logger,
            self.dispatcher,
            max_attempts=self.config.dispatch.max_attempts,
            poll_interval_seconds=self.config.dispatch.poll_interval_seconds,
        )
        self.engine = LifecycleEngine(self.store, self.outbox, self.config.lock_timeout_seconds)
        self.reports = ReportingService(self.store, self.audit_logger)

        logger.info(
            f"Initialized engine services (state={'file' if self.config.state_file else 'memory'}, "
            f"background_dispatch={self.config.dispatch.background})"
        )

    def start(self):
        if self.config.dispatch.background:
            self.processor.start()

    def stop(self):
        self.processor.stop()

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Make sure queued audit entries and notifications have been handled."""
        return self.processor.flush(timeout)
