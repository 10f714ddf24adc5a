"""
Outbound event queue for the Credential Lifecycle Engine.

The engine writes audit entries and notifications here after a commit. An
``OutboxProcessor`` drains the queue into the audit log and the notification
dispatcher, either on demand or from a background thread. Delivery is at
least once.
"""

import logging
import queue
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..audit.audit_logger import AuditLogger
from ..models import AuditEntry, NotificationEvent, new_id, utcnow
from .dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class OutboundEvent(BaseModel):
    """One queued side effect."""
    id: str = Field(default_factory=new_id)
    kind: str = Field(..., description="'audit' or 'notification'")
    audit_entry: Optional[AuditEntry] = None
    event: Optional[NotificationEvent] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class EventOutbox:
    """Thread-safe FIFO of outbound events."""

    def __init__(self):
        self._queue: "queue.Queue[OutboundEvent]" = queue.Queue()
        self._in_flight = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    def put(self, item: OutboundEvent):
        with self._lock:
            self._in_flight += 1
        self._queue.put(item)

    def put_audit(self, entry: AuditEntry) -> OutboundEvent:
        item = OutboundEvent(kind="audit", audit_entry=entry)
        self.put(item)
        return item

    def put_notification(self, event: NotificationEvent, payload: Dict[str, Any]) -> OutboundEvent:
        item = OutboundEvent(kind="notification", event=event, payload=payload)
        self.put(item)
        return item

    def get(self, timeout: Optional[float] = None) -> Optional[OutboundEvent]:
        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def requeue(self, item: OutboundEvent):
        """Put a taken item back without counting it twice."""
        self._queue.put(item)

    def done(self):
        with self._lock:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def pending(self) -> int:
        with self._lock:
            return self._in_flight

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued item has been handled."""
        with self._lock:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout)


class OutboxProcessor:
    """Drains the outbox into the audit log and the notification dispatcher."""

    def __init__(
        self,
        outbox: EventOutbox,
        audit_logger: AuditLogger,
        dispatcher: NotificationDispatcher,
        max_attempts: int = 3,
        poll_interval_seconds: float = 0.2,
    ):
        self.outbox = outbox
        self.audit_logger = audit_logger
        self.dispatcher = dispatcher
        self.max_attempts = max(1, max_attempts)
        self.poll_interval_seconds = poll_interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle(self, item: OutboundEvent) -> bool:
        """
        Handle one item.

        Returns:
            True when the item is finished (delivered or given up), False when
            it was put back for another attempt
        """
        item.attempts += 1

        if item.kind == "notification":
            # The dispatcher retries per channel and never raises.
            self.dispatcher.notify(item.event, item.payload)
            return True

        if item.kind == "audit":
            try:
                self.audit_logger.log_entry(item.audit_entry)
                return True
            except Exception as e:
                if item.attempts < self.max_attempts:
                    logger.warning(
                        f"Audit write {item.audit_entry.id} failed (attempt {item.attempts}/{self.max_attempts}): {e}"
                    )
                    self.outbox.requeue(item)
                    return False
                logger.error(f"Dropping audit entry {item.audit_entry.id} after {item.attempts} attempts: {e}")
                return True

        logger.error(f"Unknown outbound event kind: {item.kind}")
        return True

    def _handle_and_account(self, item: OutboundEvent):
        if self.handle(item):
            self.outbox.done()

    def process_pending(self) -> int:
        """Synchronously drain everything currently queued. Returns items handled."""
        handled = 0
        while True:
            item = self.outbox.get()
            if item is None:
                return handled
            self._handle_and_account(item)
            handled += 1

    def start(self):
        """Start the background drain thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="outbox-processor", daemon=True)
        self._thread.start()
        logger.info("Started outbox processor")

    def stop(self, timeout: float = 5.0):
        """Stop the background thread after draining what is queued."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Outbox processor did not stop within timeout; leaving queued events to it")
                return
            self._thread = None
        self.process_pending()
        logger.info("Stopped outbox processor")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        while not self._stop.is_set():
            item = self.outbox.get(timeout=self.poll_interval_seconds)
            if item is None:
                continue
            if not self.handle(item):
                # Back off before the retry is picked up again.
                time.sleep(self.poll_interval_seconds)
                continue
            self.outbox.done()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued items to be handled; drains inline when no thread runs."""
        if not self.running:
            self.process_pending()
            return self.outbox.pending() == 0
        return self.outbox.wait_idle(timeout)


def pending_items(outbox: EventOutbox) -> List[OutboundEvent]:
    """Remove and return every queued item without handling it."""
    items = []
    while True:
        item = outbox.get()
        if item is None:
            return items
        items.append(item)
        outbox.done()
