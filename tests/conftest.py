"""
Shared fixtures for the Credential Engine test suite.
"""

from typing import List

import pytest

from credential_engine.audit import AuditLogger
from credential_engine.engine import GrantStore, LifecycleEngine
from credential_engine.models import Role
from credential_engine.notifications import (
    EventOutbox,
    MailChannel,
    MailMessage,
    NotificationDispatcher,
    OutboxProcessor,
    RealtimeChannel,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that exercise threads or the filesystem")


@pytest.fixture
def store():
    """In-memory grant store."""
    return GrantStore()


@pytest.fixture
def outbox():
    return EventOutbox()


@pytest.fixture
def engine(store, outbox):
    """Lifecycle engine over an in-memory store with a short lock timeout."""
    return LifecycleEngine(store, outbox, lock_timeout_seconds=2.0)


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def realtime():
    return RealtimeChannel()


class RecordingMailTransport:
    """Mail transport that keeps every message it is handed."""

    def __init__(self):
        self.sent: List[MailMessage] = []

    def __call__(self, message: MailMessage):
        self.sent.append(message)


@pytest.fixture
def mail_transport():
    return RecordingMailTransport()


@pytest.fixture
def processor(outbox, audit_logger, realtime, mail_transport):
    """Outbox processor with real channels and no retry delay."""
    dispatcher = NotificationDispatcher(
        [realtime, MailChannel(transport=mail_transport, admin_email="admin@company.com")],
        retry_backoff_seconds=0,
    )
    return OutboxProcessor(outbox, audit_logger, dispatcher)


@pytest.fixture
def member(engine):
    return engine.register_identity("jane.doe@company.com", "Jane Doe")


@pytest.fixture
def admin(engine):
    return engine.register_identity("admin@company.com", "Admin User", Role.ADMIN)


@pytest.fixture
def credential_types(engine):
    """Three credential types: VPN, GitHub and Laptop."""
    return [
        engine.create_credential_type("VPN", "Corporate VPN access"),
        engine.create_credential_type("GitHub", "Organization membership"),
        engine.create_credential_type("Laptop", "Company laptop"),
    ]
