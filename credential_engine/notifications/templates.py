"""
Message templates for outbound notifications.

Plain-text subject and body per notification event.
"""

from typing import Any, Dict, NamedTuple

from ..models import NotificationEvent

PRODUCT_NAME = "Credentials Dashboard"


class RenderedMessage(NamedTuple):
    subject: str
    text: str


def _onboarded(payload: Dict[str, Any], frontend_url: str) -> RenderedMessage:
    text = (
        f"Congratulations {payload.get('name', '')}! Your account has been successfully onboarded "
        f"and you now have full access to the credentials management system.\n\n"
        f"Access your dashboard: {frontend_url.rstrip('/')}/me\n"
    )
    return RenderedMessage("Welcome Aboard! - Your Account is Now Active", text)


def _offboarding_initiated(payload: Dict[str, Any], frontend_url: str) -> RenderedMessage:
    text = (
        f"Dear {payload.get('name', '')},\n\n"
        f"The offboarding process for your account has been initiated. Your credentials are "
        f"being reviewed and deactivated, and access to systems will be restricted.\n\n"
        f"If you believe this is an error, please contact your system administrator.\n"
    )
    return RenderedMessage(f"Account Offboarding Notice - {PRODUCT_NAME}", text)


def _offboarding_complete(payload: Dict[str, Any], frontend_url: str) -> RenderedMessage:
    name = payload.get("name", "")
    email = payload.get("email", "")
    text = (
        f"The offboarding process for user {name} ({email}) has been completed.\n\n"
        f"- All credentials marked as inactive\n"
        f"- Account status updated to 'Offboarded'\n"
    )
    return RenderedMessage(f"Offboarding Complete - {name} ({email})", text)


def _issue_reported(payload: Dict[str, Any], frontend_url: str) -> RenderedMessage:
    text = (
        f"A user has reported an issue with their credentials that requires your attention.\n\n"
        f"User: {payload.get('email', '')}\n"
        f"Credential: {payload.get('credential_name') or payload.get('credential_type_id', '')}\n"
        f"Note: {payload.get('note') or 'No additional details provided'}\n"
    )
    return RenderedMessage("Credential Issue Reported - Action Required", text)


_RENDERERS = {
    NotificationEvent.ONBOARDED: _onboarded,
    NotificationEvent.OFFBOARDING_INITIATED: _offboarding_initiated,
    NotificationEvent.OFFBOARDING_COMPLETE: _offboarding_complete,
    NotificationEvent.ISSUE_REPORTED: _issue_reported,
}


def render(event: NotificationEvent, payload: Dict[str, Any], frontend_url: str = "") -> RenderedMessage:
    """Render the message for a notification event."""
    return _RENDERERS[event](payload, frontend_url)
