"""
Identity status state machine.

Explicit administrative commands and derived recomputation both change an
identity's status through ``apply_transition``. Callers hold the identity's
lock while applying, so transitions are serialized per identity and the last
applied transition wins.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..errors import ConflictError, InvalidTransitionError
from ..models import (
    Grant,
    Identity,
    IdentityStatus,
    NotificationEvent,
    StatusTransition,
    TransitionKind,
    utcnow,
)
from .derivation import derive_status

logger = logging.getLogger(__name__)

EXPLICIT_TARGETS: Dict[TransitionKind, IdentityStatus] = {
    TransitionKind.EXPLICIT_ONBOARD: IdentityStatus.ONBOARDED,
    TransitionKind.EXPLICIT_INITIATE_OFFBOARDING: IdentityStatus.OFFBOARDING_IN_PROGRESS,
    TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING: IdentityStatus.OFFBOARDED,
}

EXPLICIT_NOTIFICATIONS: Dict[TransitionKind, NotificationEvent] = {
    TransitionKind.EXPLICIT_ONBOARD: NotificationEvent.ONBOARDED,
    TransitionKind.EXPLICIT_INITIATE_OFFBOARDING: NotificationEvent.OFFBOARDING_INITIATED,
    TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING: NotificationEvent.OFFBOARDING_COMPLETE,
}

DERIVED_NOTIFICATIONS: Dict[IdentityStatus, NotificationEvent] = {
    IdentityStatus.OFFBOARDED: NotificationEvent.OFFBOARDING_COMPLETE,
}


def _check_guard(identity: Identity, kind: TransitionKind, grants: List[Grant]):
    status = identity.status

    if kind == TransitionKind.EXPLICIT_ONBOARD:
        if status == IdentityStatus.ONBOARDED:
            raise ConflictError("Identity is already onboarded", entity="identity", entity_id=identity.id)

    elif kind == TransitionKind.EXPLICIT_INITIATE_OFFBOARDING:
        if status == IdentityStatus.OFFBOARDED:
            raise ConflictError("Identity is already offboarded", entity="identity", entity_id=identity.id)

    elif kind == TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING:
        if status == IdentityStatus.OFFBOARDED:
            raise ConflictError("Identity is already offboarded", entity="identity", entity_id=identity.id)
        active = [g.id for g in grants if not g.inactive]
        if active:
            raise InvalidTransitionError(
                f"Cannot complete offboarding with {len(active)} active grant(s)",
                entity="identity",
                entity_id=identity.id,
            )


def apply_transition(
    identity: Identity,
    kind: TransitionKind,
    grants: List[Grant],
    now: Optional[datetime] = None,
) -> StatusTransition:
    """
    Apply a status transition to an identity in place.

    Args:
        identity: Identity to transition (a working copy inside a unit of work)
        kind: Source of the transition
        grants: The identity's grants as they will be committed
        now: Transition time, defaults to the current UTC time

    Returns:
        StatusTransition describing the change (``changed`` is False when a
        recompute lands on the current status)

    Raises:
        ConflictError: Explicit transition into a status that forbids it
        InvalidTransitionError: Completing offboarding while grants are active
    """
    now = now or utcnow()
    _check_guard(identity, kind, grants)

    if kind == TransitionKind.DERIVED_RECOMPUTE:
        target = derive_status(grants)
    else:
        target = EXPLICIT_TARGETS[kind]

    transition = StatusTransition(
        kind=kind,
        identity_id=identity.id,
        previous_status=identity.status,
        new_status=target,
        occurred_at=now,
    )

    explicit = kind != TransitionKind.DERIVED_RECOMPUTE
    if transition.changed or explicit:
        identity.status = target
        identity.updated_at = now
        if target == IdentityStatus.ONBOARDED:
            identity.onboarded_at = now
        elif target == IdentityStatus.OFFBOARDED:
            identity.offboarded_at = now

    if transition.changed:
        logger.info(
            f"Identity {identity.id} status {transition.previous_status.value} -> "
            f"{transition.new_status.value} ({kind.value})"
        )
    return transition


def notification_for(transition: StatusTransition) -> Optional[NotificationEvent]:
    """Notification owed for a transition, or None."""
    if transition.kind != TransitionKind.DERIVED_RECOMPUTE:
        return EXPLICIT_NOTIFICATIONS[transition.kind]
    if transition.changed:
        return DERIVED_NOTIFICATIONS.get(transition.new_status)
    return None
