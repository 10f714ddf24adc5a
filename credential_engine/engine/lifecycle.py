"""
Lifecycle Engine for the Credential Lifecycle Engine.

Orchestrates grant mutations and identity status changes. Each mutation runs
under the target identity's lock inside one unit of work: preconditions are
checked, the mutation is staged, the status transition is applied through
``apply_transition``, and everything commits together. Audit entries and
notifications are queued on the outbox only after the commit succeeds.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..errors import InvalidTransitionError, NotFoundError, UnauthorizedError
from ..models import (
    AuditCategory,
    AuditEntry,
    AuditSeverity,
    CredentialType,
    Grant,
    GrantView,
    Identity,
    IdentityDetails,
    IdentityStatus,
    NotificationEvent,
    OperationResult,
    Role,
    StatusTransition,
    TransitionKind,
    utcnow,
)
from ..notifications.outbox import EventOutbox, OutboundEvent
from .derivation import grant_display_status
from .grant_store import GrantStore, UnitOfWork
from .transitions import apply_transition, notification_for

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = {IdentityStatus.PENDING, IdentityStatus.ONBOARDED}

EXPLICIT_AUDIT_ACTIONS = {
    TransitionKind.EXPLICIT_ONBOARD: ("user_onboarded", AuditSeverity.MEDIUM),
    TransitionKind.EXPLICIT_INITIATE_OFFBOARDING: ("offboarding_initiated", AuditSeverity.HIGH),
    TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING: ("offboarding_completed", AuditSeverity.HIGH),
}


class LifecycleEngine:
    """
    Applies lifecycle operations to identities and their grants.

    Status has two sources: grant-level operations (confirm, report, revoke,
    delete) end with a derived recompute, and administrative commands
    (onboard, initiate/complete offboarding) set it explicitly. Both go
    through the same transition function under the identity lock, so the
    last applied transition wins.
    """

    def __init__(self, store: GrantStore, outbox: EventOutbox, lock_timeout_seconds: Optional[float] = 5.0):
        """
        Initialize the engine.

        Args:
            store: Grant store holding identities, credential types and grants
            outbox: Queue receiving audit entries and notifications after commit
            lock_timeout_seconds: Bound on waiting for an identity lock
        """
        self.store = store
        self.outbox = outbox
        self.lock_timeout_seconds = lock_timeout_seconds

    # Transaction plumbing

    @contextmanager
    def _transaction(self, identity_id: str) -> Iterator[UnitOfWork]:
        with self.store.identity_lock(identity_id, timeout=self.lock_timeout_seconds):
            with self.store.unit_of_work() as uow:
                yield uow

    def _emit(self, effects: List[OutboundEvent]):
        for effect in effects:
            self.outbox.put(effect)

    def _require_identity(self, uow: UnitOfWork, identity_id: str) -> Identity:
        identity = uow.get_identity(identity_id)
        if identity is None:
            raise NotFoundError("User not found", entity="identity", entity_id=identity_id)
        return identity

    def _require_grant(self, uow: UnitOfWork, grant_id: str) -> Grant:
        grant = uow.get_grant(grant_id)
        if grant is None:
            raise NotFoundError("Grant not found", entity="grant", entity_id=grant_id)
        return grant

    def _owner_of(self, grant_id: str) -> str:
        grant = self.store.get_grant(grant_id)
        if grant is None:
            raise NotFoundError("Grant not found", entity="grant", entity_id=grant_id)
        return grant.identity_id

    def _transition(self, uow: UnitOfWork, identity: Identity, kind: TransitionKind) -> StatusTransition:
        transition = apply_transition(identity, kind, uow.grants_for_identity(identity.id))
        if transition.changed or kind != TransitionKind.DERIVED_RECOMPUTE:
            uow.save_identity(identity)
        return transition

    # Side effects

    @staticmethod
    def _audit(
        action: str,
        actor_email: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        identity_id: Optional[str] = None,
        credential_type_id: Optional[str] = None,
        grant_id: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        category: AuditCategory = AuditCategory.ASSIGNMENT,
    ) -> OutboundEvent:
        entry = AuditEntry(
            actor_email=actor_email,
            action=action,
            details=details or {},
            identity_id=identity_id,
            credential_type_id=credential_type_id,
            grant_id=grant_id,
            severity=severity,
            category=category,
        )
        return OutboundEvent(kind="audit", audit_entry=entry)

    @staticmethod
    def _notification(event: NotificationEvent, identity: Identity, **extra) -> OutboundEvent:
        payload = {
            "identity_id": identity.id,
            "email": identity.email,
            "name": identity.name,
            "status": identity.status.value,
        }
        payload.update(extra)
        return OutboundEvent(kind="notification", event=event, payload=payload)

    def _transition_effects(
        self, transition: StatusTransition, identity: Identity, actor_email: Optional[str]
    ) -> List[OutboundEvent]:
        effects = []

        if transition.kind == TransitionKind.DERIVED_RECOMPUTE:
            if transition.changed:
                effects.append(self._audit(
                    "status_changed",
                    actor_email,
                    {
                        "from": transition.previous_status.value,
                        "to": transition.new_status.value,
                        "source": transition.kind.value,
                    },
                    identity_id=identity.id,
                    category=AuditCategory.USER_MANAGEMENT,
                ))
        else:
            action, severity = EXPLICIT_AUDIT_ACTIONS[transition.kind]
            effects.append(self._audit(
                action,
                actor_email,
                {"identity_id": identity.id, "timestamp": transition.occurred_at.isoformat()},
                identity_id=identity.id,
                severity=severity,
                category=AuditCategory.USER_MANAGEMENT,
            ))

        event = notification_for(transition)
        if event is not None:
            effects.append(self._notification(event, identity))
        return effects

    def _result(self, identity: Identity, grant: Optional[Grant] = None,
                transition: Optional[StatusTransition] = None) -> OperationResult:
        return OperationResult(
            identity_id=identity.id,
            status=identity.status,
            grant=grant.model_copy() if grant else None,
            transition=transition,
        )

    # Grant-level operations

    def assign_credential(
        self, identity_id: str, credential_type_id: str, actor_email: Optional[str] = None
    ) -> OperationResult:
        """
        Grant a credential type to an identity.

        Raises:
            NotFoundError: Unknown identity or credential type
            InvalidTransitionError: Identity is offboarding or offboarded
            ConflictError: The pair is already granted (enforced at commit)
        """
        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            credential_type = self.store.get_credential_type(credential_type_id)
            if credential_type is None:
                raise NotFoundError("Credential not found", entity="credential_type", entity_id=credential_type_id)

            if identity.status not in ASSIGNABLE_STATUSES:
                raise InvalidTransitionError(
                    f'Cannot assign credentials to user with status "{identity.status.value}". '
                    f'User must be in "Pending" or "Onboarded" status.',
                    entity="identity",
                    entity_id=identity_id,
                )

            grant = uow.add_grant(Grant(identity_id=identity_id, credential_type_id=credential_type_id))
            effects = [self._audit(
                "assign",
                actor_email,
                {"identity_id": identity_id, "credential_type_id": credential_type_id},
                identity_id=identity_id,
                credential_type_id=credential_type_id,
                grant_id=grant.id,
            )]

        self._emit(effects)
        logger.info(f"Assigned credential {credential_type.name} to {identity.email}")
        return self._result(identity, grant)

    def confirm_grant(self, grant_id: str, identity_id: str) -> OperationResult:
        """
        Confirm receipt of a grant by its holder.

        Sets confirmed, clears problematic, and recomputes status.

        Raises:
            NotFoundError: Unknown grant or identity
            UnauthorizedError: Grant belongs to another identity
        """
        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            grant = self._require_owned_grant(uow, grant_id, identity_id)

            grant.confirmed = True
            grant.problematic = False
            grant.confirmed_at = utcnow()
            uow.save_grant(grant)

            transition = self._transition(uow, identity, TransitionKind.DERIVED_RECOMPUTE)
            effects = [self._audit(
                "confirm",
                identity.email,
                {"grant_id": grant_id},
                identity_id=identity_id,
                credential_type_id=grant.credential_type_id,
                grant_id=grant_id,
            )]
            effects.extend(self._transition_effects(transition, identity, identity.email))

        self._emit(effects)
        return self._result(identity, grant, transition)

    def report_problem(self, grant_id: str, identity_id: str, note: Optional[str] = None) -> OperationResult:
        """
        Report a problem with a grant.

        Sets problematic and leaves confirmed as it was, so a confirmed grant
        keeps displaying as Confirmed. Derivation ignores problematic, so the
        recompute only matters if another transition left status stale.

        Raises:
            NotFoundError: Unknown grant or identity
            UnauthorizedError: Grant belongs to another identity
        """
        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            grant = self._require_owned_grant(uow, grant_id, identity_id)

            grant.problematic = True
            uow.save_grant(grant)

            transition = self._transition(uow, identity, TransitionKind.DERIVED_RECOMPUTE)
            credential_type = self.store.get_credential_type(grant.credential_type_id)
            effects = [self._audit(
                "report_problem",
                identity.email,
                {"grant_id": grant_id, "note": note},
                identity_id=identity_id,
                credential_type_id=grant.credential_type_id,
                grant_id=grant_id,
                severity=AuditSeverity.MEDIUM,
            )]
            effects.extend(self._transition_effects(transition, identity, identity.email))
            effects.append(self._notification(
                NotificationEvent.ISSUE_REPORTED,
                identity,
                grant_id=grant_id,
                credential_type_id=grant.credential_type_id,
                credential_name=credential_type.name if credential_type else None,
                note=note,
            ))

        self._emit(effects)
        logger.info(f"Problem reported by {identity.email} on grant {grant_id}")
        return self._result(identity, grant, transition)

    def revoke_grant(self, grant_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """
        Mark a grant inactive. Permitted in every identity status.

        Raises:
            NotFoundError: Unknown grant
        """
        identity_id = self._owner_of(grant_id)

        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            grant = self._require_grant(uow, grant_id)

            grant.inactive = True
            uow.save_grant(grant)

            transition = self._transition(uow, identity, TransitionKind.DERIVED_RECOMPUTE)
            effects = [self._audit(
                "mark_inactive",
                actor_email,
                {"grant_id": grant_id},
                identity_id=identity_id,
                credential_type_id=grant.credential_type_id,
                grant_id=grant_id,
                severity=AuditSeverity.MEDIUM,
            )]
            effects.extend(self._transition_effects(transition, identity, actor_email))

        self._emit(effects)
        return self._result(identity, grant, transition)

    def delete_grant(self, grant_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """
        Delete a grant and recompute the holder's status.

        Raises:
            NotFoundError: Unknown grant
            InvalidTransitionError: Holder is currently offboarding
        """
        identity_id = self._owner_of(grant_id)

        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            grant = self._require_grant(uow, grant_id)

            if identity.status == IdentityStatus.OFFBOARDING_IN_PROGRESS:
                raise InvalidTransitionError(
                    "Cannot delete a grant while offboarding is in progress; revoke it instead",
                    entity="grant",
                    entity_id=grant_id,
                )

            uow.delete_grant(grant_id)
            transition = self._transition(uow, identity, TransitionKind.DERIVED_RECOMPUTE)
            effects = [self._audit(
                "delete_assignment",
                actor_email,
                {"grant_id": grant_id, "credential_type_id": grant.credential_type_id},
                identity_id=identity_id,
                credential_type_id=grant.credential_type_id,
                grant_id=grant_id,
                severity=AuditSeverity.MEDIUM,
            )]
            effects.extend(self._transition_effects(transition, identity, actor_email))

        self._emit(effects)
        return self._result(identity, grant, transition)

    def _require_owned_grant(self, uow: UnitOfWork, grant_id: str, identity_id: str) -> Grant:
        grant = self._require_grant(uow, grant_id)
        if grant.identity_id != identity_id:
            raise UnauthorizedError("Grant does not belong to this user", entity="grant", entity_id=grant_id)
        return grant

    # Explicit status overrides

    def _explicit(self, identity_id: str, kind: TransitionKind, actor_email: Optional[str]) -> OperationResult:
        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)

            revoked = 0
            if kind == TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING:
                for grant in uow.grants_for_identity(identity_id):
                    if not grant.inactive:
                        grant.inactive = True
                        uow.save_grant(grant)
                        revoked += 1

            transition = self._transition(uow, identity, kind)
            effects = self._transition_effects(transition, identity, actor_email)

        self._emit(effects)
        logger.info(
            f"{kind.value} applied to {identity.email}: {transition.previous_status.value} -> "
            f"{transition.new_status.value}" + (f", {revoked} grant(s) revoked" if revoked else "")
        )
        return self._result(identity, transition=transition)

    def onboard_identity(self, identity_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """
        Set status to Onboarded directly, bypassing derivation.

        Raises:
            NotFoundError: Unknown identity
            ConflictError: Identity is already onboarded
        """
        return self._explicit(identity_id, TransitionKind.EXPLICIT_ONBOARD, actor_email)

    def initiate_offboarding(self, identity_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """
        Set status to OffboardingInProgress directly.

        Raises:
            NotFoundError: Unknown identity
            ConflictError: Identity is already offboarded
        """
        return self._explicit(identity_id, TransitionKind.EXPLICIT_INITIATE_OFFBOARDING, actor_email)

    def complete_offboarding(self, identity_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """
        Mark every grant inactive and set status to Offboarded, in one commit.

        Raises:
            NotFoundError: Unknown identity
            ConflictError: Identity is already offboarded
        """
        return self._explicit(identity_id, TransitionKind.EXPLICIT_COMPLETE_OFFBOARDING, actor_email)

    def recompute_status(self, identity_id: str, actor_email: Optional[str] = None) -> OperationResult:
        """Re-derive status from grants. Emits nothing when status is unchanged."""
        with self._transaction(identity_id) as uow:
            identity = self._require_identity(uow, identity_id)
            transition = self._transition(uow, identity, TransitionKind.DERIVED_RECOMPUTE)
            effects = self._transition_effects(transition, identity, actor_email)

        self._emit(effects)
        return self._result(identity, transition=transition)

    # Identity and credential type management

    def register_identity(
        self, email: str, name: str, role: Role = Role.MEMBER, actor_email: Optional[str] = None
    ) -> Identity:
        """Create a Pending identity. Raises ConflictError on a duplicate email."""
        identity = self.store.create_identity(email=email, name=name, role=role)
        self._emit([self._audit(
            "identity_registered",
            actor_email or identity.email,
            {"email": identity.email, "role": identity.role.value},
            identity_id=identity.id,
            category=AuditCategory.USER_MANAGEMENT,
        )])
        return identity

    def create_credential_type(
        self, name: str, description: Optional[str] = None, actor_email: Optional[str] = None
    ) -> CredentialType:
        credential_type = self.store.create_credential_type(name, description)
        self._emit([self._audit(
            "credential_add",
            actor_email,
            {"id": credential_type.id, "name": credential_type.name},
            credential_type_id=credential_type.id,
            category=AuditCategory.CREDENTIAL_MANAGEMENT,
        )])
        return credential_type

    def update_credential_type(
        self,
        credential_type_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        actor_email: Optional[str] = None,
    ) -> CredentialType:
        credential_type = self.store.update_credential_type(credential_type_id, name, description)
        self._emit([self._audit(
            "credential_edit",
            actor_email,
            {"id": credential_type_id, "name": name, "description": description},
            credential_type_id=credential_type_id,
            category=AuditCategory.CREDENTIAL_MANAGEMENT,
        )])
        return credential_type

    def delete_credential_type(self, credential_type_id: str, actor_email: Optional[str] = None) -> CredentialType:
        """Delete an unreferenced credential type. Raises ConflictError while grants reference it."""
        credential_type = self.store.delete_credential_type(credential_type_id)
        self._emit([self._audit(
            "credential_delete",
            actor_email,
            {"id": credential_type_id, "name": credential_type.name},
            credential_type_id=credential_type_id,
            severity=AuditSeverity.MEDIUM,
            category=AuditCategory.CREDENTIAL_MANAGEMENT,
        )])
        return credential_type

    # Reads

    def get_identity(self, identity_id: str) -> Identity:
        identity = self.store.get_identity(identity_id)
        if identity is None:
            raise NotFoundError("User not found", entity="identity", entity_id=identity_id)
        return identity

    def list_identity_grants(self, identity_id: str) -> List[GrantView]:
        return self.get_identity_details(identity_id).grants

    def get_identity_details(self, identity_id: str) -> IdentityDetails:
        identity, grants = self.store.snapshot(identity_id)
        if identity is None:
            raise NotFoundError("User not found", entity="identity", entity_id=identity_id)

        views = [
            GrantView(
                grant=grant,
                credential_type=self.store.get_credential_type(grant.credential_type_id),
                display_status=grant_display_status(grant),
            )
            for grant in grants
        ]
        return IdentityDetails(identity=identity, grants=views)
