"""
Grant Store for the Credential Lifecycle Engine.

Holds identities, credential types, and grants. State is kept in memory with
optional JSON file persistence. Writes to grants and identity status go
through a ``UnitOfWork`` that commits atomically, and every identity has a
lock that the lifecycle engine holds across a mutation and its status write.
"""

import json
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from ..errors import ConflictError, LockTimeoutError, NotFoundError
from ..models import CredentialType, Grant, Identity, IdentityStatus, Role, utcnow

logger = logging.getLogger(__name__)

GrantPredicate = Callable[[Grant], bool]


class UnitOfWork:
    """
    Staged set of identity and grant writes.

    Reads see committed state overlaid with this unit's own staged writes.
    Nothing is visible to other readers until ``commit``; discarding the unit
    (or raising inside its ``with`` block) leaves the store untouched.
    """

    def __init__(self, store: "GrantStore"):
        self._store = store
        self._identities: Dict[str, Identity] = {}
        self._dirty_identities: Set[str] = set()
        self._grants: Dict[str, Grant] = {}
        self._dirty_grants: Set[str] = set()
        self._deleted_grants: Set[str] = set()
        self.committed = False

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        if identity_id not in self._identities:
            identity = self._store.get_identity(identity_id)
            if identity is None:
                return None
            self._identities[identity_id] = identity
        return self._identities[identity_id]

    def save_identity(self, identity: Identity):
        self._identities[identity.id] = identity
        self._dirty_identities.add(identity.id)

    def get_grant(self, grant_id: str) -> Optional[Grant]:
        if grant_id in self._deleted_grants:
            return None
        if grant_id not in self._grants:
            grant = self._store.get_grant(grant_id)
            if grant is None:
                return None
            self._grants[grant_id] = grant
        return self._grants[grant_id]

    def add_grant(self, grant: Grant) -> Grant:
        self._grants[grant.id] = grant
        self._dirty_grants.add(grant.id)
        self._deleted_grants.discard(grant.id)
        return grant

    def save_grant(self, grant: Grant):
        grant.updated_at = utcnow()
        self.add_grant(grant)

    def delete_grant(self, grant_id: str):
        self._grants.pop(grant_id, None)
        self._dirty_grants.discard(grant_id)
        self._deleted_grants.add(grant_id)

    def grants_for_identity(self, identity_id: str) -> List[Grant]:
        """All grants of an identity as they would be after commit."""
        grants: Dict[str, Grant] = {}
        for grant in self._store.list_grants(identity_id=identity_id):
            if grant.id in self._deleted_grants:
                continue
            grants[grant.id] = self._grants.setdefault(grant.id, grant)
        for grant_id, grant in self._grants.items():
            if grant.identity_id == identity_id and grant_id not in self._deleted_grants:
                grants[grant_id] = grant
        return sorted(grants.values(), key=lambda g: g.created_at)

    def commit(self):
        if self.committed:
            raise RuntimeError("Unit of work already committed")
        self._store._apply(
            identities=[self._identities[i] for i in self._dirty_identities],
            grants=[self._grants[g] for g in self._dirty_grants],
            deleted_grants=set(self._deleted_grants),
        )
        self.committed = True

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None and not self.committed:
            self.commit()
        elif exc_type is not None:
            logger.debug(f"Discarding unit of work after {exc_type.__name__}")
        return False


class GrantStore:
    """
    Store for identities, credential types, and grants.

    Provides in-memory state with optional JSON file persistence. Returned
    models are copies; changes only reach the store through a unit of work or
    the explicit create/update methods.
    """

    def __init__(self, storage_path: Optional[Union[str, Path]] = None):
        """
        Initialize the grant store.

        Args:
            storage_path: Path to store state as JSON.
                         If None, state is kept in memory only.
        """
        self.storage_path = Path(storage_path) if storage_path else None
        self._identities: Dict[str, Identity] = {}
        self._credential_types: Dict[str, CredentialType] = {}
        self._grants: Dict[str, Grant] = {}
        self._pair_index: Dict[Tuple[str, str], str] = {}

        self._lock = threading.RLock()
        self._locks_guard = threading.Lock()
        # Entries disappear once no thread holds or waits on the lock.
        self._identity_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

        if self.storage_path:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

        logger.info(
            f"Initialized GrantStore with {'persistent' if self.storage_path else 'in-memory'} storage"
        )

    # Locking and units of work

    @contextmanager
    def identity_lock(self, identity_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the per-identity lock.

        Args:
            identity_id: Identity whose mutations are serialized
            timeout: Seconds to wait; None waits indefinitely

        Raises:
            LockTimeoutError: Lock not acquired within ``timeout``
        """
        with self._locks_guard:
            lock = self._identity_locks.setdefault(identity_id, threading.Lock())

        acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
        if not acquired:
            raise LockTimeoutError(
                f"Timed out waiting for identity {identity_id}",
                entity="identity",
                entity_id=identity_id,
            )
        try:
            yield
        finally:
            lock.release()

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self)

    def _apply(self, identities: List[Identity], grants: List[Grant], deleted_grants: Set[str]):
        """Atomically apply staged writes, enforcing grant pair uniqueness and credential type existence."""
        with self._lock:
            new_grants = dict(self._grants)
            new_index = dict(self._pair_index)

            for grant_id in deleted_grants:
                removed = new_grants.pop(grant_id, None)
                if removed is not None:
                    new_index.pop(removed.pair, None)

            for grant in grants:
                if grant.credential_type_id not in self._credential_types:
                    raise NotFoundError(
                        "Credential not found",
                        entity="credential_type",
                        entity_id=grant.credential_type_id,
                    )
                holder = new_index.get(grant.pair)
                if holder is not None and holder != grant.id:
                    raise ConflictError(
                        "Credential already assigned to this identity",
                        entity="grant",
                        entity_id=holder,
                    )
                new_grants[grant.id] = grant.model_copy()
                new_index[grant.pair] = grant.id

            new_identities = dict(self._identities)
            for identity in identities:
                new_identities[identity.id] = identity.model_copy()

            self._write_state(new_identities, self._credential_types, new_grants)

            self._grants = new_grants
            self._pair_index = new_index
            self._identities = new_identities

    # Identities

    def create_identity(self, email: str, name: str, role: Role = Role.MEMBER) -> Identity:
        """
        Register a new identity in Pending status.

        Raises:
            ConflictError: An identity with this email already exists
        """
        identity = Identity(email=email, name=name, role=role)
        with self._lock:
            if self._find_identity_by_email(identity.email) is not None:
                raise ConflictError(f"Email {identity.email} is already registered", entity="identity")
            new_identities = dict(self._identities)
            new_identities[identity.id] = identity
            self._write_state(new_identities, self._credential_types, self._grants)
            self._identities = new_identities

        logger.info(f"Created identity {identity.id} for {identity.email}")
        return identity.model_copy()

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        return identity.model_copy() if identity else None

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        identity = self._find_identity_by_email(email)
        return identity.model_copy() if identity else None

    def _find_identity_by_email(self, email: str) -> Optional[Identity]:
        for identity in self._identities.values():
            if identity.email.lower() == email.strip().lower():
                return identity
        return None

    def list_identities(self, status: Optional[IdentityStatus] = None) -> List[Identity]:
        identities = sorted(self._identities.values(), key=lambda i: i.created_at)
        return [i.model_copy() for i in identities if status is None or i.status == status]

    def snapshot(self, identity_id: str) -> Tuple[Optional[Identity], List[Grant]]:
        """Identity and its grants read from the same committed state."""
        with self._lock:
            return self.get_identity(identity_id), self.list_grants(identity_id=identity_id)

    def count_identities(self, status: Optional[IdentityStatus] = None) -> int:
        return sum(1 for i in self._identities.values() if status is None or i.status == status)

    # Credential types

    def create_credential_type(self, name: str, description: Optional[str] = None) -> CredentialType:
        credential_type = CredentialType(name=name, description=description)
        with self._lock:
            new_types = dict(self._credential_types)
            new_types[credential_type.id] = credential_type
            self._write_state(self._identities, new_types, self._grants)
            self._credential_types = new_types

        logger.info(f"Created credential type {credential_type.id} ({credential_type.name})")
        return credential_type.model_copy()

    def get_credential_type(self, credential_type_id: str) -> Optional[CredentialType]:
        credential_type = self._credential_types.get(credential_type_id)
        return credential_type.model_copy() if credential_type else None

    def get_credential_type_by_name(self, name: str) -> Optional[CredentialType]:
        for credential_type in self._credential_types.values():
            if credential_type.name == name:
                return credential_type.model_copy()
        return None

    def list_credential_types(self) -> List[CredentialType]:
        types = sorted(self._credential_types.values(), key=lambda c: c.created_at)
        return [c.model_copy() for c in types]

    def update_credential_type(
        self, credential_type_id: str, name: Optional[str] = None, description: Optional[str] = None
    ) -> CredentialType:
        with self._lock:
            existing = self._credential_types.get(credential_type_id)
            if existing is None:
                raise NotFoundError("Credential not found", entity="credential_type", entity_id=credential_type_id)
            changes = {"updated_at": utcnow()}
            if name:
                changes["name"] = name
            if description:
                changes["description"] = description
            updated = CredentialType.model_validate({**existing.model_dump(), **changes})

            new_types = dict(self._credential_types)
            new_types[credential_type_id] = updated
            self._write_state(self._identities, new_types, self._grants)
            self._credential_types = new_types

        return updated.model_copy()

    def delete_credential_type(self, credential_type_id: str) -> CredentialType:
        """
        Delete a credential type that no grant references.

        Raises:
            NotFoundError: Unknown credential type
            ConflictError: The credential type is still referenced by grants
        """
        with self._lock:
            existing = self._credential_types.get(credential_type_id)
            if existing is None:
                raise NotFoundError("Credential not found", entity="credential_type", entity_id=credential_type_id)
            referenced = self.count_grants(predicate=lambda g: g.credential_type_id == credential_type_id)
            if referenced:
                raise ConflictError(
                    f"Credential is assigned by {referenced} grant(s); delete or revoke them first",
                    entity="credential_type",
                    entity_id=credential_type_id,
                )
            new_types = dict(self._credential_types)
            del new_types[credential_type_id]
            self._write_state(self._identities, new_types, self._grants)
            self._credential_types = new_types

        logger.info(f"Deleted credential type {credential_type_id}")
        return existing.model_copy()

    # Grants

    def get_grant(self, grant_id: str) -> Optional[Grant]:
        grant = self._grants.get(grant_id)
        return grant.model_copy() if grant else None

    def find_grant(self, identity_id: str, credential_type_id: str) -> Optional[Grant]:
        grant_id = self._pair_index.get((identity_id, credential_type_id))
        return self.get_grant(grant_id) if grant_id else None

    def list_grants(
        self, identity_id: Optional[str] = None, credential_type_id: Optional[str] = None
    ) -> List[Grant]:
        grants = list(self._grants.values())
        return [
            g.model_copy()
            for g in sorted(grants, key=lambda g: g.created_at)
            if (identity_id is None or g.identity_id == identity_id)
            and (credential_type_id is None or g.credential_type_id == credential_type_id)
        ]

    def count_grants(self, identity_id: Optional[str] = None, predicate: Optional[GrantPredicate] = None) -> int:
        """Count grants, optionally for one identity and matching a predicate."""
        grants = list(self._grants.values())
        return sum(
            1
            for g in grants
            if (identity_id is None or g.identity_id == identity_id) and (predicate is None or predicate(g))
        )

    # Persistence

    def _write_state(
        self,
        identities: Dict[str, Identity],
        credential_types: Dict[str, CredentialType],
        grants: Dict[str, Grant],
    ):
        """Write a full snapshot; raises so the caller can keep the old state."""
        if not self.storage_path:
            return

        state_data = {
            "identities": {k: v.model_dump(mode="json") for k, v in identities.items()},
            "credential_types": {k: v.model_dump(mode="json") for k, v in credential_types.items()},
            "grants": {k: v.model_dump(mode="json") for k, v in grants.items()},
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state_data, f, indent=2)
            tmp_path.replace(self.storage_path)
        except OSError as e:
            logger.error(f"Failed to save state to {self.storage_path}: {e}")
            raise

    def _load_state(self):
        """Load state from persistent storage."""
        if not self.storage_path or not self.storage_path.exists():
            return

        try:
            with open(self.storage_path, encoding="utf-8") as f:
                state_data = json.load(f)

            for identity_id, data in state_data.get("identities", {}).items():
                self._identities[identity_id] = Identity.model_validate(data)
            for type_id, data in state_data.get("credential_types", {}).items():
                self._credential_types[type_id] = CredentialType.model_validate(data)
            for grant_id, data in state_data.get("grants", {}).items():
                grant = Grant.model_validate(data)
                self._grants[grant_id] = grant
                self._pair_index[grant.pair] = grant_id

            logger.info(
                f"Loaded {len(self._identities)} identities, {len(self._credential_types)} credential types "
                f"and {len(self._grants)} grants from {self.storage_path}"
            )

        except Exception as e:
            logger.error(f"Failed to load state from {self.storage_path}: {e}")
            # Continue with empty state if load fails
            self._identities.clear()
            self._credential_types.clear()
            self._grants.clear()
            self._pair_index.clear()
