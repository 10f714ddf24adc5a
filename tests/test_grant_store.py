"""
Tests for the GrantStore and its units of work.
"""

import gc
import json
import threading

import pytest

from credential_engine.engine import GrantStore
from credential_engine.errors import ConflictError, LockTimeoutError, NotFoundError
from credential_engine.models import Grant, IdentityStatus


class TestGrantStore:
    """Test cases for GrantStore."""

    @pytest.fixture
    def identity(self, store):
        return store.create_identity("john.doe@company.com", "John Doe")

    @pytest.fixture
    def credential_type(self, store):
        return store.create_credential_type("VPN", "Corporate VPN")

    def test_create_identity_defaults_to_pending(self, identity):
        assert identity.status == IdentityStatus.PENDING
        assert identity.onboarded_at is None

    def test_duplicate_email_conflicts(self, store, identity):
        with pytest.raises(ConflictError):
            store.create_identity("John.Doe@company.com", "Someone Else")

    def test_invalid_email_rejected(self, store):
        with pytest.raises(ValueError):
            store.create_identity("not-an-email", "Nobody")

    def test_reads_return_copies(self, store, identity):
        copy = store.get_identity(identity.id)
        copy.status = IdentityStatus.OFFBOARDED
        assert store.get_identity(identity.id).status == IdentityStatus.PENDING

    def test_unit_of_work_commits_grant_and_identity_together(self, store, identity, credential_type):
        with store.unit_of_work() as uow:
            uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))
            working = uow.get_identity(identity.id)
            working.status = IdentityStatus.ONBOARDED
            uow.save_identity(working)

            # Nothing visible before commit
            assert store.list_grants(identity_id=identity.id) == []
            assert store.get_identity(identity.id).status == IdentityStatus.PENDING

        assert len(store.list_grants(identity_id=identity.id)) == 1
        assert store.get_identity(identity.id).status == IdentityStatus.ONBOARDED

    def test_unit_of_work_discarded_on_exception(self, store, identity, credential_type):
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))
                raise RuntimeError("boom")

        assert store.list_grants() == []

    def test_pair_uniqueness_enforced_at_commit(self, store, identity, credential_type):
        first = store.unit_of_work()
        second = store.unit_of_work()
        first.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))
        second.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))

        first.commit()
        with pytest.raises(ConflictError):
            second.commit()

        assert store.count_grants(identity_id=identity.id) == 1

    def test_deleted_pair_can_be_granted_again(self, store, identity, credential_type):
        with store.unit_of_work() as uow:
            grant = uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))
        with store.unit_of_work() as uow:
            uow.delete_grant(grant.id)
        with store.unit_of_work() as uow:
            uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))

        assert store.find_grant(identity.id, credential_type.id) is not None
        assert store.get_grant(grant.id) is None

    def test_grants_for_identity_overlays_staged_writes(self, store, identity, credential_type):
        other_type = store.create_credential_type("GitHub")
        with store.unit_of_work() as uow:
            kept = uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))
            dropped = uow.add_grant(Grant(identity_id=identity.id, credential_type_id=other_type.id))

        uow = store.unit_of_work()
        grant = uow.get_grant(kept.id)
        grant.confirmed = True
        uow.save_grant(grant)
        uow.delete_grant(dropped.id)

        staged = uow.grants_for_identity(identity.id)
        assert [g.id for g in staged] == [kept.id]
        assert staged[0].confirmed is True
        assert store.get_grant(kept.id).confirmed is False

    def test_identity_lock_times_out(self, store, identity):
        held = threading.Event()
        release = threading.Event()

        def holder():
            with store.identity_lock(identity.id):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert held.wait(5)
            with pytest.raises(LockTimeoutError):
                with store.identity_lock(identity.id, timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join()

        with store.identity_lock(identity.id, timeout=1):
            pass

    def test_identity_locks_released_after_use(self, store, identity):
        with store.identity_lock("no-such-identity", timeout=1):
            assert "no-such-identity" in store._identity_locks
        with store.identity_lock(identity.id, timeout=1):
            pass

        gc.collect()
        assert len(store._identity_locks) == 0

    def test_delete_referenced_credential_type_conflicts(self, store, identity, credential_type):
        with store.unit_of_work() as uow:
            uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))

        with pytest.raises(ConflictError):
            store.delete_credential_type(credential_type.id)
        assert store.get_credential_type(credential_type.id) is not None

    def test_grant_for_credential_type_deleted_before_commit_rejected(self, store, identity, credential_type):
        uow = store.unit_of_work()
        uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))

        # Nothing committed references the type yet, so the delete goes through.
        store.delete_credential_type(credential_type.id)

        with pytest.raises(NotFoundError):
            uow.commit()
        assert store.list_grants() == []
        assert store.find_grant(identity.id, credential_type.id) is None

    def test_credential_type_update_and_delete(self, store, credential_type):
        updated = store.update_credential_type(credential_type.id, name="VPN (EU)")
        assert updated.name == "VPN (EU)"
        assert updated.description == "Corporate VPN"

        store.delete_credential_type(credential_type.id)
        assert store.list_credential_types() == []

        with pytest.raises(NotFoundError):
            store.update_credential_type(credential_type.id, name="Gone")

    def test_list_identities_filters_by_status(self, store, identity):
        other = store.create_identity("ann@company.com", "Ann")
        with store.unit_of_work() as uow:
            working = uow.get_identity(other.id)
            working.status = IdentityStatus.OFFBOARDED
            uow.save_identity(working)

        assert [i.id for i in store.list_identities(IdentityStatus.PENDING)] == [identity.id]
        assert store.count_identities(IdentityStatus.OFFBOARDED) == 1
        assert store.count_identities() == 2


@pytest.mark.integration
class TestGrantStorePersistence:
    """JSON persistence of the store."""

    def test_state_round_trip(self, tmp_path):
        state_file = tmp_path / "state.json"
        store = GrantStore(state_file)
        identity = store.create_identity("john.doe@company.com", "John Doe")
        credential_type = store.create_credential_type("VPN")
        with store.unit_of_work() as uow:
            grant = uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id, confirmed=True))

        reloaded = GrantStore(state_file)
        assert reloaded.get_identity(identity.id).email == "john.doe@company.com"
        assert reloaded.get_grant(grant.id).confirmed is True
        assert reloaded.find_grant(identity.id, credential_type.id).id == grant.id

        data = json.loads(state_file.read_text())
        assert set(data) >= {"identities", "credential_types", "grants", "last_updated"}

    def test_failed_write_keeps_previous_state(self, tmp_path, monkeypatch):
        store = GrantStore(tmp_path / "state.json")
        identity = store.create_identity("john.doe@company.com", "John Doe")
        credential_type = store.create_credential_type("VPN")

        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write_state", fail)
        with pytest.raises(OSError):
            with store.unit_of_work() as uow:
                uow.add_grant(Grant(identity_id=identity.id, credential_type_id=credential_type.id))

        assert store.list_grants() == []

    def test_corrupt_state_file_starts_empty(self, tmp_path):
        state_file = tmp_path / "state.json"
        state_file.write_text("{not json")

        store = GrantStore(state_file)
        assert store.list_identities() == []
