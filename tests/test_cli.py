"""
Tests for the credctl command line interface.
"""

import pytest
import yaml
from click.testing import CliRunner

from credential_engine.cli.credctl import cli
from credential_engine.engine import GrantStore


@pytest.mark.integration
class TestCredctl:
    """Commands run against a file-backed store, one process per command."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({
            "state_file": str(tmp_path / "state.json"),
            "audit_dir": str(tmp_path / "audit"),
        }))
        return path

    @pytest.fixture
    def run(self, config_file):
        runner = CliRunner()

        def invoke(*args, **kwargs):
            return runner.invoke(cli, ["--config", str(config_file), *args], **kwargs)

        return invoke

    @pytest.fixture
    def state(self, tmp_path):
        return lambda: GrantStore(tmp_path / "state.json")

    def test_full_lifecycle(self, run, state):
        result = run("register", "--email", "jane.doe@company.com", "--name", "Jane Doe")
        assert result.exit_code == 0, result.output
        assert "Registered jane.doe@company.com" in result.output

        result = run("add-credential", "VPN", "--description", "Corporate VPN")
        assert result.exit_code == 0, result.output

        identity = state().get_identity_by_email("jane.doe@company.com")
        credential_type = state().get_credential_type_by_name("VPN")

        result = run("assign", identity.id, credential_type.id)
        assert result.exit_code == 0, result.output
        grant = state().find_grant(identity.id, credential_type.id)

        result = run("confirm", identity.id, grant.id)
        assert result.exit_code == 0, result.output
        assert "Onboarded" in result.output

        result = run("show-identity", identity.id)
        assert result.exit_code == 0, result.output
        assert "Jane Doe" in result.output
        assert "Confirmed" in result.output

        result = run("complete-offboarding", identity.id, "--yes")
        assert result.exit_code == 0, result.output
        assert state().get_identity(identity.id).status.value == "Offboarded"

        result = run("audit-log", "--action", "confirm")
        assert result.exit_code == 0, result.output
        assert "jane.doe@company.com" in result.output

        result = run("stats")
        assert "Offboarded: 1" in result.output

    def test_engine_error_exits_nonzero(self, run):
        result = run("revoke", "missing-grant")
        assert result.exit_code == 1
        assert "Grant not found" in result.output

    def test_list_commands_when_empty(self, run):
        assert "No identities found" in run("list-identities").output
        assert "No credentials found" in run("list-credentials").output
