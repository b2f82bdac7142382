"""Tests for the credential-rotator CLI."""
import json
from unittest import mock

import pytest

from credential_rotator.cli import main as cli
from credential_rotator.cli.validators import validate_secret_id, validate_step, validate_token
from credential_rotator.rotation.domains.cancel import CancelToken
from credential_rotator.rotation.domains.config_loader import parse_config
from credential_rotator.rotation.domains.errors import RotationFailed
from credential_rotator.rotation.workflows import factory
from credential_rotator.rotation.workflows.password_setter import PasswordSetter

from conftest import FakeDiscovery, FakeFleet, candidates

TOKEN = "0f8b5c1e-2c9a-4c3e-9a57-7b1f0d3e4a21"


@pytest.fixture(autouse=True)
def keep_log_handlers(monkeypatch):
    """Leave pytest's log capture handlers on the root logger."""
    monkeypatch.setattr(cli, "_configure_logging", lambda verbosity: None)


@pytest.fixture
def settings(monkeypatch):
    """Patch config loading to return default settings."""
    value = parse_config({})
    monkeypatch.setattr("credential_rotator.rotation.domains.config_loader.load_config", lambda path=None: value)
    return value


@pytest.fixture
def rotator(monkeypatch):
    """Patch build_rotator to return a mock Rotator, recording the settings it was built with."""
    fake = mock.MagicMock()
    fake.handler.return_value = None
    built = []

    def build(settings):
        built.append(settings)
        return fake

    monkeypatch.setattr(factory, "build_rotator", build)
    fake.built = built
    return fake


class TestMain:
    """Test suite for argument parsing and exit codes."""

    def test_version(self, capsys):
        cli.main(["version"])
        assert capsys.readouterr().out.strip() == "credential-rotator 0.1.0"

    def test_no_command_is_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2

    def test_config_without_subcommand(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["config"])
        assert exc_info.value.code == 2

    def test_runtime_error_exits_1(self, monkeypatch, capsys):
        def broken(path=None):
            raise RuntimeError("no credentials")

        monkeypatch.setattr("credential_rotator.rotation.domains.config_loader.load_config", broken)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["targets"])

        assert exc_info.value.code == 1
        assert "Error: no credentials" in capsys.readouterr().err


class TestRunCommand:
    """Test suite for the run command."""

    def test_runs_step(self, settings, rotator, capsys):
        cli.main(["run", "--step", "createSecret", "--secret-id", "db/app", "--token", TOKEN])

        event, cancel = rotator.handler.call_args[0]
        assert event == {"Step": "createSecret", "SecretId": "db/app", "ClientRequestToken": TOKEN}
        assert isinstance(cancel, CancelToken)
        assert cancel.remaining is None
        assert "Success: createSecret completed" in capsys.readouterr().err

    def test_timeout_sets_deadline(self, settings, rotator):
        cli.main(["run", "--step", "setSecret", "--secret-id", "db/app", "--token", TOKEN, "--timeout", "60"])

        _, cancel = rotator.handler.call_args[0]
        assert 0 < cancel.remaining <= 60

    def test_skip_database_override(self, settings, rotator):
        cli.main(["run", "--step", "setSecret", "--secret-id", "db/app", "--token", TOKEN, "--skip-database"])

        assert rotator.built[0].rotation.skip_database is True
        assert settings.rotation.skip_database is False

    def test_event_file(self, settings, rotator, tmp_path, capsys):
        event_file = tmp_path / "event.json"
        event_file.write_text(json.dumps({"action": "reset-password", "user": "app"}))
        rotator.handler.return_value = {"status": "ok"}

        cli.main(["run", "--event", str(event_file)])

        event, _ = rotator.handler.call_args[0]
        assert event == {"action": "reset-password", "user": "app"}
        assert '"status": "ok"' in capsys.readouterr().out

    def test_step_failure_exits_1(self, settings, rotator, capsys):
        rotator.handler.side_effect = RotationFailed()

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["run", "--step", "setSecret", "--secret-id", "db/app", "--token", TOKEN])

        assert exc_info.value.code == 1
        assert "Password rotation failed" in capsys.readouterr().err

    @pytest.mark.parametrize("argv", [
        ["run"],
        ["run", "--step", "setSecret", "--secret-id", "db/app"],
        ["run", "--step", "rotate", "--secret-id", "db/app", "--token", TOKEN],
        ["run", "--step", "setSecret", "--secret-id", "db app", "--token", TOKEN],
        ["run", "--step", "setSecret", "--secret-id", "db/app", "--token", "short"],
        ["run", "--event", "/nonexistent/event.json"],
        ["run", "--event", "/nonexistent/event.json", "--step", "setSecret"],
    ])
    def test_usage_errors_exit_2(self, settings, rotator, argv):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 2
        rotator.handler.assert_not_called()

    def test_event_file_must_be_object(self, settings, rotator, tmp_path):
        event_file = tmp_path / "event.json"
        event_file.write_text("[1, 2]")
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["run", "--event", str(event_file)])
        assert exc_info.value.code == 2


class TestTargetsCommand:
    """Test suite for the targets command."""

    def test_lists_targets(self, settings, monkeypatch, capsys):
        setter = PasswordSetter(FakeDiscovery(candidates("db1.example.com", "db2.example.com")), FakeFleet())
        monkeypatch.setattr(factory, "build_password_setter", lambda s: setter)

        cli.main(["targets"])

        captured = capsys.readouterr()
        assert captured.out.splitlines() == ["db1\tdb1.example.com", "db2\tdb2.example.com"]
        assert "2 databases" in captured.err


class TestValidators:
    """Test suite for CLI input validators."""

    def test_valid_inputs(self):
        validate_secret_id("prod/db-app_1")
        validate_secret_id("arn:aws:secretsmanager:us-east-1:123456789012:secret:db/app-AbCdEf")
        validate_token(TOKEN)
        validate_step("finishSecret")

    @pytest.mark.parametrize("secret_id", ["", "db app", "db#app"])
    def test_invalid_secret_id(self, secret_id, capsys):
        with pytest.raises(SystemExit) as exc_info:
            validate_secret_id(secret_id)
        assert exc_info.value.code == 2
        assert "Error:" in capsys.readouterr().err

    @pytest.mark.parametrize("token", ["", "   ", "x" * 31, "x" * 65])
    def test_invalid_token(self, token):
        with pytest.raises(SystemExit) as exc_info:
            validate_token(token)
        assert exc_info.value.code == 2

    def test_invalid_step_lists_valid_steps(self, capsys):
        with pytest.raises(SystemExit):
            validate_step("createsecret")
        assert "createSecret, setSecret, testSecret, finishSecret" in capsys.readouterr().err
