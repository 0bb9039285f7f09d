"""Tests for the alpha-remote command line."""

import json

import pytest

from alpha_remote import cli
from alpha_remote.devices import CameraSession
from tests.helpers import FakeClock, FakeTransport

TWIN = ["--mode", "digital_twin"]


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep CLI runs from reconfiguring the package logger."""
    monkeypatch.setattr(cli, "configure_logging_from_args", lambda args: None)


def _run(capsys, *argv):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestCommands:
    def test_status(self, capsys, tmp_path):
        code, payload = _run(capsys, "status", *TWIN, "--capture-dir", str(tmp_path))
        assert code == 0
        assert payload["state"] == "ready"
        assert payload["transport"] == "offline"
        assert payload["settings"]["iso"] == "AUTO"

    def test_get_with_available(self, capsys):
        code, payload = _run(capsys, "get", "iso", "--available", *TWIN)
        assert code == 0
        assert payload["value"] == "AUTO"
        assert "400" in payload["available"]

    def test_get_unknown_setting(self, capsys):
        code, payload = _run(capsys, "get", "bogus", *TWIN)
        assert code == 1
        assert payload["value"] is None

    def test_set(self, capsys):
        code, payload = _run(capsys, "set", "iso", "400", *TWIN)
        assert code == 0
        assert payload == {"setting": "iso", "requested": "400", "value": "400"}

    def test_set_exposure_compensation_is_numeric(self, capsys):
        code, payload = _run(capsys, "set", "ev", "-1", *TWIN)
        assert code == 0
        assert payload["value"] == -1

    def test_capture(self, capsys, tmp_path):
        code, payload = _run(capsys, "capture", *TWIN, "--capture-dir", str(tmp_path))
        assert code == 0
        assert payload["status"] == "completed"
        assert payload["files"][0].startswith(str(tmp_path))

    def test_connection_error_exit_code(self, capsys, monkeypatch):
        unreachable = CameraSession(FakeTransport(unreachable=True), clock=FakeClock())
        monkeypatch.setattr(cli, "create_session", lambda factory: unreachable)
        code = cli.main(["status", "--no-offline-fallback"])
        captured = capsys.readouterr()
        assert code == 2
        assert captured.err.startswith("alpha-remote: ")
        assert unreachable.closed


class TestServerDispatch:
    @pytest.fixture
    def server_calls(self, monkeypatch):
        calls = []
        monkeypatch.setattr("alpha_remote.server.main", calls.append)
        return calls

    def test_no_arguments_runs_server(self, server_calls):
        assert cli.main([]) == 0
        assert server_calls == [[]]

    def test_server_subcommand(self, server_calls):
        cli.main(["server", "--mode", "gphoto2"])
        assert server_calls == [["--mode", "gphoto2"]]

    def test_bare_flags_go_to_server(self, server_calls):
        cli.main(["--url", "http://10.0.0.1:8080"])
        assert server_calls == [["--url", "http://10.0.0.1:8080"]]

    def test_help_is_not_dispatched(self, server_calls, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--help"])
        assert server_calls == []


@pytest.mark.parametrize(
    "setting, text, expected",
    [
        ("wb", "5500", 5500),
        ("ev", "0.7", 0.7),
        ("white_balance", "Daylight", "Daylight"),
        ("iso", "400", "400"),
        ("bogus", "1", "1"),
    ],
)
def test_numeric_value(setting, text, expected):
    assert cli._numeric_value(setting, text) == expected
