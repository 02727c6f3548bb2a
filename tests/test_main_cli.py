import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import main  # noqa: E402
from main import _parse_args  # noqa: E402


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_config_option_precedes_subcommand() -> None:
    args = _parse_args(["--config", "userbase.yaml", "init-db"])
    assert args.command == "init-db"
    assert args.config == "userbase.yaml"


def test_users_subcommands() -> None:
    args = _parse_args(["users"])
    assert (args.command, args.users_command) == ("users", "list")

    args = _parse_args(["users", "show", "abc123"])
    assert (args.users_command, args.user_id) == ("show", "abc123")

    args = _parse_args(["users", "list", "--where", "username=harsh"])
    assert args.where == ["username=harsh"]


def test_init_db_creates_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "store" / "userbase.sqlite3"
    monkeypatch.setenv("USERBASE_STORE_URL", f"sqlite:///{db_path}")
    monkeypatch.delenv("USERBASE_CONFIG", raising=False)

    assert main.main(["init-db"]) == 0
    assert db_path.exists()


def test_users_list_queries_running_service(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json=[{"id": "a" * 24, "name": "harsh", "email": "harsh@gmail.com", "username": "harsh"}],
        )

    real_client = httpx.Client
    monkeypatch.setattr(
        main.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    args = _parse_args(["users", "--service-url", "http://service", "list", "--where", "username=harsh"])

    assert main._run_users_command(args) == 0
    assert seen == {"path": "/users", "params": {"username": "harsh"}}
    output = capsys.readouterr().out
    assert "1 user(s) found" in output
    assert "harsh@gmail.com" in output


def test_users_show_reports_missing_user(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    real_client = httpx.Client
    monkeypatch.setattr(
        main.httpx,
        "Client",
        lambda **kwargs: real_client(
            transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "User not found"})),
            **kwargs,
        ),
    )
    args = _parse_args(["users", "show", "missing"])

    assert main._run_users_command(args) == 1
    assert "User not found." in capsys.readouterr().err


def test_invalid_where_clause_exits() -> None:
    with pytest.raises(SystemExit):
        main._parse_where(["username"])
