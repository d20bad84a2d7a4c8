from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

from ipc_pyssh.cli.main import main
from ipc_pyssh.remote.firmware import STUB


@pytest.fixture(autouse=True)
def _no_env_overlays(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("IPC_PYSSH_CONFIG_PATHS", raising=False)


def _run(capsys, argv: list[str]) -> tuple[int, Dict[str, Any]]:  # type: ignore[no-untyped-def]
    code = main(argv)
    out = capsys.readouterr().out
    return code, json.loads(out)


def test_eval_local(capsys) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["eval", "--local", "return [args[0].upper(), len(args)]", "hello", "x"])
    assert code == 0
    assert payload == {"ok": True, "results": ["HELLO", "2"]}


def test_eval_remote_failure_exit_code(capsys) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["eval", "--local", "return ("])
    assert code == 10
    assert payload["ok"] is False
    assert payload["error"]["code"] == "REMOTE_DIED"
    assert payload["error"]["details"]["phase"] == "compiling"
    assert payload["error"]["details"]["diagnostic"].startswith("While compiling code:")


def test_eval_with_explicit_command(capsys) -> None:  # type: ignore[no-untyped-def]
    command = shlex.join([sys.executable, "-c", STUB])
    code, payload = _run(capsys, ["eval", "--command", command, "return 'via command'"])
    assert code == 0
    assert payload["results"] == ["via command"]


def test_call_library_function(capsys) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["call", "--local", "Info", "ostype"])
    assert code == 0
    assert payload["results"] == [sys.platform]
    assert payload["namespace"] == "ipc_pyssh.libraries.builtin.info"


def test_call_unknown_function_fails_before_connecting(capsys, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    from ipc_pyssh import bootstrap

    def _no_connect(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise AssertionError("should not connect")

    monkeypatch.setattr(bootstrap, "open_client", _no_connect)
    code, payload = _run(capsys, ["call", "--local", "Info", "nope"])
    assert code == 11
    assert payload["error"]["code"] == "LIBRARY_FUNCTION_NOT_FOUND"


def test_libraries_list_and_show(capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    (tmp_path / "Extra.yaml").write_text("functions:\n  one: return 1\n", encoding="utf-8")
    overlay = tmp_path / "cfg.yaml"
    overlay.write_text(f"libraries:\n  paths: [{json.dumps(str(tmp_path))}]\n", encoding="utf-8")

    code, payload = _run(capsys, ["libraries", "list", "--config", str(overlay)])
    assert code == 0
    assert {"fs", "info", "Extra"} <= set(payload["libraries"])

    code, payload = _run(capsys, ["libraries", "show", "FS", "--pretty"])
    assert code == 0
    assert payload["library"]["classname"] == "ipc_pyssh.libraries.builtin.fs"
    assert payload["library"]["has_init"] is True
    assert "readfile" in payload["library"]["functions"]


def test_libraries_show_unknown(capsys) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["libraries", "show", "Nope"])
    assert code == 11
    assert payload["error"]["code"] == "LIBRARY_NOT_FOUND"


def test_missing_target_is_usage_error(capsys) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["eval", "return 1"])
    assert code == 2
    assert payload["error"]["code"] == "TRANSPORT_TARGET_MISSING"


def test_missing_config_file(capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["libraries", "list", "--config", str(tmp_path / "nope.yaml")])
    assert code == 2
    assert payload["error"]["code"] == "CLI_CONFIG_LOAD_FAILED"


def test_invalid_config(capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    overlay = tmp_path / "bad.yaml"
    overlay.write_text("transport:\n  hots: typo\n", encoding="utf-8")
    code, payload = _run(capsys, ["libraries", "list", "--config", str(overlay)])
    assert code == 2
    assert payload["error"]["code"] == "CLI_CONFIG_INVALID"
    assert payload["error"]["details"]["errors"][0]["loc"] == ["transport", "hots"]


def test_unstartable_command_is_transport_failure(capsys, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    code, payload = _run(capsys, ["eval", "--command", str(tmp_path / "no-such-binary"), "return 1"])
    assert code == 20
    assert payload["error"]["code"] == "TRANSPORT_SPAWN_FAILED"


def test_usage_errors_exit_2(capsys) -> None:  # type: ignore[no-untyped-def]
    assert main([]) == 2
    assert main(["eval"]) == 2
    capsys.readouterr()


def test_help_exits_0(capsys) -> None:  # type: ignore[no-untyped-def]
    assert main(["--help"]) == 0
    assert "ipc-pyssh" in capsys.readouterr().out
