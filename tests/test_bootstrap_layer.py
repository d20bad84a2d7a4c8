from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from ipc_pyssh import bootstrap
from ipc_pyssh.config.loader import load_config_dicts
from ipc_pyssh.core.errors import UserError
from ipc_pyssh.remote.firmware import STUB
from ipc_pyssh.transport.process import ProcessTransport


def test_split_paths_accepts_commas_and_semicolons() -> None:
    assert bootstrap._split_paths(" a.yaml, b.yaml;;c.yaml ,") == ["a.yaml", "b.yaml", "c.yaml"]


def test_discover_overlay_paths_from_env(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.chdir(tmp_path)
    env = {"IPC_PYSSH_CONFIG_PATHS": f"one.yaml;{tmp_path / 'two.yaml'},one.yaml"}
    assert bootstrap.discover_overlay_paths(env=env) == [
        (tmp_path / "one.yaml").resolve(),
        (tmp_path / "two.yaml").resolve(),
    ]
    assert bootstrap.discover_overlay_paths(env={"IPC_PYSSH_CONFIG_PATHS": "  "}) == []


def test_load_effective_config_layers_overrides_last(tmp_path: Path) -> None:
    overlay = tmp_path / "o.yaml"
    overlay.write_text("transport:\n  host: from-file\n  user: ci\n", encoding="utf-8")
    cfg = bootstrap.load_effective_config(
        config_paths=[overlay],
        overrides={"transport": {"host": "from-cli"}},
    )
    assert cfg.transport.host == "from-cli"
    assert cfg.transport.user == "ci"
    assert cfg.transport.python == "python3"


def test_load_effective_config_uses_env_overlays(tmp_path: Path) -> None:
    overlay = tmp_path / "env.yaml"
    overlay.write_text("client:\n  read_chunk_size: 16\n", encoding="utf-8")
    cfg = bootstrap.load_effective_config(env={"IPC_PYSSH_CONFIG_PATHS": str(overlay)})
    assert cfg.client.read_chunk_size == 16


def test_build_transport_requires_a_target() -> None:
    with pytest.raises(UserError) as exc_info:
        bootstrap.build_transport(load_config_dicts([{}]))
    assert exc_info.value.code == "TRANSPORT_TARGET_MISSING"


def test_build_transport_uses_ssh_for_host(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    captured: dict = {}

    class _FakeProcessTransport:
        def __init__(self, argv):  # type: ignore[no-untyped-def]
            """记录 argv。"""

            captured["argv"] = argv

    monkeypatch.setattr(bootstrap, "ProcessTransport", _FakeProcessTransport)
    bootstrap.build_transport(load_config_dicts([{"transport": {"host": "h", "user": "u", "port": 22}}]))
    assert captured["argv"] == ["ssh", "-p", "22", "u@h", "python3", "-c", shlex.quote(STUB)]


def test_open_client_with_local_command(tmp_path: Path) -> None:
    (tmp_path / "Echo.yaml").write_text("functions:\n  echo: return list(args)\n", encoding="utf-8")
    cfg = load_config_dicts(
        [
            {
                "transport": {"command": [sys.executable, "-c", STUB]},
                "client": {"read_chunk_size": 64},
                "libraries": {"paths": [str(tmp_path)]},
            }
        ]
    )
    with bootstrap.open_client(cfg) as client:
        assert isinstance(client.transport, ProcessTransport)
        assert client.use_library("Echo") == "Echo"
        assert client.call("echo", "a", "b") == ["a", "b"]
