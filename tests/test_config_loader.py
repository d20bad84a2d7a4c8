from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ipc_pyssh.config.defaults import load_default_config_dict
from ipc_pyssh.config.loader import _deep_merge, load_config, load_config_dicts


def test_embedded_defaults_validate() -> None:
    cfg = load_config_dicts([load_default_config_dict()])
    assert cfg.config_version == 1
    assert cfg.transport.host is None
    assert cfg.transport.python == "python3"
    assert cfg.transport.ssh_path == "ssh"
    assert cfg.client.read_chunk_size == 8192
    assert cfg.client.send_firmware is True
    assert cfg.libraries.paths == []


def test_load_config_default_plus_overlay(tmp_path: Path) -> None:
    overlay_path = tmp_path / "overlay.yaml"
    overlay_path.write_text(
        "\n".join(
            [
                "config_version: 1",
                "transport:",
                '  host: "build-box"',
                "  port: 2222",
                "  ssh_options: ['-oBatchMode=yes']",
                "client:",
                "  read_chunk_size: 1024",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    default_path = tmp_path / "default.yaml"
    default_path.write_text("transport:\n  user: ci\n  python: python3.12\n", encoding="utf-8")

    cfg = load_config([default_path, overlay_path])

    assert cfg.transport.host == "build-box"
    assert cfg.transport.user == "ci"
    assert cfg.transport.port == 2222
    assert cfg.transport.python == "python3.12"
    assert cfg.transport.ssh_options == ["-oBatchMode=yes"]
    assert cfg.client.read_chunk_size == 1024


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"transport": {"hostname": "typo"}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"mystery": {}}])


def test_field_constraints() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"transport": {"port": 70000}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"client": {"read_chunk_size": 0}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"client": {"send_firmware": "yes"}}])


def test_blank_host_is_unset() -> None:
    assert load_config_dicts([{"transport": {"host": "   "}}]).transport.host is None


def test_deep_merge_replaces_lists_and_merges_mappings() -> None:
    base = {"transport": {"ssh_options": ["-a"], "host": "a"}, "libraries": {"paths": ["x"]}}
    _deep_merge(base, {"transport": {"ssh_options": ["-b"]}, "libraries": {"paths": []}})
    assert base == {"transport": {"ssh_options": ["-b"], "host": "a"}, "libraries": {"paths": []}}


def test_missing_file_and_non_mapping_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "nope.yaml"])
    bad = tmp_path / "list.yaml"
    bad.write_text("- 1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])


def test_empty_file_is_an_empty_overlay(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]).transport.host is None
