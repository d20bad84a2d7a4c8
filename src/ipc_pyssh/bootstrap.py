"""
Bootstrap Layer（配置发现 / 连接工厂）。

设计目标：
- 保持核心无隐式 I/O：`IpcSshClient` 不会自动读取任何配置文件；
- 提供可选入口：CLI 与上层应用复用同一套 overlay 发现与 transport 构造规则。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ipc_pyssh.client import IpcSshClient
from ipc_pyssh.config.defaults import load_default_config_dict
from ipc_pyssh.config.loader import IpcSshConfig, _load_yaml_file, load_config_dicts
from ipc_pyssh.libraries.resolver import LibraryResolver
from ipc_pyssh.transport.base import Transport
from ipc_pyssh.transport.process import ProcessTransport, build_command

CONFIG_PATHS_ENV = "IPC_PYSSH_CONFIG_PATHS"


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    读取 env 并返回非空白字符串（否则视为未设置）。

    参数：
    - key：环境变量名
    """

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去掉空白与空项，保序）。"""

    parts: List[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def discover_overlay_paths(*, env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """
    overlay 路径发现规则：`IPC_PYSSH_CONFIG_PATHS`（逗号/分号分隔；按顺序合并）。

    说明：
    - 相对路径相对当前工作目录；
    - 按 canonical path 去重（保序）。
    """

    raw = _get_env_nonempty(CONFIG_PATHS_ENV, env=env) or ""
    seen: set[Path] = set()
    out: List[Path] = []
    for p in _split_paths(raw):
        path = Path(p).expanduser().resolve()
        if path in seen:
            continue
        seen.add(path)
        out.append(path)
    return out


def load_effective_config(
    *,
    config_paths: Optional[Sequence[Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> IpcSshConfig:
    """
    解析有效配置：内置默认 → overlays → overrides（后者覆盖前者）。

    参数：
    - config_paths：显式 overlay 路径；为 None 时按 `discover_overlay_paths` 发现
    - overrides：调用方（例如 CLI 参数）提供的最高优先级覆盖
    """

    paths = list(config_paths) if config_paths is not None else discover_overlay_paths(env=env)
    entries: List[Dict[str, Any]] = [load_default_config_dict()]
    for p in paths:
        entries.append(_load_yaml_file(Path(p)))
    if overrides:
        entries.append(overrides)
    return load_config_dicts(entries)


def build_resolver(config: IpcSshConfig) -> LibraryResolver:
    """按 `libraries.paths` 构造 library 解析器。"""

    return LibraryResolver(search_paths=[Path(p).expanduser() for p in config.libraries.paths])


def build_transport(config: IpcSshConfig) -> Transport:
    """
    按 `transport` 配置启动远端解释器。

    异常：
    - UserError(TRANSPORT_TARGET_MISSING)：既没有 command 也没有 host
    """

    t = config.transport
    argv = build_command(
        command=t.command or None,
        host=t.host,
        user=t.user,
        port=t.port,
        ssh_path=t.ssh_path,
        ssh_options=t.ssh_options,
        python=t.python,
    )
    return ProcessTransport(argv)


def open_client(config: Optional[IpcSshConfig] = None, *, transport: Optional[Transport] = None) -> IpcSshClient:
    """
    按配置建立连接。

    参数：
    - config：有效配置；为 None 时调用 `load_effective_config()`
    - transport：显式传输（例如本地解释器）；为 None 时按配置构造
    """

    cfg = config if config is not None else load_effective_config()
    return IpcSshClient(
        transport if transport is not None else build_transport(cfg),
        resolver=build_resolver(cfg),
        send_firmware=cfg.client.send_firmware,
        read_chunk_size=cfg.client.read_chunk_size,
    )
