"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 默认配置：`src/ipc_pyssh/assets/default.yaml`
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class TransportConfig(BaseModel):
    """
    传输配置。

    说明：
    - `command` 非空时优先生效（显式 argv）；
    - 否则使用 `host`（经 ssh）；两者都没有时无法建立连接。
    """

    model_config = ConfigDict(extra="forbid")

    host: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    ssh_path: str = "ssh"
    ssh_options: List[str] = Field(default_factory=list)
    python: Optional[str] = "python3"
    command: List[str] = Field(default_factory=list)

    @field_validator("host", "user")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        """空白字符串视为未设置。"""

        if value is None:
            return None
        value = str(value).strip()
        return value or None


class ClientConfig(BaseModel):
    """Local Client 配置。"""

    model_config = ConfigDict(extra="forbid")

    read_chunk_size: int = Field(default=8192, ge=1)
    send_firmware: StrictBool = True


class LibrariesConfig(BaseModel):
    """Library 解析配置（YAML library 目录）。"""

    model_config = ConfigDict(extra="forbid")

    paths: List[str] = Field(default_factory=list)


class IpcSshConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    libraries: LibrariesConfig = Field(default_factory=LibrariesConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: List[Dict[str, Any]]) -> IpcSshConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `IpcSshConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return IpcSshConfig.model_validate(merged)


def load_config(config_paths: List[Path]) -> IpcSshConfig:
    """
    加载并合并多个配置文件，返回校验后的 `IpcSshConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: List[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
