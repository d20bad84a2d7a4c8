"""配置（YAML overlays + pydantic 校验）。"""

from __future__ import annotations

from ipc_pyssh.config.defaults import load_default_config_dict
from ipc_pyssh.config.loader import IpcSshConfig, load_config, load_config_dicts

__all__ = ["IpcSshConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
