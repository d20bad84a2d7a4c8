"""
ipc-pyssh：在只有一条字节流可达的远端 Python 解释器中执行代码。

公共入口：
- `IpcSshClient`：Local Client（EVAL / STORE / CALL / use_library）
- `open_client`：按配置建立连接
"""

from __future__ import annotations

from ipc_pyssh.bootstrap import open_client
from ipc_pyssh.client import BoundProcedure, IpcSshClient
from ipc_pyssh.core.errors import (
    FrameworkError,
    IpcSshError,
    LibraryError,
    ProtocolError,
    RemoteError,
    TransportError,
    UserError,
)

__version__ = "0.1.0"

__all__ = [
    "BoundProcedure",
    "FrameworkError",
    "IpcSshClient",
    "IpcSshError",
    "LibraryError",
    "ProtocolError",
    "RemoteError",
    "TransportError",
    "UserError",
    "__version__",
    "open_client",
]

