"""
传输协作方（spawn 子进程 / ssh / socket / 自定义读写原语）。

说明：
- 这些实现只负责得到一条双工字节流，不改变其上的协议。
"""

from __future__ import annotations

from ipc_pyssh.transport.base import FuncTransport, Transport
from ipc_pyssh.transport.process import ProcessTransport, build_command, local_command
from ipc_pyssh.transport.tcp import SocketTransport

__all__ = [
    "FuncTransport",
    "ProcessTransport",
    "SocketTransport",
    "Transport",
    "build_command",
    "local_command",
]
