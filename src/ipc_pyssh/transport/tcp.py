"""原始 socket 传输（对端已经在 socket 上运行 executor，或由 socat 等转接到解释器）。"""

from __future__ import annotations

import contextlib
import socket
from typing import Optional


class SocketTransport:
    """基于已连接 stream socket 的传输。"""

    def __init__(self, sock: socket.socket) -> None:
        """
        包装一个已连接的 socket。

        参数：
        - sock：已连接的 stream socket（所有权转移给本对象）
        """

        self._sock = sock
        self._write_closed = False
        self._closed = False

    @classmethod
    def connect(cls, host: str, port: int, *, timeout_sec: Optional[float] = None) -> "SocketTransport":
        """
        建立 TCP 连接。

        参数：
        - host/port：对端地址
        - timeout_sec：仅作用于建立连接；之后恢复为阻塞模式
        """

        sock = socket.create_connection((host, int(port)), timeout=timeout_sec)
        sock.settimeout(None)
        return cls(sock)

    def read(self, max_bytes: int) -> bytes:
        """读取最多 max_bytes 字节（空表示对端关闭）。"""

        return self._sock.recv(max_bytes)

    def write(self, data: bytes) -> None:
        """写出全部字节。"""

        self._sock.sendall(data)

    def close_write(self) -> None:
        """半关闭写方向（幂等）。"""

        if self._write_closed or self._closed:
            return
        self._write_closed = True
        # 对端可能已先行关闭（ENOTCONN）
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_WR)

    def wait(self) -> Optional[int]:
        """socket 没有可等待的进程。"""

        return None

    def close(self) -> None:
        """关闭 socket（幂等）。"""

        if self._closed:
            return
        self.close_write()
        self._closed = True
        self._sock.close()
