from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from typing import Iterator, List

import pytest

from ipc_pyssh.client import IpcSshClient
from ipc_pyssh.libraries.resolver import LibraryResolver
from ipc_pyssh.remote.executor import RemoteExecutor
from ipc_pyssh.transport.base import FuncTransport


@dataclass
class InProcessConnection:
    """在线程中运行的 executor + 经 os.pipe 相连的客户端。"""

    client: IpcSshClient
    executor: RemoteExecutor
    thread: threading.Thread
    writes: List[bytes] = field(default_factory=list)


def _connect(resolver: LibraryResolver | None = None) -> tuple[InProcessConnection, int]:
    """建立连接，返回 (connection, client 侧读端 fd)。"""

    c2s_r, c2s_w = os.pipe()
    s2c_r, s2c_w = os.pipe()
    executor = RemoteExecutor()
    instream = open(c2s_r, "rb")  # noqa: SIM115
    outstream = open(s2c_w, "wb")  # noqa: SIM115

    def _serve() -> None:
        """服务直到 QUIT / EOF，然后关闭两端。"""

        try:
            executor.serve(instream, outstream)
        finally:
            instream.close()
            outstream.close()

    thread = threading.Thread(target=_serve, name="ipc-pyssh-executor", daemon=True)
    thread.start()

    writes: List[bytes] = []

    def _write(data: bytes) -> int:
        """记录并写出。"""

        writes.append(bytes(data))
        return os.write(c2s_w, data)

    def _wait() -> None:
        """等待 executor 线程结束。"""

        thread.join(timeout=10)

    transport = FuncTransport(
        lambda n: os.read(s2c_r, n),
        _write,
        close_write_func=lambda: os.close(c2s_w),
        wait_func=_wait,
    )
    client = IpcSshClient(transport, resolver=resolver, send_firmware=False)
    return InProcessConnection(client=client, executor=executor, thread=thread, writes=writes), s2c_r


@pytest.fixture
def inproc() -> Iterator[InProcessConnection]:
    conn, read_fd = _connect()
    try:
        yield conn
    finally:
        conn.client.close()
        os.close(read_fd)


@pytest.fixture
def inproc_factory() -> Iterator:  # type: ignore[type-arg]
    opened: list[tuple[InProcessConnection, int]] = []

    def _make(resolver: LibraryResolver | None = None) -> InProcessConnection:
        """按需创建连接（测试结束统一关闭）。"""

        conn, read_fd = _connect(resolver)
        opened.append((conn, read_fd))
        return conn

    try:
        yield _make
    finally:
        for conn, read_fd in opened:
            conn.client.close()
            os.close(read_fd)
