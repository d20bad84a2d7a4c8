"""
Transport 抽象：Local Client 只依赖一条已建立的双工字节流。

说明：
- 建立传输（spawn 子进程 / ssh / socket）属于协作方职责，协议层不关心；
- 超时、重试、加密同样属于传输层，本 SDK 不在核心中实现。
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """
    双工字节流（协议）。

    约定：
    - `read(n)` 最多返回 n 字节；返回空 bytes 表示流结束；有数据可读时不得阻塞等待凑满 n；
    - `write(data)` 写出全部字节；
    - `close_write()` 关闭写端（远端 executor 视为隐式 QUIT）；
    - `wait()` 等待对端进程退出（若有），返回退出码；
    - `close()` 释放全部资源（幂等）。
    """

    def read(self, max_bytes: int) -> bytes:
        """读取最多 max_bytes 字节（协议）。"""

        ...

    def write(self, data: bytes) -> None:
        """写出全部字节（协议）。"""

        ...

    def close_write(self) -> None:
        """关闭写端（协议；幂等）。"""

        ...

    def wait(self) -> Optional[int]:
        """等待对端进程退出（协议；无进程时返回 None）。"""

        ...

    def close(self) -> None:
        """释放资源（协议；幂等）。"""

        ...


class FuncTransport:
    """
    由调用方提供读写原语的传输。

    说明：
    - 主要用于测试或已有的自定义通道；
    - `readfunc(n)` 返回 bytes（空表示 EOF）；`writefunc(data)` 返回写出的字节数或 None。
    """

    def __init__(
        self,
        readfunc: Callable[[int], bytes],
        writefunc: Callable[[bytes], Optional[int]],
        *,
        close_write_func: Optional[Callable[[], None]] = None,
        wait_func: Optional[Callable[[], Optional[int]]] = None,
    ) -> None:
        """
        创建函数式传输。

        参数：
        - readfunc：读取函数
        - writefunc：写入函数
        - close_write_func：关闭写端的回调（可选）
        - wait_func：等待对端退出的回调（可选）
        """

        self._readfunc = readfunc
        self._writefunc = writefunc
        self._close_write_func = close_write_func
        self._wait_func = wait_func
        self._write_closed = False

    def read(self, max_bytes: int) -> bytes:
        """读取最多 max_bytes 字节。"""

        return self._readfunc(max_bytes) or b""

    def write(self, data: bytes) -> None:
        """写出全部字节（对返回部分写入字节数的 writefunc 循环补写）。"""

        view = memoryview(data)
        while view:
            n = self._writefunc(bytes(view))
            if n is None:
                return
            if n <= 0:
                raise OSError("writefunc wrote no bytes")
            view = view[n:]

    def close_write(self) -> None:
        """关闭写端（幂等）。"""

        if self._write_closed:
            return
        self._write_closed = True
        if self._close_write_func is not None:
            self._close_write_func()

    def wait(self) -> Optional[int]:
        """等待对端退出（未提供回调时返回 None）。"""

        if self._wait_func is None:
            return None
        return self._wait_func()

    def close(self) -> None:
        """释放资源（关闭写端并等待对端退出）。"""

        self.close_write()
        self.wait()
