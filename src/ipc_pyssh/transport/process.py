"""
子进程传输：spawn 命令（本地解释器或 ssh），连接其 stdin/stdout。

说明：
- stderr 继承父进程（远端 traceback / 用户 print 直接可见）；
- `wait()` 回收子进程，避免 zombie；`close()` 在超时后兜底 terminate/kill。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from typing import List, Optional, Sequence, Union

from ipc_pyssh.core.errors import UserError
from ipc_pyssh.remote.firmware import STUB, interpreter_argv

logger = logging.getLogger(__name__)


def build_command(
    *,
    command: Union[str, Sequence[str], None] = None,
    host: Optional[str] = None,
    user: Optional[str] = None,
    port: Optional[int] = None,
    ssh_path: Optional[str] = None,
    ssh_options: Sequence[str] = (),
    python: Optional[str] = None,
) -> List[str]:
    """
    生成启动远端解释器的命令 argv。

    规则：
    - 显式 `command` 优先（字符串视为单个可执行文件名，列表原样使用）；
    - 否则按 host 生成 ssh 命令：`ssh [-p PORT] [OPTIONS...] [user@]host python -c 'STUB'`；
    - 两者都没有时抛 `UserError(TRANSPORT_TARGET_MISSING)`。

    说明：
    - ssh 会把远端命令拼接为 shell 字符串，因此 STUB 需要 shell 引号。
    """

    if command is not None:
        if isinstance(command, str):
            return [command]
        argv = [str(x) for x in command]
        if not argv:
            raise UserError("command must not be empty", code="TRANSPORT_TARGET_MISSING")
        return argv

    if not host:
        raise UserError(
            "A host, a command or a read/write function pair is required",
            code="TRANSPORT_TARGET_MISSING",
        )

    target = f"{user}@{host}" if user else str(host)
    argv = [ssh_path or "ssh"]
    if port is not None:
        argv.extend(["-p", str(int(port))])
    argv.extend(str(x) for x in ssh_options)
    argv.extend([target, python or "python3", "-c", shlex.quote(STUB)])
    return argv


def local_command(python: Optional[str] = None) -> List[str]:
    """返回在本机启动“远端”解释器的命令（默认使用当前解释器）。"""

    return interpreter_argv(python or sys.executable)


class ProcessTransport:
    """基于 `subprocess.Popen` 的传输（stdin/stdout 管道）。"""

    def __init__(self, argv: Sequence[str], *, wait_timeout_sec: float = 5.0) -> None:
        """
        启动子进程。

        参数：
        - argv：命令 argv
        - wait_timeout_sec：`close()` 等待子进程自然退出的秒数（超时后 terminate）
        """

        if not argv:
            raise UserError("argv must not be empty", code="TRANSPORT_TARGET_MISSING")
        self._argv = [str(x) for x in argv]
        self._wait_timeout_sec = float(wait_timeout_sec)
        logger.debug("spawning transport process: %s", self._argv[0])
        self._proc: subprocess.Popen[bytes] = subprocess.Popen(  # noqa: S603
            self._argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            close_fds=True,
        )

    @classmethod
    def local(cls, python: Optional[str] = None) -> "ProcessTransport":
        """在本机启动解释器（“远端”实际运行在本地的独立进程中）。"""

        return cls(local_command(python))

    @property
    def pid(self) -> int:
        """子进程 pid。"""

        return int(self._proc.pid)

    @property
    def argv(self) -> List[str]:
        """启动命令 argv（副本）。"""

        return list(self._argv)

    def read(self, max_bytes: int) -> bytes:
        """从子进程 stdout 读取可用字节（最多 max_bytes）。"""

        stdout = self._proc.stdout
        if stdout is None:
            return b""
        return stdout.read1(max_bytes)

    def write(self, data: bytes) -> None:
        """写入子进程 stdin 并立即 flush。"""

        stdin = self._proc.stdin
        if stdin is None or stdin.closed:
            raise BrokenPipeError("transport write side is closed")
        stdin.write(data)
        stdin.flush()

    def close_write(self) -> None:
        """关闭子进程 stdin（幂等；子进程读到 EOF 后自行退出）。"""

        stdin = self._proc.stdin
        if stdin is not None and not stdin.closed:
            try:
                stdin.close()
            except BrokenPipeError:
                logger.debug("stdin already broken while closing", exc_info=True)

    def wait(self) -> Optional[int]:
        """阻塞等待子进程退出并返回退出码。"""

        return self._proc.wait()

    def close(self) -> None:
        """
        释放资源：关闭写端 → 等待退出（超时则 terminate，再超时 kill）→ 关闭读端。
        """

        self.close_write()
        try:
            self._proc.wait(timeout=self._wait_timeout_sec)
        except subprocess.TimeoutExpired:
            logger.warning("transport process %d did not exit; terminating", self._proc.pid)
            self._proc.terminate()
            try:
                self._proc.wait(timeout=self._wait_timeout_sec)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        if self._proc.stdout is not None and not self._proc.stdout.closed:
            self._proc.stdout.close()
