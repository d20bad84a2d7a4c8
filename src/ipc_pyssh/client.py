"""
Local Client：在发起方持有双工字节流，发送 EVAL/STORE/CALL 请求并解码响应。

约束：
- 严格同步：每个连接同一时刻只有一个请求在途；
- 注册状态（已 STORE 的函数名 / 已加载的 namespace）只在收到远端 OK 之后更新；
- 本地预检查（重复注册 / 调用未注册的名字）直接抛错，不产生任何往返；
- 协议/传输层失败对连接是致命的：客户端标记为 broken，之后的请求立即失败。
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ipc_pyssh.core.errors import ProtocolError, RemoteError, TransportError, UserError
from ipc_pyssh.libraries.resolver import LibraryResolver
from ipc_pyssh.remote.executor import INIT_NAME, encode_value
from ipc_pyssh.remote.firmware import bootstrap_payload
from ipc_pyssh.transport.base import FuncTransport, Transport
from ipc_pyssh.transport.process import ProcessTransport, build_command
from ipc_pyssh.wire.codec import FrameReader, Message, Opcode, encode

logger = logging.getLogger(__name__)

_COMPILE_DIAG_RE = re.compile(
    r"^While compiling (?:code for (?P<function>\S+)|(?P<init>initialisation) code|code):.*\bat line (?P<line>\d+)"
)
_STORE_DIAG_RE = re.compile(r"^While compiling code for (?P<function>\S+):")


def _decode_result(raw: bytes) -> str:
    """把 wire 结果解码为 str（utf-8 + surrogateescape）。"""

    return raw.decode("utf-8", "surrogateescape")


def _phase_of(diagnostic: str) -> Optional[str]:
    """从诊断前缀判断失败阶段（compiling / running）。"""

    if diagnostic.startswith("While compiling"):
        return "compiling"
    if diagnostic.startswith("While running"):
        return "running"
    return None


def _source_line(code: Optional[str], lineno: int) -> Optional[str]:
    """取片段中的第 lineno 行（1 起始；越界返回 None）。"""

    if not code:
        return None
    lines = code.splitlines()
    if 1 <= lineno <= len(lines):
        return lines[lineno - 1].strip()
    return None


class BoundProcedure:
    """
    `bind()` 返回的可调用句柄：把参数转发给 `client.call(name, ...)`。

    说明：
    - 句柄不会向任何命名空间注入符号；调用方自行持有它。
    """

    def __init__(self, client: "IpcSshClient", name: str) -> None:
        """
        创建句柄。

        参数：
        - client：所属连接
        - name：已注册的过程名
        """

        self._client = client
        self._name = name

    @property
    def name(self) -> str:
        """过程名。"""

        return self._name

    def __call__(self, *args: Any) -> List[str]:
        """调用远端过程，返回全部结果。"""

        return self._client.call(self._name, *args)

    def scalar(self, *args: Any) -> Optional[str]:
        """调用远端过程，只返回第一个结果。"""

        return self._client.call_scalar(self._name, *args)

    def __repr__(self) -> str:
        """调试用表示。"""

        return f"BoundProcedure({self._name!r})"


class IpcSshClient:
    """
    远端执行客户端（一个实例对应一条连接）。

    用法：
        with IpcSshClient.connect("build-box", user="ci") as client:
            client.eval("import os\\nreturn os.getpid()")
            double = client.bind("double", "return int(args[0]) * 2")
            double(21)                      # ["42"]
            client.use_library("FS", "mkdir")
            client.call("mkdir", "/tmp/testing")
    """

    def __init__(
        self,
        transport: Transport,
        *,
        resolver: Optional[LibraryResolver] = None,
        send_firmware: bool = True,
        read_chunk_size: int = 8192,
    ) -> None:
        """
        在已建立的传输上创建客户端。

        参数：
        - transport：双工字节流
        - resolver：library 解析器（缺省时按需创建默认解析器）
        - send_firmware：是否立即发送引导载荷（远端已在运行 executor 时关闭）
        - read_chunk_size：单次读取的最大字节数
        """

        self._transport = transport
        self._resolver = resolver
        self._reader = FrameReader(transport.read, chunk_size=read_chunk_size)
        self._stored: set[str] = set()
        self._namespaces: set[str] = set()
        self._broken = False
        self._closed = False

        if send_firmware:
            logger.debug("sending bootstrap payload")
            try:
                self._send(bootstrap_payload())
            except TransportError:
                # 构造失败：由这里释放传输与子进程
                self._closed = True
                self._transport.close()
                raise

    @classmethod
    def spawn(cls, command: Any, **kwargs: Any) -> "IpcSshClient":
        """以显式命令（字符串或 argv）启动远端解释器。"""

        return cls(ProcessTransport(build_command(command=command)), **kwargs)

    @classmethod
    def connect(
        cls,
        host: str,
        *,
        user: Optional[str] = None,
        port: Optional[int] = None,
        ssh_path: Optional[str] = None,
        ssh_options: Sequence[str] = (),
        python: Optional[str] = None,
        **kwargs: Any,
    ) -> "IpcSshClient":
        """经 ssh 连接到命名主机并启动其解释器。"""

        argv = build_command(
            host=host,
            user=user,
            port=port,
            ssh_path=ssh_path,
            ssh_options=ssh_options,
            python=python,
        )
        return cls(ProcessTransport(argv), **kwargs)

    @classmethod
    def local(cls, python: Optional[str] = None, **kwargs: Any) -> "IpcSshClient":
        """在本机的独立解释器进程中运行“远端”。"""

        return cls(ProcessTransport.local(python), **kwargs)

    @classmethod
    def from_funcs(cls, readfunc: Any, writefunc: Any, **kwargs: Any) -> "IpcSshClient":
        """由调用方提供的读写原语创建客户端。"""

        return cls(FuncTransport(readfunc, writefunc), **kwargs)

    def __enter__(self) -> "IpcSshClient":
        """进入上下文（返回自身）。"""

        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """退出上下文时结束连接。"""

        self.close()

    @property
    def transport(self) -> Transport:
        """底层传输。"""

        return self._transport

    @property
    def broken(self) -> bool:
        """连接是否已因致命失败不可用。"""

        return self._broken

    def stored_names(self) -> List[str]:
        """本连接上已注册的过程名（排序）。"""

        return sorted(self._stored)

    def loaded_namespaces(self) -> List[str]:
        """本连接上已加载的 library namespace（排序）。"""

        return sorted(self._namespaces)

    # ---- requests ----

    def eval(self, code: str, *args: Any) -> List[str]:
        """
        在远端编译并立即运行片段，返回全部结果。

        异常：
        - RemoteError：编译或运行失败（连接仍可用）
        - ProtocolError / TransportError：致命失败
        """

        message = self._request(Opcode.EVAL, [code, *args])
        return self._returned(message, sources={None: code})

    def eval_scalar(self, code: str, *args: Any) -> Optional[str]:
        """`eval` 的单值形式：只返回第一个结果（没有结果时为 None）。"""

        results = self.eval(code, *args)
        return results[0] if results else None

    def store(self, name: Any = None, code: Optional[str] = None, **funcs: str) -> None:
        """
        在默认 namespace 中注册一批过程。

        用法：
        - `store("double", "return int(args[0]) * 2")`
        - `store({"a": "...", "b": "..."})` 或 `store(a="...", b="...")`

        异常：
        - UserError(DUPLICATE_STORED_FUNCTION)：名字已在本连接注册（不产生往返）
        - RemoteError：任一函数编译失败（整批不注册）
        """

        batch = self._collect_batch(name, code, funcs)
        if not batch:
            return
        for fn in batch:
            if fn in self._stored:
                raise UserError(
                    f"Already have a stored function called '{fn}'",
                    code="DUPLICATE_STORED_FUNCTION",
                    details={"function": fn},
                )

        args: List[str] = []
        for fn, fn_code in batch.items():
            args.extend([fn, fn_code])
        message = self._request(Opcode.STORE, args)
        self._ok(message, sources=dict(batch))
        self._stored.update(batch)

    def call(self, name: str, *args: Any) -> List[str]:
        """
        调用已注册的过程，返回全部结果。

        异常：
        - UserError(UNKNOWN_STORED_FUNCTION)：本连接上未注册该名字（不产生往返）
        - RemoteError：运行失败
        """

        if name not in self._stored:
            raise UserError(
                f"Do not have a stored function called '{name}'",
                code="UNKNOWN_STORED_FUNCTION",
                details={"function": name},
            )
        message = self._request(Opcode.CALL, [name, *args])
        return self._returned(message)

    def call_scalar(self, name: str, *args: Any) -> Optional[str]:
        """`call` 的单值形式。"""

        results = self.call(name, *args)
        return results[0] if results else None

    def bind(self, name: str, code: str) -> BoundProcedure:
        """注册过程并返回转发到 `call` 的句柄。"""

        self.store(name, code)
        return BoundProcedure(self, name)

    def use_library(self, library: str, *funcs: str) -> str:
        """
        加载 library（可只加载其中部分函数），返回其 namespace 名。

        语义：
        - 本连接上已注册的函数名不再发送；
        - namespace 已加载时不再发送初始化片段；
        - 没有任何需要发送的内容时不产生往返。
        """

        resolver = self._resolver or LibraryResolver()
        bundle = resolver.load(library, funcs)
        bundle = bundle.without_functions([fn for fn in bundle.functions if fn in self._stored])
        namespace_loaded = bundle.classname in self._namespaces
        if namespace_loaded:
            bundle = bundle.without_init()
            if not bundle.functions:
                return bundle.classname

        sources: Dict[Optional[str], str] = dict(bundle.functions)
        if bundle.init:
            sources[INIT_NAME] = bundle.init
        message = self._request(Opcode.STOREPKG, [bundle.classname, *bundle.store_pairs()])
        self._ok(message, sources=sources)
        self._namespaces.add(bundle.classname)
        self._stored.update(bundle.functions)
        logger.debug("library %s loaded into namespace %s", library, bundle.classname)
        return bundle.classname

    # ---- teardown ----

    def close(self, *, quit: bool = True) -> None:
        """
        结束连接（幂等）。

        流程：
        - quit=True 且连接未损坏：尽力发送 QUIT；
        - 关闭写端（远端视为隐式 QUIT），等待子进程退出并释放资源。
        """

        if self._closed:
            return
        self._closed = True
        if quit and not self._broken:
            try:
                self._transport.write(encode(Opcode.QUIT.value))
            except OSError:
                logger.debug("QUIT could not be delivered; closing anyway", exc_info=True)
        logger.debug("closing transport")
        self._transport.close()

    # ---- internals ----

    def _collect_batch(self, name: Any, code: Optional[str], funcs: Mapping[str, str]) -> Dict[str, str]:
        """把 `store` 的几种调用形式规整为有序 name → code 映射。"""

        batch: Dict[str, str] = {}
        if isinstance(name, Mapping):
            if code is not None:
                raise TypeError("store() takes either a mapping or a name and code")
            batch.update(name)
        elif name is not None:
            if code is None:
                raise TypeError("store() missing code for function " + repr(name))
            batch[str(name)] = code
        batch.update(funcs)
        for fn in batch:
            if not fn or fn == INIT_NAME:
                raise UserError(f"Invalid stored function name '{fn}'", code="INVALID_FUNCTION_NAME")
        return batch

    def _send(self, data: bytes) -> None:
        """写出原始字节；失败时标记连接损坏。"""

        try:
            self._transport.write(data)
        except OSError as exc:
            self._broken = True
            raise TransportError(
                "Failed to write to the transport",
                code="TRANSPORT_WRITE_FAILED",
                details={"reason": str(exc)},
            ) from exc

    def _request(self, opcode: Opcode, args: Sequence[Any]) -> Message:
        """发送一条请求并阻塞读取一条响应。"""

        if self._closed:
            raise TransportError("Client is closed", code="CLIENT_CLOSED")
        if self._broken:
            raise TransportError("Connection is broken by an earlier failure", code="CLIENT_BROKEN")

        logger.debug("request %s (%d args)", opcode.value, len(args))
        self._send(encode(opcode.value, [encode_value(a) for a in args]))
        try:
            message = self._reader.read_message()
        except (ProtocolError, TransportError):
            self._broken = True
            raise
        except OSError as exc:
            self._broken = True
            raise TransportError(
                "Failed to read from the transport",
                code="TRANSPORT_READ_FAILED",
                details={"reason": str(exc)},
            ) from exc
        if message is None:
            self._broken = True
            raise TransportError("Remote closed the connection", code="UNEXPECTED_EOF")
        logger.debug("response %s (%d args)", message.opcode, len(message.args))
        return message

    def _returned(self, message: Message, *, sources: Optional[Mapping[Optional[str], str]] = None) -> List[str]:
        """处理 EVAL/CALL 的响应：RETURNED → 结果；DIED → RemoteError。"""

        if message.opcode == Opcode.RETURNED.value:
            return [_decode_result(a) for a in message.args]
        self._raise_unless(message, Opcode.RETURNED, sources=sources)
        return []  # pragma: no cover

    def _ok(self, message: Message, *, sources: Optional[Mapping[Optional[str], str]] = None) -> None:
        """处理 STORE/STOREPKG 的响应：OK → 返回；DIED → RemoteError。"""

        if message.opcode == Opcode.OK.value:
            return
        self._raise_unless(message, Opcode.OK, sources=sources)

    def _raise_unless(
        self,
        message: Message,
        expected: Opcode,
        *,
        sources: Optional[Mapping[Optional[str], str]] = None,
    ) -> None:
        """把非预期响应转换为异常（DIED 可恢复；其它 opcode 为致命协议错误）。"""

        if message.opcode == Opcode.DIED.value:
            diagnostic = _decode_result(message.args[0]) if message.args else ""
            diagnostic, function = self._enrich(diagnostic, sources or {})
            raise RemoteError(diagnostic, phase=_phase_of(diagnostic), function=function)

        self._broken = True
        raise ProtocolError(
            f"Unexpected response {message.opcode} (expected {expected.value} or {Opcode.DIED.value})",
            code="UNEXPECTED_RESPONSE",
            details={"opcode": message.opcode},
        )

    @staticmethod
    def _enrich(diagnostic: str, sources: Mapping[Optional[str], str]) -> Tuple[str, Optional[str]]:
        """
        给编译诊断追加出错的源码行（` ==> <line>`），并提取出错的函数名。

        参数：
        - sources：函数名 → 片段；EVAL 片段的键为 None，初始化片段的键为 `_init`
        """

        function = None
        store_match = _STORE_DIAG_RE.match(diagnostic)
        if store_match:
            function = store_match.group("function")

        match = _COMPILE_DIAG_RE.match(diagnostic)
        if not match:
            return diagnostic, function
        if match.group("function"):
            key: Optional[str] = match.group("function")
        elif match.group("init"):
            key = INIT_NAME
        else:
            key = None
        line = _source_line(sources.get(key), int(match.group("line")))
        if line:
            diagnostic = f"{diagnostic} ==> {line}"
        return diagnostic, function
