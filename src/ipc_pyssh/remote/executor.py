"""
Remote executor：在目标解释器内运行的派发循环（把裸解释器变成 RPC server）。

状态机：AwaitMessage → Dispatch → Respond → AwaitMessage；
QUIT 或输入流 EOF（等同 QUIT）为唯一终态。

约束：
- 每个请求恰好产生一条响应（QUIT 除外），DIED 不会破坏分帧状态；
- 注册表（stored procedures / namespace compilers）归单个实例私有，不使用全局可变状态；
- 本模块随 firmware 发送到远端，只允许依赖标准库与 `ipc_pyssh.core.errors` / `ipc_pyssh.wire.codec`。
"""

from __future__ import annotations

import ast
import builtins
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ipc_pyssh.core.errors import FramingError, TransportError
from ipc_pyssh.wire.codec import FrameReader, Message, Opcode, encode

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "main"
# STORE/STOREPKG 批次中携带 namespace 初始化代码的保留名。
INIT_NAME = "_init"

_FRAGMENT_NAME = "__ipc_pyssh_fragment__"
_FRAGMENT_TEMPLATE = f"def {_FRAGMENT_NAME}(*args):\n    pass\n"


class FragmentCompileError(Exception):
    """源码片段编译失败（携带已格式化的诊断文本）。"""


def _describe(exc: BaseException, *, filename: Optional[str] = None) -> str:
    """
    把异常格式化为单行诊断文本。

    参数：
    - exc：异常对象
    - filename：片段的伪文件名；提供时会尝试从 traceback 中定位片段内行号
    """

    if isinstance(exc, SyntaxError):
        text = f"{type(exc).__name__}: {exc.msg}"
        if exc.lineno:
            text += f" at line {exc.lineno}"
        return text

    text = f"{type(exc).__name__}: {exc}"
    if filename is not None:
        lineno = None
        tb = exc.__traceback__
        while tb is not None:
            if tb.tb_frame.f_code.co_filename == filename:
                lineno = tb.tb_lineno
            tb = tb.tb_next
        if lineno is not None:
            text += f" at line {lineno}"
    return text


def _decode_arg(raw: bytes) -> str:
    """把 wire 参数解码为 str（utf-8 + surrogateescape，任意字节可往返）。"""

    return raw.decode("utf-8", "surrogateescape")


def encode_value(value: Any) -> bytes:
    """把单个值编码为 wire 参数（bytes 原样；bool 为 "1"/""；其它按 str 编码）。"""

    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, bool):
        return b"1" if value else b""
    if not isinstance(value, str):
        value = str(value)
    return value.encode("utf-8", "surrogateescape")


def normalize_results(value: Any) -> List[bytes]:
    """
    把片段返回值规整为有序结果列表。

    规则：
    - None → 空列表
    - list/tuple → 每个元素一个结果
    - 其它 → 单元素列表
    """

    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return [encode_value(value)]


@dataclass
class StoredProcedure:
    """已注册的远端过程（名字、所属 namespace、编译后的可调用对象）。"""

    name: str
    namespace: str
    func: Callable[..., Any]


@dataclass
class NamespaceCompiler:
    """
    namespace 级编译作用域。

    说明：
    - 每个 namespace 拥有一个 globals dict，初始化代码与该 namespace 下的所有片段共享它；
    - 初始化代码只运行一次，之后同名 namespace 再次注册也不会重跑。
    """

    namespace: str
    scope: Dict[str, Any] = field(default_factory=dict)
    initialized: bool = False

    def __post_init__(self) -> None:
        """填充 globals 的基础键。"""

        self.scope.setdefault("__name__", f"ipc_pyssh.remote.ns.{self.namespace}")
        self.scope.setdefault("__builtins__", builtins)

    def run_initializer(self, code: str) -> None:
        """
        编译并运行初始化代码（模块级语句，在 namespace globals 中执行）。

        异常：
        - FragmentCompileError：编译或运行失败（诊断文本已格式化）
        """

        filename = f"<{self.namespace}:{INIT_NAME}>"
        try:
            compiled = compile(code, filename, "exec")
        except Exception as exc:
            raise FragmentCompileError(_describe(exc)) from exc
        try:
            exec(compiled, self.scope)  # noqa: S102
        except BaseException as exc:
            raise FragmentCompileError(_describe(exc, filename=filename)) from exc
        self.initialized = True

    def compile_function(self, code: str, *, name: str = "eval") -> Callable[..., Any]:
        """
        把函数体片段编译为可调用对象（位置参数以 `args` 元组提供）。

        说明：
        - 行号与提交的片段一致（不额外包一层缩进）；
        - 片段最后一条语句若是表达式，则作为返回值。

        异常：
        - FragmentCompileError：语法错误等编译期失败
        """

        filename = f"<{self.namespace}:{name}>"
        try:
            body = ast.parse(code, filename=filename, mode="exec").body
            wrapper = ast.parse(_FRAGMENT_TEMPLATE, filename=filename, mode="exec")
            func_def = wrapper.body[0]
            if body and isinstance(body[-1], ast.Expr):
                last = body[-1]
                body[-1] = ast.copy_location(ast.Return(value=last.value), last)
            if body:
                func_def.body = body  # type: ignore[attr-defined]
            ast.fix_missing_locations(wrapper)
            compiled = compile(wrapper, filename, "exec")
        except Exception as exc:
            raise FragmentCompileError(_describe(exc)) from exc

        local_ns: Dict[str, Any] = {}
        exec(compiled, self.scope, local_ns)  # noqa: S102
        return local_ns[_FRAGMENT_NAME]


class RemoteExecutor:
    """
    远端派发器。

    用法：
    - `handle(message)`：纯派发（便于进程内测试），返回响应消息；QUIT 返回 None
    - `serve(instream, outstream)`：阻塞循环，直到 QUIT / EOF
    """

    def __init__(self) -> None:
        """创建执行器（所有 namespace，包括默认的 `main`，都在首次使用时创建）。"""

        self._procedures: Dict[str, StoredProcedure] = {}
        self._namespaces: Dict[str, NamespaceCompiler] = {}

    def stored_names(self) -> List[str]:
        """返回已注册的过程名（按名字排序）。"""

        return sorted(self._procedures)

    def get_procedure(self, name: str) -> Optional[StoredProcedure]:
        """按名字查找已注册过程。"""

        return self._procedures.get(name)

    def namespaces(self) -> List[str]:
        """返回已创建的 namespace 列表（按名字排序）。"""

        return sorted(self._namespaces)

    def handle(self, message: Message) -> Optional[Message]:
        """
        派发一条请求并返回响应。

        返回：
        - Message：RETURNED / OK / DIED
        - None：QUIT（调用方应终止循环）
        """

        opcode = message.opcode
        args = list(message.args)
        logger.debug("dispatch %s (%d args)", opcode, len(args))

        if opcode == Opcode.QUIT.value:
            return None
        if opcode == Opcode.EVAL.value:
            return self._handle_eval(args)
        if opcode == Opcode.STORE.value:
            return self._store(DEFAULT_NAMESPACE, args)
        if opcode == Opcode.STOREPKG.value:
            if not args:
                return _died("Malformed STOREPKG message: missing namespace")
            return self._store(_decode_arg(args[0]), args[1:])
        if opcode == Opcode.CALL.value:
            return self._handle_call(args)
        return _died(f"Unknown message {opcode}")

    def serve(self, instream: Any, outstream: Any, *, chunk_size: int = 8192) -> None:
        """
        在字节流上运行派发循环。

        参数：
        - instream：可读二进制流（优先使用 `read1`，避免阻塞等待整块数据）
        - outstream：可写二进制流（每条响应后 flush）
        """

        readfunc = getattr(instream, "read1", None) or instream.read
        reader = FrameReader(readfunc, chunk_size=chunk_size)
        while True:
            try:
                message = reader.read_message()
            except FramingError as exc:
                # 分帧已失步：尽力报告后终止。
                logger.warning("Malformed frame; stopping executor: %s", exc.message)
                _write(outstream, _died(f"Malformed frame: {exc.message}"))
                return
            except TransportError:
                logger.warning("Input stream closed mid-message; stopping executor")
                return
            if message is None:
                return
            try:
                response = self.handle(message)
            except Exception as exc:
                logger.exception("Dispatch of %s failed", message.opcode)
                response = _died(f"Internal error while handling {message.opcode}: {_describe(exc)}")
            if response is None:
                return
            _write(outstream, response)

    def _run(self, func: Callable[..., Any], args: Sequence[bytes], *, filename: str) -> Message:
        """调用已编译片段，返回 RETURNED 或 DIED（running）。"""

        try:
            value = func(*[_decode_arg(a) for a in args])
            results = normalize_results(value)
        except BaseException as exc:
            return _died(f"While running code: {_describe(exc, filename=filename)}")
        return Message(opcode=Opcode.RETURNED.value, args=tuple(results))

    def _handle_eval(self, args: List[bytes]) -> Message:
        """EVAL：在默认 namespace 中编译并立即运行。"""

        if not args:
            return _died("Malformed EVAL message: missing code")
        compiler = self._namespaces.get(DEFAULT_NAMESPACE)
        if compiler is None:
            # EVAL 不携带初始化代码；首个 STORE 仍可为 main 运行 `_init`
            compiler = NamespaceCompiler(namespace=DEFAULT_NAMESPACE)
            self._namespaces[DEFAULT_NAMESPACE] = compiler
        try:
            func = compiler.compile_function(_decode_arg(args[0]))
        except FragmentCompileError as exc:
            return _died(f"While compiling code: {exc}")
        return self._run(func, args[1:], filename=f"<{DEFAULT_NAMESPACE}:eval>")

    def _handle_call(self, args: List[bytes]) -> Message:
        """CALL：按名字查找已注册过程并运行。"""

        if not args:
            return _died("Malformed CALL message: missing procedure name")
        name = _decode_arg(args[0])
        proc = self._procedures.get(name)
        if proc is None:
            return _died(f"No such stored procedure '{name}'")
        return self._run(proc.func, args[1:], filename=f"<{proc.namespace}:{name}>")

    def _ensure_namespace(self, namespace: str, init_code: Optional[str]) -> Tuple[Optional[NamespaceCompiler], Optional[Message]]:
        """
        确保 namespace 存在；首个 STORE / STOREPKG 运行初始化代码（仅一次）。

        说明：
        - 由 EVAL 隐式创建的 `main` 尚未初始化，之后的首个 STORE 仍会运行其 `_init`。

        返回：
        - (compiler, None)：成功
        - (None, DIED)：初始化失败（namespace 不会被创建或保持未初始化，可重试）
        """

        compiler = self._namespaces.get(namespace)
        if compiler is not None and compiler.initialized:
            return compiler, None
        if compiler is None:
            compiler = NamespaceCompiler(namespace=namespace)
        if init_code:
            try:
                compiler.run_initializer(init_code)
            except FragmentCompileError as exc:
                return None, _died(f"While compiling initialisation code: {exc}")
        compiler.initialized = True
        self._namespaces[namespace] = compiler
        logger.debug("namespace %s created", namespace)
        return compiler, None

    def _store(self, namespace: str, args: List[bytes]) -> Message:
        """
        STORE / STOREPKG：批量编译并注册。

        语义：
        - 先全部编译到暂存区；任一失败则整批拒绝（不提交任何名字）；
        - 全部成功后一次性提交；之前成功批次的注册不受影响。
        """

        if len(args) % 2:
            return _died("Malformed STORE message: odd number of arguments")

        pairs = [(_decode_arg(args[i]), _decode_arg(args[i + 1])) for i in range(0, len(args), 2)]
        init_code = None
        funcs: List[Tuple[str, str]] = []
        for name, code in pairs:
            if name == INIT_NAME:
                init_code = code
            else:
                funcs.append((name, code))

        compiler, failure = self._ensure_namespace(namespace, init_code)
        if failure is not None:
            return failure
        assert compiler is not None

        staged: Dict[str, StoredProcedure] = {}
        for name, code in funcs:
            try:
                func = compiler.compile_function(code, name=name)
            except FragmentCompileError as exc:
                return _died(f"While compiling code for {name}: {exc}")
            staged[name] = StoredProcedure(name=name, namespace=namespace, func=func)

        self._procedures.update(staged)
        return Message(opcode=Opcode.OK.value)


def _died(diagnostic: str) -> Message:
    """构造 DIED 响应。"""

    return Message(opcode=Opcode.DIED.value, args=(diagnostic.encode("utf-8", "surrogateescape"),))


def _write(outstream: Any, message: Message) -> None:
    """编码并写出一条响应（立即 flush）。"""

    outstream.write(encode(message.opcode, message.args))
    outstream.flush()


def main() -> int:
    """
    远端入口：在进程 stdin/stdout 上提供服务。

    说明：
    - 协议独占真实的 stdout 字节流；`sys.stdout` 改指向 stderr，避免用户代码的 print 破坏分帧；
    - `sys.stdin` 改指向 /dev/null，避免用户代码误读协议字节。
    """

    instream = sys.stdin.buffer
    outstream = sys.stdout.buffer
    sys.stdout = sys.stderr
    sys.stdin = open(os.devnull, "r")  # noqa: SIM115
    RemoteExecutor().serve(instream, outstream)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
