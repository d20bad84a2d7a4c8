"""
Wire codec：消息分帧的编码/解码（纯函数，无 I/O）。

帧格式（逐字节精确）：

    <opcode>\\n<argcount>\\n
    然后对每个参数：<byteLength>\\n<raw bytes，恰好 byteLength 字节，无尾随分隔符>

说明：
- 参数长度显式给出，因此参数内可以包含换行、NUL 以及任意字节；
- `decode` 可重入：前缀不完整时返回 `NEED_MORE_DATA`，不消费任何输入；
- count/length 字段非数字是致命分帧错误（`FramingError`），补数据也无法恢复；
- 本模块会随 firmware 发送到远端，只允许依赖标准库。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ipc_pyssh.core.errors import FramingError, TransportError

# 单个数字字段的最大字节数；超出仍未见换行即判定为畸形帧。
MAX_FIELD_DIGITS = 20


class Opcode(str, Enum):
    """消息类型（请求与响应共用一个 opcode 空间）。"""

    EVAL = "EVAL"
    STORE = "STORE"
    STOREPKG = "STOREPKG"
    CALL = "CALL"
    QUIT = "QUIT"
    RETURNED = "RETURNED"
    OK = "OK"
    DIED = "DIED"


@dataclass(frozen=True)
class Message:
    """
    解码后的消息。

    字段：
    - opcode：opcode 名（字符串；未知 opcode 也原样保留，由 dispatch 决定如何处理）
    - args：有序的字节串参数
    """

    opcode: str
    args: Tuple[bytes, ...] = ()


class _NeedMoreData:
    """`decode` 的“数据不足”哨兵类型（单例）。"""

    _instance: Optional["_NeedMoreData"] = None

    def __new__(cls) -> "_NeedMoreData":
        """保证全局只有一个实例，便于 `is` 比较。"""

        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        """哨兵在布尔上下文中为假。"""

        return False

    def __repr__(self) -> str:
        """返回可读表示。"""

        return "NEED_MORE_DATA"


NEED_MORE_DATA = _NeedMoreData()

BytesLike = Union[bytes, bytearray, memoryview]


def _to_bytes(value: Union[BytesLike, str]) -> bytes:
    """把参数规整为 bytes（str 按 utf-8 + surrogateescape 编码）。"""

    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    return bytes(value)


def encode(opcode: Union[Opcode, str], args: Sequence[Union[BytesLike, str]] = ()) -> bytes:
    """
    把一条消息编码为帧。

    参数：
    - opcode：Opcode 或其字面名
    - args：参数序列（bytes 原样；str 按 utf-8 编码）

    返回：
    - bytes：完整帧
    """

    name = opcode.value if isinstance(opcode, Opcode) else str(opcode)
    if not name or "\n" in name:
        raise ValueError(f"invalid opcode name: {name!r}")

    parts = [name.encode("ascii"), b"\n", str(len(args)).encode("ascii"), b"\n"]
    for arg in args:
        data = _to_bytes(arg)
        parts.append(str(len(data)).encode("ascii"))
        parts.append(b"\n")
        parts.append(data)
    return b"".join(parts)


def _read_line(buf: Union[bytes, bytearray], pos: int) -> Optional[Tuple[bytes, int]]:
    """
    从 pos 开始读取一行（不含换行）。

    返回：
    - (line, next_pos)：找到换行时
    - None：换行尚未到达
    """

    idx = buf.find(b"\n", pos)
    if idx < 0:
        return None
    return bytes(buf[pos:idx]), idx + 1


def _parse_count(raw: bytes, *, field_name: str) -> int:
    """把十进制数字字段解析为非负整数；否则抛 `FramingError`。"""

    if not raw or not raw.isdigit():
        raise FramingError(
            f"Malformed {field_name} field in frame",
            details={"field": field_name, "raw": raw[:MAX_FIELD_DIGITS].decode("latin-1")},
        )
    return int(raw)


def _check_unterminated(buf: Union[bytes, bytearray], pos: int, *, field_name: str) -> None:
    """数字字段尚未见换行时，提前识别已经不可能合法的前缀。"""

    tail = bytes(buf[pos : pos + MAX_FIELD_DIGITS + 1])
    if len(tail) > MAX_FIELD_DIGITS or (tail and not tail.isdigit()):
        raise FramingError(
            f"Malformed {field_name} field in frame",
            details={"field": field_name, "raw": tail[:MAX_FIELD_DIGITS].decode("latin-1")},
        )


@dataclass
class _ScanState:
    """
    一条帧已扫描部分的记录。

    说明：
    - 只记录已确认完整的字段与参数区间；参数字节在整帧到齐后才切片；
    - `FrameReader` 跨多次读取保留它，避免每来一块数据都从帧头重扫。
    """

    pos: int = 0
    opcode: Optional[str] = None
    count: Optional[int] = None
    spans: List[Tuple[int, int]] = field(default_factory=list)


def _scan(buf: Union[bytes, bytearray], state: _ScanState) -> bool:
    """
    从 `state` 记录的位置继续扫描帧头与参数长度。

    返回：
    - True：整帧已在 buf 中（state.pos 即帧长度）
    - False：数据不足；state 保留已确认的部分

    异常：
    - FramingError：count/length 字段畸形
    """

    if state.opcode is None:
        got = _read_line(buf, state.pos)
        if got is None:
            return False
        raw_opcode, state.pos = got
        state.opcode = raw_opcode.decode("utf-8", "replace")

    if state.count is None:
        got = _read_line(buf, state.pos)
        if got is None:
            _check_unterminated(buf, state.pos, field_name="argcount")
            return False
        raw_count, pos = got
        state.count = _parse_count(raw_count, field_name="argcount")
        state.pos = pos

    while len(state.spans) < state.count:
        got = _read_line(buf, state.pos)
        if got is None:
            _check_unterminated(buf, state.pos, field_name="length")
            return False
        raw_len, start = got
        end = start + _parse_count(raw_len, field_name="length")
        if len(buf) < end:
            return False
        state.spans.append((start, end))
        state.pos = end
    return True


def _build(buf: Union[bytes, bytearray], state: _ScanState) -> Message:
    """按扫描结果切出参数，构造消息。"""

    return Message(opcode=state.opcode or "", args=tuple(bytes(buf[start:end]) for start, end in state.spans))


def decode(buf: BytesLike) -> Union[Tuple[Message, int], _NeedMoreData]:
    """
    从缓冲区头部解码一条消息。

    参数：
    - buf：字节缓冲区（不会被修改）

    返回：
    - (Message, consumed)：解码成功；consumed 为该消息占用的头部字节数
    - NEED_MORE_DATA：buf 是某条合法帧的严格前缀

    异常：
    - FramingError：count/length 字段非数字（致命）
    """

    if isinstance(buf, memoryview):
        buf = buf.tobytes()

    state = _ScanState()
    if not _scan(buf, state):
        return NEED_MORE_DATA
    return _build(buf, state), state.pos


class FrameReader:
    """
    基于 `decode` 的增量读取器（两端共用）。

    说明：
    - 内部保存未消费的字节；每次只返回一条完整消息，剩余字节留给下一次；
    - 未完成帧的扫描进度跨读取保留，读取一条消息的开销与帧长度成线性；
    - `readfunc(n)` 返回空 bytes 表示流结束。
    """

    def __init__(self, readfunc: Callable[[int], bytes], *, chunk_size: int = 8192) -> None:
        """
        创建读取器。

        参数：
        - readfunc：读取函数，最多返回 n 字节；返回空表示 EOF
        - chunk_size：单次读取的最大字节数
        """

        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self._readfunc = readfunc
        self._chunk_size = int(chunk_size)
        self._buffer = bytearray()
        self._state = _ScanState()

    @property
    def pending(self) -> int:
        """缓冲区中尚未解码的字节数。"""

        return len(self._buffer)

    def read_message(self) -> Optional[Message]:
        """
        阻塞读取直到解出一条消息。

        返回：
        - Message：成功
        - None：在消息边界上遇到流结束（干净关闭）

        异常：
        - TransportError：流在消息中途结束
        - FramingError：帧畸形
        """

        while True:
            if _scan(self._buffer, self._state):
                message = _build(self._buffer, self._state)
                del self._buffer[: self._state.pos]
                self._state = _ScanState()
                return message
            chunk = self._readfunc(self._chunk_size)
            if not chunk:
                if self._buffer:
                    raise TransportError(
                        "Stream closed in the middle of a message",
                        code="UNEXPECTED_EOF",
                        details={"pending_bytes": len(self._buffer)},
                    )
                return None
            self._buffer.extend(chunk)
