"""
ipc_pyssh 错误分类（异常类型）。

说明：
- 两个层级：协议层失败（远端 DIED，可恢复）与传输/分帧失败（对连接致命）。
- 本模块会随 firmware 一并发送到远端解释器，因此只允许依赖标准库。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class IpcSshError(Exception):
    """ipc_pyssh 错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（CLI/resolver 报告中的 errors）。"""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class FrameworkError(IpcSshError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """调用方输入导致的错误（本地预检查，不产生往返）。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class RemoteError(FrameworkError):
    """
    远端返回 DIED（编译或运行失败）。

    说明：
    - 连接仍然可用，可以继续发起后续请求；
    - `phase` 由诊断前缀推断：`compiling` / `running` / None。
    """

    def __init__(
        self,
        diagnostic: str,
        *,
        phase: Optional[str] = None,
        function: Optional[str] = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        """创建 `RemoteError`。

        参数：
        - `diagnostic`：远端诊断文本（可能已在本地补充出错的源码行）
        - `phase`：`compiling` / `running` / None
        - `function`：STORE 批次中出错的函数名（可选）
        """

        merged = dict(details or {})
        merged.setdefault("phase", phase)
        if function is not None:
            merged.setdefault("function", function)
        super().__init__(
            code="REMOTE_DIED",
            message=f"Remote host threw an exception:\n{diagnostic}",
            details=merged,
        )
        self.diagnostic = diagnostic
        self.phase = phase
        self.function = function


class ProtocolError(FrameworkError):
    """协议违例（未知响应 opcode 等）；对连接致命。"""

    def __init__(self, message: str, *, code: str = "PROTOCOL_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `ProtocolError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `PROTOCOL_ERROR`）
        """

        super().__init__(code=code, message=message, details=details or {})


class FramingError(ProtocolError):
    """帧字段畸形（count/length 非数字等）；补充更多数据也无法恢复。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `FramingError`（错误码固定为 `FRAMING_ERROR`）。"""

        super().__init__(message, code="FRAMING_ERROR", details=details)


class TransportError(FrameworkError):
    """传输失败（流在消息中途关闭、写失败、连接已损坏）。"""

    def __init__(self, message: str, *, code: str = "TRANSPORT_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `TransportError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `TRANSPORT_ERROR`）
        """

        super().__init__(code=code, message=message, details=details or {})


class LibraryError(FrameworkError):
    """library bundle 解析/选择失败的基类。"""


class LibraryNotFoundError(LibraryError):
    """按裸名与命名空间约定都找不到 library。"""

    def __init__(self, name: str, *, tried: list[str] | None = None) -> None:
        """创建 `LibraryNotFoundError`。

        参数：
        - `name`：请求的 library 名
        - `tried`：已尝试的候选（module 名或文件路径）
        """

        super().__init__(
            code="LIBRARY_NOT_FOUND",
            message=f"Cannot find an ipc_pyssh library called {name}",
            details={"library": name, "tried": list(tried or [])},
        )


class LibraryFunctionNotFoundError(LibraryError):
    """请求的函数名不在 bundle 中。"""

    def __init__(self, classname: str, function: str) -> None:
        """创建 `LibraryFunctionNotFoundError`。"""

        super().__init__(
            code="LIBRARY_FUNCTION_NOT_FOUND",
            message=f"{classname} does not define a library function called {function}",
            details={"library": classname, "function": function},
        )
