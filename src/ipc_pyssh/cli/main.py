"""
ipc-pyssh CLI（eval / call / libraries）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- stdout 输出机器可读 JSON；失败时也输出 JSON（`ok=false` + error）
- 日志（`--verbose`）只写 stderr

Exit codes：
- 0：成功
- 2：参数/配置错误
- 10：远端 DIED
- 11：library 不存在或无效
- 20：传输/协议失败
"""

from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from ipc_pyssh import bootstrap
from ipc_pyssh.config.loader import IpcSshConfig
from ipc_pyssh.core.errors import (
    FrameworkError,
    LibraryError,
    ProtocolError,
    RemoteError,
    TransportError,
    UserError,
)
from ipc_pyssh.transport.process import local_command

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_REMOTE_DIED = 10
EXIT_LIBRARY = 11
EXIT_TRANSPORT = 20


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（调用方需确保已做清洗）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _printable(value: str) -> str:
    """把 surrogateescape 解码得到的 str 转为可输出文本（非法字节替换为 U+FFFD）。"""

    return value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def _error_payload(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """构造失败输出。"""

    return {"ok": False, "error": {"code": code, "message": message, "details": details or {}}}


def _exit_code_for_error(exc: FrameworkError) -> int:
    """按错误分类映射 exit code。"""

    if isinstance(exc, RemoteError):
        return EXIT_REMOTE_DIED
    if isinstance(exc, LibraryError):
        return EXIT_LIBRARY
    if isinstance(exc, (ProtocolError, TransportError)):
        return EXIT_TRANSPORT
    if isinstance(exc, UserError):
        return EXIT_USAGE
    return EXIT_TRANSPORT


def _build_parser() -> argparse.ArgumentParser:
    """构造 argparse parser（子命令：eval / call / libraries）。"""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", action="append", default=[], help="YAML overlay path (repeatable)")
    common.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    common.add_argument("--verbose", action="store_true", help="Debug logging on stderr")

    connect = argparse.ArgumentParser(add_help=False)
    connect.add_argument("--host", help="Remote host (via ssh)")
    connect.add_argument("--user", help="Remote user")
    connect.add_argument("--port", type=int, help="ssh port")
    connect.add_argument("--python", help="Remote interpreter")
    connect.add_argument("--command", help="Explicit command line that starts the remote interpreter")
    connect.add_argument("--local", action="store_true", help="Run the interpreter as a local child process")

    parser = argparse.ArgumentParser(prog="ipc-pyssh", description="Run Python code in a remote interpreter")
    root_sub = parser.add_subparsers(dest="command_name", required=True)

    eval_p = root_sub.add_parser("eval", parents=[common, connect], help="Evaluate a code fragment remotely")
    eval_p.add_argument("code", help="Function body; positional arguments are available as `args`")
    eval_p.add_argument("args", nargs="*", help="Arguments")

    call_p = root_sub.add_parser("call", parents=[common, connect], help="Load a library function and call it")
    call_p.add_argument("library", help="Library name (e.g. FS)")
    call_p.add_argument("function", help="Function name")
    call_p.add_argument("args", nargs="*", help="Arguments")

    libraries = root_sub.add_parser("libraries", help="Library commands")
    libraries_sub = libraries.add_subparsers(dest="libraries_cmd", required=True)
    libraries_sub.add_parser("list", parents=[common], help="List available libraries")
    show = libraries_sub.add_parser("show", parents=[common], help="Show library metadata")
    show.add_argument("name", help="Library name")

    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """把连接相关 CLI 参数转换为最高优先级的配置 overlay。"""

    transport: Dict[str, Any] = {}
    if getattr(args, "local", False):
        transport["command"] = local_command(args.python)
    elif getattr(args, "command", None):
        transport["command"] = shlex.split(args.command)
    else:
        for key in ("host", "user", "port", "python"):
            value = getattr(args, key, None)
            if value is not None:
                transport[key] = value
    return {"transport": transport} if transport else {}


def _load_config(args: argparse.Namespace) -> IpcSshConfig:
    """解析有效配置（内置默认 → env overlays 或 --config → CLI 参数）。"""

    config_paths: Optional[List[Path]] = [Path(p) for p in args.config] if args.config else None
    return bootstrap.load_effective_config(config_paths=config_paths, overrides=_overrides_from_args(args))


def _handle_eval(args: argparse.Namespace, config: IpcSshConfig) -> Dict[str, Any]:
    """eval：远端求值并返回全部结果。"""

    with bootstrap.open_client(config) as client:
        results = client.eval(args.code, *args.args)
    return {"ok": True, "results": [_printable(r) for r in results]}


def _handle_call(args: argparse.Namespace, config: IpcSshConfig) -> Dict[str, Any]:
    """call：加载 library 中的单个函数并调用。"""

    # library 或函数名无效时不建立连接
    bootstrap.build_resolver(config).load(args.library, [args.function])
    with bootstrap.open_client(config) as client:
        namespace = client.use_library(args.library, args.function)
        results = client.call(args.function, *args.args)
    return {"ok": True, "namespace": namespace, "results": [_printable(r) for r in results]}


def _handle_libraries(args: argparse.Namespace, config: IpcSshConfig) -> Dict[str, Any]:
    """libraries list / show。"""

    resolver = bootstrap.build_resolver(config)
    if args.libraries_cmd == "list":
        return {"ok": True, "libraries": resolver.list_libraries()}
    bundle = resolver.resolve(args.name)
    return {"ok": True, "library": bundle.to_metadata_dict()}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse 的约定：`--help` 为 0，参数错误为 2
        code = getattr(exc, "code", 2)
        if code is None:
            return EXIT_USAGE
        return int(code)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = _load_config(args)
    except ValidationError as exc:
        errors = [{"loc": [str(x) for x in e["loc"]], "msg": str(e["msg"])} for e in exc.errors()]
        _dump_json_to_stdout(
            _error_payload("CLI_CONFIG_INVALID", "Config failed validation.", {"errors": errors}),
            pretty=args.pretty,
        )
        return EXIT_USAGE
    except (OSError, ValueError, yaml.YAMLError) as exc:
        _dump_json_to_stdout(
            _error_payload("CLI_CONFIG_LOAD_FAILED", "Config load failed.", {"reason": str(exc)}),
            pretty=args.pretty,
        )
        return EXIT_USAGE

    handlers = {"eval": _handle_eval, "call": _handle_call, "libraries": _handle_libraries}
    try:
        payload = handlers[args.command_name](args, config)
    except FrameworkError as exc:
        details = dict(exc.details)
        if isinstance(exc, RemoteError):
            details["diagnostic"] = _printable(exc.diagnostic)
        _dump_json_to_stdout(_error_payload(exc.code, _printable(exc.message), details), pretty=args.pretty)
        return _exit_code_for_error(exc)
    except OSError as exc:
        _dump_json_to_stdout(
            _error_payload("TRANSPORT_SPAWN_FAILED", "Failed to start the remote interpreter.", {"reason": str(exc)}),
            pretty=args.pretty,
        )
        return EXIT_TRANSPORT

    _dump_json_to_stdout(payload, pretty=args.pretty)
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
