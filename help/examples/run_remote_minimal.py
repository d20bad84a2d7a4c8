"""
最小运行示例。

用途：
- 演示如何用 overlay 配置（或 `--local`）建立连接；
- 演示 eval / bind / use_library 三种调用方式；
- 演示 RemoteError 不会破坏连接。
"""

from __future__ import annotations

import argparse
from pathlib import Path

from ipc_pyssh import IpcSshClient, RemoteError
from ipc_pyssh.bootstrap import load_effective_config, open_client


def _connect(*, config_paths: list[Path], local: bool) -> IpcSshClient:
    """
    按参数建立连接。

    参数：
    - config_paths：overlay 配置路径列表（后者覆盖前者）
    - local：为 True 时在本机子进程中运行“远端”解释器
    """

    if local:
        return IpcSshClient.local()
    return open_client(load_effective_config(config_paths=config_paths))


def main() -> int:
    """
    示例脚本入口。

    命令行参数：
    - --config：overlay 路径（可重复）；
    - --local：在本机运行。
    """

    parser = argparse.ArgumentParser(description="Run minimal ipc-pyssh demo")
    parser.add_argument("--config", action="append", default=[], help="Overlay YAML path (repeatable)")
    parser.add_argument("--local", action="store_true", help="Run the interpreter as a local child process")
    args = parser.parse_args()

    config_paths = [Path(p).expanduser().resolve() for p in (args.config or [])]

    with _connect(config_paths=config_paths, local=args.local) as client:
        print("[demo] remote pid:", client.eval_scalar("import os\nos.getpid()"))

        double = client.bind("double", "return int(args[0]) * 2")
        print("[demo] double(21):", double.scalar(21))

        namespace = client.use_library("Info", "hostname", "pyversion")
        print(f"[demo] {namespace}: hostname={client.call_scalar('hostname')} python={client.call_scalar('pyversion')}")

        try:
            client.eval("return 1 / 0")
        except RemoteError as exc:
            print(f"[demo] remote failure ({exc.phase}): {exc.diagnostic}")
        print("[demo] still usable:", client.eval("return 1 + 1"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
