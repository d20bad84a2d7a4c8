"""
Firmware：连接建立时一次性发送给远端解释器的引导载荷。

流程：
- 远端以 `python3 -c STUB` 启动；STUB 只从二进制 stdin 读取一行并 `exec(eval(line))`；
- 这一行是 loader 程序源码的 `ascii()` 表示；loader 把随附模块安装到 `sys.modules`
  （使用真实的点分模块名），然后调用 `ipc_pyssh.remote.executor.main()`；
- 之后 stdin 上剩余的字节全部属于协议帧（STUB 与 executor 共用同一个 BufferedReader）。
"""

from __future__ import annotations

import functools
import importlib
import inspect
from typing import List, Sequence, Tuple

# 随 firmware 发送的模块（顺序即安装顺序，依赖在前）。
FIRMWARE_MODULES: Tuple[str, ...] = (
    "ipc_pyssh.core.errors",
    "ipc_pyssh.wire.codec",
    "ipc_pyssh.remote.executor",
)

ENTRY_MODULE = "ipc_pyssh.remote.executor"

# 远端解释器的 `-c` 参数。
STUB = "import sys;exec(eval(sys.stdin.buffer.readline()))"

_LOADER = '''\
import sys
import types


def _ipc_pyssh_install(name, source):
    parts = name.split(".")
    for i in range(1, len(parts)):
        pkg = ".".join(parts[:i])
        if pkg not in sys.modules:
            mod = types.ModuleType(pkg)
            mod.__path__ = []
            sys.modules[pkg] = mod
            if i > 1:
                setattr(sys.modules[".".join(parts[:i - 1])], parts[i - 1], mod)
    mod = types.ModuleType(name)
    mod.__file__ = "<ipc_pyssh:%s>" % name
    sys.modules[name] = mod
    exec(compile(source, mod.__file__, "exec"), mod.__dict__)
    if len(parts) > 1:
        setattr(sys.modules[".".join(parts[:-1])], parts[-1], mod)
    return mod


for _name, _source in {modules!r}:
    _ipc_pyssh_install(_name, _source)

sys.exit(sys.modules[{entry!r}].main())
'''


def module_sources(names: Sequence[str] = FIRMWARE_MODULES) -> List[Tuple[str, str]]:
    """
    读取随附模块的源码。

    参数：
    - names：点分模块名列表

    返回：
    - [(module_name, source_text), ...]
    """

    out: List[Tuple[str, str]] = []
    for name in names:
        module = importlib.import_module(name)
        out.append((name, inspect.getsource(module)))
    return out


def build_loader_source(names: Sequence[str] = FIRMWARE_MODULES, *, entry: str = ENTRY_MODULE) -> str:
    """生成 loader 程序源码（嵌入全部随附模块源码）。"""

    return _LOADER.format(modules=module_sources(names), entry=entry)


@functools.lru_cache(maxsize=1)
def bootstrap_payload() -> bytes:
    """
    返回引导载荷：loader 源码的 ascii 表示 + 换行（单行，纯 ASCII）。

    说明：
    - 每进程只计算一次；
    - 内容是构建期常量，不含用户数据。
    """

    return ascii(build_loader_source()).encode("ascii") + b"\n"


def interpreter_argv(python: str = "python3") -> List[str]:
    """返回在远端启动 executor 所需的解释器参数（`python -c STUB`）。"""

    return [python, "-c", STUB]
