"""
FS library：远端文件系统操作。

说明：
- 权限位按八进制字符串解析（"0600" 与 "600" 等价，亦接受 "0o600"）；
- 失败时远端抛出 OSError，经 CALL 以 DIED（running）传回，而不是返回空值；
- 函数较多，建议按需只加载用到的几个（慢链路上减少 STOREPKG 体积）。

用法：
    client.use_library("FS", "mkdir", "chmod", "writefile")
    client.call("mkdir", "/tmp/testing")
    client.call("chmod", "0600", "/tmp/testing")
"""

from __future__ import annotations

from typing import Dict

from ipc_pyssh.libraries.models import LibraryBundle

_INIT = """\
import os
import stat as _stat


def _mode(value):
    value = str(value).strip()
    if value.isdigit():
        return int(value, 8)
    return int(value, 0)


def _mode_of(path):
    try:
        return os.stat(path).st_mode
    except OSError:
        return 0
"""

_FUNCTIONS: Dict[str, str] = {
    "chown": "uid, gid = int(args[0]), int(args[1])\nfor path in args[2:]:\n    os.chown(path, uid, gid)",
    "chmod": "mode = _mode(args[0])\nfor path in args[1:]:\n    os.chmod(path, mode)",
    "lstat": "return tuple(os.lstat(args[0]))",
    "mkdir": "os.mkdir(args[0], _mode(args[1]) if len(args) > 1 else 0o777)",
    "readlink": "return os.readlink(args[0])",
    "rmdir": "os.rmdir(args[0])",
    "stat": "return tuple(os.stat(args[0]))",
    "symlink": "os.symlink(args[0], args[1])",
    "unlink": "os.unlink(args[0])",
    "utime": "atime, mtime = float(args[0]), float(args[1])\nfor path in args[2:]:\n    os.utime(path, (atime, mtime))",
    "readdir": (
        "hidden = len(args) > 1 and args[1] not in ('', '0')\n"
        "return sorted(e for e in os.listdir(args[0]) if hidden or not e.startswith('.'))"
    ),
    "readfile": "with open(args[0], 'rb') as fh:\n    return fh.read()",
    "writefile": "with open(args[0], 'wb') as fh:\n    fh.write(args[1].encode('utf-8', 'surrogateescape'))",
}

# stat() 单字段变体
for _field in ("dev", "ino", "mode", "nlink", "uid", "gid", "rdev", "size", "atime", "mtime", "ctime", "blksize", "blocks"):
    _FUNCTIONS[f"stat_{_field}"] = f"return os.stat(args[0]).st_{_field}"

# 文件测试
_FUNCTIONS.update(
    {
        "stat_readable": "return os.access(args[0], os.R_OK)",
        "stat_writable": "return os.access(args[0], os.W_OK)",
        "stat_executable": "return os.access(args[0], os.X_OK)",
        "stat_owned": "return os.path.exists(args[0]) and os.stat(args[0]).st_uid == os.geteuid()",
        "stat_exists": "return os.path.exists(args[0])",
        "stat_isempty": "return os.path.exists(args[0]) and os.path.getsize(args[0]) == 0",
        "stat_isfile": "return os.path.isfile(args[0])",
        "stat_isdir": "return os.path.isdir(args[0])",
        "stat_islink": "return os.path.islink(args[0])",
        "stat_ispipe": "return _stat.S_ISFIFO(_mode_of(args[0]))",
        "stat_issocket": "return _stat.S_ISSOCK(_mode_of(args[0]))",
        "stat_isblock": "return _stat.S_ISBLK(_mode_of(args[0]))",
        "stat_ischar": "return _stat.S_ISCHR(_mode_of(args[0]))",
        "stat_issetuid": "return bool(_mode_of(args[0]) & _stat.S_ISUID)",
        "stat_issetgid": "return bool(_mode_of(args[0]) & _stat.S_ISGID)",
        "stat_issticky": "return bool(_mode_of(args[0]) & _stat.S_ISVTX)",
    }
)

LIBRARY = LibraryBundle(
    classname="",
    functions=dict(_FUNCTIONS),
    init=_INIT,
    description="Filesystem functions for the remote host.",
)
