"""
Library 支持：预先写好的远端函数集合（bundle）与解析器。

用法：
    resolver = LibraryResolver()
    bundle = resolver.load("FS", ["readfile"])
"""

from __future__ import annotations

from ipc_pyssh.libraries.models import LibraryBundle, LibraryFileModel
from ipc_pyssh.libraries.resolver import BUILTIN_PACKAGE, LibraryResolver, load_library_file

__all__ = [
    "BUILTIN_PACKAGE",
    "LibraryBundle",
    "LibraryFileModel",
    "LibraryResolver",
    "load_library_file",
]
