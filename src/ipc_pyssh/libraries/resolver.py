"""
Library resolver：把 library 名解析为 `LibraryBundle`，并按需裁剪函数子集。

解析顺序：
1. 每个搜索前缀下的 module（默认 `ipc_pyssh.libraries.builtin.<name>`，并尝试小写名）；
2. `<name>` 作为完整 module 路径；
3. 配置的 YAML 目录中的 `<name>.yaml` / `<name>.yml`。

约束：
- module 不存在（且缺失的正是该候选本身或其父包）时继续尝试下一个；其它导入失败直接抛出；
- module 必须暴露 `LIBRARY`（`LibraryBundle`），否则为 `LIBRARY_EMPTY`。
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from ipc_pyssh.core.errors import LibraryError, LibraryFunctionNotFoundError, LibraryNotFoundError
from ipc_pyssh.libraries.models import LibraryBundle, LibraryFileModel

logger = logging.getLogger(__name__)

BUILTIN_PACKAGE = "ipc_pyssh.libraries.builtin"
_YAML_SUFFIXES = (".yaml", ".yml")


def _is_missing_candidate(exc: ModuleNotFoundError, candidate: str) -> bool:
    """判断 ModuleNotFoundError 是否指向候选 module 本身（或其父包），而非其依赖。"""

    missing = exc.name or ""
    if not missing:
        return False
    return candidate == missing or candidate.startswith(missing + ".")


def _dedupe(items: Iterable[str]) -> List[str]:
    """保序去重。"""

    seen: set[str] = set()
    out: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class LibraryResolver:
    """Library 解析器（无状态；可在多个连接间共享）。"""

    def __init__(
        self,
        *,
        search_paths: Sequence[Path] = (),
        prefixes: Sequence[str] = (BUILTIN_PACKAGE,),
    ) -> None:
        """
        创建解析器。

        参数：
        - search_paths：YAML library 目录
        - prefixes：module 搜索前缀（按顺序尝试）
        """

        self._search_paths = [Path(p) for p in search_paths]
        self._prefixes = list(prefixes)

    @property
    def search_paths(self) -> List[Path]:
        """YAML library 目录（副本）。"""

        return list(self._search_paths)

    def _module_candidates(self, name: str) -> List[str]:
        """生成 module 候选名（前缀 + 原名/小写名，最后是裸名）。"""

        out: List[str] = []
        for prefix in self._prefixes:
            out.append(f"{prefix}.{name}")
            out.append(f"{prefix}.{name.lower()}")
        out.append(name)
        return _dedupe(out)

    def _resolve_module(self, name: str, tried: List[str]) -> Optional[LibraryBundle]:
        """按 module 候选解析；全部缺失时返回 None。"""

        for candidate in self._module_candidates(name):
            tried.append(candidate)
            try:
                module = importlib.import_module(candidate)
            except ModuleNotFoundError as exc:
                if _is_missing_candidate(exc, candidate):
                    continue
                raise
            bundle = getattr(module, "LIBRARY", None)
            if not isinstance(bundle, LibraryBundle) or not bundle.functions:
                raise LibraryError(
                    code="LIBRARY_EMPTY",
                    message=f"{candidate} does not define any library functions",
                    details={"library": name, "module": candidate},
                )
            logger.debug("library %s resolved to module %s", name, candidate)
            return replace(bundle, classname=bundle.classname or module.__name__, locator=bundle.locator or module.__name__)
        return None

    def _resolve_yaml(self, name: str, tried: List[str]) -> Optional[LibraryBundle]:
        """在 YAML 目录中查找 `<name>.yaml`；找不到返回 None。"""

        for root in self._search_paths:
            for suffix in _YAML_SUFFIXES:
                path = root / f"{name}{suffix}"
                tried.append(str(path))
                if path.is_file():
                    return load_library_file(path)
        return None

    def resolve(self, name: str) -> LibraryBundle:
        """
        解析 library。

        异常：
        - LibraryNotFoundError：所有候选都不存在
        - LibraryError：找到了但内容无效
        """

        name = str(name or "").strip()
        if not name:
            raise LibraryNotFoundError(name)
        tried: List[str] = []
        bundle = self._resolve_module(name, tried)
        if bundle is None:
            bundle = self._resolve_yaml(name, tried)
        if bundle is None:
            raise LibraryNotFoundError(name, tried=tried)
        return bundle

    def select(self, bundle: LibraryBundle, names: Sequence[str] = ()) -> LibraryBundle:
        """
        按请求的函数名裁剪 bundle。

        语义：
        - names 为空：原样返回（全部函数 + 初始化片段）；
        - 任一名字不在 bundle 中：抛 `LibraryFunctionNotFoundError`；
        - 初始化片段总是保留。
        """

        if not names:
            return bundle
        selected = {}
        for fn in names:
            if fn not in bundle.functions:
                raise LibraryFunctionNotFoundError(bundle.classname, fn)
            selected[fn] = bundle.functions[fn]
        return replace(bundle, functions=selected)

    def load(self, name: str, names: Sequence[str] = ()) -> LibraryBundle:
        """`resolve` + `select` 的便捷组合。"""

        return self.select(self.resolve(name), names)

    def list_libraries(self) -> List[str]:
        """列出可用 library 名（内置 module + YAML 文件）。"""

        out: List[str] = []
        for prefix in self._prefixes:
            try:
                package = importlib.import_module(prefix)
            except ModuleNotFoundError as exc:
                if _is_missing_candidate(exc, prefix):
                    continue
                raise
            for info in pkgutil.iter_modules(getattr(package, "__path__", [])):
                if not info.name.startswith("_"):
                    out.append(info.name)
        for root in self._search_paths:
            if not root.is_dir():
                continue
            for path in sorted(root.iterdir()):
                if path.is_file() and path.suffix in _YAML_SUFFIXES:
                    out.append(path.stem)
        return sorted(_dedupe(out))


def load_library_file(path: Path) -> LibraryBundle:
    """
    读取并校验 YAML library 文件。

    异常：
    - LibraryError(LIBRARY_INVALID)：YAML 解析失败或 schema 不匹配
    """

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise LibraryError(
            code="LIBRARY_INVALID",
            message="Library file is not valid YAML.",
            details={"path": str(path), "reason": str(exc)},
        ) from exc
    if not isinstance(data, dict):
        raise LibraryError(
            code="LIBRARY_INVALID",
            message="Library file root must be a mapping.",
            details={"path": str(path), "actual": type(data).__name__},
        )
    try:
        model = LibraryFileModel.model_validate(data)
    except ValidationError as exc:
        raise LibraryError(
            code="LIBRARY_INVALID",
            message="Library file failed validation.",
            details={
                "path": str(path),
                "errors": [{"loc": [str(x) for x in e["loc"]], "msg": str(e["msg"])} for e in exc.errors()],
            },
        ) from exc
    return model.to_bundle(default_classname=path.stem, locator=str(path))
