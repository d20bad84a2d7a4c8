from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List

_SRC_ROOT = Path(__file__).resolve().parents[1] / "src" / "ipc_pyssh"
_DEF_NODES = (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)


@dataclass(frozen=True)
class MissingDocstring:
    path: Path
    lineno: int
    qualname: str


def _walk_defs(node: ast.AST, prefix: str = "") -> Iterator[tuple[str, ast.AST]]:
    for child in ast.iter_child_nodes(node):
        if isinstance(child, _DEF_NODES):
            qualname = f"{prefix}.{child.name}" if prefix else child.name
            yield qualname, child
            yield from _walk_defs(child, qualname)
        else:
            yield from _walk_defs(child, prefix)


def _missing_in(py_path: Path) -> List[MissingDocstring]:
    tree = ast.parse(py_path.read_text(encoding="utf-8"), filename=str(py_path))
    return [
        MissingDocstring(py_path, node.lineno, qualname)  # type: ignore[attr-defined]
        for qualname, node in _walk_defs(tree)
        if ast.get_docstring(node) is None  # type: ignore[arg-type]
    ]


def test_docstrings_present_for_all_defs_under_src() -> None:
    """
    Docstring 合规护栏。

    规则：
    - 扫描 `src/ipc_pyssh` 下所有 `.py` 文件（含嵌套定义）；
    - 每个 `class/def/async def` 都必须有 docstring；
    - library 片段是字符串里的远端源码，不在扫描范围内。
    """

    missing: List[MissingDocstring] = []
    for py_path in sorted(_SRC_ROOT.rglob("*.py")):
        if "__pycache__" in py_path.parts:
            continue
        missing.extend(_missing_in(py_path))

    assert not missing, "missing docstrings:\n" + "\n".join(
        f"- {m.path.relative_to(_SRC_ROOT.parent.parent)}:{m.lineno} {m.qualname}" for m in missing
    )
