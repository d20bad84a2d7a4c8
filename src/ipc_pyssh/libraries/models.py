"""
Library 数据模型。

说明：
- `LibraryBundle`：解析后的稳定表示（一组命名源码片段 + 可选一次性初始化片段）；
- `LibraryFileModel`：YAML library 文件的 schema（pydantic 校验，拒绝未知字段）。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ipc_pyssh.remote.executor import INIT_NAME


@dataclass(frozen=True)
class LibraryBundle:
    """
    Library bundle（一次 `use_library` 调用消费一次）。

    字段：
    - classname：远端 namespace 名（module 名或 YAML 中声明的 classname）
    - functions：函数名 → 函数体源码片段（保序）
    - init：namespace 初始化片段（可选；每个连接每个 namespace 至多发送一次）
    - description：可读说明（可选）
    - locator：来源定位符（module 名 / 文件路径）
    """

    classname: str
    functions: Mapping[str, str] = field(default_factory=dict)
    init: Optional[str] = None
    description: Optional[str] = None
    locator: Optional[str] = None

    def names(self) -> List[str]:
        """返回函数名列表（保序）。"""

        return list(self.functions)

    def without_init(self) -> "LibraryBundle":
        """返回去掉初始化片段的副本（namespace 已加载时使用）。"""

        return replace(self, init=None)

    def without_functions(self, names: List[str]) -> "LibraryBundle":
        """返回去掉指定函数的副本。"""

        drop = set(names)
        return replace(self, functions={k: v for k, v in self.functions.items() if k not in drop})

    def store_pairs(self) -> List[str]:
        """
        展开为 STOREPKG 的 `name, code` 参数序列（初始化片段以保留名在最前）。
        """

        out: List[str] = []
        if self.init:
            out.extend([INIT_NAME, self.init])
        for name, code in self.functions.items():
            out.extend([name, code])
        return out

    def to_metadata_dict(self) -> Dict[str, object]:
        """投影为可 JSON 序列化的只读视图（不含源码）。"""

        return {
            "classname": self.classname,
            "functions": self.names(),
            "has_init": bool(self.init),
            "description": self.description,
            "locator": self.locator,
        }


class LibraryFileModel(BaseModel):
    """YAML library 文件（`<name>.yaml`）。"""

    model_config = ConfigDict(extra="forbid")

    classname: Optional[str] = None
    description: Optional[str] = None
    init: Optional[str] = None
    functions: Dict[str, str] = Field(default_factory=dict)

    @field_validator("functions")
    @classmethod
    def _validate_function_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        """函数名必须非空、不含换行，且不能占用初始化保留名。"""

        if not value:
            raise ValueError("functions must not be empty")
        for name in value:
            if not name or not name.strip() or "\n" in name:
                raise ValueError(f"invalid function name: {name!r}")
            if name == INIT_NAME:
                raise ValueError(f"function name {INIT_NAME!r} is reserved for the initializer")
        return value

    def to_bundle(self, *, default_classname: str, locator: str) -> LibraryBundle:
        """转换为 `LibraryBundle`（未声明 classname 时使用文件名）。"""

        return LibraryBundle(
            classname=self.classname or default_classname,
            functions=dict(self.functions),
            init=self.init,
            description=self.description,
            locator=locator,
        )
