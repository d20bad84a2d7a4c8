from __future__ import annotations

import re
import tomllib
from pathlib import Path

import ipc_pyssh

_ROOT = Path(__file__).resolve().parents[1]
_INIT_VERSION_RE = re.compile(r"""^__version__\s*=\s*["']([^"']+)["']\s*$""", re.MULTILINE)


def _pyproject() -> dict:
    return tomllib.loads((_ROOT / "pyproject.toml").read_text(encoding="utf-8"))


def test_package_version_matches_pyproject() -> None:
    version = _pyproject()["project"]["version"]
    init_text = (_ROOT / "src" / "ipc_pyssh" / "__init__.py").read_text(encoding="utf-8")
    match = _INIT_VERSION_RE.search(init_text)
    assert match is not None
    assert match.group(1) == version
    assert ipc_pyssh.__version__ == version


def test_console_script_points_at_cli_main() -> None:
    assert _pyproject()["project"]["scripts"]["ipc-pyssh"] == "ipc_pyssh.cli.main:main"


def test_runtime_dependencies_cover_third_party_imports() -> None:
    deps = " ".join(_pyproject()["project"]["dependencies"]).lower()
    assert "pydantic" in deps
    assert "pyyaml" in deps
