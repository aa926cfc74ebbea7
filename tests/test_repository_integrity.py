"""Checks that keep the packaging metadata honest about the source tree."""

from __future__ import annotations

import ast
import re
import sys
from pathlib import Path

from xtreamcache.__main__ import build_arg_parser

REPO_ROOT = Path(__file__).resolve().parents[1]
SOURCE_PACKAGES = ("app", "xtreamcache")
LOCAL_MODULES = set(SOURCE_PACKAGES)
DISTRIBUTION_NAMES = {"pydantic_settings": "pydantic-settings"}
REQUIREMENT_NAME = re.compile(r'^\s*"([A-Za-z0-9_.-]+)')
CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>) ", re.MULTILINE)


def _declared_dependencies() -> set[str]:
    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    block = text.split("dependencies = [", 1)[1].split("\n]", 1)[0]
    names = set()
    for line in block.splitlines():
        match = REQUIREMENT_NAME.match(line)
        if match:
            names.add(match.group(1).split("[")[0].lower())
    return names


def _imported_top_level(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            names.add(node.module.split(".")[0])
    return names


def _source_files() -> list[Path]:
    return sorted(
        path
        for package in SOURCE_PACKAGES
        for path in (REPO_ROOT / package).rglob("*.py")
        if "__pycache__" not in path.parts
    )


def test_every_third_party_import_is_declared() -> None:
    declared = _declared_dependencies()
    missing: dict[str, list[str]] = {}
    for path in _source_files():
        for module in _imported_top_level(path):
            if module in sys.stdlib_module_names or module in LOCAL_MODULES:
                continue
            distribution = DISTRIBUTION_NAMES.get(module, module).lower()
            if distribution not in declared:
                missing.setdefault(distribution, []).append(
                    str(path.relative_to(REPO_ROOT))
                )

    assert not missing, f"Imported but not declared in pyproject.toml: {missing}"


def test_source_files_have_no_merge_conflict_markers() -> None:
    offending = [
        str(path.relative_to(REPO_ROOT))
        for path in _source_files() + sorted((REPO_ROOT / "tests").glob("*.py"))
        if CONFLICT_PATTERN.search(path.read_text(encoding="utf-8"))
    ]

    assert not offending, f"Conflict markers left in: {', '.join(offending)}"


def test_command_line_overrides_server_settings() -> None:
    args = build_arg_parser().parse_args(
        ["--host", "127.0.0.1", "--port", "9191", "--no-reload", "--log-level", "debug"]
    )

    assert args.host == "127.0.0.1"
    assert args.port == 9191
    assert args.reload is False
    assert args.log_level == "debug"
