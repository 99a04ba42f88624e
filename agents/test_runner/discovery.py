"""Test Discovery – decides which test framework a repository uses.

Detection order (first match wins)
──────────────────────────────────
1. ``package.json``: vitest dependency, jest dependency, ``scripts.test``
2. Python manifest (``requirements.txt`` then ``pyproject.toml``)
   mentioning pytest
3. Python test files anywhere (``test_*.py`` / ``*_test.py``)
4. JS/TS test files anywhere (``*.test.js``, ``*.spec.ts``, ...)
5. nothing found

Usage::

    from agents.test_runner.discovery import detect_framework

    tag = detect_framework("/path/to/repo")
    tag.command   # e.g. "python -m pytest -v --tb=short"
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# ── Framework tags ───────────────────────────────────────────────────

class FrameworkTag(str, Enum):
    VITEST = "vitest"
    JEST = "jest"
    NPM_TEST = "npm test"
    PYTEST = "pytest"
    PYTEST_AUTO = "pytest-auto"
    NODE_AUTO = "node-auto"
    UNKNOWN = "unknown"

    @property
    def command(self) -> str | None:
        """Shell command that runs this framework, or None for UNKNOWN."""
        return _COMMANDS.get(self)


def _pytest_command() -> str:
    return f"{shlex.quote(sys.executable)} -m pytest -v --tb=short"


_COMMANDS: dict[FrameworkTag, str] = {
    FrameworkTag.PYTEST: _pytest_command(),
    FrameworkTag.PYTEST_AUTO: _pytest_command(),
    FrameworkTag.VITEST: "npm test",
    FrameworkTag.JEST: "npm test",
    FrameworkTag.NPM_TEST: "npm test",
    FrameworkTag.NODE_AUTO: "npm test || npx jest || node --test",
}


# ── Ignore list ──────────────────────────────────────────────────────

_SKIP_DIRS = {"node_modules", "venv", ".venv", "dist", ".git"}

_PY_TEST_RE = re.compile(r"^(test_.+|.+_test)\.py$")
_JS_TEST_RE = re.compile(r"^.+\.(test|spec)\.(js|ts|jsx|tsx)$")


# ── Scan context (cached file lookups) ───────────────────────────────

@dataclass
class ScanContext:
    """Pre-collected file info so detectors don't re-walk the tree."""

    root: Path
    py_test_files: list[Path] = field(default_factory=list)
    js_test_files: list[Path] = field(default_factory=list)
    package_json: dict[str, Any] | None = None
    requirements_txt_text: str | None = None
    pyproject_toml_text: str | None = None

    def py_test_files_within(self, max_depth: int) -> list[Path]:
        """Python test files at most *max_depth* path components below root."""
        return [
            p for p in self.py_test_files
            if len(p.relative_to(self.root).parts) <= max_depth
        ]


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("[Discovery] Cannot read %s: %s", path, exc)
        return None


def build_scan_context(repo_path: str | Path) -> ScanContext:
    root = Path(repo_path).resolve()
    ctx = ScanContext(root=root)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for fn in sorted(filenames):
            if _PY_TEST_RE.match(fn):
                ctx.py_test_files.append(Path(dirpath) / fn)
            elif _JS_TEST_RE.match(fn):
                ctx.js_test_files.append(Path(dirpath) / fn)

    pkg_text = _read_text(root / "package.json")
    if pkg_text is not None:
        try:
            parsed = json.loads(pkg_text)
            ctx.package_json = parsed if isinstance(parsed, dict) else None
        except ValueError as exc:
            logger.warning("[Discovery] package.json is not valid JSON: %s", exc)

    ctx.requirements_txt_text = _read_text(root / "requirements.txt")
    ctx.pyproject_toml_text = _read_text(root / "pyproject.toml")

    logger.info(
        "[Discovery] Scan context built | py_tests=%d | js_tests=%d | package.json=%s",
        len(ctx.py_test_files), len(ctx.js_test_files), ctx.package_json is not None,
    )
    return ctx


# ── Detection ────────────────────────────────────────────────────────

def _has_dependency(pkg: dict[str, Any], name: str) -> bool:
    for section in ("dependencies", "devDependencies"):
        deps = pkg.get(section)
        if isinstance(deps, dict) and name in deps:
            return True
    return False


def detect_framework(repo_path: str | Path, ctx: ScanContext | None = None) -> FrameworkTag:
    """Return the framework tag for *repo_path* (see module docstring)."""
    if ctx is None:
        ctx = build_scan_context(repo_path)

    pkg = ctx.package_json
    if pkg is not None:
        if _has_dependency(pkg, "vitest"):
            return FrameworkTag.VITEST
        if _has_dependency(pkg, "jest"):
            return FrameworkTag.JEST
        scripts = pkg.get("scripts")
        if isinstance(scripts, dict) and scripts.get("test"):
            return FrameworkTag.NPM_TEST

    for manifest in (ctx.requirements_txt_text, ctx.pyproject_toml_text):
        if manifest and "pytest" in manifest:
            return FrameworkTag.PYTEST

    logger.info("[Discovery] No framework config found, searching for test files")
    if ctx.py_test_files:
        logger.info("[Discovery] Found %d Python test file(s)", len(ctx.py_test_files))
        return FrameworkTag.PYTEST_AUTO
    if ctx.js_test_files:
        logger.info("[Discovery] Found %d JS/TS test file(s)", len(ctx.js_test_files))
        return FrameworkTag.NODE_AUTO

    return FrameworkTag.UNKNOWN
