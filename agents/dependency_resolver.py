"""Best-effort installer for modules named in IMPORT errors.

When the classifier reports an IMPORT failure the healing loop first
asks this resolver to install the missing module, then goes on to
attempt a code fix as usual.  Installs are bounded by a timeout, never
raise, and do not count as commits or iterations.
"""

from __future__ import annotations

import logging
import re
import shlex
import sys
from pathlib import Path

from sandbox.executor import ProcessExecutor
from shared.schemas import BugType, ClassifiedError

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT_S = 60

_QUOTED_NAME_RE = re.compile(r"""['"](\w+)['"]""")
_NO_MODULE_RE = re.compile(r"No module named (\w+)")

# Import names whose distribution is published under another name.
_PIP_NAMES = {
    "yaml": "pyyaml",
    "cv2": "opencv-python",
    "PIL": "Pillow",
    "sklearn": "scikit-learn",
    "bs4": "beautifulsoup4",
    "dateutil": "python-dateutil",
    "dotenv": "python-dotenv",
}

_PY_SUFFIXES = {".py"}
_JS_SUFFIXES = {".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"}


def extract_module_name(description: str) -> str | None:
    """Pull the first quoted identifier (or ``No module named X``) out of *description*."""
    m = _QUOTED_NAME_RE.search(description) or _NO_MODULE_RE.search(description)
    return m.group(1) if m else None


class DependencyResolver:
    """Install packages for IMPORT errors, logging instead of raising."""

    def __init__(
        self,
        repo_path: str | Path,
        executor: ProcessExecutor | None = None,
        enabled: bool = True,
    ):
        self.repo_path = Path(repo_path)
        self.executor = executor or ProcessExecutor(self.repo_path)
        self.enabled = enabled
        self.installed: list[str] = []

    def install_command(self, error: ClassifiedError) -> str | None:
        """Return the install command for *error*, or None when none applies."""
        if error.bug_type is not BugType.IMPORT:
            return None
        module = extract_module_name(error.description)
        if module is None:
            return None

        suffix = Path(error.file).suffix
        if suffix in _PY_SUFFIXES:
            package = _PIP_NAMES.get(module, module)
            return f"{shlex.quote(sys.executable)} -m pip install {shlex.quote(package)}"
        if suffix in _JS_SUFFIXES:
            return f"npm install {shlex.quote(module)}"
        return None

    def resolve(self, error: ClassifiedError) -> bool:
        """Try to install the module *error* complains about.

        Returns True when an install ran and exited cleanly.
        """
        if not self.enabled:
            return False
        command = self.install_command(error)
        if command is None:
            logger.debug("[Resolver] No installable module in: %s", error.description)
            return False

        logger.info("[Resolver] Installing for IMPORT error in %s: %s", error.file, command)
        try:
            result = self.executor.run(command, timeout=INSTALL_TIMEOUT_S)
        except OSError as exc:
            logger.warning("[Resolver] Could not run %s: %s", command, exc)
            return False

        if not result.success:
            logger.warning("[Resolver] Install failed (exit %d): %s", result.exit_code, command)
            return False
        self.installed.append(command)
        return True
