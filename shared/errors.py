"""Exception hierarchy for the healer.

Anything deriving from :class:`HealerError` that escapes the healing
loop aborts the run.  Recoverable problems are logged and turned into
data by the component that hits them.
"""

from __future__ import annotations


class HealerError(Exception):
    """Base class for fatal run errors."""


class ConfigurationError(HealerError):
    """A required option is missing or malformed."""


class InvalidRepoUrlError(HealerError):
    """The repository URL does not name a GitHub ``owner/repo``."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid GitHub repository URL: {url!r}")


class GitCommandError(HealerError):
    """Raised when a git subprocess exits with a non-zero code."""

    def __init__(self, cmd: list[str], code: int, stderr: str):
        self.cmd = cmd
        self.code = code
        self.stderr = stderr
        super().__init__(f"git {' '.join(cmd[1:])} failed (exit {code}): {stderr}")


class PushPermissionError(HealerError):
    """The remote refused the push for lack of write permission."""


class InferenceError(HealerError):
    """The inference service could not produce a response."""


class ArtifactNotReadyError(HealerError):
    """The workflow run has no downloadable results artifact yet."""
