"""GitHub service – resolve access, clone, branch, commit, push, open PRs.

Uses PyGithub for the GitHub API and subprocess (git CLI) for local
repository operations.  Every blocking call here is meant to be run via
``asyncio.to_thread`` by the orchestrator and the healing loop.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import requests
from github import Github, GithubException

from shared.errors import GitCommandError, InvalidRepoUrlError, PushPermissionError

logger = logging.getLogger(__name__)

# PyGithub surfaces transport failures as requests exceptions.
_API_ERRORS = (GithubException, requests.RequestException)

DEFAULT_FORK_SETTLE_SECONDS = 3.0

_REPO_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")


# ── URL and branch-name helpers ──────────────────────────────────────

def parse_repo_url(url: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a GitHub URL.

    Examples:
        "https://github.com/octo/hello.git" → ("octo", "hello")
        "https://github.com/octo/hello/"    → ("octo", "hello")
    """
    m = _REPO_URL_RE.search(url.strip())
    if not m:
        raise InvalidRepoUrlError(url)
    return m.group(1), m.group(2)


def _clean_name(raw: str) -> str:
    s = re.sub(r"[^A-Z0-9\s]", "", raw.upper())
    return re.sub(r"\s+", "_", s.strip())


def build_branch_name(team_name: str, leader_name: str) -> str:
    """Build the fix branch name from the team and leader names.

    Rules:
    - All UPPERCASE
    - Strip everything except letters, digits and whitespace
    - Whitespace runs → a single underscore
    - Format: TEAM_LEADER_AI_Fix

    Examples:
        ("Team Alpha!", "John  Doe")        → "TEAM_ALPHA_JOHN_DOE_AI_Fix"
        ("RIFT ORGANISERS", "Saiyam Kumar") → "RIFT_ORGANISERS_SAIYAM_KUMAR_AI_Fix"
    """
    return f"{_clean_name(team_name)}_{_clean_name(leader_name)}_AI_Fix"


def is_permission_denied(message: str) -> bool:
    lowered = message.lower()
    return (
        "403" in message
        or "permission denied" in lowered
        or ("permission to" in lowered and "denied" in lowered)
    )


# ── Git CLI wrapper ──────────────────────────────────────────────────

def _redact(text: str, secret: str | None) -> str:
    return text.replace(secret, "***") if secret else text


def _run_git(
    args: list[str],
    cwd: str | Path,
    secret: str | None = None,
    timeout: float = 120,
) -> subprocess.CompletedProcess:
    """Run a git command and return the result."""
    cmd = ["git"] + args
    shown = _redact(" ".join(args), secret)
    logger.debug("git %s  (cwd=%s)", shown, cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.error("git %s timed out after %ss", shown, timeout)
        raise GitCommandError(
            [_redact(part, secret) for part in cmd], -1, f"timed out after {timeout}s",
        ) from None
    if result.returncode != 0:
        stderr = _redact((result.stderr or result.stdout).strip(), secret)
        logger.error("git %s failed: %s", shown, stderr)
        raise GitCommandError(
            [_redact(part, secret) for part in cmd], result.returncode, stderr,
        )
    return result


# ── Access decision ──────────────────────────────────────────────────

@dataclass(frozen=True)
class AccessDecision:
    """Where the run clones from, pushes to, and opens its PR against."""

    use_fork: bool
    clone_url: str
    push_owner: str
    push_repo: str
    original_owner: str
    original_repo: str

    @property
    def original_full_name(self) -> str:
        return f"{self.original_owner}/{self.original_repo}"

    def pr_head(self, branch: str) -> str:
        return f"{self.push_owner}:{branch}" if self.use_fork else branch


# ── GitHub service class ─────────────────────────────────────────────

class GitHubService:
    """High-level helper for access checks, git plumbing and pull requests."""

    def __init__(
        self,
        token: str,
        fork_settle_seconds: float = DEFAULT_FORK_SETTLE_SECONDS,
        pr_retry_backoff: float = 5.0,
        github: Github | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token = token
        self.fork_settle_seconds = fork_settle_seconds
        self.pr_retry_backoff = pr_retry_backoff
        self._gh = github
        self._sleep = sleep

    # -- PyGithub client (lazy) ----------------------------------------

    @property
    def gh(self) -> Github:
        if self._gh is None:
            if not self.token:
                raise ValueError("GITHUB_TOKEN is not set")
            self._gh = Github(self.token)
        return self._gh

    # -- Access ---------------------------------------------------------

    def has_write_access(self, owner: str, repo: str) -> bool:
        """True when the token can push to ``owner/repo``; any error means no."""
        try:
            perms = self.gh.get_repo(f"{owner}/{repo}").permissions
        except GithubException as exc:
            logger.info("Permission check failed for %s/%s: %s", owner, repo, exc)
            return False
        return perms is not None and bool(perms.push or perms.admin)

    def resolve_access(self, repo_url: str) -> AccessDecision:
        """Decide whether to push to the original repository or to a fork.

        An existing ``<login>/<repo>`` fork is reused, so calling this
        twice never creates a second fork.
        """
        owner, repo = parse_repo_url(repo_url)

        if self.has_write_access(owner, repo):
            logger.info("Write access to %s/%s, pushing directly", owner, repo)
            return AccessDecision(
                use_fork=False,
                clone_url=f"https://github.com/{owner}/{repo}.git",
                push_owner=owner,
                push_repo=repo,
                original_owner=owner,
                original_repo=repo,
            )

        login = self.gh.get_user().login
        fork_name = self._find_existing_fork(login, repo) or self._create_fork(owner, repo, login)
        logger.info("Using fork %s/%s of %s/%s", login, fork_name, owner, repo)
        return AccessDecision(
            use_fork=True,
            clone_url=f"https://github.com/{login}/{fork_name}.git",
            push_owner=login,
            push_repo=fork_name,
            original_owner=owner,
            original_repo=repo,
        )

    def _find_existing_fork(self, login: str, repo: str) -> str | None:
        try:
            existing = self.gh.get_repo(f"{login}/{repo}")
        except GithubException as exc:
            if exc.status == 404:
                return None
            raise
        if existing.fork:
            logger.info("Fork already exists: %s/%s", login, existing.name)
            return existing.name
        return None

    def _create_fork(self, owner: str, repo: str, login: str) -> str:
        source = self.gh.get_repo(f"{owner}/{repo}")
        try:
            fork = self.gh.get_user().create_fork(source)
            fork_name = fork.name
        except GithubException as exc:
            message = str(exc.data or exc).lower()
            if exc.status != 202 and "already exists" not in message and "in progress" not in message:
                raise
            logger.info("Fork of %s/%s is in progress (%s)", owner, repo, exc.status)
            fork_name = repo
        logger.info("Forked %s/%s, settling for %.1fs", owner, repo, self.fork_settle_seconds)
        self._sleep(self.fork_settle_seconds)
        return fork_name

    # -- Clone / branch / identity -------------------------------------

    def clone(self, repo_url: str, dest: str | Path) -> Path:
        """Clone *repo_url* into *dest*, authenticating GitHub HTTPS URLs."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info("[GitHubService] Cloning repo | url=%s | dest=%s", repo_url, dest)
        _run_git(
            ["clone", self._authenticated_url(repo_url), str(dest)],
            cwd=dest.parent,
            secret=self.token,
            timeout=600,
        )
        return dest

    def create_branch(self, repo_dir: str | Path, branch: str) -> str:
        _run_git(["checkout", "-b", branch], cwd=repo_dir)
        logger.info("Created branch %s in %s", branch, repo_dir)
        return branch

    def configure_identity(self, repo_dir: str | Path, name: str, email: str) -> None:
        _run_git(["config", "user.name", name], cwd=repo_dir)
        _run_git(["config", "user.email", email], cwd=repo_dir)

    # -- Commit ---------------------------------------------------------

    def commit_file(self, repo_dir: str | Path, file: str, message: str) -> str:
        """Stage *file* and commit it with *message*.

        Raises :class:`GitCommandError` when there is nothing to commit.
        Returns the short commit SHA.
        """
        _run_git(["add", "--", file], cwd=repo_dir)
        _run_git(["commit", "-m", message], cwd=repo_dir)
        sha = _run_git(["rev-parse", "--short", "HEAD"], cwd=repo_dir).stdout.strip()
        logger.info("Committed %s: %s", sha, message)
        return sha

    def unstage(self, repo_dir: str | Path, file: str) -> None:
        _run_git(["reset", "-q", "--", file], cwd=repo_dir)

    # -- Push -----------------------------------------------------------

    def push(self, repo_dir: str | Path, branch: str, force: bool = False) -> None:
        args = ["push", "-u"]
        if force:
            args.append("--force")
        _run_git(args + ["origin", branch], cwd=repo_dir, secret=self.token, timeout=300)
        logger.info("Pushed branch %s%s", branch, " (forced)" if force else "")

    def push_with_retry(self, repo_dir: str | Path, branch: str) -> None:
        """Push *branch*, retrying once with ``--force``.

        A permission denial on either attempt raises
        :class:`PushPermissionError`.  Other failures of the forced
        retry propagate as :class:`GitCommandError`.
        """
        try:
            self.push(repo_dir, branch)
            return
        except GitCommandError as exc:
            if is_permission_denied(exc.stderr):
                raise PushPermissionError(f"Push to {branch} was denied: {exc.stderr}") from exc
            logger.warning("Push failed, retrying with --force: %s", exc.stderr)

        try:
            self.push(repo_dir, branch, force=True)
        except GitCommandError as exc:
            if is_permission_denied(exc.stderr):
                raise PushPermissionError(f"Forced push to {branch} was denied: {exc.stderr}") from exc
            raise

    # -- Pull Request ---------------------------------------------------

    def create_pull_request(
        self,
        decision: AccessDecision,
        branch: str,
        title: str,
        body: str,
        max_retries: int = 3,
    ) -> str | None:
        """Open (or reuse) a PR from *branch* into the original repository.

        Returns the PR URL, or None when every attempt failed.  Never raises.
        """
        head = decision.pr_head(branch)
        try:
            target_repo = self.gh.get_repo(decision.original_full_name)
            base = target_repo.default_branch
        except _API_ERRORS as exc:
            logger.error("[PR] Cannot load %s: %s", decision.original_full_name, exc)
            return None

        try:
            for pr in target_repo.get_pulls(state="open", head=head):
                logger.info("PR already exists: #%d %s", pr.number, pr.html_url)
                return pr.html_url
        except _API_ERRORS as exc:
            logger.warning("Error checking existing PRs: %s", exc)

        last_error: Exception | None = None
        for attempt in range(1, max_retries + 1):
            try:
                pr = target_repo.create_pull(title=title, body=body, head=head, base=base)
                logger.info("Created PR #%d: %s (attempt %d)", pr.number, pr.html_url, attempt)
                return pr.html_url
            except _API_ERRORS as exc:
                last_error = exc
                logger.warning("PR creation attempt %d/%d failed: %s", attempt, max_retries, exc)
                if attempt < max_retries:
                    self._sleep(attempt * self.pr_retry_backoff)

        logger.error("[PR] All %d attempts failed. Last error: %s", max_retries, last_error)
        return None

    # -- Internal -------------------------------------------------------

    def _authenticated_url(self, url: str) -> str:
        """Inject the token into an HTTPS GitHub URL."""
        if not self.token:
            return url
        if url.startswith("https://github.com"):
            return url.replace("https://github.com", f"https://{self.token}@github.com", 1)
        return url
