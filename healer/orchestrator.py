"""Run orchestrator – one full healing run from URL to results artifact.

Workflow:
  1. Validate configuration and derive the branch name
  2. Resolve access (push to origin or to a fork)
  3. Clone into a run-scoped ``heal_*`` workspace, set identity, branch
  4. Prepare the environment (best-effort installs)
  5. Run the healing loop
  6. Open the pull request (failures logged, never fatal)
  7. Write results.json into the workspace, commit and push it
  8. Write results.json into the artifact directory

Any exception aborts the run: the artifact is still written with
``finalCIStatus = FAILED`` and the exception is re-raised.  A failed
pull request or results push is logged and does not abort.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from agents.bug_classifier import ErrorClassifier
from agents.dependency_resolver import DependencyResolver
from agents.fixer import FixGenerator
from agents.heal_loop import HealingLoop, ProgressCallback, TestRunnerLike
from agents.inference import InferenceClient
from agents.run_memory import RunMemory
from agents.test_runner import EnvironmentPreparer, TestRunner
from healer.config import HealingConfig
from healer.services.github_service import AccessDecision, GitHubService, build_branch_name
from shared.errors import GitCommandError
from shared.results_exporter import (
    RESULTS_FILENAME,
    build_pr_body,
    build_pr_title,
    build_results,
    export_results,
)
from shared.schemas import CIStatus, RunResult

logger = logging.getLogger(__name__)

RESULTS_COMMIT_MESSAGE = "[AI-AGENT] Add results summary"


@dataclass
class Collaborators:
    """Optional overrides for the services a run builds from its config."""

    github: GitHubService | None = None
    classifier: ErrorClassifier | None = None
    fixer: FixGenerator | None = None
    test_runner_factory: Callable[[Path], TestRunnerLike] | None = None
    environment_factory: Callable[[Path], EnvironmentPreparer] | None = None


def _make_workspace(root: Path | None) -> Path:
    if root is not None:
        root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="heal_", dir=str(root) if root else None))


async def run_agent(
    config: HealingConfig,
    collaborators: Collaborators | None = None,
    on_progress: ProgressCallback = None,
) -> RunResult:
    """Execute one healing run and return the exported result."""
    deps = collaborators or Collaborators()
    start = time.monotonic()
    memory = RunMemory()
    branch = ""
    decision: AccessDecision | None = None
    workspace: Path | None = None

    try:
        config.validate_required()
        branch = build_branch_name(config.team_name, config.leader_name)
        gh = deps.github or GitHubService(
            config.source_control_token,
            fork_settle_seconds=config.fork_settle_seconds,
        )

        # ── 1. Access ─────────────────────────────────────────────
        decision = await asyncio.to_thread(gh.resolve_access, config.repo_url)
        if decision.use_fork:
            logger.info("Forked to %s/%s", decision.push_owner, decision.push_repo)

        # ── 2. Checkout ───────────────────────────────────────────
        workspace = _make_workspace(config.workspace_root)
        await asyncio.to_thread(gh.clone, decision.clone_url, workspace)
        await asyncio.to_thread(
            gh.configure_identity, workspace, config.git_user_name, config.git_user_email,
        )
        await asyncio.to_thread(gh.create_branch, workspace, branch)

        # ── 3. Environment ────────────────────────────────────────
        preparer = (deps.environment_factory or EnvironmentPreparer)(workspace)
        await asyncio.to_thread(preparer.prepare)

        # ── 4. Healing loop ───────────────────────────────────────
        client = None
        if deps.classifier is None or deps.fixer is None:
            client = InferenceClient(
                config.inference_key, model=config.model, api_base=config.api_base,
            )
        loop = HealingLoop(
            repo_path=workspace,
            branch=branch,
            test_runner=(deps.test_runner_factory or TestRunner)(workspace),
            classifier=deps.classifier or ErrorClassifier(client),
            fixer=deps.fixer or FixGenerator(client),
            git=gh,
            memory=memory,
            iteration_budget=config.iteration_budget,
            resolver=DependencyResolver(workspace, enabled=config.auto_install_imports),
            on_progress=on_progress,
        )
        await loop.run()

    except Exception as exc:
        logger.error("Agent execution failed: %s", exc)
        _export_aborted(config, memory, branch, decision, start)
        _cleanup(config, workspace)
        raise

    try:
        result = build_results(
            memory=memory,
            repo_url=config.repo_url,
            branch=branch,
            team_name=config.team_name,
            leader_name=config.leader_name,
            elapsed_seconds=time.monotonic() - start,
            forked=decision.use_fork,
            original_repo=decision.original_full_name if decision.use_fork else None,
            policy=config.score_policy,
        )

        # ── 5. Pull request ───────────────────────────────────────
        result.pull_request_url = await asyncio.to_thread(
            gh.create_pull_request,
            decision, branch, build_pr_title(result), build_pr_body(result),
        )

        # ── 6. Results summary commit ─────────────────────────────
        export_results(result, workspace / RESULTS_FILENAME)
        try:
            await asyncio.to_thread(gh.commit_file, workspace, RESULTS_FILENAME, RESULTS_COMMIT_MESSAGE)
            await asyncio.to_thread(gh.push, workspace, branch)
            memory.record_commit()
            result.total_commits = memory.total_commits
        except GitCommandError as exc:
            logger.warning("Could not push results.json, continuing: %s", exc)

        export_results(result, config.artifact_dir / RESULTS_FILENAME)
    except Exception as exc:
        logger.error("Finalising the run failed: %s", exc)
        _export_aborted(config, memory, branch, decision, start)
        raise
    finally:
        _cleanup(config, workspace)

    logger.info(
        "Run complete | status=%s | failures=%d | fixes=%d | time=%s | score=%d",
        result.final_ci_status.value, result.total_failures, result.total_fixes,
        result.total_time_taken, result.score.final,
    )
    return result


def _cleanup(config: HealingConfig, workspace: Path | None) -> None:
    if config.cleanup_workspace and workspace is not None:
        shutil.rmtree(str(workspace), ignore_errors=True)
        logger.info("Removed workspace %s", workspace)


def _export_aborted(
    config: HealingConfig,
    memory: RunMemory,
    branch: str,
    decision: AccessDecision | None,
    start: float,
) -> None:
    """Write a FAILED artifact for a run that raised."""
    forked = bool(decision and decision.use_fork)
    aborted = build_results(
        memory=memory,
        repo_url=config.repo_url,
        branch=branch,
        team_name=config.team_name,
        leader_name=config.leader_name,
        elapsed_seconds=time.monotonic() - start,
        forked=forked,
        original_repo=decision.original_full_name if forked else None,
        policy=config.score_policy,
        final_ci_status=CIStatus.FAILED,
    )
    export_results(aborted, config.artifact_dir / RESULTS_FILENAME)
