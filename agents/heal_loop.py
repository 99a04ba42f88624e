"""Heal Loop – bounded test → classify → fix → push cycle.

The loop is a **LangGraph StateGraph** with four nodes::

    node_run_tests → node_classify → node_apply_fixes → node_push
          ↑                │                               │
          └────────────────┴───────────────────────────────┘

Edges out of each node decide between continuing and stopping:

  • after run_tests: a passing run ends the loop as PASSED
  • after classify:  no parseable errors skips straight to the next
    run, or ends as FAILED on the last iteration
  • after push:      the next iteration, or FAILED once the budget is spent

The number of test runs never exceeds the iteration budget.  Exceptions
escaping a node (push permission denied, git failures outside a fix,
inference failures while classifying) abort the loop and propagate.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, TypedDict

from langgraph.graph import END, StateGraph

from agents.dependency_resolver import DependencyResolver
from agents.fixer import FixGenerator, extract_snippet
from agents.bug_classifier import ErrorClassifier
from agents.run_memory import RunMemory
from sandbox.executor import ExecutionResult
from shared.errors import GitCommandError
from shared.schemas import BugType, CIStatus, ClassifiedError, FixRecord, FixStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str, str], None] | None


class TestRunnerLike(Protocol):
    def run_tests(self) -> ExecutionResult: ...


class GitOps(Protocol):
    def commit_file(self, repo_dir: str | Path, file: str, message: str) -> str: ...
    def unstage(self, repo_dir: str | Path, file: str) -> None: ...
    def push_with_retry(self, repo_dir: str | Path, branch: str) -> None: ...


# ── Result dataclass ─────────────────────────────────────────────────

@dataclass
class HealLoopResult:
    """Terminal state of the loop."""

    status: CIStatus
    iterations_used: int
    iteration_budget: int
    fixes_attempted: int
    fixes_applied: int


# ── LangGraph state schema ───────────────────────────────────────────

class HealState(TypedDict, total=False):
    iteration: int
    passed: bool
    test_output: str
    errors: list[ClassifiedError]


# ── File helpers ─────────────────────────────────────────────────────

def _read_source(path: Path) -> str:
    with open(path, encoding="utf-8", newline="") as fh:
        return fh.read()


def _write_source(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(content)


def _default_error_message(error: ClassifiedError) -> str:
    return error.description or f"{error.bug_type.value} error detected"


# ── Healing loop ─────────────────────────────────────────────────────

class HealingLoop:
    """Drive one repository towards a passing test run.

    All collaborators are injected; the loop itself only sequences them
    and records what happened in :class:`RunMemory`.
    """

    def __init__(
        self,
        repo_path: str | Path,
        branch: str,
        test_runner: TestRunnerLike,
        classifier: ErrorClassifier,
        fixer: FixGenerator,
        git: GitOps,
        memory: RunMemory,
        iteration_budget: int = 2,
        resolver: DependencyResolver | None = None,
        on_progress: ProgressCallback = None,
    ):
        if iteration_budget < 1:
            raise ValueError("iteration_budget must be at least 1")
        self.repo_path = Path(repo_path).resolve()
        self.branch = branch
        self.test_runner = test_runner
        self.classifier = classifier
        self.fixer = fixer
        self.git = git
        self.memory = memory
        self.iteration_budget = iteration_budget
        self.resolver = resolver
        self.on_progress = on_progress
        self._graph = self._build_graph()

    # ── Graph construction ───────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(HealState)
        graph.add_node("node_run_tests", self._node_run_tests)
        graph.add_node("node_classify", self._node_classify)
        graph.add_node("node_apply_fixes", self._node_apply_fixes)
        graph.add_node("node_push", self._node_push)

        graph.set_entry_point("node_run_tests")
        graph.add_conditional_edges(
            "node_run_tests",
            self._edge_after_run_tests,
            {"node_classify": "node_classify", END: END},
        )
        graph.add_conditional_edges(
            "node_classify",
            self._edge_after_classify,
            {"node_apply_fixes": "node_apply_fixes", "node_run_tests": "node_run_tests", END: END},
        )
        graph.add_edge("node_apply_fixes", "node_push")
        graph.add_conditional_edges(
            "node_push",
            self._edge_next_iteration,
            {"node_run_tests": "node_run_tests", END: END},
        )
        return graph.compile()

    # ── Public API ───────────────────────────────────────────────────

    async def run(self) -> HealLoopResult:
        logger.info(
            "═══ Heal Loop started | branch=%s | budget=%d ═══",
            self.branch, self.iteration_budget,
        )
        _emit(self.on_progress, "heal_loop", "running",
              f"Starting heal loop (budget {self.iteration_budget})")

        final: HealState = await self._graph.ainvoke(
            {"iteration": 0, "passed": False, "test_output": "", "errors": []},
            {"recursion_limit": 4 * self.iteration_budget + 5},
        )

        status = CIStatus.PASSED if final.get("passed") else CIStatus.FAILED
        fixes = self.memory.fixes
        result = HealLoopResult(
            status=status,
            iterations_used=final.get("iteration", 0),
            iteration_budget=self.iteration_budget,
            fixes_attempted=len(fixes),
            fixes_applied=sum(1 for f in fixes if f.status is FixStatus.FIXED),
        )
        logger.info(
            "Heal loop %s after %d/%d iteration(s), %d/%d fix(es) committed",
            status.value, result.iterations_used, self.iteration_budget,
            result.fixes_applied, result.fixes_attempted,
        )
        _emit(self.on_progress, "heal_loop", "completed", f"Heal loop {status.value}")
        return result

    # ── Nodes ────────────────────────────────────────────────────────

    async def _node_run_tests(self, state: HealState) -> HealState:
        iteration = state.get("iteration", 0) + 1
        logger.info("═══ CI iteration %d/%d ═══", iteration, self.iteration_budget)
        _emit(self.on_progress, "test_runner", "started", f"[iter {iteration}] Running tests")

        result = await asyncio.to_thread(self.test_runner.run_tests)
        passed = result.exit_code == 0
        self.memory.record_ci_run(iteration, passed)

        logger.info("[iter %d] Tests %s (exit %d)", iteration,
                    "passed" if passed else "failed", result.exit_code)
        return {
            "iteration": iteration,
            "passed": passed,
            "test_output": result.combined,
            "errors": [],
        }

    async def _node_classify(self, state: HealState) -> HealState:
        iteration = state["iteration"]
        _emit(self.on_progress, "classifier", "started", f"[iter {iteration}] Classifying errors")

        errors = await self.classifier.classify(state.get("test_output", ""))
        self.memory.record_failures(errors)

        if not errors and iteration >= self.iteration_budget:
            logger.warning(
                "[iter %d] Tests fail but no errors could be classified. Possible causes: "
                "missing dependencies, configuration problems, or an environment "
                "mismatch (Python/Node version).",
                iteration,
            )
        elif not errors:
            logger.info("[iter %d] No classifiable errors, retrying test run", iteration)
        return {"errors": errors}

    async def _node_apply_fixes(self, state: HealState) -> HealState:
        iteration = state["iteration"]
        errors = state.get("errors", [])
        _emit(self.on_progress, "fixer", "started",
              f"[iter {iteration}] Fixing {len(errors)} error(s)")

        for error in errors:
            record = await self._apply_fix(error, iteration)
            self.memory.record_fix(record)
        return {"errors": errors}

    async def _node_push(self, state: HealState) -> HealState:
        _emit(self.on_progress, "git", "started", f"[iter {state['iteration']}] Pushing {self.branch}")
        await asyncio.to_thread(self.git.push_with_retry, self.repo_path, self.branch)
        return {"iteration": state["iteration"]}

    # ── Edges ────────────────────────────────────────────────────────

    def _edge_after_run_tests(self, state: HealState) -> str:
        return END if state.get("passed") else "node_classify"

    def _edge_after_classify(self, state: HealState) -> str:
        if state.get("errors"):
            return "node_apply_fixes"
        return self._edge_next_iteration(state)

    def _edge_next_iteration(self, state: HealState) -> str:
        return "node_run_tests" if state["iteration"] < self.iteration_budget else END

    # ── Per-error fix ────────────────────────────────────────────────

    def _resolve_in_repo(self, file: str) -> tuple[Path, str] | None:
        """Map *file* to a path inside the working copy, or None if it escapes."""
        candidate = Path(file)
        path = candidate if candidate.is_absolute() else self.repo_path / candidate
        try:
            resolved = path.resolve()
            rel = resolved.relative_to(self.repo_path)
        except (OSError, ValueError):
            return None
        return resolved, rel.as_posix()

    async def _apply_fix(self, error: ClassifiedError, iteration: int) -> FixRecord:
        bug = error.bug_type.value

        if error.bug_type is BugType.IMPORT and self.resolver is not None:
            await asyncio.to_thread(self.resolver.resolve, error)

        located = self._resolve_in_repo(error.file)
        if located is None or not located[0].is_file():
            logger.warning("[iter %d] File not found: %s", iteration, error.file)
            return FixRecord(
                file=error.file,
                bug_type=error.bug_type,
                line=error.line,
                commit_message=f"[AI-AGENT] Could not fix {bug} in {error.file} - file not found",
                status=FixStatus.FAILED,
                error_message=_default_error_message(error),
                description="File not found in repository",
                iteration=iteration,
            )

        path, rel = located
        original: str | None = None
        written = False
        try:
            original = _read_source(path)
            fixed = await self.fixer.generate_fix(
                error.file, error.line, error.bug_type, error.description, original,
            )
            before = extract_snippet(original, error.line)
            after = extract_snippet(fixed, error.line)

            _write_source(path, fixed)
            written = True
            message = f"[AI-AGENT] Fix {bug} in {error.file} line {error.line}"
            await asyncio.to_thread(self.git.commit_file, self.repo_path, rel, message)
        except Exception as exc:
            logger.error("[iter %d] Failed to fix %s:%d: %s", iteration, error.file, error.line, exc)
            if written and original is not None:
                self._restore(path, rel, original)
            return FixRecord(
                file=error.file,
                bug_type=error.bug_type,
                line=error.line,
                commit_message=f"[AI-AGENT] Failed to fix {bug} in {error.file}",
                status=FixStatus.FAILED,
                error_message=_default_error_message(error),
                description=f"Fix failed: {exc}",
                iteration=iteration,
            )

        logger.info("[iter %d] Fixed and committed %s:%d", iteration, error.file, error.line)
        return FixRecord(
            file=error.file,
            bug_type=error.bug_type,
            line=error.line,
            commit_message=message,
            status=FixStatus.FIXED,
            error_message=_default_error_message(error),
            before_code=before,
            after_code=after,
            description=error.description,
            iteration=iteration,
        )

    def _restore(self, path: Path, rel: str, original: str) -> None:
        _write_source(path, original)
        try:
            self.git.unstage(self.repo_path, rel)
        except GitCommandError as exc:
            logger.warning("Could not unstage %s after failed fix: %s", rel, exc.stderr)


def _emit(
    callback: ProgressCallback,
    agent: str,
    status: str,
    message: str,
) -> None:
    """Fire the progress callback if set."""
    if callback is not None:
        try:
            callback(agent, status, message)
        except Exception:
            logger.exception("Progress callback failed for %s", agent)
