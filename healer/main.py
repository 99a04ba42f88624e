"""Command-line entry point.

Subcommands::

    ci-healer run        # heal REPO_URL (env or flags), write results.json
    ci-healer trigger    # dispatch the agent workflow on GitHub Actions
    ci-healer status ID  # show a dispatched run's state
    ci-healer results ID # print the run's results.json
    ci-healer validate [PATH]

``run`` exits 0 when the run completed (PASSED or FAILED) and 1 when it
aborted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx
from pydantic import ValidationError

from agents.run_memory import RunMemory
from healer.config import HealingConfig, Settings
from healer.orchestrator import run_agent
from healer.services.workflow_dispatch import WorkflowDispatcher
from shared.artifact_validator import validate_file
from shared.errors import HealerError
from shared.results_exporter import RESULTS_FILENAME, build_results, export_results
from shared.schemas import CIStatus

_logger = logging.getLogger(__name__)


# ── Logging configuration ────────────────────────────────────────────

def _configure_logging(settings: Settings) -> None:
    """Set up root logger with console + file handlers."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.addHandler(console)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # Append mode so logs persist across runs
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    # Quiet noisy third-party loggers
    for noisy in ("httpcore", "httpx", "urllib3", "github", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ── Subcommands ──────────────────────────────────────────────────────

def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    try:
        config = HealingConfig.from_settings(
            settings,
            repo_url=args.repo_url,
            team_name=args.team_name,
            leader_name=args.leader_name,
            iteration_budget=args.max_iterations,
            artifact_dir=Path(args.artifact_dir) if args.artifact_dir else None,
        )
    except ValidationError as exc:
        _logger.error("Invalid configuration: %s", exc)
        _export_rejected(args, settings)
        return 1
    _logger.info(
        "Starting run | repo=%s | team=%s | leader=%s | budget=%d",
        config.repo_url, config.team_name, config.leader_name, config.iteration_budget,
    )
    try:
        result = asyncio.run(run_agent(config))
    except HealerError as exc:
        _logger.error("Run aborted: %s", exc)
        return 1
    except Exception:
        _logger.exception("Run aborted by an unexpected error")
        return 1

    _logger.info(
        "Final status: %s | failures=%d | fixes=%d | time=%s | score=%d",
        result.final_ci_status.value, result.total_failures, result.total_fixes,
        result.total_time_taken, result.score.final,
    )
    return 0


def _export_rejected(args: argparse.Namespace, settings: Settings) -> None:
    """Write a FAILED results.json for a run refused before it started."""
    result = build_results(
        memory=RunMemory(),
        repo_url=args.repo_url or settings.REPO_URL,
        branch="",
        team_name=args.team_name or settings.TEAM_NAME,
        leader_name=args.leader_name or settings.LEADER_NAME,
        elapsed_seconds=0,
        final_ci_status=CIStatus.FAILED,
    )
    export_results(result, Path(args.artifact_dir or settings.ARTIFACT_DIR) / RESULTS_FILENAME)


def _dispatcher(settings: Settings) -> WorkflowDispatcher:
    return WorkflowDispatcher(
        token=settings.GITHUB_TOKEN,
        owner=settings.WORKFLOW_REPO_OWNER,
        repo=settings.WORKFLOW_REPO_NAME,
        workflow_file=settings.WORKFLOW_FILE,
        ref=settings.WORKFLOW_REF,
    )


def _cmd_trigger(args: argparse.Namespace, settings: Settings) -> int:
    run = asyncio.run(_dispatcher(settings).trigger_run(args.repo_url, args.team_name, args.leader_name))
    print(json.dumps(run.to_dict(), indent=2))
    return 0


def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    status = asyncio.run(_dispatcher(settings).poll_status(args.run_id))
    print(json.dumps(status.to_dict(), indent=2))
    return 0


def _cmd_results(args: argparse.Namespace, settings: Settings) -> int:
    results = asyncio.run(_dispatcher(settings).fetch_artifact(args.run_id))
    print(json.dumps(results, indent=2))
    return 0


def _cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    errors = validate_file(args.path)
    if errors:
        print(f"FAIL: {len(errors)} issue(s)\n")
        for e in errors:
            print(f"  • {e}")
        return 1
    print("PASS")
    return 0


# ── Argument parsing ─────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ci-healer",
        description="Clone a repository, heal its failing tests, and open a pull request.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the healing agent")
    run.add_argument("--repo-url", default=None)
    run.add_argument("--team-name", default=None)
    run.add_argument("--leader-name", default=None)
    run.add_argument("--max-iterations", type=int, default=None)
    run.add_argument("--artifact-dir", default=None)
    run.set_defaults(handler=_cmd_run)

    trigger = sub.add_parser("trigger", help="dispatch the agent workflow")
    trigger.add_argument("--repo-url", required=True)
    trigger.add_argument("--team-name", required=True)
    trigger.add_argument("--leader-name", required=True)
    trigger.set_defaults(handler=_cmd_trigger)

    status = sub.add_parser("status", help="show a workflow run's status")
    status.add_argument("run_id", type=int)
    status.set_defaults(handler=_cmd_status)

    results = sub.add_parser("results", help="print a workflow run's results.json")
    results.add_argument("run_id", type=int)
    results.set_defaults(handler=_cmd_results)

    validate = sub.add_parser("validate", help="validate a results.json file")
    validate.add_argument("path", nargs="?", default=RESULTS_FILENAME)
    validate.set_defaults(handler=_cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    _configure_logging(settings)
    try:
        return args.handler(args, settings)
    except (HealerError, httpx.HTTPError) as exc:
        _logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
