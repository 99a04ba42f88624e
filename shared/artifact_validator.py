"""Validate a results.json artifact against the dashboard schema.

Checks
------
1. ``branchName`` matches ``TEAM_LEADER_AI_Fix`` (uppercase + underscores).
2. Every ``bugType`` is one of the six known kinds.
3. Every ``commitMessage`` starts with ``[AI-AGENT]``.
4. ``totalFixes`` equals the FIXED count (or, for the unclamped score
   policy, the number of attempts).
5. ``finalCIStatus`` is PASSED or FAILED, and PASSED only when the last
   CI timeline entry passed.
6. No trailing whitespace on top-level string values.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from shared.schemas import BugType

VALID_BUG_TYPES: set[str] = {t.value for t in BugType}

_BRANCH_RE = re.compile(r"^[A-Z0-9]+(_[A-Z0-9]+)*_AI_Fix$")


def _trailing_space(value: str) -> bool:
    """Return True if *value* has trailing whitespace on any line."""
    for line in value.splitlines():
        if line != line.rstrip():
            return True
    return value != value.rstrip()


def validate(results: dict[str, Any]) -> list[str]:
    """Return a list of human-readable mismatch strings (empty == PASS)."""
    errors: list[str] = []

    branch = results.get("branchName", "")
    if not isinstance(branch, str) or not _BRANCH_RE.match(branch):
        errors.append(f"branchName: expected TEAM_LEADER_AI_Fix, got {branch!r}")

    for key in ("repoUrl", "teamName", "leaderName", "branchName", "totalTimeTaken"):
        val = results.get(key, "")
        if isinstance(val, str) and _trailing_space(val):
            errors.append(f"{key}: trailing whitespace in {val!r}")

    fixes = results.get("fixes", [])
    if not isinstance(fixes, list):
        errors.append("fixes: expected a JSON array")
        return errors

    fixed = 0
    for idx, fix in enumerate(fixes):
        prefix = f"fixes[{idx}]"
        bug_type = fix.get("bugType", "")
        if bug_type not in VALID_BUG_TYPES:
            errors.append(
                f"{prefix}.bugType: unknown value {bug_type!r}; "
                f"expected one of {sorted(VALID_BUG_TYPES)}"
            )
        commit_msg = fix.get("commitMessage", "")
        if not commit_msg.startswith("[AI-AGENT]"):
            errors.append(f"{prefix}.commitMessage: must start with [AI-AGENT], got {commit_msg!r}")
        status = fix.get("status")
        if status not in ("FIXED", "FAILED"):
            errors.append(f"{prefix}.status: expected FIXED or FAILED, got {status!r}")
        elif status == "FIXED":
            fixed += 1

    total_fixes = results.get("totalFixes")
    if total_fixes not in (fixed, len(fixes)):
        errors.append(f"totalFixes: {total_fixes!r} matches neither FIXED count {fixed} nor attempts {len(fixes)}")

    final = results.get("finalCIStatus")
    timeline = results.get("ciTimeline", [])
    if final not in ("PASSED", "FAILED"):
        errors.append(f"finalCIStatus: expected PASSED or FAILED, got {final!r}")
    elif final == "PASSED" and not (timeline and timeline[-1].get("passed")):
        errors.append("finalCIStatus: PASSED but the last CI iteration did not pass")

    return errors


def validate_file(path: str | Path) -> list[str]:
    target = Path(path)
    if not target.is_file():
        return [f"{target} not found"]
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except ValueError as exc:
        return [f"{target}: invalid JSON ({exc})"]
    if not isinstance(data, dict):
        return [f"{target}: expected a JSON object"]
    return validate(data)
