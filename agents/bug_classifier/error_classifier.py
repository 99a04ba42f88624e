"""Error Classifier – turns raw test output into typed failures.

The raw output is sent to the inference service with a prompt that asks
for one line per error in a fixed grammar::

    <TYPE> error in <file> line <n> → Fix: <description>

The reply is parsed line by line.  Each line goes through three stages
in order and the first one that matches wins:

  1. the structured grammar above (``→`` or ``->``)
  2. pytest summary lines  ``FAILED path::test - Exception``
  3. jest/vitest headers   ``● suite › test name``

Stages return tagged results (:class:`GrammarMatch`,
:class:`FallbackMatch`, :class:`NoMatch`) so callers and tests can see
which path produced a record.  Unmatched lines are dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Union

from agents.inference import InferenceClient
from shared.determinism import CLASSIFY_PARAMS
from shared.schemas import BugType, ClassifiedError

logger = logging.getLogger(__name__)


# ── Prompt ───────────────────────────────────────────────────────────

CLASSIFY_PROMPT = """\
You are an expert code analyzer. Analyze this test failure output and extract ALL errors.

For EACH error, classify it into EXACTLY one of these categories:
- LINTING: Style issues, formatting, unused imports
- SYNTAX: Missing colons, brackets, parentheses
- LOGIC: Wrong logic, incorrect conditions
- TYPE_ERROR: Type mismatches, undefined variables
- IMPORT: Missing or incorrect imports
- INDENTATION: Spacing/tab issues

Output format (MUST match exactly):
<BUG_TYPE> error in <file_path> line <line_number> → Fix: <one-line description>

Test output:
{output}

Extract and classify ALL errors now:"""


# ── Parse outcomes ───────────────────────────────────────────────────

@dataclass(frozen=True)
class GrammarMatch:
    error: ClassifiedError


@dataclass(frozen=True)
class FallbackMatch:
    error: ClassifiedError
    pattern: str  # "pytest" | "jest"


@dataclass(frozen=True)
class NoMatch:
    line: str


ParseOutcome = Union[GrammarMatch, FallbackMatch, NoMatch]


_GRAMMAR_RE = re.compile(
    r"^(?P<type>\w+) error in (?P<file>.+?) line (?P<line>\d+) (?:→|->) Fix: (?P<desc>.+)$"
)
_PYTEST_RE = re.compile(r"FAILED (?P<file>.+?)::(?P<test>.+?) - (?P<exc>\w+)")
_JEST_RE = re.compile(r"● (?P<suite>.+?) › (?P<name>.+)")

# List bullets models like to prefix each line with.
_BULLET_RE = re.compile(r"^(?:[-*]\s+|\d+\.\s+)")


def _pytest_bug_type(exception_name: str) -> BugType:
    if "Syntax" in exception_name:
        return BugType.SYNTAX
    if "Import" in exception_name:
        return BugType.IMPORT
    if "Type" in exception_name:
        return BugType.TYPE_ERROR
    return BugType.LOGIC


def parse_line(line: str) -> ParseOutcome:
    """Classify a single reply line."""
    text = line.strip()
    candidate = _BULLET_RE.sub("", text)
    if len(candidate) > 1 and candidate[0] == candidate[-1] == "`":
        candidate = candidate[1:-1].strip()

    m = _GRAMMAR_RE.match(candidate)
    if m:
        bug_type = BugType.parse(m.group("type"))
        if bug_type is not None:
            line_no = int(m.group("line"))
            return GrammarMatch(ClassifiedError(
                bug_type=bug_type,
                file=m.group("file").strip(),
                line=line_no if line_no > 0 else 1,
                description=m.group("desc").strip(),
            ))

    m = _PYTEST_RE.search(text)
    if m:
        exc = m.group("exc")
        return FallbackMatch(ClassifiedError(
            bug_type=_pytest_bug_type(exc),
            file=m.group("file").strip(),
            line=1,
            description=f"Test {m.group('test')} failed with {exc}",
        ), pattern="pytest")

    m = _JEST_RE.search(text)
    if m:
        return FallbackMatch(ClassifiedError(
            bug_type=BugType.LOGIC,
            file="test file",
            line=1,
            description=m.group("name").strip(),
        ), pattern="jest")

    return NoMatch(line)


def parse_errors(reply: str) -> list[ClassifiedError]:
    """Parse every line of *reply*, keeping matches in their original order."""
    errors: list[ClassifiedError] = []
    dropped = 0
    for raw in reply.splitlines():
        outcome = parse_line(raw)
        if isinstance(outcome, NoMatch):
            if raw.strip():
                dropped += 1
            continue
        errors.append(outcome.error)
    logger.debug("[Classifier] parsed=%d dropped=%d", len(errors), dropped)
    return errors


# ── Classifier ───────────────────────────────────────────────────────

class ErrorClassifier:
    """Classify raw test output through one inference call."""

    def __init__(self, client: InferenceClient):
        self.client = client

    async def classify(self, raw_output: str) -> list[ClassifiedError]:
        """Return the classified errors found in *raw_output*.

        An empty list means the model reported nothing parseable.
        Inference failures raise :class:`shared.errors.InferenceError`.
        """
        reply = await self.client.complete(
            CLASSIFY_PROMPT.format(output=raw_output),
            **CLASSIFY_PARAMS,
        )
        errors = parse_errors(reply)
        logger.info(
            "[Classifier] %d error(s): %s",
            len(errors),
            ", ".join(f"{e.bug_type.value}@{e.file}:{e.line}" for e in errors) or "none",
        )
        return errors
