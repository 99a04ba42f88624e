"""Fix Generator – asks the model for a corrected version of a whole file.

One inference call per classified error.  The generator has no
filesystem side effects: the healing loop reads the file, hands its
content here, and writes whatever comes back.

Output handling:
  • A single markdown fence wrapping the reply is removed
  • An empty reply means "no change" and returns the input unchanged
  • A trailing newline present in the input is preserved
"""

from __future__ import annotations

import logging

from agents.inference import InferenceClient, strip_code_fences
from shared.determinism import FIX_PARAMS
from shared.schemas import BugType

logger = logging.getLogger(__name__)

SNIPPET_CONTEXT_LINES = 3

FIX_PROMPT = """\
You are an expert programmer. Fix this {bug_type} error.

File: {file}
Line: {line}
Error: {description}

Current code:
```
{content}
```

Provide ONLY the corrected code, no explanations:"""


def extract_snippet(content: str, line: int, context: int = SNIPPET_CONTEXT_LINES) -> str:
    """Return the lines within *context* of the 1-based *line*, clamped to the file."""
    lines = content.split("\n")
    start = max(0, line - context - 1)
    end = min(len(lines), line + context)
    return "\n".join(lines[start:end])


class FixGenerator:
    """Produce replacement file content for one classified error."""

    def __init__(self, client: InferenceClient):
        self.client = client

    async def generate_fix(
        self,
        file: str,
        line: int,
        bug_type: BugType,
        description: str,
        content: str,
    ) -> str:
        prompt = FIX_PROMPT.format(
            bug_type=bug_type.value,
            file=file,
            line=line,
            description=description,
            content=content,
        )
        reply = await self.client.complete(prompt, **FIX_PARAMS)

        fixed = strip_code_fences(reply)
        if not fixed.strip():
            logger.warning("[Fixer] Empty reply for %s:%d, keeping original", file, line)
            return content

        if content.endswith("\n") and not fixed.endswith("\n"):
            fixed += "\n"

        logger.info(
            "[Fixer] %s fix for %s:%d (%d -> %d chars)",
            bug_type.value, file, line, len(content), len(fixed),
        )
        return fixed
