"""Inference client – one chat completion per call.

Talks to Gemini through its OpenAI-compatible ``/chat/completions``
endpoint.  Rate-limit responses (429) are retried with exponential
backoff; anything else that prevents a response raises
:class:`InferenceError`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from shared.errors import InferenceError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta/openai"
DEFAULT_MODEL = "gemini-2.0-flash"


def strip_code_fences(content: str) -> str:
    """Remove a single markdown fence wrapping *content*, if present."""
    stripped = content.strip()
    if not stripped.startswith("```"):
        return content
    stripped = re.sub(r"^```[\w+-]*\n?", "", stripped)
    stripped = re.sub(r"\n?```$", "", stripped)
    return stripped


class InferenceClient:
    """Minimal async client for an OpenAI-compatible chat endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 60.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    async def complete(self, prompt: str, **params: Any) -> str:
        """Send *prompt* as a single user message and return the reply text."""
        if not self.api_key:
            raise InferenceError("GEMINI_API_KEY is not set")

        payload = {
            "model": self.model,
            **params,
            "messages": [{"role": "user", "content": prompt}],
        }
        url = f"{self.api_base}/chat/completions"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    resp = await client.post(
                        url,
                        headers={
                            "Authorization": f"Bearer {self.api_key}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
                except httpx.HTTPError as exc:
                    raise InferenceError(f"Inference request failed: {exc}") from exc

                if resp.status_code == 429 and attempt < self.max_retries:
                    delay = 2 ** (attempt + 1)  # 2, 4, 8 seconds
                    logger.warning(
                        "LLM rate-limited (429), retrying in %ds (attempt %d/%d)",
                        delay, attempt + 1, self.max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                if resp.status_code != 200:
                    logger.error(
                        "LLM HTTP %d from %s: %s",
                        resp.status_code, self.api_base, resp.text[:500],
                    )
                    raise InferenceError(
                        f"Inference service returned HTTP {resp.status_code}"
                    )

                try:
                    content = resp.json()["choices"][0]["message"]["content"] or ""
                except (ValueError, KeyError, IndexError, TypeError) as exc:
                    raise InferenceError(f"Malformed inference response: {exc}") from exc

                logger.info(
                    "LLM returned %d chars from %s/%s",
                    len(content), self.api_base, self.model,
                )
                return content

        raise InferenceError(f"Inference still rate-limited after {self.max_retries} retries")
