"""Tests for the inference client, the fix generator and the import resolver."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agents.dependency_resolver import DependencyResolver, extract_module_name
from agents.fixer import FixGenerator, extract_snippet
from agents.inference import InferenceClient, strip_code_fences
from sandbox.executor import ExecutionResult
from shared.determinism import FIX_TEMPERATURE
from shared.errors import InferenceError
from shared.schemas import BugType, ClassifiedError


def _reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ── InferenceClient ──────────────────────────────────────────────────

class TestInferenceClient:

    def test_posts_openai_compatible_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _reply("hello")

        client = InferenceClient(
            "key-123", model="m1", api_base="https://llm.test/v1",
            transport=httpx.MockTransport(handler),
        )
        assert asyncio.run(client.complete("hi", temperature=0.3)) == "hello"

        (request,) = seen
        assert request.url == "https://llm.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer key-123"
        body = json.loads(request.content)
        assert body["model"] == "m1"
        assert body["temperature"] == 0.3
        assert body["messages"] == [{"role": "user", "content": "hi"}]

    def test_retries_rate_limit(self):
        responses = iter([httpx.Response(429), httpx.Response(429), _reply("ok")])
        client = InferenceClient("k", transport=httpx.MockTransport(lambda r: next(responses)))

        with patch("agents.inference.asyncio.sleep", new=AsyncMock()) as sleep:
            assert asyncio.run(client.complete("x")) == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [2, 4]

    def test_rate_limit_exhausted_raises(self):
        client = InferenceClient(
            "k", max_retries=1, transport=httpx.MockTransport(lambda r: httpx.Response(429)),
        )
        with patch("agents.inference.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(InferenceError):
                asyncio.run(client.complete("x"))

    def test_server_error_raises(self):
        client = InferenceClient("k", transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
        with pytest.raises(InferenceError, match="500"):
            asyncio.run(client.complete("x"))

    def test_malformed_body_raises(self):
        client = InferenceClient("k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        with pytest.raises(InferenceError, match="Malformed"):
            asyncio.run(client.complete("x"))

    def test_missing_key_raises(self):
        with pytest.raises(InferenceError):
            asyncio.run(InferenceClient("").complete("x"))


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```python\nx = 1\n```", "x = 1"),
        ("```\nx = 1\n```", "x = 1"),
        ("x = 1\n", "x = 1\n"),
    ],
)
def test_strip_code_fences(raw, expected):
    assert strip_code_fences(raw) == expected


# ── FixGenerator ─────────────────────────────────────────────────────

class TestFixGenerator:

    def _client(self, reply: str) -> MagicMock:
        client = MagicMock()
        client.complete = AsyncMock(return_value=reply)
        return client

    def test_prompt_carries_error_metadata(self):
        client = self._client("```python\ndef f():\n    return 1\n```")
        fixed = asyncio.run(FixGenerator(client).generate_fix(
            "m.py", 1, BugType.SYNTAX, "missing colon", "def f()\n    return 1\n",
        ))

        assert fixed == "def f():\n    return 1\n"
        prompt = client.complete.call_args.args[0]
        assert "Fix this SYNTAX error." in prompt
        assert "File: m.py" in prompt
        assert "Line: 1" in prompt
        assert "Error: missing colon" in prompt
        assert client.complete.call_args.kwargs["temperature"] == FIX_TEMPERATURE

    def test_empty_reply_returns_original(self):
        content = "x = 1\n"
        fixed = asyncio.run(FixGenerator(self._client("  \n")).generate_fix(
            "m.py", 1, BugType.LOGIC, "", content,
        ))
        assert fixed == content


class TestExtractSnippet:

    CONTENT = "\n".join(f"line{i}" for i in range(1, 11))

    def test_window_is_three_lines_each_side(self):
        assert extract_snippet(self.CONTENT, 5) == "\n".join(f"line{i}" for i in range(2, 9))

    def test_clamped_at_start(self):
        assert extract_snippet(self.CONTENT, 1) == "line1\nline2\nline3\nline4"

    def test_clamped_at_end(self):
        assert extract_snippet(self.CONTENT, 10) == "line7\nline8\nline9\nline10"

    def test_line_past_end_is_empty(self):
        assert extract_snippet("a\nb", 50) == ""


# ── DependencyResolver ───────────────────────────────────────────────

class TestDependencyResolver:

    @pytest.mark.parametrize(
        "description, expected",
        [
            ("No module named 'requests'", "requests"),
            ('Cannot find module "lodash"', "lodash"),
            ("ModuleNotFoundError: No module named yaml", "yaml"),
            ("something else entirely", None),
        ],
    )
    def test_extract_module_name(self, description, expected):
        assert extract_module_name(description) == expected

    def test_python_import_uses_pip_with_distribution_name(self, tmp_path):
        executor = MagicMock()
        executor.run.return_value = ExecutionResult(exit_code=0, stdout="", stderr="")
        resolver = DependencyResolver(tmp_path, executor=executor)

        ok = resolver.resolve(ClassifiedError(BugType.IMPORT, "app.py", 1, "No module named 'yaml'"))

        assert ok
        command = executor.run.call_args.args[0]
        assert "-m pip install pyyaml" in command
        assert executor.run.call_args.kwargs["timeout"] == 60

    def test_js_import_uses_npm(self, tmp_path):
        executor = MagicMock()
        executor.run.return_value = ExecutionResult(exit_code=0, stdout="", stderr="")
        resolver = DependencyResolver(tmp_path, executor=executor)

        resolver.resolve(ClassifiedError(BugType.IMPORT, "src/a.ts", 1, "Cannot find module 'chalk'"))

        assert executor.run.call_args.args[0] == "npm install chalk"

    def test_failures_never_raise(self, tmp_path):
        executor = MagicMock()
        executor.run.side_effect = OSError("no pip")
        resolver = DependencyResolver(tmp_path, executor=executor)
        assert resolver.resolve(ClassifiedError(BugType.IMPORT, "a.py", 1, "'x'")) is False

    def test_disabled_resolver_does_nothing(self, tmp_path):
        executor = MagicMock()
        resolver = DependencyResolver(tmp_path, executor=executor, enabled=False)
        assert resolver.resolve(ClassifiedError(BugType.IMPORT, "a.py", 1, "'x'")) is False
        executor.run.assert_not_called()

    def test_non_import_errors_are_ignored(self, tmp_path):
        executor = MagicMock()
        resolver = DependencyResolver(tmp_path, executor=executor)
        assert resolver.resolve(ClassifiedError(BugType.LOGIC, "a.py", 1, "'x'")) is False
        executor.run.assert_not_called()
