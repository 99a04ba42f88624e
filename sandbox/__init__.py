"""Sandbox – process execution inside the cloned working copy."""

from sandbox.executor import ProcessExecutor, ExecutionResult

__all__ = ["ProcessExecutor", "ExecutionResult"]
