"""Agents package – the components of the CI healing loop."""

from agents.run_memory import RunMemory
from agents.inference import InferenceClient
from agents.bug_classifier import ErrorClassifier
from agents.fixer import FixGenerator
from agents.dependency_resolver import DependencyResolver
from agents.test_runner import EnvironmentPreparer, TestRunner
from agents.heal_loop import HealingLoop, HealLoopResult

__all__ = [
    "RunMemory",
    "InferenceClient",
    "ErrorClassifier",
    "FixGenerator",
    "DependencyResolver",
    "EnvironmentPreparer",
    "TestRunner",
    "HealingLoop",
    "HealLoopResult",
]
