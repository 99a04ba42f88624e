"""CI healer – clone, test, fix, push, and report on a GitHub repository."""

__version__ = "0.1.0"
