"""Configuration loaded from environment variables.

``Settings`` mirrors the process environment (and ``.env``).  The
orchestrator never reads it directly: ``HealingConfig.from_settings``
turns it into an explicit, validated object that is passed down.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from agents.inference import DEFAULT_API_BASE, DEFAULT_MODEL
from shared.errors import ConfigurationError
from shared.schemas import ScorePolicy

DEFAULT_ITERATION_BUDGET = 2


class Settings(BaseSettings):
    REPO_URL: str = ""
    TEAM_NAME: str = ""
    LEADER_NAME: str = ""

    GITHUB_TOKEN: str = ""
    GEMINI_API_KEY: str = ""
    GEMINI_API_BASE: str = DEFAULT_API_BASE
    GEMINI_MODEL: str = DEFAULT_MODEL

    MAX_ITERATIONS: int = DEFAULT_ITERATION_BUDGET
    WORKSPACE_ROOT: str = ""
    ARTIFACT_DIR: str = "."
    CLEANUP_WORKSPACE: bool = False
    SCORE_POLICY: ScorePolicy = ScorePolicy.CLAMPED_FIXED_ONLY
    AUTO_INSTALL_IMPORTS: bool = True
    FORK_SETTLE_SECONDS: float = 3.0

    GIT_USER_NAME: str = "AI Agent"
    GIT_USER_EMAIL: str = "ai-agent@users.noreply.github.com"

    # Dispatch layer (dashboard side)
    WORKFLOW_REPO_OWNER: str = ""
    WORKFLOW_REPO_NAME: str = ""
    WORKFLOW_FILE: str = "run-agent.yml"
    WORKFLOW_REF: str = "main"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/healer.log"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class HealingConfig(BaseModel):
    """Everything one healing run needs, passed explicitly."""

    repo_url: str
    team_name: str
    leader_name: str
    inference_key: str = ""
    source_control_token: str = ""
    iteration_budget: int = Field(default=DEFAULT_ITERATION_BUDGET, ge=1)
    workspace_root: Path | None = None

    artifact_dir: Path = Path(".")
    cleanup_workspace: bool = False
    score_policy: ScorePolicy = ScorePolicy.CLAMPED_FIXED_ONLY
    auto_install_imports: bool = True
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    fork_settle_seconds: float = 3.0
    git_user_name: str = "AI Agent"
    git_user_email: str = "ai-agent@users.noreply.github.com"

    def validate_required(self) -> None:
        """Raise :class:`ConfigurationError` for any missing required value."""
        missing = [
            name for name, value in (
                ("REPO_URL", self.repo_url),
                ("TEAM_NAME", self.team_name),
                ("LEADER_NAME", self.leader_name),
                ("GEMINI_API_KEY", self.inference_key),
                ("GITHUB_TOKEN", self.source_control_token),
            )
            if not value.strip()
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> "HealingConfig":
        values: dict[str, object] = {
            "repo_url": settings.REPO_URL,
            "team_name": settings.TEAM_NAME,
            "leader_name": settings.LEADER_NAME,
            "inference_key": settings.GEMINI_API_KEY,
            "source_control_token": settings.GITHUB_TOKEN,
            "iteration_budget": settings.MAX_ITERATIONS,
            "workspace_root": Path(settings.WORKSPACE_ROOT) if settings.WORKSPACE_ROOT else None,
            "artifact_dir": Path(settings.ARTIFACT_DIR),
            "cleanup_workspace": settings.CLEANUP_WORKSPACE,
            "score_policy": settings.SCORE_POLICY,
            "auto_install_imports": settings.AUTO_INSTALL_IMPORTS,
            "model": settings.GEMINI_MODEL,
            "api_base": settings.GEMINI_API_BASE,
            "fork_settle_seconds": settings.FORK_SETTLE_SECONDS,
            "git_user_name": settings.GIT_USER_NAME,
            "git_user_email": settings.GIT_USER_EMAIL,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
