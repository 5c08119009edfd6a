"""Configuration settings for the thinking supervisor."""

from pathlib import Path

from pydantic_settings import BaseSettings

# Package directory (where this file lives)
_PACKAGE_DIR = Path(__file__).parent.parent


def _default_state_dir() -> Path:
    """Resolve the directory used for persisted state.

    Priority:
    1. OVERSEER_STATE_DIR environment variable (handled by pydantic)
    2. .overseer/ folder in the package directory (for repo installs)
    3. ~/.config/overseer (fallback)
    """
    package_state_dir = _PACKAGE_DIR / ".overseer"
    if package_state_dir.exists():
        return package_state_dir
    return Path.home() / ".config" / "overseer"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    state_dir: Path = _default_state_dir()
    supervisors_file: Path | None = None

    # Rule judge
    judge_api_url: str = "https://api.anthropic.com"
    judge_api_key: str = ""
    judge_model: str = "claude-3-5-haiku-20241022"
    judge_max_tokens: int = 150

    # Timeouts (seconds)
    judge_timeout: float = 5.0
    analysis_timeout: float | None = None  # defaults to 2x judge_timeout
    cancel_on_timeout: bool = False

    # Alert history
    history_capacity: int = 100
    history_backend: str = "file"  # file | redis | memory
    history_key: str = "overseer:alert_history"
    redis_url: str = "redis://localhost:16379/0"

    # Stop gate
    gate_host: str = "127.0.0.1"
    gate_port: int = 18899
    gate_port_attempts: int = 10
    pending_alert_window: float = 300.0  # 5 minutes

    # Behavior checks
    detect_scope_reduction: bool = True
    detect_procrastination: bool = True
    verify_completeness: bool = True

    @property
    def analysis_deadline(self) -> float:
        """Deadline for one tree traversal."""
        if self.analysis_timeout is not None:
            return self.analysis_timeout
        return self.judge_timeout * 2

    @property
    def history_file(self) -> Path:
        return self.state_dir / "alert_history.json"

    class Config:
        env_prefix = "OVERSEER_"
        env_file = ".env"


# Global settings instance
settings = Settings()
