"""
Rapport Configuration

Loads configuration from environment variables with sensible defaults.
Component tunables (trust tables, recall weights, archetype impacts) live in
the dataclass configs next to each component; this module only covers the
process-level knobs that deployments usually set through the environment.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration loaded from environment variables."""

    # Text generation (optional flavour collaborator)
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-5-nano")
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    TEXT_GENERATION_ENABLED: bool = _env_flag("RAPPORT_TEXT_GENERATION")
    # Hard ceiling for a single generated utterance; replies never wait longer.
    TEXT_TIMEOUT_SECONDS: float = float(os.getenv("RAPPORT_TEXT_TIMEOUT_SECONDS", "4.0"))
    # Minimum spacing between generator calls (coarse rate limit).
    TEXT_MIN_INTERVAL_SECONDS: float = float(
        os.getenv("RAPPORT_TEXT_MIN_INTERVAL_SECONDS", "2.0")
    )

    # Conversation bus pacing
    REPLY_DELAY_MIN_MS: int = int(os.getenv("RAPPORT_REPLY_DELAY_MIN_MS", "350"))
    REPLY_DELAY_MAX_MS: int = int(os.getenv("RAPPORT_REPLY_DELAY_MAX_MS", "750"))
    MAX_THREAD_EXCHANGES: int = int(os.getenv("RAPPORT_MAX_THREAD_EXCHANGES", "20"))
    MAX_REPLY_DEPTH: int = int(os.getenv("RAPPORT_MAX_REPLY_DEPTH", "2"))
    BANTER_COOLDOWN_SECONDS: float = float(
        os.getenv("RAPPORT_BANTER_COOLDOWN_SECONDS", "90")
    )

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "postgresql://localhost/rapport")
    SAVE_DIR: Path = Path(os.getenv("RAPPORT_SAVE_DIR", "rapport_saves"))

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    CASTS_DIR: Path = PROJECT_ROOT / "examples" / "casts"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.REPLY_DELAY_MIN_MS < 0 or cls.REPLY_DELAY_MAX_MS < cls.REPLY_DELAY_MIN_MS:
            raise ValueError(
                "RAPPORT_REPLY_DELAY_MIN_MS must be >= 0 and <= RAPPORT_REPLY_DELAY_MAX_MS"
            )

        if cls.MAX_THREAD_EXCHANGES < 1:
            raise ValueError("RAPPORT_MAX_THREAD_EXCHANGES must be at least 1")

        # Keys only matter when the generator is switched on; template fallback
        # needs nothing.
        if not cls.TEXT_GENERATION_ENABLED:
            return

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when RAPPORT_TEXT_GENERATION is on "
                "with the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when RAPPORT_TEXT_GENERATION is on "
                "with the 'openai' provider. Disable text generation to use "
                "template replies only."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        generation = (
            f"{cls.LLM_PROVIDER}/{cls.LLM_MODEL}" if cls.TEXT_GENERATION_ENABLED else "disabled"
        )
        lines = [
            "Rapport Configuration:",
            f"  Text generation: {generation}",
            f"  Text timeout: {cls.TEXT_TIMEOUT_SECONDS}s",
            f"  Reply delay: {cls.REPLY_DELAY_MIN_MS}-{cls.REPLY_DELAY_MAX_MS}ms",
            f"  Max thread exchanges: {cls.MAX_THREAD_EXCHANGES}",
            f"  Max reply depth: {cls.MAX_REPLY_DEPTH}",
            f"  Banter cooldown: {cls.BANTER_COOLDOWN_SECONDS}s",
            f"  Save dir: {cls.SAVE_DIR}",
        ]
        return "\n".join(lines)
