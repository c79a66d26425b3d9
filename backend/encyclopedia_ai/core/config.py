"""
Runtime configuration.

Settings come from the process environment, optionally seeded from a
``.env`` file at the repository root. Every tunable of the agent core
(model, token budgets, queue gap, iteration ceiling) lives here so nothing
downstream hardcodes business constants.

Environment configuration:
- LLM_API_BASE: OpenAI-compatible API base (default: https://openrouter.ai/api/v1)
- LLM_API_KEY: bearer token (required to run the agent)
- AI_MODEL: model identifier
- AI_MAX_TOKENS: token budget for the streamed answer (default: 1500)
- AI_ANSWER_TEMPERATURE: sampling temperature of the answer (default: 0.65)
- AI_DISCOVERY_MAX_TOKENS: token budget of a tool-discovery turn (default: 900)
- AI_DISCOVERY_TEMPERATURE: sampling temperature of discovery turns (default: 0.6)
- AI_MAX_ITERATIONS: tool-discovery turns per run (default: 4)
- AI_QUEUE_GAP_MS: minimum gap between upstream calls (default: 100, 0 disables)
- AI_REPLAY_DELAY_MS: pacing of replayed answers (default: 6, 0 disables)
- LLM_TIMEOUT_SECONDS: upstream request timeout (default: 60)
- DATABASE_URL or DB_HOST/DB_PORT/DB_USER/DB_PASSWORD/DB_NAME
- CONTENT_STORAGE_PATH: directory holding articles/<slug>/content.md
- LOG_LEVEL / LOG_JSON
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PATH = Path(__file__).parent.parent.parent.parent / ".env"

DEFAULT_MODEL = "arcee-ai/trinity-large-preview:free"


class Settings(BaseModel):
    """Process-wide settings for the assistant service."""

    llm_api_base: str = "https://openrouter.ai/api/v1"
    llm_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    llm_timeout_seconds: float = 60.0

    answer_max_tokens: int = Field(1500, ge=1)
    answer_temperature: float = 0.65
    discovery_max_tokens: int = Field(900, ge=1)
    discovery_temperature: float = 0.6

    queue_gap_ms: int = Field(100, ge=0)
    max_iterations: int = Field(4, ge=1)
    replay_delay_ms: int = Field(6, ge=0)

    app_public_url: str = "http://localhost:3000"
    app_title: str = "Encyclopedia Assistant"

    database_url: Optional[str] = None
    content_storage_path: str = "storage"

    log_level: str = "INFO"
    log_json: bool = True

    model_config = {"protected_namespaces": ()}

    @property
    def is_configured(self) -> bool:
        return bool(self.llm_api_key)

    @property
    def queue_gap_seconds(self) -> float:
        return self.queue_gap_ms / 1000.0

    @property
    def replay_delay_seconds(self) -> float:
        return self.replay_delay_ms / 1000.0


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_non_negative_int(name: str, default: int) -> int:
    """Like _env_int, but 0 is a valid value (it disables the delay)."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_database_url() -> str:
    """Database URL from DATABASE_URL, or assembled from DB_* components."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    host = os.getenv("DB_HOST", "localhost")
    port = _env_int("DB_PORT", 5432)
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "postgres")
    database = os.getenv("DB_NAME", "encyclopedia")

    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


def load_settings(env_file: Optional[Path] = ENV_PATH) -> Settings:
    """
    Build Settings from the environment.

    Unparseable numeric values fall back to their defaults rather than
    failing startup.
    """
    if env_file is not None and env_file.exists():
        load_dotenv(env_file)

    return Settings(
        llm_api_base=os.getenv("LLM_API_BASE", "https://openrouter.ai/api/v1"),
        llm_api_key=os.getenv("LLM_API_KEY") or None,
        model=os.getenv("AI_MODEL") or DEFAULT_MODEL,
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
        answer_max_tokens=_env_int("AI_MAX_TOKENS", 1500),
        answer_temperature=_env_float("AI_ANSWER_TEMPERATURE", 0.65),
        discovery_max_tokens=_env_int("AI_DISCOVERY_MAX_TOKENS", 900),
        discovery_temperature=_env_float("AI_DISCOVERY_TEMPERATURE", 0.6),
        queue_gap_ms=_env_non_negative_int("AI_QUEUE_GAP_MS", 100),
        max_iterations=_env_int("AI_MAX_ITERATIONS", 4),
        replay_delay_ms=_env_non_negative_int("AI_REPLAY_DELAY_MS", 6),
        app_public_url=os.getenv("APP_PUBLIC_URL", "http://localhost:3000"),
        app_title=os.getenv("APP_TITLE", "Encyclopedia Assistant"),
        database_url=get_database_url(),
        content_storage_path=os.getenv("CONTENT_STORAGE_PATH", "storage"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "true").lower() == "true",
    )
