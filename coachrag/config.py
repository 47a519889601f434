"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- API keys, model names and per-call timeouts
- Data stores (PostgreSQL, Redis) and the sweeper lock
- Ingestion parameters (chunking)
- Retrieval/answer generation knobs
- Retention sweep defaults
- Prompt personalization sampling
- Authentication tokens, logging and optional observability (Langfuse)
"""
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")

    # Models
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://coach_user:coach_pass@db:5432/coach_db"
    REDIS_URL: str = "redis://redis:6379/0"
    SWEEP_LOCK_ENABLED: bool = False
    SWEEP_LOCK_TTL_SECONDS: int = 300

    # Ingestion
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    EMBED_BATCH_SIZE: int = 64

    # Retrieval/Generation
    TOP_K: int = 5
    MATCH_SIMILARITY_THRESHOLD: float = 0.7  # 0-1, cosine
    SNIPPET_CHARS: int = 200
    HISTORY_TURNS: int = 6
    ANSWER_TEMPERATURE: float = 0.2
    ANSWER_MAX_TOKENS: int = 1000

    # Retention
    RETENTION_DAYS: int = 30
    RETENTION_BATCH_SIZE: int = 100
    RETENTION_PREVIEW_LIMIT: int = 10

    # Prompt personalization
    PROMPTS_TEMPERATURE: float = 0.8
    PROMPTS_MAX_TOKENS: int = 800
    PROMPTS_DEFAULT_COUNT: int = 5

    # Auth
    AUTH_TOKENS: str = Field(default="", description="Comma separated token:owner_id pairs")
    ADMIN_TOKEN: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Observability (optional)
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    OTEL_CONSOLE_EXPORT: bool = False

    # Derived
    @property
    def EMBEDDING_DIM(self) -> int:
        """Embedding dimension for the configured embedding model.

        Returns:
            int: The vector dimension inferred from OPENAI_EMBEDDING_MODEL.
        """
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        if "text-embedding-3-large" in model:
            return 3072
        return 1536

    @property
    def auth_token_map(self) -> Dict[str, str]:
        """Parse AUTH_TOKENS into a token -> owner id mapping.

        Malformed pairs (missing colon, empty token or owner) are ignored.
        """
        out: Dict[str, str] = {}
        for pair in self.AUTH_TOKENS.split(","):
            token, sep, owner = pair.strip().partition(":")
            if sep and token.strip() and owner.strip():
                out[token.strip()] = owner.strip()
        return out

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
