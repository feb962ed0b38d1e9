"""Application settings loaded from environment variables via pydantic-settings.

Field names map to upper-case environment variables (``chunk_size_tokens``
is read from ``CHUNK_SIZE_TOKENS``).  A ``.env`` file in the working
directory is read when present; real environment variables win over it,
and declared defaults apply when neither is set.

Keep secrets (``OPENAI_API_KEY``, ``AUTH_SECRET``) out of
``config/config.yaml``; that file is committed.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """pdfquiz application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # === LLM / Embeddings ===
    # openai_base_url points the client at any OpenAI-compatible API.
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"

    # === Storage / Persistence ===
    storage_dir: str = "data/objects"
    database_path: str = "data/pdfquiz.db"

    # === Chunker ===
    chunk_size_tokens: int = 1000
    chunk_overlap_tokens: int = 200
    min_chunk_tokens: int = 100

    # === Pipeline ===
    stage_concurrency: int = 5
    stage_rate_limit: int = 5
    stage_rate_window_seconds: float = 1.0
    max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    external_call_timeout_seconds: float = 30.0
    embedding_batch_size: int = 5

    # === Question generation ===
    questions_chunks_per_group: int = 2
    question_temperature: float = 0.7
    question_max_tokens: int = 2000
    grounding_top_k: int = 3
    grounding_min_score: float = 0.3

    # === Chat ===
    chat_top_k: int = 5
    chat_min_score: float = 0.7
    chat_cache_ttl_seconds: int = 3600

    # === Upload validation ===
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_content_type: str = "application/pdf"

    # === Push notifications ===
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    push_enabled: bool = False

    # === Identity ===
    auth_secret: str = ""
    auth_token_ttl_hours: int = 168

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_providers(self) -> list[str]:
        """Return the names of external providers that have credentials configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.push_enabled:
            providers.append("expo")
        return providers
