"""OneScript configuration — loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "ONESCRIPT_", "env_file": ".env", "extra": "ignore"}

    # Embedding provider
    google_api_key: str = ""
    embedding_model: str = "text-embedding-004"
    embedding_task_type: str = "RETRIEVAL_DOCUMENT"
    embedding_dimensions: int = 768
    embedding_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    embedding_timeout: float = 30.0

    # Rate limiting and retry (seconds)
    min_request_delay: float = 1.0
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_jitter: float = 1.0

    # Storage
    database_path: str = "onescript.db"
    upload_dir: str = "uploads"

    # Background jobs (seconds)
    stale_processing_after: float = 900.0
    sweep_interval: float = 60.0

    # Server
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


settings = Settings()
