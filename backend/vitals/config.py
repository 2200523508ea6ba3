from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    github_token: str = ""
    github_graphql_url: str = "https://api.github.com/graphql"
    db_path: str = "data/vitals.db"
    log_level: str = "INFO"

    # Fetch client pacing
    request_delay_ms: int = 750
    request_timeout: float = 30.0
    max_fetch_attempts: int = 3
    retry_base_delay: float = 5.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.5
    rate_limit_cooldown: float = 120.0
    page_size: int = 50

    # Sentiment provider fallback when a repository has none configured
    ai_provider: str = "anthropic"
    ai_api_key: str = ""
    ai_model: str | None = None
    sentiment_retry_seconds: int = 3600

    model_config = {"env_file": ".env", "env_prefix": ""}


settings = Settings()
