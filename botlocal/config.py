from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./botlocal.db"
    debug: bool = False  # plain-text logs instead of JSON
    log_level: str = "INFO"
    cors_allow_origins: str = "*"

    # Base URL chat platforms use to reach this service (webhook registration).
    public_base_url: str = "http://localhost:8000"

    stripe_webhook_secret: str | None = None
    billing_processing_timeout_seconds: int = 300

    llm_api_url: str = "https://api.groq.com/openai/v1/chat/completions"
    llm_api_key: str | None = None
    llm_model: str = "llama-3.3-70b-versatile"
    llm_timeout_seconds: float = 20.0
    llm_temperature: float = 0.2
    llm_max_tokens: int = 600
    llm_history_messages: int = 5
    llm_knowledge_chars: int = 6000

    telegram_timeout_seconds: float = 10.0

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_timeout_seconds: float = 10.0
    whatsapp_validate_signature: bool = False

    dedup_cache_size: int = 10000
    dedup_ttl_seconds: int = 3600

    worker_enabled: bool = True
    worker_count: int = 4
    worker_queue_size: int = 1000
    worker_max_attempts: int = 1
    worker_retry_backoff_seconds: float = 2.0
    worker_drain_timeout_seconds: float = 10.0

    alert_bot_token: str | None = None
    alert_chat_id: str | None = None

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
