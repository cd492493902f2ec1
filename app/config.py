from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str | None = None  # unset -> in-memory store (single process only)
    redis_url: str | None = None  # enables Idempotency-Key checks on order placement
    idempotency_ttl_seconds: int = 86400
    notification_recent_seconds: int = 0  # also push notifications seen within this window
    log_level: str = "INFO"

    # Principal used when a request carries no x-user header (local profile)
    local_principal: str | None = None

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
