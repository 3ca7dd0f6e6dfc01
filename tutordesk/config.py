from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'TutorDesk Scheduling'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    database_url: str = 'sqlite:///./tutordesk.db'
    booking_min_duration_minutes: int = 15
    batch_max_weeks: int = 52
    batch_skip_sample_limit: int = 5
    slot_default_step_minutes: int = 30
    transaction_retry_attempts: int = 3
    conflict_audit_horizon_days: int = 30
    conflict_audit_time: str = '06:00'
    enable_scheduler: bool = False
    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    default_cache_ttl: int = 60
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
