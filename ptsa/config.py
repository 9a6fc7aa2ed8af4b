from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "PTSA Membership"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    app_url: str = "http://localhost:8000"
    organization_name: str = "PTSA"

    # Database settings
    database_url: str

    # Security settings (bearer tokens issued for the auth provider's users)
    secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Payment processor
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    # Auth provider webhook signing secret (whsec_<base64>)
    clerk_webhook_secret: str = ""

    # Scheduled job endpoints
    cron_secret: str = ""

    # Email settings
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@ptsa.local"

    # Rate limiting
    rate_limit_storage_uri: str = "memory://"
    global_rate_limit: str = "300/minute"
    global_rate_limit_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Background jobs
    scheduler_enabled: bool = True
    job_stale_after_minutes: int = 15
    job_max_attempts: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
