from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── Database ──────────────────────────────────────────────
    database_hostname: str
    database_port: str = "5432"
    database_password: str
    database_name: str
    database_username: str

    # ── JWT ───────────────────────────────────────────────────
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7

    # ── Password hashing ──────────────────────────────────────
    password_hash_rounds: int = 12

    # ── OTP ───────────────────────────────────────────────────
    otp_length: int = 6
    otp_expiry_minutes: int = 15
    max_otp_retry: int = 3
    min_resend_interval_seconds: int = 60
    otp_hash_rounds: int = 10
    # Per-purpose overrides, keyed by purpose value, e.g.
    # OTP_EXPIRY_MINUTES_BY_PURPOSE='{"reset_password": 10}'
    otp_expiry_minutes_by_purpose: dict[str, int] = {}
    min_resend_interval_seconds_by_purpose: dict[str, int] = {}

    # ── SMTP ──────────────────────────────────────────────────
    mail_username: str
    mail_password: str
    mail_from: str
    mail_server: str = "smtp.gmail.com"
    mail_port: int = 587

    # ── App ───────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000"
    rate_limit_enabled: bool = True
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split comma-separated origins into a list, stripping whitespace."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.database_username}:{self.database_password}"
            f"@{self.database_hostname}:{self.database_port}/{self.database_name}"
        )

    class Config:
        env_file = ".env"
        # Case-insensitive so OTP_LENGTH and otp_length both work
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings loader — reads .env once and reuses.
    Use this everywhere instead of instantiating Settings() directly.
    """
    return Settings()


settings = get_settings()
