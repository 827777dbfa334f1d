import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev_secret_change_me")
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRES_SECONDS: int = int(os.getenv("TOKEN_EXPIRES_SECONDS", "3600"))
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./app.db")
    DEFAULT_FLOOR: int = int(os.getenv("DEFAULT_FLOOR", "1"))
    # Allowed stay before a slot is flagged as overstayed, and the hard overdue limit
    ALLOWED_MINUTES: int = int(os.getenv("ALLOWED_MINUTES", "120"))
    OVERDUE_MINUTES: int = int(os.getenv("OVERDUE_MINUTES", str(24 * 60)))
    SEED_DEFAULTS: bool = _env_bool("SEED_DEFAULTS", True)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
