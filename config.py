import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    secret_key: str = "dev-only-change-me"
    database_path: Path = Path("jobpacks.db")
    env: str = "development"
    log_level: str = "INFO"

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    app_base_url: str = "http://localhost:5000"

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = False
    mail_from: str = ""

    quote_valid_days: int = 30
    accept_token_days: int = 30
    rate_limit_per_minute: int = 10
    doc_engine_enabled: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            # Set SECRET_KEY in production; the fallback is for local dev only.
            secret_key=os.environ.get("SECRET_KEY", "dev-only-change-me"),
            database_path=Path(os.environ.get("DATABASE_PATH", "jobpacks.db")),
            env=os.environ.get("ENV", "development"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            app_base_url=os.environ.get("APP_BASE_URL", "http://localhost:5000").rstrip("/"),
            smtp_host=os.environ.get("SMTP_HOST", ""),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_username=os.environ.get("SMTP_USERNAME", ""),
            smtp_password=os.environ.get("SMTP_PASSWORD", ""),
            smtp_use_ssl=_env_bool("SMTP_USE_SSL", False),
            mail_from=os.environ.get("MAIL_FROM", ""),
            quote_valid_days=_env_int("QUOTE_VALID_DAYS", 30),
            accept_token_days=_env_int("ACCEPT_TOKEN_DAYS", 30),
            rate_limit_per_minute=_env_int("RATE_LIMIT_PER_MINUTE", 10),
            doc_engine_enabled=_env_bool("DOC_ENGINE_ENABLED", True),
        )

    @property
    def is_production(self) -> bool:
        return self.env == "production"


settings = Settings.from_env()
