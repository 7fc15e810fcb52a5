import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


def _split_origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


@dataclass(frozen=True)
class Settings:
    database_url: str = field(default_factory=lambda: _env_or("DATABASE_URL", ""))
    database_name: str = field(default_factory=lambda: _env_or("DATABASE_NAME", "theater_canteen"))
    secret_key: str = field(default_factory=lambda: _env_or("SECRET_KEY", "change-me"))
    token_max_age: int = field(default_factory=lambda: int(_env_or("TOKEN_MAX_AGE", "86400")))
    frontend_url: str = field(default_factory=lambda: _env_or("FRONTEND_URL", "http://localhost:3000"))
    cors_origins: List[str] = field(default_factory=lambda: _split_origins(_env_or("CORS_ORIGINS", "*")))
    max_container_items: int = field(default_factory=lambda: int(_env_or("MAX_CONTAINER_ITEMS", "5000")))
    log_level: str = field(default_factory=lambda: _env_or("LOG_LEVEL", "INFO"))
    port: int = field(default_factory=lambda: int(_env_or("PORT", "8000")))


settings = Settings()
