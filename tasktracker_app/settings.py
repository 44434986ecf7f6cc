# tasktracker_app/settings.py
from __future__ import annotations

import json
from typing import Annotated, List
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator, model_validator

DEFAULT_SECRET = "change_me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # --- DB ---
    DATABASE_URL: str = Field(default='sqlite+pysqlite:///./tasktracker.db')
    DB_POOL_SIZE: int = Field(default=10, ge=1)
    DB_POOL_TIMEOUT: int = Field(default=10, ge=1)
    DB_AUTO_CREATE: bool = Field(default=False)

    # --- JWT ---
    SECRET_KEY: str = Field(default=DEFAULT_SECRET)
    ALGORITHM: str = Field(default='HS256')
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=7 * 24 * 60, ge=1)
    TOKEN_ISSUER: str = Field(default='tasktracker-api')
    TOKEN_AUDIENCE: str = Field(default='tasktracker-app')

    # --- Passwords ---
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31)

    # --- Pagination ---
    DEFAULT_PAGE_SIZE: int = Field(default=10, ge=1)
    MAX_PAGE_SIZE: int = Field(default=100, ge=1)

    # --- Rate limiting (0 disables) ---
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=15 * 60, ge=1)
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, ge=0)

    # --- CORS ---
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )

    # --- Runtime ---
    APP_ENV: str = Field(default='development')
    APP_VERSION: str = Field(default='1.0.0')
    LOG_LEVEL: str = Field(default='INFO')

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors(cls, v):
        """
        Accepts:
        - JSON: '["http://a","http://b"]'
        - Comma separated: 'http://a,http://b'
        - Empty: no origins (the app then allows any)
        """
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    raise ValueError("CORS_ORIGINS must be valid JSON or a comma separated list.")
            return [part.strip() for part in s.split(",") if part.strip()]
        return v

    @field_validator("APP_ENV", "LOG_LEVEL")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return v.strip().lower() if v else v

    @model_validator(mode="after")
    def _check_production(self) -> "Settings":
        if self.is_production and self.SECRET_KEY == DEFAULT_SECRET:
            raise ValueError("SECRET_KEY must be set in production")
        if self.DEFAULT_PAGE_SIZE > self.MAX_PAGE_SIZE:
            raise ValueError("DEFAULT_PAGE_SIZE cannot exceed MAX_PAGE_SIZE")
        return self

    @property
    def is_production(self) -> bool:
        return self.APP_ENV in ("prod", "production")


def get_settings(**overrides) -> Settings:
    """Load settings from the environment; keyword overrides win."""
    return Settings(**overrides)
