# /gottadoit/config/settings.py

import sys
import re
import json
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DbOperation(BaseModel):
    """
    A pre-registered query the database proxy may run on behalf of a `db` action.
    Actions reference it by name instead of embedding free-text queries.
    """
    db_type: str = "mongo"
    query: str
    description: str | None = None

    model_config = ConfigDict(frozen=True)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # MongoDB
    mongo_uri: str = "mongodb://127.0.0.1:27017/gottadoitnow"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # Onboarding
    default_org_id: str = "org1"
    entry_node_id: str = "welcome-1"
    seed_default_flow: bool = True
    progress_write_attempts: int = 5

    # Action effects
    effect_http_timeout: float = 10.0
    db_proxy_url: str | None = None
    db_proxy_allow_free_text: bool = False
    db_proxy_operations: Dict[str, DbOperation] = {}

    # Deployment
    workers: int = 4
    environment: str = Field(default="production")
    api_key: str | None = None

    cors_allowed_origins: List[str] = Field(
        default=[
            "http://localhost:8080",
            "http://localhost:5173",
        ]
    )

    allowed_hosts: str = Field(default="localhost,127.0.0.1,testserver")

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 100
    editor_rate_limit_per_minute: int = 30

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("db_proxy_operations", mode="before")
    @classmethod
    def parse_db_proxy_operations(cls, v: Any):
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v

    @field_validator("entry_node_id", "default_org_id")
    @classmethod
    def identifiers_must_be_simple(cls, v):
        if not re.match(r"^[A-Za-z0-9_.\-]+$", v):
            raise ValueError("Identifiers may only contain letters, digits, '.', '_' and '-'")
        return v

    @field_validator("progress_write_attempts")
    @classmethod
    def at_least_one_attempt(cls, v):
        if v < 1:
            raise ValueError("PROGRESS_WRITE_ATTEMPTS must be at least 1")
        return v


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            if settings_obj.mongo_uri.startswith("mongodb://127.0.0.1"):
                raise ValueError("MONGO_URI must point at a real database in production")
            if settings_obj.db_proxy_allow_free_text:
                raise ValueError("DB_PROXY_ALLOW_FREE_TEXT must not be enabled in production")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
