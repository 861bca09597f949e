import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate plain comma/space separated values.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()
            if not raw or raw == "[]":
                return []
            if raw == "*":
                return ["*"]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    origins: list[str] = []
    for part in parts:
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part)
            continue
        # Browsers send the scheme in the Origin header, so a bare host
        # expands to both variants.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        if origin in seen:
            continue
        seen.add(origin)
        result.append(origin)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Upstream credentials are optional: an endpoint whose credentials are
    missing answers with a configuration error instead of preventing startup.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Listen address for the CLI runner
    host: str = "0.0.0.0"
    port: int = 3000

    # Gemini (generative-language) upstream
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-flash-latest"

    # Custom Search (image search) upstream
    search_api_key: str = ""
    cx_id: str = ""  # CX_ID, the search engine context identifier
    search_base_url: str = "https://www.googleapis.com/customsearch/v1"

    # Free trial quota, shared by every endpoint
    free_trial_limit: int = 20

    # Rate limiting settings (fixed window, per user, per endpoint)
    rate_limit_window_seconds: int = 60
    gemini_rate_limit_per_window: int = 10
    search_rate_limit_per_window: int = 5
    rate_limit_max_entries: int = 10000
    rate_window_sweep_interval_seconds: float = 60.0

    # Upstream HTTP client settings
    upstream_timeout_seconds: float = 30.0
    upstream_connect_timeout_seconds: float = 10.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20
    httpx_keepalive_expiry: float = 30.0

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # NoDecode keeps a bare host value (e.g. "example.com") from failing
    # JSON decoding at startup.
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @property
    def gemini_configured(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def search_configured(self) -> bool:
        return bool(self.search_api_key and self.cx_id)

    @field_validator(
        "free_trial_limit",
        "rate_limit_window_seconds",
        "gemini_rate_limit_per_window",
        "search_rate_limit_per_window",
        "rate_limit_max_entries",
    )
    @classmethod
    def validate_limit_positive(cls, v: int) -> int:
        """Validate quota and rate limit values are positive."""
        if v < 1:
            raise ValueError("Limit values must be at least 1")
        return v

    @field_validator(
        "upstream_timeout_seconds",
        "upstream_connect_timeout_seconds",
        "rate_window_sweep_interval_seconds",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout and interval values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
