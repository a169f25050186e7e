from __future__ import annotations

import base64
import binascii
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qrcheckin.core.errors import ConfigError

KEY_BYTES = 32


class Settings(BaseSettings):
    # Token crypto (base64/base64url of 32 bytes)
    secret_key: str = Field(..., alias="QR_SECRET_KEY")

    # TTL policy
    default_ttl_seconds: int = Field(60, alias="QR_DEFAULT_TTL_SECONDS", gt=0)
    max_ttl_seconds: int | None = Field(None, alias="QR_MAX_TTL_SECONDS", gt=0)

    # Used-token store
    used_token_store: str = Field("memory", alias="USED_TOKEN_STORE")
    db_url: str = Field("sqlite+aiosqlite:///./qr_checkin.sqlite3", alias="DB_URL")
    store_shards: int = Field(16, alias="QR_STORE_SHARDS", gt=0)
    reap_interval_seconds: float = Field(30.0, alias="QR_REAP_INTERVAL_SECONDS", gt=0)

    # URL encoded into the QR image
    checkin_base_url: str = Field("http://127.0.0.1:8000/checkin", alias="CHECKIN_BASE_URL")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("used_token_store")
    @classmethod
    def _known_store(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "sql"):
            raise ValueError("USED_TOKEN_STORE must be 'memory' or 'sql'")
        return v

    @model_validator(mode="after")
    def _ttl_cap_covers_default(self) -> Settings:
        if self.max_ttl_seconds is not None and self.max_ttl_seconds < self.default_ttl_seconds:
            raise ValueError("QR_MAX_TTL_SECONDS must be >= QR_DEFAULT_TTL_SECONDS")
        return self

    def key_bytes(self) -> bytes:
        return decode_key(self.secret_key)


def decode_key(raw: str) -> bytes:
    """Accepts standard or URL-safe base64, with or without padding."""
    s = raw.strip()
    s += "=" * (-len(s) % 4)
    try:
        key = base64.urlsafe_b64decode(s.replace("+", "-").replace("/", "_").encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise ConfigError(f"QR_SECRET_KEY is not valid base64: {e}") from e
    if len(key) != KEY_BYTES:
        raise ConfigError(f"QR_SECRET_KEY must decode to {KEY_BYTES} bytes, got {len(key)}")
    return key


@lru_cache
def get_settings() -> Settings:
    return Settings()
