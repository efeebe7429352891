"""Application configuration models."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .identifiers import id_hash


_KIND_ALIASES: dict[str, str] = {
    "movie": "movies",
    "movies": "movies",
    "film": "movies",
    "films": "movies",
    "show": "shows",
    "shows": "shows",
    "series": "shows",
    "tvshows": "shows",
    "tv": "shows",
}


class CollectionConfig(BaseModel):
    """One scanned directory exposed to clients as a library."""

    name: str = Field(min_length=1)
    kind: Literal["movies", "shows"]
    source_id: int = Field(ge=0)
    directory: Path

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        lowered = value.strip().lower()
        return _KIND_ALIASES.get(lowered, lowered)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MediaBridge", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8096, alias="PORT")

    server_id: str = Field(
        default="2b11644442754f02a0c1e45d2a9f5c71",
        alias="SERVER_ID",
        pattern=r"^[0-9a-f]{32}$",
    )
    server_name: str = Field(default="mediabridge", alias="SERVER_NAME")
    user_name: str = Field(default="user", alias="USER_NAME")

    collections: list[CollectionConfig] = Field(
        default_factory=list, alias="COLLECTIONS"
    )
    rescan_interval_seconds: int = Field(
        default=900, alias="RESCAN_INTERVAL", ge=30
    )

    image_cache_dir: Path = Field(
        default=Path("./cache/images"), alias="IMAGE_CACHE_DIR"
    )
    image_quality_poster: int = Field(
        default=40, alias="IMAGE_QUALITY_POSTER", ge=0, le=100
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./mediabridge.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("collections", mode="before")
    @classmethod
    def _parse_collections(cls, value: object) -> object:
        """Accept a JSON document when collections arrive as a raw string."""

        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("COLLECTIONS must be a JSON list") from exc
        return value

    @model_validator(mode="after")
    def _check_unique_sources(self) -> "Settings":
        """Collections are addressed by source id, so ids must not repeat."""

        seen: set[int] = set()
        for collection in self.collections:
            if collection.source_id in seen:
                raise ValueError(
                    f"Duplicate collection source_id {collection.source_id}"
                )
            seen.add(collection.source_id)
        return self

    @property
    def user_id(self) -> str:
        """Stable identifier of the single library user."""

        return id_hash(f"user:{self.user_name}")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
