from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

DEFAULT_IMAGE_CACHE_BYTES = 100 * 1024 * 1024


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://digimon-api.vercel.app"
    resource: str = "digimon"
    timeout_seconds: float = Field(default=10.0, gt=0.0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        normalized = value.strip().rstrip("/")
        if not normalized.startswith(("http://", "https://")):
            raise ValueError("api.base_url must start with http:// or https://")
        return normalized

    @field_validator("resource")
    @classmethod
    def validate_resource(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("api.resource must not be empty")
        return normalized


class CachingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    memory_ttl_seconds: float = Field(default=300.0, ge=0.0)


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = "data/storage/digidex.db"
    image_dir: str = "data/storage/images"
    download_images: bool = True


class ImagesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cache_dir: str = "data/cache/images"
    total_bytes: int = Field(default=DEFAULT_IMAGE_CACHE_BYTES, ge=0)
    memory_count_limit: int = Field(default=100, ge=1)
    memory_cost_limit: int = Field(default=50 * 1024 * 1024, ge=0)

    @property
    def response_memory_bytes(self) -> int:
        return self.total_bytes // 2

    @property
    def response_disk_bytes(self) -> int:
        return self.total_bytes

    @model_validator(mode="after")
    def validate_cost_limit(self) -> ImagesConfig:
        if self.memory_cost_limit > self.total_bytes:
            raise ValueError("images.memory_cost_limit must not exceed images.total_bytes")
        return self


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api: ApiConfig = Field(default_factory=ApiConfig)
    caching: CachingConfig = Field(default_factory=CachingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)


def load_config(path: str | Path) -> AppConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = yaml.safe_load(raw)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
