"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (ROADBOOK__WORKER__VERSION=v2)
  2. roadbook.yaml          (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults. Bump
``worker.version`` whenever the precache manifest or caching policy changes
so the previous cache generation is pruned on the next activation.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("roadbook")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "offline-cache.db")
_DEFAULT_JOURNAL_PATH = str(Path(_DEFAULT_DATA_DIR) / "journal.json")
_DEFAULT_KV_PATH = str(Path(_DEFAULT_DATA_DIR) / "journal-kv.db")

DEFAULT_PRECACHE: list[str] = [
    "/",
    "/index.html",
    "/california-2026.html",
    "https://fonts.googleapis.com/css2?family=Poppins:wght@400;600;700;900&display=swap",
    "https://fonts.googleapis.com/css2?family=Playfair+Display:wght@400;600;700;900"
    "&family=Poppins:wght@300;400;500;600;700&display=swap",
]


def _find_config_file() -> str | None:
    """Return the path of the first roadbook.yaml found, or None."""
    candidates = [
        Path("roadbook.yaml"),
        Path(platformdirs.user_config_dir("roadbook")) / "roadbook.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3002


class WorkerSettings(BaseModel):
    app_name: str = "roadbook"
    version: str = "v1"
    api_prefix: str = "/api/"
    offline_url: str = "/california-2026.html"
    precache: list[str] = DEFAULT_PRECACHE
    skip_waiting_on_install: bool = True
    control_path: str = "/_roadbook"
    # None serves the in-process journal app through httpx.ASGITransport
    upstream_url: str | None = None

    @field_validator("api_prefix", "control_path")
    @classmethod
    def validate_path_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Path prefix must start with '/': {v!r}")
        return v


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class JournalSettings(BaseModel):
    backend: Literal["local", "edge"] = "local"
    data_path: str = _DEFAULT_JOURNAL_PATH
    kv_path: str = _DEFAULT_KV_PATH
    tag: str = "california2026"
    folder: str = "donnelly-adventures"
    static_dir: str | None = None


class MediaSettings(BaseModel):
    cloud_name: str = ""
    api_key: str = ""
    api_secret: str = ""
    api_base: str = "https://api.cloudinary.com/v1_1"
    timeout_seconds: float = 120.0


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ROADBOOK__SERVER__PORT=9090
        env_prefix="ROADBOOK__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    worker: WorkerSettings = WorkerSettings()
    cache: CacheSettings = CacheSettings()
    journal: JournalSettings = JournalSettings()
    media: MediaSettings = MediaSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
