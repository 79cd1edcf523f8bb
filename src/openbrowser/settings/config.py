"""Configuration loader for OpenBrowser using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (OPENBROWSER_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("OPENBROWSER_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "OPENBROWSER_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EngineSettings(BaseSettings):
    """Engine process (RPC server) configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_ENGINE__")

    host: str = "127.0.0.1"
    port: int = 9876
    log_level: str = "INFO"
    json_logs: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class BrowserSettings(BaseSettings):
    """Playwright browser settings."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_BROWSER__")

    headless: bool = True
    timeout_ms: int = 30_000
    automation_timeout_ms: int = 60_000
    viewport_width: int = 1920
    viewport_height: int = 1080
    executable_path: str = ""
    sandbox: bool = True


class StealthSettings(BaseSettings):
    """Anti-detection / stealth configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_STEALTH__")

    proxy_urls: list[str] = Field(default_factory=list)
    rotation_strategy: str = "round_robin"  # round_robin | random
    apply_stealth_scripts: bool = True


class ProfileSettings(BaseSettings):
    """Profile identity persistence."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_PROFILES__")

    storage_dir: str = "data/profiles"
    persist: bool = True


class CrawlSettings(BaseSettings):
    """Crawl defaults."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_CRAWL__")

    max_pages: int = 10
    max_depth: int = 2
    concurrency: int = 1
    same_origin: bool = True
    content_preview_chars: int = 1000


class CaptchaSettings(BaseSettings):
    """CAPTCHA detection and handling configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_CAPTCHA__")

    strategy: str = "handoff"  # handoff | solver
    solver_url: str = ""
    solver_timeout_sec: float = 60.0
    screenshot_on_detect: bool = True


class SupervisorSettings(BaseSettings):
    """Client-side supervisor for the engine process."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_SUPERVISOR__")

    health_check_interval_sec: float = 30.0
    health_check_timeout_sec: float = 3.0
    max_retries: int = 3
    backoff_sec: float = 1.0
    request_timeout_sec: float = 30.0
    startup_timeout_sec: float = 10.0
    startup_poll_sec: float = 0.5
    terminate_grace_sec: float = 0.5
    timeout_margin_sec: float = 5.0  # added to a call's own deadline for the HTTP read timeout


class StorageSettings(BaseSettings):
    """Content sink (external storage server) configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENBROWSER_STORAGE__")

    enabled: bool = False
    url: str = "http://localhost:9877"
    timeout_sec: float = 30.0


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root OpenBrowser settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="OPENBROWSER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False

    engine: EngineSettings = Field(default_factory=EngineSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    stealth: StealthSettings = Field(default_factory=StealthSettings)
    profiles: ProfileSettings = Field(default_factory=ProfileSettings)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    captcha: CaptchaSettings = Field(default_factory=CaptchaSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths against project_root."""
        if not Path(self.profiles.storage_dir).is_absolute():
            self.profiles.storage_dir = str(self.project_root / self.profiles.storage_dir)
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
