"""Application settings using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Code Review Pipeline"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = Field(default="sqlite+aiosqlite:///./data/codereview.db")
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ==========================================================================
    # Directories
    # ==========================================================================
    upload_dir: Path = Path("./data/uploads")
    work_dir: Path = Path("./data/work")
    artifacts_dir: Path = Path("./data/artifacts")

    # ==========================================================================
    # Archive
    # ==========================================================================
    max_upload_mb: int = Field(default=100, gt=0)

    # ==========================================================================
    # Test runner
    # ==========================================================================
    enable_pytest: bool = False
    pytest_timeout_seconds: float = Field(default=120.0, gt=0)
    pytest_disable_socket: bool = True
    pytest_commands: list[list[str]] = Field(
        default=[["pytest"], ["python3", "-m", "pytest"]]
    )

    # ==========================================================================
    # LLM Providers
    # ==========================================================================
    enable_llm: bool = False
    llm_provider: Literal["yandex", "openai"] = "yandex"
    llm_fallback_provider: Literal["yandex", "openai"] | None = None

    # Yandex GPT
    yandex_api_key: str = Field(default="")
    yandex_folder_id: str = Field(default="")
    yandex_model: str = "yandexgpt"
    yandex_base_url: str = "https://llm.api.cloud.yandex.net"

    # OpenAI-compatible endpoint
    openai_api_key: str = Field(default="")
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # Timeouts and retries
    llm_timeout_seconds: float = Field(default=60.0, gt=0)
    llm_max_retries: int = Field(default=2, ge=0)
    llm_backoff_base_seconds: float = Field(default=1.0, ge=0)
    llm_backoff_multiplier: float = Field(default=2.0, ge=1)
    llm_backoff_max_seconds: float = Field(default=30.0, ge=0)

    # Prompt overrides (.html, .md or .txt)
    report_prompt_path: Path | None = None
    classifier_prompt_path: Path | None = None

    # ==========================================================================
    # Snapshot budget
    # ==========================================================================
    snapshot_max_files: int = Field(default=200, gt=0)
    snapshot_max_file_bytes: int = Field(default=200 * 1024, gt=0)
    snapshot_max_total_bytes: int = Field(default=800 * 1024, gt=0)
    snapshot_allowed_exts: list[str] = Field(
        default=[
            ".py", ".js", ".jsx", ".ts", ".tsx", ".html", ".css",
            ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".txt", ".md",
        ]
    )
    snapshot_excluded_dirs: list[str] = Field(
        default=[
            "node_modules", ".git", "__pycache__", ".venv", "venv",
            "dist", "build", ".pytest_cache", ".mypy_cache", ".idea",
        ]
    )

    # ==========================================================================
    # Queue
    # ==========================================================================
    queue_max_size: int = Field(default=100, gt=0)

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default=["http://localhost:5173"])

    @field_validator("upload_dir", "work_dir", "artifacts_dir")
    @classmethod
    def _absolute_dir(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @field_validator("snapshot_allowed_exts")
    @classmethod
    def _normalize_exts(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
