"""Configuration settings for riscv_bringup.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_workspace_dir() -> Path:
    """Return the default workspace root."""
    return Path.cwd() / "workspace"


def _default_sources_dir() -> Path:
    """Return the default shared source cache root."""
    return Path.home() / ".cache" / "riscv-bringup" / "sources"


def _default_targets_dir() -> Path:
    """Return the default directory holding target manifests."""
    return Path.cwd() / "targets"


def _default_templates_dir() -> Path:
    """Return the bundled template directory."""
    return Path(__file__).resolve().parent / "templates"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RVB_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RVB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    workspace_dir: Path = Field(
        default_factory=_default_workspace_dir,
        description="Root directory for toolchains, artifacts and run logs",
    )
    sources_dir: Path = Field(
        default_factory=_default_sources_dir,
        description="Shared source cache, keyed by component name",
    )
    targets_dir: Path = Field(
        default_factory=_default_targets_dir,
        description="Directory of declarative target manifests",
    )
    templates_dir: Path = Field(
        default_factory=_default_templates_dir,
        description="Shared template location (rootfs overlay files)",
    )

    # Architecture
    isa: int = Field(
        default=64,
        description="Base ISA width selector (32 or 64)",
    )
    firmware_platform: str | None = Field(
        default=None,
        description="Default firmware platform identifier",
    )

    # Operational modes
    force_refetch: bool = Field(
        default=False,
        description="Ignore source caches and re-clone every source",
    )
    verbose: bool = Field(
        default=False,
        description="Verbose diagnostics; keeps logs after successful runs",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Execution
    jobs: int | None = Field(
        default=None,
        ge=1,
        description="Parallel jobs for external builds (default: host cores)",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for a single external tool invocation (seconds)",
    )

    @field_validator("isa")
    @classmethod
    def validate_isa(cls, v: int) -> int:
        """Validate the ISA width is one RISC-V defines a base for."""
        if v not in (32, 64):
            raise ValueError(f"isa must be 32 or 64, got {v}")
        return v

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the verbose switch."""
        return "DEBUG" if self.verbose else self.log_level


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
