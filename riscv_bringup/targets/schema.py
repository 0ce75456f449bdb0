"""Pydantic models for target manifest validation.

A target manifest (``<targets_dir>/<name>/target.yaml``) declares a target
without shipping any code: supported ISAs, firmware platform, where its
patches and configs live, its bootstrap sequence and source overrides.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from riscv_bringup.sources import DEFAULT_SOURCES

TARGET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")

# Commands every target exposes
STANDARD_COMMANDS = (
    "bootstrap",
    "build_kernel",
    "build_bootloader",
    "build_firmware",
    "build_rootfs",
)

# Top-level command names a target may not shadow
RESERVED_NAMES = frozenset(
    {"help", "cleanup", "bootstrap", "build_toolchain", "build_qemu", "config"}
)

# Steps a manifest bootstrap sequence may list
BOOTSTRAP_STEPS = (
    "toolchains",
    "qemu",
    "kernel",
    "kernel+initramfs",
    "bootloader",
    "bootloader+payload",
    "firmware",
    "firmware+payload",
    "rootfs",
)


class SourceOverrideSchema(BaseModel):
    """Override of a component's source location.

    Attributes:
        url: Replacement remote location.
        ref: Replacement tag or branch.
    """

    model_config = ConfigDict(extra="forbid")

    url: str | None = Field(default=None, description="Remote location")
    ref: str | None = Field(default=None, description="Tag or branch")


class TargetManifest(BaseModel):
    """Declarative target definition.

    Attributes:
        name: Target name used on the command line.
        description: Human-readable description.
        isa: Supported ISA widths.
        firmware_platform: Platform identifier passed to the firmware build.
        patch_dir: Patch directory, relative to the manifest directory.
        config_dir: Config directory, relative to the manifest directory.
        bootstrap: Ordered bootstrap steps (None = generic bootstrap).
        commands: Subset of standard commands the target supports.
        sources: Per-component source overrides.
        extra: Target-specific context fields.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[
        str, Field(description="Target name", min_length=1, max_length=64)
    ]
    description: str | None = Field(default=None, description="Description")
    isa: list[int] = Field(
        default_factory=lambda: [64, 32], description="Supported ISA widths"
    )
    firmware_platform: str | None = Field(
        default=None, description="Firmware platform identifier"
    )
    patch_dir: str = Field(default="patches", description="Patch directory")
    config_dir: str = Field(default="configs", description="Config directory")
    bootstrap: list[str] | None = Field(
        default=None, description="Ordered bootstrap steps"
    )
    commands: list[str] | None = Field(
        default=None, description="Supported standard commands"
    )
    sources: dict[str, SourceOverrideSchema] | None = Field(
        default=None, description="Source overrides by component"
    )
    extra: dict[str, str] | None = Field(
        default=None, description="Target-specific context fields"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name matches the safe pattern and is not reserved."""
        if not TARGET_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {TARGET_NAME_PATTERN.pattern}, got '{v}'"
            )
        if v in RESERVED_NAMES:
            raise ValueError(f"name '{v}' is reserved for a top-level command")
        return v

    @field_validator("isa")
    @classmethod
    def validate_isa(cls, v: list[int]) -> list[int]:
        """Validate ISA widths."""
        if not v:
            raise ValueError("isa must list at least one width")
        for width in v:
            if width not in (32, 64):
                raise ValueError(f"isa widths must be 32 or 64, got {width}")
        return v

    @field_validator("bootstrap")
    @classmethod
    def validate_bootstrap(cls, v: list[str] | None) -> list[str] | None:
        """Validate bootstrap steps are known."""
        if v is None:
            return v
        for step in v:
            if step not in BOOTSTRAP_STEPS:
                raise ValueError(
                    f"unknown bootstrap step '{step}' (expected one of {BOOTSTRAP_STEPS})"
                )
        return v

    @field_validator("commands")
    @classmethod
    def validate_commands(cls, v: list[str] | None) -> list[str] | None:
        """Validate commands are standard command names."""
        if v is None:
            return v
        for command in v:
            if command not in STANDARD_COMMANDS:
                raise ValueError(f"unknown command '{command}'")
        return v

    @field_validator("sources")
    @classmethod
    def validate_sources(
        cls, v: dict[str, SourceOverrideSchema] | None
    ) -> dict[str, SourceOverrideSchema] | None:
        """Validate overridden components exist in the source catalog."""
        if v is None:
            return v
        for component in v:
            if component not in DEFAULT_SOURCES:
                raise ValueError(f"unknown source component '{component}'")
        return v


__all__ = [
    "BOOTSTRAP_STEPS",
    "RESERVED_NAMES",
    "STANDARD_COMMANDS",
    "SourceOverrideSchema",
    "TargetManifest",
]
