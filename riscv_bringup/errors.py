"""Error taxonomy for riscv_bringup.

Every error carries a stable ``code`` for programmatic handling. Stage-local
failures derive from :class:`StageError` and are returned to the immediate
caller; :class:`FatalPatchError` deliberately does not, so that no stage-level
handler can intercept it.
"""

from __future__ import annotations

from pathlib import Path

EXIT_OK = 0
EXIT_STAGE_FAILURE = 1
EXIT_USAGE = 2
EXIT_FATAL_PATCH = 3


class BringupError(Exception):
    """Base error for all orchestration failures."""

    exit_code = EXIT_STAGE_FAILURE

    def __init__(self, message: str, code: str = "bringup_error") -> None:
        super().__init__(message)
        self.code = code


class UsageError(BringupError):
    """Raised for a bad invocation or an unknown target."""

    exit_code = EXIT_USAGE

    def __init__(self, message: str, code: str = "usage_error") -> None:
        super().__init__(message, code)


class StageError(BringupError):
    """Base for failures local to a single stage."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        code: str = "stage_error",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message, code)
        self.stage = stage
        self.log_path = log_path


class PreconditionError(StageError):
    """Raised when a prerequisite artifact or mandatory parameter is missing."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        code: str = "precondition_error",
    ) -> None:
        super().__init__(message, stage=stage, code=code)


class ExternalToolError(StageError):
    """Raised when a source fetch, configure or build invocation fails."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str = "external_tool_error",
    ) -> None:
        super().__init__(message, stage=stage, code=code, log_path=log_path)
        self.tool_exit_code = exit_code


class FatalPatchError(BringupError):
    """Raised when a mandatory patch fails; terminates the whole run."""

    exit_code = EXIT_FATAL_PATCH

    def __init__(
        self,
        message: str,
        patch: Path,
        stage: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message, code="fatal_patch_error")
        self.patch = patch
        self.stage = stage
        self.log_path = log_path


__all__ = [
    "EXIT_FATAL_PATCH",
    "EXIT_OK",
    "EXIT_STAGE_FAILURE",
    "EXIT_USAGE",
    "BringupError",
    "ExternalToolError",
    "FatalPatchError",
    "PreconditionError",
    "StageError",
    "UsageError",
]
