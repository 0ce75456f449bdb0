"""Ordered patch application for stage source trees.

A target's patch directory holds two kinds of patches, both selected by a
stage-name prefix and applied in lexicographic filename order:

- file-patches (``*.patch``, ``*.diff``), applied with ``git apply`` at the
  source tree root;
- script-patches, either Python modules defining
  ``apply(context, source_dir)`` (which may mutate the BuildContext) or shell
  scripts run with the context exported into their environment.

Patches are mandatory and order-dependent. The first failure raises
FatalPatchError, which ends the run; nothing is rolled back.
"""

from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_bringup.errors import ExternalToolError, FatalPatchError
from riscv_bringup.process import ProcessResult, ToolRunner

if TYPE_CHECKING:
    from riscv_bringup.context import BuildContext

logger = logging.getLogger(__name__)

FILE_PATCH_SUFFIXES = {".patch", ".diff"}
SCRIPT_PATCH_SUFFIXES = {".py", ".sh"}


@dataclass
class PatchSet:
    """Patches selected for one stage, already in application order."""

    stage: str
    file_patches: list[Path] = field(default_factory=list)
    script_patches: list[Path] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.file_patches or self.script_patches)

    def __len__(self) -> int:
        return len(self.file_patches) + len(self.script_patches)


def collect_patch_set(patch_dir: Path | None, stage_prefix: str) -> PatchSet:
    """Collect the patches in *patch_dir* whose names start with *stage_prefix*.

    Args:
        patch_dir: Target patch directory (None or missing = no patches).
        stage_prefix: Stage name prefix, e.g. ``linux``.

    Returns:
        PatchSet with both lists sorted by filename.
    """
    patch_set = PatchSet(stage=stage_prefix)
    if patch_dir is None or not patch_dir.is_dir():
        return patch_set

    candidates = sorted(
        (p for p in patch_dir.iterdir() if p.is_file() and p.name.startswith(stage_prefix)),
        key=lambda p: p.name,
    )
    for path in candidates:
        if path.suffix in FILE_PATCH_SUFFIXES:
            patch_set.file_patches.append(path)
        elif path.suffix in SCRIPT_PATCH_SUFFIXES:
            patch_set.script_patches.append(path)
        else:
            logger.debug("Ignoring non-patch file %s", path.name)
    return patch_set


def _run_python_patch(path: Path, context: BuildContext, source_dir: Path) -> object:
    spec = importlib.util.spec_from_file_location(f"rvb_patch_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load script patch {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    apply = getattr(module, "apply", None)
    if not callable(apply):
        raise AttributeError(f"script patch {path.name} defines no apply(context, source_dir)")
    return apply(context, source_dir)


def _run_patch_tool(
    runner: ToolRunner,
    patch: Path,
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
) -> ProcessResult:
    try:
        return runner.run(cmd, cwd=cwd, env=env, check=False)
    except ExternalToolError as e:
        raise FatalPatchError(
            f"Patch {patch.name} could not be applied: {e}",
            patch=patch,
            stage=runner.stage,
            log_path=runner.log_path,
        ) from e


def _script_succeeded(result: object) -> bool:
    # None and 0 mean success; any other int or False is a failure.
    if result is None or result is True:
        return True
    if result is False:
        return False
    if isinstance(result, int):
        return result == 0
    return True


def apply_patch_set(
    patch_set: PatchSet,
    source_dir: Path,
    context: BuildContext,
    runner: ToolRunner,
) -> int:
    """Apply *patch_set* to *source_dir*.

    Args:
        patch_set: Patches to apply, in order.
        source_dir: Source tree root.
        context: Build context handed to script patches.
        runner: Stage runner; patch output lands in the stage log.

    Returns:
        Number of patches applied.

    Raises:
        FatalPatchError: On the first failing patch.
    """
    applied = 0
    for patch in patch_set.file_patches:
        logger.info("Applying patch %s", patch.name)
        result = _run_patch_tool(
            runner, patch, ["git", "apply", "--verbose", str(patch)], source_dir
        )
        if not result.success:
            raise FatalPatchError(
                f"Patch {patch.name} failed to apply (exit code {result.exit_code})",
                patch=patch,
                stage=runner.stage,
                log_path=runner.log_path,
            )
        applied += 1

    for script in patch_set.script_patches:
        logger.info("Running script patch %s", script.name)
        if script.suffix == ".py":
            try:
                outcome = _run_python_patch(script, context, source_dir)
            except Exception as e:
                raise FatalPatchError(
                    f"Script patch {script.name} raised {type(e).__name__}: {e}",
                    patch=script,
                    stage=runner.stage,
                    log_path=runner.log_path,
                ) from e
            ok = _script_succeeded(outcome)
        else:
            result = _run_patch_tool(
                runner,
                script,
                ["bash", str(script)],
                source_dir,
                env=context.as_environment(),
            )
            ok = result.success
        if not ok:
            raise FatalPatchError(
                f"Script patch {script.name} reported failure",
                patch=script,
                stage=runner.stage,
                log_path=runner.log_path,
            )
        applied += 1

    return applied


__all__ = [
    "FILE_PATCH_SUFFIXES",
    "SCRIPT_PATCH_SUFFIXES",
    "PatchSet",
    "apply_patch_set",
    "collect_patch_set",
]
