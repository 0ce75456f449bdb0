"""Template overlay staging for root filesystems.

This module handles:
- Copying the shared rootfs template tree into a new root
- Substituting ``@NAME@`` placeholders in text templates
- Applying file modes (scripts must be executable)
- Refusing symlinks that escape the template tree
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping
from pathlib import Path

from riscv_bringup.errors import PreconditionError
from riscv_bringup.templating import substitute

logger = logging.getLogger(__name__)

# Default file mode when not specified
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

# Template files that must be executable in the image
EXECUTABLE_TEMPLATES = frozenset(
    {
        "init",
        "usr/share/udhcpc/default.script",
    }
)


def stage_file(
    source: Path,
    dest: Path,
    mode: int | None = None,
    values: Mapping[str, str] | None = None,
) -> None:
    """Stage a single template file.

    Args:
        source: Path to the template.
        dest: Destination path in the new root.
        mode: Optional file mode (default: 0644).
        values: Placeholder values; when given, the file is treated as text.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    if values is not None:
        try:
            text = source.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            shutil.copy2(source, dest)
        else:
            dest.write_text(substitute(text, values), encoding="utf-8")
    else:
        shutil.copy2(source, dest)
    dest.chmod(mode if mode is not None else DEFAULT_FILE_MODE)


def stage_template_tree(
    template_dir: Path,
    root: Path,
    values: Mapping[str, str] | None = None,
) -> list[Path]:
    """Overlay every file of *template_dir* onto *root*.

    Args:
        template_dir: Shared template location.
        root: Root of the filesystem being assembled.
        values: Placeholder values for text templates.

    Returns:
        Relative paths that were staged.

    Raises:
        PreconditionError: If the template directory is missing or a symlink
            points outside it.
    """
    if not template_dir.is_dir():
        raise PreconditionError(
            f"Rootfs template directory not found: {template_dir}",
            stage="rootfs",
        )
    template_resolved = template_dir.resolve()
    staged: list[Path] = []

    for item in sorted(template_dir.rglob("*")):
        rel_path = item.relative_to(template_dir)
        dest_path = root / rel_path

        if item.is_symlink():
            target = item.resolve()
            try:
                target.relative_to(template_resolved)
            except ValueError:
                raise PreconditionError(
                    f"Template symlink {item} points outside template tree: {target}",
                    stage="rootfs",
                ) from None

        if item.is_dir():
            dest_path.mkdir(parents=True, exist_ok=True)
            dest_path.chmod(DEFAULT_DIR_MODE)
            continue

        mode = 0o755 if rel_path.as_posix() in EXECUTABLE_TEMPLATES else None
        stage_file(item, dest_path, mode, values)
        staged.append(rel_path)
        logger.debug("Staged template %s", rel_path)

    return staged


__all__ = [
    "DEFAULT_DIR_MODE",
    "DEFAULT_FILE_MODE",
    "EXECUTABLE_TEMPLATES",
    "stage_file",
    "stage_template_tree",
]
