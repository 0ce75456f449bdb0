"""Versioned source acquisition.

This module handles:
- The default catalog of component source repositories
- Cloning a shallow checkout (submodules included) into the shared cache
- Refreshing an existing cache idempotently: fetch the ref, force-checkout,
  clean, submodule update
- Inspecting the state of a cached checkout

Any git failure surfaces as ExternalToolError from the stage runner; no
partial-state recovery is attempted.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from riscv_bringup.process import ToolRunner
from riscv_bringup.types import RepositoryState

logger = logging.getLogger(__name__)

CLONE_DEPTH = 1


@dataclass(frozen=True)
class SourceRepository:
    """A remote repository and the ref a stage builds from.

    Attributes:
        name: Component name; also the cache key.
        url: Remote location.
        ref: Optional pinned tag or branch (None = remote default branch).
    """

    name: str
    url: str
    ref: str | None = None

    def with_override(self, url: str | None = None, ref: str | None = None) -> SourceRepository:
        return SourceRepository(
            name=self.name,
            url=url or self.url,
            ref=ref if ref is not None else self.ref,
        )


DEFAULT_SOURCES: dict[str, SourceRepository] = {
    repo.name: repo
    for repo in (
        SourceRepository(
            "riscv-gnu-toolchain",
            "https://github.com/riscv-collab/riscv-gnu-toolchain.git",
            "2024.04.12",
        ),
        SourceRepository("musl", "https://git.musl-libc.org/git/musl", "v1.2.5"),
        SourceRepository("qemu", "https://gitlab.com/qemu-project/qemu.git", "v8.2.2"),
        SourceRepository(
            "linux",
            "https://git.kernel.org/pub/scm/linux/kernel/git/stable/linux.git",
            "v6.6.30",
        ),
        SourceRepository(
            "riscv-pk", "https://github.com/riscv-software-src/riscv-pk.git", "master"
        ),
        SourceRepository(
            "opensbi", "https://github.com/riscv-software-src/opensbi.git", "v1.4"
        ),
        SourceRepository("busybox", "https://git.busybox.net/busybox", "1_36_1"),
        SourceRepository(
            "dropbear", "https://github.com/mkj/dropbear.git", "DROPBEAR_2024.85"
        ),
    )
}


def inspect_repository(path: Path, runner: ToolRunner | None = None) -> RepositoryState:
    """Report the state of a cached checkout.

    Args:
        path: Cache path.
        runner: Optional runner used to check for local modifications.

    Returns:
        ABSENT if there is no checkout, STALE if it has local modifications,
        CLONED otherwise.
    """
    if not (path / ".git").exists():
        return RepositoryState.ABSENT
    if runner is None:
        return RepositoryState.CLONED
    result = runner.run(
        ["git", "status", "--porcelain"], cwd=path, check=False, capture=True
    )
    if result.success and result.output.strip():
        return RepositoryState.STALE
    return RepositoryState.CLONED


def _clone(repo: SourceRepository, destination: Path, runner: ToolRunner) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "git",
        "clone",
        "--depth",
        str(CLONE_DEPTH),
        "--recurse-submodules",
        "--shallow-submodules",
    ]
    if repo.ref:
        cmd.extend(["--branch", repo.ref])
    cmd.extend([repo.url, str(destination)])
    logger.info("Cloning %s into %s", repo.url, destination)
    runner.run(cmd)


def _refresh(repo: SourceRepository, destination: Path, runner: ToolRunner) -> None:
    # The cache is shallow: a ref it was not cloned at exists only after the fetch.
    logger.info("Refreshing cached repository %s", destination)
    runner.run(
        [
            "git",
            "fetch",
            "--depth",
            str(CLONE_DEPTH),
            "origin",
            repo.ref or "HEAD",
        ],
        cwd=destination,
    )
    runner.run(["git", "checkout", "--force", "FETCH_HEAD"], cwd=destination)
    runner.run(["git", "clean", "-fdx"], cwd=destination)
    runner.run(
        [
            "git",
            "submodule",
            "update",
            "--init",
            "--recursive",
            "--force",
            "--depth",
            str(CLONE_DEPTH),
        ],
        cwd=destination,
    )


def fetch(
    repo: SourceRepository,
    destination: Path,
    runner: ToolRunner,
    clear_existing: bool = False,
) -> RepositoryState:
    """Fetch or refresh *repo* into *destination*.

    Args:
        repo: Repository to fetch.
        destination: Cache path (keyed by component name).
        runner: Stage runner; git output lands in the stage log.
        clear_existing: Delete any existing cache and clone afresh.

    Returns:
        CLONED after a fresh clone, UP_TO_DATE after a refresh.

    Raises:
        ExternalToolError: If any git invocation fails.
    """
    state = inspect_repository(destination)
    if state is not RepositoryState.ABSENT and clear_existing:
        logger.info("Discarding cached repository %s", destination)
        shutil.rmtree(destination)
        state = RepositoryState.ABSENT
    elif state is RepositoryState.ABSENT and destination.exists():
        # A directory without .git is leftover from an interrupted clone.
        shutil.rmtree(destination)

    if state is RepositoryState.ABSENT:
        _clone(repo, destination, runner)
        return RepositoryState.CLONED

    _refresh(repo, destination, runner)
    return RepositoryState.UP_TO_DATE


__all__ = [
    "CLONE_DEPTH",
    "DEFAULT_SOURCES",
    "SourceRepository",
    "fetch",
    "inspect_repository",
]
