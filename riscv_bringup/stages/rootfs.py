"""Root filesystem stage and its userland sub-components.

The rootfs is assembled from:
- the kernel's installed module tree
- a statically linked busybox (shell utilities and init)
- a statically linked dropbear multi-call binary (remote access)
- the shared template overlay (init script, inittab, network hook, motd)

Output is either the populated directory tree (when the skip-image flag is
armed, as the kernel does for an embedded initramfs) or a gzip-compressed
newc cpio archive with the working tree discarded.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from riscv_bringup.artifacts import MANIFEST_NAME, write_manifest
from riscv_bringup.context import BuildContext, OneShotFlag
from riscv_bringup.errors import PreconditionError
from riscv_bringup.stages.base import ComponentBuilder
from riscv_bringup.stages.overlay import stage_template_tree
from riscv_bringup.templating import render_config, set_kconfig, toolchain_triple
from riscv_bringup.types import ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

IMAGE_NAME = "rootfs.cpio.gz"
ROOT_DIR_NAME = "root"

SKELETON_DIRS = (
    "bin",
    "dev",
    "etc",
    "lib",
    "proc",
    "root",
    "sbin",
    "sys",
    "tmp",
    "usr/bin",
    "usr/sbin",
    "var/log",
    "var/run",
)

DROPBEAR_PROGRAMS = ("dropbear", "dbclient", "dropbearkey", "scp")


class MuslComponentBuilder(ComponentBuilder):
    """Userland component statically linked against the musl toolchain."""

    @property
    def toolchain(self) -> ToolchainType:
        return ToolchainType.musl_for(self.context.isa)


class BusyboxBuilder(MuslComponentBuilder):
    """Statically linked busybox installed with its applet symlinks."""

    component = "busybox"

    def configure(self, source: Path, env: dict[str, str]) -> None:
        config = source / ".config"
        template = self.target_config()
        if template is not None:
            render_config(template, config, self.template_values())
        else:
            self.make(source, "defconfig", env=env, parallel=False)
        set_kconfig(config, "CONFIG_STATIC", True)
        # Applets that need glibc-only interfaces fail to link against musl.
        set_kconfig(config, "CONFIG_TC", False)
        self.make(source, "oldconfig", env=env, parallel=False)

    def compile(self, source: Path, env: dict[str, str]) -> None:
        self.make(source, env=env)

    def install(self, source: Path, env: dict[str, str]) -> Path:
        install_dir = self.workspace.replace_directory(self.install_dir())
        self.make(source, "install", f"CONFIG_PREFIX={install_dir}", env=env, parallel=False)
        self.require_output(install_dir / "bin" / "busybox")
        return install_dir


class DropbearBuilder(MuslComponentBuilder):
    """Dropbear SSH server and client as one static multi-call binary."""

    component = "dropbear"

    def configure(self, source: Path, env: dict[str, str]) -> None:
        if not (source / "configure").exists():
            self.runner.run(["autoconf"], cwd=source, env=env)
            self.runner.run(["autoheader"], cwd=source, env=env)
        self.runner.run(
            [
                "./configure",
                f"--host={toolchain_triple(self.toolchain)}",
                "--prefix=/usr",
                "--disable-zlib",
                "--disable-wtmp",
                "--disable-lastlog",
                "--enable-static",
            ],
            cwd=source,
            env={**env, "CC": f"{self.cross_prefix()}gcc"},
        )

    def compile(self, source: Path, env: dict[str, str]) -> None:
        self.make(
            source,
            f"PROGRAMS={' '.join(DROPBEAR_PROGRAMS)}",
            "MULTI=1",
            "STATIC=1",
            env=env,
        )

    def install(self, source: Path, env: dict[str, str]) -> Path:
        binary = self.require_output(source / "dropbearmulti")
        install_dir = self.workspace.install_files(
            {"bin/dropbearmulti": binary}, self.install_dir()
        )
        bin_dir = install_dir / "bin"
        for program in DROPBEAR_PROGRAMS:
            (bin_dir / program).symlink_to("dropbearmulti")
        return install_dir


class RootfsBuilder:
    """Composite stage assembling the minimal root filesystem."""

    stage_name = "rootfs"
    component = "rootfs"

    def __init__(
        self,
        context: BuildContext,
        workspace: WorkspaceManager,
        templates_dir: Path,
    ) -> None:
        self.context = context
        self.workspace = workspace
        self.templates_dir = templates_dir

    def install_dir(self) -> Path:
        target = self.context.target_name
        if target is None:
            raise PreconditionError("Stage rootfs needs a target", stage=self.stage_name)
        return self.workspace.artifact_dir(target, self.context.isa, self.component)

    def kernel_dir(self) -> Path:
        return self.install_dir().parent / "linux"

    def component_builders(self) -> list[ComponentBuilder]:
        return [
            BusyboxBuilder(self.context, self.workspace),
            DropbearBuilder(self.context, self.workspace),
        ]

    def check_preconditions(self) -> None:
        image = self.kernel_dir() / "Image"
        if not image.is_file():
            raise PreconditionError(
                f"Kernel image not found at {image}; run build_kernel first",
                stage=self.stage_name,
            )

    def template_values(self) -> dict[str, str]:
        return {
            "TARGET": self.context.target_name or "",
            "ISA": self.context.isa.label,
            "ABI": self.context.abi,
        }

    def populate(self, root: Path, component_dirs: list[Path]) -> None:
        """Fill *root* with the skeleton, kernel modules, binaries and templates."""
        for name in SKELETON_DIRS:
            (root / name).mkdir(parents=True, exist_ok=True)

        modules = self.kernel_dir() / "modules" / "lib" / "modules"
        if modules.is_dir():
            shutil.copytree(modules, root / "lib" / "modules", symlinks=True)
        else:
            logger.info("Kernel has no module tree; skipping modules")

        for component_dir in component_dirs:
            shutil.copytree(
                component_dir,
                root,
                symlinks=True,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(MANIFEST_NAME),
            )

        stage_template_tree(self.templates_dir / "rootfs", root, self.template_values())

    def package(self, root: Path, image: Path) -> Path:
        """Pack *root* into a gzip-compressed newc cpio archive at *image*."""
        runner = self.workspace.open_stage(self.stage_name)
        runner.run(
            [
                "bash",
                "-o",
                "pipefail",
                "-c",
                "find . -print0 | cpio --null --create --format=newc --owner=0:0"
                f" | gzip -9 > {shlex.quote(str(image))}",
            ],
            cwd=root,
        )
        return image

    def build(self) -> Path:
        """Build the rootfs.

        Returns:
            The directory tree when the skip-image flag was armed, otherwise
            the compressed image.

        Raises:
            PreconditionError: If the kernel has not been built.
        """
        skip_image = self.context.consume(OneShotFlag.SKIP_ROOTFS_IMAGE)
        self.check_preconditions()
        logger.info("Building rootfs (%s)", self.context.isa.label)

        component_dirs = [builder.build() for builder in self.component_builders()]

        install_dir = self.workspace.replace_directory(self.install_dir())
        root = install_dir / ROOT_DIR_NAME
        try:
            root.mkdir()
            self.populate(root, component_dirs)
            if skip_image:
                output = root
            else:
                output = self.package(root, install_dir / IMAGE_NAME)
                shutil.rmtree(root)
        except Exception:
            self.workspace.remove(install_dir)
            raise

        if not skip_image:
            write_manifest(install_dir, self.component, {"stage": self.stage_name})
        logger.info("Rootfs ready: %s", output)
        return output


__all__ = [
    "BusyboxBuilder",
    "DROPBEAR_PROGRAMS",
    "DropbearBuilder",
    "IMAGE_NAME",
    "RootfsBuilder",
    "SKELETON_DIRS",
]
