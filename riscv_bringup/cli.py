"""Thin CLI wrapper for riscv_bringup.

This module provides the command-line interface using Typer.
All build logic is delegated to the Pipeline and its stages.

Exit codes: 0 success, 1 stage failure, 2 usage error, 3 fatal patch.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from riscv_bringup import __version__
from riscv_bringup.config import Settings, get_settings, print_settings_json
from riscv_bringup.errors import (
    EXIT_OK,
    EXIT_STAGE_FAILURE,
    EXIT_USAGE,
    FatalPatchError,
    StageError,
    UsageError,
)
from riscv_bringup.pipeline import Pipeline
from riscv_bringup.stages.toolchain import VALID_TOOLCHAINS
from riscv_bringup.targets.base import Target, TargetCommand, TargetRegistry
from riscv_bringup.targets.builtin import default_registry
from riscv_bringup.types import RunOutcome

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Route package logging through rich at the effective level."""
    package_logger = logging.getLogger("riscv_bringup")
    package_logger.setLevel(settings.effective_log_level)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        handler = RichHandler(console=err_console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        package_logger.addHandler(handler)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"riscv-bringup version {__version__}")
        raise typer.Exit()


def _report_stage_failure(pipeline: Pipeline, error: StageError | FatalPatchError) -> None:
    stage = error.stage or "(unknown)"
    log_path = error.log_path
    if log_path is None and error.stage is not None:
        log_path = pipeline.workspace.stage_logs.get(error.stage)
    console.print(f"[red]Stage {stage} failed: {error}[/red]")
    if log_path is not None:
        console.print(f"  See log: {log_path}")


def execute(
    ctx: typer.Context,
    command: str,
    action: Callable[[Pipeline], object],
    target: Target | None = None,
) -> None:
    """Run *action* against a fresh Pipeline and exit with the mapped code.

    Logs are finalized for every outcome: kept on failure (or success in
    verbose mode), discarded otherwise.
    """
    settings: Settings = ctx.obj
    setup_logging(settings)
    pipeline = Pipeline(settings)
    outcome = RunOutcome.FAILED
    code = EXIT_STAGE_FAILURE
    try:
        if target is not None:
            pipeline.select_target(target, command)
        action(pipeline)
        outcome = RunOutcome.SUCCEEDED
        code = EXIT_OK
    except UsageError as e:
        outcome = RunOutcome.USAGE
        code = e.exit_code
        console.print(f"[red]Error: {e}[/red]")
        console.print(ctx.get_help())
    except FatalPatchError as e:
        code = e.exit_code
        _report_stage_failure(pipeline, e)
        console.print(f"[red]Patch {e.patch.name} is mandatory; aborting run[/red]")
    except StageError as e:
        code = e.exit_code
        _report_stage_failure(pipeline, e)
    finally:
        retained = pipeline.workspace.finalize(outcome, verbose=settings.verbose)
    if retained is not None:
        console.print(f"Build logs: {retained}")
    raise typer.Exit(code=code)


def _add_shared_commands(app: typer.Typer) -> None:
    @app.command("help")
    def help_command(ctx: typer.Context) -> None:
        """Show usage and exit with the usage code."""
        console.print(ctx.parent.get_help() if ctx.parent else ctx.get_help())
        raise typer.Exit(code=EXIT_USAGE)

    @app.command()
    def config(
        ctx: typer.Context,
        json_output: Annotated[
            bool,
            typer.Option("--json", help="Output as JSON"),
        ] = False,
    ) -> None:
        """Show effective configuration."""
        settings: Settings = ctx.obj
        if json_output:
            console.print_json(print_settings_json(settings))
            return
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Workspace directory: {settings.workspace_dir}")
        console.print(f"  Sources directory:   {settings.sources_dir}")
        console.print(f"  Targets directory:   {settings.targets_dir}")
        console.print(f"  Templates directory: {settings.templates_dir}")
        console.print()
        console.print("[bold]Build:[/bold]")
        console.print(f"  ISA:                 rv{settings.isa}")
        console.print(f"  Firmware platform:   {settings.firmware_platform or '(target default)'}")
        console.print(f"  Jobs:                {settings.jobs or '(host cores)'}")
        console.print(f"  Build timeout:       {settings.build_timeout or '(none)'}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Force refetch:       {settings.force_refetch}")
        console.print(f"  Verbose:             {settings.verbose}")
        console.print(f"  Log level:           {settings.effective_log_level}")

    @app.command()
    def cleanup(
        ctx: typer.Context,
        sources: Annotated[
            bool,
            typer.Option("--sources", help="Also remove the source cache"),
        ] = False,
        artifacts: Annotated[
            bool,
            typer.Option("--artifacts", help="Also remove toolchains and artifacts"),
        ] = False,
    ) -> None:
        """Remove retained build logs (and optionally caches and artifacts)."""
        settings: Settings = ctx.obj
        setup_logging(settings)
        removed = Pipeline(settings).cleanup(sources=sources, artifacts=artifacts)
        if not removed:
            console.print("[yellow]Nothing to clean[/yellow]")
            return
        for path in removed:
            console.print(f"[green]Removed {path}[/green]")

    @app.command()
    def bootstrap(ctx: typer.Context) -> None:
        """Build the newlib, glibc and musl toolchains and the emulator."""
        execute(ctx, "bootstrap", lambda p: p.bootstrap())

    @app.command("build_toolchain")
    def build_toolchain(
        ctx: typer.Context,
        toolchain_type: Annotated[
            str,
            typer.Argument(
                metavar="TYPE", help=f"One of: {', '.join(VALID_TOOLCHAINS)}"
            ),
        ],
    ) -> None:
        """Build one cross toolchain variant."""
        execute(ctx, "build_toolchain", lambda p: p.build_toolchain(toolchain_type))

    @app.command("build_qemu")
    def build_qemu(ctx: typer.Context) -> None:
        """Build the RISC-V emulator."""
        execute(ctx, "build_qemu", lambda p: p.build_qemu())


def _target_app(target: Target) -> typer.Typer:
    """Create the sub-command group for one target."""
    target_app = typer.Typer(
        name=target.name,
        help=target.description or f"Build for target {target.name}",
        no_args_is_help=True,
    )
    supported = set(target.command_names)

    if "bootstrap" in supported:

        @target_app.command()
        def bootstrap(ctx: typer.Context) -> None:
            """Provision everything this target needs."""
            execute(ctx, "bootstrap", lambda p: p.bootstrap(), target)

    if "build_kernel" in supported:

        @target_app.command("build_kernel")
        def build_kernel(
            ctx: typer.Context,
            initramfs: Annotated[
                bool,
                typer.Option("--initramfs", help="Embed the rootfs as initramfs"),
            ] = False,
        ) -> None:
            """Build the kernel."""
            execute(
                ctx, "build_kernel", lambda p: p.build_kernel(initramfs=initramfs), target
            )

    if "build_bootloader" in supported:

        @target_app.command("build_bootloader")
        def build_bootloader(
            ctx: typer.Context,
            payload: Annotated[
                bool,
                typer.Option("--payload", help="Embed the kernel as payload"),
            ] = False,
        ) -> None:
            """Build the bbl bootloader."""
            execute(
                ctx,
                "build_bootloader",
                lambda p: p.build_bootloader(payload=payload),
                target,
            )

    if "build_firmware" in supported:

        @target_app.command("build_firmware")
        def build_firmware(
            ctx: typer.Context,
            payload: Annotated[
                bool,
                typer.Option("--payload", help="Embed the kernel as payload"),
            ] = False,
            platform: Annotated[
                str | None,
                typer.Option("--platform", help="Firmware platform identifier"),
            ] = None,
        ) -> None:
            """Build the OpenSBI firmware."""
            execute(
                ctx,
                "build_firmware",
                lambda p: p.build_firmware(payload=payload, platform=platform),
                target,
            )

    if "build_rootfs" in supported:

        @target_app.command("build_rootfs")
        def build_rootfs(
            ctx: typer.Context,
            skip_image: Annotated[
                bool,
                typer.Option("--skip-image", help="Leave the tree, no cpio image"),
            ] = False,
        ) -> None:
            """Build the root filesystem."""
            execute(
                ctx,
                "build_rootfs",
                lambda p: p.build_rootfs(skip_image=skip_image),
                target,
            )

    for extra in target.extra_commands():
        _add_target_command(target_app, target, extra)

    return target_app


def _add_target_command(target_app: typer.Typer, target: Target, command: TargetCommand) -> None:
    @target_app.command(command.name, help=command.help)
    def run_extra(ctx: typer.Context) -> None:
        execute(ctx, command.name, command.handler, target)


def build_app(
    settings: Settings | None = None,
    registry: TargetRegistry | None = None,
) -> typer.Typer:
    """Create the CLI application.

    Args:
        settings: Base settings (default: loaded from environment).
        registry: Target registry (default: built-in plus manifest targets).

    Returns:
        Typer application with one command group per target.
    """
    base_settings = settings or get_settings()
    if registry is None:
        registry = default_registry(base_settings)

    app = typer.Typer(
        name="bringup",
        help="RISC-V bring-up - toolchains, emulator, kernel, firmware and rootfs",
        no_args_is_help=True,
    )

    @app.callback()
    def main(
        ctx: typer.Context,
        isa: Annotated[
            int | None,
            typer.Option("--isa", help="Base ISA width (32 or 64)"),
        ] = None,
        force_refetch: Annotated[
            bool,
            typer.Option("--force-refetch", help="Re-clone sources instead of refreshing"),
        ] = False,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Verbose output; keep logs"),
        ] = False,
        workspace: Annotated[
            Path | None,
            typer.Option("--workspace", help="Workspace root directory"),
        ] = None,
        version: Annotated[
            bool | None,
            typer.Option(
                "--version",
                "-V",
                help="Show version and exit",
                callback=version_callback,
                is_eager=True,
            ),
        ] = None,
    ) -> None:
        """RISC-V bring-up - toolchains, emulator, kernel, firmware and rootfs."""
        if isa is not None and isa not in (32, 64):
            raise typer.BadParameter("must be 32 or 64", param_hint="--isa")
        overrides: dict[str, object] = {}
        if isa is not None:
            overrides["isa"] = isa
        if force_refetch:
            overrides["force_refetch"] = True
        if verbose:
            overrides["verbose"] = True
        if workspace is not None:
            overrides["workspace_dir"] = workspace
        ctx.obj = base_settings.model_copy(update=overrides)

    _add_shared_commands(app)
    for target in registry:
        app.add_typer(_target_app(target), name=target.name)
    return app


app = build_app()

__all__ = ["app", "build_app", "execute", "setup_logging"]


if __name__ == "__main__":
    app()
