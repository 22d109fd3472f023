"""
Diskwright CLI Main Entry Point.

Provides the command-line interface for planning layouts, creating disk
images, cloning partitions and inspecting existing images.
"""

from __future__ import annotations

import json
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any

import click
import humanize
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from diskwright import __version__
from diskwright.core.config import Configuration, load_config
from diskwright.core.errors import DiskwrightError, ManifestError, ValidationError
from diskwright.core.job import Job, JobProgress, JobResult
from diskwright.core.manifest import load_manifest, parse_partition_entries, save_manifest
from diskwright.core.models import (
    DiskImageSpec,
    FileSystem,
    ImageFormat,
    LayoutPlan,
    Preallocation,
    TableKind,
    VerificationReport,
)
from diskwright.core.safety import generate_confirmation_string
from diskwright.core.session import Session
from diskwright.core.sizes import human_size, parse_bytes
from diskwright.layout import LayoutPlanner
from diskwright.operations import (
    BatchCloneJob,
    ClonePartitionJob,
    CreateDiskImageJob,
    ImageInspector,
    PartitionCloner,
)
from diskwright.platform import is_admin

console = Console()

EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_INTERRUPTED = 130


def get_session(ctx: click.Context, dry_run: bool = False) -> Session:
    """Get or create session from context."""
    if "session" not in ctx.obj:
        config: Configuration = ctx.obj["config"]
        if dry_run and not config.dry_run:
            config = config.with_overrides(dry_run=True)
        session = Session(config=config)
        report_path = ctx.obj.get("report_path")
        ctx.find_root().call_on_close(lambda: session.close(report_path))
        ctx.obj["session"] = session
    return ctx.obj["session"]


def emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def fail(message: str, code: int = EXIT_FAILURE) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(code)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Map Diskwright exceptions onto exit codes."""
    try:
        yield
    except ValidationError as e:
        fail(str(e), EXIT_VALIDATION)
    except DiskwrightError as e:
        fail(str(e), EXIT_FAILURE)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(EXIT_INTERRUPTED)


def exit_code_for(result: JobResult[Any]) -> int:
    if result.success:
        return 0
    if result.cancelled:
        return EXIT_INTERRUPTED
    if result.rejected or isinstance(result.exception, ValidationError):
        return EXIT_VALIDATION
    return EXIT_FAILURE


def require_confirmation(target: str, message: str) -> None:
    """Ask the user to type the confirmation string for ``target``."""
    confirm_str = generate_confirmation_string(target)
    console.print(f"[red]⚠️  {message}[/red]")
    user_confirm = click.prompt(f"Type '{confirm_str}' to confirm", default="")
    if user_confirm != confirm_str:
        console.print("[red]Confirmation failed - operation cancelled[/red]")
        sys.exit(EXIT_FAILURE)


@contextmanager
def cancel_on_interrupt(session: Session) -> Iterator[None]:
    """First Ctrl-C cancels the running job at its next checkpoint, a second one aborts."""
    interrupted = False

    def handler(signum: int, frame: Any) -> None:
        nonlocal interrupted
        if interrupted:
            raise KeyboardInterrupt
        interrupted = True
        if session.job_runner.cancel():
            console.print("\n[yellow]Cancelling after the current step (Ctrl-C again to abort)[/yellow]")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def run_with_progress(session: Session, job: Job[Any], description: str, quiet: bool) -> JobResult[Any]:
    """Run a job, showing a progress bar unless ``quiet``."""
    if quiet:
        with cancel_on_interrupt(session):
            return session.run_job(job)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=100)

        def update_progress(prog: JobProgress) -> None:
            progress.update(
                task,
                completed=prog.percentage,
                description=prog.message or description,
            )

        job.context.add_progress_callback(update_progress)
        with cancel_on_interrupt(session):
            result = session.run_job(job)
        if result.success:
            progress.update(task, completed=100)
    return result


def finish_job(ctx: click.Context, result: JobResult[Any]) -> None:
    """Report a failed job and exit with its code."""
    if result.success:
        return
    if ctx.obj["json_output"]:
        emit_json({"success": False, "error": result.error})
    else:
        console.print(f"[red]✗ {result.error}[/red]")
    sys.exit(exit_code_for(result))


def warn_if_unprivileged(session: Session, json_output: bool) -> None:
    if json_output or session.config.dry_run or is_admin():
        return
    console.print("[yellow]⚠️  Not running as root; device operations will likely fail[/yellow]")


def print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]⚠️  {warning}[/yellow]")


def print_dry_run(session: Session) -> None:
    actions = session.get_report().dry_run_actions
    if not actions:
        return
    console.print(
        Panel(
            "\n".join(f"• {action}" for action in actions),
            title="[yellow]DRY RUN - No changes were made[/yellow]",
        )
    )


def layout_table(plan: LayoutPlan, title: str) -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Role", style="magenta")
    table.add_column("Start", style="cyan", justify="right")
    table.add_column("End", style="cyan", justify="right")
    table.add_column("Size", style="green", justify="right")
    table.add_column("Filesystem", style="yellow")

    for placement in plan.placements:
        table.add_row(
            str(placement.index),
            placement.role.value if plan.geometry.table_kind is TableKind.MBR else "",
            str(placement.start_byte),
            str(placement.end_byte),
            human_size(placement.size_bytes),
            placement.filesystem.value,
        )
    return table


def build_spec(
    manifest: Path | None,
    name: str | None,
    size: str | None,
    image_format: str,
    table: str,
    preallocation: str,
    partitions: tuple[str, ...],
) -> DiskImageSpec:
    """Image spec from a manifest file or from command-line options."""
    if manifest is not None:
        if name or size or partitions:
            raise ManifestError("--manifest cannot be combined with --name, --size or --partition")
        return load_manifest(manifest)
    if not size:
        raise ManifestError("--size is required without --manifest")
    return DiskImageSpec(
        path=Path(name or "disk.img").expanduser(),
        size_bytes=parse_bytes(size),
        image_format=ImageFormat(image_format),
        table_kind=TableKind.from_string(table),
        partitions=parse_partition_entries(list(partitions)),
        preallocation=Preallocation(preallocation),
    )


def print_verification(report: VerificationReport) -> None:
    status = "[green]passed[/green]" if report.passed else "[yellow]warnings[/yellow]"
    lines = [
        f"[cyan]Result:[/cyan] {status}",
        f"[cyan]Source size:[/cyan] {human_size(report.source_bytes)}",
        f"[cyan]Target size:[/cyan] {human_size(report.target_bytes)}",
        f"[cyan]Size check:[/cyan] {report.size_check.value}",
        f"[cyan]Filesystem:[/cyan] {report.filesystem.value}",
        f"[cyan]Filesystem check:[/cyan] {report.filesystem_check.value}",
    ]
    if report.source_uuid:
        lines.append(f"[cyan]UUID check:[/cyan] {report.uuid_check.value}")
    lines.extend(f"[yellow]{message}[/yellow]" for message in report.messages)
    console.print(Panel("\n".join(lines), title="Verification"))


@click.group()
@click.version_option(version=__version__, prog_name="Diskwright")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--dry-run", is_flag=True, help="Show what would be done without doing it")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Save a JSON session report to this path",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    json_output: bool,
    verbose: bool,
    dry_run: bool,
    report_path: Path | None,
) -> None:
    """
    Diskwright - Virtual disk image provisioning and cloning.

    Plans MBR/GPT layouts, creates partitioned raw or qcow2 images and
    clones partitions with filesystem-aware tools and rescue fallback.
    """
    ctx.ensure_object(dict)

    if config:
        configuration = Configuration.load(config)
        configuration.ensure_directories()
    else:
        configuration = load_config()

    overrides: dict[str, Any] = {}
    if verbose:
        overrides["verbose"] = True
    if dry_run:
        overrides["dry_run"] = True
    if overrides:
        configuration = configuration.with_overrides(**overrides)

    ctx.obj["config"] = configuration
    ctx.obj["json_output"] = json_output
    ctx.obj["report_path"] = report_path


@cli.command("plan")
@click.option("--size", "-s", help="Disk size (e.g., 10G, 512M)")
@click.option("--table", "-t", type=click.Choice(["mbr", "gpt"]), help="Partition table type")
@click.option(
    "--partition",
    "-p",
    "partitions",
    multiple=True,
    help="Partition as size[:filesystem[:role]], repeatable",
)
@click.option(
    "--manifest",
    "-m",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON manifest file",
)
@click.pass_context
def plan_command(
    ctx: click.Context,
    size: str | None,
    table: str | None,
    partitions: tuple[str, ...],
    manifest: Path | None,
) -> None:
    """Show the partition layout for a manifest without touching any device."""
    config = get_session(ctx).config

    with handle_errors():
        spec = build_spec(
            manifest,
            None,
            size,
            ImageFormat.RAW.value,
            table or config.layout.default_table,
            Preallocation.OFF.value,
            partitions,
        )
        planner = LayoutPlanner(config.layout)
        plan = planner.plan(spec.partitions, planner.geometry(spec.size_bytes, spec.table_kind))

    if ctx.obj["json_output"]:
        emit_json(plan.to_dict())
        return

    console.print(
        layout_table(
            plan,
            f"{spec.table_kind.value.upper()} layout on {human_size(spec.size_bytes)} disk",
        )
    )
    print_warnings(list(plan.warnings))


@cli.command("create")
@click.option(
    "--manifest",
    "-m",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON manifest file",
)
@click.option("--name", "-n", help="Image file to create")
@click.option("--size", "-s", help="Image size (e.g., 10G)")
@click.option(
    "--format", "-f", "image_format", type=click.Choice(["raw", "qcow2"]), default="raw",
    help="Image format",
)
@click.option("--table", "-t", type=click.Choice(["mbr", "gpt"]), help="Partition table type")
@click.option(
    "--preallocation", type=click.Choice(["off", "full"]), default="off",
    help="Preallocate image storage",
)
@click.option(
    "--partition",
    "-p",
    "partitions",
    multiple=True,
    help="Partition as size[:filesystem[:role]], repeatable",
)
@click.option("--overwrite", is_flag=True, help="Replace an existing image")
@click.option("--yes", "-y", is_flag=True, help="Skip the overwrite confirmation")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def create_command(
    ctx: click.Context,
    manifest: Path | None,
    name: str | None,
    size: str | None,
    image_format: str,
    table: str | None,
    preallocation: str,
    partitions: tuple[str, ...],
    overwrite: bool,
    yes: bool,
    dry_run: bool,
) -> None:
    """Create a partitioned and formatted disk image."""
    config: Configuration = ctx.obj["config"]
    json_output = ctx.obj["json_output"]

    with handle_errors():
        spec = build_spec(
            manifest,
            name,
            size,
            image_format,
            table or config.layout.default_table,
            preallocation,
            partitions,
        )

    session = get_session(ctx, dry_run=dry_run)
    warn_if_unprivileged(session, json_output)

    if overwrite and spec.path.exists() and not (yes or session.config.dry_run):
        require_confirmation(spec.path.name, f"This will replace the existing image {spec.path}")

    with handle_errors():
        job = CreateDiskImageJob(spec, overwrite=overwrite)
        result = run_with_progress(session, job, "Creating image...", quiet=json_output)

    finish_job(ctx, result)
    provisioned = result.data

    if json_output:
        data = provisioned.to_dict()
        data["dry_run_actions"] = session.get_report().dry_run_actions
        emit_json(data)
        return

    print_dry_run(session)
    console.print(layout_table(provisioned.plan, f"Partitions on {spec.path}"))
    print_warnings(result.warnings)
    elapsed = humanize.naturaldelta(timedelta(seconds=result.duration_seconds or 0))
    console.print(f"[green]✓ Created {spec.path} in {elapsed}[/green]")


@cli.command("clone")
@click.argument("source")
@click.argument("target")
@click.option("--fs", "filesystem", help="Source filesystem (detected when omitted)")
@click.option("--block-size", "-b", help="Initial block size (e.g., 4M)")
@click.option("--max-attempts", type=click.IntRange(1, 10), help="Attempts before rescue")
@click.option("--no-verify", is_flag=True, help="Skip post-clone verification")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def clone_command(
    ctx: click.Context,
    source: str,
    target: str,
    filesystem: str | None,
    block_size: str | None,
    max_attempts: int | None,
    no_verify: bool,
    yes: bool,
    dry_run: bool,
) -> None:
    """Clone SOURCE onto TARGET, destroying TARGET's contents."""
    json_output = ctx.obj["json_output"]

    with handle_errors():
        try:
            fs = FileSystem.from_string(filesystem) if filesystem else None
        except ValueError as e:
            raise ManifestError(str(e), filesystem) from e
        block_size_bytes = parse_bytes(block_size) if block_size else None

    session = get_session(ctx, dry_run=dry_run)
    warn_if_unprivileged(session, json_output)

    if not (yes or session.config.dry_run):
        require_confirmation(target, f"This will DESTROY all data on {target}")

    with handle_errors():
        job = ClonePartitionJob(
            source,
            target,
            filesystem=fs,
            block_size=block_size_bytes,
            max_attempts=max_attempts,
            verify=not no_verify,
        )
        result = run_with_progress(session, job, f"Cloning {source}...", quiet=json_output)

    finish_job(ctx, result)
    outcome = result.data

    if json_output:
        emit_json(outcome.to_dict())
    else:
        print_dry_run(session)
        if outcome.succeeded:
            console.print(
                f"[green]✓ Cloned {source} to {target} with {outcome.method_used.value} "
                f"(attempt {outcome.attempt_count})[/green]"
            )
        else:
            console.print(f"[red]✗ Clone of {source} to {target} failed[/red]")
            for line in outcome.diagnostics:
                console.print(f"  [dim]{line}[/dim]")
        if outcome.verification is not None:
            print_verification(outcome.verification)

    if not outcome.succeeded:
        sys.exit(EXIT_FAILURE)


def parse_pair(value: str) -> tuple[str, str]:
    source, sep, target = value.partition(":")
    if not sep or not source or not target:
        raise click.BadParameter(f"expected SOURCE:TARGET, got {value!r}")
    return source, target


@cli.command("clone-batch")
@click.option(
    "--pair", "pairs", multiple=True, required=True, help="SOURCE:TARGET pair, repeatable"
)
@click.option("--no-verify", is_flag=True, help="Skip post-clone verification")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.pass_context
def clone_batch_command(
    ctx: click.Context,
    pairs: tuple[str, ...],
    no_verify: bool,
    yes: bool,
    dry_run: bool,
) -> None:
    """Clone several SOURCE:TARGET pairs in sequence."""
    json_output = ctx.obj["json_output"]
    parsed = [parse_pair(pair) for pair in pairs]

    session = get_session(ctx, dry_run=dry_run)
    warn_if_unprivileged(session, json_output)

    if not (yes or session.config.dry_run):
        targets = ", ".join(target for _, target in parsed)
        require_confirmation("batch", f"This will DESTROY all data on {targets}")

    with handle_errors():
        job = BatchCloneJob(parsed, verify=not no_verify)
        result = run_with_progress(session, job, "Cloning...", quiet=json_output)

    finish_job(ctx, result)
    summary = result.data

    if json_output:
        emit_json(summary.to_dict())
    else:
        print_dry_run(session)
        table = Table(title="Batch Clone")
        table.add_column("Source", style="cyan")
        table.add_column("Target", style="cyan")
        table.add_column("Method", style="yellow")
        table.add_column("Attempts", justify="right")
        table.add_column("Result")
        for entry in summary.entries:
            outcome = entry.result
            table.add_row(
                entry.source,
                entry.target,
                outcome.method_used.value if outcome and outcome.method_used else "",
                str(outcome.attempt_count) if outcome else "",
                "[green]✓[/green]" if entry.succeeded else f"[red]✗ {entry.error or ''}[/red]",
            )
        console.print(table)
        console.print(f"Succeeded: {summary.succeeded}  Failed: {summary.failed}")

    if summary.failed or summary.cancelled:
        sys.exit(EXIT_FAILURE)


@cli.command("verify")
@click.argument("source")
@click.argument("target")
@click.option("--fs", "filesystem", help="Filesystem to check (detected when omitted)")
@click.pass_context
def verify_command(
    ctx: click.Context, source: str, target: str, filesystem: str | None
) -> None:
    """Compare sizes of SOURCE and TARGET and check TARGET's filesystem."""
    session = get_session(ctx)

    with handle_errors():
        try:
            fs = FileSystem.from_string(filesystem) if filesystem else None
        except ValueError as e:
            raise ManifestError(str(e), filesystem) from e
        cloner = PartitionCloner(session.toolchain, session.config)
        report = cloner.verify(source, target, fs)

    if ctx.obj["json_output"]:
        emit_json(report.to_dict())
    else:
        print_verification(report)

    if not report.passed:
        sys.exit(EXIT_FAILURE)


@cli.command("inspect")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the derived manifest to this file",
)
@click.pass_context
def inspect_command(ctx: click.Context, image: Path, output: Path | None) -> None:
    """Read IMAGE's partition table back into a manifest."""
    session = get_session(ctx)

    with handle_errors():
        with console.status("Reading partition table..."):
            inspection = ImageInspector(session.toolchain, session.config).inspect(image)
        if output is not None:
            save_manifest(inspection.spec, output)

    if ctx.obj["json_output"]:
        emit_json(inspection.to_dict())
        return

    snapshot = inspection.snapshot
    table = Table(title=f"Partitions on {image}")
    table.add_column("#", style="dim")
    table.add_column("Role", style="magenta")
    table.add_column("Start", style="cyan", justify="right")
    table.add_column("Size", style="green", justify="right")
    table.add_column("Filesystem", style="yellow")
    for entry in snapshot.entries:
        table.add_row(
            str(entry.number),
            entry.role.value,
            str(entry.start_byte),
            human_size(entry.size_bytes),
            entry.filesystem.value,
        )
    console.print(table)
    console.print(Panel(json.dumps(inspection.to_dict(), indent=2), title="Manifest"))
    if output is not None:
        console.print(f"[green]✓ Manifest written to {output}[/green]")


def main() -> None:
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled[/yellow]")
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
