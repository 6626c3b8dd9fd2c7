"""
CLI entry point for patch_syncer.

Provides command-line interface for exporting monorepo changes to the
open-source repository and importing pull requests back.
"""

import logging
from datetime import datetime
from pathlib import Path

import click
from git.exc import GitCommandError
from rich.console import Console

from .cargo_versions import update_bindings_manifest
from .config import SyncConfig, create_default_config
from .errors import SyncError
from .importer import PullRequestImporter, run_import
from .logging_config import configure_logging
from .synchronizer import PatchSynchronizer, advance_marker

console = Console()
logger = logging.getLogger(__name__)

CONFIG_OPTION = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=Path("patch_syncer.yaml"),
    envvar="PATCH_SYNCER_CONFIG",
    help="Path to the sync configuration file",
)


def load_config(config_path: Path) -> SyncConfig:
    try:
        return SyncConfig.from_yaml(config_path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config_path}[/red]")
        console.print("Run 'patch-syncer init' to create a configuration file.")
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise SystemExit(1)


def report_failure(error: Exception, unattended: bool) -> None:
    """Report a fatal error and exit with status 1."""
    if unattended:
        logger.error("%s", error)
    else:
        console.print(f"[red]Error: {error}[/red]")
    raise SystemExit(1)


@click.group()
@click.version_option(package_name="patch_syncer")
@click.option("--verbose", "-v", is_flag=True, help="Log git and HTTP details")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Patch Syncer - mirror a monorepo subdirectory into its own repository."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option(
    "--source-repo",
    "-s",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    required=True,
    help="Path to the monorepo checkout",
)
@click.option(
    "--target-repo",
    "-t",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    required=True,
    help="Path to the open-source repository checkout",
)
@click.option("--tracked-path", "-p", default=None, help="Monorepo subdirectory to mirror")
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Directory for staging, credentials and state (defaults to ~/.wrupdater)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("patch_syncer.yaml"),
    help="Output config file path",
)
def init(
    source_repo: Path,
    target_repo: Path,
    tracked_path: str | None,
    work_dir: Path | None,
    output: Path,
):
    """Initialize a new sync configuration file."""
    config = create_default_config(
        source_repo_path=source_repo,
        target_repo_path=target_repo,
        tracked_path=tracked_path,
        work_dir=work_dir,
    )

    config.to_yaml(output)
    console.print(f"[green]Created configuration file: {output}[/green]")
    console.print(f"  Source: {config.source_repo_path} ({config.tracked_path})")
    console.print(f"  Target: {config.target_repo_path}")
    console.print(f"  Work dir: {config.work_dir}")
    console.print("\nEdit this file to set remotes, branches and publishing options.")


@cli.command()
@CONFIG_OPTION
@click.option("--from", "since", default=None, help="Source revision to start after (seeds the marker)")
@click.option("--dry-run", is_flag=True, help="Show the patches that would be replayed")
@click.option("--publish/--no-publish", default=None, help="Push the replay branch and update the PR")
@click.option(
    "--advance-marker/--no-advance-marker",
    "advance",
    default=None,
    help="Move the marker after a successful replay",
)
@click.option(
    "--skip-conflicts",
    is_flag=True,
    help="Drop patches that do not apply instead of failing (double-landed changes)",
)
@click.option("--unattended", is_flag=True, envvar="PATCH_SYNCER_UNATTENDED", help="Scheduled run")
@click.pass_context
def sync(
    ctx: click.Context,
    config_path: Path,
    since: str | None,
    dry_run: bool,
    publish: bool | None,
    advance: bool | None,
    skip_conflicts: bool,
    unattended: bool,
):
    """Replay new monorepo commits onto the replay branch."""
    config = load_config(config_path)
    if unattended:
        config.unattended = True
    if publish is not None:
        config.publish = publish
    if advance is not None:
        config.advance_marker = advance
    if skip_conflicts:
        config.conflict_policy = "skip"

    configure_logging(verbose=ctx.obj["verbose"], unattended=config.unattended)
    if config.unattended:
        # Useful for cron
        logger.info("Running patch-syncer sync at %s", datetime.now().isoformat(timespec="seconds"))

    syncer = PatchSynchronizer(config)
    try:
        result = syncer.run(since=since, dry_run=dry_run)
    except (SyncError, GitCommandError) as e:
        report_failure(e, config.unattended)

    if not result.success:
        raise SystemExit(1)


@cli.command()
@CONFIG_OPTION
@click.option("--from", "since", default=None, help="Source revision to start after")
@click.pass_context
def preview(ctx: click.Context, config_path: Path, since: str | None):
    """Preview the patches the next sync would replay."""
    config = load_config(config_path)
    configure_logging(verbose=ctx.obj["verbose"])

    syncer = PatchSynchronizer(config)
    try:
        syncer.preview(since)
    except (SyncError, GitCommandError) as e:
        report_failure(e, config.unattended)


@cli.command()
@CONFIG_OPTION
def status(config_path: Path):
    """Show current sync status."""
    config = load_config(config_path)
    PatchSynchronizer(config).status()


@cli.command(name="advance-marker")
@CONFIG_OPTION
@click.argument("revision")
def advance_marker_command(config_path: Path, revision: str):
    """Force the marker to REVISION (e.g. after porting a change by hand)."""
    config = load_config(config_path)
    syncer = PatchSynchronizer(config)
    try:
        commit = syncer.source_repo.resolve(revision)
        if commit is None:
            console.print(f"[red]Unknown revision: {revision}[/red]")
            raise SystemExit(1)
        advance_marker(syncer.source_repo, config.marker_branch, commit)
    except (SyncError, GitCommandError) as e:
        report_failure(e, config.unattended)
    console.print(f"[green]Marker {config.marker_branch} now at {commit[:12]}[/green]")


@cli.command(name="import-pr")
@CONFIG_OPTION
@click.argument("number", type=int)
@click.option("--bug", "bug_number", type=int, default=None, help="Existing bug to land the PR under")
@click.option("--base", default=None, help="Monorepo revision to apply the PR on top of")
@click.option("--hg-rev", default=None, help="Mercurial changeset of the monorepo to use as the base")
@click.option("--skip-conflicts", is_flag=True, help="Drop patches that do not apply")
@click.pass_context
def import_pr(
    ctx: click.Context,
    config_path: Path,
    number: int,
    bug_number: int | None,
    base: str | None,
    hg_rev: str | None,
    skip_conflicts: bool,
):
    """Apply pull request NUMBER to the monorepo under the tracked path."""
    config = load_config(config_path)
    if skip_conflicts:
        config.conflict_policy = "skip"
    configure_logging(verbose=ctx.obj["verbose"], unattended=config.unattended)

    try:
        importer = PullRequestImporter(config)
        run_import(importer, number, bug_number=bug_number, base=base, hg_rev=hg_rev)
    except (SyncError, ValueError) as e:
        report_failure(e, config.unattended)


@cli.command(name="bump-versions")
@CONFIG_OPTION
def bump_versions(config_path: Path):
    """Update the bindings Cargo.toml from the mirrored crate manifests."""
    config = load_config(config_path)
    if not config.bindings_manifest:
        console.print("[yellow]No bindings_manifest configured.[/yellow]")
        return

    manifest = config.source_repo_path / config.bindings_manifest
    mirror_root = config.source_repo_path / config.tracked_path
    try:
        changed = update_bindings_manifest(mirror_root, manifest)
    except FileNotFoundError as e:
        console.print(f"[red]Manifest not found: {e.filename}[/red]")
        raise SystemExit(1)

    if changed:
        console.print(f"[green]Updated {manifest}[/green]")
    else:
        console.print("[green]Bindings manifest already up to date.[/green]")


if __name__ == "__main__":
    cli()
