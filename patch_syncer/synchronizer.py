"""
Incremental patch synchronization from the monorepo to the target repository.

A run exports every source commit touching the tracked subdirectory since
the marker branch, annotates each patch with where it came from, and
replays the set onto the replay branch of the target repository. The marker
only moves after the whole set has been replayed; publishing happens after
that and never rolls the marker back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from git.exc import GitCommandError
from rich.console import Console
from rich.table import Table

from .config import ConflictPolicy, SyncConfig, SyncState
from .credentials import CredentialProvider, FileCredentialProvider
from .errors import PreconditionError, ReplayConflictError, SyncError
from .git_ops import GitRepository, remove_tree
from .patches import PatchRecord, PatchSet, has_diff, inject_provenance, patch_subject
from .provenance import RevisionResolver, resolver_for
from .publisher import Publisher, PublishResult

logger = logging.getLogger(__name__)
console = Console()


class RunState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    REPLAYING = "replaying"
    FAILED = "failed"
    MARKER_ADVANCED = "marker-advanced"
    PUBLISHING = "publishing"


@dataclass
class ReplayResult:
    """Outcome of replaying a patch set onto the replay branch."""

    head: str
    applied: list[str] = field(default_factory=list)
    # Patches git found already present on the branch
    already_applied: list[str] = field(default_factory=list)
    # Patches dropped because of conflicts (skip policy only)
    skipped: list[str] = field(default_factory=list)
    # Previously replayed commits dropped while rebasing (skip policy only)
    rebase_skipped: list[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Result of one synchronizer run."""

    patch_set: PatchSet | None = None
    replay: ReplayResult | None = None
    marker: str | None = None
    publish_result: PublishResult | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    states: list[RunState] = field(default_factory=lambda: [RunState.IDLE])

    @property
    def final_state(self) -> RunState:
        return self.states[-1]

    @property
    def success(self) -> bool:
        return RunState.FAILED not in self.states and not self.errors

    def enter(self, state: RunState) -> None:
        logger.debug("State %s -> %s", self.final_state.value, state.value)
        self.states.append(state)


def compute_patch_set(
    source_repo: GitRepository,
    from_marker: str | None,
    to_marker: str,
    tracked_path: str | None,
    resolver: RevisionResolver,
    tag: str,
    exclude_paths: list[str] | None = None,
) -> PatchSet:
    """
    Export the commits in (from_marker, to_marker] that touch tracked_path.

    Paths in the patches are relative to tracked_path (None exports whole
    commits). Commits whose diff is empty once restricted, and once
    exclude_paths are removed, are dropped. Each kept patch gets a
    provenance line; a resolver failure propagates.
    """
    pathspecs: list[str] = []
    if tracked_path:
        tracked_path = tracked_path.strip("/")
        pathspecs = [tracked_path]
        pathspecs += [f":(exclude){tracked_path}/{pattern}" for pattern in exclude_paths or []]
    else:
        pathspecs = [f":(exclude){pattern}" for pattern in exclude_paths or []]
        if pathspecs:
            # Exclusions alone match nothing; start from everything
            pathspecs.insert(0, ".")

    commits = source_repo.get_commits_in_range(
        from_marker, to_marker, paths=[tracked_path] if tracked_path else None
    )

    records = []
    for commit in commits:
        text = source_repo.format_patch(commit.hash, relative_to=tracked_path, pathspecs=pathspecs)
        if not has_diff(text):
            logger.debug("Dropping %s: empty once restricted to %s", commit.short_hash, tracked_path or ".")
            continue
        url = resolver.resolve(commit.hash)
        records.append(
            PatchRecord(
                source_commit=commit.hash,
                subject=patch_subject(text) or commit.subject,
                author_name=commit.author_name,
                author_email=commit.author_email,
                provenance_url=url,
                text=inject_provenance(text, tag, url),
            )
        )

    return PatchSet(from_marker=from_marker, to_marker=to_marker, records=tuple(records))


def replay(
    target_repo: GitRepository,
    replay_branch: str,
    upstream_ref: str,
    patch_set: PatchSet,
    patch_dir: Path,
    policy: ConflictPolicy = "strict",
    base_ref: str | None = None,
) -> ReplayResult:
    """
    Replay a patch set onto replay_branch.

    The branch is (re)created at base_ref (its previous state, if any) and
    rebased onto upstream_ref, which drops commits that have been merged
    upstream since the last run. The patches are then applied in order.

    With the strict policy the first conflict restores the branch to where
    it was before the call and raises ReplayConflictError. With the skip
    policy conflicting patches are dropped and logged.
    """
    previous_tip = target_repo.resolve(f"refs/heads/{replay_branch}")
    previous_head = target_repo.get_head_ref()
    start = base_ref if base_ref and target_repo.ref_exists(base_ref) else upstream_ref
    skip = policy == "skip"

    target_repo.checkout_branch(replay_branch, start)
    try:
        rebase_skipped = target_repo.rebase(upstream_ref, skip_conflicts=skip)
    except GitCommandError as e:
        _restore_branch(target_repo, replay_branch, previous_tip, previous_head)
        raise ReplayConflictError(None, _git_detail(e)) from e

    for commit_hash in rebase_skipped:
        logger.warning("Skipped %s while rebasing onto %s: conflict", commit_hash[:8], upstream_ref)

    result = ReplayResult(head=target_repo.get_current_commit(), rebase_skipped=rebase_skipped)
    try:
        apply_patch_set(target_repo, patch_set, patch_dir, policy, result=result)
    except ReplayConflictError:
        _restore_branch(target_repo, replay_branch, previous_tip, previous_head)
        raise
    return result


def apply_patch_set(
    repository: GitRepository,
    patch_set: PatchSet,
    patch_dir: Path,
    policy: ConflictPolicy = "strict",
    directory: str | None = None,
    result: ReplayResult | None = None,
) -> ReplayResult:
    """
    Apply a patch set on top of the checked out branch, one `git am` per patch.

    directory prefixes every path in the patches (importing into a
    subdirectory). Under the strict policy the failed am session is aborted
    and ReplayConflictError raised, leaving earlier patches committed; the
    caller decides how to roll back.
    """
    if result is None:
        result = ReplayResult(head=repository.get_current_commit())

    for record, path in zip(patch_set, patch_set.write_to(patch_dir)):
        try:
            created = repository.apply_patch(path, directory=directory)
        except GitCommandError as e:
            if policy == "skip":
                repository.skip_apply()
                result.skipped.append(record.source_commit)
                logger.warning("Skipped %s (%s): does not apply", record.short_hash, record.subject)
                continue
            repository.abort_apply()
            logger.error("Patch %s (%s) does not apply", record.short_hash, record.subject)
            raise ReplayConflictError(record.source_commit, _git_detail(e)) from e

        if created:
            result.applied.append(record.source_commit)
            logger.info("Applied %s (%s)", record.short_hash, record.subject)
        else:
            result.already_applied.append(record.source_commit)
            logger.info("Dropped %s (%s): already applied", record.short_hash, record.subject)

    result.head = repository.get_current_commit()
    return result


def _restore_branch(
    target_repo: GitRepository, branch: str, previous_tip: str | None, previous_head: str
) -> None:
    """Put the replay branch and HEAD back where they were before a failed replay."""
    target_repo.abort_apply()
    if previous_tip is None:
        target_repo.force_checkout(previous_head)
        target_repo.delete_branch(branch)
    else:
        target_repo.set_branch(branch, previous_tip)
        target_repo.force_checkout(previous_head)


def _git_detail(error: GitCommandError) -> str:
    detail = (error.stderr or error.stdout or str(error)).strip()
    return detail.splitlines()[-1] if detail else str(error)


def advance_marker(source_repo: GitRepository, marker_branch: str, new_marker: str) -> None:
    """Force the marker branch to new_marker."""
    source_repo.set_branch(marker_branch, new_marker)
    logger.info("Marker %s advanced to %s", marker_branch, new_marker[:12])


class PatchSynchronizer:
    """Runs the export side: monorepo subdirectory to target repository."""

    def __init__(
        self,
        config: SyncConfig,
        source_repo: GitRepository | None = None,
        target_repo: GitRepository | None = None,
        resolver: RevisionResolver | None = None,
        credentials: CredentialProvider | None = None,
        publisher: Publisher | None = None,
    ):
        """Initialize the synchronizer with configuration and collaborators."""
        self.config = config
        self._source_repo = source_repo
        self._target_repo = target_repo
        self._resolver = resolver
        self.credentials = credentials or FileCredentialProvider(config.resolved_credentials_dir)
        self._publisher = publisher

    @property
    def source_repo(self) -> GitRepository:
        if self._source_repo is None:
            self._source_repo = self._open_repo(self.config.source_repo_path, "source")
        return self._source_repo

    @property
    def target_repo(self) -> GitRepository:
        if self._target_repo is None:
            self._target_repo = self._open_repo(self.config.target_repo_path, "target")
        return self._target_repo

    @property
    def resolver(self) -> RevisionResolver:
        if self._resolver is None:
            self._resolver = resolver_for(self.config, self.source_repo)
        return self._resolver

    @property
    def publisher(self) -> Publisher:
        if self._publisher is None:
            self._publisher = Publisher.from_config(self.config, self.target_repo, self.credentials)
        return self._publisher

    @staticmethod
    def _open_repo(path: Path, label: str) -> GitRepository:
        try:
            return GitRepository(path)
        except ValueError as e:
            raise PreconditionError(f"The {label} checkout is not usable: {e}") from e

    def current_marker(self) -> str | None:
        return self.source_repo.resolve(f"refs/heads/{self.config.marker_branch}")

    def check_preconditions(self, since: str | None = None, publish: bool = False) -> str:
        """
        Verify a run can start; returns the starting marker.

        Nothing is mutated here, so a failure leaves every checkout, branch
        and directory exactly as it was.
        """
        staging = self.config.staging_dir
        if staging.exists():
            raise PreconditionError(
                f"Found leftover staging directory {staging}; a previous run did not "
                "finish. Inspect the target repository and remove it before retrying."
            )
        if publish:
            self.credentials.ssh_key_path()
            self.credentials.forge_token()
        if not self.target_repo.is_clean():
            raise PreconditionError(f"Target checkout {self.target_repo.path} has uncommitted changes")

        if since:
            marker = self.source_repo.resolve(since)
            if marker is None:
                raise PreconditionError(f"Starting revision {since} does not exist in the source repo")
            return marker
        marker = self.current_marker()
        if marker is None:
            raise PreconditionError(
                f"Marker branch {self.config.marker_branch} does not exist in the source repo; "
                "pass --from to choose the first revision to port from"
            )
        return marker

    def source_head(self) -> str:
        if self.config.source_remote:
            self.source_repo.fetch(self.config.source_remote)
            ref = f"{self.config.source_remote}/{self.config.source_branch}"
        else:
            ref = self.config.source_branch
        head = self.source_repo.resolve(ref)
        if head is None:
            raise PreconditionError(f"Source branch {ref} does not exist")
        return head

    def pending_patch_set(self, since: str | None = None) -> PatchSet:
        """Compute the patches a run would replay right now."""
        from_marker = self.check_preconditions(since)
        return compute_patch_set(
            self.source_repo,
            from_marker,
            self.source_head(),
            self.config.tracked_path,
            self.resolver,
            self.config.provenance_tag,
            self.config.exclude_paths,
        )

    def replay_base(self) -> str:
        """Where the replay branch resumes from: local branch, then published branch."""
        config = self.config
        if self.target_repo.has_remote(config.upstream_remote):
            self.target_repo.fetch(config.upstream_remote)
        local = f"refs/heads/{config.replay_branch}"
        if self.target_repo.ref_exists(local):
            return local
        if self.target_repo.has_remote(config.publish_remote):
            self.target_repo.fetch(config.publish_remote)
            published = f"{config.publish_remote}/{config.replay_branch}"
            if self.target_repo.ref_exists(published):
                return published
        return config.upstream_ref

    def run(self, since: str | None = None, dry_run: bool = False) -> RunResult:
        """
        Perform one synchronization run.

        Precondition failures raise PreconditionError before anything changes.
        Extraction and replay failures end in the FAILED state with the marker
        untouched; publishing failures are recorded but leave the marker where
        it is.
        """
        config = self.config
        result = RunResult()
        publish = config.publish and not dry_run
        from_marker = self.check_preconditions(since, publish=publish)
        result.marker = from_marker

        result.enter(RunState.EXTRACTING)
        try:
            to_marker = self.source_head()
            patch_set = compute_patch_set(
                self.source_repo,
                from_marker,
                to_marker,
                config.tracked_path,
                self.resolver,
                config.provenance_tag,
                config.exclude_paths,
            )
        except (SyncError, GitCommandError) as e:
            return self._fail(result, f"Extraction failed: {e}")
        result.patch_set = patch_set

        if dry_run:
            self.print_patch_set(patch_set)
            result.enter(RunState.IDLE)
            return result

        if not patch_set:
            console.print("[green]No new patches found.[/green]")
            if config.advance_marker and config.advance_marker_when_empty and to_marker != from_marker:
                try:
                    advance_marker(self.source_repo, config.marker_branch, to_marker)
                except GitCommandError as e:
                    return self._fail(result, f"Marker advance failed: {e}")
                result.marker = to_marker
            result.enter(RunState.IDLE)
            return result

        console.print(f"\n[bold]Replaying {len(patch_set)} patches onto {config.replay_branch}...[/bold]\n")
        config.staging_dir.mkdir(parents=True)
        result.enter(RunState.REPLAYING)
        try:
            result.replay = replay(
                self.target_repo,
                config.replay_branch,
                config.upstream_ref,
                patch_set,
                config.staging_dir,
                policy=config.conflict_policy,
                base_ref=self.replay_base(),
            )
        except (SyncError, GitCommandError) as e:
            # The staging directory stays behind so the next run refuses to start
            return self._fail(result, f"Replay failed: {e}")

        remove_tree(config.staging_dir)
        if config.advance_marker:
            try:
                advance_marker(self.source_repo, config.marker_branch, to_marker)
            except GitCommandError as e:
                # The replay branch is complete; only the marker lags behind
                return self._fail(result, f"Marker advance failed: {e}")
            result.marker = to_marker
            result.enter(RunState.MARKER_ADVANCED)
            self._record_state(result)
        else:
            console.print("[yellow]Marker not advanced (advance_marker is off)[/yellow]")

        if publish:
            result.enter(RunState.PUBLISHING)
            try:
                result.publish_result = self.publisher.publish()
            except (SyncError, GitCommandError) as e:
                message = f"Publishing failed, local and remote state now differ: {e}"
                logger.error(message)
                result.errors.append(message)
            else:
                self._record_state(result)

        result.enter(RunState.IDLE)
        self._print_summary(result)
        return result

    def _fail(self, result: RunResult, message: str) -> RunResult:
        logger.error(message)
        result.errors.append(message)
        result.enter(RunState.FAILED)
        self._print_summary(result)
        return result

    def _record_state(self, result: RunResult) -> None:
        state = SyncState.load(self.config.state_file)
        pull_request = result.publish_result.pull_request if result.publish_result else None
        state.record_run(
            marker=result.marker or "",
            patch_count=len(result.replay.applied) if result.replay else 0,
            pull_request_url=pull_request.html_url if pull_request else None,
        )
        state.save(self.config.state_file)

    def print_patch_set(self, patch_set: PatchSet) -> None:
        if not patch_set:
            console.print("[green]No patches to replay.[/green]")
            return

        table = Table(title=f"Pending Patches ({len(patch_set)})")
        table.add_column("Commit", style="cyan", width=10)
        table.add_column("Author", style="yellow", width=25)
        table.add_column("Subject", style="white")
        table.add_column("Provenance", style="dim")

        for record in patch_set:
            subject = record.subject[:60] + ("..." if len(record.subject) > 60 else "")
            table.add_row(record.short_hash, record.author_name, subject, record.provenance_url)

        console.print(table)

    def preview(self, since: str | None = None) -> PatchSet:
        """Show what a run would replay without touching the target."""
        console.print(f"\n[bold]Preview: {self.config.tracked_path} → {self.config.replay_branch}[/bold]\n")
        patch_set = self.pending_patch_set(since)
        self.print_patch_set(patch_set)
        return patch_set

    def _print_summary(self, result: RunResult) -> None:
        """Print run summary."""
        console.print("\n[bold]Sync Summary:[/bold]")

        if result.success:
            applied = len(result.replay.applied) if result.replay else 0
            console.print(f"  [green]✓ Replayed {applied} patches[/green]")
        else:
            console.print("  [red]✗ Sync failed[/red]")

        if result.replay:
            if result.replay.already_applied:
                console.print(f"  Already applied: {len(result.replay.already_applied)}")
            if result.replay.skipped:
                console.print(f"  [yellow]Skipped on conflict: {len(result.replay.skipped)}[/yellow]")
        if result.marker:
            console.print(f"  Marker: {result.marker[:12]}")
        if result.publish_result and result.publish_result.pull_request:
            console.print(f"  Pull request: {result.publish_result.pull_request.html_url}")

        if result.errors:
            console.print(f"  [red]Errors: {len(result.errors)}[/red]")
            for error in result.errors:
                console.print(f"    • {error}")

        if result.warnings:
            console.print(f"  [yellow]Warnings: {len(result.warnings)}[/yellow]")
            for warning in result.warnings:
                console.print(f"    • {warning}")

    def status(self) -> None:
        """Print current sync status."""
        config = self.config
        console.print("\n[bold]Patch Syncer Status[/bold]\n")

        console.print("[bold]Configuration:[/bold]")
        console.print(f"  Source repo: {config.source_repo_path} ({config.tracked_path})")
        console.print(f"  Target repo: {config.target_repo_path}")
        console.print(f"  Replay branch: {config.replay_branch} onto {config.upstream_ref}")
        console.print(f"  Conflict policy: {config.conflict_policy}")

        console.print("\n[bold]Marker:[/bold]")
        try:
            marker = self.current_marker()
            if marker:
                console.print(f"  {config.marker_branch}: {marker[:12]}")
            else:
                console.print(f"  {config.marker_branch}: [yellow]not set[/yellow]")
        except SyncError as e:
            console.print(f"  [red]Error reading source repo: {e}[/red]")

        if config.staging_dir.exists():
            console.print(f"\n[red]Leftover staging directory: {config.staging_dir}[/red]")

        state = SyncState.load(config.state_file)
        console.print("\n[bold]Last run:[/bold]")
        if state.last_run_timestamp:
            console.print(f"  At: {state.last_run_timestamp}")
            console.print(f"  Patches replayed: {state.last_patch_count}")
            if state.last_pull_request_url:
                console.print(f"  Pull request: {state.last_pull_request_url}")
        else:
            console.print("  Never")
