"""
Import of a forge pull request into the monorepo.

This is the reverse of the synchronizer: the commits of a pull request on
the open-source repository are exported as patches, annotated with the pull
request URL, and applied under the tracked subdirectory of the monorepo on
a dedicated branch. A bug is filed to carry the change if none was given.
"""

import logging
from dataclasses import dataclass, field

from git.exc import GitCommandError
from rich.console import Console

from .bugtracker import BugzillaClient
from .cargo_versions import update_bindings_manifest
from .config import SyncConfig
from .credentials import CredentialProvider, FileCredentialProvider
from .errors import APIError, PreconditionError, ReplayConflictError, SyncError
from .git_ops import NULL_SHA, GitRepository, remove_tree
from .patches import PatchSet
from .provenance import PullRequestResolver
from .synchronizer import ReplayResult, apply_patch_set, compute_patch_set

logger = logging.getLogger(__name__)
console = Console()

INCOMING_BRANCH = "__wrincoming"


@dataclass
class ImportResult:
    """Result of importing one pull request."""

    pull_request: int
    bug_number: int | None = None
    base: str | None = None
    hg_rev: str | None = None
    patch_set: PatchSet | None = None
    replay: ReplayResult | None = None
    manifest_commit: str | None = None
    commented: bool = False
    warnings: list[str] = field(default_factory=list)


class PullRequestImporter:
    """Applies a forge pull request to the monorepo under the tracked path."""

    def __init__(
        self,
        config: SyncConfig,
        monorepo: GitRepository | None = None,
        upstream_repo: GitRepository | None = None,
        credentials: CredentialProvider | None = None,
        bugtracker: BugzillaClient | None = None,
    ):
        self.config = config
        self.monorepo = monorepo or GitRepository(config.source_repo_path)
        self.upstream_repo = upstream_repo or GitRepository(config.target_repo_path)
        self.credentials = credentials or FileCredentialProvider(config.resolved_credentials_dir)
        self._bugtracker = bugtracker

    @property
    def bugtracker(self) -> BugzillaClient:
        if self._bugtracker is None:
            self._bugtracker = BugzillaClient(
                self.config.bugtracker.url, api_key=self.credentials.bugtracker_key()
            )
        return self._bugtracker

    def pull_request_url(self, number: int) -> str:
        return f"{self.config.forge.pull_url_prefix}{number}"

    def check_preconditions(self, bug_number: int | None) -> None:
        staging = self.config.import_staging_dir
        if staging.exists():
            raise PreconditionError(
                f"Found leftover import directory {staging}; a previous import did not finish"
            )
        if not self.monorepo.is_clean():
            raise PreconditionError(f"Monorepo checkout {self.monorepo.path} has uncommitted changes")
        if bug_number is None and self._bugtracker is None and not self.credentials.bugtracker_key():
            raise PreconditionError(
                "No Bugzilla API key found; file a bug manually and pass its number with --bug"
            )

    def fetch_pull_request(self, number: int) -> PatchSet:
        """Export the commits of pull request `number` as annotated patches."""
        config = self.config
        repo = self.upstream_repo
        repo.delete_branch(INCOMING_BRANCH)
        repo.fetch(config.upstream_remote, config.upstream_branch)
        repo.fetch(config.upstream_remote, f"pull/{number}/head:{INCOMING_BRANCH}")

        base = repo.resolve(config.upstream_ref)
        return compute_patch_set(
            repo,
            base,
            INCOMING_BRANCH,
            None,
            PullRequestResolver(self.pull_request_url(number)),
            config.provenance_tag,
        )

    def resolve_bug(self, number: int, bug_number: int | None) -> int:
        if bug_number is not None:
            return bug_number
        bugtracker = self.config.bugtracker
        summary = f"Land {self.config.forge.repository}#{number} in mozilla-central"
        new_bug = self.bugtracker.create_bug(
            product=bugtracker.product,
            component=bugtracker.component,
            summary=summary,
            version=bugtracker.version,
        )
        console.print(f"[green]Filed bug {new_bug}: {summary}[/green]")
        return new_bug

    def default_base(self) -> str:
        """
        The monorepo revision a pull request is applied on when none is given.

        The tip of the source branch, unless the integration branch already
        carries changes under the tracked path that the source branch lacks;
        then the import is based on the integration branch so it does not
        conflict with the update in flight.
        """
        config = self.config
        if config.source_remote:
            self.monorepo.fetch(config.source_remote)
            base = f"{config.source_remote}/{config.source_branch}"
        else:
            base = config.source_branch
        if not config.integration_ref:
            return base

        if config.integration_remote:
            self.monorepo.fetch(config.integration_remote)
        if self.monorepo.resolve(config.integration_ref) is None:
            logger.warning("Integration ref %s not found, using %s", config.integration_ref, base)
            return base
        if self.monorepo.changed_paths(base, config.integration_ref, [config.tracked_path]):
            console.print(
                f"[yellow]Found {config.tracked_path} changes already in flight on "
                f"{config.integration_ref}, using it as the base[/yellow]"
            )
            return config.integration_ref
        return base

    def resolve_hg_revision(self, changeset: str) -> str:
        """Translate a Mercurial changeset of the monorepo into its git commit."""
        try:
            commit_hash = self.monorepo.cinnabar_hg2git(changeset)
        except GitCommandError as e:
            raise PreconditionError(f"Cannot translate Mercurial revision {changeset}: {e}") from e
        if not commit_hash or commit_hash == NULL_SHA:
            raise PreconditionError(f"Mercurial revision {changeset} is unknown to the monorepo")
        return commit_hash

    def import_pull_request(
        self,
        number: int,
        bug_number: int | None = None,
        base: str | None = None,
        hg_rev: str | None = None,
    ) -> ImportResult:
        """
        Import pull request `number` onto config.import_branch.

        The base is `base` (a git revision), or the commit `hg_rev` (a
        Mercurial changeset) maps to, or default_base().

        Raises PreconditionError before touching anything, and
        ReplayConflictError (leaving the import directory behind) when a patch
        does not apply under the strict policy.
        """
        if base and hg_rev:
            raise ValueError("Pass either a git base or a Mercurial revision, not both")
        config = self.config
        self.check_preconditions(bug_number)
        result = ImportResult(pull_request=number, hg_rev=hg_rev)

        patch_set = self.fetch_pull_request(number)
        result.patch_set = patch_set
        if not patch_set:
            console.print(f"[yellow]Pull request #{number} has no changes to import.[/yellow]")
            return result

        result.bug_number = self.resolve_bug(number, bug_number)

        if hg_rev:
            base_ref = self.resolve_hg_revision(hg_rev)
        else:
            base_ref = base or self.default_base()
        base_commit = self.monorepo.resolve(base_ref)
        if base_commit is None:
            raise PreconditionError(f"Base revision {base_ref} does not exist in the monorepo")
        result.base = base_commit

        console.print(
            f"\n[bold]Applying {len(patch_set)} patches from #{number} onto {base_ref}...[/bold]\n"
        )
        self.monorepo.checkout_branch(config.import_branch, base_commit)
        result.replay = apply_patch_set(
            self.monorepo,
            patch_set,
            config.import_staging_dir,
            policy=config.conflict_policy,
            directory=config.tracked_path,
        )
        remove_tree(config.import_staging_dir)

        result.manifest_commit = self.update_manifest(number, result.bug_number)
        result.commented = self.comment_on_bug(result)
        return result

    def update_manifest(self, number: int, bug_number: int) -> str | None:
        """Bring the bindings Cargo.toml in line with the imported crates and commit it."""
        config = self.config
        if not config.bindings_manifest:
            return None
        manifest = self.monorepo.path / config.bindings_manifest
        mirror_root = self.monorepo.path / config.tracked_path
        if not manifest.exists() or not (mirror_root / "webrender" / "Cargo.toml").exists():
            logger.info("No bindings manifest to update")
            return None
        if not update_bindings_manifest(mirror_root, manifest):
            return None
        return self.monorepo.add_and_commit(
            [config.bindings_manifest],
            f"Bug {bug_number} - Update crate versions for changes in WR PR #{number}.",
            author=config.import_author,
        )

    def comment_on_bug(self, result: ImportResult) -> bool:
        """Record the import on the bug. Failures are reported, not raised."""
        if result.bug_number is None or not self.credentials.bugtracker_key():
            return False
        applied = len(result.replay.applied) if result.replay else 0
        comment = (
            f"{self.config.forge.repository}#{result.pull_request} "
            f"({self.pull_request_url(result.pull_request)}): {applied} patches applied "
            f"on top of {result.base} as branch {self.config.import_branch}."
        )
        if result.hg_rev:
            comment += f" Base Mercurial revision: {result.hg_rev}."
        try:
            self.bugtracker.post_comment(result.bug_number, comment)
        except APIError as e:
            warning = f"Could not comment on bug {result.bug_number}: {e}"
            logger.warning(warning)
            result.warnings.append(warning)
            return False
        return True


def run_import(
    importer: PullRequestImporter,
    number: int,
    bug_number: int | None,
    base: str | None,
    hg_rev: str | None = None,
) -> ImportResult:
    """Import and print the outcome; errors propagate to the CLI."""
    try:
        result = importer.import_pull_request(number, bug_number=bug_number, base=base, hg_rev=hg_rev)
    except ReplayConflictError:
        console.print(
            f"[red]Import stopped; patches are kept in {importer.config.import_staging_dir}[/red]"
        )
        raise
    except GitCommandError as e:
        raise SyncError(f"git failed during import: {e}") from e

    if result.replay:
        console.print(f"[green]✓ Imported #{number} as {len(result.replay.applied)} commits[/green]")
        if result.bug_number:
            console.print(f"  Bug: {result.bug_number}")
        if result.manifest_commit:
            console.print(f"  Manifest update: {result.manifest_commit[:12]}")
    return result
