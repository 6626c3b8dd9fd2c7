"""
Configuration handling for patch_syncer.

Defines the configuration schema and provides methods for loading/saving
sync configuration from YAML files, plus the small JSON state file that
records the outcome of previous runs.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator


# Default location for staging directories, credentials and state
DEFAULT_WORK_DIR = Path.home() / ".wrupdater"

ConflictPolicy = Literal["strict", "skip"]

# Environment variables that override values from the YAML file
ENV_OVERRIDES = {
    "PATCH_SYNCER_SOURCE": "source_repo_path",
    "PATCH_SYNCER_TARGET": "target_repo_path",
    "PATCH_SYNCER_UNATTENDED": "unattended",
}


class ForgeConfig(BaseModel):
    """Where the open-source repository lives and how PRs are opened on it."""

    api_url: str = Field(
        default="https://api.github.com", description="Base URL of the forge REST API"
    )
    web_url: str = Field(
        default="https://github.com", description="Base URL of the forge web UI"
    )
    # Repository receiving the pull requests, as owner/name
    repository: str = Field(
        default="servo/webrender", description="Upstream repository (owner/name)"
    )
    # Account owning the fork the replay branch is pushed to
    fork_owner: str = Field(
        default="moz-gfx", description="Owner of the fork holding the replay branch"
    )
    pr_title: str = Field(
        default="Sync changes from mozilla-central",
        description="Title used when opening the sync pull request",
    )
    review_comment: str | None = Field(
        default="@bors-servo r+",
        description="Comment posted on the PR after each publish (None to disable)",
    )

    @property
    def pull_url_prefix(self) -> str:
        """Web URL prefix of pull requests on the upstream repository."""
        return f"{self.web_url.rstrip('/')}/{self.repository}/pull/"


class BugTrackerConfig(BaseModel):
    """Bugzilla settings used for the audit trail of imports."""

    url: str = Field(
        default="https://bugzilla.mozilla.org", description="Bugzilla base URL"
    )
    product: str = Field(default="Core")
    component: str = Field(default="Graphics: WebRender")
    version: str = Field(default="unspecified")


class SyncConfig(BaseModel):
    """Main configuration for the patch syncer."""

    # Source history (the monorepo, usually a git-cinnabar clone)
    source_repo_path: Path = Field(
        ..., description="Path to the source (monorepo) checkout"
    )
    source_branch: str = Field(
        default="master", description="Branch in the source repo to export from"
    )
    source_remote: str | None = Field(
        default=None, description="Remote to fetch in the source repo before a run"
    )
    # Subdirectory of the source repo stored at the root of the target repo
    tracked_path: str = Field(
        default="gfx/wr", description="Subdirectory mirrored into the target repo"
    )
    exclude_paths: list[str] = Field(
        default_factory=list,
        description="Globs (relative to tracked_path) never exported",
    )
    # The SyncMarker lives as a branch in the source repo
    marker_branch: str = Field(
        default="wrupdater-synced",
        description="Source branch marking the last fully ported commit",
    )

    # Target history (the open-source repo)
    target_repo_path: Path = Field(
        ..., description="Path to the target (open-source) checkout"
    )
    upstream_remote: str = Field(
        default="origin", description="Remote of the upstream repository"
    )
    upstream_branch: str = Field(
        default="master", description="Upstream branch patches are replayed onto"
    )
    replay_branch: str = Field(
        default="wrupdater", description="Target branch holding replayed patches"
    )
    publish_remote: str = Field(
        default="moz-gfx", description="Remote the replay branch is pushed to"
    )

    # Provenance annotation
    provenance_tag: str = Field(
        default="wrupdater", description="Tag used in '[tag] From <url>' lines"
    )
    revision_url_template: str = Field(
        default="https://hg.mozilla.org/mozilla-central/rev/{rev}",
        description="URL of a source revision; {rev} is the translated revision",
    )
    revision_lookup: Literal["cinnabar", "git"] = Field(
        default="cinnabar",
        description="How source SHAs are translated for provenance URLs",
    )

    forge: ForgeConfig = Field(default_factory=ForgeConfig)
    bugtracker: BugTrackerConfig = Field(default_factory=BugTrackerConfig)

    # Staging, credentials and state
    work_dir: Path = Field(
        default=DEFAULT_WORK_DIR, description="Directory for staging and state files"
    )
    credentials_dir: Path | None = Field(
        default=None,
        description="Directory with id_rsa/ghapikey/bzapikey (defaults to <work_dir>/moz-gfx-ssh)",
    )

    # Behaviour toggles
    conflict_policy: ConflictPolicy = Field(
        default="strict",
        description="'strict' fails on the first conflicting patch, 'skip' drops it",
    )
    unattended: bool = Field(
        default=False, description="Scheduled run: terse output, no prompts"
    )
    advance_marker: bool = Field(
        default=True, description="Move the marker after a successful replay"
    )
    advance_marker_when_empty: bool = Field(
        default=True, description="Move the marker when there is nothing to port"
    )
    publish: bool = Field(
        default=False, description="Push the replay branch and open/update the PR"
    )

    # Import direction (forge PR -> monorepo)
    import_branch: str = Field(
        default="__wr_pr", description="Monorepo branch receiving imported PRs"
    )
    bindings_manifest: str | None = Field(
        default="gfx/webrender_bindings/Cargo.toml",
        description="Bindings Cargo.toml kept in step with the mirrored crates",
    )
    import_author: str = Field(
        default="WR Updater Bot <graphics-team@mozilla.staktrace.com>",
        description="Author of commits created by the importer",
    )
    integration_ref: str | None = Field(
        default=None,
        description="Source ref of an integration branch (e.g. _autoland) checked for in-flight updates",
    )
    integration_remote: str | None = Field(
        default=None, description="Remote fetched before integration_ref is inspected"
    )

    @field_validator("tracked_path")
    @classmethod
    def _strip_tracked_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("tracked_path must name a subdirectory")
        return value

    @property
    def upstream_ref(self) -> str:
        """Remote-tracking ref of the upstream branch in the target repo."""
        return f"{self.upstream_remote}/{self.upstream_branch}"

    @property
    def staging_dir(self) -> Path:
        """Directory holding exported patches while a run is in flight."""
        return self.work_dir / "staging"

    @property
    def import_staging_dir(self) -> Path:
        """Directory holding PR patches while an import is in flight."""
        return self.work_dir / "patches-incoming"

    @property
    def state_file(self) -> Path:
        return self.work_dir / "state.json"

    @property
    def resolved_credentials_dir(self) -> Path:
        """Get the credentials directory, defaulting to <work_dir>/moz-gfx-ssh."""
        return self.credentials_dir or self.work_dir / "moz-gfx-ssh"

    @classmethod
    def from_yaml(cls, path: Path, environ: dict[str, str] | None = None) -> "SyncConfig":
        """Load configuration from a YAML file, applying environment overrides."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        environ = os.environ if environ is None else environ
        for env_name, field_name in ENV_OVERRIDES.items():
            if environ.get(env_name):
                data[field_name] = environ[env_name]
        return cls.model_validate(data)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )


class SyncState(BaseModel):
    """Records what previous runs did, for `status` and for cron mails."""

    last_marker: str | None = Field(
        None, description="Marker commit after the last successful run"
    )
    last_run_timestamp: str | None = Field(
        None, description="ISO timestamp of the last successful run"
    )
    last_patch_count: int = Field(
        default=0, description="Number of patches replayed by the last run"
    )
    last_pull_request_url: str | None = Field(
        None, description="Pull request the last run published to"
    )

    @classmethod
    def load(cls, path: Path) -> "SyncState":
        """Load state from a JSON file."""
        if not path.exists():
            return cls()
        with open(path) as f:
            data = json.load(f)
        return cls.model_validate(data)

    def save(self, path: Path) -> None:
        """Save state to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    def record_run(self, marker: str, patch_count: int, pull_request_url: str | None) -> None:
        self.last_marker = marker
        self.last_patch_count = patch_count
        self.last_run_timestamp = datetime.now(timezone.utc).isoformat()
        if pull_request_url:
            self.last_pull_request_url = pull_request_url


def create_default_config(
    source_repo_path: Path,
    target_repo_path: Path,
    tracked_path: str | None = None,
    work_dir: Path | None = None,
) -> SyncConfig:
    """Create a default configuration with sensible defaults."""
    extra: dict[str, object] = {}
    if tracked_path:
        extra["tracked_path"] = tracked_path
    if work_dir:
        extra["work_dir"] = work_dir

    return SyncConfig(
        source_repo_path=source_repo_path,
        target_repo_path=target_repo_path,
        **extra,
    )
