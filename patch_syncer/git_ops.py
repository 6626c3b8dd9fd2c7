"""
Git operations for the syncer.

Provides a wrapper around git operations using GitPython, handling commit
ranges, patch export (format-patch) and import (am), rebasing, refs and
pushes.
"""

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from git import Commit, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)

NULL_SHA = "0" * 40


@dataclass
class CommitInfo:
    """Information about a git commit."""

    hash: str
    short_hash: str
    message: str
    author_name: str
    author_email: str
    author_date: datetime

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]

    @classmethod
    def from_commit(cls, commit: Commit) -> "CommitInfo":
        """Create CommitInfo from a GitPython Commit object."""
        return cls(
            hash=commit.hexsha,
            short_hash=commit.hexsha[:8],
            message=commit.message.strip(),
            author_name=commit.author.name,
            author_email=commit.author.email,
            author_date=datetime.fromtimestamp(commit.authored_date, tz=timezone.utc),
        )


class GitRepository:
    """Wrapper around a git repository for sync operations."""

    def __init__(self, path: Path):
        """Initialize repository wrapper."""
        self.path = Path(path).resolve()
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ValueError(f"Not a valid git repository: {self.path}") from e

    def get_current_branch(self) -> str:
        """Get the current branch name."""
        return self.repo.active_branch.name

    def get_current_commit(self) -> str:
        """Get the current HEAD commit hash."""
        return self.repo.head.commit.hexsha

    def get_head_ref(self) -> str:
        """Name of the checked out branch, or the commit hash when detached."""
        if self.repo.head.is_detached:
            return self.get_current_commit()
        return self.get_current_branch()

    def force_checkout(self, rev: str) -> None:
        """Check out rev, discarding changes to tracked files."""
        self.repo.git.checkout("-f", rev)

    def resolve(self, rev: str) -> str | None:
        """Resolve a revision to a full commit hash, or None if it does not exist."""
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"{rev}^{{commit}}")
        except GitCommandError:
            return None

    def ref_exists(self, rev: str) -> bool:
        return self.resolve(rev) is not None

    def get_commit(self, commit_hash: str) -> CommitInfo:
        """Get information about a specific commit."""
        return CommitInfo.from_commit(self.repo.commit(commit_hash))

    def get_commits_in_range(
        self,
        since_commit: str | None,
        until: str,
        paths: list[str] | None = None,
    ) -> list[CommitInfo]:
        """
        Get the non-merge commits in (since_commit, until], oldest first.

        When paths is given only commits touching those paths are returned.
        """
        range_spec = f"{since_commit}..{until}" if since_commit else until
        kwargs = {"no_merges": True, "topo_order": True}
        if paths:
            commits = list(self.repo.iter_commits(range_spec, paths=paths, **kwargs))
        else:
            commits = list(self.repo.iter_commits(range_spec, **kwargs))

        # Reverse to get chronological order (oldest first)
        commits.reverse()
        return [CommitInfo.from_commit(c) for c in commits]

    def count_commits(self, range_spec: str) -> int:
        output = self.repo.git.rev_list("--count", range_spec)
        return int(output.strip() or 0)

    def get_messages(self, range_spec: str) -> list[str]:
        """Full commit messages in a range, oldest first."""
        return [
            commit.message
            for commit in reversed(list(self.repo.iter_commits(range_spec)))
        ]

    def format_patch(
        self,
        commit_hash: str,
        relative_to: str | None = None,
        pathspecs: list[str] | None = None,
    ) -> str:
        """
        Export a single commit as an mbox patch.

        With relative_to, the diff is restricted to that directory and its
        paths are rewritten relative to it. The subject is kept verbatim and
        no diffstat is emitted, so text inserted right before the first diff
        ends up in the commit message when the patch is applied.
        """
        # An exact range: with a pathspec, `-1 <commit>` would walk back to
        # the closest ancestor touching the paths when this commit does not
        if self.repo.commit(commit_hash).parents:
            args = [f"{commit_hash}^..{commit_hash}"]
        else:
            args = ["--root", "-1", commit_hash]
        args += ["--stdout", "-k", "--no-stat", "--full-index"]
        if relative_to:
            args.append(f"--relative={relative_to}")
        if pathspecs:
            args.append("--")
            args.extend(pathspecs)
        # Diffs may carry bytes that are not UTF-8; they must reach `git am` intact
        output = self.repo.git.format_patch(*args, stdout_as_string=False, strip_newline_in_stdout=False)
        return output.decode("utf-8", errors="surrogateescape")

    def checkout_branch(self, branch: str, start_point: str) -> None:
        """Create or reset a branch to start_point and check it out."""
        self.repo.git.checkout("-B", branch, start_point)

    def set_branch(self, branch: str, commit_hash: str) -> None:
        """Force a branch to point at commit_hash without touching the worktree."""
        self.repo.git.update_ref(f"refs/heads/{branch}", commit_hash)

    def delete_branch(self, branch: str) -> None:
        if self.ref_exists(f"refs/heads/{branch}"):
            self.repo.git.branch("-D", branch)

    def rebase(self, upstream: str, skip_conflicts: bool = False) -> list[str]:
        """
        Rebase the current branch onto upstream.

        Commits whose changes are already upstream are dropped by git. On a
        conflict the rebase is aborted and GitCommandError re-raised, unless
        skip_conflicts is set, in which case conflicting commits are skipped.

        Returns the hashes of the commits skipped because of conflicts.
        """
        skipped: list[str] = []
        try:
            self.repo.git.rebase(upstream)
            return skipped
        except GitCommandError:
            if not self._rebase_in_progress():
                raise
            if not skip_conflicts:
                self.repo.git.rebase("--abort")
                raise

        while self._rebase_in_progress():
            skipped.append(self.repo.git.rev_parse("REBASE_HEAD"))
            try:
                self.repo.git.rebase("--skip")
            except GitCommandError:
                if not self._rebase_in_progress():
                    raise
        return skipped

    def _rebase_in_progress(self) -> bool:
        git_dir = Path(self.repo.git_dir)
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    def apply_patch(self, patch_file: Path, directory: str | None = None) -> bool:
        """
        Apply one mbox patch with `git am --3way`.

        Returns True if a commit was created, False if git found the change
        already present. A patch that does not apply raises GitCommandError
        with the am session still in progress; call abort_apply or skip_apply.
        """
        logger.debug("Applying %s", patch_file.name)
        before = self.get_current_commit()
        args = ["--3way", "--keep-cr", "-k"]
        if directory:
            args.append(f"--directory={directory}")
        args.append(str(patch_file))
        self.repo.git.am(*args)
        return self.get_current_commit() != before

    def am_in_progress(self) -> bool:
        return (Path(self.repo.git_dir) / "rebase-apply" / "applying").exists()

    def abort_apply(self) -> None:
        if self.am_in_progress():
            self.repo.git.am("--abort")

    def skip_apply(self) -> None:
        self.repo.git.am("--skip")

    def fetch(self, remote: str = "origin", refspec: str | None = None) -> None:
        """Fetch from remote."""
        logger.debug("Fetching %s %s", remote, refspec or "")
        if refspec:
            self.repo.git.fetch(remote, refspec)
        else:
            self.repo.git.fetch(remote)

    def has_remote(self, remote: str) -> bool:
        return remote in {r.name for r in self.repo.remotes}

    def push(
        self,
        remote: str,
        refspec: str,
        force: bool = False,
        ssh_key: Path | None = None,
    ) -> None:
        """Push a refspec, optionally forcing and using a dedicated SSH identity."""
        if force and not refspec.startswith("+"):
            refspec = f"+{refspec}"
        with self.ssh_identity(ssh_key):
            self.repo.git.push(remote, refspec)

    @contextmanager
    def ssh_identity(self, ssh_key: Path | None) -> Iterator[None]:
        if ssh_key is None:
            yield
            return
        command = f"ssh -i {ssh_key} -o IdentitiesOnly=yes"
        with self.repo.git.custom_environment(GIT_SSH_COMMAND=command):
            yield

    def add_and_commit(self, paths: list[str], message: str, author: str | None = None) -> str | None:
        """Stage paths and commit them. Returns the new hash, or None if nothing changed."""
        self.repo.git.add("-A", "--", *paths)
        if not self.repo.git.diff("--cached", "--name-only").strip():
            return None
        args = ["-m", message]
        if author:
            args.extend(["--author", author])
        self.repo.git.commit(*args)
        return self.get_current_commit()

    def is_clean(self) -> bool:
        """True if there are no uncommitted changes to tracked files."""
        return not self.repo.is_dirty(untracked_files=False)

    def cinnabar_git2hg(self, commit_hash: str) -> str:
        """Translate a git commit into its Mercurial changeset via git-cinnabar."""
        return self.repo.git.cinnabar("git2hg", commit_hash).strip()

    def cinnabar_hg2git(self, changeset: str) -> str:
        """Translate a Mercurial changeset into its git commit via git-cinnabar."""
        return self.repo.git.cinnabar("hg2git", changeset).strip()

    def changed_paths(self, old: str, new: str, paths: list[str] | None = None) -> list[str]:
        """Files that differ between two revisions, optionally limited to paths."""
        args = ["--name-only", old, new]
        if paths:
            args.append("--")
            args.extend(paths)
        return [line for line in self.repo.git.diff(*args).splitlines() if line]


def remove_tree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
