"""
Revision resolvers for provenance lines.

The source history is usually a git-cinnabar clone of a Mercurial
repository, so the SHA of a commit means nothing to someone browsing the
Mercurial web view. A resolver turns a source commit into the URL written
after `[tag] From`.
"""

from typing import Protocol

from git.exc import GitCommandError

from .config import SyncConfig
from .errors import ProvenanceLookupError
from .git_ops import NULL_SHA, GitRepository


class RevisionResolver(Protocol):
    """Translates a source commit into the URL recorded in its provenance line."""

    def resolve(self, commit_hash: str) -> str:
        """Return the public URL of commit_hash or raise ProvenanceLookupError."""
        ...


class CinnabarRevisionResolver:
    """Maps git commits to Mercurial changesets with `git cinnabar git2hg`."""

    def __init__(self, repository: GitRepository, url_template: str):
        self.repository = repository
        self.url_template = url_template

    def resolve(self, commit_hash: str) -> str:
        try:
            changeset = self.repository.cinnabar_git2hg(commit_hash)
        except GitCommandError as e:
            raise ProvenanceLookupError(commit_hash, f"git cinnabar failed: {e.stderr or e}") from e
        # git-cinnabar answers with the null id for commits it does not know
        if not changeset or changeset == NULL_SHA:
            raise ProvenanceLookupError(commit_hash, "no Mercurial changeset for this commit")
        return self.url_template.format(rev=changeset)


class GitRevisionResolver:
    """Uses the git commit hash as-is, for sources that are plain git repositories."""

    def __init__(self, url_template: str):
        self.url_template = url_template

    def resolve(self, commit_hash: str) -> str:
        return self.url_template.format(rev=commit_hash)


class PullRequestResolver:
    """Points every commit at the pull request it is being imported from."""

    def __init__(self, pull_request_url: str):
        self.pull_request_url = pull_request_url

    def resolve(self, commit_hash: str) -> str:
        return self.pull_request_url


def resolver_for(config: SyncConfig, source_repo: GitRepository) -> RevisionResolver:
    """Build the resolver the configuration asks for."""
    if config.revision_lookup == "cinnabar":
        return CinnabarRevisionResolver(source_repo, config.revision_url_template)
    return GitRevisionResolver(config.revision_url_template)
