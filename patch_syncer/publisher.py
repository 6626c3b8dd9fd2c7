"""
Publishing of the replay branch.

Publishing is best effort: it runs after the marker has moved, and a
failure here means the remote pull request lags behind the local replay
branch until someone pushes it by hand or the next run catches up.
"""

import logging
from dataclasses import dataclass

from .config import SyncConfig
from .credentials import CredentialProvider
from .errors import PublishError
from .forge import GitHubClient, PullRequest
from .git_ops import GitRepository
from .patches import collect_pull_request_numbers

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """What publishing did."""

    pushed: bool
    pull_request: PullRequest | None = None
    created: bool = False
    commented: bool = False
    fixes: list[int] | None = None


def pull_request_body(fixes: list[int]) -> str:
    """Body of the sync PR: one `Fixes #N` line per imported pull request."""
    return "\n".join(f"Fixes #{number}" for number in fixes)


class Publisher:
    """Pushes the replay branch to the fork and opens or updates the pull request."""

    def __init__(
        self,
        config: SyncConfig,
        target_repo: GitRepository,
        client: GitHubClient,
        credentials: CredentialProvider,
    ):
        self.config = config
        self.target_repo = target_repo
        self.client = client
        self.credentials = credentials

    @classmethod
    def from_config(
        cls, config: SyncConfig, target_repo: GitRepository, credentials: CredentialProvider
    ) -> "Publisher":
        client = GitHubClient(
            repository=config.forge.repository,
            user=config.forge.fork_owner,
            token=credentials.forge_token(),
            api_url=config.forge.api_url,
        )
        return cls(config, target_repo, client, credentials)

    def pending_commit_count(self) -> int:
        return self.target_repo.count_commits(f"{self.config.upstream_ref}..{self.config.replay_branch}")

    def referenced_pull_requests(self) -> list[int]:
        """Pull requests that reached the monorepo first and come back through this branch."""
        messages = self.target_repo.get_messages(f"{self.config.upstream_ref}..{self.config.replay_branch}")
        return collect_pull_request_numbers(
            messages, self.config.provenance_tag, self.config.forge.pull_url_prefix
        )

    def find_or_create_pull_request(self, fixes: list[int]) -> tuple[PullRequest, bool]:
        forge = self.config.forge
        existing = self.client.find_pull_request(forge.fork_owner, self.config.replay_branch)
        if existing is not None:
            logger.info("Updating existing pull request %s", existing.html_url)
            return existing, False

        head = f"{forge.fork_owner}:{self.config.replay_branch}"
        created = self.client.create_pull_request(
            title=forge.pr_title,
            body=pull_request_body(fixes),
            head=head,
            base=self.config.upstream_branch,
        )
        if created is not None:
            logger.info("Opened pull request %s", created.html_url)
            return created, True

        # Someone opened it between the lookup and the create call
        existing = self.client.find_pull_request(forge.fork_owner, self.config.replay_branch)
        if existing is None:
            raise PublishError(f"Could not open or find a pull request for {head}")
        return existing, False

    def publish(self) -> PublishResult:
        """
        Force-push the replay branch and make sure a pull request tracks it.

        Nothing is pushed when the replay branch has no commits beyond the
        upstream branch.
        """
        config = self.config
        if self.pending_commit_count() == 0:
            logger.info("Replay branch has nothing beyond %s; not publishing", config.upstream_ref)
            return PublishResult(pushed=False)

        fixes = self.referenced_pull_requests()
        if fixes:
            logger.info("Sync fixes pull requests: %s", ", ".join(f"#{n}" for n in fixes))

        self.target_repo.push(
            config.publish_remote,
            f"{config.replay_branch}:{config.replay_branch}",
            force=True,
            ssh_key=self.credentials.ssh_key_path(),
        )
        logger.info("Pushed %s to %s", config.replay_branch, config.publish_remote)

        pull_request, created = self.find_or_create_pull_request(fixes)
        result = PublishResult(pushed=True, pull_request=pull_request, created=created, fixes=fixes)

        if config.forge.review_comment:
            self.client.post_comment(pull_request.comments_url, config.forge.review_comment)
            result.commented = True
        return result
