"""
GitHub REST client used to publish the replay branch.

Only the three calls the publisher needs are implemented: look up an open
pull request by head branch, create one, and comment on it. Responses are
decoded into pydantic models; an absent pull request is returned as None.
"""

import logging
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict

from .errors import ForgeAPIError

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.github.v3+json"


class PullRequest(BaseModel):
    """The subset of a GitHub pull request the syncer uses."""

    model_config = ConfigDict(extra="ignore")

    number: int
    html_url: str
    comments_url: str
    state: str = "open"
    title: str = ""


class IssueComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    html_url: str = ""
    body: str = ""


class GitHubClient:
    """Minimal GitHub REST API client authenticated with a personal access token."""

    def __init__(
        self,
        repository: str,
        user: str,
        token: str,
        api_url: str = "https://api.github.com",
        session: requests.Session | None = None,
    ):
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.auth = (user, token)
        self.session.headers.update({"Accept": ACCEPT_HEADER})

    def _url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repository}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise ForgeAPIError(f"{method} {url} failed: {e}") from e
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response, action: str) -> None:
        if response.ok:
            return
        raise ForgeAPIError(
            f"GitHub {action} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    def find_pull_request(self, head_owner: str, branch: str) -> PullRequest | None:
        """Return the open PR whose head is head_owner:branch, or None."""
        response = self._request(
            "GET",
            self._url("pulls"),
            params={"head": f"{head_owner}:{branch}", "state": "open"},
        )
        self._raise_for_status(response, "pull request lookup")
        pulls = response.json()
        if not pulls:
            return None
        return PullRequest.model_validate(pulls[0])

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> PullRequest | None:
        """
        Open a pull request.

        GitHub answers 422 when a PR for the same head already exists; that
        is reported as None so the caller can look the existing one up.
        """
        response = self._request(
            "POST",
            self._url("pulls"),
            json={"title": title, "body": body, "head": head, "base": base},
        )
        if response.status_code == 422:
            logger.info("GitHub refused to open a second PR for %s: %s", head, response.text)
            return None
        self._raise_for_status(response, "pull request creation")
        return PullRequest.model_validate(response.json())

    def post_comment(self, comments_url: str, body: str) -> IssueComment:
        """Post a comment to the issue/PR behind comments_url."""
        response = self._request("POST", comments_url, json={"body": body})
        self._raise_for_status(response, "comment")
        return IssueComment.model_validate(response.json())
