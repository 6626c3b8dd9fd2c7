"""
Bugzilla REST client.

Bugs are only an audit trail for imports: a bug is filed (or looked up by
alias) to carry the imported change, and comments record what was landed.
"""

import logging
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict

from .errors import BugTrackerAPIError

logger = logging.getLogger(__name__)


class Bug(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    summary: str = ""
    status: str = ""


class CreatedBug(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class CreatedComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class BugzillaClient:
    """Talks to the Bugzilla REST API (`/rest/bug`)."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}/rest/{path.lstrip('/')}"
        params = dict(kwargs.pop("params", None) or {})
        if self.api_key:
            params["api_key"] = self.api_key
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, params=params, **kwargs)
        except requests.RequestException as e:
            raise BugTrackerAPIError(f"{method} {url} failed: {e}") from e
        if not response.ok:
            raise BugTrackerAPIError(
                f"Bugzilla {method} {path} failed with HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        data = response.json()
        # Bugzilla reports some failures with a 200 and an error payload
        if isinstance(data, dict) and data.get("error"):
            raise BugTrackerAPIError(
                f"Bugzilla {method} {path} failed: {data.get('message', 'unknown error')}",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    def get_bug(self, id_or_alias: int | str) -> Bug | None:
        """Fetch a bug by number or alias; None if Bugzilla returns no bug."""
        data = self._request("GET", f"bug/{id_or_alias}")
        bugs = data.get("bugs") or []
        if not bugs:
            return None
        return Bug.model_validate(bugs[0])

    def create_bug(self, product: str, component: str, summary: str, version: str = "unspecified") -> int:
        """File a bug and return its number."""
        if not self.api_key:
            raise BugTrackerAPIError("Filing a bug requires a Bugzilla API key")
        data = self._request(
            "POST",
            "bug",
            json={
                "product": product,
                "component": component,
                "summary": summary,
                "version": version,
            },
        )
        return CreatedBug.model_validate(data).id

    def post_comment(self, bug_id: int, comment: str) -> int:
        """Add a comment to a bug and return the comment id."""
        if not self.api_key:
            raise BugTrackerAPIError("Commenting requires a Bugzilla API key")
        data = self._request("POST", f"bug/{bug_id}/comment", json={"comment": comment})
        return CreatedComment.model_validate(data).id
