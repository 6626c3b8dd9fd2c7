"""
Credential providers.

Components never read credentials from fixed paths themselves; they are
handed a provider. FileCredentialProvider reads the files the cron setup
keeps under ~/.wrupdater/moz-gfx-ssh, StaticCredentialProvider is used by
tests and by callers that already hold the secrets.
"""

from pathlib import Path
from typing import Protocol

from .errors import PreconditionError

SSH_KEY_NAME = "id_rsa"
FORGE_TOKEN_NAME = "ghapikey"
BUGTRACKER_KEY_NAME = "bzapikey"


class CredentialProvider(Protocol):
    """Source of the secrets needed to publish and file bugs."""

    def ssh_key_path(self) -> Path:
        """Path of the private key used to push the replay branch."""
        ...

    def forge_token(self) -> str:
        """Personal access token for the forge REST API."""
        ...

    def bugtracker_key(self) -> str | None:
        """API key for the bug tracker, or None when not configured."""
        ...


class FileCredentialProvider:
    """Reads credentials from files in a directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def ssh_key_path(self) -> Path:
        path = self.directory / SSH_KEY_NAME
        if not path.is_file():
            raise PreconditionError(f"No SSH private key found at {path}")
        return path

    def forge_token(self) -> str:
        path = self.directory / FORGE_TOKEN_NAME
        if not path.is_file():
            raise PreconditionError(f"No GitHub API token found at {path}")
        return path.read_text().strip()

    def bugtracker_key(self) -> str | None:
        path = self.directory / BUGTRACKER_KEY_NAME
        if not path.is_file():
            return None
        return path.read_text().strip() or None

    def check(self) -> None:
        """Fail early if the publishing credentials are missing."""
        self.ssh_key_path()
        self.forge_token()


class StaticCredentialProvider:
    """Credentials held in memory."""

    def __init__(
        self,
        ssh_key: Path | None = None,
        token: str | None = None,
        bugtracker_key: str | None = None,
    ):
        self._ssh_key = ssh_key
        self._token = token
        self._bugtracker_key = bugtracker_key

    def ssh_key_path(self) -> Path:
        if self._ssh_key is None:
            raise PreconditionError("No SSH private key configured")
        return self._ssh_key

    def forge_token(self) -> str:
        if not self._token:
            raise PreconditionError("No GitHub API token configured")
        return self._token

    def bugtracker_key(self) -> str | None:
        return self._bugtracker_key

    def check(self) -> None:
        self.ssh_key_path()
        self.forge_token()
