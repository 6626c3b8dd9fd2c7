"""
Exception types raised by patch_syncer.

Every failure that should abort a run derives from SyncError so the CLI can
report it uniformly. Expected absences (no open pull request, no marker yet)
are returned as None rather than raised.
"""


class SyncError(Exception):
    """Base class for all patch_syncer failures."""


class PreconditionError(SyncError):
    """The environment is not in a state a run can start from.

    Raised before anything is mutated: leftover staging directory, missing
    credentials, missing marker, invalid repository.
    """


class ProvenanceLookupError(SyncError):
    """A source revision could not be translated for its provenance line."""

    def __init__(self, commit: str, reason: str):
        super().__init__(f"Cannot resolve provenance for {commit[:12]}: {reason}")
        self.commit = commit
        self.reason = reason


class ReplayConflictError(SyncError):
    """A patch (or a rebased commit) did not apply cleanly."""

    def __init__(self, commit: str | None, detail: str):
        where = f"patch from {commit[:12]}" if commit else "rebase onto upstream"
        super().__init__(f"Conflict while applying {where}: {detail}")
        self.commit = commit
        self.detail = detail


class APIError(SyncError):
    """An HTTP API answered with an unexpected status."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ForgeAPIError(APIError):
    """The forge (GitHub) REST API rejected a request."""


class BugTrackerAPIError(APIError):
    """The bug tracker (Bugzilla) REST API rejected a request."""


class PublishError(SyncError):
    """Publishing the replay branch failed after the marker was advanced."""
