# ================================================================
# File     : errors.py
# Purpose  : Exception hierarchy for PIMPoodle
# Notes    : Run-fatal vs tenant-fatal vs recoverable. Components
#            raise these; the tenant runner and main decide who dies.
# ================================================================

from typing import Any, Dict, Optional


class PoodleError(Exception):
    """Base class for every PIMPoodle error."""

    def __init__(self, message: str, cause: Optional[Exception] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.details = details or {}

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "cause": str(self.cause) if self.cause else None,
            "details": self.details,
        }


# ---------------------- Run-fatal ----------------------

class RunFatalError(PoodleError):
    """Aborts the whole run (non-zero exit)."""


class ConfigError(RunFatalError):
    """Configuration missing, unreadable or unusable."""


# ---------------------- Tenant-fatal ----------------------

class TenantError(PoodleError):
    """One tenant cannot be audited; siblings carry on."""

    def __init__(self, tenant: str, message: str, cause: Optional[Exception] = None):
        super().__init__(f"[{tenant}] {message}", cause, {"tenant": tenant})
        self.tenant = tenant


class TenantAuthError(TenantError):
    """Could not authenticate against the tenant."""


class TenantFeedError(TenantError):
    """A whole role feed could not be fetched for the tenant."""


# ---------------------- Graph transport ----------------------

class GraphRequestError(PoodleError):
    """Non-success response from Microsoft Graph."""

    def __init__(self, status: int, url: str = "", body: str = ""):
        super().__init__(f"Graph API request failed with status {status}", details={"url": url, "body": body[:500]})
        self.status = status
        self.url = url

    @property
    def not_found(self) -> bool:
        return self.status == 404


class GraphTransientError(GraphRequestError):
    """5xx from Graph; safe to retry."""


# ---------------------- Recoverable ----------------------

class PrincipalResolutionError(PoodleError):
    """A single principal could not be looked up."""

    def __init__(self, principal_id: str, cause: Optional[Exception] = None):
        super().__init__(f"Could not resolve principal {principal_id}", cause, {"principalId": principal_id})
        self.principal_id = principal_id


class SnapshotError(PoodleError):
    """A snapshot file could not be read or written."""
