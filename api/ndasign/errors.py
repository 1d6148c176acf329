"""Error taxonomy for the NDA workflow.

Services raise these; ``main.py`` renders them as ``{"error": ...}`` JSON bodies
with the matching status code. Extra keyword arguments are merged into the body
(for example ``signedAt`` on an already-signed conflict).
"""


class NdaError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.message, **self.extra}


class AuthenticationRequired(NdaError):
    status_code = 401


class AuthorizationDenied(NdaError):
    status_code = 403


class ValidationFailed(NdaError):
    status_code = 400


class NotFound(NdaError):
    status_code = 404


class Conflict(NdaError):
    status_code = 400


class ExternalProviderError(NdaError):
    status_code = 503


class SyncFailure(NdaError):
    """Metadata write failed after the local commit; queued, never shown to callers."""
    status_code = 503


class VersionConflict(Exception):
    """The directory rejected a metadata write made against a stale version."""
