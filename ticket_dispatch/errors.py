"""
Typed errors for access control and the Zammad backend.

Each error carries the HTTP status the API answers with; route handlers
never build status codes themselves.
"""


class DispatchError(Exception):
    """Base class for all dispatch domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class AuthorizationError(DispatchError):
    """Actor may not see or act on the requested region/group (403)."""

    status_code = 403


class DispatchConflictError(DispatchError):
    """Ticket is not in a state that allows auto-assignment (409)."""

    status_code = 409


class ZammadError(DispatchError):
    """Zammad request failed after retries (502)."""

    status_code = 502

    def __init__(self, detail: str = "Zammad request failed", http_status: int | None = None):
        self.http_status = http_status
        super().__init__(detail)


class ZammadNotConfiguredError(ZammadError):
    """ZAMMAD_URL / ZAMMAD_API_TOKEN missing (503)."""

    status_code = 503

    def __init__(self):
        super().__init__(
            "Zammad is not configured. Please set ZAMMAD_URL and ZAMMAD_API_TOKEN environment variables."
        )
