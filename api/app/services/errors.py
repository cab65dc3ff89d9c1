"""Lifecycle error taxonomy. Each error carries the HTTP status routes translate it into."""


class LifecycleError(Exception):
    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(LifecycleError):
    """Rejected before any write. Never retried."""
    status_code = 400


class ForbiddenError(LifecycleError):
    status_code = 403


class NotFoundError(LifecycleError):
    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class ConflictError(LifecycleError):
    """A unique guard fired. Engines resolve it by re-querying and reusing."""
    status_code = 409


class TransientError(LifecycleError):
    """Network or timeout talking to storage; surfaced as "try again"."""
    status_code = 503
