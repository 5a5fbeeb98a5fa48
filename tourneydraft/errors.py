"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class DuplicateResourceError(AppError):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, message="Resource already exists."):
        """Initialize the error."""
        super().__init__(message, 409)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class RemoteStoreError(AppError):
    """Raised when the remote draft store rejects a request."""

    def __init__(self, message="The remote store rejected the request.", status_code=502):
        """Initialize the error."""
        super().__init__(message, status_code)


class OwnershipError(RemoteStoreError):
    """Raised when a draft belongs to another user."""

    def __init__(self, message="You do not own this draft."):
        """Initialize the error."""
        super().__init__(message, 403)


class NetworkError(RemoteStoreError):
    """Raised when the remote store cannot be reached.

    Transient: callers fall back to local storage instead of failing.
    """

    def __init__(self, message="The remote store is unreachable."):
        """Initialize the error."""
        super().__init__(message, 503)


class LocalStorageError(AppError):
    """Raised when the local draft cache cannot be read or written."""

    def __init__(self, message="Local draft storage failed."):
        """Initialize the error."""
        super().__init__(message, 500)
