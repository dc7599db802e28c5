class ServiceError(Exception):
    """Base exception for service layer failures."""

    http_status = 500

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class DownstreamServiceError(ServiceError):
    """Raised when Supabase returns an error response or cannot be reached."""

    http_status = 502

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class ValidationError(ServiceError):
    """Raised when a request cannot be processed as submitted. Nothing is written."""

    http_status = 400


class NotFoundError(ServiceError):
    http_status = 404


class PersistenceError(ServiceError):
    """Raised when a store write fails part way through an operation."""

    http_status = 400
