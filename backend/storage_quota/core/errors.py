"""API error classes.

HTTP status codes and machine-readable error codes for every outcome the
storage accounting engine can surface.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories

Only the code and a short message cross the API boundary. Diagnostic
context (user id, credits, account state) is logged by the raising service.
"""

STORAGE_LIMIT_MESSAGE = "Storage limit reached. Upgrade to get more space."


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class InvalidRequestError(APIError):
    """Malformed input (400).

    Raised before any state change: non-positive size, blank media type,
    missing content identifier, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="INVALID_REQUEST",
            message=message,
            status_code=400,
            details=details,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403).

    Raised by the require_admin dependency when user lacks the admin flag.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR doesn't belong to user.

    WHY NOT SEPARATE "FORBIDDEN" FOR WRONG OWNERSHIP:
    - Revealing "exists but not yours" leaks information
    - From user perspective, resource simply doesn't exist
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class UploadNotFoundError(APIError):
    """Upload unknown or owned by another user (404).

    Same response whether or not the id exists for someone else.
    """

    def __init__(self) -> None:
        super().__init__(
            code="UPLOAD_NOT_FOUND",
            message="Upload not found",
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class UploadAlreadyFailedError(ConflictError):
    """Finalize attempted on an upload that already failed (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="UPLOAD_ALREADY_FAILED",
            message="Cannot finalize a failed upload",
        )


class UploadAlreadyCompleteError(ConflictError):
    """Fail attempted on an upload that already completed (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="UPLOAD_ALREADY_COMPLETE",
            message="Cannot fail a completed upload",
        )


class StorageLimitReachedError(APIError):
    """Not enough available storage for the requested upload (403).

    A normal business outcome, not a fault. The client may offer a purchase.
    """

    def __init__(self) -> None:
        super().__init__(
            code="STORAGE_LIMIT_REACHED",
            message=STORAGE_LIMIT_MESSAGE,
            status_code=403,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


class InsufficientCapacityError(Exception):
    """A balance mutation would break the account invariants.

    Raised by account transitions before anything is written. Never returned
    to clients directly; the upload lifecycle maps it to
    StorageLimitReachedError.

    Attributes:
        required: Credits the operation needed.
        available: Credits available (balance - reserved) at the time.
    """

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient available credits. Available: {available}, "
            f"Required: {required}"
        )
