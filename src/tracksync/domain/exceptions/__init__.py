"""Domain exceptions."""

import math
from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). DON'T raise this directly - always use a specific subclass so callers can
    # catch precisely (RateLimitExceededError vs AuthExpiredError need very different handling).
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an internal entity is not found."""

    # Yo, this is for "get by ID" on OUR data - Playlist "abc" doesn't exist. A recommendation
    # that doesn't match any catalog track is NOT this; that's a normal Resolution(track=None).
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when entity validation or an invariant check fails.

    Example: a reorder request that is not a permutation of the playlist's
    current tracks, or a negative reconciliation limit.
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("Supabase storage selected but COVER__SUPABASE_URL is empty")
    """

    pass


class AuthenticationError(DomainException):
    """The platform rejected our credential (HTTP 401)."""

    pass


class AuthExpiredError(AuthenticationError):
    """No usable credential: refresh failed or none configured.

    Fatal for the current sync attempt, never for the local database write.
    """

    pass


class TokenRefreshException(AuthExpiredError):
    """Raised when the refresh-token grant fails.

    Hey future me - requires_reauth=True means the refresh token itself is dead (revoked,
    invalid_grant). The token manager stops using it until someone hands it fresh credentials,
    so we never hammer the token endpoint with the same dead token.
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-authenticate.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class ExternalServiceError(DomainException):
    """External platform returned an error.

    The raw status code and platform message are kept so callers can decide
    whether a retry makes sense.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        platform_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.platform_message = platform_message


class RateLimitExceededError(ExternalServiceError):
    """External platform throttled us (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        platform_message: str | None = None,
    ) -> None:
        super().__init__(message, status_code=429, platform_message=platform_message)
        self.retry_after = retry_after

    def user_message(self) -> str:
        """User-facing wait hint, e.g. "try again in about 3 minutes"."""
        if self.retry_after is None:
            return "The streaming service is busy right now, please try again shortly."
        minutes = max(1, math.ceil(self.retry_after / 60))
        unit = "minute" if minutes == 1 else "minutes"
        return (
            "The streaming service is rate limiting us, "
            f"please try again in about {minutes} {unit}."
        )


class VerificationFailedError(DomainException):
    """A downloaded, uploaded or persisted artifact failed post-write validation."""

    def __init__(self, stage: str, attempts: int, detail: str) -> None:
        super().__init__(
            f"Verification failed at stage '{stage}' after {attempts} attempt(s): {detail}"
        )
        self.stage = stage
        self.attempts = attempts
        self.detail = detail


class PartialSyncFailureError(DomainException):
    """Some items of a batched sync succeeded and others did not."""

    def __init__(
        self,
        stage: str,
        succeeded: int,
        failed: int,
        cause: BaseException | None = None,
    ) -> None:
        reason = f": {cause}" if cause else ""
        super().__init__(
            f"Partial sync failure during {stage} "
            f"({succeeded} succeeded, {failed} failed){reason}"
        )
        self.stage = stage
        self.succeeded = succeeded
        self.failed = failed
        self.cause = cause

    @property
    def retry_after(self) -> float | None:
        """Retry hint of the underlying rate limit, if that's what stopped us."""
        if isinstance(self.cause, RateLimitExceededError):
            return self.cause.retry_after
        return None


__all__ = [
    "AuthExpiredError",
    "AuthenticationError",
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "ExternalServiceError",
    "PartialSyncFailureError",
    "RateLimitExceededError",
    "TokenRefreshException",
    "ValidationException",
    "VerificationFailedError",
]
