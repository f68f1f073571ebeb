"""Custom exceptions for the adrender engine.

Every failure mode of a render job has its own type so callers can decide
whether to degrade locally or abort. Only FatalJobError is allowed to escape
the render pipeline.
"""

from typing import Any


class RenderError(Exception):
    """Base exception for all adrender errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


# =============================================================================
# Recoverable errors (degrade locally)
# =============================================================================


class AssetDownloadError(RenderError):
    """An asset could not be fetched after all retry attempts."""

    code = "ASSET_DOWNLOAD_FAILED"
    message = "Asset download failed"

    def __init__(self, url: str, attempts: int = 1, reason: str | None = None, **kwargs: Any):
        self.url = url
        self.attempts = attempts
        self.reason = reason
        # Keep signed query strings and inline payloads out of logs
        display = "data:..." if url.startswith("data:") else url.split("?", 1)[0]
        msg = f"Failed to download {display} after {attempts} attempt(s)"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, **kwargs)


class AuthorizationExpiredError(AssetDownloadError):
    """The remote store answered 403, typically an expired presigned URL."""

    code = "ASSET_AUTHORIZATION_EXPIRED"


class FontResolutionError(RenderError):
    """No font file could be resolved for a family/weight."""

    code = "FONT_RESOLUTION_FAILED"
    message = "Font could not be resolved"


class FilterApplicationError(RenderError):
    """Applying overlay filters to one scene failed."""

    code = "FILTER_APPLICATION_FAILED"
    message = "Filter application failed"


class EncodeStrategyError(RenderError):
    """One final encoding strategy failed; the next one should be tried."""

    code = "ENCODE_STRATEGY_FAILED"
    message = "Encoding strategy failed"

    def __init__(self, strategy: str, reason: str | None = None, **kwargs: Any):
        self.strategy = strategy
        msg = f"Strategy '{strategy}' failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, **kwargs)


class VerificationError(RenderError):
    """The rendered output does not match expectations."""

    code = "VERIFICATION_FAILED"
    message = "Output verification failed"


# =============================================================================
# Fatal errors
# =============================================================================


class FatalJobError(RenderError):
    """The whole render job failed; partial artifacts have been cleaned up."""

    code = "RENDER_FAILED"
    message = "Video rendering failed"


class InvalidRenderRequestError(RenderError):
    """The render request is missing required data."""

    code = "INVALID_REQUEST"
    message = "Invalid render request"
