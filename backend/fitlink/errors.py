"""
Domain errors. Each carries the HTTP status the API layer renders it with.

Validation/auth errors abort the request; upstream/persistence errors inside
batch loops (sync pages, backfill chunks, webhook items) are caught per item.
"""


class FitlinkError(Exception):
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str | None = None):
        self.message = message or (self.__class__.__doc__ or self.__class__.__name__).strip()
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.__class__.__name__


class AuthError(FitlinkError):
    """Missing or invalid bearer token."""

    status_code = 401


class NotConnected(FitlinkError):
    """Provider is not connected for this user."""

    status_code = 400


class CredentialExpired(FitlinkError):
    """Provider credential has expired; re-authorization required."""

    status_code = 401


class CsrfMismatch(FitlinkError):
    """Authorization state does not match the pending attempt; restart authorization."""

    status_code = 400


class MissingVerifier(FitlinkError):
    """No pending authorization attempt for this provider; restart authorization."""

    status_code = 400


class ConfigMissing(FitlinkError):
    """Required provider configuration is missing."""

    status_code = 500


class UnknownProvider(FitlinkError):
    """Unknown provider."""

    status_code = 404


class UpstreamError(FitlinkError):
    """Upstream provider returned an error."""

    status_code = 502
    retryable = True

    def __init__(self, message: str | None = None, status: int | None = None, body: str | None = None):
        self.status = status
        self.body = (body or "")[:500]
        if message is None:
            message = f"Upstream error: {status} - {self.body}"
        super().__init__(message)


class ExchangeFailed(UpstreamError):
    """Token exchange was rejected by the provider."""

    status_code = 400
    retryable = False


class PersistenceError(FitlinkError):
    """Storage failure."""

    status_code = 500
    retryable = True


class UserNotFound(FitlinkError):
    """No user matches the notification's access token."""

    status_code = 404


class InvalidRequest(FitlinkError):
    """Request is not valid for this provider configuration."""

    status_code = 400


class BackfillValidationError(InvalidRequest):
    """Invalid backfill request."""
