"""Error taxonomy.

Objective:
    Give every failure the application can surface a stable identity, so the
    web layer and the CLI can turn it into actionable guidance instead of a
    generic "something went wrong".

Two families:
    - Per-message backend errors (:class:`ClassifierError` subclasses) raised
      by :mod:`inbox_classifier.classifier`. The scheduler treats them as
      fatal for the whole run. :class:`MalformedResult` is the one
      per-message error that is recovered locally.
    - Request-level errors (:class:`RequestError` subclasses) carrying a
      numeric error code and an HTTP status. :class:`ClassificationFailed`
      wraps any fatal backend error and preserves its :class:`FailureKind`.

Error code convention:
    - 1xxxx: common/general errors
    - 2xxxx: authentication & authorization errors
    - 3xxxx: email retrieval errors
    - 4xxxx: Gmail API / OAuth errors
    - 5xxxx: classification errors
"""

from enum import Enum
from typing import Optional

from .config import GEMINI_KEY_PREFIX, Provider


class FailureKind(str, Enum):
    """Why a classification run was aborted."""

    INVALID_CREDENTIAL = "invalid_credential"
    CREDENTIAL_TYPE_MISMATCH = "credential_type_mismatch"
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"


class ClassifierError(Exception):
    """Fatal error raised by a classification backend for one message.

    Args:
        provider: Backend that raised the error.
        detail: Provider-side error description, for logs.
    """

    kind: FailureKind

    def __init__(self, provider: Provider, detail: str = "") -> None:
        super().__init__(detail or self.kind.value)
        self.provider = provider
        self.detail = detail


class InvalidCredential(ClassifierError):
    kind = FailureKind.INVALID_CREDENTIAL


class CredentialTypeMismatch(ClassifierError):
    kind = FailureKind.CREDENTIAL_TYPE_MISMATCH


class RateLimited(ClassifierError):
    kind = FailureKind.RATE_LIMITED


class ProviderError(ClassifierError):
    kind = FailureKind.PROVIDER_ERROR


class MalformedResult(ValueError):
    """The backend answered, but the answer cannot be used as a label."""


class RequestError(Exception):
    """Base class for errors surfaced to API and CLI users.

    Subclasses set :attr:`code`, :attr:`status_code` and
    :attr:`default_message`; an explicit ``message`` overrides the default.
    """

    code: int = 10004
    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        return f"ERROR_{self.code}"


class InvalidParams(RequestError):
    code = 10007
    status_code = 400
    default_message = "Invalid parameters"


class NoTokenProvided(RequestError):
    code = 20001
    status_code = 401
    default_message = "No authentication token provided"


class InvalidAuthToken(RequestError):
    code = 20002
    status_code = 401
    default_message = "Invalid authentication token"


class InvalidRefreshToken(RequestError):
    code = 20006
    status_code = 401
    default_message = "Invalid refresh token"


class EmailFetchFailed(RequestError):
    code = 30001
    status_code = 500
    default_message = "Failed to fetch emails from Gmail"


class InvalidEmailLimit(RequestError):
    code = 30003
    status_code = 400
    default_message = "Invalid email limit. Must be between 1 and 50"


class GmailApiError(RequestError):
    code = 40001
    status_code = 500
    default_message = "Gmail API error occurred"


class InvalidOAuthCode(RequestError):
    code = 40004
    status_code = 400
    default_message = "Invalid OAuth authorization code"


class OAuthTokenExchangeFailed(RequestError):
    code = 40005
    status_code = 500
    default_message = "Failed to exchange OAuth code for tokens"


class InvalidEmailData(RequestError):
    code = 50005
    status_code = 400
    default_message = "Invalid email data for classification"


# (code, HTTP status, message) per failure kind and provider
_CLASSIFICATION_FAILURES: dict[tuple[FailureKind, Provider], tuple[int, int, str]] = {
    (FailureKind.INVALID_CREDENTIAL, Provider.GROQ): (
        50003, 400, "Invalid or missing Groq API key",
    ),
    (FailureKind.INVALID_CREDENTIAL, Provider.GEMINI): (
        50006, 400, "Invalid or missing Gemini API key",
    ),
    (FailureKind.PROVIDER_ERROR, Provider.GROQ): (
        50002, 500, "Groq API error occurred",
    ),
    (FailureKind.PROVIDER_ERROR, Provider.GEMINI): (
        50007, 500, "Gemini API error occurred",
    ),
    (FailureKind.RATE_LIMITED, Provider.GROQ): (
        50008, 429, "Groq rate limit exceeded. Please try again later.",
    ),
    (FailureKind.RATE_LIMITED, Provider.GEMINI): (
        50009, 429, "Gemini rate limit exceeded. Please try again later.",
    ),
    (FailureKind.CREDENTIAL_TYPE_MISMATCH, Provider.GROQ): (
        50010,
        400,
        "You're using a Gemini API key with Groq. Please use a valid Groq API key.",
    ),
    (FailureKind.CREDENTIAL_TYPE_MISMATCH, Provider.GEMINI): (
        50011,
        400,
        "You're using a non-Gemini API key with Gemini. Please use a valid "
        f"Gemini API key (starts with '{GEMINI_KEY_PREFIX}').",
    ),
}


class ClassificationFailed(RequestError):
    """A classification run was aborted.

    The specific :class:`FailureKind` is preserved in :attr:`kind` so callers
    can show targeted guidance (e.g. "wrong key type for this provider").
    Without a kind, the error is the generic classification failure.

    Args:
        kind: Why the run was aborted.
        provider: Backend in use.
    """

    code = 50001
    status_code = 500
    default_message = "Email classification failed"

    def __init__(
        self,
        kind: Optional[FailureKind] = None,
        provider: Provider = Provider.GROQ,
    ) -> None:
        self.kind = kind
        self.provider = provider
        message = None
        if kind is not None:
            self.code, self.status_code, message = _CLASSIFICATION_FAILURES[(kind, provider)]
        super().__init__(message)

    @classmethod
    def from_error(cls, error: ClassifierError) -> "ClassificationFailed":
        """Wrap a fatal backend error, keeping its kind and provider."""
        return cls(kind=error.kind, provider=error.provider)


class ClassificationCancelled(RequestError):
    code = 50012
    status_code = 503
    default_message = "Email classification was cancelled"
