"""Domain-level exceptions for chat API."""


class ChatError(Exception):
    """Base class for errors that map to a stable error code."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        return self.message


class Unauthenticated(ChatError):
    code = "unauthenticated"
    status_code = 401


class PermissionDenied(ChatError):
    code = "permission-denied"
    status_code = 403


class NotFound(ChatError):
    code = "not-found"
    status_code = 404


class ResourceExhausted(ChatError):
    code = "resource-exhausted"
    status_code = 429


class ConfigurationError(ChatError):
    """Raised when a provider or model is unknown or not configured."""

    code = "failed-precondition"
    status_code = 400


class InternalError(ChatError):
    code = "internal"
    status_code = 500


class ProviderError(InternalError):
    """Raised for any downstream AI-provider failure.

    The status, body and cause stay on the exception for logging; callers
    only ever see ``public_message``.
    """

    code = "provider-error"
    status_code = 502

    def __init__(
        self,
        provider_id: str,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"AI provider error ({provider_id}): {message}")
        self.provider_id = provider_id
        self.status = status
        self.body = body
        self.cause = cause

    @property
    def public_message(self) -> str:
        return f"AI provider error ({self.provider_id})"
