"""Project error hierarchy."""

from __future__ import annotations


class ChatGateError(Exception):
    """Base error. Carries the HTTP status the routers surface to the browser."""

    status_code = 500
    code = "chatgate_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(ChatGateError):
    """Raised when the backend address / server URL / rag uuid is missing."""

    code = "config_error"


class ValidationError(ChatGateError):
    status_code = 400
    code = "invalid_request"


class InvalidRequestError(ValidationError):
    pass


class InvalidJsonError(ValidationError):
    code = "invalid_json"


class ReservedFieldOverrideError(ValidationError):
    code = "reserved_field_override"

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            f"optionalGenerationParameters cannot override reserved field: {', '.join(self.fields)}"
        )


class UrlRejectedError(ChatGateError):
    status_code = 403
    code = "url_rejected"


class UpstreamError(ChatGateError):
    """Upstream returned non-2xx or could not be reached."""

    code = "upstream_error"


class InitializationFailedError(UpstreamError):
    code = "initialization_failed"
