"""API error taxonomy.

LLM-related failures live next to the code that raises them
(``dispatcher.ProviderExhaustedError``, ``output_parser.MalformedModelOutput``)
and are translated to HTTP responses by the handlers in ``main``.
"""


class ApiError(Exception):
    """Base exception for errors rendered as ``{"message", "field"}`` responses."""

    status_code = 500

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(ApiError):
    """Raised when a required input field is missing or malformed."""

    status_code = 400


class NotFoundError(ApiError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class ConflictError(ApiError):
    """Raised when a unique field (username, portfolio domain) is already taken."""

    status_code = 409
