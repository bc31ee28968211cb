"""Custom exceptions for the chat service."""


class DeepSearchError(Exception):
    """Base class for service exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Chat service error"):
        self.message = message
        super().__init__(message)


class AdmissionDeniedError(DeepSearchError):
    """Raised when a user has used up their daily request allowance.

    Terminal for the request, never retried.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, user_id: str, count: int, limit: int):
        self.user_id = user_id
        self.count = count
        self.limit = limit
        super().__init__(
            f"Daily request limit reached ({count}/{limit}). Try again tomorrow."
        )


class ToolExecutionError(DeepSearchError):
    """Raised when a tool's execute step fails.

    Fatal to the current turn. The original exception is chained as
    ``__cause__``.
    """
    status_code = 500

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class ToolArgumentsError(ToolExecutionError):
    """Raised when the model calls a tool with arguments that fail its schema."""
    status_code = 400


class ModelInvocationError(DeepSearchError):
    """Raised when the language model call fails.

    The agent loop does not retry; retries belong to the provider client.
    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502


class ChatOwnershipError(DeepSearchError):
    """Raised when a user tries to write to a chat owned by someone else."""
    status_code = 403

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        super().__init__(f"Chat {chat_id} belongs to another user")


class AuthenticationError(DeepSearchError):
    """Raised when the request carries no authenticated user.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401

    def __init__(self, detail: str = "Unauthorized"):
        self.detail = detail
        super().__init__(detail)
