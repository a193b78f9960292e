from .client import AxmeClient
from .config import AxmeClientConfig
from .exceptions import (
    AxmeAuthError,
    AxmeError,
    AxmeHttpError,
    AxmeRateLimitError,
    AxmeServerError,
    AxmeValidationError,
)
from .mcp import ToolSchemaCache
from .observe import is_terminal_intent_event

__all__ = [
    "AxmeClient",
    "AxmeClientConfig",
    "AxmeAuthError",
    "AxmeError",
    "AxmeHttpError",
    "AxmeRateLimitError",
    "AxmeServerError",
    "AxmeValidationError",
    "ToolSchemaCache",
    "is_terminal_intent_event",
]
