"""AI integration package: generation client, context assembly, completions."""

from .client import AIClient, ClientSettings
from .errors import ConfigurationError, ErrorCode, GenerationError, WordloomError

__all__ = [
    "AIClient",
    "ClientSettings",
    "ConfigurationError",
    "ErrorCode",
    "GenerationError",
    "WordloomError",
]
