"""Error types raised across the completion pipeline.

Only :class:`GenerationError` is expected to cross component boundaries;
cancellation and budget overflow are handled as ordinary control flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes attached to pipeline errors."""

    SERVICE_UNREACHABLE = "service_unreachable"
    SERVICE_STATUS = "service_status"
    MALFORMED_STREAM = "malformed_stream"
    INVALID_CONFIGURATION = "invalid_configuration"
    INTERNAL_ERROR = "internal_error"


@dataclass
class WordloomError(Exception):
    """Base exception with a machine-readable code and structured details."""

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class GenerationError(WordloomError):
    """Transport failure talking to the generation service.

    Covers unreachable endpoints, non-2xx responses, and malformed streams.
    ``partial_text`` holds whatever was received before the failure.
    """

    error_code: str = field(default=ErrorCode.SERVICE_UNREACHABLE)
    message: str = field(default="Generation service request failed")
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    partial_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["retryable"] = self.retryable
        return result


@dataclass
class ConfigurationError(WordloomError):
    """Raised when settings cannot produce a usable configuration."""

    error_code: str = field(default=ErrorCode.INVALID_CONFIGURATION)
    message: str = field(default="Invalid configuration")
    details: dict[str, Any] = field(default_factory=dict)


__all__ = ["ErrorCode", "WordloomError", "GenerationError", "ConfigurationError"]
