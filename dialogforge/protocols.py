"""
dialogforge error and result contracts
======================================

Every public generation operation on :class:`dialogforge.service.DialogService`
returns a :class:`GenerationResult`. Internally the pipeline raises
exceptions; the service boundary converts them into results so the caller
(an editor UI) can branch on :class:`ErrorKind` without parsing strings.

Error handling philosophy:
- Missing backend URL/model raises ConfigurationError before any network call
- Transport failures raise RequestError with a retryable kind (timeout,
  network, service_unavailable); the executor retries those with backoff
- Non-2xx responses and malformed bodies raise RequestError(API), never retried
- Empty or refusal output after cleaning raises RequestError(GENERATION)
- Invalid arguments raise ValueError
- Unsupported node types raise UnsupportedNodeTypeError, the only error that
  escapes the public API
- The regeneration circuit breaker never raises
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure taxonomy shared by exceptions and results."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"
    API = "api"
    VALIDATION = "validation"
    GENERATION = "generation"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.SERVICE_UNAVAILABLE})


# =============================================================================
# Exceptions
# =============================================================================


class DialogForgeError(Exception):
    """Base class for all dialogforge errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ConfigurationError(DialogForgeError):
    """Raised when backend settings or a required prompt template are missing."""

    kind = ErrorKind.CONFIGURATION


class ContextValidationError(DialogForgeError):
    """Raised when a request lacks the structural context its node type needs."""

    kind = ErrorKind.VALIDATION


class RequestError(DialogForgeError):
    """Raised by the request executor with a classified failure kind."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class UnsupportedNodeTypeError(DialogForgeError):
    """Raised for node types that cannot be generated (subgraph containers)."""

    kind = ErrorKind.VALIDATION


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class GenerationError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"[ERROR] {self.kind.value}: {self.message}"


@dataclass(frozen=True)
class GenerationResult:
    """Tagged result: either ``text`` is set or ``error`` is set."""

    text: Optional[str] = None
    error: Optional[GenerationError] = None

    @classmethod
    def success(cls, text: str) -> "GenerationResult":
        return cls(text=text)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "GenerationResult":
        return cls(error=GenerationError(kind, message))

    @classmethod
    def from_exception(cls, exc: DialogForgeError) -> "GenerationResult":
        return cls.failure(exc.kind, str(exc))

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        if self.error is not None:
            raise RequestError(self.error.kind, self.error.message)
        return self.text or ""

    def __str__(self) -> str:
        if self.error is not None:
            return str(self.error)
        return self.text or ""
