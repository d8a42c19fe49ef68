"""
pcmguard.errors
───────────────
Error kinds, the tagged Result value and the exceptions raised at construction.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(enum.Enum):
    INVALID_CONFIGURATION = "invalid configuration"
    PAYLOAD_TOO_LARGE = "payload too large"
    CHECKSUM_MISMATCH = "checksum mismatch"
    NOT_DETECTED = "not detected"
    INTEGRITY_VIOLATION = "integrity violation"
    CIPHER_MISUSE = "cipher misuse"
    STORE_UNAVAILABLE = "store unavailable"


# ─────────────────────────────── exceptions ──────────────────────────────
class PcmGuardError(Exception):
    """Base class for every exception raised by pcmguard."""


class InvalidConfigurationError(PcmGuardError, ValueError):
    pass


class CipherMisuseError(PcmGuardError, ValueError):
    pass


class StoreUnavailableError(PcmGuardError, RuntimeError):
    pass


class TuningCancelledError(PcmGuardError, RuntimeError):
    pass


# ───────────────────────────────── result ────────────────────────────────
@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    message: str
    block_index: int | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """
    Outcome of a fallible operation: either a value or a :class:`Failure`.

    Absent watermarks, checksum mismatches and capacity problems are
    reported through this type instead of exceptions.
    """

    value: T | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls, kind: ErrorKind, message: str, *, block_index: int | None = None
    ) -> "Result[T]":
        return cls(error=Failure(kind, message, block_index))

    def unwrap(self) -> T:
        """Return the value or raise ``PcmGuardError`` carrying the failure."""
        if self.error is not None:
            raise PcmGuardError(str(self.error))
        return self.value  # type: ignore[return-value]
