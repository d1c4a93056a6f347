"""
Error taxonomy for encrypted classifier inference.

Every error raised by this package derives from :class:`CKKSClassifierError`
and also from the closest builtin exception, so callers that already catch
``ValueError``/``IndexError``/``RuntimeError`` keep working.

Errors never carry plaintext slot values or key material in their messages,
only shapes, levels and scales.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CKKSClassifierError(Exception):
    """Base exception for all ckks_classifier errors.

    Attributes:
        message: Human-readable description.
        details: Structured metadata (levels, scales, shapes).
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        # OSError would otherwise render (message, details) as errno/strerror.
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidIndexError(CKKSClassifierError, IndexError):
    """A mask or rotation index lies outside ``[0, slot_count)``."""


class DimensionMismatchError(CKKSClassifierError, ValueError):
    """A vector or weight matrix does not fit the ciphertext layout."""


class LevelExhaustedError(CKKSClassifierError, RuntimeError):
    """A multiplicative operation was requested with no levels left.

    The scheme has no bootstrap path, so this is a configuration error:
    the modulus chain is too short for the network depth.
    """


class ScaleMismatchError(CKKSClassifierError, ValueError):
    """Two operands were combined at different levels or scales."""


class FileLoadError(CKKSClassifierError, OSError):
    """An input file (weights, biases, dataset) is missing or unreadable."""


class ParameterInvalidError(CKKSClassifierError, ValueError):
    """Encryption parameters are invalid or inconsistent."""


__all__ = [
    "CKKSClassifierError",
    "InvalidIndexError",
    "DimensionMismatchError",
    "LevelExhaustedError",
    "ScaleMismatchError",
    "FileLoadError",
    "ParameterInvalidError",
]
