"""Recording CKKS backend for testing call sequences."""

from .mock_backend import (
    Call,
    RecordingBackend,
)

__all__ = [
    "Call",
    "RecordingBackend",
]
