"""CKKS backends: the capability interface and its implementations."""

from __future__ import annotations

from typing import Any, Optional

from ..config import InferenceConfig
from .base import Ciphertext, HEBackend
from .pyfhel_backend import PyfhelBackend, is_pyfhel_available
from .simulated import SimulatedBackend

BACKENDS = ("simulated", "pyfhel", "auto")


def create_backend(name: str = "auto", config: Optional[InferenceConfig] = None, **kwargs: Any) -> HEBackend:
    """Create a backend by name.

    Args:
        name: ``"pyfhel"``, ``"simulated"`` or ``"auto"`` (Pyfhel when
            installed, simulation otherwise).
        config: Encryption parameters.
        **kwargs: Forwarded to the simulated backend (``noise_std``, ``seed``).
    """
    key = name.lower()
    if key == "auto":
        key = "pyfhel" if is_pyfhel_available() else "simulated"
    if key == "pyfhel":
        return PyfhelBackend(config)
    if key == "simulated":
        return SimulatedBackend(config, **kwargs)
    raise ValueError(f"Unknown backend {name!r}. Use one of: {', '.join(BACKENDS)}")


__all__ = [
    "BACKENDS",
    "Ciphertext",
    "HEBackend",
    "PyfhelBackend",
    "SimulatedBackend",
    "create_backend",
    "is_pyfhel_available",
]
