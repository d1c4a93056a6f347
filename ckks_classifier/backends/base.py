"""
Backend capability interface.

The evaluator never touches a concrete CKKS library. It drives an
:class:`HEBackend`, which owns the scheme context and exposes the primitive
operations (encode/encrypt/decrypt/decode, plain and cipher add/multiply,
relinearize, rescale, rotate, mod-switch) plus read-only ciphertext metadata.

Levels follow SEAL's chain index: a fresh ciphertext sits at
``max_level`` and every rescale or mod-switch moves it one step toward the
terminal level ``0``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

import torch

PlainValues = Union[torch.Tensor, Sequence[float]]


@runtime_checkable
class Ciphertext(Protocol):
    """Opaque ciphertext handle as seen by the evaluator."""

    @property
    def level(self) -> int:
        ...

    @property
    def scale(self) -> float:
        ...

    def copy(self) -> "Ciphertext":
        """Return an independently owned duplicate."""
        ...


class HEBackend(ABC):
    """Primitive CKKS operations consumed by the level-aware evaluator.

    All ``*_inplace`` methods mutate their first argument. None of them
    rescales implicitly: the caller decides when a level is consumed.
    """

    @property
    @abstractmethod
    def slot_count(self) -> int:
        """Number of real slots per ciphertext."""

    @property
    @abstractmethod
    def max_level(self) -> int:
        """Level of a freshly encrypted ciphertext."""

    @property
    @abstractmethod
    def scale(self) -> float:
        """Base scale used for fresh encodings."""

    @abstractmethod
    def generate_keys(self, rotations: Sequence[int]) -> Tuple[Any, Any]:
        """Generate relinearization and Galois keys.

        Returns:
            ``(relin_keys, galois_keys)`` handles.
        """

    @abstractmethod
    def encode(self, values: PlainValues, scale: float, level: Optional[int] = None) -> Any:
        """Encode ``values`` at ``scale``; at the top level unless ``level`` is given."""

    @abstractmethod
    def decode(self, plaintext: Any) -> torch.Tensor:
        """Decode a plaintext into a float64 tensor of ``slot_count`` values."""

    @abstractmethod
    def encrypt(self, plaintext: Any) -> Ciphertext:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: Ciphertext) -> Any:
        ...

    @abstractmethod
    def add_inplace(self, ciphertext: Ciphertext, other: Ciphertext) -> None:
        ...

    @abstractmethod
    def add_plain_inplace(self, ciphertext: Ciphertext, plaintext: Any) -> None:
        ...

    @abstractmethod
    def multiply_inplace(self, ciphertext: Ciphertext, other: Ciphertext) -> None:
        """Ciphertext-ciphertext product; the result needs relinearization."""

    @abstractmethod
    def multiply_plain_inplace(self, ciphertext: Ciphertext, plaintext: Any) -> None:
        ...

    @abstractmethod
    def relinearize_inplace(self, ciphertext: Ciphertext, relin_keys: Any) -> None:
        ...

    @abstractmethod
    def rescale_to_next_inplace(self, ciphertext: Ciphertext) -> None:
        """Divide out the last prime, consuming one level."""

    @abstractmethod
    def rotate_inplace(self, ciphertext: Ciphertext, steps: int, galois_keys: Any) -> None:
        """Rotate slots cyclically left by ``steps``.

        ``steps`` must lie in ``[0, slot_count)``, otherwise
        :class:`InvalidIndexError` is raised.
        """

    @abstractmethod
    def mod_switch_to_inplace(self, ciphertext: Ciphertext, level: int) -> None:
        """Drop primes until ``ciphertext`` sits at ``level`` (no scale change)."""

    @abstractmethod
    def set_scale(self, ciphertext: Ciphertext, scale: float) -> None:
        """Overwrite the scale metadata without touching the encrypted data."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return (
            f"{self.name}(slots={self.slot_count}, max_level={self.max_level}, "
            f"scale=2^{math.log2(self.scale):.1f})"
        )
