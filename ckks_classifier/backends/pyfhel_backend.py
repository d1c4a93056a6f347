"""
Pyfhel backend - real CKKS over Microsoft SEAL.

Pyfhel is imported lazily so that the rest of the package (and the
simulated backend) works on machines without the native extension.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np
import torch

from ..config import InferenceConfig
from ..errors import (
    DimensionMismatchError,
    InvalidIndexError,
    LevelExhaustedError,
    ParameterInvalidError,
    ScaleMismatchError,
)
from .base import HEBackend, PlainValues

logger = logging.getLogger(__name__)

_Pyfhel = None


def _load_pyfhel() -> Any:
    """Import Pyfhel on first use."""
    global _Pyfhel
    if _Pyfhel is None:
        try:
            from Pyfhel import Pyfhel as _Cls
        except ImportError as exc:
            raise RuntimeError(
                "Pyfhel backend not available. Install it with:\n"
                "  pip install Pyfhel\n"
                "or run with the simulated backend."
            ) from exc
        _Pyfhel = _Cls
    return _Pyfhel


def is_pyfhel_available() -> bool:
    try:
        _load_pyfhel()
    except RuntimeError:
        return False
    return True


@dataclass(frozen=True)
class PyfhelRelinKeys:
    """Handle for the relinearization keys held inside the Pyfhel object."""
    owner: int


@dataclass(frozen=True)
class PyfhelGaloisKeys:
    """Handle for the Galois keys held inside the Pyfhel object."""
    owner: int
    steps: Tuple[int, ...]


class PyfhelPlaintext:
    __slots__ = ("raw", "level")

    def __init__(self, raw: Any, level: int) -> None:
        self.raw = raw
        self.level = level

    @property
    def scale(self) -> float:
        return float(self.raw.scale)


class PyfhelCiphertext:
    """Wraps a Pyfhel ciphertext and tracks its chain index."""

    __slots__ = ("raw", "_level")

    def __init__(self, raw: Any, level: int) -> None:
        self.raw = raw
        self._level = level

    @property
    def level(self) -> int:
        return self._level

    @property
    def scale(self) -> float:
        return float(self.raw.scale)

    def copy(self) -> "PyfhelCiphertext":
        # Pyfhel operations are in place; the copy must own its buffers.
        return PyfhelCiphertext(copy.copy(self.raw), self._level)

    def __repr__(self) -> str:
        return f"PyfhelCiphertext(level={self._level}, scale={self.scale:.6g})"


class PyfhelBackend(HEBackend):
    """CKKS backend on top of Pyfhel.

    Args:
        config: Encryption parameters. Validated before the SEAL context is
            created.
    """

    def __init__(self, config: Optional[InferenceConfig] = None) -> None:
        self.config = (config or InferenceConfig()).validate()
        Pyfhel = _load_pyfhel()
        self._he = Pyfhel()
        try:
            self._he.contextGen(
                scheme="ckks",
                n=self.config.poly_mod_degree,
                scale=self.config.scale,
                qi_sizes=list(self.config.coeff_mod_bits),
            )
        except (ValueError, RuntimeError) as exc:
            raise ParameterInvalidError(f"SEAL rejected the encryption parameters: {exc}") from exc
        self._he.keyGen()
        self._slots = self.config.num_slots
        self._galois_steps: Tuple[int, ...] = ()
        logger.info(
            "Pyfhel CKKS ready: n=%d slots=%d levels=%d",
            self.config.poly_mod_degree,
            self._slots,
            self.max_level,
        )

    @property
    def slot_count(self) -> int:
        return self._slots

    @property
    def max_level(self) -> int:
        return self.config.max_level

    @property
    def scale(self) -> float:
        return self.config.scale

    def generate_keys(self, rotations: Sequence[int]) -> Tuple[PyfhelRelinKeys, PyfhelGaloisKeys]:
        self._he.relinKeyGen()
        # Default Galois keys cover every power-of-two step in both directions.
        self._he.rotateKeyGen()
        self._galois_steps = tuple(sorted({int(r) % self._slots for r in rotations}))
        return PyfhelRelinKeys(id(self._he)), PyfhelGaloisKeys(id(self._he), self._galois_steps)

    def encode(self, values: PlainValues, scale: float, level: Optional[int] = None) -> PyfhelPlaintext:
        level = self.max_level if level is None else level
        if level < 0 or level > self.max_level:
            raise LevelExhaustedError(f"Cannot encode at level {level}", {"level": level})
        flat = torch.as_tensor(values, dtype=torch.float64).reshape(-1).detach().cpu()
        if flat.numel() > self._slots:
            raise DimensionMismatchError(
                f"Vector of length {flat.numel()} exceeds slot capacity {self._slots}",
                {"length": flat.numel(), "slot_count": self._slots},
            )
        padded = np.zeros(self._slots, dtype=np.float64)
        padded[: flat.numel()] = flat.numpy()
        raw = self._he.encodeFrac(padded, scale=scale)
        for _ in range(self.max_level - level):
            self._he.mod_switch_to_next(raw)
        return PyfhelPlaintext(raw, level)

    def decode(self, plaintext: PyfhelPlaintext) -> torch.Tensor:
        values = np.asarray(self._he.decodeFrac(plaintext.raw), dtype=np.float64)
        return torch.from_numpy(values[: self._slots].copy())

    def encrypt(self, plaintext: PyfhelPlaintext) -> PyfhelCiphertext:
        return PyfhelCiphertext(self._he.encryptPtxt(plaintext.raw), plaintext.level)

    def decrypt(self, ciphertext: PyfhelCiphertext) -> PyfhelPlaintext:
        return PyfhelPlaintext(self._he.decryptPtxt(ciphertext.raw), ciphertext.level)

    def add_inplace(self, ciphertext: PyfhelCiphertext, other: PyfhelCiphertext) -> None:
        self._check_same_level(ciphertext.level, other.level, "add")
        self._he.add(ciphertext.raw, other.raw)

    def add_plain_inplace(self, ciphertext: PyfhelCiphertext, plaintext: PyfhelPlaintext) -> None:
        self._check_same_level(ciphertext.level, plaintext.level, "add_plain")
        self._he.add_plain(ciphertext.raw, plaintext.raw)

    def multiply_inplace(self, ciphertext: PyfhelCiphertext, other: PyfhelCiphertext) -> None:
        self._check_same_level(ciphertext.level, other.level, "multiply")
        self._he.multiply(ciphertext.raw, other.raw)

    def multiply_plain_inplace(self, ciphertext: PyfhelCiphertext, plaintext: PyfhelPlaintext) -> None:
        self._check_same_level(ciphertext.level, plaintext.level, "multiply_plain")
        self._he.multiply_plain(ciphertext.raw, plaintext.raw)

    def relinearize_inplace(self, ciphertext: PyfhelCiphertext, relin_keys: PyfhelRelinKeys) -> None:
        self._check_owner(relin_keys)
        self._he.relinearize(ciphertext.raw)

    def rescale_to_next_inplace(self, ciphertext: PyfhelCiphertext) -> None:
        if ciphertext.level <= 0:
            raise LevelExhaustedError(
                "Cannot rescale: ciphertext is already at the terminal level",
                {"level": ciphertext.level},
            )
        self._he.rescale_to_next(ciphertext.raw)
        ciphertext._level -= 1

    def rotate_inplace(self, ciphertext: PyfhelCiphertext, steps: int, galois_keys: PyfhelGaloisKeys) -> None:
        self._check_owner(galois_keys)
        shift = int(steps)
        if not 0 <= shift < self._slots:
            raise InvalidIndexError(
                f"Rotation step {steps} outside [0, {self._slots})",
                {"steps": shift, "slot_count": self._slots},
            )
        if shift == 0:
            return
        if shift not in galois_keys.steps:
            raise InvalidIndexError(f"No Galois key for rotation by {steps}", {"steps": int(steps)})
        self._he.rotate(ciphertext.raw, shift)

    def mod_switch_to_inplace(self, ciphertext: PyfhelCiphertext, level: int) -> None:
        if level > ciphertext.level:
            raise ParameterInvalidError(
                f"Cannot mod-switch up from level {ciphertext.level} to {level}",
                {"level": level},
            )
        if level < 0:
            raise LevelExhaustedError(f"Level {level} is below the terminal level", {"level": level})
        while ciphertext.level > level:
            self._he.mod_switch_to_next(ciphertext.raw)
            ciphertext._level -= 1

    def set_scale(self, ciphertext: PyfhelCiphertext, scale: float) -> None:
        ciphertext.raw.set_scale(scale)

    def _check_owner(self, keys: Any) -> None:
        if getattr(keys, "owner", None) != id(self._he):
            raise ParameterInvalidError("Keys do not belong to this backend")

    def _check_same_level(self, a: int, b: int, op: str) -> None:
        if a != b:
            raise ScaleMismatchError(
                f"{op}: operands are at different levels ({a} vs {b})",
                {"op": op, "levels": [a, b]},
            )


__all__ = [
    "PyfhelBackend",
    "PyfhelCiphertext",
    "PyfhelPlaintext",
    "is_pyfhel_available",
]
