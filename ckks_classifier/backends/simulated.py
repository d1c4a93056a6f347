"""
Simulated CKKS backend.

Performs the arithmetic on plaintext torch tensors while reproducing the
bookkeeping of a real leveled CKKS scheme (SEAL semantics):

- a finite modulus chain; the last prime is the special prime, so a fresh
  ciphertext sits at ``len(coeff_mod_bits) - 2`` and level 0 is terminal;
- prime values are near powers of two, so rescaled scales drift away from
  the base scale exactly as they do with real NTT-friendly primes;
- operands must share a level, and additions must share a scale;
- cipher-cipher products have size 3 and must be relinearized before they
  are rescaled, rotated or multiplied again;
- rotations need a Galois key for the requested step;
- overwriting a scale reinterprets the encrypted value, as in CKKS.

Nothing here is encrypted. The backend exists so that level and scale
mistakes surface as exceptions in tests and dry runs without paying for
real homomorphic arithmetic.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

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

# Relative tolerance for scale equality; real primes differ from the base
# scale by ~1e-10 relative, which this must still detect.
_SCALE_RTOL = 1e-13


def _chain_primes(coeff_mod_bits: Sequence[int], poly_mod_degree: int) -> List[float]:
    """Deterministic stand-ins for NTT-friendly primes (q = 1 mod 2N)."""
    step = 2 * poly_mod_degree
    primes = []
    for idx, bits in enumerate(coeff_mod_bits):
        primes.append(float(2 ** bits - step * (idx + 1) + 1))
    return primes


def _scales_match(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=_SCALE_RTOL, abs_tol=0.0)


@dataclass(frozen=True)
class SimulatedRelinKeys:
    backend_id: int


@dataclass(frozen=True)
class SimulatedGaloisKeys:
    backend_id: int
    steps: FrozenSet[int]


class SimulatedPlaintext:
    """Encoded vector tied to a level and a scale."""

    __slots__ = ("values", "level", "scale")

    def __init__(self, values: torch.Tensor, level: int, scale: float) -> None:
        self.values = values
        self.level = level
        self.scale = scale

    def __repr__(self) -> str:
        return f"SimulatedPlaintext(level={self.level}, scale=2^{math.log2(self.scale):.4f})"


class SimulatedCiphertext:
    """Plaintext-backed ciphertext with CKKS level/scale metadata."""

    __slots__ = ("_values", "_level", "_scale", "_size")

    def __init__(self, values: torch.Tensor, level: int, scale: float, size: int = 2) -> None:
        self._values = values
        self._level = level
        self._scale = scale
        self._size = size

    @property
    def level(self) -> int:
        return self._level

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def size(self) -> int:
        """Number of polynomials; 3 right after a cipher-cipher product."""
        return self._size

    def copy(self) -> "SimulatedCiphertext":
        return SimulatedCiphertext(self._values.clone(), self._level, self._scale, self._size)

    def __repr__(self) -> str:
        return (
            f"SimulatedCiphertext(level={self._level}, "
            f"scale=2^{math.log2(self._scale):.4f}, size={self._size})"
        )


class SimulatedBackend(HEBackend):
    """Plaintext CKKS emulator with strict level and scale checks.

    Args:
        config: Encryption parameters. Security bounds are not enforced.
        noise_std: Standard deviation of Gaussian noise added on encrypt,
            multiply and rescale. ``0`` gives exact arithmetic.
        seed: Seed for the noise generator.
    """

    def __init__(
        self,
        config: Optional[InferenceConfig] = None,
        *,
        noise_std: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        self.config = config or InferenceConfig()
        if len(self.config.coeff_mod_bits) < 2:
            raise ParameterInvalidError("Modulus chain needs a data prime and a special prime")
        self._primes = _chain_primes(self.config.coeff_mod_bits, self.config.poly_mod_degree)
        self._slots = self.config.num_slots
        self._scale = self.config.scale
        self.noise_std = float(noise_std)
        self._generator = torch.Generator()
        if seed is not None:
            self._generator.manual_seed(seed)
        self._lock = threading.Lock()
        self.stats: Counter = Counter()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def slot_count(self) -> int:
        return self._slots

    @property
    def max_level(self) -> int:
        return len(self._primes) - 2

    @property
    def scale(self) -> float:
        return self._scale

    def prime_at(self, level: int) -> float:
        """The prime divided out when rescaling from ``level``."""
        return self._primes[level]

    def modulus_bits(self, level: int) -> float:
        return sum(math.log2(q) for q in self._primes[: level + 1])

    # ------------------------------------------------------------------
    # Keys, encoding, encryption
    # ------------------------------------------------------------------

    def generate_keys(self, rotations: Sequence[int]) -> Tuple[SimulatedRelinKeys, SimulatedGaloisKeys]:
        steps = frozenset(int(r) % self._slots for r in rotations if int(r) % self._slots)
        logger.debug("Generated simulated keys with %d rotation steps", len(steps))
        return SimulatedRelinKeys(id(self)), SimulatedGaloisKeys(id(self), steps)

    def encode(self, values: PlainValues, scale: float, level: Optional[int] = None) -> SimulatedPlaintext:
        level = self.max_level if level is None else level
        if level < 0 or level > self.max_level:
            raise LevelExhaustedError(
                f"Cannot encode at level {level}; chain has levels 0..{self.max_level}",
                {"level": level},
            )
        flat = torch.as_tensor(values, dtype=torch.float64).reshape(-1).detach().cpu()
        if flat.numel() > self._slots:
            raise DimensionMismatchError(
                f"Vector of length {flat.numel()} exceeds slot capacity {self._slots}",
                {"length": flat.numel(), "slot_count": self._slots},
            )
        self._check_scale_bounds(scale, level)
        padded = torch.zeros(self._slots, dtype=torch.float64)
        padded[: flat.numel()] = flat
        # Fixed-point rounding at the encoding scale.
        padded = torch.round(padded * scale) / scale
        self._count("encode")
        return SimulatedPlaintext(padded, level, float(scale))

    def decode(self, plaintext: SimulatedPlaintext) -> torch.Tensor:
        self._count("decode")
        return plaintext.values.clone()

    def encrypt(self, plaintext: SimulatedPlaintext) -> SimulatedCiphertext:
        self._count("encrypt")
        values = self._noisy(plaintext.values.clone())
        return SimulatedCiphertext(values, plaintext.level, plaintext.scale)

    def decrypt(self, ciphertext: SimulatedCiphertext) -> SimulatedPlaintext:
        self._count("decrypt")
        return SimulatedPlaintext(ciphertext._values.clone(), ciphertext._level, ciphertext._scale)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add_inplace(self, ciphertext: SimulatedCiphertext, other: SimulatedCiphertext) -> None:
        self._check_same_level(ciphertext.level, other.level, "add")
        self._check_same_scale(ciphertext.scale, other.scale, "add")
        ciphertext._values = ciphertext._values + other._values
        ciphertext._size = max(ciphertext._size, other._size)
        self._count("add")

    def add_plain_inplace(self, ciphertext: SimulatedCiphertext, plaintext: SimulatedPlaintext) -> None:
        self._check_same_level(ciphertext.level, plaintext.level, "add_plain")
        self._check_same_scale(ciphertext.scale, plaintext.scale, "add_plain")
        ciphertext._values = ciphertext._values + plaintext.values
        self._count("add_plain")

    def multiply_inplace(self, ciphertext: SimulatedCiphertext, other: SimulatedCiphertext) -> None:
        self._check_same_level(ciphertext.level, other.level, "multiply")
        self._check_relinearized(ciphertext, "multiply")
        self._check_relinearized(other, "multiply")
        new_scale = ciphertext.scale * other.scale
        self._check_scale_bounds(new_scale, ciphertext.level)
        ciphertext._values = self._noisy(ciphertext._values * other._values)
        ciphertext._scale = new_scale
        ciphertext._size = 3
        self._count("multiply")

    def multiply_plain_inplace(self, ciphertext: SimulatedCiphertext, plaintext: SimulatedPlaintext) -> None:
        self._check_same_level(ciphertext.level, plaintext.level, "multiply_plain")
        self._check_relinearized(ciphertext, "multiply_plain")
        new_scale = ciphertext.scale * plaintext.scale
        self._check_scale_bounds(new_scale, ciphertext.level)
        ciphertext._values = self._noisy(ciphertext._values * plaintext.values)
        ciphertext._scale = new_scale
        self._count("multiply_plain")

    def relinearize_inplace(self, ciphertext: SimulatedCiphertext, relin_keys: SimulatedRelinKeys) -> None:
        if not isinstance(relin_keys, SimulatedRelinKeys) or relin_keys.backend_id != id(self):
            raise ParameterInvalidError("Relinearization keys do not belong to this backend")
        ciphertext._size = 2
        self._count("relinearize")

    def rescale_to_next_inplace(self, ciphertext: SimulatedCiphertext) -> None:
        if ciphertext.level <= 0:
            raise LevelExhaustedError(
                "Cannot rescale: ciphertext is already at the terminal level",
                {"level": ciphertext.level},
            )
        self._check_relinearized(ciphertext, "rescale")
        prime = self._primes[ciphertext.level]
        ciphertext._scale = ciphertext.scale / prime
        ciphertext._level -= 1
        ciphertext._values = self._noisy(ciphertext._values)
        self._count("rescale")

    def rotate_inplace(self, ciphertext: SimulatedCiphertext, steps: int, galois_keys: SimulatedGaloisKeys) -> None:
        if not isinstance(galois_keys, SimulatedGaloisKeys) or galois_keys.backend_id != id(self):
            raise ParameterInvalidError("Galois keys do not belong to this backend")
        self._check_relinearized(ciphertext, "rotate")
        shift = int(steps)
        if not 0 <= shift < self._slots:
            raise InvalidIndexError(
                f"Rotation step {steps} outside [0, {self._slots})",
                {"steps": shift, "slot_count": self._slots},
            )
        if shift == 0:
            return
        if shift not in galois_keys.steps:
            raise InvalidIndexError(
                f"No Galois key for rotation by {steps}",
                {"steps": int(steps)},
            )
        ciphertext._values = torch.roll(ciphertext._values, shifts=-shift)
        self._count("rotate")

    def mod_switch_to_inplace(self, ciphertext: SimulatedCiphertext, level: int) -> None:
        if level > ciphertext.level:
            raise ParameterInvalidError(
                f"Cannot mod-switch up from level {ciphertext.level} to {level}",
                {"level": level},
            )
        if level < 0:
            raise LevelExhaustedError(f"Level {level} is below the terminal level", {"level": level})
        if level != ciphertext.level:
            ciphertext._level = level
            self._count("mod_switch")

    def set_scale(self, ciphertext: SimulatedCiphertext, scale: float) -> None:
        # The underlying integers are untouched, so the message is reinterpreted.
        ciphertext._values = ciphertext._values * (ciphertext.scale / scale)
        ciphertext._scale = float(scale)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def reset_stats(self) -> Dict[str, int]:
        with self._lock:
            snapshot = dict(self.stats)
            self.stats.clear()
        return snapshot

    def _count(self, op: str) -> None:
        with self._lock:
            self.stats[op] += 1

    def _noisy(self, values: torch.Tensor) -> torch.Tensor:
        if self.noise_std <= 0.0:
            return values
        with self._lock:
            noise = torch.randn(values.shape, generator=self._generator, dtype=torch.float64)
        return values + noise * self.noise_std

    def _check_same_level(self, a: int, b: int, op: str) -> None:
        if a != b:
            raise ScaleMismatchError(
                f"{op}: operands are at different levels ({a} vs {b})",
                {"op": op, "levels": [a, b]},
            )

    def _check_same_scale(self, a: float, b: float, op: str) -> None:
        if not _scales_match(a, b):
            raise ScaleMismatchError(
                f"{op}: scale mismatch (2^{math.log2(a):.6f} vs 2^{math.log2(b):.6f})",
                {"op": op, "scales": [a, b]},
            )

    def _check_relinearized(self, ciphertext: SimulatedCiphertext, op: str) -> None:
        if ciphertext.size != 2:
            raise ParameterInvalidError(
                f"{op}: ciphertext of size {ciphertext.size} must be relinearized first",
                {"size": ciphertext.size},
            )

    def _check_scale_bounds(self, scale: float, level: int) -> None:
        if scale <= 0:
            raise ParameterInvalidError(f"Scale must be positive, got {scale}")
        if math.log2(scale) >= self.modulus_bits(level):
            raise ParameterInvalidError(
                f"Scale 2^{math.log2(scale):.2f} out of bounds at level {level}",
                {"level": level, "scale": scale},
            )


__all__ = [
    "SimulatedBackend",
    "SimulatedCiphertext",
    "SimulatedPlaintext",
    "SimulatedRelinKeys",
    "SimulatedGaloisKeys",
]

