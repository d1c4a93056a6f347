"""
Encryption parameter configuration.

An :class:`InferenceConfig` is built once at process start and never mutated
afterwards. It fixes the ring dimension (and therefore the slot count), the
modulus chain (and therefore the maximum multiplicative depth) and the base
scale used for every fresh encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .errors import ParameterInvalidError

if TYPE_CHECKING:
    from .network import Network


# Largest total coefficient modulus (bits) allowed for 128-bit classical
# security, per the HomomorphicEncryption.org standard as used by SEAL.
_MAX_COEFF_BITS_128: Dict[int, int] = {
    1024: 27,
    2048: 54,
    4096: 109,
    8192: 218,
    16384: 438,
    32768: 881,
}

_SPECIAL_PRIME_BITS = 60


@dataclass(frozen=True)
class InferenceConfig:
    """Configuration for encrypted inference.

    Attributes:
        poly_mod_degree: Ring dimension (power of 2). Slot count is half of it.
        scale_bits: Base scale is ``2 ** scale_bits``; also the bit size of
            every middle prime in the derived chain.
        mult_depth: Number of rescales the chain supports (middle primes).
        security_level: ``"128_classic"`` enforces SEAL's modulus bound for
            the ring dimension; ``None`` disables the check (simulation only).
        coeff_mod_bits: Explicit modulus chain. When given, ``mult_depth`` is
            derived from it.
    """
    poly_mod_degree: int = 32768
    scale_bits: int = 40
    mult_depth: int = 18
    security_level: Optional[str] = "128_classic"
    coeff_mod_bits: Optional[Tuple[int, ...]] = field(default=None)

    def __post_init__(self) -> None:
        if self.coeff_mod_bits is None:
            middle_bits = tuple([self.scale_bits] * self.mult_depth)
            chain = (_SPECIAL_PRIME_BITS,) + middle_bits + (_SPECIAL_PRIME_BITS,)
            object.__setattr__(self, "coeff_mod_bits", chain)
        else:
            chain = tuple(int(b) for b in self.coeff_mod_bits)
            object.__setattr__(self, "coeff_mod_bits", chain)
            object.__setattr__(self, "mult_depth", max(0, len(chain) - 2))

    @property
    def num_slots(self) -> int:
        """Number of plaintext slots available."""
        return self.poly_mod_degree // 2

    @property
    def max_level(self) -> int:
        """Level of a freshly encrypted ciphertext (0 is terminal)."""
        return len(self.coeff_mod_bits) - 2

    @property
    def scale(self) -> float:
        return float(2 ** self.scale_bits)

    @property
    def total_coeff_bits(self) -> int:
        return sum(self.coeff_mod_bits)

    def validate(self) -> "InferenceConfig":
        """Check the parameters and return ``self``.

        Raises:
            ParameterInvalidError: If any parameter is out of range.
        """
        n = self.poly_mod_degree
        if n < 2 or n & (n - 1):
            raise ParameterInvalidError(
                f"poly_mod_degree must be a power of two, got {n}",
                {"poly_mod_degree": n},
            )
        chain = self.coeff_mod_bits
        if len(chain) < 3:
            raise ParameterInvalidError(
                f"Modulus chain needs at least 3 primes, got {len(chain)}",
                {"coeff_mod_bits": list(chain)},
            )
        bad = [b for b in chain if b < 20 or b > 60]
        if bad:
            raise ParameterInvalidError(
                f"Prime bit sizes must lie in [20, 60], got {bad}",
                {"coeff_mod_bits": list(chain)},
            )
        if self.scale_bits >= chain[0]:
            raise ParameterInvalidError(
                f"scale_bits ({self.scale_bits}) must be below the first prime size ({chain[0]})",
                {"scale_bits": self.scale_bits},
            )
        if self.security_level is not None:
            if self.security_level != "128_classic":
                raise ParameterInvalidError(
                    f"Unknown security level {self.security_level!r}. Use '128_classic' or None."
                )
            limit = _MAX_COEFF_BITS_128.get(n)
            if limit is None or self.total_coeff_bits > limit:
                raise ParameterInvalidError(
                    f"Total modulus {self.total_coeff_bits} bits exceeds the 128-bit "
                    f"security bound for poly_mod_degree={n}",
                    {"total_coeff_bits": self.total_coeff_bits, "limit": limit},
                )
        return self

    @classmethod
    def for_depth(cls, mult_depth: int, **kwargs: Any) -> "InferenceConfig":
        """Create a config whose chain supports ``mult_depth`` rescales.

        The ring dimension is the smallest one whose security bound holds the
        chain, unless ``poly_mod_degree`` is passed explicitly.

        Args:
            mult_depth: Total multiplicative levels the computation needs.
            **kwargs: Overrides forwarded to ``__init__``. ``min_slots``
                raises the ring dimension until that many slots fit.
        """
        mult_depth = max(1, mult_depth)
        scale_bits = kwargs.pop("scale_bits", 40)
        min_slots = kwargs.pop("min_slots", 1)
        security_level = kwargs.pop("security_level", "128_classic")

        total_bits = 2 * _SPECIAL_PRIME_BITS + scale_bits * mult_depth
        poly_mod_degree = kwargs.pop("poly_mod_degree", None)
        if poly_mod_degree is None:
            poly_mod_degree = 1024
            while poly_mod_degree // 2 < min_slots:
                poly_mod_degree *= 2
            if security_level is not None:
                while _MAX_COEFF_BITS_128.get(poly_mod_degree, 0) < total_bits:
                    if poly_mod_degree >= max(_MAX_COEFF_BITS_128):
                        raise ParameterInvalidError(
                            f"No supported ring dimension holds a {total_bits}-bit modulus "
                            f"(mult_depth={mult_depth}, scale_bits={scale_bits})"
                        )
                    poly_mod_degree *= 2

        return cls(
            poly_mod_degree=poly_mod_degree,
            scale_bits=scale_bits,
            mult_depth=mult_depth,
            security_level=security_level,
            **kwargs,
        )

    @classmethod
    def for_network(cls, network: "Network", **kwargs: Any) -> "InferenceConfig":
        """Size the chain and ring for a network's depth and widest layer."""
        kwargs.setdefault("min_slots", network.max_width())
        return cls.for_depth(network.mult_depth(), **kwargs)


def rotation_steps(slot_count: int) -> List[int]:
    """Left-rotation steps used by the rotate-and-add slot reduction.

    Returns ``[1, 2, 4, ..., slot_count // 2]``.
    """
    if slot_count < 2:
        return []
    steps = []
    step = 1
    while step <= slot_count // 2:
        steps.append(step)
        step *= 2
    return steps


def describe(config: InferenceConfig) -> str:
    return (
        f"N={config.poly_mod_degree} slots={config.num_slots} "
        f"scale=2^{config.scale_bits} levels={config.max_level} "
        f"modulus={config.total_coeff_bits} bits"
    )
