"""
LevelAwareEvaluator - depth-budgeted homomorphic building blocks.

Turns "multiply by a weight row", "sum the slots", "mask a slot" and
"apply a polynomial activation" into backend primitive calls while keeping
every ciphertext's level and scale consistent.

Depth costs (levels consumed from the input's level):

====================  =====
operation             depth
====================  =====
add_plain             0
sum_all_slots         0
multiply_plain        1
mask_slot             1
process_layer_linear  2
apply_poly_relu       2
apply_poly_sigmoid    3
====================  =====

There is no bootstrapping: a ciphertext at level 0 only accepts zero-depth
operations, so the modulus chain must be sized for the whole network.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Optional, Sequence, Union

import torch

from .errors import DimensionMismatchError, InvalidIndexError, LevelExhaustedError

if TYPE_CHECKING:
    from .backends.base import Ciphertext
    from .context import EvaluationContext

logger = logging.getLogger(__name__)

Vector = Union[torch.Tensor, Sequence[float]]

LINEAR_DEPTH = 2
RELU_DEPTH = 2
SIGMOID_DEPTH = 3

# sigmoid(x) ~= 0.5 + 0.197x - 0.004x^3
SIGMOID_COEFFS = (0.5, 0.197, 0.0, -0.004)
# relu(x) ~= 0.25x^2 + 0.5x
RELU_COEFFS = (0.0, 0.5, 0.25)


def _horner(coeffs, x: torch.Tensor) -> torch.Tensor:
    out = torch.full_like(x, coeffs[-1])
    for c in reversed(coeffs[:-1]):
        out = out * x + c
    return out


def poly_relu(x: torch.Tensor) -> torch.Tensor:
    """Plaintext reference of the ReLU approximation."""
    return _horner(RELU_COEFFS, x)


def poly_sigmoid(x: torch.Tensor) -> torch.Tensor:
    """Plaintext reference of the sigmoid approximation."""
    return _horner(SIGMOID_COEFFS, x)


class Activation(enum.Enum):
    """Polynomial activations supported by the encrypted pipeline."""

    RELU_POLY = "relu"
    SIGMOID_POLY = "sigmoid"

    @property
    def depth(self) -> int:
        return RELU_DEPTH if self is Activation.RELU_POLY else SIGMOID_DEPTH

    def plain(self, x: torch.Tensor) -> torch.Tensor:
        return poly_relu(x) if self is Activation.RELU_POLY else poly_sigmoid(x)

    @classmethod
    def parse(cls, value: Union[str, "Activation"]) -> "Activation":
        if isinstance(value, Activation):
            return value
        key = str(value).lower()
        for member in cls:
            if key in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown activation {value!r}. Use 'relu' or 'sigmoid'.")


def activation_depth(activation: Activation) -> int:
    return Activation.parse(activation).depth


def _as_vector(values: Vector) -> torch.Tensor:
    return torch.as_tensor(values, dtype=torch.float64).reshape(-1).detach().cpu()


class LevelAwareEvaluator:
    """Stateless orchestration over a CKKS backend.

    The evaluator borrows an :class:`EvaluationContext` for its whole
    lifetime and mutates nothing but the ciphertexts it is handed, so one
    instance can serve concurrent inferences.

    Every ``*_inplace``-style method mutates ``ct`` and also returns it so
    that calls can be chained. Methods that replace the ciphertext with a
    freshly computed one (the activations) return the new handle; callers
    must rebind.

    Args:
        context: Shared scheme state (backend, keys, parameters).
    """

    def __init__(self, context: "EvaluationContext") -> None:
        self._context = context
        self._backend = context.backend
        self._slots = context.backend.slot_count

    @property
    def context(self) -> "EvaluationContext":
        return self._context

    @property
    def slot_count(self) -> int:
        return self._slots

    # ------------------------------------------------------------------
    # Client-side helpers
    # ------------------------------------------------------------------

    def encrypt(self, values: Vector) -> "Ciphertext":
        """Encode at the base scale on the top level and encrypt."""
        vec = self._check_length(_as_vector(values))
        plain = self._backend.encode(vec, self._backend.scale)
        return self._backend.encrypt(plain)

    def decrypt(self, ct: "Ciphertext", length: Optional[int] = None) -> torch.Tensor:
        """Decrypt and decode; truncate to ``length`` slots if given."""
        values = self._backend.decode(self._backend.decrypt(ct))
        return values if length is None else values[:length]

    # ------------------------------------------------------------------
    # Plaintext operands
    # ------------------------------------------------------------------

    def add_plain(self, ct: "Ciphertext", values: Vector) -> "Ciphertext":
        """Add a cleartext vector at ct's level and scale (depth 0).

        Slots beyond ``len(values)`` are treated as zero.

        Raises:
            DimensionMismatchError: If ``values`` is longer than the slot count.
        """
        vec = self._check_length(_as_vector(values))
        plain = self._backend.encode(vec, ct.scale, ct.level)
        self._backend.add_plain_inplace(ct, plain)
        return ct

    def multiply_plain(self, ct: "Ciphertext", values: Vector) -> "Ciphertext":
        """Multiply by a cleartext vector and rescale (depth 1).

        The plaintext is encoded at ct's exact scale, so after the rescale
        the ciphertext scale is ``scale**2 / q`` for the dropped prime ``q``.

        Raises:
            DimensionMismatchError: If ``values`` is longer than the slot count.
            LevelExhaustedError: If ct is already at the terminal level.
        """
        vec = self._check_length(_as_vector(values))
        self._require_level(ct, 1, "multiply_plain")
        plain = self._backend.encode(vec, ct.scale, ct.level)
        self._backend.multiply_plain_inplace(ct, plain)
        self._backend.rescale_to_next_inplace(ct)
        logger.debug("multiply_plain -> level=%d scale=%.6g", ct.level, ct.scale)
        return ct

    # ------------------------------------------------------------------
    # Slot manipulation
    # ------------------------------------------------------------------

    def sum_all_slots(self, ct: "Ciphertext") -> "Ciphertext":
        """Rotate-and-add so that every slot holds the sum of all slots (depth 0)."""
        step = 1
        while step <= self._slots // 2:
            rotated = ct.copy()
            self._backend.rotate_inplace(rotated, step, self._context.galois_keys)
            self._backend.add_inplace(ct, rotated)
            step *= 2
        return ct

    def mask_slot(self, ct: "Ciphertext", index: int) -> "Ciphertext":
        """Zero every slot except ``index`` (depth 1).

        Raises:
            InvalidIndexError: If ``index`` is outside ``[0, slot_count)``.
            LevelExhaustedError: If ct is already at the terminal level.
        """
        if index < 0 or index >= self._slots:
            raise InvalidIndexError(
                f"Mask index {index} is out of range for {self._slots} slots",
                {"index": index, "slot_count": self._slots},
            )
        one_hot = torch.zeros(self._slots, dtype=torch.float64)
        one_hot[index] = 1.0
        return self.multiply_plain(ct, one_hot)

    # ------------------------------------------------------------------
    # Alignment
    # ------------------------------------------------------------------

    def align(self, a: "Ciphertext", b: "Ciphertext") -> None:
        """Bring ``a`` and ``b`` to a common level and scale.

        The one at the higher level is mod-switched down to the other's level
        and takes over its scale. At equal levels, ``a`` takes ``b``'s scale.
        Mod-switching never changes a scale, so the overwritten scale only
        differs by the drift between primes.
        """
        if a.level > b.level:
            self._backend.mod_switch_to_inplace(a, b.level)
            self._backend.set_scale(a, b.scale)
        elif b.level > a.level:
            self._backend.mod_switch_to_inplace(b, a.level)
            self._backend.set_scale(b, a.scale)
        elif a.scale != b.scale:
            self._backend.set_scale(a, b.scale)

    # ------------------------------------------------------------------
    # Polynomial activations
    # ------------------------------------------------------------------

    def apply_poly_relu(self, ct: "Ciphertext", size: int) -> "Ciphertext":
        """ReLU approximation ``0.25x^2 + 0.5x`` as ``0.5x * (0.5x + 1)`` (depth 2).

        Args:
            ct: Input ciphertext; left untouched.
            size: Number of meaningful leading slots.

        Returns:
            A new ciphertext two levels below ``ct``.
        """
        self._check_size(size)
        self._require_level(ct, RELU_DEPTH, "apply_poly_relu")

        lin = self.multiply_plain(ct.copy(), torch.full((size,), 0.5, dtype=torch.float64))
        lin_plus_1 = self.add_plain(lin.copy(), torch.ones(size, dtype=torch.float64))

        self._backend.multiply_inplace(lin, lin_plus_1)
        self._backend.relinearize_inplace(lin, self._context.relin_keys)
        self._backend.rescale_to_next_inplace(lin)
        logger.debug("apply_poly_relu -> level=%d", lin.level)
        return lin

    def apply_poly_sigmoid(self, ct: "Ciphertext", size: int) -> "Ciphertext":
        """Sigmoid approximation ``0.5 + 0.197x - 0.004x^3`` (depth 3).

        x^2 and x^3 each cost a level, and weighting x^3 costs a third one.
        The linear term is weighted at x^3's level so both terms land on the
        same level.

        Args:
            ct: Input ciphertext; left untouched.
            size: Number of meaningful leading slots.

        Returns:
            A new ciphertext three levels below ``ct``.
        """
        self._check_size(size)
        self._require_level(ct, SIGMOID_DEPTH, "apply_poly_sigmoid")
        relin_keys = self._context.relin_keys
        x = ct.copy()

        x2 = x.copy()
        self._backend.multiply_inplace(x2, x)
        self._backend.relinearize_inplace(x2, relin_keys)
        self._backend.rescale_to_next_inplace(x2)

        self.align(x, x2)

        x3 = x2.copy()
        self._backend.multiply_inplace(x3, x)
        self._backend.relinearize_inplace(x3, relin_keys)
        self._backend.rescale_to_next_inplace(x3)

        self.align(x, x3)
        self.align(x2, x3)

        cubic = self.multiply_plain(x3, torch.full((size,), SIGMOID_COEFFS[3], dtype=torch.float64))
        linear = self.multiply_plain(x, torch.full((size,), SIGMOID_COEFFS[1], dtype=torch.float64))

        self.align(cubic, linear)
        self._backend.add_inplace(cubic, linear)
        self.add_plain(cubic, torch.full((size,), SIGMOID_COEFFS[0], dtype=torch.float64))
        logger.debug("apply_poly_sigmoid -> level=%d", cubic.level)
        return cubic

    # ------------------------------------------------------------------
    # Linear layer
    # ------------------------------------------------------------------

    def process_layer_linear(
        self,
        ct_in: "Ciphertext",
        weights: Union[torch.Tensor, Sequence[Sequence[float]]],
        biases: Vector,
    ) -> "Ciphertext":
        """Encrypted ``W @ x + b`` with output feature ``i`` in slot ``i`` (depth 2).

        Each row is applied to a copy of ``ct_in`` (multiply, rotate-and-add,
        mask to slot ``i``) and the per-feature ciphertexts are accumulated
        into an encryption of zero, aligned to their level and scale.

        Args:
            ct_in: Input vector in its leading slots; left untouched.
            weights: Matrix of shape ``(out_features, in_features)``.
            biases: Vector of length ``out_features``.

        Raises:
            DimensionMismatchError: On ragged/oversized weights or a bias of
                the wrong length.
            LevelExhaustedError: If fewer than two levels remain.
        """
        weight = self._as_matrix(weights)
        bias = _as_vector(biases)
        out_features = weight.shape[0]
        if bias.numel() != out_features:
            raise DimensionMismatchError(
                f"Bias length {bias.numel()} does not match {out_features} weight rows",
                {"bias": bias.numel(), "rows": out_features},
            )
        if out_features > self._slots:
            raise DimensionMismatchError(
                f"{out_features} output features do not fit in {self._slots} slots",
                {"rows": out_features, "slot_count": self._slots},
            )
        self._require_level(ct_in, LINEAR_DEPTH, "process_layer_linear")

        acc = self.encrypt(torch.zeros(self._slots, dtype=torch.float64))
        for i in range(out_features):
            curr = self.multiply_plain(ct_in.copy(), weight[i])
            self.sum_all_slots(curr)
            self.mask_slot(curr, i)
            self.align(acc, curr)
            self._backend.add_inplace(acc, curr)

        self.add_plain(acc, bias)
        logger.debug(
            "process_layer_linear(%dx%d) -> level=%d",
            out_features,
            weight.shape[1],
            acc.level,
        )
        return acc

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_length(self, vec: torch.Tensor) -> torch.Tensor:
        if vec.numel() > self._slots:
            raise DimensionMismatchError(
                f"Vector of length {vec.numel()} exceeds slot capacity {self._slots}",
                {"length": vec.numel(), "slot_count": self._slots},
            )
        return vec

    def _check_size(self, size: int) -> None:
        if size < 0 or size > self._slots:
            raise DimensionMismatchError(
                f"Activation size {size} is outside [0, {self._slots}]",
                {"size": size, "slot_count": self._slots},
            )

    def _as_matrix(self, weights: Union[torch.Tensor, Sequence[Sequence[float]]]) -> torch.Tensor:
        if isinstance(weights, torch.Tensor):
            matrix = weights.detach().to(dtype=torch.float64, device="cpu")
        else:
            rows = [list(row) for row in weights]
            widths = {len(row) for row in rows}
            if len(widths) > 1:
                raise DimensionMismatchError(
                    f"Weight rows have different lengths: {sorted(widths)}",
                    {"row_lengths": sorted(widths)},
                )
            matrix = torch.tensor(rows, dtype=torch.float64)
        if matrix.dim() != 2 or matrix.shape[0] == 0:
            raise DimensionMismatchError(
                f"Weights must be a non-empty 2-D matrix, got shape {tuple(matrix.shape)}",
                {"shape": list(matrix.shape)},
            )
        if matrix.shape[1] > self._slots:
            raise DimensionMismatchError(
                f"Weight rows of length {matrix.shape[1]} exceed slot capacity {self._slots}",
                {"row_length": matrix.shape[1], "slot_count": self._slots},
            )
        return matrix

    def _require_level(self, ct: "Ciphertext", depth: int, op: str) -> None:
        if ct.level < depth:
            raise LevelExhaustedError(
                f"{op} needs {depth} level(s) but the ciphertext is at level {ct.level}",
                {"op": op, "level": ct.level, "required": depth},
            )
