"""
InferenceOrchestrator - the fixed encrypted forward pass.

    ct1 = relu(linear(ct_in, L0))
    ct2 = relu(linear(ct1, L1))
    ct3 = sigmoid(linear(ct2, L2))

followed by decryption of slot 0 and a 0.5 threshold. The topology is static
and data-independent; only the activation tag of each layer selects which
fixed-depth evaluator routine runs after its linear step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict

import torch

from .errors import DimensionMismatchError, LevelExhaustedError
from .evaluator import Activation, LevelAwareEvaluator
from .network import Network, VectorLike

if TYPE_CHECKING:
    from .backends.base import Ciphertext

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5


@dataclass(frozen=True)
class Prediction:
    """Decrypted classifier output.

    Attributes:
        score: Decrypted value of output slot 0.
        diagnosis: ``score > threshold``.
    """
    score: float
    diagnosis: bool

    def __bool__(self) -> bool:
        return self.diagnosis


class InferenceOrchestrator:
    """Runs a three-layer :class:`Network` over one encrypted input vector.

    Args:
        evaluator: Level-aware evaluator bound to a shared context.
        network: The plaintext model.
        threshold: Decision threshold on the decrypted score.

    Raises:
        LevelExhaustedError: If the context's modulus chain cannot hold the
            network's multiplicative depth.
    """

    def __init__(
        self,
        evaluator: LevelAwareEvaluator,
        network: Network,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self.evaluator = evaluator
        self.network = network
        self.threshold = float(threshold)
        self._activations: Dict[Activation, Callable[["Ciphertext", int], "Ciphertext"]] = {
            Activation.RELU_POLY: evaluator.apply_poly_relu,
            Activation.SIGMOID_POLY: evaluator.apply_poly_sigmoid,
        }
        self.check_depth_budget()

    def check_depth_budget(self) -> None:
        """Fail fast when the chain is shorter than the network's depth."""
        required = self.network.mult_depth()
        available = self.evaluator.context.max_level
        if required > available:
            raise LevelExhaustedError(
                f"Network needs {required} levels but the modulus chain provides {available}; "
                f"use a longer chain (InferenceConfig.for_network)",
                {"required": required, "available": available},
            )
        width = self.network.max_width()
        if width > self.evaluator.slot_count:
            raise DimensionMismatchError(
                f"Network layer width {width} exceeds {self.evaluator.slot_count} slots",
                {"width": width, "slot_count": self.evaluator.slot_count},
            )

    def encrypt(self, features: VectorLike) -> "Ciphertext":
        vec = torch.as_tensor(features, dtype=torch.float64).reshape(-1)
        if vec.numel() != self.network.in_features:
            raise DimensionMismatchError(
                f"Input has {vec.numel()} features, network expects {self.network.in_features}",
                {"length": vec.numel(), "in_features": self.network.in_features},
            )
        return self.evaluator.encrypt(vec)

    def evaluate(self, ct_in: "Ciphertext") -> "Ciphertext":
        """Run the encrypted network; ``ct_in`` is left untouched."""
        ct = ct_in
        for idx, layer in enumerate(self.network):
            ct = self.evaluator.process_layer_linear(ct, layer.weight, layer.bias)
            ct = self._activations[layer.activation](ct, layer.out_features)
            logger.debug(
                "layer %d (%s) done: level=%d scale=%.6g",
                idx,
                layer.activation.value,
                ct.level,
                ct.scale,
            )
        return ct

    def score(self, features: VectorLike) -> float:
        """Encrypt, evaluate and return decrypted output slot 0."""
        ct_out = self.evaluate(self.encrypt(features))
        return float(self.evaluator.decrypt(ct_out, length=1)[0])

    def predict(self, features: VectorLike) -> Prediction:
        value = self.score(features)
        return Prediction(score=value, diagnosis=value > self.threshold)

    def __call__(self, features: VectorLike) -> Prediction:
        return self.predict(features)


def predict_plain(network: Network, features: VectorLike, threshold: float = DEFAULT_THRESHOLD) -> Prediction:
    """Plaintext reference prediction for the same polynomial network."""
    value = float(network.forward_plain(features)[0])
    return Prediction(score=value, diagnosis=value > threshold)

