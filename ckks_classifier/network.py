"""
Network - the fixed three-layer classifier evaluated under encryption.

Weights and biases are plaintext, known to the server and immutable once
loaded. Each layer carries its activation tag, resolved when the network is
built; the encrypted pipeline dispatches on the tag, never on data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Union

import torch

from .errors import DimensionMismatchError
from .evaluator import LINEAR_DEPTH, Activation

MatrixLike = Union[torch.Tensor, Sequence[Sequence[float]]]
VectorLike = Union[torch.Tensor, Sequence[float]]

DEFAULT_ACTIVATIONS = (Activation.RELU_POLY, Activation.RELU_POLY, Activation.SIGMOID_POLY)


@dataclass(frozen=True, eq=False)
class Layer:
    """One linear layer followed by a polynomial activation.

    Computes ``activation(W @ x + b)``.

    Args:
        weight: Matrix of shape ``(out_features, in_features)``.
        bias: Vector of shape ``(out_features,)``.
        activation: Activation tag (or its name).
    """
    weight: torch.Tensor
    bias: torch.Tensor
    activation: Activation = Activation.RELU_POLY

    def __post_init__(self) -> None:
        weight = torch.as_tensor(self.weight, dtype=torch.float64).detach().cpu().clone()
        bias = torch.as_tensor(self.bias, dtype=torch.float64).detach().cpu().reshape(-1).clone()
        if weight.dim() != 2 or weight.numel() == 0:
            raise DimensionMismatchError(
                f"Layer weight must be a non-empty 2-D matrix, got shape {tuple(weight.shape)}",
                {"shape": list(weight.shape)},
            )
        if bias.numel() != weight.shape[0]:
            raise DimensionMismatchError(
                f"Bias length {bias.numel()} does not match {weight.shape[0]} output features",
                {"bias": bias.numel(), "out_features": weight.shape[0]},
            )
        object.__setattr__(self, "weight", weight)
        object.__setattr__(self, "bias", bias)
        object.__setattr__(self, "activation", Activation.parse(self.activation))

    @property
    def in_features(self) -> int:
        return int(self.weight.shape[1])

    @property
    def out_features(self) -> int:
        return int(self.weight.shape[0])

    def mult_depth(self) -> int:
        """Levels consumed by the linear step plus the activation."""
        return LINEAR_DEPTH + self.activation.depth

    def forward_plain(self, x: torch.Tensor) -> torch.Tensor:
        return self.activation.plain(self.weight @ x + self.bias)

    @classmethod
    def from_torch(cls, linear: torch.nn.Linear, activation: Union[str, Activation]) -> "Layer":
        """Create from a PyTorch Linear layer."""
        bias = linear.bias.data if linear.bias is not None else torch.zeros(linear.out_features)
        return cls(linear.weight.data, bias, Activation.parse(activation))

    def __repr__(self) -> str:
        return (
            f"Layer(in_features={self.in_features}, out_features={self.out_features}, "
            f"activation={self.activation.value})"
        )


class Network:
    """Ordered sequence of exactly three layers.

    Layer ``k``'s input width must equal layer ``k-1``'s output width.

    Example:
        >>> net = Network.from_arrays([w0, w1, w2], [b0, b1, b2])
        >>> net.mult_depth()
        13
    """

    NUM_LAYERS = 3

    def __init__(self, layers: Sequence[Layer]) -> None:
        layers = tuple(layers)
        if len(layers) != self.NUM_LAYERS:
            raise DimensionMismatchError(
                f"Network needs exactly {self.NUM_LAYERS} layers, got {len(layers)}",
                {"layers": len(layers)},
            )
        for idx in range(1, len(layers)):
            prev, curr = layers[idx - 1], layers[idx]
            if curr.in_features != prev.out_features:
                raise DimensionMismatchError(
                    f"Layer {idx} expects {curr.in_features} inputs but layer {idx - 1} "
                    f"produces {prev.out_features}",
                    {"layer": idx, "in_features": curr.in_features, "prev_out": prev.out_features},
                )
        self._layers = layers

    @classmethod
    def from_arrays(
        cls,
        weights: Sequence[MatrixLike],
        biases: Sequence[VectorLike],
        activations: Optional[Sequence[Union[str, Activation]]] = None,
    ) -> "Network":
        """Build from per-layer weight matrices and bias vectors.

        Activations default to ReLU, ReLU, Sigmoid.
        """
        activations = activations or DEFAULT_ACTIVATIONS
        if not (len(weights) == len(biases) == len(activations)):
            raise DimensionMismatchError(
                f"Got {len(weights)} weight matrices, {len(biases)} bias vectors "
                f"and {len(activations)} activations"
            )
        layers = []
        for w, b, act in zip(weights, biases, activations):
            layers.append(Layer(torch.as_tensor(w, dtype=torch.float64), torch.as_tensor(b, dtype=torch.float64), act))
        return cls(layers)

    @classmethod
    def from_torch(cls, model: torch.nn.Module) -> "Network":
        """Convert a ``Linear -> ReLU -> Linear -> ReLU -> Linear -> Sigmoid`` model.

        ReLU and Sigmoid modules are replaced by their polynomial
        approximations; the plaintext behaviour therefore changes.
        """
        layers: List[Layer] = []
        pending: Optional[torch.nn.Linear] = None
        for module in model.modules():
            if isinstance(module, torch.nn.Linear):
                if pending is not None:
                    raise ValueError("Every Linear layer must be followed by ReLU or Sigmoid")
                pending = module
            elif isinstance(module, (torch.nn.ReLU, torch.nn.Sigmoid)):
                if pending is None:
                    raise ValueError(f"{type(module).__name__} without a preceding Linear layer")
                act = Activation.RELU_POLY if isinstance(module, torch.nn.ReLU) else Activation.SIGMOID_POLY
                layers.append(Layer.from_torch(pending, act))
                pending = None
        if pending is not None:
            raise ValueError("Every Linear layer must be followed by ReLU or Sigmoid")
        return cls(layers)

    @property
    def layers(self) -> tuple:
        return self._layers

    @property
    def in_features(self) -> int:
        return self._layers[0].in_features

    @property
    def out_features(self) -> int:
        return self._layers[-1].out_features

    def mult_depth(self) -> int:
        """Total levels consumed by one encrypted forward pass."""
        return sum(layer.mult_depth() for layer in self._layers)

    def max_width(self) -> int:
        """Widest vector that has to fit in the slots."""
        return max(max(layer.in_features, layer.out_features) for layer in self._layers)

    def forward_plain(self, x: VectorLike) -> torch.Tensor:
        """Plaintext evaluation of the same polynomial network."""
        out = torch.as_tensor(x, dtype=torch.float64).reshape(-1)
        if out.numel() != self.in_features:
            raise DimensionMismatchError(
                f"Input has {out.numel()} features, network expects {self.in_features}",
                {"length": out.numel(), "in_features": self.in_features},
            )
        for layer in self._layers:
            out = layer.forward_plain(out)
        return out

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    def __getitem__(self, idx: int) -> Layer:
        return self._layers[idx]

    def __repr__(self) -> str:
        lines = "\n".join(f"  ({i}): {layer!r}" for i, layer in enumerate(self._layers))
        return f"Network(\n{lines}\n)"
