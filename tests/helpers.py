"""Builders shared by the test modules."""

import torch

from ckks_classifier.config import InferenceConfig
from ckks_classifier.network import Network

# 32 slots and 14 levels: enough for the 13-level network, small enough to be fast.
SMALL_DEGREE = 64
SMALL_DEPTH = 14


def make_small_config(mult_depth: int = SMALL_DEPTH, **kwargs) -> InferenceConfig:
    kwargs.setdefault("poly_mod_degree", SMALL_DEGREE)
    kwargs.setdefault("scale_bits", 40)
    kwargs.setdefault("security_level", None)
    return InferenceConfig(mult_depth=mult_depth, **kwargs)


def make_network(sizes=(6, 4, 3, 1), seed: int = 0, weight_scale: float = 0.4) -> Network:
    """Random three-layer network with ReLU, ReLU, Sigmoid."""
    gen = torch.Generator().manual_seed(seed)
    weights, biases = [], []
    for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
        weights.append(torch.randn(fan_out, fan_in, generator=gen, dtype=torch.float64) * weight_scale)
        biases.append(torch.randn(fan_out, generator=gen, dtype=torch.float64) * 0.1)
    return Network.from_arrays(weights, biases)
