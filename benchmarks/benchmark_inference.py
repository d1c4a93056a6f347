#!/usr/bin/env python3
"""Benchmark script for encrypted classifier inference.

This script measures:
- Context creation (parameter validation + key generation) time
- Encryption/decryption time
- Layer-wise inference time (linear step and activation)
- Primitive operation counts (simulated backend)

Usage:
    python benchmarks/benchmark_inference.py [--hidden 16] [--samples 5] [--backend simulated]
"""

import argparse
import gc
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import torch

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ckks_classifier import EvaluationContext, InferenceConfig, LevelAwareEvaluator, Network
from ckks_classifier.backends.simulated import SimulatedBackend


# =============================================================================
# Timing Utilities
# =============================================================================


@contextmanager
def timer():
    """Context manager for timing code blocks."""
    start = time.perf_counter()
    result: Dict[str, float] = {}
    yield result
    result["elapsed"] = time.perf_counter() - start


def measure_time(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Tuple[Any, float]:
    """Measure execution time of a function."""
    gc.collect()
    start = time.perf_counter()
    result = func(*args, **kwargs)
    elapsed = time.perf_counter() - start
    return result, elapsed


@dataclass
class LayerTiming:
    name: str
    times: List[float] = field(default_factory=list)

    @property
    def mean_ms(self) -> float:
        return 1000.0 * sum(self.times) / len(self.times) if self.times else 0.0


def random_network(n_features: int, hidden: int, seed: int = 0) -> Network:
    gen = torch.Generator().manual_seed(seed)
    sizes = [n_features, hidden, hidden // 2 or 1, 1]
    weights = [torch.randn(o, i, generator=gen, dtype=torch.float64) * 0.2 for i, o in zip(sizes[:-1], sizes[1:])]
    biases = [torch.zeros(o, dtype=torch.float64) for o in sizes[1:]]
    return Network.from_arrays(weights, biases)


def run_benchmarks(hidden_size: int, num_samples: int, backend: str, poly_mod_degree: int) -> None:
    print("=" * 60)
    print("Encrypted Classifier Inference Benchmarks")
    print("=" * 60)

    network = random_network(30, hidden_size)
    config = InferenceConfig.for_network(network, poly_mod_degree=poly_mod_degree)
    if backend == "simulated":
        # Simulation does not need the ring to be secure, only large enough.
        config = InferenceConfig(
            poly_mod_degree=poly_mod_degree, mult_depth=config.mult_depth, security_level=None
        )

    ctx, setup_time = measure_time(EvaluationContext.create, config, backend=backend)
    evaluator = LevelAwareEvaluator(ctx)
    print(f"\nBackend: {ctx.backend!r}")
    print(f"Network: {network.in_features} -> {hidden_size} -> {hidden_size // 2 or 1} -> 1, "
          f"depth {network.mult_depth()}")
    print(f"Context + keys: {setup_time:.3f}s")

    timings = {name: LayerTiming(name) for name in ("encrypt", "decrypt")}
    for idx, layer in enumerate(network):
        timings[f"linear{idx}"] = LayerTiming(f"linear{idx}")
        timings[f"{layer.activation.value}{idx}"] = LayerTiming(f"{layer.activation.value}{idx}")

    activations = {"relu": evaluator.apply_poly_relu, "sigmoid": evaluator.apply_poly_sigmoid}
    for _ in range(num_samples):
        x = torch.rand(network.in_features, dtype=torch.float64) * 2 - 1
        with timer() as t:
            ct = evaluator.encrypt(x)
        timings["encrypt"].times.append(t["elapsed"])
        for idx, layer in enumerate(network):
            with timer() as t:
                ct = evaluator.process_layer_linear(ct, layer.weight, layer.bias)
            timings[f"linear{idx}"].times.append(t["elapsed"])
            act = layer.activation.value
            with timer() as t:
                ct = activations[act](ct, layer.out_features)
            timings[f"{act}{idx}"].times.append(t["elapsed"])
        with timer() as t:
            evaluator.decrypt(ct, 1)
        timings["decrypt"].times.append(t["elapsed"])

    print(f"\n{'stage':<12} {'mean (ms)':>12}")
    print("-" * 26)
    for timing in timings.values():
        print(f"{timing.name:<12} {timing.mean_ms:>12.2f}")
    total = sum(t.mean_ms for t in timings.values())
    print(f"{'total':<12} {total:>12.2f}")

    if isinstance(ctx.backend, SimulatedBackend):
        print("\nPrimitive operations per sample:")
        for op, count in sorted(ctx.backend.reset_stats().items()):
            print(f"  {op:<16} {count // max(num_samples, 1)}")
        print()
        print("NOTE: Simulated backend times are NOT representative of real CKKS performance.")
        print("      Use --backend pyfhel to benchmark with actual homomorphic encryption.")


def main() -> None:
    """Entry point for benchmark script."""
    parser = argparse.ArgumentParser(description="Encrypted Classifier Inference Benchmarks")
    parser.add_argument(
        "--hidden",
        type=int,
        default=16,
        help="First hidden layer size (default: 16)",
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=5,
        help="Number of benchmark samples (default: 5)",
    )
    parser.add_argument(
        "--backend",
        choices=["simulated", "pyfhel", "auto"],
        default="simulated",
        help="CKKS backend (default: simulated)",
    )
    parser.add_argument(
        "--poly-mod-degree",
        type=int,
        default=32768,
        help="Ring dimension (default: 32768)",
    )
    args = parser.parse_args()

    run_benchmarks(
        hidden_size=args.hidden,
        num_samples=args.samples,
        backend=args.backend,
        poly_mod_degree=args.poly_mod_degree,
    )


if __name__ == "__main__":
    main()
