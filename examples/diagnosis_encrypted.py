#!/usr/bin/env python3
"""Train a polynomial-activation classifier and run it under encryption.

The model is trained in PyTorch with the same ReLU/sigmoid polynomials the
encrypted pipeline evaluates, so encrypted and plaintext decisions agree.

Usage:
    python examples/diagnosis_encrypted.py [--samples 10] [--backend simulated] [--save-dir inputs]
"""

import argparse
import sys
import time
from pathlib import Path

import torch
import torch.nn as nn
import torch.optim as optim

sys.path.insert(0, str(Path(__file__).parent.parent))

from ckks_classifier import (
    EvaluationContext,
    InferenceConfig,
    InferenceOrchestrator,
    LevelAwareEvaluator,
    Network,
    poly_relu,
    poly_sigmoid,
    predict_plain,
    save_network,
)


class PolyMLP(nn.Module):
    def __init__(self, input_size: int = 30, hidden1: int = 16, hidden2: int = 8):
        super().__init__()
        self.fc1 = nn.Linear(input_size, hidden1)
        self.fc2 = nn.Linear(hidden1, hidden2)
        self.fc3 = nn.Linear(hidden2, 1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = poly_relu(self.fc1(x))
        x = poly_relu(self.fc2(x))
        return poly_sigmoid(self.fc3(x)).squeeze(-1)


def generate_synthetic_data(n: int = 600, n_features: int = 30, seed: int = 0):
    """Linearly separable-ish data already scaled to [-1, 1]."""
    gen = torch.Generator().manual_seed(seed)
    X = torch.rand(n, n_features, generator=gen) * 2 - 1
    direction = torch.randn(n_features, generator=gen)
    y = (X @ direction > 0).float()
    split = int(0.8 * n)
    return X[:split], y[:split], X[split:], y[split:]


def train(model: nn.Module, X: torch.Tensor, y: torch.Tensor, epochs: int = 200, lr: float = 0.01) -> None:
    optimizer = optim.Adam(model.parameters(), lr=lr)
    for epoch in range(epochs):
        optimizer.zero_grad()
        # The polynomial sigmoid can leave [0, 1]; MSE keeps training stable.
        loss = nn.functional.mse_loss(model(X), y)
        loss.backward()
        optimizer.step()
        if (epoch + 1) % 50 == 0:
            print(f"  Epoch {epoch + 1}/{epochs}, Loss: {loss.item():.4f}")


def to_network(model: PolyMLP) -> Network:
    layers = [model.fc1, model.fc2, model.fc3]
    return Network.from_arrays(
        [layer.weight.data for layer in layers],
        [layer.bias.data for layer in layers],
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--samples", type=int, default=10, help="Number of encrypted test samples")
    parser.add_argument("--epochs", type=int, default=200, help="Training epochs")
    parser.add_argument("--backend", choices=["auto", "pyfhel", "simulated"], default="simulated")
    parser.add_argument("--save-dir", type=str, default=None, help="Write layer_*.txt files here")
    args = parser.parse_args()

    print("=" * 60)
    print("Encrypted Diagnosis Example")
    print("=" * 60)

    print("\n[1] Training model...")
    torch.manual_seed(0)
    X_train, y_train, X_test, y_test = generate_synthetic_data()
    model = PolyMLP()
    train(model, X_train, y_train, epochs=args.epochs)
    network = to_network(model)
    print(f"  {network}")

    if args.save_dir:
        save_network(network, args.save_dir)
        print(f"  Saved weights to {args.save_dir}")

    print("\n[2] Building encryption context...")
    config = InferenceConfig.for_network(network)
    ctx = EvaluationContext.create(config, backend=args.backend)
    orchestrator = InferenceOrchestrator(LevelAwareEvaluator(ctx), network)
    print(f"  Backend: {ctx.backend!r}")
    print(f"  Depth needed: {network.mult_depth()}, available: {ctx.max_level}")

    print(f"\n[3] Running encrypted inference on {args.samples} samples...")
    correct = agree = 0
    start = time.perf_counter()
    for x, label in zip(X_test[: args.samples], y_test[: args.samples]):
        enc = orchestrator.predict(x)
        plain = predict_plain(network, x)
        correct += int(enc.diagnosis) == int(label)
        agree += enc.diagnosis == plain.diagnosis
        print(f"  score={enc.score:+.6f} plain={plain.score:+.6f} label={int(label)}")
    elapsed = time.perf_counter() - start

    n = min(args.samples, len(X_test))
    print(f"\n  Accuracy: {correct}/{n}, agreement with plaintext: {agree}/{n}")
    print(f"  Time per sample: {elapsed / max(n, 1):.3f}s")


if __name__ == "__main__":
    main()
