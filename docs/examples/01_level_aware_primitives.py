#!/usr/bin/env python3
"""
Basic level-aware evaluation example.

Shows the building blocks of the encrypted classifier:
- context creation
- vector encryption
- plaintext multiply, slot sum and slot mask
- polynomial activations and the levels they consume
"""

import torch

from ckks_classifier import EvaluationContext, InferenceConfig, LevelAwareEvaluator, poly_relu, poly_sigmoid


def show(label, evaluator, ct, expected):
    values = evaluator.decrypt(ct, expected.numel())
    print(f"\n=== {label} ===")
    print(f"plain:     {expected}")
    print(f"encrypted: {values}")
    print(f"error: {(values - expected).abs().max():.2e}  level: {ct.level}")


def main():
    # 1. Parameters: 8192-degree ring, six 40-bit levels (340 bits, simulation only)
    config = InferenceConfig(poly_mod_degree=8192, coeff_mod_bits=[60, 40, 40, 40, 40, 40, 40, 60],
                             security_level=None)

    # 2. Context (backend + keys)
    ctx = EvaluationContext.create(config, backend="simulated")
    evaluator = LevelAwareEvaluator(ctx)
    print(f"Backend: {ctx.backend!r}")
    print(f"Slots: {ctx.slot_count}, levels: {ctx.max_level}")

    # 3. Data
    x = torch.tensor([1.0, -2.0, 0.5, 3.0], dtype=torch.float64)
    w = torch.tensor([0.5, 0.25, 2.0, -1.0], dtype=torch.float64)

    # 4. Plaintext multiply (1 level)
    show("x * w", evaluator, evaluator.multiply_plain(evaluator.encrypt(x), w), x * w)

    # 5. Dot product: multiply, rotate-and-add, keep slot 0 (2 levels)
    ct = evaluator.multiply_plain(evaluator.encrypt(x), w)
    evaluator.sum_all_slots(ct)
    evaluator.mask_slot(ct, 0)
    show("<x, w>", evaluator, ct, (x @ w).reshape(1))

    # 6. Activations (2 and 3 levels)
    show("relu~(x)", evaluator, evaluator.apply_poly_relu(evaluator.encrypt(x), 4), poly_relu(x))
    show("sigmoid~(x)", evaluator, evaluator.apply_poly_sigmoid(evaluator.encrypt(x), 4), poly_sigmoid(x))


if __name__ == "__main__":
    main()
