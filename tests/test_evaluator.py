"""Tests for LevelAwareEvaluator over the simulated backend."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from ckks_classifier.errors import DimensionMismatchError, InvalidIndexError, LevelExhaustedError
from ckks_classifier.evaluator import (
    LINEAR_DEPTH,
    RELU_COEFFS,
    RELU_DEPTH,
    SIGMOID_DEPTH,
    Activation,
    LevelAwareEvaluator,
    activation_depth,
    poly_relu,
    poly_sigmoid,
)

ATOL = 1e-6


def _lowered(evaluator: LevelAwareEvaluator, values, level: int):
    ct = evaluator.encrypt(values)
    evaluator.context.backend.mod_switch_to_inplace(ct, level)
    return ct


class TestEncryptDecrypt:
    def test_roundtrip(self, evaluator: LevelAwareEvaluator):
        # given
        values = torch.tensor([0.5, -1.0, 2.0], dtype=torch.float64)

        # when
        ct = evaluator.encrypt(values)

        # then
        torch.testing.assert_close(evaluator.decrypt(ct, length=3), values)
        assert evaluator.decrypt(ct).numel() == evaluator.slot_count

    def test_too_long_input(self, evaluator: LevelAwareEvaluator):
        with pytest.raises(DimensionMismatchError):
            evaluator.encrypt(torch.ones(evaluator.slot_count + 1))


class TestPlainOperands:
    def test_add_plain_keeps_level(self, evaluator: LevelAwareEvaluator):
        # given
        ct = evaluator.encrypt([1.0, 2.0])
        level = ct.level

        # when
        evaluator.add_plain(ct, [0.5, 0.25])

        # then
        assert ct.level == level
        torch.testing.assert_close(
            evaluator.decrypt(ct, 2), torch.tensor([1.5, 2.25], dtype=torch.float64)
        )

    def test_add_plain_after_rescale(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.multiply_plain(evaluator.encrypt([1.0, 2.0]), [2.0, 2.0])
        evaluator.add_plain(ct, [1.0, 1.0])
        torch.testing.assert_close(
            evaluator.decrypt(ct, 2), torch.tensor([3.0, 5.0], dtype=torch.float64), atol=ATOL, rtol=0
        )

    def test_multiply_plain_costs_one_level(self, evaluator: LevelAwareEvaluator):
        # given
        ct = evaluator.encrypt([1.0, 2.0, 3.0])
        level = ct.level

        # when
        evaluator.multiply_plain(ct, [2.0, -1.0, 0.5])

        # then
        assert ct.level == level - 1
        torch.testing.assert_close(
            evaluator.decrypt(ct, 3), torch.tensor([2.0, -2.0, 1.5], dtype=torch.float64), atol=ATOL, rtol=0
        )

    def test_multiply_plain_at_terminal_level(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [1.0], 0)
        with pytest.raises(LevelExhaustedError):
            evaluator.multiply_plain(ct, [1.0])

    def test_plain_operand_too_long(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0])
        with pytest.raises(DimensionMismatchError):
            evaluator.add_plain(ct, torch.ones(evaluator.slot_count + 1))
        with pytest.raises(DimensionMismatchError):
            evaluator.multiply_plain(ct, torch.ones(evaluator.slot_count + 1))


class TestSlotOperations:
    def test_sum_all_slots(self, evaluator: LevelAwareEvaluator):
        # given
        ct = evaluator.encrypt([1.0, 2.0, 3.0, 4.0])
        level = ct.level

        # when
        evaluator.sum_all_slots(ct)

        # then
        assert ct.level == level
        torch.testing.assert_close(
            evaluator.decrypt(ct), torch.full((evaluator.slot_count,), 10.0, dtype=torch.float64)
        )

    def test_sum_all_slots_full_vector(self, evaluator: LevelAwareEvaluator):
        values = torch.arange(evaluator.slot_count, dtype=torch.float64)
        ct = evaluator.sum_all_slots(evaluator.encrypt(values))
        assert evaluator.decrypt(ct, 1).item() == pytest.approx(values.sum().item())

    def test_mask_slot(self, evaluator: LevelAwareEvaluator):
        # given
        ct = evaluator.encrypt([1.0, 2.0, 3.0])
        level = ct.level

        # when
        evaluator.mask_slot(ct, 1)

        # then
        expected = torch.zeros(evaluator.slot_count, dtype=torch.float64)
        expected[1] = 2.0
        assert ct.level == level - 1
        torch.testing.assert_close(evaluator.decrypt(ct), expected, atol=ATOL, rtol=0)

    @pytest.mark.parametrize("index", [-1, 32, 100])
    def test_mask_slot_out_of_range(self, evaluator: LevelAwareEvaluator, index: int):
        ct = evaluator.encrypt([1.0])
        with pytest.raises(InvalidIndexError):
            evaluator.mask_slot(ct, index)


class TestAlign:
    def test_higher_operand_is_lowered(self, evaluator: LevelAwareEvaluator):
        # given
        a = evaluator.encrypt([1.0])
        b = evaluator.multiply_plain(evaluator.encrypt([1.0]), [1.0])

        # when
        evaluator.align(a, b)

        # then
        assert a.level == b.level
        assert a.scale == b.scale
        assert evaluator.decrypt(a, 1).item() == pytest.approx(1.0, rel=1e-6)

    def test_symmetric(self, evaluator: LevelAwareEvaluator):
        a = evaluator.multiply_plain(evaluator.encrypt([1.0]), [1.0])
        b = evaluator.encrypt([1.0])
        evaluator.align(a, b)
        assert a.level == b.level
        assert a.scale == b.scale

    def test_aligned_operands_can_be_added(self, evaluator: LevelAwareEvaluator):
        a = evaluator.encrypt([1.0, 2.0])
        b = evaluator.mask_slot(evaluator.encrypt([5.0, 7.0]), 0)
        evaluator.align(a, b)
        evaluator.context.backend.add_inplace(a, b)
        torch.testing.assert_close(
            evaluator.decrypt(a, 2), torch.tensor([6.0, 2.0], dtype=torch.float64), atol=ATOL, rtol=0
        )


class TestActivations:
    def test_depth_constants(self):
        assert Activation.RELU_POLY.depth == RELU_DEPTH == 2
        assert Activation.SIGMOID_POLY.depth == SIGMOID_DEPTH == 3
        assert activation_depth("sigmoid") == 3
        assert LINEAR_DEPTH == 2

    def test_parse(self):
        assert Activation.parse("RELU") is Activation.RELU_POLY
        assert Activation.parse("sigmoid_poly") is Activation.SIGMOID_POLY
        with pytest.raises(ValueError):
            Activation.parse("tanh")

    def test_plain_references_follow_coefficients(self):
        x = torch.tensor([-2.0, -0.5, 0.0, 1.0, 3.0], dtype=torch.float64)
        torch.testing.assert_close(poly_relu(x), 0.25 * x * x + 0.5 * x)
        torch.testing.assert_close(poly_sigmoid(x), 0.5 + 0.197 * x - 0.004 * x ** 3)
        assert RELU_COEFFS == (0.0, 0.5, 0.25)

    def test_relu_matches_polynomial(self, evaluator: LevelAwareEvaluator):
        # given
        x = torch.linspace(-6.0, 6.0, evaluator.slot_count, dtype=torch.float64)
        ct = evaluator.encrypt(x)
        level = ct.level

        # when
        out = evaluator.apply_poly_relu(ct, x.numel())

        # then
        assert out.level == level - RELU_DEPTH
        assert ct.level == level
        torch.testing.assert_close(evaluator.decrypt(out), poly_relu(x), atol=ATOL, rtol=0)

    def test_relu_leaves_padding_zero(self, evaluator: LevelAwareEvaluator):
        out = evaluator.apply_poly_relu(evaluator.encrypt([1.0, -1.0]), 2)
        values = evaluator.decrypt(out)
        torch.testing.assert_close(values[:2], torch.tensor([0.75, -0.25], dtype=torch.float64), atol=ATOL, rtol=0)
        assert torch.all(values[2:].abs() < ATOL)

    def test_sigmoid_matches_polynomial(self, evaluator: LevelAwareEvaluator):
        # given
        x = torch.linspace(-3.0, 3.0, evaluator.slot_count, dtype=torch.float64)
        ct = evaluator.encrypt(x)
        level = ct.level

        # when
        out = evaluator.apply_poly_sigmoid(ct, x.numel())

        # then
        assert out.level == level - SIGMOID_DEPTH
        result = evaluator.decrypt(out)
        torch.testing.assert_close(result, poly_sigmoid(x), atol=ATOL, rtol=0)
        assert torch.allclose(result, torch.sigmoid(x), atol=0.05)

    def test_sigmoid_leaves_padding_zero(self, evaluator: LevelAwareEvaluator):
        out = evaluator.apply_poly_sigmoid(evaluator.encrypt([0.0, 1.0]), 2)
        values = evaluator.decrypt(out)
        assert values[0].item() == pytest.approx(0.5, abs=ATOL)
        assert torch.all(values[2:].abs() < ATOL)

    def test_relu_needs_two_levels(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [1.0], 1)
        with pytest.raises(LevelExhaustedError):
            evaluator.apply_poly_relu(ct, 1)

    def test_sigmoid_needs_three_levels(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [1.0], 2)
        with pytest.raises(LevelExhaustedError):
            evaluator.apply_poly_sigmoid(ct, 1)

    def test_sigmoid_at_exactly_three_levels(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [2.0], 3)
        out = evaluator.apply_poly_sigmoid(ct, 1)
        assert out.level == 0
        assert evaluator.decrypt(out, 1).item() == pytest.approx(poly_sigmoid(torch.tensor(2.0)).item(), abs=ATOL)

    def test_size_larger_than_slots(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0])
        with pytest.raises(DimensionMismatchError):
            evaluator.apply_poly_relu(ct, evaluator.slot_count + 1)


class TestLinearLayer:
    def test_identity_rows(self, evaluator: LevelAwareEvaluator):
        # given
        x = torch.tensor([0.5, -1.5, 2.0], dtype=torch.float64)
        ct = evaluator.encrypt(x)

        # when
        out = evaluator.process_layer_linear(ct, torch.eye(3, dtype=torch.float64), [0.0, 0.0, 0.0])

        # then
        values = evaluator.decrypt(out)
        torch.testing.assert_close(values[:3], x, atol=ATOL, rtol=0)
        assert torch.all(values[3:].abs() < ATOL)

    def test_matches_matmul(self, evaluator: LevelAwareEvaluator):
        # given
        gen = torch.Generator().manual_seed(3)
        weight = torch.randn(4, 6, generator=gen, dtype=torch.float64)
        bias = torch.randn(4, generator=gen, dtype=torch.float64)
        x = torch.randn(6, generator=gen, dtype=torch.float64)
        ct = evaluator.encrypt(x)
        level = ct.level

        # when
        out = evaluator.process_layer_linear(ct, weight, bias)

        # then
        assert out.level == level - LINEAR_DEPTH
        assert ct.level == level
        torch.testing.assert_close(evaluator.decrypt(out, 4), weight @ x + bias, atol=ATOL, rtol=0)

    def test_row_placement(self, evaluator: LevelAwareEvaluator):
        # Row i selects input j, so slot i must hold x[j].
        x = torch.tensor([1.0, 2.0, 3.0], dtype=torch.float64)
        weight = [[0.0, 0.0, 1.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        out = evaluator.process_layer_linear(evaluator.encrypt(x), weight, [0.0, 0.0, 0.0])
        torch.testing.assert_close(
            evaluator.decrypt(out, 3), torch.tensor([3.0, 1.0, 2.0], dtype=torch.float64), atol=ATOL, rtol=0
        )

    def test_input_below_top_level(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [1.0, 1.0], 5)
        out = evaluator.process_layer_linear(ct, [[1.0, 2.0]], [0.5])
        assert out.level == 3
        assert evaluator.decrypt(out, 1).item() == pytest.approx(3.5, abs=ATOL)

    def test_bias_length_mismatch(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0, 1.0])
        with pytest.raises(DimensionMismatchError):
            evaluator.process_layer_linear(ct, [[1.0, 1.0], [1.0, 1.0]], [0.0])

    def test_ragged_weights(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0, 1.0])
        with pytest.raises(DimensionMismatchError):
            evaluator.process_layer_linear(ct, [[1.0, 1.0], [1.0]], [0.0, 0.0])

    def test_too_many_rows(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0])
        rows = evaluator.slot_count + 1
        with pytest.raises(DimensionMismatchError):
            evaluator.process_layer_linear(ct, torch.ones(rows, 1), torch.zeros(rows))

    def test_rows_too_wide(self, evaluator: LevelAwareEvaluator):
        ct = evaluator.encrypt([1.0])
        with pytest.raises(DimensionMismatchError):
            evaluator.process_layer_linear(ct, torch.ones(1, evaluator.slot_count + 1), [0.0])

    def test_needs_two_levels(self, evaluator: LevelAwareEvaluator):
        ct = _lowered(evaluator, [1.0], 1)
        with pytest.raises(LevelExhaustedError):
            evaluator.process_layer_linear(ct, [[1.0]], [0.0])


class TestOperationSchedule:
    def test_relu_relinearizes_before_rescale(self, recording_evaluator, recorder):
        ct = recording_evaluator.encrypt([1.0, 2.0])
        recorder.clear()

        recording_evaluator.apply_poly_relu(ct, 2)

        assert recorder.ops()[-3:] == ["multiply", "relinearize", "rescale"]

    def test_sigmoid_relinearizes_every_product(self, recording_evaluator, recorder):
        ct = recording_evaluator.encrypt([1.0, 2.0])
        recorder.clear()

        recording_evaluator.apply_poly_sigmoid(ct, 2)

        ops = recorder.ops()
        assert ops.count("multiply") == 2
        for i, op in enumerate(ops):
            if op == "multiply":
                assert ops[i + 1:i + 3] == ["relinearize", "rescale"]
        assert recorder.count("rescale") == 2 + 2

    def test_linear_rotation_count(self, recording_evaluator, recorder):
        ct = recording_evaluator.encrypt([1.0, 2.0, 3.0])
        recorder.clear()

        recording_evaluator.process_layer_linear(ct, torch.ones(3, 3), torch.zeros(3))

        # log2(32) rotations per row, no cipher-cipher products
        assert recorder.count("rotate") == 3 * 5
        assert recorder.count("multiply") == 0
        assert recorder.count("multiply_plain") == 3 * 2
        assert recorder.count("add_plain") == 1

    def test_sum_all_slots_is_depth_free(self, recording_evaluator, recorder):
        ct = recording_evaluator.encrypt([1.0])
        recorder.clear()

        recording_evaluator.sum_all_slots(ct)

        assert set(recorder.ops()) == {"rotate", "add"}
        assert all(call.level == ct.level for call in recorder.calls)
