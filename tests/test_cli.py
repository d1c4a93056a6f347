"""Tests for the batch driver."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from ckks_classifier import cli
from ckks_classifier.context import EvaluationContext
from ckks_classifier.data import DEFAULT_MAX_VALS, DEFAULT_MIN_VALS, MinMaxScaler, load_network, save_network
from ckks_classifier.evaluator import LevelAwareEvaluator
from ckks_classifier.inference import InferenceOrchestrator, predict_plain
from helpers import make_network, make_small_config

CHAIN = ",".join(["60"] + ["40"] * 13 + ["60"])
SMALL_ARGS = [
    "--backend", "simulated",
    "--poly-mod-degree", "64",
    "--coeff-mod-bits", CHAIN,
    "--security-level", "none",
]


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "inputs"
    directory.mkdir()
    save_network(make_network(sizes=(30, 4, 3, 1), weight_scale=0.2), directory)
    return directory


@pytest.fixture
def data_file(tmp_path: Path, model_dir: Path) -> Path:
    # Mid-range features scale to zero; label each row with the plaintext decision.
    network = load_network(model_dir)
    label = int(predict_plain(network, torch.zeros(30)).diagnosis)
    mid = [(lo + hi) / 2 for lo, hi in zip(DEFAULT_MIN_VALS, DEFAULT_MAX_VALS)]
    path = tmp_path / "data.csv"
    path.write_text("\n".join(",".join(str(v) for v in mid + [label]) for _ in range(8)) + "\n")
    return path


class TestParser:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.samples == 100
        assert args.poly_mod_degree == 32768
        assert args.backend == "auto"
        assert cli.config_from_args(args).max_level == 18

    def test_chain_option(self):
        args = cli.build_parser().parse_args(SMALL_ARGS)
        config = cli.config_from_args(args)
        assert config.max_level == 13
        assert config.security_level is None

    def test_bad_chain(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--coeff-mod-bits", "60,abc"])


class TestMain:
    def test_reports_correct_and_total(self, model_dir, data_file, capsys):
        # when
        code = cli.main(SMALL_ARGS + ["--weights-dir", str(model_dir), "--data", str(data_file), "--samples", "5"])

        # then
        assert code == 0
        assert capsys.readouterr().out.strip().splitlines()[-1] == "5 5"

    def test_parallel_with_verify(self, model_dir, data_file, capsys, caplog):
        caplog.set_level(logging.INFO, logger="ckks_classifier")
        code = cli.main(SMALL_ARGS + [
            "--weights-dir", str(model_dir), "--data", str(data_file),
            "--samples", "4", "--workers", "2", "--verify",
        ])
        assert code == 0
        assert capsys.readouterr().out.strip().splitlines()[-1] == "4 4"
        assert "deviation" in caplog.text

    def test_missing_weights_exit_code(self, tmp_path, data_file):
        code = cli.main(SMALL_ARGS + ["--weights-dir", str(tmp_path / "missing"), "--data", str(data_file)])
        assert code == 1

    def test_undecodable_data_exit_code(self, tmp_path, model_dir):
        # given
        data = tmp_path / "binary.csv"
        data.write_bytes(b"1,2,\xff\xfe\n")

        # when
        code = cli.main(SMALL_ARGS + ["--weights-dir", str(model_dir), "--data", str(data)])

        # then
        assert code == 1

    def test_invalid_parameters_exit_code(self, model_dir, data_file):
        code = cli.main(["--backend", "simulated", "--poly-mod-degree", "3000",
                         "--weights-dir", str(model_dir), "--data", str(data_file)])
        assert code == 1

    def test_short_chain_exit_code(self, model_dir, data_file):
        code = cli.main(["--backend", "simulated", "--poly-mod-degree", "64", "--security-level", "none",
                         "--coeff-mod-bits", "60,40,40,60",
                         "--weights-dir", str(model_dir), "--data", str(data_file)])
        assert code == 1


class TestRunBatch:
    @pytest.fixture
    def orchestrator(self):
        ctx = EvaluationContext.create(make_small_config(), backend="simulated")
        return InferenceOrchestrator(LevelAwareEvaluator(ctx), make_network(sizes=(3, 4, 3, 1)))

    def test_counts_correct_rows(self, orchestrator):
        # given
        scaler = MinMaxScaler([-1.0] * 3, [1.0] * 3)
        x = [0.2, -0.3, 0.5]
        truth = int(predict_plain(orchestrator.network, x).diagnosis)
        rows = [x + [truth], x + [1 - truth]]

        # when
        summary = cli.run_batch(orchestrator, rows, scaler=scaler)

        # then
        assert summary.total == 2
        assert summary.correct == 1
        assert summary.accuracy == 0.5
        assert summary.failures == 0

    def test_bad_rows_are_counted_not_raised(self, orchestrator):
        scaler = MinMaxScaler([-1.0] * 3, [1.0] * 3)
        summary = cli.run_batch(orchestrator, [[0.1, 0.2], [0.1, 0.2, 0.3, 1.0]], scaler=scaler, verify=True)
        assert summary.total == 2
        assert summary.failures == 1
        assert summary.results[0].error is not None
        assert summary.max_deviation is not None and summary.max_deviation < 1e-5

    @pytest.mark.parametrize("label", [float("nan"), float("inf"), 0.5])
    def test_unusable_label_fails_only_its_row(self, orchestrator, label):
        # given
        scaler = MinMaxScaler([-1.0] * 3, [1.0] * 3)
        rows = [[0.1, 0.2, 0.3, 1.0], [0.1, 0.2, 0.3, label]]

        # when
        summary = cli.run_batch(orchestrator, rows, scaler=scaler, workers=2)

        # then
        assert summary.total == 2
        assert summary.failures == 1
        assert summary.results[0].error is None
        assert "Label" in summary.results[1].error
