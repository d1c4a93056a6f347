"""Batch driver: load the model, sample rows, classify them under encryption.

    python -m ckks_classifier --weights-dir inputs --data inputs/data.csv --samples 100
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .backends import BACKENDS
from .config import InferenceConfig
from .context import EvaluationContext
from .data import MinMaxScaler, load_network, read_random_client_data, split_features_label
from .errors import CKKSClassifierError, FileLoadError, ParameterInvalidError
from .evaluator import LevelAwareEvaluator
from .inference import DEFAULT_THRESHOLD, InferenceOrchestrator, predict_plain

logger = logging.getLogger(__name__)


@dataclass
class RowResult:
    index: int
    label: int
    correct: bool = False
    score: Optional[float] = None
    deviation: Optional[float] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    """Aggregated outcome of a batch run."""
    results: List[RowResult] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def correct(self) -> int:
        return sum(r.correct for r in self.results)

    @property
    def failures(self) -> int:
        return sum(r.error is not None for r in self.results)

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    @property
    def max_deviation(self) -> Optional[float]:
        devs = [r.deviation for r in self.results if r.deviation is not None]
        return max(devs) if devs else None


def _parse_bits(text: str) -> List[int]:
    try:
        return [int(tok) for tok in text.replace(",", " ").split()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma-separated integers, got {text!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ckks-classifier",
        description="Encrypted three-layer classifier over leveled CKKS",
    )
    parser.add_argument("--weights-dir", default="inputs",
                        help="Directory holding layer_{0,1,2}_{weights,biases}.txt (default: inputs)")
    parser.add_argument("--data", default="inputs/data.csv",
                        help="Dataset file, one labelled sample per line (default: inputs/data.csv)")
    parser.add_argument("--samples", type=int, default=100,
                        help="Number of rows sampled from the dataset (default: 100)")
    parser.add_argument("--seed", type=int, default=None, help="Sampling seed")
    parser.add_argument("--backend", choices=BACKENDS, default="auto",
                        help="CKKS backend (default: auto, Pyfhel when installed)")
    parser.add_argument("--poly-mod-degree", type=int, default=32768,
                        help="Polynomial modulus degree (default: 32768)")
    parser.add_argument("--coeff-mod-bits", type=_parse_bits, default=None,
                        help="Modulus chain bit sizes, e.g. 60,40,40,60 (default: 60 + 18x40 + 60)")
    parser.add_argument("--scale-bits", type=int, default=40, help="log2 of the base scale (default: 40)")
    parser.add_argument("--security-level", choices=["128_classic", "none"], default="128_classic",
                        help="Enforce the 128-bit modulus bound; 'none' only for simulation (default: 128_classic)")
    parser.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD,
                        help="Decision threshold on the output score (default: 0.5)")
    parser.add_argument("--workers", type=int, default=1,
                        help="Rows evaluated concurrently (default: 1)")
    parser.add_argument("--verify", action="store_true",
                        help="Also run the plaintext network and report the deviation")
    parser.add_argument("--noise-std", type=float, default=0.0,
                        help="Gaussian noise for the simulated backend (default: 0)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    return parser


def config_from_args(args: argparse.Namespace) -> InferenceConfig:
    kwargs = {
        "poly_mod_degree": args.poly_mod_degree,
        "scale_bits": args.scale_bits,
        "security_level": None if args.security_level == "none" else args.security_level,
    }
    if args.coeff_mod_bits:
        kwargs["coeff_mod_bits"] = tuple(args.coeff_mod_bits)
    return InferenceConfig(**kwargs).validate()


def classify_row(
    orchestrator: InferenceOrchestrator,
    scaler: MinMaxScaler,
    index: int,
    row: Sequence[float],
    verify: bool = False,
) -> RowResult:
    """Classify one dataset row; core errors are recorded, not raised."""
    n_features = orchestrator.network.in_features
    try:
        features, label = split_features_label(row, n_features)
    except CKKSClassifierError as exc:
        logger.warning("row %d: %s", index, exc)
        return RowResult(index=index, label=-1, error=str(exc))

    result = RowResult(index=index, label=label)
    try:
        normalized = scaler(features)
        prediction = orchestrator.predict(normalized)
    except CKKSClassifierError as exc:
        logger.warning("row %d: %s", index, exc)
        result.error = str(exc)
        return result

    result.score = prediction.score
    result.correct = int(prediction.diagnosis) == label
    if verify:
        reference = predict_plain(orchestrator.network, normalized, orchestrator.threshold)
        result.deviation = abs(reference.score - prediction.score)
        if reference.diagnosis != prediction.diagnosis:
            logger.warning(
                "row %d: encrypted and plaintext decisions differ (%.6f vs %.6f)",
                index, prediction.score, reference.score,
            )
    logger.debug("row %d: score=%.6f label=%d correct=%s", index, result.score, label, result.correct)
    return result


def run_batch(
    orchestrator: InferenceOrchestrator,
    rows: Sequence[Sequence[float]],
    scaler: Optional[MinMaxScaler] = None,
    workers: int = 1,
    verify: bool = False,
) -> RunSummary:
    """Classify ``rows`` and aggregate correctness."""
    scaler = scaler or MinMaxScaler.default()
    start = time.perf_counter()
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(classify_row, orchestrator, scaler, i, row, verify)
                for i, row in enumerate(rows)
            ]
            results = [f.result() for f in futures]
    else:
        results = [classify_row(orchestrator, scaler, i, row, verify) for i, row in enumerate(rows)]
    return RunSummary(results=results, elapsed=time.perf_counter() - start)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
        network = load_network(args.weights_dir)
        rows = read_random_client_data(args.data, args.samples, seed=args.seed)
        backend_kwargs = {}
        if args.backend == "simulated":
            backend_kwargs = {"noise_std": args.noise_std, "seed": args.seed}
        context = EvaluationContext.create(config, backend=args.backend, **backend_kwargs)
        orchestrator = InferenceOrchestrator(LevelAwareEvaluator(context), network, args.threshold)
    except (FileLoadError, ParameterInvalidError) as exc:
        logger.error("%s", exc)
        return 1
    except CKKSClassifierError as exc:
        logger.error("Setup failed: %s", exc)
        return 1
    except RuntimeError as exc:
        # Backend library missing.
        logger.error("%s", exc)
        return 1

    summary = run_batch(orchestrator, rows, workers=max(1, args.workers), verify=args.verify)

    print(f"{summary.correct} {summary.total}")
    logger.info(
        "accuracy %.2f%% (%d/%d), %d failed rows, %.2fs",
        100.0 * summary.accuracy, summary.correct, summary.total, summary.failures, summary.elapsed,
    )
    if args.verify and summary.max_deviation is not None:
        logger.info("max encrypted-vs-plain deviation: %.3e", summary.max_deviation)
    return 0


if __name__ == "__main__":
    sys.exit(main())
