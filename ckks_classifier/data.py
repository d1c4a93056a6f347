"""
Data pipeline - weight/bias/dataset readers, normalization and sampling.

File formats:

- bias files: one number per line;
- weight files: one row per line, numbers separated by whitespace;
- dataset files: one sample per line, comma- or whitespace-separated, the
  label in the column right after the features.

Blank lines are skipped everywhere.
"""

from __future__ import annotations

import logging
import math
import random
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import torch

from .errors import DimensionMismatchError, FileLoadError
from .evaluator import Activation
from .network import DEFAULT_ACTIVATIONS, Layer, Network

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

NUM_FEATURES = 30

# Per-feature bounds of the 30-feature diagnosis dataset the bundled model
# was trained on.
DEFAULT_MIN_VALS = (
    60.0, 0.0, 15.0088511816, 0.0, 0.0020030991, 0.0036160168, 0.0093847201, 4.0026286598,
    0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 90.0, 60.0, 150.0933155941, 50.2307065598, 20.0034340150,
    50.4071936198, 0.0053121464, 0.0004595936, 0.0, 0.0, 0.0012879277, 0.0, 0.0, 0.0, 0.0, 0.0,
)
DEFAULT_MAX_VALS = (
    90.0, 3.0, 39.9927674640, 1.0, 19.9892933591, 9.9874294134, 9.9983456788, 9.9998403167,
    1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 179.0, 119.0, 299.9933524743, 199.9656651014, 99.9803240780,
    399.9418615941, 29.9913805605, 9.9964670726, 1.0, 1.0, 9.9997471218, 1.0, 1.0, 1.0, 1.0, 1.0,
)


def _read_lines(path: PathLike) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return [line.strip() for line in handle if line.strip()]
    except OSError as exc:
        raise FileLoadError(f"Could not open file {path}: {exc.strerror or exc}", {"path": str(path)}) from exc
    except UnicodeDecodeError as exc:
        raise FileLoadError(f"{path}: not a UTF-8 text file ({exc.reason})", {"path": str(path)}) from exc


def _parse_row(line: str, path: PathLike, lineno: int) -> List[float]:
    try:
        return [float(tok) for tok in line.replace(",", " ").split()]
    except ValueError as exc:
        raise FileLoadError(
            f"{path}:{lineno}: non-numeric value ({exc})",
            {"path": str(path), "line": lineno},
        ) from exc


def read_vector(path: PathLike) -> torch.Tensor:
    """Read a bias file: the first number on each non-empty line."""
    values = [_parse_row(line, path, i)[0] for i, line in enumerate(_read_lines(path), 1)]
    if not values:
        raise FileLoadError(f"No values read from {path}", {"path": str(path)})
    logger.info("Read vector %s (size: %d)", path, len(values))
    return torch.tensor(values, dtype=torch.float64)


def read_matrix(path: PathLike) -> torch.Tensor:
    """Read a weight file: one whitespace-separated row per line."""
    rows = [_parse_row(line, path, i) for i, line in enumerate(_read_lines(path), 1)]
    if not rows:
        raise FileLoadError(f"No rows read from {path}", {"path": str(path)})
    widths = {len(row) for row in rows}
    if len(widths) != 1:
        raise DimensionMismatchError(
            f"{path}: rows have different lengths {sorted(widths)}",
            {"path": str(path), "row_lengths": sorted(widths)},
        )
    logger.info("Read matrix %s (rows: %d)", path, len(rows))
    return torch.tensor(rows, dtype=torch.float64)


def read_client_data(path: PathLike) -> List[List[float]]:
    """Read every row of a comma- or whitespace-separated dataset."""
    rows = [_parse_row(line, path, i) for i, line in enumerate(_read_lines(path), 1)]
    if not rows:
        raise FileLoadError(f"No data was read from {path}", {"path": str(path)})
    return rows


def sample_rows(rows: Sequence[Sequence[float]], count: int, seed: Optional[int] = None) -> List[List[float]]:
    """Random sample of ``count`` rows without replacement.

    Returns every row, shuffled, when ``count`` is at least the row count.
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    rng = random.Random(seed)
    picked = rng.sample(list(rows), min(count, len(rows)))
    logger.info("Sampled %d of %d rows", len(picked), len(rows))
    return [list(row) for row in picked]


def read_random_client_data(path: PathLike, count: int, seed: Optional[int] = None) -> List[List[float]]:
    return sample_rows(read_client_data(path), count, seed=seed)


def split_features_label(row: Sequence[float], n_features: int = NUM_FEATURES) -> Tuple[torch.Tensor, int]:
    """Split a dataset row into its features and its integer label."""
    if len(row) <= n_features:
        raise DimensionMismatchError(
            f"Row has {len(row)} columns; expected {n_features} features plus a label",
            {"columns": len(row), "n_features": n_features},
        )
    label = float(row[n_features])
    if not math.isfinite(label) or not label.is_integer():
        raise DimensionMismatchError(
            f"Label column holds {label!r}; expected an integer class",
            {"label": repr(label)},
        )
    features = torch.tensor(list(row[:n_features]), dtype=torch.float64)
    return features, int(label)


class MinMaxScaler:
    """Per-feature min-max scaling into ``feature_range``.

    ``lo + (x - min) * (hi - lo) / (max - min)``; features whose min equals
    their max map to ``lo``.
    """

    def __init__(
        self,
        min_vals: Sequence[float],
        max_vals: Sequence[float],
        feature_range: Tuple[float, float] = (-1.0, 1.0),
    ) -> None:
        self.min_vals = torch.as_tensor(min_vals, dtype=torch.float64).reshape(-1)
        self.max_vals = torch.as_tensor(max_vals, dtype=torch.float64).reshape(-1)
        if self.min_vals.numel() != self.max_vals.numel():
            raise DimensionMismatchError(
                f"min_vals has {self.min_vals.numel()} entries but max_vals has {self.max_vals.numel()}"
            )
        self.feature_range = (float(feature_range[0]), float(feature_range[1]))

    @classmethod
    def default(cls) -> "MinMaxScaler":
        """Bounds of the 30-feature diagnosis dataset."""
        return cls(DEFAULT_MIN_VALS, DEFAULT_MAX_VALS)

    @classmethod
    def fit(cls, rows: Sequence[Sequence[float]], feature_range: Tuple[float, float] = (-1.0, 1.0)) -> "MinMaxScaler":
        data = torch.as_tensor(rows, dtype=torch.float64)
        return cls(data.min(dim=0).values, data.max(dim=0).values, feature_range)

    @property
    def n_features(self) -> int:
        return self.min_vals.numel()

    def transform(self, x: Union[torch.Tensor, Sequence[float]]) -> torch.Tensor:
        vec = torch.as_tensor(x, dtype=torch.float64).reshape(-1)
        if vec.numel() != self.n_features:
            raise DimensionMismatchError(
                f"Input has {vec.numel()} features but the scaler was built for {self.n_features}",
                {"length": vec.numel(), "n_features": self.n_features},
            )
        lo, hi = self.feature_range
        denom = self.max_vals - self.min_vals
        flat = denom == 0
        scaled = lo + (vec - self.min_vals) * (hi - lo) / torch.where(flat, torch.ones_like(denom), denom)
        return torch.where(flat, torch.full_like(vec, lo), scaled)

    __call__ = transform


def load_network(
    directory: PathLike,
    activations: Sequence[Union[str, Activation]] = DEFAULT_ACTIVATIONS,
) -> Network:
    """Load ``layer_{k}_weights.txt`` / ``layer_{k}_biases.txt`` for k = 0, 1, 2."""
    root = Path(directory)
    layers = []
    for k, act in enumerate(activations):
        weight = read_matrix(root / f"layer_{k}_weights.txt")
        bias = read_vector(root / f"layer_{k}_biases.txt")
        layers.append(Layer(weight, bias, act))
    return Network(layers)


def save_network(network: Network, directory: PathLike) -> None:
    """Write a network in the layout :func:`load_network` reads."""
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)
    for k, layer in enumerate(network):
        rows = (" ".join(repr(v) for v in row) for row in layer.weight.tolist())
        (root / f"layer_{k}_weights.txt").write_text("\n".join(rows) + "\n", encoding="utf-8")
        biases = (repr(v) for v in layer.bias.tolist())
        (root / f"layer_{k}_biases.txt").write_text("\n".join(biases) + "\n", encoding="utf-8")
    logger.info("Saved %d layers to %s", len(network), root)
