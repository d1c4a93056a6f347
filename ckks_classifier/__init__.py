"""
ckks_classifier: encrypted binary classification over leveled CKKS.

A fixed three-layer network (Linear -> ReLU -> Linear -> ReLU -> Linear ->
Sigmoid, with polynomial activations) is evaluated on an encrypted feature
vector. The server holds the plaintext weights and evaluation keys only.

Quick Start:
    >>> from ckks_classifier import (
    ...     EvaluationContext, InferenceConfig, InferenceOrchestrator,
    ...     LevelAwareEvaluator, MinMaxScaler, load_network,
    ... )
    >>> network = load_network("inputs")
    >>> ctx = EvaluationContext.create(InferenceConfig(), backend="auto")
    >>> model = InferenceOrchestrator(LevelAwareEvaluator(ctx), network)
    >>> model.predict(MinMaxScaler.default()(features))
    Prediction(score=0.83..., diagnosis=True)

Backends:
    - pyfhel: Microsoft SEAL through Pyfhel (``pip install Pyfhel``)
    - simulated: torch-based emulation of SEAL's level/scale bookkeeping,
      used for tests and when Pyfhel is not installed
"""

__version__ = "0.1.0"

from .backends import HEBackend, create_backend, is_pyfhel_available
from .config import InferenceConfig, rotation_steps
from .context import EvaluationContext
from .data import (
    MinMaxScaler,
    load_network,
    read_client_data,
    read_matrix,
    read_random_client_data,
    read_vector,
    sample_rows,
    save_network,
    split_features_label,
)
from .errors import (
    CKKSClassifierError,
    DimensionMismatchError,
    FileLoadError,
    InvalidIndexError,
    LevelExhaustedError,
    ParameterInvalidError,
    ScaleMismatchError,
)
from .evaluator import Activation, LevelAwareEvaluator, poly_relu, poly_sigmoid
from .inference import InferenceOrchestrator, Prediction, predict_plain
from .network import Layer, Network

__all__ = [
    # Version
    "__version__",
    # Core
    "InferenceConfig",
    "EvaluationContext",
    "LevelAwareEvaluator",
    "InferenceOrchestrator",
    "Prediction",
    "predict_plain",
    "Network",
    "Layer",
    "Activation",
    "poly_relu",
    "poly_sigmoid",
    "rotation_steps",
    # Backends
    "HEBackend",
    "create_backend",
    "is_pyfhel_available",
    # Data
    "MinMaxScaler",
    "load_network",
    "read_client_data",
    "read_matrix",
    "read_random_client_data",
    "read_vector",
    "sample_rows",
    "save_network",
    "split_features_label",
    # Errors
    "CKKSClassifierError",
    "DimensionMismatchError",
    "FileLoadError",
    "InvalidIndexError",
    "LevelExhaustedError",
    "ParameterInvalidError",
    "ScaleMismatchError",
]
