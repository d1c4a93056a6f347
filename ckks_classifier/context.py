"""
Evaluation context - the long-lived bundle of scheme state.

The context is built once by the driver (parameters, backend, keys) and is
then shared read-only by every inference. The evaluator holds a reference to
it but never owns or mutates it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from .backends import HEBackend, create_backend
from .config import InferenceConfig, describe, rotation_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """Scheme parameters, backend and evaluation keys.

    Attributes:
        config: The encryption parameters the backend was built from.
        backend: Primitive CKKS operations.
        relin_keys: Relinearization key handle.
        galois_keys: Rotation key handle.
        rotations: Rotation steps the Galois keys were generated for.

    Example:
        >>> ctx = EvaluationContext.create(InferenceConfig(), backend="pyfhel")
        >>> evaluator = LevelAwareEvaluator(ctx)
    """
    config: InferenceConfig
    backend: HEBackend
    relin_keys: Any
    galois_keys: Any
    rotations: Tuple[int, ...]

    @classmethod
    def create(
        cls,
        config: Optional[InferenceConfig] = None,
        backend: Union[str, HEBackend] = "auto",
        **backend_kwargs: Any,
    ) -> "EvaluationContext":
        """Validate parameters, build the backend and generate keys.

        Args:
            config: Encryption parameters (defaults reproduce the reference
                deployment: N=32768, 18 levels of 40 bits).
            backend: Backend name or an already constructed backend.
            **backend_kwargs: Forwarded to :func:`create_backend`.

        Raises:
            ParameterInvalidError: If the parameters are invalid.
        """
        config = (config or InferenceConfig()).validate()
        if isinstance(backend, str):
            backend = create_backend(backend, config, **backend_kwargs)
        rotations = tuple(rotation_steps(backend.slot_count))
        relin_keys, galois_keys = backend.generate_keys(rotations)
        logger.info("Evaluation context ready (%s): %s", backend.name, describe(config))
        return cls(
            config=config,
            backend=backend,
            relin_keys=relin_keys,
            galois_keys=galois_keys,
            rotations=rotations,
        )

    @property
    def slot_count(self) -> int:
        return self.backend.slot_count

    @property
    def max_level(self) -> int:
        return self.backend.max_level

    @property
    def scale(self) -> float:
        return self.backend.scale
