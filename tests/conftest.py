import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from ckks_classifier.backends import is_pyfhel_available
from ckks_classifier.config import InferenceConfig
from ckks_classifier.context import EvaluationContext
from ckks_classifier.evaluator import LevelAwareEvaluator
from helpers import make_network, make_small_config
from mocks.mock_backend import RecordingBackend


@pytest.fixture
def small_config():
    return make_small_config()


@pytest.fixture
def sim_context(small_config):
    return EvaluationContext.create(small_config, backend="simulated")


@pytest.fixture
def evaluator(sim_context):
    return LevelAwareEvaluator(sim_context)


@pytest.fixture
def recorder(small_config):
    return RecordingBackend(config=small_config)


@pytest.fixture
def recording_evaluator(small_config, recorder):
    ctx = EvaluationContext.create(small_config, backend=recorder)
    recorder.clear()
    return LevelAwareEvaluator(ctx)


@pytest.fixture
def small_network():
    return make_network()


# =============================================================================
# Pyfhel (Microsoft SEAL) Backend Fixtures
# =============================================================================

# Skip markers
requires_pyfhel = pytest.mark.skipif(
    not is_pyfhel_available(),
    reason="Pyfhel backend not available"
)


@pytest.fixture
def pyfhel_context():
    """Real CKKS context with a chain just long enough for the network."""
    if not is_pyfhel_available():
        pytest.skip("Pyfhel backend not available")

    config = InferenceConfig(poly_mod_degree=32768, scale_bits=40, mult_depth=13)
    return EvaluationContext.create(config, backend="pyfhel")
