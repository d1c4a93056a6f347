"""
Dynamic setup.py that adds the Pyfhel (Microsoft SEAL) backend to the
install dependencies when it can be built on this platform.

Environment variable overrides:
    CKKS_CLASSIFIER_NO_BACKEND=1     Skip Pyfhel (simulated backend only)
    CKKS_CLASSIFIER_BACKEND=Pyfhel==3.4.2   Force a specific requirement

This file works alongside pyproject.toml (PEP 517).  setuptools reads
static metadata from pyproject.toml and merges the dynamic install_requires
produced here.
"""

import os
import platform
import sys

from setuptools import setup

BASE_REQUIREMENTS = [
    "torch>=2.0",
    "numpy>=1.21",
]

PYFHEL_REQUIREMENT = "Pyfhel>=3.4"


def _get_backend_dependency() -> list:
    """Return ``["Pyfhel..."]`` or ``[]``."""

    # Override: skip backend entirely
    if os.environ.get("CKKS_CLASSIFIER_NO_BACKEND", "").strip().lower() in ("1", "true", "yes"):
        return []

    # Override: force specific requirement
    forced = os.environ.get("CKKS_CLASSIFIER_BACKEND", "").strip()
    if forced:
        return [forced]

    # Pyfhel ships no wheels for these; building SEAL from source there
    # usually fails, so fall back to the simulated backend.
    machine = platform.machine().lower()
    if sys.platform == "win32" and machine in ("arm64", "aarch64"):
        print(
            "WARNING: no Pyfhel build for Windows on ARM; only the simulated "
            "backend will be available. Install manually: pip install Pyfhel",
            file=sys.stderr,
        )
        return []

    return [PYFHEL_REQUIREMENT]


setup(
    install_requires=BASE_REQUIREMENTS + _get_backend_dependency(),
)
