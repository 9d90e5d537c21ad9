"""
Pipeline Module

Orchestration of pairwise registrations over a pose chain, and the
command-line entry point that drives it from a YAML configuration.
"""

from .pairwise import (
    PairwiseRegistrationDriver,
    GroundTruthVerifier,
    PairResult,
    RunSummary,
)
from .runner import build_driver, run_from_config, main

__all__ = [
    "PairwiseRegistrationDriver",
    "GroundTruthVerifier",
    "PairResult",
    "RunSummary",
    "build_driver",
    "run_from_config",
    "main",
]
