"""
Registration Module

This module provides the pairwise global registration used by the harness:
the matcher interface with its two variants, and the coarse hypotheses and
ICP refinement they are built from.
"""

from .fine_registration import ICPRegistration
from .coarse_registration import CoarseRegistration
from .matchers import (
    RegistrationOptions,
    RegistrationResult,
    Matcher,
    PrincipalAxesMatcher,
    FeatureRansacMatcher,
    create_matcher,
)

__all__ = [
    "ICPRegistration",
    "CoarseRegistration",
    "RegistrationOptions",
    "RegistrationResult",
    "Matcher",
    "PrincipalAxesMatcher",
    "FeatureRansacMatcher",
    "create_matcher",
]
