"""
Pose Chain Registration Package

A regression harness for pairwise global point-cloud registration. Scans
and their calibrated poses are read from Stanford-style calibration files;
every scan is registered onto its predecessor and the recovered transform
is checked against the relative pose stated by the calibration.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .alignment import *
from .pipeline import *
from .utils import *

__all__ = [
    "preprocessing",
    "alignment",
    "pipeline",
    "utils",
]
