"""
Utility Functions Module

This module provides common utility functions used across the harness.
- Logging
- Configuration loading
- Rigid transforms, quaternion conversion and matrix I/O
"""

from .logging import setup_logger
from .transforms import (
    RigidTransform,
    quaternion_to_rotation_matrix,
    rotation_angle_deg,
    relative_transform,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "setup_logger",
    "RigidTransform",
    "quaternion_to_rotation_matrix",
    "rotation_angle_deg",
    "relative_transform",
    "save_transform_matrix",
    "load_transform_matrix",
]
