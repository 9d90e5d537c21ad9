"""
Scan Preprocessing Module

This module contains the input side of the harness:
- Calibration file parsing into an ordered pose chain
- Scan loading
- Normal sanitization for face-less scans
"""

from .pose_chain import (
    PoseChain,
    PoseChainParser,
    PoseChainRecord,
    parse_pose_chain,
    parse_pose_chains,
)
from .loader import ScanData, ObjectReader, PlyObjectReader, read_object
from .normals import (
    SanitizationResult,
    sanitize_point_normals,
    sanitize_scan,
    valid_normal_mask,
)

__all__ = [
    "PoseChain",
    "PoseChainParser",
    "PoseChainRecord",
    "parse_pose_chain",
    "parse_pose_chains",
    "ScanData",
    "ObjectReader",
    "PlyObjectReader",
    "read_object",
    "SanitizationResult",
    "sanitize_point_normals",
    "sanitize_scan",
    "valid_normal_mask",
]
