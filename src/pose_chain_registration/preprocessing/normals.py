"""
Normal sanitization.

Scans exported by some pipelines carry zero or near-zero normals for points
where no normal could be estimated. Those entries are dropped together with
their points, and every surviving normal is rescaled to unit length. Points
and normals are processed as one filter-map, so the two outputs are
index-aligned by construction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np

from ..utils.logging import setup_logger
from .loader import ScanData

logger = setup_logger(__name__)

MIN_NORMAL_NORM = 0.1


@dataclass(frozen=True)
class SanitizationResult:
    points: np.ndarray
    normals: np.ndarray
    removed: int = 0
    skipped: bool = False


def valid_normal_mask(normals: np.ndarray, min_norm: float = MIN_NORMAL_NORM) -> np.ndarray:
    """Boolean mask of normals whose Euclidean norm is at least ``min_norm``."""
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    return np.linalg.norm(normals, axis=1) >= min_norm


def _filter_and_normalize(normals: np.ndarray, keep: np.ndarray) -> np.ndarray:
    kept = np.asarray(normals, dtype=np.float64).reshape(-1, 3)[keep].copy()
    norms = np.linalg.norm(kept, axis=1)
    # Exactly-unit normals are left bit-identical
    rescale = norms != 1.0
    kept[rescale] /= norms[rescale, None]
    return kept


def sanitize_point_normals(
    points: np.ndarray,
    normals: np.ndarray,
    *,
    min_norm: float = MIN_NORMAL_NORM,
) -> SanitizationResult:
    """
    Remove degenerate normals and their points; renormalize the rest.

    Args:
        points: Nx3 points (any per-row array works)
        normals: Nx3 normals parallel to ``points``
        min_norm: Normals shorter than this are treated as invalid

    Returns:
        SanitizationResult with new, index-aligned arrays. When the inputs
        differ in length nothing is done: the inputs are returned as-is
        with ``skipped=True``.
    """
    if len(points) != len(normals):
        logger.debug(
            "Skipping normal sanitization: %d points but %d normals", len(points), len(normals)
        )
        return SanitizationResult(points=points, normals=normals, removed=0, skipped=True)

    keep = valid_normal_mask(normals, min_norm)
    removed = int(len(keep) - np.count_nonzero(keep))

    out_points = np.asarray(points)[keep]
    out_normals = _filter_and_normalize(normals, keep)

    if removed != 0:
        logger.info(f"Removed {removed} invalid points/normals")

    return SanitizationResult(points=out_points, normals=out_normals, removed=removed)


def sanitize_scan(scan: ScanData, *, min_norm: float = MIN_NORMAL_NORM) -> Tuple[ScanData, int]:
    """
    Sanitize a face-less scan, keeping per-point colors and texture coordinates aligned.

    Scans with faces are returned unchanged: dropping points would break the
    vertex indices the faces refer to.

    Returns:
        (sanitized scan, number of removed points)
    """
    if scan.has_faces:
        logger.debug(f"{scan.name}: has {len(scan.triangles)} faces; normals left untouched")
        return scan, 0

    result = sanitize_point_normals(scan.points, scan.normals, min_norm=min_norm)
    if result.skipped:
        return scan, 0

    keep = valid_normal_mask(scan.normals, min_norm)
    colors = scan.colors
    if scan.has_colors:
        colors = scan.colors[keep]
    tex_coords = scan.tex_coords
    if len(tex_coords) == len(scan.points):
        tex_coords = tex_coords[keep]

    return replace(
        scan, points=result.points, normals=result.normals, colors=colors, tex_coords=tex_coords
    ), result.removed
