"""
Coarse Registration Methods

Provides initial pose hypotheses for aligning a moving scan onto a reference
scan. Scans in a pose chain may start in arbitrary relative poses, so instead
of committing to a single guess the principal-axes matcher refines every
hypothesis returned by ``candidate_transforms`` and keeps the best one.

Hypotheses:
- identity: scans already roughly aligned
- centroid: translation-only alignment by centroids
- pca: rigid alignment by principal axes, one hypothesis per proper sign
  assignment of the axes (the sign of an eigenvector is arbitrary)

All methods return 4x4 transforms mapping source (moving) points onto the
target (reference).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Sign assignments of the first two principal axes; the third follows from det(R) = +1
_AXIS_SIGNS = ((1.0, 1.0), (1.0, -1.0), (-1.0, 1.0), (-1.0, -1.0))


@dataclass
class CoarseRegistration:
    include_identity: bool = True
    include_centroid: bool = True
    include_pca: bool = True

    def candidate_transforms(self, source: np.ndarray, target: np.ndarray) -> List[np.ndarray]:
        """
        Compute coarse hypotheses aligning source -> target.

        Args:
            source: Nx3 array
            target: Mx3 array

        Returns:
            List of 4x4 transform matrices (never empty)
        """
        if source.size == 0 or target.size == 0:
            logger.warning("CoarseRegistration: empty inputs; returning identity transform.")
            return [np.eye(4)]

        candidates: List[np.ndarray] = []
        if self.include_identity:
            candidates.append(np.eye(4))
        if self.include_centroid:
            candidates.append(self.centroid_transform(source, target))
        if self.include_pca and len(source) >= 3 and len(target) >= 3:
            candidates.extend(self.pca_transforms(source, target))

        if not candidates:
            candidates.append(np.eye(4))
        logger.debug("CoarseRegistration: %d hypotheses", len(candidates))
        return candidates

    # ------------------------ Methods ------------------------
    def centroid_transform(self, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
        c_src = np.mean(src, axis=0)
        c_dst = np.mean(dst, axis=0)
        T = np.eye(4)
        T[:3, 3] = c_dst - c_src
        return T

    def pca_transforms(self, src: np.ndarray, dst: np.ndarray) -> List[np.ndarray]:
        c_src = np.mean(src, axis=0)
        c_dst = np.mean(dst, axis=0)
        VA = self._principal_axes(src - c_src)
        VB = self._principal_axes(dst - c_dst)

        transforms = []
        for s0, s1 in _AXIS_SIGNS:
            VB_signed = VB.copy()
            VB_signed[:, 0] *= s0
            VB_signed[:, 1] *= s1
            # Construct rotation mapping src axes to dst axes
            R = VB_signed @ VA.T
            # Fix reflection if needed
            if np.linalg.det(R) < 0:
                VB_signed[:, 2] *= -1
                R = VB_signed @ VA.T

            T = np.eye(4)
            T[:3, :3] = R
            T[:3, 3] = c_dst - (R @ c_src)
            transforms.append(T)
        return transforms

    # ------------------------ Helpers ------------------------
    @staticmethod
    def _principal_axes(centered: np.ndarray) -> np.ndarray:
        # Add small epsilon regularization to avoid singularities on degenerate clouds
        C = (centered.T @ centered) / max(1, len(centered)) + 1e-12 * np.eye(3)
        w, V = np.linalg.eigh(C)
        # Sort by descending eigenvalues
        return V[:, np.argsort(w)[::-1]]

    @staticmethod
    def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
        if points.size == 0:
            return points
        return points @ transform[:3, :3].T + transform[:3, 3]
