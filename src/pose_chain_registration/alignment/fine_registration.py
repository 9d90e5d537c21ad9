"""
ICP Registration Implementation

This module implements a trimmed Iterative Closest Point (ICP) refinement
used by the principal-axes matcher. Consecutive scans of a chain only
partially overlap, so at each iteration only the closest fraction of the
correspondences (the estimated overlap) drives the update.
"""

from typing import Optional, Tuple
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class ICPRegistration:
    """
    Implementation of trimmed ICP for point cloud registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Keeps the closest ``overlap`` fraction of them
    3. Estimates optimal transformation (rotation + translation)
    4. Repeats until convergence, the iteration limit or the deadline
    """

    def __init__(
        self,
        max_iterations: int = 50,
        tolerance: float = 1e-8,
        max_correspondence_distance: float = np.inf,
        overlap: float = 1.0,
        convergence_translation_epsilon: float = 1e-6,
        convergence_rotation_epsilon_deg: float = 0.01,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences.
            overlap: Fraction (0, 1] of closest correspondences used per iteration.
            convergence_translation_epsilon: Minimum translation step below
                which the algorithm is considered converged.
            convergence_rotation_epsilon_deg: Minimum rotation step (degrees) below
                which the algorithm is considered converged.
        """
        if not 0.0 < overlap <= 1.0:
            raise ValueError(f"overlap must be in (0, 1], got {overlap}")
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.overlap = overlap
        self.convergence_translation_epsilon = convergence_translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = np.deg2rad(convergence_rotation_epsilon_deg)

    def refine(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[np.ndarray] = None,
        *,
        nbrs: Optional[NearestNeighbors] = None,
        deadline: Optional[float] = None,
    ) -> Tuple[np.ndarray, float]:
        """
        Refine the alignment of source onto target.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Initial transformation matrix (4 x 4) or None.
            nbrs: Optional pre-built NearestNeighbors instance fitted on ``target``.
            deadline: Optional ``time.time()`` value after which iteration stops.

        Returns:
            Tuple of (transformation_matrix, trimmed_rmse).
        """
        transform = np.eye(4) if initial_transform is None else initial_transform.copy()

        if len(source) == 0 or len(target) == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "returning initial transform and infinite error.",
                len(source),
                len(target),
            )
            return transform, float("inf")

        if nbrs is None:
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        current_source = self.apply_transformation(source, transform)
        previous_error = float("inf")
        current_error = float("inf")
        n_iterations = 0

        for iteration in range(self.max_iterations):
            if deadline is not None and time.time() > deadline:
                logger.debug("ICP stopped by time budget after %d iterations.", n_iterations)
                break

            correspondences, distances = self.find_correspondences(current_source, nbrs)
            valid_mask = self._trimmed_mask(distances)
            if np.count_nonzero(valid_mask) < 3:
                logger.debug("Not enough valid correspondences found. Stopping ICP.")
                break

            delta_transform = self.estimate_transformation(
                current_source[valid_mask], target[correspondences[valid_mask]]
            )
            transform = delta_transform @ transform
            # Apply the cumulative transformation to the ORIGINAL source cloud
            current_source = self.apply_transformation(source, transform)

            current_error = float(np.mean(distances[valid_mask] ** 2))
            trans_step = float(np.linalg.norm(delta_transform[:3, 3]))
            cos_theta = max(min((float(np.trace(delta_transform[:3, :3])) - 1.0) * 0.5, 1.0), -1.0)
            rot_step = float(np.arccos(cos_theta))
            n_iterations = iteration + 1

            if abs(previous_error - current_error) < self.tolerance:
                break
            if (
                trans_step < self.convergence_translation_epsilon
                and rot_step < self.convergence_rotation_epsilon_rad
            ):
                break
            previous_error = current_error

        logger.debug("ICP finished after %d iterations, trimmed MSE %.6e", n_iterations, current_error)
        return transform, float(np.sqrt(current_error))

    def find_correspondences(
        self,
        source: np.ndarray,
        nbrs: NearestNeighbors,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find closest point correspondences between source and the fitted target.

        Returns:
            Tuple of (correspondence_indices, distances).
        """
        distances, indices = nbrs.kneighbors(source)
        return indices.ravel(), distances.ravel()

    def _trimmed_mask(self, distances: np.ndarray) -> np.ndarray:
        mask = distances < self.max_correspondence_distance
        if self.overlap < 1.0 and np.any(mask):
            n_keep = max(3, int(np.ceil(self.overlap * len(distances))))
            if n_keep < np.count_nonzero(mask):
                cutoff = np.partition(distances[mask], n_keep - 1)[n_keep - 1]
                mask &= distances <= cutoff
        return mask

    @staticmethod
    def estimate_transformation(
        source_points: np.ndarray,
        target_points: np.ndarray,
    ) -> np.ndarray:
        """
        Estimate optimal rigid transformation between corresponding point sets.

        Args:
            source_points: Source point cloud points (N x 3).
            target_points: Corresponding target point cloud points (N x 3).

        Returns:
            Transformation matrix (4 x 4).
        """
        source_centroid = np.mean(source_points, axis=0)
        target_centroid = np.mean(target_points, axis=0)

        H = (source_points - source_centroid).T @ (target_points - target_centroid)
        U, _, Vt = np.linalg.svd(H)
        R = Vt.T @ U.T

        # Ensure proper rotation (det(R) should be 1)
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_centroid - R @ source_centroid

        transform = np.eye(4)
        transform[:3, :3] = R
        transform[:3, 3] = t
        return transform

    @staticmethod
    def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
        if points.size == 0:
            return points
        return points @ transform[:3, :3].T + transform[:3, 3]
