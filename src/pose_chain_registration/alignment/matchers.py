"""
Global Registration Matchers

A matcher estimates the rigid transform that brings a moving scan onto a
reference scan, without any initial guess, and reports a quality score: the
fraction of sampled moving points that land within ``delta`` of the
reference after transformation (largest common pointset).

Two interchangeable variants are provided and picked once, at construction,
by ``create_matcher``:

- PrincipalAxesMatcher: principal-axes hypotheses refined by trimmed ICP
  (numpy / scikit-learn only)
- FeatureRansacMatcher: FPFH features matched with RANSAC, refined by ICP
  (requires Open3D)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple
import math
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..preprocessing.loader import ScanData
from ..utils.logging import setup_logger
from ..utils.transforms import RigidTransform
from .coarse_registration import CoarseRegistration
from .fine_registration import ICPRegistration

logger = setup_logger(__name__)


@dataclass(frozen=True)
class RegistrationOptions:
    """
    Fixed matcher configuration for a whole run.

    Attributes:
        overlap_estimation: Estimated overlap fraction between the two scans
        sample_size: Number of points sampled from the moving scan
        max_normal_difference_deg: Max angle between matched normals
        max_color_distance: Max RGB distance between matched points
        max_time_seconds: Soft time budget per registration call
        delta: Distance tolerance for a point to count as matched
        terminate_threshold: Stop searching once the score reaches this value
        seed: Seed for point sampling (None = nondeterministic)
    """
    overlap_estimation: float = 0.2
    sample_size: int = 500
    max_normal_difference_deg: float = 90.0
    max_color_distance: float = 1e9
    max_time_seconds: float = 1e9
    delta: float = 0.01
    terminate_threshold: float = 1.0
    seed: Optional[int] = 0

    def __post_init__(self) -> None:
        if not 0.0 < self.overlap_estimation <= 1.0:
            raise ValueError(f"overlap_estimation must be in (0, 1], got {self.overlap_estimation}")
        if self.sample_size <= 0:
            raise ValueError(f"sample_size must be positive, got {self.sample_size}")
        if self.delta <= 0:
            raise ValueError(f"delta must be positive, got {self.delta}")
        if self.max_time_seconds <= 0:
            raise ValueError(f"max_time_seconds must be positive, got {self.max_time_seconds}")


@dataclass(frozen=True)
class RegistrationResult:
    """Score in [0, 1] and the transform mapping the moving scan onto the reference."""
    score: float
    transform: RigidTransform


class Matcher(ABC):
    """Strategy interface for pairwise global registration."""

    name = "matcher"

    def __init__(self, options: RegistrationOptions):
        self.options = options

    @abstractmethod
    def register(self, reference: ScanData, moving: ScanData) -> RegistrationResult:
        """
        Estimate the transform aligning ``moving`` onto ``reference``.

        Args:
            reference: Scan whose frame the result is expressed in
            moving: Scan to be transformed

        Returns:
            RegistrationResult
        """

    # ------------------------ Shared helpers ------------------------
    def _rng(self) -> np.random.Generator:
        return np.random.default_rng(self.options.seed)

    def sample_indices(self, n_points: int, rng: np.random.Generator) -> np.ndarray:
        """Indices of at most ``sample_size`` points, drawn without replacement."""
        n_sample = min(self.options.sample_size, n_points)
        if n_points > n_sample:
            return np.sort(rng.choice(n_points, n_sample, replace=False))
        return np.arange(n_points)

    def compute_score(
        self,
        reference: ScanData,
        moving: ScanData,
        transform: np.ndarray,
        moving_indices: np.ndarray,
        nbrs: NearestNeighbors,
    ) -> float:
        """
        Fraction of sampled moving points matched within ``delta`` of the reference.

        A match also has to satisfy the normal-angle and color constraints when
        both scans carry the corresponding attribute.
        """
        if len(moving_indices) == 0 or len(reference) == 0:
            return 0.0

        R = transform[:3, :3]
        pts = moving.points[moving_indices] @ R.T + transform[:3, 3]
        distances, indices = nbrs.kneighbors(pts)
        distances = distances.ravel()
        indices = indices.ravel()
        matched = distances <= self.options.delta

        if reference.has_normals and moving.has_normals and self.options.max_normal_difference_deg < 180.0:
            n_mov = moving.normals[moving_indices] @ R.T
            n_ref = reference.normals[indices]
            denom = np.linalg.norm(n_mov, axis=1) * np.linalg.norm(n_ref, axis=1)
            denom[denom == 0] = 1.0
            cos_angle = np.einsum("ij,ij->i", n_mov, n_ref) / denom
            min_cos = math.cos(math.radians(self.options.max_normal_difference_deg))
            matched &= cos_angle >= min_cos - 1e-12

        if reference.has_colors and moving.has_colors:
            color_diff = np.linalg.norm(moving.colors[moving_indices] - reference.colors[indices], axis=1)
            matched &= color_diff <= self.options.max_color_distance

        return float(np.count_nonzero(matched)) / float(len(moving_indices))

    def _empty_result(self, reference: ScanData, moving: ScanData) -> Optional[RegistrationResult]:
        if len(reference) == 0 or len(moving) == 0:
            logger.warning(
                "%s called with empty scan (reference=%d, moving=%d); returning identity.",
                self.name,
                len(reference),
                len(moving),
            )
            return RegistrationResult(score=0.0, transform=RigidTransform.identity())
        return None


class PrincipalAxesMatcher(Matcher):
    """
    Global registration by exhaustive refinement of coarse hypotheses.

    Every hypothesis from ``CoarseRegistration`` (identity, centroid shift and
    the four proper principal-axes alignments) is refined with trimmed ICP on
    the sampled moving points; the refinement with the best score wins.
    """

    name = "principal-axes"

    def __init__(
        self,
        options: RegistrationOptions,
        *,
        coarse: Optional[CoarseRegistration] = None,
        icp_max_iterations: int = 50,
    ):
        super().__init__(options)
        self.coarse = coarse or CoarseRegistration()
        self.icp = ICPRegistration(
            max_iterations=icp_max_iterations,
            overlap=options.overlap_estimation,
        )

    def register(self, reference: ScanData, moving: ScanData) -> RegistrationResult:
        empty = self._empty_result(reference, moving)
        if empty is not None:
            return empty

        start = time.time()
        deadline = start + self.options.max_time_seconds
        rng = self._rng()

        moving_idx = self.sample_indices(len(moving), rng)
        source = moving.points[moving_idx]
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(reference.points)

        best_score = -1.0
        best_T = np.eye(4)
        hypotheses = self.coarse.candidate_transforms(source, reference.points)
        for k, T0 in enumerate(hypotheses):
            if k > 0 and time.time() > deadline:
                logger.info("%s: time budget exhausted after %d/%d hypotheses", self.name, k, len(hypotheses))
                break

            T, rmse = self.icp.refine(source, reference.points, T0, nbrs=nbrs, deadline=deadline)
            score = self.compute_score(reference, moving, T, moving_idx, nbrs)
            logger.debug("Hypothesis %d: score %.4f, trimmed RMSE %.6f", k, score, rmse)

            if score > best_score:
                best_score, best_T = score, T
            if best_score >= self.options.terminate_threshold:
                break

        logger.info(
            "%s: score %.4f in %.3f s (%d sampled points)",
            self.name,
            best_score,
            time.time() - start,
            len(moving_idx),
        )
        return RegistrationResult(score=best_score, transform=RigidTransform(best_T))


def _ransac_trials(inlier_ratio: float, sample_points: int = 3, confidence: float = 0.999) -> int:
    """Number of RANSAC draws needed to hit an all-inlier sample with ``confidence``."""
    p_good = inlier_ratio ** sample_points
    if p_good >= 1.0:
        return 1
    return int(math.ceil(math.log(1.0 - confidence) / math.log(1.0 - p_good)))


class FeatureRansacMatcher(Matcher):
    """
    Global registration with FPFH feature correspondences and RANSAC (Open3D).

    The RANSAC iteration budget grows as the estimated overlap shrinks; the
    result is refined with point-to-point ICP when time remains.
    """

    name = "feature-ransac"

    def __init__(self, options: RegistrationOptions, *, voxel_size: Optional[float] = None):
        super().__init__(options)
        self.voxel_size = voxel_size if voxel_size else 2.0 * options.delta

    def register(self, reference: ScanData, moving: ScanData) -> RegistrationResult:
        try:
            import open3d as o3d  # type: ignore
        except Exception as e:
            raise ImportError("Open3D is required for feature-based registration") from e

        empty = self._empty_result(reference, moving)
        if empty is not None:
            return empty

        start = time.time()
        deadline = start + self.options.max_time_seconds
        voxel = self.voxel_size

        src_pcd, src_fpfh = self._prepare(o3d, moving, voxel)
        dst_pcd, dst_fpfh = self._prepare(o3d, reference, voxel)

        max_iteration = int(min(1_000_000, max(10_000, 100 * _ransac_trials(self.options.overlap_estimation))))
        distance_threshold = voxel * 1.5
        result = o3d.pipelines.registration.registration_ransac_based_on_feature_matching(
            src_pcd,
            dst_pcd,
            src_fpfh,
            dst_fpfh,
            mutual_filter=True,
            max_correspondence_distance=distance_threshold,
            estimation_method=o3d.pipelines.registration.TransformationEstimationPointToPoint(False),
            ransac_n=3,
            checkers=[
                o3d.pipelines.registration.CorrespondenceCheckerBasedOnEdgeLength(0.9),
                o3d.pipelines.registration.CorrespondenceCheckerBasedOnDistance(distance_threshold),
            ],
            criteria=o3d.pipelines.registration.RANSACConvergenceCriteria(max_iteration, 0.999),
        )
        T = np.asarray(result.transformation, dtype=float)

        if time.time() < deadline:
            refined = o3d.pipelines.registration.registration_icp(
                src_pcd,
                dst_pcd,
                voxel,
                T,
                o3d.pipelines.registration.TransformationEstimationPointToPoint(),
            )
            T = np.asarray(refined.transformation, dtype=float)

        rng = self._rng()
        moving_idx = self.sample_indices(len(moving), rng)
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(reference.points)
        score = self.compute_score(reference, moving, T, moving_idx, nbrs)

        logger.info("%s: score %.4f in %.3f s", self.name, score, time.time() - start)
        return RegistrationResult(score=score, transform=RigidTransform(T))

    @staticmethod
    def _prepare(o3d, scan: ScanData, voxel: float) -> Tuple["o3d.geometry.PointCloud", "o3d.pipelines.registration.Feature"]:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(scan.points.astype(np.float64))
        if scan.has_normals:
            pcd.normals = o3d.utility.Vector3dVector(scan.normals.astype(np.float64))
        if voxel and voxel > 0:
            pcd = pcd.voxel_down_sample(voxel)
        if not pcd.has_normals():
            pcd.estimate_normals(o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 2.0, max_nn=30))
        fpfh = o3d.pipelines.registration.compute_fpfh_feature(
            pcd, o3d.geometry.KDTreeSearchParamHybrid(radius=voxel * 5.0, max_nn=100)
        )
        return pcd, fpfh


def create_matcher(
    options: RegistrationOptions,
    *,
    use_feature_matching: bool = False,
    icp_max_iterations: int = 50,
    feature_voxel_size: Optional[float] = None,
) -> Matcher:
    """Build the matcher variant selected by ``use_feature_matching``."""
    if use_feature_matching:
        logger.info("Use feature-based RANSAC matcher")
        return FeatureRansacMatcher(options, voxel_size=feature_voxel_size)
    logger.info("Use principal-axes matcher")
    return PrincipalAxesMatcher(options, icp_max_iterations=icp_max_iterations)
