"""
Pairwise registration over a pose chain.

The driver walks the chain in acquisition order and registers every scan
onto its predecessor: for i = 1..N-1 the reference is scan i-1 and the moving
scan is scan i. Scans are loaded per pair and dropped afterwards.

Normals are sanitized only for scans without faces. Face indices refer to
positions in the point array, so removing points from a meshed scan would
corrupt its topology; degenerate normals in meshed scans are left alone.

With a ``GroundTruthVerifier`` each result is compared against the relative
pose stated by the calibration file, ``inv(T[i-1]) @ T[i]``. A mismatch is
recorded on the pair and never stops the run; missing or unreadable files do.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import time

from ..alignment.matchers import Matcher
from ..preprocessing.loader import ObjectReader, PlyObjectReader, ScanData
from ..preprocessing.normals import MIN_NORMAL_NORM, sanitize_scan
from ..preprocessing.pose_chain import PoseChain
from ..utils.logging import setup_logger
from ..utils.transforms import RigidTransform, relative_transform, save_transform_matrix

logger = setup_logger(__name__)


@dataclass
class PairResult:
    """Outcome of one registration call."""
    index: int
    reference_file: Path
    moving_file: Path
    score: float
    transform: RigidTransform
    expected: Optional[RigidTransform] = None
    rotation_error_deg: Optional[float] = None
    translation_error: Optional[float] = None
    passed: Optional[bool] = None
    removed_reference: int = 0
    removed_moving: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "reference_file": str(self.reference_file),
            "moving_file": str(self.moving_file),
            "score": self.score,
            "transform": self.transform.matrix.tolist(),
            "expected": self.expected.matrix.tolist() if self.expected is not None else None,
            "rotation_error_deg": self.rotation_error_deg,
            "translation_error": self.translation_error,
            "passed": self.passed,
            "removed_reference": self.removed_reference,
            "removed_moving": self.removed_moving,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass
class RunSummary:
    pairs: List[PairResult] = field(default_factory=list)

    @property
    def n_pairs(self) -> int:
        return len(self.pairs)

    @property
    def n_failed(self) -> int:
        return sum(1 for p in self.pairs if p.passed is False)

    @property
    def ok(self) -> bool:
        return self.n_failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_pairs": self.n_pairs,
            "n_failed": self.n_failed,
            "ok": self.ok,
            "pairs": [p.to_dict() for p in self.pairs],
        }


@dataclass(frozen=True)
class GroundTruthVerifier:
    """Checks a registration against the calibrated relative pose."""
    rotation_tolerance_deg: float = 5.0
    translation_tolerance: float = 0.01

    def expected_transform(self, reference_pose: RigidTransform, moving_pose: RigidTransform) -> RigidTransform:
        return relative_transform(reference_pose, moving_pose)

    def check(self, result: PairResult, reference_pose: RigidTransform, moving_pose: RigidTransform) -> PairResult:
        expected = self.expected_transform(reference_pose, moving_pose)
        rot_err, trans_err = result.transform.error_to(expected)
        result.expected = expected
        result.rotation_error_deg = rot_err
        result.translation_error = trans_err
        result.passed = rot_err <= self.rotation_tolerance_deg and trans_err <= self.translation_tolerance
        return result


class PairwiseRegistrationDriver:
    """
    Runs one registration per consecutive pair of a pose chain.

    Args:
        matcher: Registration strategy, configured once for the whole run
        reader: Scan reader (default: PlyObjectReader)
        sanitize: Sanitize normals of face-less scans before matching
        min_normal_norm: Normals shorter than this are removed by sanitization
        verifier: Optional ground-truth check applied to every pair
        output_dir: If set, each pair's transform is written there as text
    """

    def __init__(
        self,
        matcher: Matcher,
        reader: Optional[ObjectReader] = None,
        *,
        sanitize: bool = True,
        min_normal_norm: float = MIN_NORMAL_NORM,
        verifier: Optional[GroundTruthVerifier] = None,
        output_dir: Optional[Union[str, Path]] = None,
    ):
        self.matcher = matcher
        self.reader = reader or PlyObjectReader()
        self.sanitize = sanitize
        self.min_normal_norm = min_normal_norm
        self.verifier = verifier
        self.output_dir = Path(output_dir) if output_dir else None

    def run(self, chain: PoseChain) -> RunSummary:
        """
        Register every scan of ``chain`` onto its predecessor.

        Raises:
            ValueError: If the chain's transform and file lists differ in length
            FileNotFoundError, ValueError, OSError: If a scan cannot be read
        """
        transforms = chain.transforms
        files = chain.files
        if len(transforms) != len(files):
            raise ValueError(
                f"Transform/file count mismatch: {len(transforms)} transforms for {len(files)} files"
            )

        summary = RunSummary()
        n_tests = len(files) - 1
        if n_tests < 1:
            logger.warning(f"Pose chain has {len(files)} scan(s); nothing to register.")
            return summary

        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Registering {n_tests} consecutive scan pairs with {self.matcher.name} matcher")
        for i in range(1, n_tests + 1):
            result = self.run_pair(i, files[i - 1], files[i])
            if self.verifier is not None:
                self.verifier.check(result, transforms[i - 1], transforms[i])
            self._report(result)
            if self.output_dir is not None:
                save_transform_matrix(
                    result.transform,
                    self.output_dir / f"pair_{i:03d}_{files[i].stem}_to_{files[i - 1].stem}.txt",
                )
            summary.pairs.append(result)

        if self.verifier is not None:
            logger.info(f"Verification: {summary.n_pairs - summary.n_failed}/{summary.n_pairs} pairs within tolerance")
        return summary

    def run_pair(self, index: int, reference_file: Path, moving_file: Path) -> PairResult:
        start = time.time()
        reference, removed_ref = self._load(reference_file)
        moving, removed_mov = self._load(moving_file)

        registration = self.matcher.register(reference, moving)

        return PairResult(
            index=index,
            reference_file=reference_file,
            moving_file=moving_file,
            score=registration.score,
            transform=registration.transform,
            removed_reference=removed_ref,
            removed_moving=removed_mov,
            elapsed_seconds=time.time() - start,
        )

    def _load(self, file_path: Path) -> tuple[ScanData, int]:
        scan = self.reader.read(file_path)
        # clean only scans without faces to keep face-to-point indexing valid
        if not self.sanitize or scan.has_faces:
            return scan, 0
        return sanitize_scan(scan, min_norm=self.min_normal_norm)

    def _report(self, result: PairResult) -> None:
        msg = f"Pair {result.index}: {result.moving_file.name} -> {result.reference_file.name}, score {result.score:.4f}"
        if result.passed is None:
            logger.info(msg)
        elif result.passed:
            logger.info(
                f"{msg}, rotation error {result.rotation_error_deg:.3f} deg, "
                f"translation error {result.translation_error:.5f} [OK]"
            )
        else:
            logger.warning(
                f"{msg}, rotation error {result.rotation_error_deg:.3f} deg, "
                f"translation error {result.translation_error:.5f} [MISMATCH]"
            )
        logger.debug("Transformation from %s to %s:\n%s", result.moving_file.name, result.reference_file.name, result.transform.matrix)
