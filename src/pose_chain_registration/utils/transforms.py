"""
Rigid Transformations

This module provides the rigid-body transform value used throughout the
harness, together with quaternion conversion, pose-error metrics and plain
text I/O for 4x4 matrices.

Transforms are stored as homogeneous 4x4 matrices acting on column vectors:

    p' = R @ p + t

Composition follows matrix multiplication, so ``a @ b`` applies ``b`` first.
A transform built with ``from_translation_quaternion`` equals
``translate(t) @ rotate(q)``: the rotation is applied first, then the
translation.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Tuple, Union, TYPE_CHECKING

import numpy as np

from .logging import setup_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = setup_logger(__name__)


def quaternion_to_rotation_matrix(w: float, x: float, y: float, z: float) -> np.ndarray:
    """Convert a scalar-first quaternion (w, x, y, z) to a 3x3 rotation matrix.

    The quaternion is normalized first.

    Raises:
        ValueError: If the quaternion has zero (or non-finite) norm
    """
    q = np.array([w, x, y, z], dtype=np.float64)
    norm = float(np.linalg.norm(q))
    if not np.isfinite(norm) or norm == 0.0:
        raise ValueError(f"Cannot build a rotation from quaternion {tuple(q)}")
    w, x, y, z = q / norm

    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ])


def rotation_angle_deg(rotation: np.ndarray) -> float:
    """Angle (degrees) of the rotation encoded by a 3x3 matrix."""
    cos_theta = (float(np.trace(rotation)) - 1.0) * 0.5
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = max(min(cos_theta, 1.0), -1.0)
    return float(np.degrees(np.arccos(cos_theta)))


@dataclass(frozen=True)
class RigidTransform:
    """Immutable rigid-body transform in 3D.

    Attributes:
        matrix: Read-only 4x4 homogeneous matrix

    Example:
        >>> T = RigidTransform.from_translation_quaternion((1, 0, 0), (0, 0, 0, 1))
        >>> T.apply(np.array([[0.0, 0.0, 0.0]]))  # -> [[1, 0, 0]]
    """

    matrix: "NDArray[np.float64]"

    def __post_init__(self) -> None:
        m = np.array(self.matrix, dtype=np.float64)
        if m.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4 matrix, got {m.shape}")
        m.setflags(write=False)
        object.__setattr__(self, "matrix", m)

    # ------------------------ Constructors ------------------------
    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(np.eye(4))

    @classmethod
    def from_translation_quaternion(
        cls,
        translation: Sequence[float],
        quaternion_xyzw: Sequence[float],
    ) -> "RigidTransform":
        """Build ``translate(t) @ rotate(q)``.

        Args:
            translation: (tx, ty, tz)
            quaternion_xyzw: (qx, qy, qz, qw), the order used in calibration
                files. The scalar part comes last here and is moved first
                before conversion.
        """
        qx, qy, qz, qw = (float(v) for v in quaternion_xyzw)
        T = np.eye(4)
        T[:3, :3] = quaternion_to_rotation_matrix(qw, qx, qy, qz)
        T[:3, 3] = np.asarray(translation, dtype=np.float64)
        return cls(T)

    @classmethod
    def from_rotation_translation(cls, rotation: np.ndarray, translation: Sequence[float]) -> "RigidTransform":
        T = np.eye(4)
        T[:3, :3] = np.asarray(rotation, dtype=np.float64)
        T[:3, 3] = np.asarray(translation, dtype=np.float64)
        return cls(T)

    # ------------------------ Accessors ------------------------
    @property
    def rotation(self) -> np.ndarray:
        return self.matrix[:3, :3].copy()

    @property
    def translation(self) -> np.ndarray:
        return self.matrix[:3, 3].copy()

    # ------------------------ Algebra ------------------------
    def inverse(self) -> "RigidTransform":
        R = self.matrix[:3, :3]
        t = self.matrix[:3, 3]
        return RigidTransform.from_rotation_translation(R.T, -R.T @ t)

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """Return ``self @ other`` (``other`` is applied first)."""
        return RigidTransform(self.matrix @ other.matrix)

    def __matmul__(self, other: "RigidTransform") -> "RigidTransform":
        if not isinstance(other, RigidTransform):
            return NotImplemented
        return self.compose(other)

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an Nx3 array of points."""
        points = np.asarray(points, dtype=np.float64)
        if points.size == 0:
            return points.reshape(0, 3)
        R = self.matrix[:3, :3]
        t = self.matrix[:3, 3]
        return points @ R.T + t

    def apply_to_vectors(self, vectors: np.ndarray) -> np.ndarray:
        """Rotate an Nx3 array of direction vectors (translation ignored)."""
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.size == 0:
            return vectors.reshape(0, 3)
        return vectors @ self.matrix[:3, :3].T

    def error_to(self, other: "RigidTransform") -> Tuple[float, float]:
        """Rotation (degrees) and translation difference between two transforms."""
        delta_R = self.matrix[:3, :3].T @ other.matrix[:3, :3]
        rot_err = rotation_angle_deg(delta_R)
        trans_err = float(np.linalg.norm(self.matrix[:3, 3] - other.matrix[:3, 3]))
        return rot_err, trans_err

    def is_approx(
        self,
        other: "RigidTransform",
        *,
        rotation_tolerance_deg: float = 1e-3,
        translation_tolerance: float = 1e-6,
    ) -> bool:
        rot_err, trans_err = self.error_to(other)
        return rot_err <= rotation_tolerance_deg and trans_err <= translation_tolerance

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RigidTransform):
            return NotImplemented
        return bool(np.array_equal(self.matrix, other.matrix))

    def __hash__(self) -> int:
        return hash(self.matrix.tobytes())


def relative_transform(reference: RigidTransform, moving: RigidTransform) -> RigidTransform:
    """Transform taking coordinates of ``moving`` into the frame of ``reference``.

    Both inputs are poses mapping local scan coordinates into a common frame.
    """
    return reference.inverse() @ moving


def save_transform_matrix(transform: Union[RigidTransform, np.ndarray], output_file: Union[str, Path]) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: RigidTransform or 4x4 matrix
        output_file: Path to output file
    """
    matrix = transform.matrix if isinstance(transform, RigidTransform) else np.asarray(transform)
    np.savetxt(output_file, matrix, fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: Union[str, Path]) -> RigidTransform:
    """Load a transformation matrix written by ``save_transform_matrix``.

    Raises:
        ValueError: If the file does not hold a 4x4 matrix
    """
    matrix = np.loadtxt(input_file)
    if matrix.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {matrix.shape}")
    logger.debug(f"Loaded transformation matrix from {input_file}")
    return RigidTransform(matrix)
