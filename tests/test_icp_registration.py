"""
Tests for trimmed ICP refinement.

These tests focus on correctness of the recovered transform on synthetic
data, with and without partial overlap.
"""

from pathlib import Path
import sys
import time

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pose_chain_registration.alignment.fine_registration import ICPRegistration


def _make_random_cloud(n: int = 3000, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    return rng.normal(size=(n, 3)) * np.array([10.0, 5.0, 2.0])


def _small_rigid_motion():
    th = np.deg2rad(2.0)
    Rz = np.array(
        [
            [np.cos(th), -np.sin(th), 0.0],
            [np.sin(th), np.cos(th), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    return Rz, np.array([0.2, -0.1, 0.1])


def test_icp_recovers_known_transform():
    src = _make_random_cloud(seed=1)
    R, t = _small_rigid_motion()
    tgt = src @ R.T + t

    icp = ICPRegistration(max_iterations=100)
    T, rmse = icp.refine(src, tgt)

    assert np.allclose(T[:3, :3], R, atol=1e-4)
    assert np.allclose(T[:3, 3], t, atol=1e-3)
    assert rmse < 1e-3


def test_trimmed_icp_handles_partial_overlap():
    """Source covers only part of the target plus unrelated outliers."""
    full = _make_random_cloud(n=4000, seed=2)
    R, t = _small_rigid_motion()
    tgt = full @ R.T + t

    rng = np.random.default_rng(7)
    overlap_part = full[full[:, 0] > 0.0]
    outliers = rng.uniform(-40, 40, size=(len(overlap_part) // 5, 3)) + np.array([80.0, 0.0, 0.0])
    src = np.vstack([overlap_part, outliers])

    icp = ICPRegistration(max_iterations=100, overlap=0.7)
    T, _ = icp.refine(src, tgt)

    assert np.allclose(T[:3, :3], R, atol=1e-3)
    assert np.allclose(T[:3, 3], t, atol=1e-2)


def test_initial_transform_is_used():
    src = _make_random_cloud(seed=3)
    R, t = _small_rigid_motion()
    tgt = src @ R.T + t
    T0 = np.eye(4)
    T0[:3, :3] = R
    T0[:3, 3] = t

    T, rmse = ICPRegistration(max_iterations=5).refine(src, tgt, initial_transform=T0)
    assert np.allclose(T, T0, atol=1e-8)
    assert rmse < 1e-8


def test_deadline_in_the_past_returns_initial_transform():
    src = _make_random_cloud(n=200, seed=4)
    tgt = src + 1.0
    T, rmse = ICPRegistration().refine(src, tgt, deadline=time.time() - 1.0)
    assert np.allclose(T, np.eye(4))
    assert rmse == float("inf")


def test_icp_handles_empty_inputs_gracefully():
    icp = ICPRegistration()
    T, err = icp.refine(np.empty((0, 3)), np.empty((0, 3)))
    assert T.shape == (4, 4)
    assert np.isfinite(T).all()
    assert err == float("inf")


def test_invalid_overlap_rejected():
    with pytest.raises(ValueError):
        ICPRegistration(overlap=0.0)


def test_estimate_transformation_is_proper_rotation():
    rng = np.random.default_rng(0)
    A = rng.normal(size=(50, 3))
    # Mirror image: best orthogonal fit would be a reflection
    B = A * np.array([1.0, 1.0, -1.0])
    T = ICPRegistration.estimate_transformation(A, B)
    assert np.isclose(np.linalg.det(T[:3, :3]), 1.0)
