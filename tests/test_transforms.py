"""Tests for rigid transform construction, composition and matrix I/O."""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pose_chain_registration.utils.transforms import (
    RigidTransform,
    quaternion_to_rotation_matrix,
    relative_transform,
    rotation_angle_deg,
    save_transform_matrix,
    load_transform_matrix,
)


def _hamilton(a, b):
    w1, x1, y1, z1 = a
    w2, x2, y2, z2 = b
    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ])


def _rotate_with_quaternion(q_wxyz, v):
    """Rotate v by q using q * v * conj(q)."""
    q = np.asarray(q_wxyz, dtype=float)
    q = q / np.linalg.norm(q)
    q_conj = q * np.array([1.0, -1.0, -1.0, -1.0])
    return _hamilton(_hamilton(q, np.r_[0.0, v]), q_conj)[1:]


def test_quaternion_scalar_part_is_last_in_xyzw_input():
    """(qx, qy, qz, qw) input must be interpreted with qw as the scalar part."""
    T = RigidTransform.from_translation_quaternion((0, 0, 0), (0.0, 0.0, 0.7071, 0.7071))
    rotated = T.apply(np.array([[1.0, 0.0, 0.0]]))[0]
    assert np.allclose(rotated, [0.0, 1.0, 0.0], atol=1e-4)


def test_rotation_matches_manual_quaternion_rotation():
    rng = np.random.default_rng(3)
    for _ in range(10):
        q_xyzw = rng.normal(size=4)
        T = RigidTransform.from_translation_quaternion((0, 0, 0), q_xyzw)
        v = rng.normal(size=3)
        expected = _rotate_with_quaternion((q_xyzw[3], q_xyzw[0], q_xyzw[1], q_xyzw[2]), v)
        assert np.allclose(T.apply(v[None, :])[0], expected, atol=1e-9)


def test_translate_then_rotate_composition():
    """translate(t) @ rotate(q): rotation applied first, then translation."""
    T = RigidTransform.from_translation_quaternion((1.0, 2.0, 3.0), (0.0, 0.0, 0.7071, 0.7071))
    out = T.apply(np.array([[1.0, 0.0, 0.0]]))[0]
    assert np.allclose(out, [1.0, 3.0, 3.0], atol=1e-4)
    assert np.allclose(T.translation, [1.0, 2.0, 3.0])


def test_zero_quaternion_rejected():
    with pytest.raises(ValueError):
        quaternion_to_rotation_matrix(0.0, 0.0, 0.0, 0.0)


def test_matrix_is_read_only():
    T = RigidTransform.identity()
    with pytest.raises(ValueError):
        T.matrix[0, 3] = 5.0


def test_non_4x4_matrix_rejected():
    with pytest.raises(ValueError):
        RigidTransform(np.eye(3))


def test_inverse_and_relative_transform():
    a = RigidTransform.from_translation_quaternion((0.5, -1.0, 2.0), (0.1, 0.2, 0.3, 0.9))
    b = RigidTransform.from_translation_quaternion((-0.3, 0.4, 0.0), (0.0, 0.5, 0.0, 0.8))

    assert (a @ a.inverse()).is_approx(RigidTransform.identity(), translation_tolerance=1e-9)

    rel = relative_transform(a, b)
    # a @ rel must give back b
    assert (a @ rel).is_approx(b, translation_tolerance=1e-9)


def test_error_metrics():
    a = RigidTransform.identity()
    th = np.deg2rad(10.0)
    R = np.array([[np.cos(th), -np.sin(th), 0], [np.sin(th), np.cos(th), 0], [0, 0, 1]])
    b = RigidTransform.from_rotation_translation(R, (0.0, 0.3, 0.4))

    rot_err, trans_err = a.error_to(b)
    assert rot_err == pytest.approx(10.0, abs=1e-6)
    assert trans_err == pytest.approx(0.5)
    assert rotation_angle_deg(np.eye(3)) == pytest.approx(0.0)


def test_save_and_load_transform_matrix(tmp_path):
    T = RigidTransform.from_translation_quaternion((1.0, 2.0, 3.0), (0.0, 0.3827, 0.0, 0.9239))
    path = tmp_path / "T.txt"
    save_transform_matrix(T, path)
    loaded = load_transform_matrix(path)
    assert np.allclose(loaded.matrix, T.matrix)


def test_load_rejects_wrong_shape(tmp_path):
    path = tmp_path / "bad.txt"
    np.savetxt(path, np.eye(3))
    with pytest.raises(ValueError):
        load_transform_matrix(path)
