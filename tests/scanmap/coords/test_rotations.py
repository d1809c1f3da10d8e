"""Unit tests for rotation representations and SO(3) helpers.

Test cases include:
- Euler / matrix / quaternion conversions on known rotations
- Quaternion normalization and the qw >= 0 hemisphere
- Re-orthonormalization of drifted matrices
- Exponential map and rotation angle
"""

import unittest

import numpy as np

from scanmap.coords.rotations import (
    euler_to_rotation_matrix,
    is_rotation_matrix,
    normalize_quat,
    orthonormalize_rotation,
    quat_to_rotation_matrix,
    rotation_angle,
    rotation_matrix_to_euler,
    rotation_matrix_to_quat,
    skew_symmetric,
    so3_exp,
)


class TestEulerConversions(unittest.TestCase):
    """Test cases for Euler angle conversions."""

    def test_identity_rotation(self) -> None:
        R = euler_to_rotation_matrix(0.0, 0.0, 0.0)
        np.testing.assert_allclose(R, np.eye(3), atol=1e-12)

    def test_yaw_90_degrees(self) -> None:
        """Yaw of 90 deg maps the x axis onto the y axis."""
        R = euler_to_rotation_matrix(0.0, 0.0, np.pi / 2)
        np.testing.assert_allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)

    def test_matrix_to_euler_recovers_angles(self) -> None:
        angles = np.array([0.1, -0.3, 2.0])
        R = euler_to_rotation_matrix(*angles)
        np.testing.assert_allclose(rotation_matrix_to_euler(R), angles, atol=1e-12)

    def test_gimbal_lock(self) -> None:
        """At pitch = 90 deg roll is reported as zero, rotation preserved."""
        R = euler_to_rotation_matrix(0.2, np.pi / 2, 0.5)
        roll, pitch, yaw = rotation_matrix_to_euler(R)
        self.assertEqual(roll, 0.0)
        self.assertAlmostEqual(pitch, np.pi / 2)
        np.testing.assert_allclose(euler_to_rotation_matrix(roll, pitch, yaw), R, atol=1e-9)

    def test_wrong_shape_raises(self) -> None:
        with self.assertRaises(ValueError):
            rotation_matrix_to_euler(np.eye(2))


class TestQuaternions(unittest.TestCase):
    """Test cases for quaternion handling."""

    def test_normalize_scales_to_unit(self) -> None:
        q = normalize_quat(np.array([2.0, 0.0, 0.0, 0.0]))
        np.testing.assert_allclose(q, [1.0, 0.0, 0.0, 0.0])

    def test_normalize_flips_to_positive_scalar(self) -> None:
        q = normalize_quat(np.array([-0.5, 0.5, -0.5, 0.5]))
        self.assertGreaterEqual(q[0], 0.0)
        np.testing.assert_allclose(q, [0.5, -0.5, 0.5, -0.5])

    def test_normalize_zero_raises(self) -> None:
        with self.assertRaises(ValueError):
            normalize_quat(np.zeros(4))

    def test_normalize_non_finite_raises(self) -> None:
        with self.assertRaises(ValueError):
            normalize_quat(np.array([np.nan, 0.0, 0.0, 0.0]))

    def test_matrix_quaternion_agree(self) -> None:
        """All four Shepperd branches reproduce the rotation matrix."""
        for angles in [(0.1, 0.2, 0.3), (np.pi - 0.01, 0.0, 0.0),
                       (0.0, 0.0, np.pi - 0.01), (np.pi / 2, 0.4, np.pi - 0.1)]:
            R = euler_to_rotation_matrix(*angles)
            q = rotation_matrix_to_quat(R)
            self.assertAlmostEqual(np.linalg.norm(q), 1.0)
            self.assertGreaterEqual(q[0], 0.0)
            np.testing.assert_allclose(quat_to_rotation_matrix(q), R, atol=1e-9)

    def test_identity_quaternion(self) -> None:
        np.testing.assert_allclose(rotation_matrix_to_quat(np.eye(3)), [1.0, 0.0, 0.0, 0.0])


class TestSO3Helpers(unittest.TestCase):
    """Test cases for orthonormalization and the exponential map."""

    def test_orthonormalize_drifted_matrix(self) -> None:
        R = euler_to_rotation_matrix(0.3, -0.2, 1.0)
        drifted = R + 1e-4 * np.arange(9.0).reshape(3, 3)
        self.assertFalse(is_rotation_matrix(drifted, atol=1e-8))
        fixed = orthonormalize_rotation(drifted)
        self.assertTrue(is_rotation_matrix(fixed, atol=1e-10))
        np.testing.assert_allclose(fixed, R, atol=1e-3)

    def test_orthonormalize_fixes_reflection(self) -> None:
        fixed = orthonormalize_rotation(np.diag([1.0, 1.0, -1.0]))
        self.assertAlmostEqual(np.linalg.det(fixed), 1.0)

    def test_orthonormalize_rejects_bad_input(self) -> None:
        with self.assertRaises(ValueError):
            orthonormalize_rotation(np.eye(4))
        with self.assertRaises(ValueError):
            orthonormalize_rotation(np.full((3, 3), np.inf))

    def test_is_rotation_matrix(self) -> None:
        self.assertTrue(is_rotation_matrix(np.eye(3)))
        self.assertFalse(is_rotation_matrix(2.0 * np.eye(3)))
        self.assertFalse(is_rotation_matrix(np.diag([1.0, 1.0, -1.0])))
        self.assertFalse(is_rotation_matrix(np.eye(4)))

    def test_skew_symmetric_cross_product(self) -> None:
        v = np.array([1.0, -2.0, 0.5])
        w = np.array([0.3, 0.7, -1.1])
        np.testing.assert_allclose(skew_symmetric(v) @ w, np.cross(v, w))

    def test_so3_exp_and_rotation_angle(self) -> None:
        R = so3_exp(np.array([0.0, 0.0, 0.4]))
        np.testing.assert_allclose(R, euler_to_rotation_matrix(0.0, 0.0, 0.4), atol=1e-12)
        self.assertAlmostEqual(rotation_angle(R), 0.4)
        self.assertAlmostEqual(rotation_angle(np.eye(3)), 0.0)

    def test_so3_exp_shape_check(self) -> None:
        with self.assertRaises(ValueError):
            so3_exp(np.zeros(4))


if __name__ == "__main__":
    unittest.main()
