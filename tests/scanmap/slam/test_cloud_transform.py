"""Unit tests for scanmap.slam.cloud_transform.

Author: Navigation Engineer
Date: 2026
"""

import numpy as np
import pytest

from scanmap.slam import FrameTransformUnavailable, Pose6DOF, transform_cloud, validate_cloud


class TestTransformCloud:
    """Test suite for transform_cloud."""

    def test_translation(self):
        cloud = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        out = transform_cloud(cloud, Pose6DOF(position=[1.0, 2.0, 3.0]))
        np.testing.assert_allclose(out, [[1.0, 2.0, 3.0], [2.0, 2.0, 3.0]])

    def test_pose_and_matrix_agree(self):
        pose = Pose6DOF.from_translation_rpy([0.5, -1.0, 0.2], 0.1, 0.2, -0.7)
        cloud = np.random.default_rng(0).normal(size=(50, 3))
        np.testing.assert_allclose(
            transform_cloud(cloud, pose), transform_cloud(cloud, pose.to_matrix())
        )

    def test_inverse_restores_cloud(self):
        pose = Pose6DOF.from_translation_rpy([0.5, -1.0, 0.2], 0.1, 0.2, -0.7)
        cloud = np.random.default_rng(1).normal(size=(50, 3))
        back = transform_cloud(transform_cloud(cloud, pose), pose.inverse())
        np.testing.assert_allclose(back, cloud, atol=1e-12)

    def test_input_untouched(self):
        cloud = np.ones((3, 3))
        transform_cloud(cloud, Pose6DOF(position=[1.0, 0.0, 0.0]))
        np.testing.assert_array_equal(cloud, np.ones((3, 3)))

    def test_empty_cloud(self):
        out = transform_cloud(np.empty((0, 3)), Pose6DOF())
        assert out.shape == (0, 3)

    def test_non_finite_transform(self):
        T = np.eye(4)
        T[0, 3] = np.nan
        with pytest.raises(FrameTransformUnavailable) as excinfo:
            transform_cloud(np.zeros((2, 3)), T, target_frame="map", source_frame="base_link")
        assert excinfo.value.target_frame == "map"
        assert excinfo.value.source_frame == "base_link"

    def test_improper_rotation(self):
        T = np.diag([1.0, 1.0, -1.0, 1.0])
        with pytest.raises(FrameTransformUnavailable):
            transform_cloud(np.zeros((2, 3)), T)

    def test_wrong_matrix_shape(self):
        with pytest.raises(FrameTransformUnavailable):
            transform_cloud(np.zeros((2, 3)), np.eye(3))

    def test_validate_cloud(self):
        assert validate_cloud([[1, 2, 3]]).dtype == np.float64
        with pytest.raises(ValueError, match="scan"):
            validate_cloud(np.zeros(3), "scan")
