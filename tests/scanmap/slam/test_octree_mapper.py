"""Unit tests for scanmap.slam.octree_mapper (the per-scan mapping pipeline).

Covers bootstrap, refinement of overlapping scans, failure safety (map and
path untouched), frame handling, observer isolation, map density under
repeated growth and concurrent callers.

Author: Navigation Engineer
Date: 2026
"""

import logging
import threading

import numpy as np
import pytest
from scipy.spatial import cKDTree

from scanmap.slam import (
    Channel,
    FrameRegistry,
    FrameTransformUnavailable,
    InvalidConfig,
    MapperConfig,
    MapperState,
    NoNeighborsFound,
    OctreeMapper,
    Pose6DOF,
    RecordingObserver,
    RegistrationConfig,
    RegistrationDidNotConverge,
    VoxelMapIndex,
    generate_room_points,
    generate_scan,
    voxel_keys,
)


ROOM = generate_room_points(size=(6.0, 5.0, 2.5), spacing=0.2)

P0 = Pose6DOF.from_translation_rpy([2.0, 2.0, 0.8], stamp=0.0)
P1 = Pose6DOF.from_translation_rpy([2.3, 2.1, 0.8], yaw=0.05, stamp=0.1)
# Odometry estimate of P1 with drift
P1_RAW = Pose6DOF.from_translation_rpy([2.38, 2.05, 0.82], yaw=0.07, stamp=0.1)


def _config(**registration):
    return MapperConfig(
        octree_resolution=0.25,
        verbosity_level=1,
        registration=RegistrationConfig(**registration),
    )


def _scan(pose):
    return generate_scan(ROOM, pose, max_range=10.0)


def _assert_density_invariant(mapper):
    keys = voxel_keys(mapper.map_points, mapper.resolution)
    assert len(np.unique(keys, axis=0)) == mapper.map_size


@pytest.fixture
def bootstrapped():
    mapper = OctreeMapper(_config())
    mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
    return mapper


class TestBootstrap:
    """Test suite for the first scan on an empty map."""

    def test_first_scan_not_refined(self):
        rng = np.random.default_rng(0)
        scan = rng.uniform(-5.0, 5.0, size=(100, 3))
        mapper = OctreeMapper(_config())
        assert mapper.is_map_empty

        result = mapper.refine_transform_and_grow_map(0.0, scan, P0)

        assert result.state is MapperState.BOOTSTRAP
        assert not result.refined
        assert not result
        assert result.pose is P0
        assert result.registration is None
        assert 0 < mapper.map_size <= 100
        assert result.points_added == mapper.map_size
        assert len(mapper.refined_path) == 0
        _assert_density_invariant(mapper)

    def test_bootstrap_uses_raw_pose(self):
        scan = np.array([[1.0, 0.0, 0.0]])
        mapper = OctreeMapper(_config())
        mapper.refine_transform_and_grow_map(0.0, scan, Pose6DOF(position=[0.0, 0.0, 5.0]))
        np.testing.assert_allclose(mapper.map_points, [[1.0, 0.0, 5.0]])


class TestRefinement:
    """Test suite for refinement against a non-empty map."""

    def test_second_scan_refined(self, bootstrapped):
        size_before = bootstrapped.map_size
        result = bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)

        assert result.state is MapperState.GROW_MAP
        assert result.refined
        assert result.registration.converged
        assert result.raw_pose is P1_RAW
        assert result.pose.translation_distance(P1) < 0.05
        assert result.pose.rotation_distance(P1) < 0.02
        assert result.pose.stamp == P1.stamp

        path = bootstrapped.refined_path
        assert len(path) == 1
        assert path.frame_id == "map"
        np.testing.assert_array_equal(path.entries[0].pose.to_array(), result.pose.to_array())
        assert path.entries[0].stamp == P1.stamp

        assert bootstrapped.map_size == size_before + result.points_added
        _assert_density_invariant(bootstrapped)

    def test_refinement_reduces_odometry_error(self, bootstrapped):
        result = bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
        assert result.pose.translation_distance(P1) < P1_RAW.translation_distance(P1)
        assert result.pose.rotation_distance(P1) < P1_RAW.rotation_distance(P1)

    def test_deterministic(self):
        poses = []
        for _ in range(2):
            mapper = OctreeMapper(_config())
            mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
            result = mapper.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
            assert result.refined
            assert result.registration.converged
            poses.append(result.pose)
        np.testing.assert_array_equal(poses[0].to_array(), poses[1].to_array())

    def test_monotonic_growth_and_density(self, bootstrapped):
        sizes = [bootstrapped.map_size]
        for k in range(1, 5):
            truth = Pose6DOF.from_translation_rpy([2.0 + 0.3 * k, 2.0 + 0.2 * k, 0.8], yaw=0.04 * k)
            raw = Pose6DOF.from_translation_rpy(
                [2.05 + 0.3 * k, 1.97 + 0.2 * k, 0.8], yaw=0.04 * k + 0.01, stamp=0.1 * k
            )
            result = bootstrapped.refine_transform_and_grow_map(raw.stamp, _scan(truth), raw)
            assert result.refined
            sizes.append(bootstrapped.map_size)
            _assert_density_invariant(bootstrapped)

        assert all(b >= a for a, b in zip(sizes[:-1], sizes[1:]))
        assert len(bootstrapped.refined_path) == 4
        assert bootstrapped.map_size <= len(ROOM)

    def test_statistics(self, bootstrapped):
        bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
        stats = bootstrapped.statistics()
        assert stats["scans"] == 2
        assert stats["bootstrapped"] == 1
        assert stats["refined"] == 1
        assert stats["failed"] == 0
        assert stats["path_length"] == 1
        assert stats["map_points"] == bootstrapped.map_size


class TestFailureSafety:
    """Test suite for failed scans leaving all state untouched."""

    def test_non_convergence_leaves_state_untouched(self):
        mapper = OctreeMapper(_config(max_iterations=1))
        mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
        map_before = mapper.map_cloud().points.tobytes()
        size_before = mapper.map_size
        index_state = dict(vars(mapper._index))

        result = mapper.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)

        assert result.state is MapperState.FAILED
        assert not result.refined
        assert result.pose is P1_RAW
        assert isinstance(result.error, RegistrationDidNotConverge)
        assert result.registration is not None
        assert not result.registration.converged
        assert result.points_added == 0
        assert mapper.map_size == size_before
        assert mapper.map_cloud().points.tobytes() == map_before
        assert len(mapper.refined_path) == 0
        assert all(vars(mapper._index)[name] is value for name, value in index_state.items())

    def test_too_few_correspondences_fails(self, bootstrapped):
        """A scan far outside the mapped area cannot be aligned."""
        far = Pose6DOF(position=[100.0, 0.0, 0.0], stamp=0.1)
        size_before = bootstrapped.map_size

        result = bootstrapped.refine_transform_and_grow_map(0.1, _scan(P1), far)

        assert result.state is MapperState.FAILED
        assert isinstance(result.error, RegistrationDidNotConverge)
        assert bootstrapped.map_size == size_before

    def test_empty_scan_raises_before_mutation(self, bootstrapped):
        size_before = bootstrapped.map_size
        with pytest.raises(ValueError):
            bootstrapped.refine_transform_and_grow_map(0.1, np.empty((0, 3)), P1_RAW)
        with pytest.raises(ValueError):
            bootstrapped.refine_transform_and_grow_map(0.1, np.full((3, 3), np.nan), P1_RAW)
        with pytest.raises(ValueError):
            bootstrapped.refine_transform_and_grow_map(0.1, np.zeros((3, 2)), P1_RAW)
        assert bootstrapped.map_size == size_before
        assert bootstrapped.statistics()["scans"] == 1

    def test_non_finite_points_are_dropped(self):
        scan = np.array([[1.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [0.0, 3.0, 0.0]])
        mapper = OctreeMapper(_config())
        result = mapper.refine_transform_and_grow_map(0.0, scan, Pose6DOF())
        assert result.points_added == 2
        assert np.all(np.isfinite(mapper.map_points))


class TestFrames:
    """Test suite for scan frames and extrinsics."""

    LASER_IN_BASE = Pose6DOF.from_translation_rpy([0.2, 0.0, 0.3], yaw=0.1)

    def test_laser_scan_lands_on_room_surfaces(self):
        frames = FrameRegistry()
        frames.set_transform("base_link", "laser", self.LASER_IN_BASE)
        laser_scan = _scan(P0 + self.LASER_IN_BASE)

        mapper = OctreeMapper(_config(), frames=frames)
        result = mapper.refine_transform_and_grow_map(0.0, laser_scan, P0)

        assert result.state is MapperState.BOOTSTRAP
        assert mapper.map_size > 0
        distances, _ = cKDTree(ROOM).query(mapper.map_points)
        assert np.max(distances) < 1e-9

        # Treating the laser scan as a robot-frame scan misplaces it
        plain = OctreeMapper(_config())
        plain.refine_transform_and_grow_map(0.0, laser_scan, P0, scan_frame="base_link")
        distances, _ = cKDTree(ROOM).query(plain.map_points)
        assert np.max(distances) > 0.05

    def test_laser_frame_default_with_registry(self):
        frames = FrameRegistry()
        frames.set_transform("base_link", "laser", Pose6DOF(position=[0.0, 0.0, 1.0]))
        mapper = OctreeMapper(_config(), frames=frames)
        mapper.refine_transform_and_grow_map(0.0, np.array([[1.0, 0.0, 0.0]]), Pose6DOF())
        np.testing.assert_allclose(mapper.map_points, [[1.0, 0.0, 1.0]])

    def test_robot_frame_scan_skips_lookup(self):
        mapper = OctreeMapper(_config(), frames=FrameRegistry())
        result = mapper.refine_transform_and_grow_map(
            0.0, np.array([[1.0, 0.0, 0.0]]), Pose6DOF(), scan_frame="base_link"
        )
        assert result.state is MapperState.BOOTSTRAP

    def test_missing_extrinsic_fails_without_mutation(self):
        mapper = OctreeMapper(_config(), frames=FrameRegistry())
        result = mapper.refine_transform_and_grow_map(0.0, _scan(P0), P0)

        assert result.state is MapperState.FAILED
        assert isinstance(result.error, FrameTransformUnavailable)
        assert result.error.source_frame == "laser"
        assert mapper.is_map_empty

    def test_scan_frame_without_registry_fails(self, bootstrapped):
        size_before = bootstrapped.map_size
        result = bootstrapped.refine_transform_and_grow_map(
            P1.stamp, _scan(P1), P1_RAW, scan_frame="laser"
        )
        assert result.state is MapperState.FAILED
        assert isinstance(result.error, FrameTransformUnavailable)
        assert bootstrapped.map_size == size_before
        assert len(bootstrapped.refined_path) == 0


class TestObservers:
    """Test suite for optional artefacts."""

    def test_all_channels_published(self):
        observer = RecordingObserver()
        mapper = OctreeMapper(_config(), observer=observer)
        mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
        assert observer.counts[Channel.MAP_CLOUD] == 1
        assert observer.counts[Channel.NN_CLOUD] == 0

        mapper.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)

        assert observer.counts[Channel.MAP_CLOUD] == 2
        assert observer.counts[Channel.NN_CLOUD] == 1
        assert observer.counts[Channel.REGISTERED_CLOUD] == 1
        assert observer.counts[Channel.REFINED_PATH] == 1

        assert observer.clouds[Channel.NN_CLOUD].frame_id == "base_link"
        assert observer.clouds[Channel.MAP_CLOUD].frame_id == "map"
        assert len(observer.clouds[Channel.MAP_CLOUD]) == mapper.map_size
        assert observer.clouds[Channel.REGISTERED_CLOUD].stamp == P1.stamp
        assert len(observer.path) == 1

    def test_unsubscribed_channels_not_built(self):
        observer = RecordingObserver([Channel.REFINED_PATH])
        mapper = OctreeMapper(_config(), observer=observer)
        mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
        mapper.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)

        assert observer.clouds == {}
        assert observer.counts[Channel.REFINED_PATH] == 1

    def test_path_republished_in_full(self, bootstrapped):
        observer = RecordingObserver([Channel.REFINED_PATH])
        bootstrapped.observer = observer
        bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
        truth = Pose6DOF.from_translation_rpy([2.5, 2.2, 0.8], yaw=0.08)
        raw = Pose6DOF.from_translation_rpy([2.55, 2.18, 0.8], yaw=0.09, stamp=0.2)
        bootstrapped.refine_transform_and_grow_map(raw.stamp, _scan(truth), raw)
        assert len(observer.path) == 2

    def test_failing_observer_does_not_change_outcome(self, caplog):
        class ExplodingObserver:
            def wants(self, channel):
                return True

            def publish_cloud(self, channel, cloud):
                raise RuntimeError("sink down")

            def publish_path(self, path):
                raise RuntimeError("sink down")

        quiet = OctreeMapper(_config())
        noisy = OctreeMapper(_config(), observer=ExplodingObserver())
        results = []
        for mapper in (quiet, noisy):
            mapper.refine_transform_and_grow_map(P0.stamp, _scan(P0), P0)
            with caplog.at_level(logging.WARNING, logger="scanmap"):
                results.append(mapper.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW))

        assert results[1].refined
        np.testing.assert_array_equal(results[0].pose.to_array(), results[1].pose.to_array())
        np.testing.assert_array_equal(quiet.map_points, noisy.map_points)
        assert len(noisy.refined_path) == 1
        assert "Observer failed" in caplog.text


class TestMapAccess:
    """Test suite for reset, injected indices and stage passthroughs."""

    def test_reset_map(self, bootstrapped):
        bootstrapped.reset_map()
        assert bootstrapped.is_map_empty
        result = bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
        assert result.state is MapperState.BOOTSTRAP

    def test_reset_with_new_resolution(self, bootstrapped):
        bootstrapped.reset_map(1.0)
        assert bootstrapped.resolution == 1.0

    @pytest.mark.parametrize("resolution", [0.0, -0.25])
    def test_invalid_reset_keeps_map(self, bootstrapped, resolution):
        before = bootstrapped.map_cloud().points
        with pytest.raises(InvalidConfig):
            bootstrapped.reset_map(resolution)
        np.testing.assert_array_equal(bootstrapped.map_cloud().points, before)

    def test_injected_index_uses_config_resolution(self):
        index = VoxelMapIndex(resolution=1.0)
        index.insert_cloud(np.zeros((1, 3)))
        mapper = OctreeMapper(_config(), index=index)
        assert mapper.resolution == 0.25
        assert mapper.is_map_empty

    def test_map_cloud_is_copy(self, bootstrapped):
        cloud = bootstrapped.map_cloud(stamp=3.0)
        assert cloud.frame_id == "map"
        assert cloud.stamp == 3.0
        cloud.points[:] = 0.0
        assert not np.all(bootstrapped.map_points == 0.0)

    def test_refined_path_is_copy(self, bootstrapped):
        bootstrapped.refine_transform_and_grow_map(P1.stamp, _scan(P1), P1_RAW)
        path = bootstrapped.refined_path
        path.append(Pose6DOF())
        assert len(bootstrapped.refined_path) == 1

    def test_stage_passthroughs(self):
        mapper = OctreeMapper(_config())
        with pytest.raises(NoNeighborsFound):
            mapper.approx_nearest_neighbors(np.zeros((1, 3)))
        assert mapper.add_points_to_map(np.array([[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]])) == 1
        np.testing.assert_array_equal(
            mapper.approx_nearest_neighbors(np.array([[1.0, 0.0, 0.0]])), [[0.0, 0.0, 0.0]]
        )
        result = mapper.estimate_transform_icp(ROOM, ROOM)
        assert result.converged
        moved = mapper.transform_cloud_to_pose_frame(np.zeros((1, 3)), Pose6DOF(position=[1.0, 2.0, 3.0]))
        np.testing.assert_array_equal(moved, [[1.0, 2.0, 3.0]])

    def test_add_points_drops_non_finite(self):
        mapper = OctreeMapper(_config())
        cloud = np.array([[0.0, 0.0, 0.0], [np.nan, np.nan, np.nan], [1.0, -np.inf, 0.0]])
        assert mapper.add_points_to_map(cloud) == 1
        np.testing.assert_array_equal(mapper.map_points, [[0.0, 0.0, 0.0]])
        assert mapper.add_points_to_map(np.full((2, 3), np.nan)) == 0
        assert mapper.map_size == 1

    def test_verbosity_sets_logger_level(self):
        quiet = OctreeMapper(MapperConfig(verbosity_level=0))
        assert quiet.logger.level == logging.WARNING
        assert OctreeMapper(MapperConfig(verbosity_level=1)).logger.level == logging.INFO
        assert OctreeMapper(MapperConfig(verbosity_level=3)).logger.level == logging.DEBUG

    def test_verbosity_is_per_mapper(self):
        package_level = logging.getLogger("scanmap").level
        quiet = OctreeMapper(MapperConfig(verbosity_level=0))
        OctreeMapper(MapperConfig(verbosity_level=2))

        assert quiet.logger.level == logging.WARNING
        assert logging.getLogger("scanmap").level == package_level


class TestConcurrency:
    """Test suite for concurrent producers."""

    def test_concurrent_scans_are_serialised(self, bootstrapped):
        jobs = []
        for k in range(1, 7):
            truth = Pose6DOF.from_translation_rpy([2.0 + 0.1 * k, 2.0 + 0.05 * k, 0.8], yaw=0.01 * k)
            raw = Pose6DOF.from_translation_rpy(
                [2.03 + 0.1 * k, 1.98 + 0.05 * k, 0.8], yaw=0.01 * k + 0.01, stamp=0.1 * k
            )
            jobs.append((raw.stamp, _scan(truth), raw))

        results = []
        lock = threading.Lock()

        def worker(job):
            result = bootstrapped.refine_transform_and_grow_map(*job)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == len(jobs)
        refined = sum(1 for r in results if r.refined)
        stats = bootstrapped.statistics()
        assert stats["scans"] == len(jobs) + 1
        assert len(bootstrapped.refined_path) == refined
        _assert_density_invariant(bootstrapped)
