"""Unit tests for scanmap.slam.observers.

Author: Navigation Engineer
Date: 2026
"""

import numpy as np
import pytest

from scanmap.slam import (
    CallbackObserver,
    Channel,
    NullObserver,
    Pose6DOF,
    RecordingObserver,
    RefinedPath,
    StampedCloud,
)


def _cloud():
    return StampedCloud(points=np.zeros((2, 3)), frame_id="map", stamp=1.0)


class TestNullObserver:
    def test_wants_nothing(self):
        observer = NullObserver()
        assert not any(observer.wants(channel) for channel in Channel)
        observer.publish_cloud(Channel.MAP_CLOUD, _cloud())
        observer.publish_path(RefinedPath("map"))


class TestRecordingObserver:
    def test_all_channels_by_default(self):
        observer = RecordingObserver()
        assert all(observer.wants(channel) for channel in Channel)

    def test_subscription_by_name(self):
        observer = RecordingObserver(["map_cloud", Channel.REFINED_PATH])
        assert observer.wants(Channel.MAP_CLOUD)
        assert observer.wants("refined_path")
        assert not observer.wants(Channel.NN_CLOUD)

    def test_records_latest(self):
        observer = RecordingObserver()
        first, second = _cloud(), _cloud()
        observer.publish_cloud(Channel.MAP_CLOUD, first)
        observer.publish_cloud(Channel.MAP_CLOUD, second)
        path = RefinedPath("map")
        path.append(Pose6DOF())
        observer.publish_path(path)

        assert observer.clouds[Channel.MAP_CLOUD] is second
        assert observer.counts[Channel.MAP_CLOUD] == 2
        assert observer.counts[Channel.REFINED_PATH] == 1
        assert len(observer.path) == 1

    def test_unknown_channel(self):
        with pytest.raises(ValueError):
            RecordingObserver(["octree"])


class TestCallbackObserver:
    def test_forwards_to_callbacks(self):
        clouds, paths = [], []
        observer = CallbackObserver({"nn_cloud": clouds.append, Channel.REFINED_PATH: paths.append})

        assert observer.wants(Channel.NN_CLOUD)
        assert not observer.wants(Channel.MAP_CLOUD)

        cloud = _cloud()
        observer.publish_cloud(Channel.NN_CLOUD, cloud)
        observer.publish_cloud(Channel.MAP_CLOUD, _cloud())
        observer.publish_path(RefinedPath("map"))

        assert len(clouds) == 1
        assert clouds[0] is cloud
        assert len(paths) == 1
