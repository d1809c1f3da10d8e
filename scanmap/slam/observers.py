"""Optional observers of the mapper's intermediate artefacts.

The mapper can expose four artefacts per scan: the robot-frame neighbour
cloud used for alignment, the full map cloud, the map-frame registered
scan and the refined path. Building them costs time (the map cloud in
particular is copied), so the mapper asks ``wants(channel)`` first and
only builds what some observer listens to. Observers cannot influence the
pipeline: whatever they do, the scan's outcome is the same.
"""

from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Union

from .types import RefinedPath, StampedCloud


class Channel(str, Enum):
    """Artefact channels exposed by the mapper."""

    NN_CLOUD = "nn_cloud"
    MAP_CLOUD = "map_cloud"
    REGISTERED_CLOUD = "registered_cloud"
    REFINED_PATH = "refined_path"


CLOUD_CHANNELS = (Channel.NN_CLOUD, Channel.MAP_CLOUD, Channel.REGISTERED_CLOUD)


class MapperObserver(Protocol):
    """Sink for mapper artefacts."""

    def wants(self, channel: Channel) -> bool: ...

    def publish_cloud(self, channel: Channel, cloud: StampedCloud) -> None: ...

    def publish_path(self, path: RefinedPath) -> None: ...


class NullObserver:
    """Observer that listens to nothing; the mapper builds no artefacts."""

    def wants(self, channel: Channel) -> bool:
        return False

    def publish_cloud(self, channel: Channel, cloud: StampedCloud) -> None:
        pass

    def publish_path(self, path: RefinedPath) -> None:
        pass


class RecordingObserver:
    """Keeps the latest artefact of each subscribed channel.

    Args:
        channels: Channels to subscribe to (all channels if None).

    Example:
        >>> observer = RecordingObserver([Channel.MAP_CLOUD])
        >>> observer.wants(Channel.NN_CLOUD)
        False
    """

    def __init__(self, channels=None) -> None:
        self.channels = set(Channel) if channels is None else {Channel(c) for c in channels}
        self.clouds: Dict[Channel, StampedCloud] = {}
        self.path: Optional[RefinedPath] = None
        self.counts: Dict[Channel, int] = {channel: 0 for channel in Channel}

    def wants(self, channel: Channel) -> bool:
        return Channel(channel) in self.channels

    def publish_cloud(self, channel: Channel, cloud: StampedCloud) -> None:
        channel = Channel(channel)
        self.clouds[channel] = cloud
        self.counts[channel] += 1

    def publish_path(self, path: RefinedPath) -> None:
        self.path = path
        self.counts[Channel.REFINED_PATH] += 1


class CallbackObserver:
    """Forwards artefacts to per-channel callables.

    Only channels with a registered callback are reported as wanted.

    Example:
        >>> received = []
        >>> observer = CallbackObserver({"map_cloud": received.append})
        >>> observer.wants(Channel.MAP_CLOUD), observer.wants("nn_cloud")
        (True, False)
    """

    def __init__(
        self,
        callbacks: Dict[Union[Channel, str], Callable],
    ) -> None:
        self.callbacks = {Channel(name): fn for name, fn in callbacks.items()}

    def wants(self, channel: Channel) -> bool:
        return Channel(channel) in self.callbacks

    def publish_cloud(self, channel: Channel, cloud: StampedCloud) -> None:
        callback = self.callbacks.get(Channel(channel))
        if callback is not None:
            callback(cloud)

    def publish_path(self, path: RefinedPath) -> None:
        callback = self.callbacks.get(Channel.REFINED_PATH)
        if callback is not None:
            callback(path)
