"""Error taxonomy for the scan-to-map mapping core.

Configuration errors are raised to the caller. Per-scan errors
(no neighbours, non-convergence, unavailable frame transforms) are raised
inside the pipeline and caught by the mapper, which reports them through
its result object without touching the map or the refined path.
"""

from typing import Optional


class MappingError(Exception):
    """Base class for all mapping core errors."""


class InvalidConfig(MappingError, ValueError):
    """A configuration value is out of range (e.g. non-positive resolution)."""


class NoNeighborsFound(MappingError):
    """Nearest-neighbour retrieval against the map produced no points."""


class RegistrationDidNotConverge(MappingError):
    """Iterative alignment exhausted its budget without meeting epsilon.

    Attributes:
        iterations: Number of iterations executed.
        fitness: Mean squared correspondence distance at the last iteration.
    """

    def __init__(
        self,
        message: str,
        iterations: int = 0,
        fitness: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.iterations = iterations
        self.fitness = fitness


class FrameTransformUnavailable(MappingError):
    """A transform between two frames cannot be resolved or applied.

    Attributes:
        target_frame: Frame the cloud was to be expressed in (may be None).
        source_frame: Frame the cloud is currently expressed in (may be None).
    """

    def __init__(
        self,
        message: str,
        target_frame: Optional[str] = None,
        source_frame: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.target_frame = target_frame
        self.source_frame = source_frame
