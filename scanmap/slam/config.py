"""Immutable configuration for the registration engine and the mapper.

Configuration is passed explicitly at construction time. Both dataclasses
are frozen and validate themselves in ``__post_init__``; invalid values
raise :class:`InvalidConfig`. Unusual but legal values emit a
``UserWarning``.

Example:
    >>> config = MapperConfig.from_dict({
    ...     "octree_resolution": 0.25,
    ...     "registration": {"max_iterations": 30},
    ... })
    >>> config.registration.max_iterations
    30
"""

import warnings
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping

import numpy as np

from .errors import InvalidConfig


REGISTRATION_METHODS = ("gicp", "point_to_point")


@dataclass(frozen=True)
class RegistrationConfig:
    """Tunables of the iterative closest point registration engine.

    Attributes:
        max_iterations: Iteration budget per alignment.
        transformation_epsilon: Convergence threshold on the norm of the
            per-iteration transform increment [rx, ry, rz, tx, ty, tz]
            (radians and meters).
        euclidean_fitness_epsilon: Convergence threshold on the relative change
            of the registration cost between consecutive iterations; 0
            disables the test.
        max_correspondence_distance: Pairs farther apart than this (meters)
            are excluded from an iteration's cost.
        ransac_iterations: Must be 0; all gated correspondences are used.
        min_correspondences: Fewer gated pairs than this fails the alignment.
        covariance_neighbors: Neighbourhood size used to estimate per-point
            covariances for GICP.
        covariance_epsilon: Smallest eigenvalue assigned to the
            plane-regularised covariances.
        method: "gicp" (covariance weighted) or "point_to_point" (SVD).
    """

    max_iterations: int = 50
    transformation_epsilon: float = 1e-6
    euclidean_fitness_epsilon: float = 1e-5
    max_correspondence_distance: float = 1.0
    ransac_iterations: int = 0
    min_correspondences: int = 6
    covariance_neighbors: int = 20
    covariance_epsilon: float = 1e-3
    method: str = "gicp"

    def __post_init__(self) -> None:
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise InvalidConfig(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        if not np.isfinite(self.transformation_epsilon) or self.transformation_epsilon <= 0:
            raise InvalidConfig(
                f"transformation_epsilon must be positive, got {self.transformation_epsilon}"
            )
        if not np.isfinite(self.euclidean_fitness_epsilon) or self.euclidean_fitness_epsilon < 0:
            raise InvalidConfig(
                "euclidean_fitness_epsilon must be non-negative, "
                f"got {self.euclidean_fitness_epsilon}"
            )
        if (
            not np.isfinite(self.max_correspondence_distance)
            or self.max_correspondence_distance <= 0
        ):
            raise InvalidConfig(
                "max_correspondence_distance must be positive, "
                f"got {self.max_correspondence_distance}"
            )
        if self.ransac_iterations != 0:
            raise InvalidConfig(
                f"ransac_iterations must be 0 (no outlier subsampling), "
                f"got {self.ransac_iterations}"
            )
        if self.min_correspondences < 3:
            raise InvalidConfig(
                f"min_correspondences must be at least 3, got {self.min_correspondences}"
            )
        if self.covariance_neighbors < 3:
            raise InvalidConfig(
                f"covariance_neighbors must be at least 3, got {self.covariance_neighbors}"
            )
        if not (0 < self.covariance_epsilon < 1):
            raise InvalidConfig(
                f"covariance_epsilon must be in (0, 1), got {self.covariance_epsilon}"
            )
        if self.method not in REGISTRATION_METHODS:
            raise InvalidConfig(
                f"method must be one of {REGISTRATION_METHODS}, got {self.method!r}"
            )


@dataclass(frozen=True)
class MapperConfig:
    """Configuration of the octree mapper.

    Frame names are opaque identifiers used to tag outputs and to look up
    sensor extrinsics; ``verbosity_level`` only selects the logging level.

    Attributes:
        map_frame: Frame of the map cloud and refined path.
        odom_frame: Frame of the raw odometry poses.
        robot_frame: Robot body frame in which registration runs.
        laser_frame: Frame in which scans are captured.
        octree_resolution: Voxel edge length of the map index (meters, > 0).
        verbosity_level: 0 = warnings only, 1 = info, 2+ = debug.
        registration: Registration engine tunables.
    """

    map_frame: str = "map"
    odom_frame: str = "odom"
    robot_frame: str = "base_link"
    laser_frame: str = "laser"
    octree_resolution: float = 0.5
    verbosity_level: int = 2
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)

    def __post_init__(self) -> None:
        for name in ("map_frame", "odom_frame", "robot_frame", "laser_frame"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise InvalidConfig(f"{name} must be a non-empty string, got {value!r}")

        validate_resolution(self.octree_resolution)

        if self.verbosity_level < 0:
            raise InvalidConfig(
                f"verbosity_level must be non-negative, got {self.verbosity_level}"
            )
        if not isinstance(self.registration, RegistrationConfig):
            raise InvalidConfig(
                f"registration must be a RegistrationConfig, got {type(self.registration)}"
            )

        # A correspondence gate smaller than one voxel rarely finds pairs,
        # since the map keeps one point per voxel.
        if self.registration.max_correspondence_distance < self.octree_resolution:
            warnings.warn(
                f"max_correspondence_distance ({self.registration.max_correspondence_distance} m) "
                f"is smaller than octree_resolution ({self.octree_resolution} m); "
                "registration may find too few correspondences.",
                UserWarning,
            )

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "MapperConfig":
        """Build a config from a plain (e.g. JSON-parsed) dictionary.

        Args:
            mapping: Mapper fields, with an optional nested "registration"
                     dictionary of RegistrationConfig fields.

        Returns:
            Validated MapperConfig.

        Raises:
            InvalidConfig: On unknown keys or invalid values.
        """
        data = dict(mapping)
        registration = data.pop("registration", None)

        _reject_unknown_keys(cls, data)
        if registration is None:
            registration_config = RegistrationConfig()
        elif isinstance(registration, RegistrationConfig):
            registration_config = registration
        else:
            _reject_unknown_keys(RegistrationConfig, registration)
            registration_config = RegistrationConfig(**registration)

        return cls(registration=registration_config, **data)

    def to_dict(self) -> Dict[str, Any]:
        """Return the configuration as nested plain dictionaries."""
        return asdict(self)


def validate_resolution(resolution: float) -> float:
    """Validate a voxel resolution and return it as float.

    Raises:
        InvalidConfig: If the resolution is not a finite positive number.
    """
    try:
        value = float(resolution)
    except (TypeError, ValueError):
        raise InvalidConfig(f"resolution must be a number, got {resolution!r}") from None

    if not np.isfinite(value) or value <= 0:
        raise InvalidConfig(f"resolution must be positive, got {resolution}")

    if value < 0.01:
        warnings.warn(
            f"Voxel resolution of {value} m is very fine; the map will grow "
            "to one point per centimetre of observed surface.",
            UserWarning,
        )
    return value


def _reject_unknown_keys(cls, data: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfig(f"Unknown {cls.__name__} keys: {unknown}")
