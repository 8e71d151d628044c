"""
Geometric transform stage.

Applies, in a fixed order, the optional steps that prepare a point cloud
for rasterization:

    1. Euler rotation (left-multiplies every valid point)
    2. Constant offset (typically a pure vertical offset)
    3. Cartesian XYZ to (longitude, latitude, height above the datum)

The order is part of the contract: rotating after the geodetic conversion
or offsetting after it gives different results, so steps are held in an
ordered list and applied by a single composed function.

Angles are in radians. A lowercase rotation order ("xyz") is an extrinsic
sequence, an uppercase one ("XYZ") intrinsic, as in scipy.
"""

from typing import List, Optional, Sequence
import logging

import numpy as np
from pyproj import CRS, Transformer
from scipy.spatial.transform import Rotation

from .datum import WGS84, Datum
from .errors import ConfigurationError
from .pointcloud import PointCloud

logger = logging.getLogger(__name__)


class EulerRotation:
    """Rotation built from three Euler angles and an axis order."""

    def __init__(self, phi: float, omega: float, kappa: float, order: str = "xyz"):
        self.angles = (float(phi), float(omega), float(kappa))
        self.order = order
        try:
            self.matrix = Rotation.from_euler(order, self.angles).as_matrix()
        except ValueError as e:
            raise ConfigurationError(f"Invalid rotation order {order!r}: {e}") from e

    def __call__(self, points: np.ndarray) -> np.ndarray:
        return points @ self.matrix.T

    def __repr__(self) -> str:
        return f"EulerRotation(angles={self.angles}, order={self.order!r})"


class VerticalOffset:
    """Adds a constant 3-vector to every point."""

    def __init__(self, offset: Sequence[float]):
        self.offset = np.asarray(offset, dtype=np.float64).reshape(3)

    @classmethod
    def z(cls, dz: float) -> "VerticalOffset":
        return cls((0.0, 0.0, dz))

    def __call__(self, points: np.ndarray) -> np.ndarray:
        return points + self.offset

    def __repr__(self) -> str:
        return f"VerticalOffset({self.offset.tolist()})"


class CartesianToGeodetic:
    """
    Cartesian to geodetic conversion.

    Converts geocentric XYZ to longitude, latitude and height above the
    datum ellipsoid. Without a datum, WGS84 is used, the same default the
    georeference falls back to, so heights and output CRS agree.
    """

    def __init__(self, datum: Optional[Datum] = None):
        self.datum = datum if datum is not None else WGS84
        params = self.datum.proj_params()
        self._transformer = Transformer.from_crs(
            CRS.from_dict({"proj": "geocent", **params, "units": "m"}),
            CRS.from_dict({"proj": "longlat", **params}),
            always_xy=True,
        )

    def __call__(self, points: np.ndarray) -> np.ndarray:
        lon, lat, h = self._transformer.transform(points[:, 0], points[:, 1], points[:, 2])
        return np.column_stack([lon, lat, h])

    def __repr__(self) -> str:
        return f"CartesianToGeodetic({self.datum.name})"


class GeometricTransform:
    """
    Ordered composition of the optional transform steps.

    Each step is a callable mapping an (N, 3) array to an (N, 3) array.
    Steps are stored in their fixed execution order; passing None skips a
    step without affecting the others.
    """

    def __init__(
        self,
        rotation: Optional[EulerRotation] = None,
        offset: Optional[VerticalOffset] = None,
        geodetic: Optional[CartesianToGeodetic] = None,
    ):
        self.rotation = rotation
        self.offset = offset
        self.geodetic = geodetic

    @classmethod
    def from_parameters(
        cls,
        phi: float = 0.0,
        omega: float = 0.0,
        kappa: float = 0.0,
        rotation_order: str = "xyz",
        z_offset: float = 0.0,
        xyz_to_lonlat: bool = False,
        datum: Optional[Datum] = None,
    ) -> "GeometricTransform":
        """Build the stage from run parameters, leaving out no-op steps."""
        rotation = None
        if phi != 0 or omega != 0 or kappa != 0:
            rotation = EulerRotation(phi, omega, kappa, rotation_order)
        else:
            # still reject a bad order up front
            EulerRotation(0.0, 0.0, 0.0, rotation_order)

        offset = VerticalOffset.z(z_offset) if z_offset != 0 else None
        geodetic = CartesianToGeodetic(datum) if xyz_to_lonlat else None
        return cls(rotation=rotation, offset=offset, geodetic=geodetic)

    @property
    def steps(self) -> List:
        return [s for s in (self.rotation, self.offset, self.geodetic) if s is not None]

    @property
    def is_geodetic(self) -> bool:
        return self.geodetic is not None

    def apply_points(self, points: np.ndarray) -> np.ndarray:
        """Run every step over an (N, 3) array of valid points."""
        for step in self.steps:
            points = step(points)
        return points

    def __call__(self, cloud: PointCloud) -> PointCloud:
        for step in self.steps:
            logger.info(f"Applying {step!r}")
        if not self.steps:
            return cloud
        return cloud.map(self.apply_points)
