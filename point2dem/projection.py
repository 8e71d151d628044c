"""
Projection configuration, georeferencing and reprojection.

The georeference is modelled in two steps. A GeoReferenceBuilder carries
the datum and projection and can already map lon/lat to projected
coordinates, which never involves pixel space. Only after rasterization,
once the raster extent is known, does finalize() attach the affine
pixel-to-map transform and hand out a complete GeoReference. finalize()
succeeds exactly once.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple
import logging

import numpy as np
from pyproj import CRS, Transformer
from rasterio.transform import Affine

from .datum import WGS84, Datum
from .errors import ConfigurationError, GeoReferenceIncompleteError
from .pointcloud import PointCloud

logger = logging.getLogger(__name__)


class ProjectionKind(Enum):
    GEOGRAPHIC = "geographic"
    SINUSOIDAL = "sinusoidal"
    MERCATOR = "mercator"
    TRANSVERSE_MERCATOR = "transverse-mercator"
    ORTHOGRAPHIC = "orthographic"
    STEREOGRAPHIC = "stereographic"
    LAMBERT_AZIMUTHAL = "lambert-azimuthal"
    UTM = "utm"


# When several projections are requested, the first one listed here wins.
PROJECTION_PRIORITY = (
    ProjectionKind.SINUSOIDAL,
    ProjectionKind.MERCATOR,
    ProjectionKind.TRANSVERSE_MERCATOR,
    ProjectionKind.ORTHOGRAPHIC,
    ProjectionKind.STEREOGRAPHIC,
    ProjectionKind.LAMBERT_AZIMUTHAL,
    ProjectionKind.UTM,
)


@dataclass(frozen=True)
class Projection:
    """
    Map projection definition.

    Attributes:
        kind: Projection variant
        center_lon: Longitude of the projection center (deg)
        center_lat: Latitude of the projection center (deg)
        scale: Scale factor at the projection center
        utm_zone: UTM zone (1-60), UTM only
        utm_south: Southern hemisphere, UTM only
    """
    kind: ProjectionKind
    center_lon: float = 0.0
    center_lat: float = 0.0
    scale: float = 1.0
    utm_zone: Optional[int] = None
    utm_south: bool = False

    def validate(self) -> None:
        if not -90.0 <= self.center_lat <= 90.0:
            raise ConfigurationError(f"Projection center latitude out of range: {self.center_lat}")
        if not self.scale > 0:
            raise ConfigurationError(f"Projection scale must be positive, got {self.scale}")
        if self.kind is ProjectionKind.UTM:
            if self.utm_zone is None or not 1 <= self.utm_zone <= 60:
                raise ConfigurationError(f"UTM zone must be in 1..60, got {self.utm_zone}")

    def proj_params(self) -> Dict:
        """PROJ parameters of this projection, without the ellipsoid."""
        k = self.kind
        if k is ProjectionKind.GEOGRAPHIC:
            return {"proj": "longlat"}
        if k is ProjectionKind.SINUSOIDAL:
            return {"proj": "sinu", "lon_0": self.center_lon}
        if k is ProjectionKind.MERCATOR:
            return {"proj": "merc", "lon_0": self.center_lon, "k_0": self.scale}
        if k is ProjectionKind.TRANSVERSE_MERCATOR:
            return {"proj": "tmerc", "lat_0": self.center_lat, "lon_0": self.center_lon,
                    "k_0": self.scale}
        if k is ProjectionKind.ORTHOGRAPHIC:
            return {"proj": "ortho", "lat_0": self.center_lat, "lon_0": self.center_lon}
        if k is ProjectionKind.STEREOGRAPHIC:
            return {"proj": "stere", "lat_0": self.center_lat, "lon_0": self.center_lon,
                    "k_0": self.scale}
        if k is ProjectionKind.LAMBERT_AZIMUTHAL:
            return {"proj": "laea", "lat_0": self.center_lat, "lon_0": self.center_lon}
        params = {"proj": "utm", "zone": self.utm_zone}
        if self.utm_south:
            params["south"] = True
        return params


# Planar convention for data left in Cartesian units
PLANAR_MERCATOR = Projection(ProjectionKind.MERCATOR, center_lon=0.0, center_lat=0.0, scale=1.0)


def select_projection(requested: Sequence[ProjectionKind]) -> Optional[ProjectionKind]:
    """
    Pick one projection kind out of the requested ones.

    The winner is the first entry of PROJECTION_PRIORITY present in
    requested. Returns None when nothing was requested.
    """
    requested = set(requested)
    chosen = [k for k in PROJECTION_PRIORITY if k in requested]
    if ProjectionKind.GEOGRAPHIC in requested:
        chosen.append(ProjectionKind.GEOGRAPHIC)
    if not chosen:
        return None
    if len(chosen) > 1:
        logger.warning(
            f"Several projections requested ({', '.join(k.value for k in chosen)}); "
            f"using {chosen[0].value}"
        )
    return chosen[0]


def _crs(params: Dict) -> CRS:
    return CRS.from_dict({**params, "no_defs": True})


class GeoReferenceBuilder:
    """
    Datum + projection, affine transform not yet known.

    Supports the lon/lat to map-plane conversion needed for reprojection.
    """

    def __init__(self, projection: Projection, datum: Optional[Datum] = None):
        projection.validate()
        self.projection = projection
        self.datum = datum
        self._finalized = False

    @property
    def effective_datum(self) -> Datum:
        return self.datum if self.datum is not None else WGS84

    @property
    def crs(self) -> CRS:
        if self.datum is None and self.projection.kind is ProjectionKind.UTM:
            return _crs({**self.projection.proj_params(), "datum": "WGS84"})
        return _crs({**self.projection.proj_params(), **self.effective_datum.proj_params()})

    @property
    def geographic_crs(self) -> CRS:
        return _crs({"proj": "longlat", **self.effective_datum.proj_params()})

    @property
    def transform(self) -> Affine:
        raise GeoReferenceIncompleteError(
            "Affine transform is not available until the raster extent is known"
        )

    def lonlat_to_point(self, lon: np.ndarray, lat: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Project longitude / latitude (deg) to map coordinates."""
        if self.projection.kind is ProjectionKind.GEOGRAPHIC:
            return np.asarray(lon, dtype=np.float64), np.asarray(lat, dtype=np.float64)
        transformer = Transformer.from_crs(self.geographic_crs, self.crs, always_xy=True)
        x, y = transformer.transform(lon, lat, errcheck=False)
        return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)

    def finalize(self, transform: Affine) -> "GeoReference":
        """Attach the affine transform. May only be called once."""
        if self._finalized:
            raise GeoReferenceIncompleteError("Georeference transform has already been set")
        self._finalized = True
        logger.info(f"Georeferencing transform: {tuple(transform)[:6]}")
        return GeoReference(self.projection, self.datum, self.crs, transform)


@dataclass(frozen=True)
class GeoReference:
    """Complete georeference: datum, projection and affine pixel-to-map transform."""
    projection: Projection
    datum: Optional[Datum]
    crs: CRS
    transform: Affine

    def pixel_to_point(self, col, row) -> Tuple[np.ndarray, np.ndarray]:
        return self.transform * (col, row)

    def point_to_pixel(self, x, y) -> Tuple[np.ndarray, np.ndarray]:
        return ~self.transform * (x, y)


def configure_georeference(
    datum: Optional[Datum],
    requested: Sequence[ProjectionKind] = (),
    geodetic: bool = False,
    center_lon: float = 0.0,
    center_lat: float = 0.0,
    scale: float = 1.0,
    utm_zone: Optional[int] = None,
    utm_south: bool = False,
) -> GeoReferenceBuilder:
    """
    Build the incomplete georeference for this run.

    Data left in Cartesian units always gets the planar Mercator convention
    (lon_0 = 0, unit scale), so the DEM carries metric units. Geodetic data
    gets the selected projection, or plain geographic coordinates when none
    was requested.
    """
    kind = select_projection(requested)

    if not geodetic:
        if kind is not None:
            logger.warning(
                f"Projection '{kind.value}' ignored: points were not converted to lon/lat"
            )
        return GeoReferenceBuilder(PLANAR_MERCATOR, datum)

    if kind is None:
        kind = ProjectionKind.GEOGRAPHIC
    projection = Projection(
        kind,
        center_lon=center_lon,
        center_lat=center_lat,
        scale=scale,
        utm_zone=utm_zone,
        utm_south=utm_south,
    )
    logger.info(f"Using {kind.value} projection")
    return GeoReferenceBuilder(projection, datum)


def reproject(cloud: PointCloud, builder: GeoReferenceBuilder) -> PointCloud:
    """
    Map geodetic points (lon, lat, z) to (x, y, z) in the projection plane.

    Points the projection cannot represent come back non-finite and are
    marked invalid.
    """
    def project(points: np.ndarray) -> np.ndarray:
        x, y = builder.lonlat_to_point(points[:, 0], points[:, 1])
        return np.column_stack([x, y, points[:, 2]])

    logger.info(f"Reprojecting {cloud.num_valid} points")
    projected = cloud.map(project)
    dropped = cloud.num_valid - projected.num_valid
    if dropped:
        logger.warning(f"{dropped} points fall outside the projection domain")
    return projected
