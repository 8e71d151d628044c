"""
Datum resolution.

A datum is a reference ellipsoid plus a reference meridian. It is chosen
either from a named preset (spherical planetary bodies) or from explicit
semi-major / semi-minor axes. When neither is supplied no datum override
is made and the projection machinery falls back to WGS84.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
import logging

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Spherical reference radii (m)
MOLA_PEDR_EQUATORIAL_RADIUS = 3_396_000.0
LUNAR_RADIUS = 1_737_400.0

# WGS84 ellipsoid parameters
WGS84_A = 6378137.0  # Semi-major axis (m)
WGS84_F = 1 / 298.257223563  # Flattening
WGS84_B = WGS84_A * (1 - WGS84_F)  # Semi-minor axis


@dataclass(frozen=True)
class Datum:
    """
    Reference ellipsoid and meridian used to interpret geodetic coordinates.

    Attributes:
        name: Datum name (e.g. "D_MARS")
        spheroid_name: Name of the reference body / spheroid
        meridian_name: Name of the reference meridian
        semi_major_axis: Equatorial radius in meters
        semi_minor_axis: Polar radius in meters
        meridian_offset: Longitude of the reference meridian in degrees
    """
    name: str
    spheroid_name: str
    meridian_name: str
    semi_major_axis: float
    semi_minor_axis: float
    meridian_offset: float = 0.0

    @property
    def flattening(self) -> float:
        return (self.semi_major_axis - self.semi_minor_axis) / self.semi_major_axis

    @property
    def is_sphere(self) -> bool:
        return self.semi_major_axis == self.semi_minor_axis

    def proj_params(self) -> Dict[str, float]:
        """PROJ ellipsoid parameters for this datum."""
        params = {"a": self.semi_major_axis, "b": self.semi_minor_axis}
        if self.meridian_offset:
            params["pm"] = self.meridian_offset
        return params


WGS84 = Datum(
    name="WGS_1984",
    spheroid_name="WGS 84",
    meridian_name="Greenwich",
    semi_major_axis=WGS84_A,
    semi_minor_axis=WGS84_B,
)


class DatumPreset(Enum):
    """Hard coded spherical reference bodies."""
    MARS = "mars"
    MOON = "moon"

    @property
    def datum(self) -> Datum:
        if self is DatumPreset.MARS:
            return Datum(
                "D_MARS", "MARS", "Reference Meridian",
                MOLA_PEDR_EQUATORIAL_RADIUS, MOLA_PEDR_EQUATORIAL_RADIUS,
            )
        return Datum(
            "D_MOON", "MOON", "Reference Meridian",
            LUNAR_RADIUS, LUNAR_RADIUS,
        )

    @classmethod
    def parse(cls, name: str) -> "DatumPreset":
        try:
            return cls(name.strip().lower())
        except ValueError:
            options = ", ".join(p.value for p in cls)
            raise ConfigurationError(
                f"Unknown reference spheroid: {name!r}. Current options are [ {options} ]"
            ) from None


def resolve_datum(
    reference_spheroid: Optional[str] = None,
    semi_major_axis: Optional[float] = None,
    semi_minor_axis: Optional[float] = None,
) -> Optional[Datum]:
    """
    Select the datum for this run.

    A preset takes precedence over explicit axes. Explicit axes must come
    as a pair with semi-major >= semi-minor > 0.

    Args:
        reference_spheroid: Preset keyword ("mars" or "moon"), case-insensitive
        semi_major_axis: Equatorial radius in meters
        semi_minor_axis: Polar radius in meters

    Returns:
        The resolved Datum, or None when no override was requested

    Raises:
        ConfigurationError: unknown preset or invalid axes
    """
    has_axes = semi_major_axis is not None or semi_minor_axis is not None

    if reference_spheroid:
        preset = DatumPreset.parse(reference_spheroid)
        if has_axes:
            logger.warning(
                f"Reference spheroid '{preset.value}' overrides the supplied datum axes"
            )
        datum = preset.datum
        logger.info(
            f"Re-referencing altitude values using spherical {preset.value} radius: "
            f"{datum.semi_major_axis}"
        )
        return datum

    if not has_axes:
        return None

    if semi_major_axis is None or semi_minor_axis is None:
        raise ConfigurationError(
            "Both --semi-major-axis and --semi-minor-axis must be given to define a datum"
        )
    if not semi_major_axis >= semi_minor_axis > 0:
        raise ConfigurationError(
            f"Invalid datum axes: semi-major {semi_major_axis}, semi-minor {semi_minor_axis} "
            "(need semi-major >= semi-minor > 0)"
        )

    logger.info(
        f"Re-referencing altitude values to user supplied datum. "
        f"Semi-major: {semi_major_axis}  Semi-minor: {semi_minor_axis}"
    )
    return Datum(
        "User Specified Datum",
        "User Specified Spheroid",
        "Reference Meridian",
        float(semi_major_axis),
        float(semi_minor_axis),
    )
