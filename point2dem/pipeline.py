"""
End-to-end DEM / orthoimage generation.

run_pipeline() drives the stages in a fixed order:

    resolve datum → geometric transform → georeference configuration
    → load points → transform → reproject → rasterize → write outputs

All configuration is validated before the point cloud is read, and all
data errors surface before the first file is created.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

from .config import Config
from .datum import resolve_datum
from .errors import ConfigurationError, OutputError
from .pointcloud import load_point_cloud, load_texture
from .projection import GeoReference, ProjectionKind, configure_georeference, reproject
from .rasterizer import OrthoRasterizer, Rasterizer
from .transforms import GeometricTransform
from .writer import (
    driver_for,
    normalize,
    read_raster,
    rescale_to_uint8,
    write_georeferenced_image,
    write_offset_files,
)

logger = logging.getLogger(__name__)


@dataclass
class OutputBundle:
    """Files produced by a run and the per-artifact failures."""
    dem: Optional[Path] = None
    normalized: Optional[Path] = None
    drg: Optional[Path] = None
    offsets: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def written(self) -> List[Path]:
        paths = [p for p in (self.dem, self.normalized, self.drg) if p is not None]
        return paths + list(self.offsets)


def _projection_kinds(names) -> List[ProjectionKind]:
    kinds = []
    for name in names:
        try:
            kinds.append(ProjectionKind(str(name).lower().replace("_", "-")))
        except ValueError:
            options = ", ".join(k.value for k in ProjectionKind)
            raise ConfigurationError(
                f"Unknown projection {name!r}; choose from [ {options} ]"
            ) from None
    return kinds


def _write_dem(rasterizer: Rasterizer, georef: GeoReference, prefix: str,
               config: Config, bundle: OutputBundle) -> None:
    shape = (rasterizer.rows, rasterizer.cols)
    dem_path = Path(f"{prefix}-DEM.{config.output.filetype}")
    try:
        bundle.dem = write_georeferenced_image(
            dem_path,
            rasterizer.iter_blocks(config.raster.block_rows),
            georef,
            shape,
            dtype="float32",
            alpha=rasterizer.use_alpha,
        )
    except OutputError as e:
        logger.error(str(e))
        bundle.errors.append(str(e))
        return

    if not config.output.normalized:
        return

    norm_path = Path(f"{prefix}-DEM-normalized.tif")
    try:
        values, valid = read_raster(bundle.dem)
        stretched = rescale_to_uint8(normalize(values, valid))
        bundle.normalized = write_georeferenced_image(
            norm_path,
            [(0, stretched, valid)],
            georef,
            shape,
            dtype="uint8",
            alpha=valid is not None,
        )
    except OutputError as e:
        logger.error(str(e))
        bundle.errors.append(str(e))


def _write_drg(rasterizer: Rasterizer, georef: GeoReference, prefix: str,
               config: Config, bundle: OutputBundle) -> None:
    drg_path = Path(f"{prefix}-DRG.tif")

    def blocks():
        for row0, values, valid in rasterizer.iter_blocks(config.raster.block_rows):
            yield row0, rescale_to_uint8(values), valid

    try:
        bundle.drg = write_georeferenced_image(
            drg_path,
            blocks(),
            georef,
            (rasterizer.rows, rasterizer.cols),
            dtype="uint8",
            alpha=True,
        )
    except OutputError as e:
        logger.error(str(e))
        bundle.errors.append(str(e))


def run_pipeline(config: Config) -> OutputBundle:
    """
    Generate a DEM (or an orthoimage) from a point cloud.

    Args:
        config: Run configuration; input.point_cloud must be set

    Returns:
        OutputBundle listing the written files and any per-artifact errors

    Raises:
        ConfigurationError: invalid parameters, detected before any file is read
        DataError: unusable point cloud or texture, raised before any file is written
        FileNotFoundError: missing input
    """
    if not config.input.point_cloud:
        raise ConfigurationError("No point cloud file given")
    if config.output.orthoimage and not config.input.texture:
        raise ConfigurationError("Orthoimage mode requires a texture file")
    driver_for(config.output.filetype)

    datum = resolve_datum(
        config.datum.reference_spheroid,
        config.datum.semi_major_axis,
        config.datum.semi_minor_axis,
    )
    transform = GeometricTransform.from_parameters(
        phi=config.transform.phi,
        omega=config.transform.omega,
        kappa=config.transform.kappa,
        rotation_order=config.transform.rotation_order,
        z_offset=config.transform.z_offset,
        xyz_to_lonlat=config.transform.xyz_to_lonlat,
        datum=datum,
    )
    builder = configure_georeference(
        datum,
        _projection_kinds(config.projection.kinds),
        geodetic=transform.is_geodetic,
        center_lon=config.projection.center_lon,
        center_lat=config.projection.center_lat,
        scale=config.projection.scale,
        utm_zone=config.projection.utm_zone,
        utm_south=config.projection.utm_south,
    )

    cloud = load_point_cloud(config.input.point_cloud)
    cloud = transform(cloud)
    if transform.is_geodetic:
        cloud = reproject(cloud, builder)

    rasterizer = OrthoRasterizer(
        cloud,
        channel=2,
        spacing=config.raster.spacing,
        max_edge_length=config.raster.max_edge_length,
    )
    if config.raster.default_value is None:
        rasterizer.set_use_minz_as_default(True)
    else:
        rasterizer.set_use_minz_as_default(False)
        rasterizer.set_default_value(config.raster.default_value)
    rasterizer.set_use_alpha(config.raster.use_alpha)

    bbox = rasterizer.bounding_box()
    rasterizer.prepare()
    georef = builder.finalize(rasterizer.geo_transform())
    logger.info(
        f"DEM grid: {rasterizer.cols} x {rasterizer.rows} posts at spacing {rasterizer.spacing:.6g}"
    )

    if config.output.orthoimage:
        rasterizer.set_use_minz_as_default(False)
        rasterizer.set_default_value(
            config.raster.default_value if config.raster.default_value is not None else 0.0
        )
        rasterizer.set_texture(load_texture(config.input.texture, cloud.shape))

    prefix = config.output.prefix
    Path(prefix).parent.mkdir(parents=True, exist_ok=True)
    bundle = OutputBundle()

    if config.output.orthoimage:
        _write_drg(rasterizer, georef, prefix, config, bundle)
    else:
        _write_dem(rasterizer, georef, prefix, config, bundle)

    if config.output.offset_files:
        written, errors = write_offset_files(prefix, bbox, rasterizer.spacing)
        bundle.offsets.extend(written)
        bundle.errors.extend(errors)

    for path in bundle.written:
        logger.info(f"  {path}")
    return bundle
