"""
point2dem: georeferenced DEMs and orthoimages from dense point clouds.

Example:
    from point2dem import Config, run_pipeline

    config = Config.from_yaml("run.yaml")
    bundle = run_pipeline(config)
"""

from .config import Config
from .datum import Datum, DatumPreset, resolve_datum
from .errors import (
    ConfigurationError,
    DataError,
    EmptyPointCloudError,
    GeoReferenceIncompleteError,
    OutputError,
    Point2DemError,
)
from .pipeline import OutputBundle, run_pipeline
from .pointcloud import PointCloud, load_point_cloud, load_texture
from .projection import GeoReference, GeoReferenceBuilder, Projection, ProjectionKind
from .rasterizer import BoundingBox, OrthoRasterizer, Rasterizer
from .transforms import GeometricTransform

__version__ = "0.1.0"
__all__ = [
    "Config",
    "Datum",
    "DatumPreset",
    "resolve_datum",
    "Point2DemError",
    "ConfigurationError",
    "DataError",
    "EmptyPointCloudError",
    "OutputError",
    "GeoReferenceIncompleteError",
    "OutputBundle",
    "run_pipeline",
    "PointCloud",
    "load_point_cloud",
    "load_texture",
    "GeoReference",
    "GeoReferenceBuilder",
    "Projection",
    "ProjectionKind",
    "BoundingBox",
    "OrthoRasterizer",
    "Rasterizer",
    "GeometricTransform",
]
