"""
Error taxonomy for DEM generation.

Configuration errors are raised before any point data is read, data
errors before any file is written, output errors per artifact.
"""


class Point2DemError(Exception):
    """Base exception for point2dem."""


class ConfigurationError(Point2DemError, ValueError):
    """Invalid or inconsistent run parameters."""


class DataError(Point2DemError, ValueError):
    """Input data cannot be turned into a raster."""


class EmptyPointCloudError(DataError):
    """Every cell of the point cloud is the no-data sentinel."""


class OutputError(Point2DemError, OSError):
    """An output artifact could not be written."""


class GeoReferenceIncompleteError(Point2DemError, RuntimeError):
    """Affine transform read before it was set, or set twice."""
