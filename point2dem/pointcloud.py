"""
Point cloud container and loaders.

A point cloud is a dense raster of 3-vectors, one per source pixel. The
zero vector marks a cell without a 3-D sample. Validity is captured once,
when the cloud is read, and carried alongside the coordinates from then
on: stages only ever map valid cells and may drop validity, never grant it.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
import logging

import numpy as np
import rasterio

from .errors import DataError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class PointCloud:
    """
    Point raster with its validity mask.

    Attributes:
        points: (rows, cols, 3) float64 coordinates; invalid cells hold zeros
        valid: (rows, cols) bool mask of cells carrying a 3-D sample
    """
    points: np.ndarray
    valid: np.ndarray

    @classmethod
    def from_array(cls, points: np.ndarray) -> "PointCloud":
        """Wrap a (rows, cols, 3) array, treating all-zero or non-finite cells as no data."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 3 or points.shape[2] != 3:
            raise DataError(
                f"Point cloud must have shape (rows, cols, 3), got {points.shape}"
            )
        valid = np.any(points != 0.0, axis=2) & np.all(np.isfinite(points), axis=2)
        return cls(np.where(valid[..., None], points, 0.0), valid)

    @property
    def shape(self):
        return self.valid.shape

    @property
    def num_valid(self) -> int:
        return int(np.count_nonzero(self.valid))

    def valid_points(self) -> np.ndarray:
        """(N, 3) coordinates of the valid cells, in row-major order."""
        return self.points[self.valid]

    def map(self, func: Callable[[np.ndarray], np.ndarray]) -> "PointCloud":
        """
        Apply func to the valid points and return a new cloud.

        func receives an (N, 3) array and must return an (N, 3) array. Rows
        coming back non-finite are marked invalid. Invalid cells are never
        passed to func and stay the zero vector.
        """
        mapped = np.asarray(func(self.valid_points()), dtype=np.float64)
        if mapped.shape != (self.num_valid, 3):
            raise DataError(
                f"Point mapping returned shape {mapped.shape}, expected ({self.num_valid}, 3)"
            )

        finite = np.all(np.isfinite(mapped), axis=1)
        if not np.all(finite):
            logger.debug(f"{np.count_nonzero(~finite)} points became non-finite and are dropped")

        valid = self.valid.copy()
        valid[self.valid] = finite
        points = np.zeros_like(self.points)
        points[valid] = mapped[finite]
        return PointCloud(points, valid)


def _read_array(path: Path) -> np.ndarray:
    """Read a raster as (rows, cols, bands), or a .npy array as stored."""
    if path.suffix.lower() == ".npy":
        return np.load(path)
    with rasterio.open(path) as src:
        return np.moveaxis(src.read(), 0, -1)


def load_point_cloud(path: PathLike) -> PointCloud:
    """
    Load a point cloud from a .npy array or a 3-band raster.

    Args:
        path: File holding (rows, cols, 3) coordinates

    Returns:
        PointCloud with validity derived from the zero-vector sentinel
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud not found: {path}")

    cloud = PointCloud.from_array(_read_array(path))
    rows, cols = cloud.shape
    logger.info(
        f"Loaded point cloud {path.name}: {cols} x {rows}, {cloud.num_valid} valid points"
    )
    return cloud


def load_texture(path: PathLike, shape: Optional[tuple] = None) -> np.ndarray:
    """
    Load a single-band texture as float32 in [0, 1].

    Integer textures are scaled by the maximum of their dtype; float
    textures are assumed to already be in [0, 1].

    Args:
        path: Grayscale raster or .npy array
        shape: Expected (rows, cols) footprint, usually the point cloud's

    Raises:
        DataError: if the texture is not single-band or the footprint differs
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Texture not found: {path}")

    data = _read_array(path)
    if data.ndim == 3:
        if data.shape[2] != 1:
            raise DataError(f"Texture must be single band, {path.name} has {data.shape[2]}")
        data = data[..., 0]
    if data.ndim != 2:
        raise DataError(f"Texture must be a 2-D raster, got shape {data.shape}")
    if shape is not None and data.shape != tuple(shape):
        raise DataError(
            f"Texture footprint {data.shape} does not match point cloud footprint {tuple(shape)}"
        )

    if np.issubdtype(data.dtype, np.integer):
        texture = data.astype(np.float32) / np.iinfo(data.dtype).max
    else:
        texture = np.clip(np.nan_to_num(data.astype(np.float32)), 0.0, 1.0)
    logger.debug(f"Loaded texture {path.name}: {data.shape[1]} x {data.shape[0]} ({data.dtype})")
    return texture
