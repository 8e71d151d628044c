"""
Rasterization of a point cloud onto a regular grid.

Rasterizer is the contract the pipeline drives: it is handed a point
cloud, an elevation channel and a post spacing, reports the bounding box
and affine transform of the grid it will produce, accepts the default
value / alpha / texture policies, and yields the raster in row blocks.

OrthoRasterizer is the bundled implementation. It triangulates the valid
samples in the map plane (Delaunay) and interpolates linearly inside each
triangle:

    1.  Bounding box of the valid samples  →  grid extent.
    2.  Spacing 0  →  sqrt(area / n_valid), the mean sample spacing.
    3.  Post (row, col) sits at (min_x + col * s, max_y - row * s).
    4.  For each post, locate the containing triangle and blend the
        vertex values with barycentric weights.
    5.  Posts outside the triangulation (or in a dropped, over-long
        triangle) take the default value and are transparent in alpha.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple
import logging
import math

import numpy as np
from rasterio.transform import Affine
from scipy.spatial import Delaunay, QhullError

from .errors import DataError, EmptyPointCloudError
from .pointcloud import PointCloud

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_ROWS = 2048


@dataclass(frozen=True)
class BoundingBox:
    """3-D extent of the valid samples."""
    min_x: float
    min_y: float
    min_z: float
    max_x: float
    max_y: float
    max_z: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def __str__(self) -> str:
        return (f"({self.min_x:.6g}, {self.min_y:.6g}, {self.min_z:.6g}) -> "
                f"({self.max_x:.6g}, {self.max_y:.6g}, {self.max_z:.6g})")


class Rasterizer(ABC):
    """Interface the orchestration layer relies on."""

    def __init__(self, cloud: PointCloud, channel: int = 2, spacing: float = 0.0):
        if spacing < 0:
            raise DataError(f"Spacing must be >= 0, got {spacing}")
        self.cloud = cloud
        self.channel = channel
        self.requested_spacing = float(spacing)
        self.use_minz_as_default = True
        self.default_value = 0.0
        self.use_alpha = False
        self.texture: Optional[np.ndarray] = None

    # ── policies ───────────────────────────────────────────────────────
    def set_use_minz_as_default(self, enabled: bool) -> None:
        self.use_minz_as_default = bool(enabled)

    def set_default_value(self, value: float) -> None:
        self.default_value = float(value)

    def set_use_alpha(self, enabled: bool) -> None:
        self.use_alpha = bool(enabled)

    def set_texture(self, texture: Optional[np.ndarray]) -> None:
        if texture is not None and texture.shape != self.cloud.shape:
            raise DataError(
                f"Texture footprint {texture.shape} does not match point cloud {self.cloud.shape}"
            )
        self.texture = texture

    @property
    def fill_value(self) -> float:
        """Value given to posts with no data under the current policy."""
        if self.use_minz_as_default:
            return self.bounding_box().min_z
        return self.default_value

    # ── geometry ───────────────────────────────────────────────────────
    @abstractmethod
    def bounding_box(self) -> BoundingBox:
        ...

    @property
    @abstractmethod
    def spacing(self) -> float:
        ...

    @property
    @abstractmethod
    def rows(self) -> int:
        ...

    @property
    @abstractmethod
    def cols(self) -> int:
        ...

    def geo_transform(self) -> Affine:
        """Pixel (col, row) to map (x, y): origin at the top-left post."""
        bbox = self.bounding_box()
        s = self.spacing
        return Affine(s, 0.0, bbox.min_x, 0.0, -s, bbox.max_y)

    def prepare(self) -> None:
        """Do any work that can fail on bad data before output is opened."""
        self.bounding_box()

    @abstractmethod
    def iter_blocks(self, block_rows: int = DEFAULT_BLOCK_ROWS
                    ) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
        """Yield (row0, values, valid) strips covering the raster top to bottom."""


class OrthoRasterizer(Rasterizer):
    """Delaunay / barycentric rasterizer."""

    def __init__(self, cloud: PointCloud, channel: int = 2, spacing: float = 0.0,
                 max_edge_length: Optional[float] = None):
        super().__init__(cloud, channel, spacing)
        self.max_edge_length = max_edge_length
        self._bbox: Optional[BoundingBox] = None
        self._spacing: Optional[float] = None
        self._tri: Optional[Delaunay] = None
        self._usable: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    def bounding_box(self) -> BoundingBox:
        if self._bbox is not None:
            return self._bbox

        pts = self.cloud.valid_points()
        if pts.shape[0] == 0:
            raise EmptyPointCloudError("Point cloud contains no valid points")

        xy_min = pts[:, :2].min(axis=0)
        xy_max = pts[:, :2].max(axis=0)
        z = pts[:, self.channel]
        bbox = BoundingBox(float(xy_min[0]), float(xy_min[1]), float(z.min()),
                           float(xy_max[0]), float(xy_max[1]), float(z.max()))
        if not (bbox.width > 0 and bbox.height > 0):
            raise DataError(f"Point cloud has zero extent: {bbox}")

        self._bbox = bbox
        logger.info(f"DEM bounding box: {bbox}")
        return bbox

    @property
    def spacing(self) -> float:
        if self._spacing is None:
            if self.requested_spacing > 0:
                self._spacing = self.requested_spacing
            else:
                bbox = self.bounding_box()
                self._spacing = math.sqrt(bbox.width * bbox.height / self.cloud.num_valid)
                logger.info(f"Auto-computed DEM spacing: {self._spacing:.6g}")
        return self._spacing

    @property
    def cols(self) -> int:
        return int(math.floor(self.bounding_box().width / self.spacing)) + 1

    @property
    def rows(self) -> int:
        return int(math.floor(self.bounding_box().height / self.spacing)) + 1

    def prepare(self) -> None:
        super().prepare()
        self._triangulate()

    # ------------------------------------------------------------------
    def _triangulate(self) -> Delaunay:
        if self._tri is not None:
            return self._tri

        xy = self.cloud.valid_points()[:, :2]
        try:
            tri = Delaunay(xy)
        except QhullError as e:
            raise DataError(f"Point cloud cannot be triangulated: {e}") from e

        usable = np.ones(tri.nsimplex, dtype=bool)
        if self.max_edge_length:
            corners = xy[tri.simplices]                          # (M, 3, 2)
            edges = corners - np.roll(corners, 1, axis=1)
            longest = np.sqrt((edges ** 2).sum(axis=2)).max(axis=1)
            usable = longest <= self.max_edge_length
            logger.debug(f"Dropped {np.count_nonzero(~usable)} of {tri.nsimplex} triangles")

        self._tri = tri
        self._usable = usable
        logger.debug(f"Triangulated {xy.shape[0]} points into {tri.nsimplex} triangles")
        return tri

    def _sample_values(self) -> np.ndarray:
        if self.texture is not None:
            return self.texture[self.cloud.valid].astype(np.float64)
        return self.cloud.valid_points()[:, self.channel]

    def _interpolate(self, xy: np.ndarray, values: np.ndarray
                     ) -> Tuple[np.ndarray, np.ndarray]:
        """Barycentric interpolation at (N, 2) query points."""
        tri = self._triangulate()
        simplex = tri.find_simplex(xy)
        inside = simplex >= 0
        inside[inside] = self._usable[simplex[inside]]

        out = np.full(xy.shape[0], np.nan, dtype=np.float64)
        if np.any(inside):
            s = simplex[inside]
            T = tri.transform[s]                                  # (K, 3, 2)
            b = np.einsum("kij,kj->ki", T[:, :2], xy[inside] - T[:, 2])
            bary = np.column_stack([b, 1.0 - b.sum(axis=1)])
            out[inside] = np.einsum("kj,kj->k", values[tri.simplices[s]], bary)
        return out, inside

    def iter_blocks(self, block_rows: int = DEFAULT_BLOCK_ROWS):
        bbox = self.bounding_box()
        s = self.spacing
        rows, cols = self.rows, self.cols
        values = self._sample_values()
        fill = self.fill_value
        xs = bbox.min_x + np.arange(cols) * s

        for row0 in range(0, rows, block_rows):
            n = min(block_rows, rows - row0)
            ys = bbox.max_y - (row0 + np.arange(n)) * s
            gx, gy = np.meshgrid(xs, ys)
            block, valid = self._interpolate(np.column_stack([gx.ravel(), gy.ravel()]), values)
            block = np.where(valid, block, fill).reshape(n, cols)
            yield row0, block, valid.reshape(n, cols)
