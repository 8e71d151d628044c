"""
Output writer: georeferenced rasters and offset files.

Rasters are written block by block through rasterio, using the CRS and
affine transform of a complete GeoReference. Alpha is stored as the GDAL
dataset mask. Each artifact is independent: a failure on one is reported
to the caller and does not touch the others.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union
import logging

import numpy as np
import rasterio
from rasterio.enums import MaskFlags
from rasterio.errors import RasterioError
from rasterio.windows import Window
from tqdm import tqdm

from .errors import ConfigurationError, OutputError
from .projection import GeoReference
from .rasterizer import BoundingBox

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Output extension → GDAL driver
DRIVERS = {
    "tif": "GTiff",
    "tiff": "GTiff",
    "img": "HFA",
    "kea": "KEA",
}

# (row0, data, valid) where data is (rows, cols) or (bands, rows, cols)
Block = Tuple[int, np.ndarray, Optional[np.ndarray]]


def driver_for(filetype: str) -> str:
    """GDAL driver for an output file extension."""
    try:
        return DRIVERS[filetype.lower().lstrip(".")]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported output filetype {filetype!r}; choose one of {sorted(DRIVERS)}"
        ) from None


def normalize(values: np.ndarray, valid: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Linear stretch of values to [0, 1] using the range of the valid pixels.

    A constant image maps to zeros.
    """
    values = values.astype(np.float64)
    sample = values[valid] if valid is not None else values.ravel()
    sample = sample[np.isfinite(sample)]
    if sample.size == 0:
        return np.zeros_like(values)
    lo, hi = float(sample.min()), float(sample.max())
    if hi <= lo:
        return np.zeros_like(values)
    return np.clip((values - lo) / (hi - lo), 0.0, 1.0)


def rescale_to_uint8(values: np.ndarray) -> np.ndarray:
    """Map [0, 1] floats to the full 8-bit range."""
    return (np.clip(np.nan_to_num(values), 0.0, 1.0) * 255.0).astype(np.uint8)


def write_georeferenced_image(
    path: PathLike,
    blocks: Iterable[Block],
    georef: GeoReference,
    shape: Tuple[int, int],
    dtype: str = "float32",
    count: int = 1,
    alpha: bool = False,
    nodata: Optional[float] = None,
) -> Path:
    """
    Write a georeferenced raster from row blocks.

    Args:
        path: Output file; the driver follows its extension
        blocks: Iterable of (row0, data, valid) strips
        georef: Complete georeference supplying CRS and transform
        shape: (rows, cols) of the raster
        dtype: Output data type
        count: Number of bands
        alpha: Write the per-block valid arrays as the dataset mask
        nodata: Optional nodata value

    Returns:
        Path of the written file

    Raises:
        OutputError: if the file cannot be created or written
    """
    path = Path(path)
    rows, cols = shape
    profile = dict(
        driver=driver_for(path.suffix),
        height=rows, width=cols, count=count,
        dtype=dtype, crs=georef.crs.to_wkt(),
        transform=georef.transform, nodata=nodata,
    )
    if profile["driver"] == "GTiff":
        profile.update(compress="deflate")
        if rows >= 256 and cols >= 256:
            profile.update(tiled=True, blockxsize=256, blockysize=256)

    try:
        with rasterio.Env(GDAL_TIFF_INTERNAL_MASK=True):
            with rasterio.open(path, "w", **profile) as dst:
                with tqdm(total=rows, desc=f"Writing {path.name}", unit="row") as bar:
                    for row0, data, valid in blocks:
                        data = np.asarray(data)
                        if data.ndim == 2:
                            data = data[None, ...]
                        n = data.shape[1]
                        window = Window(0, row0, cols, n)
                        dst.write(data.astype(dtype), window=window)
                        if alpha and valid is not None:
                            dst.write_mask(np.where(valid, 255, 0).astype(np.uint8),
                                           window=window)
                        bar.update(n)
    except (RasterioError, OSError) as e:
        raise OutputError(f"Could not write {path}: {e}") from e

    logger.info(f"Wrote {path} ({cols} x {rows}, {dtype}{', alpha' if alpha else ''})")
    return path


def read_raster(path: PathLike) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Read band 1 of a raster and its mask (None when the mask is all-valid)."""
    try:
        with rasterio.open(path) as src:
            data = src.read(1)
            flags = src.mask_flag_enums[0]
            valid = None
            if MaskFlags.all_valid not in flags:
                valid = src.read_masks(1) > 0
    except (RasterioError, OSError) as e:
        raise OutputError(f"Could not re-read {path}: {e}") from e
    return data, valid


def offset_values(bbox: BoundingBox, spacing: float) -> Tuple[int, int]:
    """Horizontal and (negated) vertical post offset of the raster origin."""
    return int(bbox.min_x / spacing), -int(bbox.max_y / spacing)


def write_offset_files(prefix: PathLike, bbox: BoundingBox, spacing: float
                       ) -> Tuple[List[Path], List[str]]:
    """
    Write <prefix>-DRG.offset and <prefix>-DEM-normalized.offset.

    Each holds two integer lines. A file that cannot be opened is logged
    and reported, not raised.

    Returns:
        (written paths, error messages)
    """
    dx, dy = offset_values(bbox, spacing)
    logger.info(f"Offset: {bbox.min_x / spacing}   {bbox.max_y / spacing}")

    written, errors = [], []
    for suffix in ("-DRG.offset", "-DEM-normalized.offset"):
        path = Path(f"{prefix}{suffix}")
        try:
            with open(path, "w") as f:
                f.write(f"{dx}\n{dy}\n")
        except OSError as e:
            msg = f"Could not write offset file {path}: {e}"
            logger.error(msg)
            errors.append(msg)
            continue
        written.append(path)
    return written, errors
