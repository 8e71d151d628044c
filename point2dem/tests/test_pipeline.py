"""
End-to-end tests for run_pipeline.
"""

import numpy as np
import pytest
import rasterio
from numpy.testing import assert_allclose
from pyproj import CRS

from conftest import COLS, ROWS, plane_z
from point2dem.config import Config
from point2dem.errors import ConfigurationError, DataError, EmptyPointCloudError
from point2dem.pipeline import run_pipeline


def make_config(point_cloud, prefix, **raster):
    config = Config()
    config.input.point_cloud = str(point_cloud)
    config.output.prefix = str(prefix)
    config.raster.spacing = 1.0
    for name, value in raster.items():
        setattr(config.raster, name, value)
    return config


def outputs(directory):
    """Run products in directory, ignoring inputs and GDAL side-car files."""
    return sorted(p.name for p in directory.iterdir()
                  if p.suffix != ".npy" and not p.name.endswith(".aux.xml"))


class TestDEM:
    """Tests for DEM generation."""

    def test_dem_written(self, tmp_path, plane_file):
        bundle = run_pipeline(make_config(plane_file, tmp_path / "out"))

        assert bundle.ok
        assert outputs(tmp_path) == ["out-DEM.tif"]
        with rasterio.open(bundle.dem) as src:
            assert (src.height, src.width) == (ROWS, COLS)
            assert src.dtypes[0] == "float32"
            assert tuple(src.transform)[:6] == (1.0, 0.0, 0.0, 0.0, -1.0, ROWS - 1)
            dem = src.read(1)
        assert dem[4, 3] == pytest.approx(plane_z(3.0, ROWS - 1 - 4), abs=1e-4)

    def test_planar_mercator_crs(self, tmp_path, plane_file):
        bundle = run_pipeline(make_config(plane_file, tmp_path / "out"))

        with rasterio.open(bundle.dem) as src:
            assert "Mercator" in src.crs.to_wkt()

    def test_alpha_and_normalized(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out", use_alpha=True)
        config.output.normalized = True

        bundle = run_pipeline(config)

        assert outputs(tmp_path) == ["out-DEM-normalized.tif", "out-DEM.tif"]
        with rasterio.open(bundle.normalized) as src:
            assert src.dtypes[0] == "uint8"
            norm = src.read(1)
            mask = src.read_masks(1)
        # (0, 0) is outside the samples: transparent
        assert mask[ROWS - 1, 0] == 0
        assert mask[4, 4] == 255
        assert norm[mask > 0].min() == 0
        assert norm[mask > 0].max() == 255

    def test_offset_files(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out")
        config.output.offset_files = True

        bundle = run_pipeline(config)

        assert len(bundle.offsets) == 2
        assert (tmp_path / "out-DRG.offset").read_text() == f"0\n-{ROWS - 1}\n"

    def test_auto_spacing(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out", spacing=0.0)
        bundle = run_pipeline(config)

        with rasterio.open(bundle.dem) as src:
            assert src.transform.a > 0
            assert src.transform.a == -src.transform.e

    def test_z_offset(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out")
        config.transform.z_offset = 100.0

        bundle = run_pipeline(config)

        with rasterio.open(bundle.dem) as src:
            dem = src.read(1)
        assert dem[4, 3] == pytest.approx(plane_z(3.0, ROWS - 1 - 4) + 100.0, abs=1e-4)

    def test_non_finite_cell_ignored(self, tmp_path, plane_points):
        plane_points[3, 3] = np.nan
        path = tmp_path / "nan-PC.npy"
        np.save(path, plane_points)

        bundle = run_pipeline(make_config(path, tmp_path / "out"))

        with rasterio.open(bundle.dem) as src:
            assert (src.height, src.width) == (ROWS, COLS)
            dem = src.read(1)
        assert np.all(np.isfinite(dem))
        assert dem[ROWS - 1 - 3, 3] == pytest.approx(plane_z(3.0, 3.0), abs=1e-4)


class TestOrthoimage:
    """Tests for orthoimage (DRG) generation."""

    def test_only_drg_written(self, tmp_path, plane_file, texture_file):
        config = make_config(plane_file, tmp_path / "out", default_value=0.0)
        config.output.orthoimage = True
        config.input.texture = str(texture_file)

        bundle = run_pipeline(config)

        assert bundle.ok
        assert outputs(tmp_path) == ["out-DRG.tif"]
        with rasterio.open(bundle.drg) as src:
            assert src.dtypes[0] == "uint8"
            drg = src.read(1)
            mask = src.read_masks(1)
        assert mask[ROWS - 1, 0] == 0
        assert drg[ROWS - 1, 0] == 0
        # the texture ramps left to right
        assert drg[4, 1] < drg[4, COLS - 2]

    def test_minimum_elevation_never_used(self, tmp_path, plane_file, texture_file):
        config = make_config(plane_file, tmp_path / "out")
        assert config.raster.default_value is None
        config.output.orthoimage = True
        config.input.texture = str(texture_file)

        bundle = run_pipeline(config)

        assert outputs(tmp_path) == ["out-DRG.tif"]
        with rasterio.open(bundle.drg) as src:
            drg = src.read(1)
            mask = src.read_masks(1)
        # a minimum-elevation fill (about 5.1) would saturate to 255
        assert mask[ROWS - 1, 0] == 0
        assert drg[ROWS - 1, 0] == 0

    def test_texture_required(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out")
        config.output.orthoimage = True

        with pytest.raises(ConfigurationError):
            run_pipeline(config)


class TestFailures:
    """Tests for runs that must not write anything."""

    def test_all_invalid_cloud(self, tmp_path):
        path = tmp_path / "empty.npy"
        np.save(path, np.zeros((5, 5, 3)))

        with pytest.raises(EmptyPointCloudError):
            run_pipeline(make_config(path, tmp_path / "out"))
        assert outputs(tmp_path) == []

    def test_collinear_cloud(self, tmp_path):
        points = np.zeros((1, 4, 3))
        points[0, :, 0] = np.arange(1.0, 5.0)
        points[0, :, 1] = np.arange(1.0, 5.0)
        points[0, :, 2] = 3.0
        path = tmp_path / "line.npy"
        np.save(path, points)

        with pytest.raises(DataError):
            run_pipeline(make_config(path, tmp_path / "out"))
        assert outputs(tmp_path) == []

    def test_unknown_spheroid(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out")
        config.datum.reference_spheroid = "europa"

        with pytest.raises(ConfigurationError):
            run_pipeline(config)
        assert outputs(tmp_path) == []

    def test_unsupported_filetype_before_reading(self, tmp_path):
        config = make_config(tmp_path / "does-not-exist.npy", tmp_path / "out")
        config.output.filetype = "png"

        with pytest.raises(ConfigurationError):
            run_pipeline(config)

    def test_unknown_projection(self, tmp_path, plane_file):
        config = make_config(plane_file, tmp_path / "out")
        config.projection.kinds = ["polyconic"]

        with pytest.raises(ConfigurationError):
            run_pipeline(config)


class TestGeodetic:
    """Tests for Cartesian to lon/lat runs."""

    @pytest.fixture
    def mars_patch(self, tmp_path):
        R = 3396000.0
        lon, lat = np.meshgrid(np.radians(np.linspace(10.0, 10.5, 8)),
                               np.radians(np.linspace(5.5, 5.0, 6)))
        r = R + 200.0
        points = np.dstack([r * np.cos(lat) * np.cos(lon),
                            r * np.cos(lat) * np.sin(lon),
                            r * np.sin(lat)])
        path = tmp_path / "mars-PC.npy"
        np.save(path, points)
        return path

    def test_geographic_default(self, tmp_path, mars_patch):
        config = make_config(mars_patch, tmp_path / "out", spacing=0.1)
        config.transform.xyz_to_lonlat = True
        config.datum.reference_spheroid = "mars"

        bundle = run_pipeline(config)

        with rasterio.open(bundle.dem) as src:
            assert src.crs.is_geographic
            assert_allclose(src.transform.c, 10.0, atol=1e-9)
            assert_allclose(src.transform.f, 5.5, atol=1e-9)
            dem = src.read(1)
        assert_allclose(dem, 200.0, atol=1e-3)

    def test_no_datum_heights_above_wgs84(self, tmp_path):
        a, b = 6378137.0, 6356752.314245179
        lon, lat = np.meshgrid(np.radians(np.linspace(6.0, 6.5, 8)),
                               np.radians(np.linspace(46.5, 46.0, 6)))
        # geodetic to geocentric on WGS84, 200 m above the ellipsoid
        e2 = 1.0 - (b / a) ** 2
        n = a / np.sqrt(1.0 - e2 * np.sin(lat) ** 2)
        h = 200.0
        points = np.dstack([(n + h) * np.cos(lat) * np.cos(lon),
                            (n + h) * np.cos(lat) * np.sin(lon),
                            (n * (1.0 - e2) + h) * np.sin(lat)])
        path = tmp_path / "earth-PC.npy"
        np.save(path, points)
        config = make_config(path, tmp_path / "out", spacing=0.1)
        config.transform.xyz_to_lonlat = True

        bundle = run_pipeline(config)

        with rasterio.open(bundle.dem) as src:
            assert src.crs.is_geographic
            crs = CRS.from_wkt(src.crs.to_wkt())
            assert_allclose(src.transform.c, 6.0, atol=1e-6)
            assert_allclose(src.transform.f, 46.5, atol=1e-6)
            dem = src.read(1)
        assert_allclose(dem, 200.0, atol=1e-2)
        assert crs.ellipsoid.semi_major_metre == pytest.approx(a)
        assert crs.ellipsoid.semi_minor_metre == pytest.approx(b)

    def test_sinusoidal(self, tmp_path, mars_patch):
        config = make_config(mars_patch, tmp_path / "out", spacing=500.0)
        config.transform.xyz_to_lonlat = True
        config.datum.reference_spheroid = "mars"
        config.projection.kinds = ["sinusoidal"]

        bundle = run_pipeline(config)

        with rasterio.open(bundle.dem) as src:
            assert src.crs.is_projected
            assert src.transform.a == 500.0
