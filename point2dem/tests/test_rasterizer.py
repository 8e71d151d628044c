"""
Tests for the Delaunay rasterizer.

These tests verify:
    - Bounding box and grid geometry from valid samples only
    - Deterministic automatic spacing
    - Linear interpolation of a plane
    - Default value and alpha policies for posts without data
    - Rejection of empty and degenerate clouds
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from conftest import COLS, ROWS, plane_z
from point2dem.errors import DataError, EmptyPointCloudError
from point2dem.pointcloud import PointCloud
from point2dem.rasterizer import OrthoRasterizer


def collect(rasterizer, block_rows=4):
    values, valid = [], []
    for _, block, mask in rasterizer.iter_blocks(block_rows):
        values.append(block)
        valid.append(mask)
    return np.vstack(values), np.vstack(valid)


class TestGeometry:
    """Tests for bounding box, spacing and grid size."""

    def test_bounding_box_ignores_sentinels(self, plane_cloud):
        bbox = OrthoRasterizer(plane_cloud).bounding_box()

        assert (bbox.min_x, bbox.max_x) == (0.0, COLS - 1)
        assert (bbox.min_y, bbox.max_y) == (0.0, ROWS - 1)
        # (0, 0) carries the sentinel, so the lowest sample is (1, 0)
        assert bbox.min_z == pytest.approx(plane_z(1.0, 0.0))
        assert bbox.max_z == pytest.approx(plane_z(COLS - 1, ROWS - 1))

    def test_explicit_spacing_grid(self, plane_cloud):
        rasterizer = OrthoRasterizer(plane_cloud, spacing=1.0)
        assert (rasterizer.rows, rasterizer.cols) == (ROWS, COLS)

        rasterizer = OrthoRasterizer(plane_cloud, spacing=2.0)
        assert (rasterizer.rows, rasterizer.cols) == (5, 6)

    def test_auto_spacing_positive_and_deterministic(self, plane_cloud):
        first = OrthoRasterizer(plane_cloud, spacing=0.0).spacing
        second = OrthoRasterizer(plane_cloud, spacing=0.0).spacing

        assert first > 0
        assert first == second
        assert first == pytest.approx(np.sqrt((COLS - 1) * (ROWS - 1) / plane_cloud.num_valid))

    def test_geo_transform(self, plane_cloud):
        transform = OrthoRasterizer(plane_cloud, spacing=0.5).geo_transform()

        assert tuple(transform)[:6] == (0.5, 0.0, 0.0, 0.0, -0.5, ROWS - 1)

    def test_negative_spacing(self, plane_cloud):
        with pytest.raises(DataError):
            OrthoRasterizer(plane_cloud, spacing=-1.0)


class TestInvalidClouds:
    """Tests for clouds that cannot be rasterized."""

    def test_all_sentinel(self):
        cloud = PointCloud.from_array(np.zeros((4, 4, 3)))
        with pytest.raises(EmptyPointCloudError):
            OrthoRasterizer(cloud).bounding_box()

    def test_zero_extent(self):
        points = np.zeros((1, 3, 3))
        points[0, :, 0] = 1.0
        points[0, :, 1] = [1.0, 2.0, 3.0]
        with pytest.raises(DataError):
            OrthoRasterizer(PointCloud.from_array(points)).bounding_box()

    def test_collinear_samples(self):
        points = np.zeros((1, 3, 3))
        points[0, :, 0] = [1.0, 2.0, 3.0]
        points[0, :, 1] = [1.0, 2.0, 3.0]
        points[0, :, 2] = 10.0
        with pytest.raises(DataError):
            OrthoRasterizer(PointCloud.from_array(points)).prepare()

    def test_bad_shape(self):
        with pytest.raises(DataError):
            PointCloud.from_array(np.zeros((4, 4)))


class TestInterpolation:
    """Tests for the rasterized values."""

    @pytest.fixture
    def rasterizer(self, plane_cloud):
        return OrthoRasterizer(plane_cloud, spacing=1.0)

    def test_plane_reproduced(self, rasterizer):
        values, valid = collect(rasterizer)

        rows, cols = np.mgrid[1:ROWS - 1, 1:COLS - 1]
        expected = plane_z(cols.astype(float), (ROWS - 1 - rows).astype(float))
        assert valid[1:-1, 1:-1].all()
        assert_allclose(values[1:-1, 1:-1], expected, atol=1e-9)

    def test_block_size_does_not_change_result(self, rasterizer):
        small, _ = collect(rasterizer, block_rows=3)
        large, _ = collect(rasterizer, block_rows=100)
        assert_allclose(small, large)

    def test_min_z_default(self, rasterizer):
        values, valid = collect(rasterizer)

        # post (row 9, col 0) sits at (0, 0), outside the hull of the samples
        assert not valid[ROWS - 1, 0]
        assert values[ROWS - 1, 0] == pytest.approx(rasterizer.bounding_box().min_z)

    def test_explicit_default(self, rasterizer):
        rasterizer.set_use_minz_as_default(False)
        rasterizer.set_default_value(-9999.0)
        values, _ = collect(rasterizer)

        assert values[ROWS - 1, 0] == -9999.0

    def test_max_edge_length_opens_hole(self, plane_cloud):
        rasterizer = OrthoRasterizer(plane_cloud, spacing=1.0, max_edge_length=1.5)
        _, valid = collect(rasterizer)

        # post at (5, 5) lies over the missing sample
        assert not valid[ROWS - 1 - 5, 5]
        assert valid[ROWS - 1 - 2, 2]

    def test_texture(self, plane_cloud):
        texture = np.tile(np.linspace(0.0, 1.0, COLS, dtype=np.float32), (ROWS, 1))
        rasterizer = OrthoRasterizer(plane_cloud, spacing=1.0)
        rasterizer.set_texture(texture)
        values, valid = collect(rasterizer)

        assert_allclose(values[4, 1:-1], np.linspace(0.0, 1.0, COLS)[1:-1], atol=1e-6)

    def test_texture_footprint_mismatch(self, plane_cloud):
        rasterizer = OrthoRasterizer(plane_cloud)
        with pytest.raises(DataError):
            rasterizer.set_texture(np.zeros((ROWS + 1, COLS)))
