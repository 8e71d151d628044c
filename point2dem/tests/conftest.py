"""Shared fixtures: small synthetic point clouds on disk and in memory."""

import numpy as np
import pytest

from point2dem.pointcloud import PointCloud

ROWS, COLS = 10, 12


def plane_z(x, y):
    return 0.1 * x + 0.2 * y + 5.0


def make_plane_points() -> np.ndarray:
    """
    12 x 10 grid of points on z = 0.1 x + 0.2 y + 5 at unit spacing.

    Source cell (r, c) holds the point (c, r). Cells (0, 0) and (5, 5)
    carry the zero-vector sentinel.
    """
    ys, xs = np.mgrid[0:ROWS, 0:COLS].astype(np.float64)
    points = np.dstack([xs, ys, plane_z(xs, ys)])
    points[0, 0] = 0.0
    points[5, 5] = 0.0
    return points


@pytest.fixture
def plane_points():
    return make_plane_points()


@pytest.fixture
def plane_cloud(plane_points):
    return PointCloud.from_array(plane_points)


@pytest.fixture
def plane_file(tmp_path, plane_points):
    path = tmp_path / "plane-PC.npy"
    np.save(path, plane_points)
    return path


@pytest.fixture
def texture_file(tmp_path):
    """uint8 texture with a left-to-right ramp on the plane footprint."""
    texture = np.tile(np.linspace(0, 250, COLS).astype(np.uint8), (ROWS, 1))
    path = tmp_path / "plane-L.npy"
    np.save(path, texture)
    return path
