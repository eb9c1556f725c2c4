import numpy as np
import pytest

from pcaligner import PointCloud
from tests.utils import box_surface, grid_2d


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def grid_cloud():
    return PointCloud(grid_2d())


@pytest.fixture
def box_cloud():
    points, normals = box_surface()
    return PointCloud(points, features={'normals': normals})


@pytest.fixture
def random_cloud_3d(rng):
    points = rng.normal(size=(300, 3)) * np.array([2.0, 1.0, 0.5])
    return PointCloud(points)
