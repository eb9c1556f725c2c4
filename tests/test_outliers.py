# test_outliers.py
import numpy as np
import pytest

from pcaligner import Matches, MissingFeatureError, PointCloud
from pcaligner.outliers import (HuberOutlierFilter, MaxDistOutlierFilter,
                                MedianDistOutlierFilter, NullOutlierFilter,
                                OutlierFilterChain, SurfaceNormalOutlierFilter,
                                TrimmedDistOutlierFilter, TukeyOutlierFilter)
from tests.utils import identity_matches

DISTANCES = np.arange(1.0, 11.0)


def matches_with(distances):
    return identity_matches(len(distances), distances)


def clouds(n):
    cloud = PointCloud(np.zeros((n, 3)))
    return cloud, cloud


def test_null_keeps_everything():
    weights = NullOutlierFilter().compute(*clouds(10), matches_with(DISTANCES))
    assert np.array_equal(weights, np.ones((10, 1)))


def test_trimmed_keeps_closest_fraction():
    weights = TrimmedDistOutlierFilter(ratio=0.5).compute(*clouds(10), matches_with(DISTANCES))
    assert weights.shape == (10, 1)
    assert np.array_equal(weights[:, 0], [1] * 5 + [0] * 5)


def test_trimmed_keeps_ties_at_cutoff():
    distances = np.array([1.0, 1.0, 1.0, 1.0])
    weights = TrimmedDistOutlierFilter(ratio=0.5).compute(*clouds(4), matches_with(distances))
    assert np.all(weights == 1.0)


def test_trimmed_rejects_bad_ratio():
    with pytest.raises(ValueError):
        TrimmedDistOutlierFilter(ratio=0.0)


def test_median_distance_threshold():
    weights = MedianDistOutlierFilter(factor=1.0).compute(*clouds(10), matches_with(DISTANCES))
    # median of 1..10 is 5.5
    assert np.array_equal(weights[:, 0], [1] * 5 + [0] * 5)


def test_fixed_distance_threshold():
    weights = MaxDistOutlierFilter(max_dist=3.0).compute(*clouds(10), matches_with(DISTANCES))
    assert weights[:, 0].sum() == 3


def test_huber_and_tukey_weights():
    matches = matches_with(np.array([0.5, 2.0, 10.0]))
    huber = HuberOutlierFilter(delta=1.0).compute(*clouds(3), matches)
    assert np.allclose(huber[:, 0], [1.0, 0.5, 0.1])

    tukey = TukeyOutlierFilter(c=4.0).compute(*clouds(3), matches)
    assert np.isclose(tukey[0, 0], (1 - (0.5 / 4.0) ** 2) ** 2)
    assert tukey[2, 0] == 0.0


def test_surface_normal_consistency():
    reading = PointCloud(np.zeros((3, 3)), features={'normals': [[0, 0, 1], [0, 0, -1], [1, 0, 0]]})
    reference = PointCloud(np.zeros((3, 3)), features={'normals': np.tile([0, 0, 1.0], (3, 1))})
    matches = identity_matches(3)

    weights = SurfaceNormalOutlierFilter(max_angle=0.1).compute(reading, reference, matches)
    assert np.array_equal(weights[:, 0], [1, 1, 0])

    oriented = SurfaceNormalOutlierFilter(max_angle=0.1, oriented=True)
    assert np.array_equal(oriented.compute(reading, reference, matches)[:, 0], [1, 0, 0])


def test_surface_normal_requires_normals():
    cloud = PointCloud(np.zeros((2, 3)))
    with pytest.raises(MissingFeatureError):
        SurfaceNormalOutlierFilter().compute(cloud, cloud, identity_matches(2))


def test_chain_multiplies_and_keeps_size():
    matches = matches_with(DISTANCES)
    chain = OutlierFilterChain([TrimmedDistOutlierFilter(ratio=0.8), HuberOutlierFilter(delta=2.0)])
    weighted = chain.apply(*clouds(10), matches)

    assert isinstance(weighted, Matches)
    assert len(weighted) == len(matches)
    expected = np.where(DISTANCES <= 8, np.minimum(1.0, 2.0 / DISTANCES), 0.0)
    assert np.allclose(weighted.weights[:, 0], expected)
    assert weighted.valid_count() == 8


def test_multi_candidate_weights_keep_shape():
    ids = np.array([[0, 1], [1, 0]])
    distances = np.array([[0.1, 2.0], [0.2, 3.0]])
    weights = TrimmedDistOutlierFilter(ratio=0.5).compute(*clouds(2), Matches(ids, distances))
    assert np.array_equal(weights, [[1, 0], [1, 0]])
