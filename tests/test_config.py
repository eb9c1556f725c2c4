# test_config.py
import pytest

from pcaligner import ConfigurationError, ICPConfig
from pcaligner.filters import RandomSamplingDataPointsFilter
from pcaligner.matcher import BruteForceMatcher, KDTreeMatcher
from pcaligner.minimizers import PointToPlaneErrorMinimizer, PointToPointErrorMinimizer
from pcaligner.outliers import NullOutlierFilter, TrimmedDistOutlierFilter


def test_default_pipeline():
    pipeline = ICPConfig.default().build()

    assert len(pipeline.reading_filters) == 0
    assert isinstance(pipeline.matcher, KDTreeMatcher)
    assert pipeline.matcher.knn == 1
    assert isinstance(pipeline.outlier_filters.filters[0], TrimmedDistOutlierFilter)
    assert isinstance(pipeline.error_minimizer, PointToPointErrorMinimizer)
    assert pipeline.checker.max_iterations == 40


def test_camel_case_keys_and_class_names():
    config = ICPConfig({
        'readingDataPointsFilters': [{'type': 'RandomSamplingDataPointsFilter', 'prob': 0.5}],
        'matcher': {'type': 'bruteForce', 'knn': 2},
        'outlierFilters': [{'type': 'trimmed', 'ratio': 0.7}],
        'errorMinimizer': {'type': 'PointToPlaneErrorMinimizer'},
        'checker': {'maxIterations': 5, 'epsilonTranslation': 1e-6},
    })
    pipeline = config.build()

    assert isinstance(pipeline.reading_filters.filters[0], RandomSamplingDataPointsFilter)
    assert pipeline.reading_filters.filters[0].prob == 0.5
    assert isinstance(pipeline.matcher, BruteForceMatcher)
    assert pipeline.matcher.knn == 2
    assert pipeline.outlier_filters.filters[0].ratio == 0.7
    assert isinstance(pipeline.error_minimizer, PointToPlaneErrorMinimizer)
    assert pipeline.checker.max_iterations == 5
    assert pipeline.checker.epsilon_translation == 1e-6


def test_string_entries():
    pipeline = ICPConfig({'outlier_filters': 'null', 'matcher': 'brute_force'}).build()
    assert isinstance(pipeline.outlier_filters.filters[0], NullOutlierFilter)
    assert isinstance(pipeline.matcher, BruteForceMatcher)


def test_each_build_returns_fresh_stages():
    config = ICPConfig()
    assert config.build().checker is not config.build().checker


def test_n_jobs_reaches_parallel_stages():
    pipeline = ICPConfig({'nJobs': 2}).build()
    assert pipeline.matcher.n_jobs == 2
    assert pipeline.error_minimizer.n_jobs == 2


@pytest.mark.parametrize("tree", [
    {'matcher': {'type': 'octree'}},
    {'matcher': {'type': 'kdtree', 'radius': 3}},
    {'outlier_filters': [{'type': 'trimmed', 'ratio': 1.5}]},
    {'outlier_filters': [{'ratio': 0.5}]},
    {'checker': {'type': 'bound'}},
    {'checker': {'max_iterations': 0}},
    {'unknown_section': {}},
    {'n_jobs': 0},
    ['not', 'a', 'mapping'],
])
def test_invalid_configuration(tree):
    with pytest.raises(ConfigurationError):
        ICPConfig(tree)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        ICPConfig({'matcher': {'type': 'octree'}})


def test_from_yaml():
    config = ICPConfig.from_yaml("""
readingDataPointsFilters:
  - type: voxel_grid
    voxelSize: 0.5
errorMinimizer: point_to_plane
outlierFilters:
  - type: max_dist
    maxDist: 2.0
checker:
  maxIterations: 10
""")
    pipeline = config.build()

    assert pipeline.reading_filters.filters[0].voxel_size == 0.5
    assert isinstance(pipeline.error_minimizer, PointToPlaneErrorMinimizer)
    assert pipeline.outlier_filters.filters[0].max_dist == 2.0
    assert config['checker']['max_iterations'] == 10


def test_empty_yaml_is_default():
    assert ICPConfig.from_yaml("").as_dict() == ICPConfig.default().as_dict()


def test_malformed_yaml():
    with pytest.raises(ConfigurationError):
        ICPConfig.from_yaml("matcher: [kdtree")


def test_config_is_not_mutated_through_accessors():
    config = ICPConfig()
    config['matcher']['knn'] = 10
    config.as_dict()['checker']['max_iterations'] = 1
    assert config['matcher']['knn'] == 1
    assert config['checker']['max_iterations'] == 40


def test_checker_given_as_single_item_list():
    config = ICPConfig.from_yaml("""
transformationCheckers:
  - type: differential
    maxIterations: 7
""")
    assert config.build().checker.max_iterations == 7

    with pytest.raises(ConfigurationError):
        ICPConfig({'transformationCheckers': [{'maxIterations': 7}, {'maxIterations': 8}]})
