"""Declarative configuration of the ICP pipeline."""

import copy
import re

import yaml

from .checker import TransformationChecker
from .errors import ConfigurationError
from .filters import FILTERS, FilterChain
from .matcher import MATCHERS
from .minimizers import ERROR_MINIMIZERS
from .outliers import OUTLIER_FILTERS, OutlierFilterChain

CHECKERS = {
    'differential': TransformationChecker,
}

DEFAULT_CONFIG = {
    'reading_data_points_filters': [],
    'reference_data_points_filters': [],
    'matcher': {'type': 'kdtree', 'knn': 1},
    'outlier_filters': [{'type': 'trimmed', 'ratio': 0.9}],
    'error_minimizer': {'type': 'point_to_point'},
    'checker': {
        'type': 'differential',
        'max_iterations': 40,
        'epsilon_rotation': 1e-3,
        'epsilon_translation': 1e-3,
    },
    'n_jobs': 1,
}

# Alternative spellings accepted for top-level sections
SECTION_ALIASES = {
    'outlier_filter': 'outlier_filters',
    'reading_filters': 'reading_data_points_filters',
    'reference_filters': 'reference_data_points_filters',
    'transformation_checker': 'checker',
    'transformation_checkers': 'checker',
}


def snake_case(key):
    """Normalise ``maxIterations`` / ``max-iterations`` to ``max_iterations``."""
    key = re.sub(r'(?<=[a-z0-9])(?=[A-Z])', '_', str(key))
    return key.replace('-', '_').lower()


def _normalise_params(params, stage):
    if not isinstance(params, dict):
        raise ConfigurationError(f"Parameters of {stage} must be a mapping, got {params!r}")
    return {snake_case(key): value for key, value in params.items()}


def _lookup(registry, name, stage):
    """Find a variant by registry name or by class name."""
    key = snake_case(name)
    if key in registry:
        return registry[key]
    for cls in registry.values():
        if cls.__name__ == name:
            return cls
    raise ConfigurationError(
        f"Unknown {stage} variant '{name}', expected one of {sorted(registry)}"
    )


def create_stage(registry, entry, stage, **defaults):
    """
    Instantiate one stage variant from its configuration entry.

    Args:
        registry: Mapping of variant name -> class
        entry: Variant name, or mapping with a 'type' key plus parameters
        stage: Stage name used in error messages
        **defaults: Parameters applied when the entry does not set them

    Raises:
        ConfigurationError: Unknown variant, unknown or invalid parameter
    """
    if isinstance(entry, str):
        entry = {'type': entry}
    params = _normalise_params(entry, stage)
    if 'type' not in params:
        raise ConfigurationError(f"{stage} entry is missing its 'type': {entry!r}")
    name = params.pop('type')
    cls = _lookup(registry, name, stage)
    for key, value in defaults.items():
        params.setdefault(key, value)
    try:
        return cls(**params)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid parameters for {stage} '{name}': {e}") from None


class Pipeline:
    """The stage instances built from one configuration, owned by one run."""

    def __init__(self, reading_filters, reference_filters, matcher, outlier_filters,
                 error_minimizer, checker):
        self.reading_filters = reading_filters
        self.reference_filters = reference_filters
        self.matcher = matcher
        self.outlier_filters = outlier_filters
        self.error_minimizer = error_minimizer
        self.checker = checker


class ICPConfig:
    """
    Immutable description of which variant runs at each stage.

    Built from a key/value tree such as::

        {
            "matcher": {"type": "kdtree", "knn": 1},
            "outlierFilters": [{"type": "trimmed", "ratio": 0.9}],
            "errorMinimizer": {"type": "point_to_plane"},
            "checker": {"maxIterations": 40, "epsilonRotation": 1e-3},
        }

    Keys may be camelCase or snake_case. Sections left out take their
    value from :data:`DEFAULT_CONFIG`. Every stage is instantiated once at
    construction so configuration mistakes surface before any iteration.
    """

    def __init__(self, tree=None):
        tree = {} if tree is None else tree
        if not isinstance(tree, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(tree).__name__}")

        settings = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in tree.items():
            section = snake_case(key)
            section = SECTION_ALIASES.get(section, section)
            if section not in DEFAULT_CONFIG:
                raise ConfigurationError(f"Unknown configuration section '{key}'")
            settings[section] = copy.deepcopy(value)

        for section in ('reading_data_points_filters', 'reference_data_points_filters',
                        'outlier_filters'):
            if settings[section] is None:
                settings[section] = []
            elif not isinstance(settings[section], list):
                settings[section] = [settings[section]]

        checker = settings['checker']
        if isinstance(checker, list):
            if len(checker) != 1:
                raise ConfigurationError("Exactly one transformation checker can be configured")
            settings['checker'] = checker[0]

        n_jobs = settings['n_jobs']
        if not isinstance(n_jobs, int) or isinstance(n_jobs, bool) or n_jobs == 0:
            raise ConfigurationError("n_jobs must be a non-zero integer")

        self._settings = settings
        self.build()

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def from_dict(cls, tree):
        return cls(tree)

    @classmethod
    def from_yaml(cls, source):
        """
        Load a configuration from YAML text or an open stream.

        An empty document yields the default configuration.
        """
        try:
            tree = yaml.safe_load(source)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration: {e}") from None
        return cls(tree)

    def as_dict(self):
        """Deep copy of the normalised configuration tree."""
        return copy.deepcopy(self._settings)

    def __getitem__(self, section):
        return copy.deepcopy(self._settings[section])

    def __repr__(self):
        return f"ICPConfig({self._settings!r})"

    def build(self):
        """Instantiate fresh stage objects for one registration run."""
        s = self._settings
        parallel = {'n_jobs': s['n_jobs']}
        checker_entry = s['checker']
        if isinstance(checker_entry, dict):
            checker_entry = dict({'type': 'differential'}, **_normalise_params(checker_entry, 'checker'))
        return Pipeline(
            reading_filters=FilterChain(
                create_stage(FILTERS, entry, 'reading filter')
                for entry in s['reading_data_points_filters']
            ),
            reference_filters=FilterChain(
                create_stage(FILTERS, entry, 'reference filter')
                for entry in s['reference_data_points_filters']
            ),
            matcher=create_stage(MATCHERS, s['matcher'], 'matcher', **parallel),
            outlier_filters=OutlierFilterChain(
                create_stage(OUTLIER_FILTERS, entry, 'outlier filter')
                for entry in s['outlier_filters']
            ),
            error_minimizer=create_stage(
                ERROR_MINIMIZERS, s['error_minimizer'], 'error minimizer', **parallel
            ),
            checker=create_stage(CHECKERS, checker_entry, 'checker'),
        )
