"""
Pytest configuration and fixtures for diffexp_toolkit tests
"""

import pytest
import pandas as pd
import numpy as np

from diffexp_toolkit.experimental_design import GroupAssignment, IntensityMatrix
from diffexp_toolkit.statistical_analysis import StatisticalConfig

GROUPS = ["control", "lessone", "onetofive", "adult"]
SAMPLES_PER_GROUP = 10
N_NULL_FEATURES = 30

# Same within-group pattern in every group, so groups with equal means have
# exactly equal sample means
NOISE_PATTERN = np.linspace(-0.1, 0.1, SAMPLES_PER_GROUP)


def _sample_names():
    return [f"{group}_{i + 1}" for group in GROUPS for i in range(SAMPLES_PER_GROUP)]


def _patterned_row(group_means):
    return np.concatenate([mean + NOISE_PATTERN for mean in group_means])


@pytest.fixture
def sample_names():
    return _sample_names()


@pytest.fixture
def group_assignment():
    """10 samples in each of 4 groups"""
    mapping = {name: name.rsplit("_", 1)[0] for name in _sample_names()}
    return GroupAssignment(mapping, group_order=GROUPS)


@pytest.fixture
def expression_data():
    """
    Log2-scale features x samples table.

    DE_ADULT is 5 units higher in 'adult'; DE_LESSONE is 2 units higher in
    'lessone'. NULL features are noise with sd 0.1 around 20.
    """
    np.random.seed(42)
    samples = _sample_names()

    rows = {
        "DE_ADULT": _patterned_row([20.0, 20.0, 20.0, 25.0]),
        "DE_LESSONE": _patterned_row([20.0, 22.0, 20.0, 20.0]),
    }
    for i in range(N_NULL_FEATURES):
        rows[f"NULL{i:03d}"] = np.random.normal(20, 0.1, len(samples))

    return pd.DataFrame.from_dict(rows, orient="index", columns=samples)


@pytest.fixture
def intensity_matrix(expression_data):
    return IntensityMatrix(expression_data)


@pytest.fixture
def matrix_with_failures(expression_data):
    """Adds a constant feature and one with a single observed 'adult' value"""
    data = expression_data.copy()
    data.loc["CONSTANT"] = 20.0

    sparse = _patterned_row([20.0, 21.0, 22.0, 23.0])
    adult_start = GROUPS.index("adult") * SAMPLES_PER_GROUP
    sparse[adult_start + 1:adult_start + SAMPLES_PER_GROUP] = np.nan
    data.loc["SPARSE"] = sparse

    return IntensityMatrix(data)


@pytest.fixture
def statistical_config():
    """Create a statistical configuration for testing"""
    config = StatisticalConfig()
    config.statistical_test_method = "anova"
    config.p_value_threshold = 0.05
    config.fold_change_threshold = 0.5
    return config


@pytest.fixture
def t_test_config():
    config = StatisticalConfig()
    config.statistical_test_method = "student_t"
    return config
