"""Pytest configuration and fixtures."""

import numpy as np
import pytest

import paragraph as pg


@pytest.fixture
def random_seed():
    """Seed used by every random fixture."""
    return 42


@pytest.fixture
def rng(random_seed):
    """Seeded numpy generator for reproducible tensors."""
    return np.random.default_rng(random_seed)


@pytest.fixture
def random_tensor(rng):
    """Factory for tensors with standard normal entries."""
    def make(*shape, low=None, high=None):
        if low is not None:
            data = rng.uniform(low, high, size=shape)
        else:
            data = rng.standard_normal(size=shape)
        return pg.Tensor(shape, np.asarray(data).reshape(-1))
    return make


@pytest.fixture
def assert_tensors_close():
    """Compare two tensors by shape and value."""
    def check(actual, expected, atol=1e-10, rtol=1e-7):
        assert actual.dimensionalities == expected.dimensionalities, \
            f"shape {actual.dimensionalities} != {expected.dimensionalities}"
        np.testing.assert_allclose(actual.data, expected.data, atol=atol, rtol=rtol)
    return check
