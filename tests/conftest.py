import numpy as np
import pytest


@pytest.fixture
def sparse_data():
    """n=50, p=4, two groups of two; only the first group carries signal."""
    rng = np.random.default_rng(2024)
    n, p = 50, 4
    X = rng.standard_normal((n, p))
    beta = np.array([2.0, -1.5, 0.0, 0.0])
    y = X @ beta + 0.2 * rng.standard_normal(n)
    groups = np.array([0, 0, 1, 1])
    return X, y, groups, beta


@pytest.fixture
def fit_args(sparse_data):
    X, y, groups, _ = sparse_data
    p = X.shape[1]
    return dict(y=y, X=X, groups=groups, lam=1.0, a0=1.0, b0=1.0,
                tau_a0=1.0, tau_b0=1.0, mu=np.zeros(p), s=np.ones(p),
                g=np.full(p, 0.5), niter=200, tol=1e-6, verbose=False)


@pytest.fixture
def small_state():
    """Hand-sized state: groups {0, 1} and {2}."""
    rng = np.random.default_rng(7)
    X = rng.standard_normal((20, 3))
    y = rng.standard_normal(20)
    groups = np.array([3, 3, 8])
    mu = np.array([0.4, -1.2, 0.7])
    s = np.array([0.3, 0.5, 0.2])
    g = np.array([0.9, 0.9, 0.25])
    return X, y, groups, mu, s, g
