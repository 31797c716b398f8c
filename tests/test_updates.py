"""Tests for the group-wise updates and the precision update."""
import numpy as np
import pytest
from scipy.optimize import minimize

from GSVB.gsvb import G_EPS, TAU_B_MIN, update_a_b, update_a_b_obj, update_g, update_mu, update_s
from GSVB.utils import cross_products


def _split(groups, label):
    return np.flatnonzero(groups == label), np.flatnonzero(groups != label)


# =============================================================================
# update_mu
# =============================================================================
@pytest.mark.parametrize("j", [0, 1, 2])
def test_update_mu_singleton_without_penalty_is_least_squares(small_state, j):
    X, y, _, mu, s, g = small_state
    groups = np.arange(3)
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, j)

    m = update_mu(G, Gc, xtx, yx, mu, s, g, e_tau=3.0, lam=0.0)

    # partial residual regression on column j with the rest held at g∘mu
    rhs = yx[G] - xtx[np.ix_(G, Gc)] @ (g[Gc] * mu[Gc])
    expected = np.linalg.solve(xtx[np.ix_(G, G)], rhs)
    np.testing.assert_allclose(m, expected, rtol=1e-5, atol=1e-6)


def test_update_mu_group_without_penalty_is_least_squares(small_state):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 3)

    m = update_mu(G, Gc, xtx, yx, mu, s, g, e_tau=0.7, lam=0.0)

    rhs = yx[G] - xtx[np.ix_(G, Gc)] @ (g[Gc] * mu[Gc])
    np.testing.assert_allclose(m, np.linalg.solve(xtx[np.ix_(G, G)], rhs), rtol=1e-5, atol=1e-6)


def test_update_mu_penalty_shrinks(small_state):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 3)

    free = update_mu(G, Gc, xtx, yx, mu, s, g, e_tau=1.0, lam=0.0)
    shrunk = update_mu(G, Gc, xtx, yx, mu, s, g, e_tau=1.0, lam=20.0)
    assert np.linalg.norm(shrunk) < np.linalg.norm(free)


def test_update_mu_does_not_touch_inputs(small_state):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 3)
    before = mu.copy(), s.copy(), g.copy()

    update_mu(G, Gc, xtx, yx, mu, s, g, e_tau=1.0, lam=1.0)

    for a, b in zip((mu, s, g), before):
        np.testing.assert_array_equal(a, b)


# =============================================================================
# update_s
# =============================================================================
@pytest.mark.parametrize("scale", [1e-8, 1e-3, 1.0, 1e3, 1e6])
def test_update_s_is_positive(small_state, scale):
    X, y, groups, mu, _, _ = small_state
    xtx, _, _ = cross_products(X, y)
    rng = np.random.default_rng(11)

    for label in (3, 8):
        G, _ = _split(groups, label)
        s = scale * rng.uniform(0.5, 2.0, size=3)
        new = update_s(G, xtx, mu, s, e_tau=2.0, lam=1.0)
        assert new.shape == (len(G),)
        assert np.all(new > 0)


def test_update_s_decreases_objective(small_state):
    X, y, groups, mu, s, _ = small_state
    xtx, _, _ = cross_products(X, y)
    G, _ = _split(groups, 3)
    e_tau, lam = 2.0, 1.5
    d = np.diag(xtx)[G]

    def f(sG):
        return (0.5 * e_tau * d @ (sG * sG) - np.sum(np.log(sG))
                + lam * np.sqrt(sG @ sG + mu[G] @ mu[G]))

    new = update_s(G, xtx, mu, s, e_tau, lam)
    assert f(new) <= f(s[G]) + 1e-12


def test_update_s_follows_stated_gradient(small_state):
    X, y, groups, mu, s, _ = small_state
    xtx, _, _ = cross_products(X, y)
    G, _ = _split(groups, 3)
    e_tau, lam = 0.5, 1.0
    d = np.diag(xtx)[G]
    mm = mu[G] @ mu[G]

    def fn(u):
        sG = np.exp(u)
        nrm = np.sqrt(sG @ sG + mm)
        res = 0.5 * e_tau * d @ (sG * sG) - np.sum(u) + lam * nrm
        grad = (0.5 * e_tau * d * sG - 1.0 / sG + lam * sG / nrm) * sG
        return res, grad

    ref = minimize(fn, np.log(s[G]), jac=True, method="L-BFGS-B",
                   options={"maxiter": 8, "maxcor": 10, "gtol": 1e-6, "ftol": 1e-15})

    new = update_s(G, xtx, mu, s, e_tau, lam)
    np.testing.assert_allclose(new, np.exp(ref.x), rtol=1e-10)


# =============================================================================
# update_g
# =============================================================================
@pytest.mark.parametrize("e_tau", [1e-8, 1.0, 1e8])
@pytest.mark.parametrize("lam", [1e-8, 1.0, 1e8])
def test_update_g_stays_in_unit_interval(small_state, e_tau, lam):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 3)

    val = update_g(G, Gc, xtx, yx, mu, s, g, e_tau, lam, w=0.5)
    assert np.isfinite(val)
    assert 0.0 < val < 1.0


def test_update_g_open_interval_for_moderate_inputs(small_state):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 8)

    val = update_g(G, Gc, xtx, yx, mu, s, g, e_tau=0.1, lam=1.0, w=0.5)
    assert 0.0 < val < 1.0


def test_update_g_follows_prior_odds(small_state):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 8)

    lo = update_g(G, Gc, xtx, yx, mu, s, g, 1.0, 1.0, w=0.1)
    hi = update_g(G, Gc, xtx, yx, mu, s, g, 1.0, 1.0, w=0.9)
    logit = lambda v: np.log(v / (1 - v))
    assert logit(hi) - logit(lo) == pytest.approx(2 * np.log(9.0))


# =============================================================================
# update_a_b
# =============================================================================
def test_update_a_b_reaches_closed_form():
    n, S, ta0, tb0 = 50, 12.3, 1.0, 1.0
    tau_a, tau_b = update_a_b(1.0, 1.0, ta0, tb0, S, n)

    assert tau_a == pytest.approx(0.5 * n + ta0, rel=1e-3)
    assert tau_b == pytest.approx(0.5 * S + tb0, rel=1e-3)


def test_update_a_b_does_not_increase_objective():
    n, S, ta0, tb0 = 30, 40.0, 2.0, 0.5
    start = (3.0, 7.0)
    tau_a, tau_b = update_a_b(*start, ta0, tb0, S, n)

    assert (update_a_b_obj(tau_a, tau_b, ta0, tb0, S, n)
            <= update_a_b_obj(*start, ta0, tb0, S, n))


def test_update_a_b_obj_is_minimised_at_closed_form():
    n, S, ta0, tb0 = 20, 5.0, 1.0, 1.0
    ta, tb = 0.5 * n + ta0, 0.5 * S + tb0
    f0 = update_a_b_obj(ta, tb, ta0, tb0, S, n)
    for da, db in [(0.5, 0), (-0.5, 0), (0, 0.3), (0, -0.3), (0.4, 0.2)]:
        assert update_a_b_obj(ta + da, tb + db, ta0, tb0, S, n) > f0


def test_update_a_b_recovers_from_non_positive_rate():
    # a non-positive starting rate is moved onto the lower bound first
    n, S = 50, 12.3
    tau_a, tau_b = update_a_b(1.0, -5.0, 1.0, 1.0, S, n)
    assert np.isfinite(tau_a) and np.isfinite(tau_b)
    assert tau_b >= TAU_B_MIN
    assert (update_a_b_obj(tau_a, tau_b, 1.0, 1.0, S, n)
            <= update_a_b_obj(1.0, TAU_B_MIN, 1.0, 1.0, S, n))


@pytest.mark.parametrize("e_tau", [1e8, -1e8])
def test_update_g_never_saturates(small_state, e_tau):
    X, y, groups, mu, s, g = small_state
    xtx, _, yx = cross_products(X, y)
    G, Gc = _split(groups, 3)

    val = update_g(G, Gc, xtx, yx, mu, s, g, e_tau, 1.0, w=0.5)
    assert val in (G_EPS, 1.0 - G_EPS)
