# =============================================================================
# Copyright 2025. Somjit Roy and Pritam Dey. 
# This program implements helper functions for group spike-and-slab variational
# Bayes (GSVB) in the linear regression model, following:
# Komodromos, M., Evangelou, M., and Filippi, S.
# 'Group spike-and-slab variational Bayes'.
#
# Authors:
#   Somjit Roy <sroy_123@tamu.edu> and Pritam Dey <pritam.dey@tamu.edu>
# =============================================================================

# Required imports
import numpy as np
from scipy.optimize import minimize as _scipy_minimize
from scipy.special import gammaln


def cross_products(X: np.ndarray, y: np.ndarray):
    """
    Precomputes the quadratic forms reused by every CAVI iteration.

    Parameters
    ----------
    X : np.ndarray of shape (n, p)
        Design matrix.
    y : np.ndarray of shape (n,)
        Response vector.

    Returns
    -------
    xtx : np.ndarray of shape (p, p)
        Cross-product matrix XᵀX.
    yty : float
        Inner product yᵀy.
    yx : np.ndarray of shape (p,)
        Cross-product Xᵀy.
    """
    xtx = X.T @ X
    yty = float(y @ y)
    yx = X.T @ y

    # read-only for the rest of the run
    xtx.setflags(write=False)
    yx.setflags(write=False)
    return xtx, yty, yx


def minimize(fun, x0: np.ndarray, maxiter: int, maxcor: int = 10, bounds=None,
             gtol: float = 1e-6, ftol: float = 1e-15) -> np.ndarray:
    """
    Minimizes a smooth objective with the limited-memory BFGS method.

    The three inner problems of GSVB (group means, group scales and the
    precision hyperparameters) differ only in objective, dimension and
    iteration budget, so they all go through this function.

    Parameters
    ----------
    fun : callable
        Function of x returning the pair (objective, gradient).
    x0 : np.ndarray
        Starting point.
    maxiter : int
        Maximum number of L-BFGS iterations.
    maxcor : int, optional
        Number of correction pairs kept in the limited-memory Hessian. Default is 10.
    bounds : sequence of (min, max) pairs, optional
        Box constraints on x; None for unconstrained coordinates.
    gtol, ftol : float, optional
        Gradient and relative-reduction stopping tolerances. Small enough
        that the iteration cap is usually what stops the search.

    Returns
    -------
    np.ndarray
        The final iterate. Hitting `maxiter` is not an error; the iterate
        is used as-is. A non-finite iterate falls back to `x0`.
    """
    x0 = np.asarray(x0, dtype=float)
    res = _scipy_minimize(fun, x0, jac=True, method="L-BFGS-B", bounds=bounds,
                          options={"maxiter": maxiter, "maxcor": maxcor,
                                   "gtol": gtol, "ftol": ftol})
    if not np.all(np.isfinite(res.x)):
        return x0.copy()
    return res.x


def log_slab_const(mk: int, lam: float) -> float:
    """
    Log normalizing constant of the multivariate Laplace-type slab

        Psi(b) = C_k lambda^mk exp(-lambda ||b||),
        C_k = [2^mk pi^((mk-1)/2) Gamma((mk+1)/2)]^(-1).

    Parameters
    ----------
    mk : int
        Group size.
    lam : float
        Group penalty strength.

    Returns
    -------
    float
        log(C_k) + mk * log(lambda)
    """
    return (- mk * np.log(2.0) - 0.5 * (mk - 1.0) * np.log(np.pi)
            - gammaln(0.5 * (mk + 1.0)) + mk * np.log(lam))


def compute_S(yty: float, yx: np.ndarray, xtx: np.ndarray, groups: np.ndarray,
              mu: np.ndarray, s: np.ndarray, g: np.ndarray, p: int) -> float:
    """
    Computes the expected squared residual under the variational posterior,

        S = E_q ||y - Xb||^2 = yᵀy - 2 yxᵀ(g∘mu) + Σ_i Σ_j xtx_ij E[b_i b_j],

    where
        E[b_i b_i] = g_i (s_i^2 + mu_i^2),
        E[b_i b_j] = g_i mu_i mu_j          (i != j, same group),
        E[b_i b_j] = g_i g_j mu_i mu_j      (different groups).

    Coefficients of the same group share one inclusion indicator, hence the
    single g_i in the within-group off-diagonal term.

    Parameters
    ----------
    yty : float
        yᵀy.
    yx : np.ndarray of shape (p,)
        Xᵀy.
    xtx : np.ndarray of shape (p, p)
        XᵀX.
    groups : np.ndarray of shape (p,)
        Group label of every coefficient.
    mu, s, g : np.ndarray of shape (p,)
        Current variational parameters.
    p : int
        Number of coefficients.

    Returns
    -------
    float
        The expected residual sum of squares S.
    """
    gmu = g * mu
    same = groups[:, None] == groups[None, :]

    # E[b_i b_j] for i != j
    Ebb = np.where(same, np.outer(gmu, mu), np.outer(gmu, gmu))
    # diagonal
    Ebb[np.diag_indices(p)] = g * (s ** 2 + mu ** 2)

    xtx_bi_bj = np.sum(xtx * Ebb)
    return float(yty + xtx_bi_bj - 2.0 * yx @ gmu)


def check_finite_state(iteration: int, **state):
    """
    Raises if any variational parameter has become non-finite.

    Parameters
    ----------
    iteration : int
        Current CAVI iteration, reported in the error message.
    **state
        Named arrays or scalars to check.

    Raises
    ------
    FloatingPointError
        If a value is NaN or infinite.
    """
    bad = [name for name, val in state.items() if not np.all(np.isfinite(val))]
    if bad:
        raise FloatingPointError(
            f"non-finite variational parameters {bad} at iteration {iteration}")
