# =============================================================================
# Copyright 2025. Somjit Roy and Pritam Dey.
# This program implements the estimator class for group spike-and-slab
# variational Bayes (GSVB) in the linear regression model, following:
# Komodromos, M., Evangelou, M., and Filippi, S.
# 'Group spike-and-slab variational Bayes'.
#
# Authors:
#   Somjit Roy <sroy_123@tamu.edu> and Pritam Dey <pritam.dey@tamu.edu>
# =============================================================================

# Required imports
from .gsvb import *
import numpy as np
import pandas as pd
from scipy.stats import norm
from sklearn.preprocessing import StandardScaler, scale

# Validating prior parameters
def validate_prior_params(prior_params):
    """
    Validate and unpack the prior hyperparameters.

    Parameters
    ----------
    prior_params : dict or None
        May contain the keys 'a0', 'b0' (Beta prior on the inclusion
        probability) and 'tau_a0', 'tau_b0' (Gamma prior on the residual
        precision). Missing keys default to 1.

    Returns
    -------
    a0, b0, tau_a0, tau_b0 : float
        Validated hyperparameters.

    Raises
    ------
    ValueError
        If the input is not a dict, has unknown keys, or a value is not a
        positive scalar.
    """
    defaults = {'a0': 1.0, 'b0': 1.0, 'tau_a0': 1.0, 'tau_b0': 1.0}
    if prior_params is None:
        prior_params = {}
    if not isinstance(prior_params, dict):
        raise ValueError("prior_params must be a dict with keys among 'a0', 'b0', 'tau_a0', 'tau_b0'")

    unknown = set(prior_params) - set(defaults)
    if unknown:
        raise ValueError(f"unknown prior parameters: {sorted(unknown)}")

    vals = {**defaults, **prior_params}
    for key, val in vals.items():
        if not (isinstance(val, (int, float)) and np.isfinite(val) and val > 0):
            raise ValueError(f"{key} must be a positive scalar")

    return float(vals['a0']), float(vals['b0']), float(vals['tau_a0']), float(vals['tau_b0'])

# Validating initial values of the variational parameters
def validate_init(init, dim):
    """
    Validate and unpack the starting point of the variational parameters.

    Parameters
    ----------
    init : dict or None
        May contain 'mu' (means), 's' (standard deviations) and 'g'
        (inclusion probabilities), each a scalar or a vector of length `dim`.
        Missing entries default to mu = 0, s = 1, g = 0.5.
    dim : int
        Number of coefficients.

    Returns
    -------
    mu, s, g : np.ndarray of shape (dim,)

    Raises
    ------
    ValueError
        If a vector has the wrong length, s is not strictly positive or g
        leaves [0, 1].
    """
    if init is None:
        init = {}
    if not isinstance(init, dict):
        raise ValueError("init must be a dict with keys among 'mu', 's', 'g'")

    out = {}
    for key, default in (('mu', 0.0), ('s', 1.0), ('g', 0.5)):
        val = np.asarray(init.get(key, default), dtype=float)
        if val.ndim == 0:
            val = np.full(dim, float(val))
        if val.ndim != 1 or val.shape[0] != dim:
            raise ValueError(f"{key} must be a scalar or a vector of length {dim}")
        out[key] = val

    if np.any(out['s'] <= 0):
        raise ValueError("s must be strictly positive")
    if np.any((out['g'] < 0) | (out['g'] > 1)):
        raise ValueError("g must lie in [0, 1]")

    return out['mu'], out['s'], out['g']

# =============================================================================
# The GSVB class for linear regression
# =============================================================================
class GSVB_linear:
    """
    Group spike-and-slab variational Bayes for linear regression.

    This class provides a high-level interface to fit the group
    spike-and-slab linear model by coordinate ascent variational inference.
    It supports scaling, intercept addition, ELBO tracking, and getting the
    variational estimates, the posterior means and a summary table.

    Parameters
    ----------
    fit_intercept : bool, default=False
        Whether to include an intercept term in the design matrix. The
        intercept forms a group of its own.
    scale_X : bool, default=False
        If True, standardizes X before fitting.
    scale_y : bool, default=False
        If True, standardizes y before fitting.

    Attributes
    ----------
    is_fitted : bool
        Indicates whether the model has been fitted.
    fitted_values : dict
        The output of `gsvb_fit`.
    """
    def __init__(self,
                 fit_intercept: bool = False,
                 scale_X: bool = False,
                 scale_y: bool = False):
        """
        Initialize the GSVB model parameters.
        """
        self.fit_intercept = fit_intercept
        self.scale_X = scale_X
        self.scale_y = scale_y
        self.is_fitted = False

    def _design(self, X):
        X = np.asarray(X, dtype=float)
        if self.scale_X:
            X = self.scaler_.transform(X)
        if self.fit_intercept:
            X = np.column_stack((np.ones(X.shape[0]), X))
        return X

    def fit(self,
            X: np.ndarray,
            y: np.ndarray,
            groups,
            prior_params=None,
            init=None,
            lam: float = 1.0,
            maxiter: int = 1000,
            tol: float = 1e-3,
            track_elbo: bool = False,
            track_elbo_every: int = 5,
            track_elbo_mcn: int = 500,
            verbose=True,
            random_state=None,
            interrupt=None):
        """
        Fit the GSVB model to the input data.

        Parameters
        ----------
        X : np.ndarray of shape (n, p)
            Input design matrix.
        y : np.ndarray of shape (n,)
            Response vector.
        groups : array-like of shape (p,)
            Integer group label of every column of X.
        prior_params : dict, optional
            Hyperparameters 'a0', 'b0', 'tau_a0', 'tau_b0'. Each defaults to 1.
        init : dict, optional
            Starting values 'mu', 's', 'g' for the columns of X (without the
            intercept). Defaults to mu = 0, s = 1, g = 0.5.
        lam : float, default=1.0
            Penalty strength of the group slab.
        maxiter : int, default=1000
            Maximum number of CAVI iterations.
        tol : float, default=1e-3
            Convergence tolerance on the L1 change of the variational parameters.
        track_elbo : bool, default=False
            Whether to record the ELBO.
        track_elbo_every : int, default=5
            ELBO sampling stride.
        track_elbo_mcn : int, default=500
            Monte Carlo draws per ELBO evaluation.
        verbose : bool, default=True
            Whether to print convergence information.
        random_state : int or np.random.Generator, optional
            Random source for the Monte Carlo ELBO.
        interrupt : callable, optional
            Cancellation check polled once per iteration.
        """
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        if X.ndim != 2:
            raise ValueError("X must be a 2-D array of shape (n, p)")
        groups = np.asarray(groups)
        if groups.ndim != 1 or groups.shape[0] != X.shape[1]:
            raise ValueError(f"groups must be a vector of length {X.shape[1]}")
        if not np.issubdtype(groups.dtype, np.integer):
            raise ValueError("groups must contain integer labels")

        self.n, self.p = X.shape
        a0, b0, tau_a0, tau_b0 = validate_prior_params(prior_params)
        mu, s, g = validate_init(init, self.p)

        if self.scale_X:
            self.scaler_ = StandardScaler(with_mean=True, with_std=True).fit(X)

        self.y = y
        if self.scale_y:
            self.y = scale(self.y, with_mean=True, with_std=True)

        self.design_matrix = self._design(X)
        self.groups = groups
        if self.fit_intercept:
            # the intercept gets a label below every other group
            self.groups = np.concatenate(([groups.min() - 1], groups))
            mu = np.concatenate(([0.0], mu))
            s = np.concatenate(([1.0], s))
            g = np.concatenate(([0.5], g))

        self.lam = lam
        self.prior = {'a0': a0, 'b0': b0, 'tau_a0': tau_a0, 'tau_b0': tau_b0}

        ################################################################
        ### GSVB for the linear model
        ################################################################
        self.fitted_values = gsvb_fit(y=self.y, X=self.design_matrix, groups=self.groups,
                                      lam=lam, a0=a0, b0=b0, tau_a0=tau_a0, tau_b0=tau_b0,
                                      mu=mu, s=s, g=g, track_elbo=track_elbo,
                                      track_elbo_every=track_elbo_every,
                                      track_elbo_mcn=track_elbo_mcn,
                                      niter=maxiter, tol=tol, verbose=verbose,
                                      interrupt=interrupt, rng=random_state)

        self.is_fitted = True

    def _check_fitted(self):
        if self.is_fitted == False:
            raise Exception("GSVB model is not trained yet. Call fit() first.")

    def get_variational_estimates(self):
        """
        Returns the variational estimates of model parameters.

        Returns
        -------
        dict
            Dictionary containing:
            - 'mu': Variational means of the slab.
            - 'sigma': Variational standard deviations of the slab.
            - 'gamma': Group inclusion probabilities.
            - 'tau_a', 'tau_b': Gamma posterior of the residual precision.
        """
        self._check_fitted()
        res = self.fitted_values
        return {k: res[k] for k in ('mu', 'sigma', 'gamma', 'tau_a', 'tau_b')}

    def get_elbo(self):
        """
        Returns the sampled Evidence Lower Bound (ELBO) trajectory.

        Returns
        -------
        np.ndarray
            ELBO every `track_elbo_every` iterations plus the final value.
        """
        self._check_fitted()
        return np.array(self.fitted_values['elbo'])

    def get_GSVB_means(self):
        """
        Return the posterior mean of the regression coefficients, γ∘μ.

        Raises
        ------
        Exception
            If the model has not been fitted.
        """
        self._check_fitted()
        res = self.fitted_values
        return res['gamma'] * res['mu']

    def get_tau(self):
        """
        Posterior mean of the residual precision, tau_a / tau_b.
        """
        self._check_fitted()
        return self.fitted_values['tau_a'] / self.fitted_values['tau_b']

    def predict(self, X):
        """
        Predict the response for new data using the posterior mean coefficients.

        Parameters
        ----------
        X : np.ndarray of shape (m, p)
            New design matrix, on the same scale as the one passed to `fit`.

        Returns
        -------
        np.ndarray of shape (m,)
        """
        self._check_fitted()
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != self.p:
            raise ValueError(f"X must be a 2-D array with {self.p} columns")
        return self._design(X) @ self.get_GSVB_means()

    def summary(self, level: float = 0.95):
        """
        Tabulate the fit, one row per coefficient.

        Parameters
        ----------
        level : float, default=0.95
            Coverage of the credible interval of the slab component.

        Returns
        -------
        pd.DataFrame
            Columns: group, mu, sigma, gamma, mean (= gamma * mu), lower, upper.
        """
        self._check_fitted()
        if not 0 < level < 1:
            raise ValueError("level must lie in (0, 1)")

        res = self.fitted_values
        z = norm.ppf(0.5 + level / 2)
        index = [f"beta_{j}" for j in range(len(res['mu']))]
        if self.fit_intercept:
            index = ["intercept"] + index[:-1]

        return pd.DataFrame({
            'group': self.groups,
            'mu': res['mu'],
            'sigma': res['sigma'],
            'gamma': res['gamma'],
            'mean': res['gamma'] * res['mu'],
            'lower': res['mu'] - z * res['sigma'],
            'upper': res['mu'] + z * res['sigma'],
        }, index=index)
