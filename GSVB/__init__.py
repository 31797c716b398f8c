# =============================================================================
# Copyright 2025. Somjit Roy and Pritam Dey.
# This program implements required initializations for group spike-and-slab
# variational Bayes (GSVB) in the linear regression model, following:
# Komodromos, M., Evangelou, M., and Filippi, S.
# 'Group spike-and-slab variational Bayes'.
#
# Authors:
#   Somjit Roy <sroy_123@tamu.edu> and Pritam Dey <pritam.dey@tamu.edu>
# =============================================================================

from .GSVB_classes import GSVB_linear, validate_prior_params, validate_init
from .gsvb import gsvb_fit, update_mu, update_s, update_g, update_a_b, update_a_b_obj
from .elbo import elbo
from .utils import compute_S, cross_products
