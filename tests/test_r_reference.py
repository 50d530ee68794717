"""
Cross-check the native limma implementation against R's limma through rpy2.

Skipped unless rpy2 and the limma R package are installed.
"""

import numpy as np
import pytest

from moderated_de.data import expression_frame, sample_frame, subset_samples
from moderated_de.design import model_matrix
from moderated_de.limma import lm_fit, top_table
from moderated_de.r_utils import is_r_package_installed, r_limma_top_table

pytestmark = pytest.mark.skipif(
    not is_r_package_installed("limma"),
    reason="rpy2 and the limma R package are required",
)

T_COLUMNS = ["log_fc", "ave_expr", "t_statistic", "p_value", "adj_p_value", "b_statistic"]


def test_t_table_matches_r(two_group, two_group_design):
    exprs, _, _ = two_group
    ours = top_table(lm_fit(exprs, two_group_design), coef="groupB", number=None, sort_by="none")
    theirs = r_limma_top_table(exprs, two_group_design, coef="groupB", sort_by="none")

    assert list(ours["gene"]) == list(theirs["gene"])
    for column in T_COLUMNS:
        np.testing.assert_allclose(ours[column], theirs[column], rtol=1e-6, atol=1e-10, err_msg=column)


def test_trended_prior_close_to_r(two_group, two_group_design):
    exprs, _, _ = two_group
    model = lm_fit(exprs, two_group_design).e_bayes(trend=True)
    ours = model.top_table(coef="groupB", number=None, sort_by="none")
    theirs = r_limma_top_table(exprs, two_group_design, coef="groupB", sort_by="none", trend=True)
    # spline knots are placed independently of R, so only the ranking is compared
    top_ours = set(ours.nsmallest(50, "p_value")["gene"])
    top_theirs = set(theirs.nsmallest(50, "p_value")["gene"])
    assert len(top_ours & top_theirs) >= 45


def test_f_table_matches_r(photorec_se):
    wt = subset_samples(photorec_se, gType="wt")
    design = model_matrix(sample_frame(wt), "~ devStage")
    exprs = expression_frame(wt)
    coefs = ["devStageP2", "devStageP6", "devStageP10", "devStage4_weeks"]

    ours = top_table(lm_fit(wt, design), coef=coefs, number=None, sort_by="none")
    theirs = r_limma_top_table(exprs, design, coef=coefs, sort_by="none")

    assert list(ours["gene"]) == list(theirs["gene"])
    for column in [*coefs, "ave_expr", "f_statistic", "p_value", "adj_p_value"]:
        np.testing.assert_allclose(ours[column], theirs[column], rtol=1e-6, atol=1e-10, err_msg=column)
