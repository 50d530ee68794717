"""Limma: Linear Models for Microarray Data.

This module runs the limma workflow on inmoose's limma port:
gene-wise linear model fits, empirical Bayes moderation of the variances,
ranked result tables, contrasts and up/down calls.

Functional API:
    >>> import moderated_de.limma as limma
    >>> model = limma.lm_fit(se, design)
    >>> results = limma.e_bayes(model).top_table(coef="devStageP2")

Method chaining:
    >>> cont = limma.make_contrasts(P10VsP6="devStageP10 - devStageP6", levels=design)
    >>> calls = limma.lm_fit(se, design).contrasts_fit(cont).e_bayes().decide_tests()
"""

from .lm_fit import lm_fit, LimmaModel
from .squeeze_var import squeeze_var, fit_f_dist, trigamma_inverse
from .e_bayes import e_bayes
from .p_adjust import p_adjust
from .top_table import top_table
from .contrasts import make_contrasts, contrasts_fit
from .decide_tests import decide_tests, summarize_tests
from .venn import venn_counts, hits, hits_in_all, hits_in_any
from .treat import treat

__all__ = [
    # Functional API
    "lm_fit",
    "e_bayes",
    "top_table",
    "make_contrasts",
    "contrasts_fit",
    "decide_tests",
    "summarize_tests",
    "treat",
    # Variance moderation
    "squeeze_var",
    "fit_f_dist",
    "trigamma_inverse",
    # Multiple testing and hit lists
    "p_adjust",
    "venn_counts",
    "hits",
    "hits_in_all",
    "hits_in_any",
    # Model classes
    "LimmaModel",
]
