"""
Per-gene regression of target expression on TF x region interaction terms.

For a target gene g with candidate terms {(tf_k, region_k)}:

    expr_g = b0 + sum_k b_k * (expr_tf_k * access_region_k) + e

A term is large only in cells where the TF is expressed AND its binding
region is open, which is the biological condition for the TF to act
through that region. Coefficients are estimated by ordinary least squares
(statsmodels); each term gets a t statistic and a two-sided p-value, and
the model gets R-squared, adjusted R-squared, AIC and the F-test p-value.

Biological Context:
    - Positive estimate: activator-like relation (more TF at open region,
      more target transcript)
    - Negative estimate: repressor-like relation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Literal, Mapping

import numpy as np
import pandas as pd
import statsmodels.api as sm
from numpy.typing import NDArray

from grnfinder.exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

__all__ = [
    'GeneModel',
    'TERM_COLUMNS',
    'fit_gene',
    'multiple_testing_correction',
]

TERM_COLUMNS = ['tf', 'region', 'estimate', 'std_err', 'statistic', 'pval']


@dataclass(frozen=True, eq=False)
class GeneModel:
    """
    Fitted regression model for one target gene.

    Attributes:
        gene: Target gene
        terms: One row per (tf, region) term: estimate, std_err, statistic,
            pval, and padj once models are merged
        rsq: Coefficient of determination
        adj_rsq: Adjusted R-squared
        nvar: Number of terms (excluding the intercept)
        n_obs: Number of observations (cells or metacells)
        aic: Akaike information criterion
        model_pval: p-value of the model F-test (all term coefficients zero)
    """
    gene: str
    terms: pd.DataFrame = field(repr=False)
    rsq: float
    adj_rsq: float
    nvar: int
    n_obs: int
    aic: float = np.nan
    model_pval: float = np.nan

    def with_padj(self, padj: NDArray[np.float64]) -> GeneModel:
        """Copy of this model with a padj column attached to the terms."""
        terms = self.terms.copy()
        terms['padj'] = np.asarray(padj, dtype=np.float64)
        return replace(self, terms=terms)

    def gof(self) -> dict:
        return {
            'gene': self.gene,
            'rsq': self.rsq,
            'adj_rsq': self.adj_rsq,
            'nvar': self.nvar,
            'n_obs': self.n_obs,
            'aic': self.aic,
            'model_pval': self.model_pval,
        }


def _zscore(x: NDArray[np.float64]) -> NDArray[np.float64]:
    sd = x.std(axis=0)
    sd = np.where(sd > 0, sd, 1.0)
    return (x - x.mean(axis=0)) / sd


def fit_gene(
    gene: str,
    y: NDArray[np.float64],
    terms: pd.DataFrame,
    tf_expression: Mapping[str, NDArray[np.float64]],
    region_accessibility: Mapping[str, NDArray[np.float64]],
    scale: bool = False,
) -> GeneModel:
    """
    Fit one OLS model for a target gene.

    Args:
        gene: Target gene name
        y: Target expression across observations
        terms: Candidate terms, DataFrame with columns tf, region
        tf_expression: TF name -> expression vector (same observations as y)
        region_accessibility: Region name -> accessibility vector
        scale: Z-score response and predictors before fitting

    Returns:
        GeneModel with terms sorted by (tf, region)

    Raises:
        InsufficientDataError: No candidate terms, constant response, fewer
            than nvar + 2 observations, or a rank-deficient design
    """
    y = np.asarray(y, dtype=np.float64)
    n_obs = len(y)

    if len(terms) == 0:
        raise InsufficientDataError(f"{gene}: no candidate terms")
    if np.nanstd(y) == 0:
        raise InsufficientDataError(f"{gene}: constant expression")

    terms = terms[['tf', 'region']].drop_duplicates().sort_values(['tf', 'region'])
    columns = {}
    for tf, region in terms.itertuples(index=False):
        columns[f"{tf}:{region}"] = tf_expression[tf] * region_accessibility[region]
    X = pd.DataFrame(columns)

    # Interaction columns with no variance carry no information
    varying = X.std(axis=0).to_numpy() > 0
    if not varying.all():
        logger.debug(f"{gene}: dropping {int((~varying).sum())} constant terms")
        X = X.loc[:, varying]
        terms = terms[varying]
    nvar = X.shape[1]

    if nvar == 0:
        raise InsufficientDataError(f"{gene}: all candidate terms are constant")
    if n_obs < nvar + 2:
        raise InsufficientDataError(
            f"{gene}: {n_obs} observations for {nvar} terms (need >= {nvar + 2})"
        )

    Xv = X.to_numpy()
    if scale:
        Xv = _zscore(Xv)
        y = _zscore(y)
    design = sm.add_constant(Xv, has_constant='add')
    if np.linalg.matrix_rank(design) < design.shape[1]:
        raise InsufficientDataError(f"{gene}: rank-deficient design ({nvar} terms)")

    result = sm.OLS(y, design).fit()

    coef = pd.DataFrame({
        'tf': terms['tf'].to_numpy(),
        'region': terms['region'].to_numpy(),
        'estimate': result.params[1:],
        'std_err': result.bse[1:],
        'statistic': result.tvalues[1:],
        'pval': result.pvalues[1:],
    })

    return GeneModel(
        gene=gene,
        terms=coef.reset_index(drop=True),
        rsq=float(result.rsquared),
        adj_rsq=float(result.rsquared_adj),
        nvar=nvar,
        n_obs=n_obs,
        aic=float(result.aic),
        model_pval=float(result.f_pvalue),
    )


def multiple_testing_correction(
    pvalues: NDArray[np.float64],
    method: Literal["BH", "BY", "bonferroni"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Adjust p-values for multiple testing; NaN p-values stay NaN.

    Args:
        pvalues: Raw p-values
        method: "BH" (Benjamini-Hochberg), "BY" or "bonferroni"
        alpha: Significance level passed to statsmodels

    Returns:
        Adjusted p-values, same order as the input
    """
    from statsmodels.stats.multitest import multipletests

    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    method_map = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni"}
    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=method_map.get(method, method),
    )
    return adj_pvals
