"""
Regulator modules from fitted per-gene models.

A module is the set of target genes a TF is inferred to regulate: the
targets whose model contains a significant term for that TF, in a model
that explains enough of the target's variance.

Algorithm:
    1. Models: keep model F-test p <= model_p_thresh, rsq >= rsq_thresh
       and nvar >= min_terms
    2. Terms: keep p <= p_thresh (padj by default, raw pval otherwise)
    3. One edge per (tf, target): the term with the lowest p, then the
       larger |estimate|, then the first region name
    4. Rank each TF's edges with edge_sort_key; with top_k set, keep the
       first top_k targets
    5. Drop TFs with fewer than min_genes_per_module targets

Every step is a filter on a fixed table, so with top_k=None a stricter
threshold can only remove targets or modules, never add them.

Biological Context:
    - Positive estimate: target rises with TF x accessibility (activation)
    - Negative estimate: target falls (repression)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Iterator, Mapping, Optional

import numpy as np
import pandas as pd

from grnfinder.exceptions import NoModulesError
from grnfinder.inference.fitter import FitResult

logger = logging.getLogger(__name__)

__all__ = [
    'ModuleThresholds',
    'RegulatorModule',
    'ModuleSet',
    'edge_sort_key',
    'build_modules',
    'EDGE_COLUMNS',
    'META_COLUMNS',
]

EDGE_COLUMNS = ['tf', 'target', 'region', 'estimate', 'pval', 'padj', 'rsq']
META_COLUMNS = [
    'tf', 'n_genes', 'n_regions', 'n_positive', 'n_negative', 'mean_rsq', 'median_rsq',
]


@dataclass(frozen=True)
class ModuleThresholds:
    """
    Thresholds for module building.

    Attributes:
        p_thresh: Maximum term p-value
        model_p_thresh: Maximum p-value of the model F-test
        min_terms: Minimum fitted terms (significant or not) in a target's model
        min_genes_per_module: Minimum targets for a TF to form a module
        rsq_thresh: Minimum model R-squared
        top_k: Keep at most this many best-ranked targets per TF (None = all)
        use_padj: Compare p_thresh to BH-adjusted p-values (else raw pval)
    """
    p_thresh: float = 0.05
    model_p_thresh: float = 1.0
    min_terms: int = 1
    min_genes_per_module: int = 1
    rsq_thresh: float = 0.0
    top_k: Optional[int] = None
    use_padj: bool = True

    def __post_init__(self):
        if not 0 < self.p_thresh <= 1:
            raise ValueError(f"p_thresh must be in (0, 1], got {self.p_thresh}")
        if not 0 < self.model_p_thresh <= 1:
            raise ValueError(f"model_p_thresh must be in (0, 1], got {self.model_p_thresh}")
        if self.min_terms < 0 or self.min_genes_per_module < 1:
            raise ValueError("min_terms must be >= 0 and min_genes_per_module >= 1")
        if self.top_k is not None and self.top_k < 1:
            raise ValueError(f"top_k must be >= 1 or None, got {self.top_k}")

    @property
    def p_column(self) -> str:
        return 'padj' if self.use_padj else 'pval'

    def to_dict(self) -> dict:
        return asdict(self)


def edge_sort_key(edge: Mapping) -> tuple:
    """
    Ranking of a TF's edges: lowest p first, then larger |estimate|,
    then better model fit, then target name.

    `edge` needs keys p, estimate, rsq, target.
    """
    return (edge['p'], -abs(edge['estimate']), -edge['rsq'], edge['target'])


@dataclass(frozen=True, eq=False)
class RegulatorModule:
    """
    Targets of one regulator with the edges supporting them.

    Attributes:
        tf: Regulator
        targets: Target genes in rank order
        edges: One row per target (EDGE_COLUMNS), in rank order
    """
    tf: str
    targets: tuple[str, ...]
    edges: pd.DataFrame = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.targets)

    @property
    def positive_targets(self) -> list[str]:
        return self.edges.loc[self.edges['estimate'] > 0, 'target'].tolist()

    @property
    def negative_targets(self) -> list[str]:
        return self.edges.loc[self.edges['estimate'] < 0, 'target'].tolist()

    @property
    def regions(self) -> list[str]:
        return sorted(self.edges['region'].unique())

    def to_dict(self) -> dict:
        return {
            'tf': self.tf,
            'targets': ','.join(self.targets),
            'n_genes': self.size,
            'n_positive': len(self.positive_targets),
            'n_negative': len(self.negative_targets),
        }


@dataclass(frozen=True, eq=False)
class ModuleSet:
    """
    All regulator modules of one module-building run.

    Re-running with other thresholds produces a new ModuleSet; this one is
    never modified.
    """
    modules: Mapping[str, RegulatorModule]
    thresholds: ModuleThresholds
    meta: pd.DataFrame = field(repr=False)

    def __len__(self) -> int:
        return len(self.modules)

    def __iter__(self) -> Iterator[RegulatorModule]:
        return iter(self.modules.values())

    def __contains__(self, tf: str) -> bool:
        return tf in self.modules

    def __getitem__(self, tf: str) -> RegulatorModule:
        return self.modules[tf]

    @property
    def regulators(self) -> list[str]:
        return list(self.modules)

    def targets(self) -> dict[str, list[str]]:
        """TF -> target list."""
        return {tf: list(m.targets) for tf, m in self.modules.items()}

    def edges(self) -> pd.DataFrame:
        """All retained edges, grouped by TF in rank order."""
        if not self.modules:
            return pd.DataFrame(columns=EDGE_COLUMNS)
        return pd.concat([m.edges for m in self.modules.values()], ignore_index=True)

    def __repr__(self) -> str:
        n_edges = sum(m.size for m in self.modules.values())
        return f"ModuleSet({len(self.modules)} modules, {n_edges} edges, p <= {self.thresholds.p_thresh})"


def _select_terms(fit: FitResult, thresholds: ModuleThresholds) -> pd.DataFrame:
    """Steps 1-3: significant terms of well-fit models, one per (tf, target)."""
    gof = fit.gof()
    # Missing model p-values only pass the default threshold of 1
    good = gof[
        (gof['model_pval'].fillna(1.0) <= thresholds.model_p_thresh)
        & (gof['rsq'] >= thresholds.rsq_thresh)
        & (gof['nvar'] >= thresholds.min_terms)
    ]

    coefs = fit.coefficients()
    coefs = coefs[coefs['target'].isin(good['gene'])]
    coefs = coefs.merge(
        good[['gene', 'rsq']].rename(columns={'gene': 'target'}), on='target', how='left'
    )
    coefs['p'] = coefs[thresholds.p_column].astype(np.float64)
    coefs = coefs[coefs['p'] <= thresholds.p_thresh]
    if len(coefs) == 0:
        return coefs

    coefs = coefs.assign(_abs=coefs['estimate'].abs())
    coefs = coefs.sort_values(
        ['tf', 'target', 'p', '_abs', 'region'],
        ascending=[True, True, True, False, True],
        kind='mergesort',
    )
    return coefs.drop_duplicates(['tf', 'target'], keep='first').drop(columns='_abs')


def build_modules(fit: FitResult, thresholds: Optional[ModuleThresholds] = None) -> ModuleSet:
    """
    Derive per-TF modules from fitted models.

    Args:
        fit: Fitted models (with padj on every term)
        thresholds: Module thresholds (defaults to ModuleThresholds())

    Returns:
        ModuleSet keyed by TF (sorted), with per-TF meta statistics

    Raises:
        NoModulesError: If no TF keeps enough targets
    """
    thresholds = thresholds or ModuleThresholds()
    selected = _select_terms(fit, thresholds)

    modules: dict[str, RegulatorModule] = {}
    meta_rows = []
    for tf, group in selected.groupby('tf', sort=True):
        records = sorted(group.to_dict('records'), key=edge_sort_key)
        if thresholds.top_k is not None:
            records = records[:thresholds.top_k]
        if len(records) < thresholds.min_genes_per_module:
            continue

        edges = pd.DataFrame.from_records(records)[EDGE_COLUMNS].reset_index(drop=True)
        module = RegulatorModule(
            tf=str(tf),
            targets=tuple(edges['target']),
            edges=edges,
        )
        modules[module.tf] = module
        meta_rows.append({
            'tf': module.tf,
            'n_genes': module.size,
            'n_regions': len(module.regions),
            'n_positive': len(module.positive_targets),
            'n_negative': len(module.negative_targets),
            'mean_rsq': float(edges['rsq'].mean()),
            'median_rsq': float(edges['rsq'].median()),
        })

    if not modules:
        raise NoModulesError(
            f"No module survives the thresholds {thresholds.to_dict()} "
            f"({len(fit)} fitted models, {len(selected)} significant edges)"
        )

    meta = pd.DataFrame(meta_rows, columns=META_COLUMNS)
    n_edges = int(meta['n_genes'].sum())
    logger.info(
        f"Built {len(modules)} modules with {n_edges} edges "
        f"({thresholds.p_column} <= {thresholds.p_thresh}, rsq >= {thresholds.rsq_thresh})"
    )
    return ModuleSet(modules=modules, thresholds=thresholds, meta=meta)
