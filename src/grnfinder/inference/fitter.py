"""
Model fitting across target genes.

Pipeline per target gene:
    associated regions (association strategy)
        -> regions bound by an expressed TF (motif matches)
        -> correlation filters (tf_cor, peak_cor)
        -> OLS on TF x region interaction terms (fit_gene)

Genes are independent units of work. With n_workers > 1 they are fit in a
ProcessPoolExecutor (spawn context); the read-only inputs are shipped once
per worker through the pool initializer. Results are merged keyed by gene,
and term p-values are adjusted (Benjamini-Hochberg) over all terms in
(gene, tf, region) order, so the outcome does not depend on the worker
count or on completion order.

Engineering Design:
    - ModelFitter: holds fitting parameters, fit() returns an immutable FitResult
    - Per-gene failures (InsufficientDataError) are logged and reported in
      FitResult.skipped; they never abort the run
    - NoModelsError when not a single gene could be fit
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from grnfinder.core.modality import Modality
from grnfinder.exceptions import InsufficientDataError, NoModelsError
from grnfinder.inference.association import RegionGeneAssociation, get_association
from grnfinder.inference.regression import (
    GeneModel,
    fit_gene,
    multiple_testing_correction,
)
from grnfinder.motifs.scanner import MotifMatches
from grnfinder.regions.annotation import GeneAnnotation
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = ['FitResult', 'ModelFitter', 'COEFFICIENT_COLUMNS', 'GOF_COLUMNS']

COEFFICIENT_COLUMNS = [
    'tf', 'target', 'region', 'estimate', 'std_err', 'statistic', 'pval', 'padj',
]
GOF_COLUMNS = ['gene', 'rsq', 'adj_rsq', 'nvar', 'n_obs', 'aic', 'model_pval']


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Fitted models for all target genes of one run.

    Attributes:
        models: Gene -> GeneModel, sorted by gene
        skipped: Gene -> reason it has no model
        params: Fitting parameters, for provenance
    """
    models: Mapping[str, GeneModel]
    skipped: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def genes(self) -> list[str]:
        return list(self.models)

    def __len__(self) -> int:
        return len(self.models)

    def __contains__(self, gene: str) -> bool:
        return gene in self.models

    def coefficients(self) -> pd.DataFrame:
        """Long table of all terms: tf, target, region, estimate, ..., padj."""
        frames = [
            model.terms.assign(target=gene)
            for gene, model in self.models.items()
        ]
        if not frames:
            return pd.DataFrame(columns=COEFFICIENT_COLUMNS)
        coefs = pd.concat(frames, ignore_index=True)
        if 'padj' not in coefs.columns:
            coefs['padj'] = np.nan
        return coefs[COEFFICIENT_COLUMNS]

    def gof(self) -> pd.DataFrame:
        """Goodness of fit, one row per gene."""
        return pd.DataFrame(
            [model.gof() for model in self.models.values()],
            columns=GOF_COLUMNS,
        )

    def has_term(self, tf: str, target: str, region: Optional[str] = None) -> bool:
        """True if the target's model contains a (tf, region) term."""
        model = self.models.get(target)
        if model is None:
            return False
        hit = model.terms['tf'] == tf
        if region is not None:
            hit &= model.terms['region'] == region
        return bool(hit.any())

    @classmethod
    def from_tables(
        cls,
        coefficients: pd.DataFrame,
        gof: pd.DataFrame,
        params: Optional[Mapping[str, Any]] = None,
    ) -> FitResult:
        """Rebuild a FitResult from saved coefficient and goodness-of-fit tables."""
        missing = [c for c in COEFFICIENT_COLUMNS if c not in coefficients.columns]
        missing += [c for c in GOF_COLUMNS if c not in gof.columns]
        if missing:
            raise ValueError(f"Fit tables are missing columns: {missing}")

        term_columns = ['tf', 'region', 'estimate', 'std_err', 'statistic', 'pval', 'padj']
        by_gene = {
            str(gene): group for gene, group in coefficients.groupby('target', sort=True)
        }
        models = {}
        for row in gof.sort_values('gene').itertuples(index=False):
            gene = str(row.gene)
            terms = by_gene.get(gene)
            if terms is None:
                continue
            terms = terms[term_columns].sort_values(['tf', 'region']).reset_index(drop=True)
            models[gene] = GeneModel(
                gene=gene,
                terms=terms.astype({'tf': str, 'region': str}),
                rsq=float(row.rsq),
                adj_rsq=float(row.adj_rsq),
                nvar=int(row.nvar),
                n_obs=int(row.n_obs),
                aic=float(row.aic),
                model_pval=float(row.model_pval),
            )
        return cls(models=models, skipped={}, params=dict(params or {}))

    def __repr__(self) -> str:
        n_terms = sum(len(m.terms) for m in self.models.values())
        return f"FitResult({len(self.models)} models, {n_terms} terms, {len(self.skipped)} skipped)"


# =============================================================================
# Per-gene work
# =============================================================================

def _abs_correlation(y: np.ndarray, block: np.ndarray) -> np.ndarray:
    """|Pearson r| of y with each row of block; 0 where undefined."""
    yc = y - y.mean()
    bc = block - block.mean(axis=1, keepdims=True)
    denom = np.sqrt((bc ** 2).sum(axis=1) * (yc ** 2).sum())
    with np.errstate(invalid='ignore', divide='ignore'):
        r = np.where(denom > 0, bc @ yc / denom, 0.0)
    return np.abs(r)


def _fit_target(
    gene: str,
    candidates: pd.DataFrame,
    rna: Modality,
    atac: Modality,
    params: Mapping[str, Any],
) -> GeneModel:
    """Apply correlation filters to the candidate terms and fit one gene."""
    y = rna.feature_vector(gene)
    tfs = sorted(candidates['tf'].unique())
    regions = sorted(candidates['region'].unique())
    tf_block = rna.feature_block(tfs)
    region_block = atac.feature_block(regions)

    if params['tf_cor'] > 0:
        keep = _abs_correlation(y, tf_block) >= params['tf_cor']
        candidates = candidates[candidates['tf'].isin(np.asarray(tfs)[keep])]
    if params['peak_cor'] > 0:
        keep = _abs_correlation(y, region_block) >= params['peak_cor']
        candidates = candidates[candidates['region'].isin(np.asarray(regions)[keep])]
    if len(candidates) == 0:
        raise InsufficientDataError(f"{gene}: no term passes the correlation filters")

    return fit_gene(
        gene,
        y,
        candidates,
        tf_expression=dict(zip(tfs, tf_block)),
        region_accessibility=dict(zip(regions, region_block)),
        scale=params['scale'],
    )


def _fit_or_skip(gene, candidates, rna, atac, params):
    """Returns (gene, model, None) or (gene, None, reason)."""
    try:
        return gene, _fit_target(gene, candidates, rna, atac, params), None
    except (InsufficientDataError, np.linalg.LinAlgError) as e:
        return gene, None, str(e)


# =============================================================================
# Process Worker for Multiprocessing
# =============================================================================

# Module-level globals for worker processes (initialized via _init_worker)
_worker_rna = None
_worker_atac = None
_worker_params = None


def _init_worker(rna, atac, params):
    """Initialize a worker process with the read-only fitting inputs.

    Args:
        rna: Expression Modality restricted to targets and TFs
        atac: Accessibility Modality restricted to candidate regions
        params: Fitting parameters (tf_cor, peak_cor, scale)
    """
    global _worker_rna, _worker_atac, _worker_params
    _worker_rna = rna
    _worker_atac = atac
    _worker_params = params


def _fit_worker(args):
    """Worker function for ProcessPoolExecutor - fits one target gene."""
    gene, candidates = args
    return _fit_or_skip(gene, candidates, _worker_rna, _worker_atac, _worker_params)


# =============================================================================
# Fitter
# =============================================================================

class ModelFitter:
    """
    Fits one regression model per target gene.

    Args:
        association: Region-to-gene rule: "nearest", "window", "domain" or
            a RegionGeneAssociation instance
        association_options: Constructor arguments for a built-in association
        tf_cor: Minimum |correlation| between TF and target expression
        peak_cor: Minimum |correlation| between region accessibility and
            target expression
        scale: Z-score response and predictors
        aggregate_by: cell_metadata column of the RNA modality used to
            average cells into metacells before fitting (None = per cell)
        n_workers: Worker processes (1 = sequential)

    Examples:
        >>> fitter = ModelFitter(association="window", tf_cor=0.1)
        >>> fit = fitter.fit(rna, atac, regions, motifs, annotation)
        >>> fit.coefficients().head()
    """

    def __init__(
        self,
        association: str | RegionGeneAssociation = "window",
        association_options: Optional[Mapping[str, Any]] = None,
        tf_cor: float = 0.1,
        peak_cor: float = 0.0,
        scale: bool = False,
        aggregate_by: Optional[str] = None,
        n_workers: int = 1,
    ):
        if not 0 <= tf_cor <= 1 or not 0 <= peak_cor <= 1:
            raise ValueError("tf_cor and peak_cor must be in [0, 1]")
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self.association = get_association(association, **dict(association_options or {}))
        self.tf_cor = tf_cor
        self.peak_cor = peak_cor
        self.scale = scale
        self.aggregate_by = aggregate_by
        self.n_workers = n_workers

    @property
    def params(self) -> dict:
        return {
            'association': self.association.label
            if hasattr(self.association, 'label') else repr(self.association),
            'tf_cor': self.tf_cor,
            'peak_cor': self.peak_cor,
            'scale': self.scale,
            'aggregate_by': self.aggregate_by,
        }

    def candidate_terms(
        self,
        rna: Modality,
        atac: Modality,
        regions: GenomicRegions,
        motifs: MotifMatches,
        annotation: GeneAnnotation,
    ) -> pd.DataFrame:
        """
        All (target, tf, region) candidates before correlation filtering.

        A candidate needs: region associated with the target, a motif of
        the TF in the region, the TF expressed, and TF != target.
        """
        associations = self._associations(rna, atac, regions, annotation)
        return self._join_binding(associations, rna, motifs)

    def _associations(self, rna, atac, regions, annotation) -> pd.DataFrame:
        """Region-gene links restricted to measured regions and expressed genes."""
        associations = self.association.associate(regions, annotation)
        return associations[
            associations['region'].isin(atac.feature_ids)
            & associations['gene'].isin(rna.feature_ids)
        ]

    def _join_binding(self, associations, rna, motifs) -> pd.DataFrame:
        binding = motifs.binding_pairs()
        binding = binding[binding['tf'].isin(rna.feature_ids)]

        cand = associations.merge(binding, on='region', how='inner')
        cand = cand[cand['tf'] != cand['gene']]
        cand = cand.rename(columns={'gene': 'target'})
        logger.info(
            f"Candidate terms: {len(cand)} over {cand['target'].nunique()} targets "
            f"({len(associations)} region-gene links, {binding['tf'].nunique()} expressed TFs)"
        )
        return cand[['target', 'tf', 'region', 'distance']].sort_values(
            ['target', 'tf', 'region']
        ).reset_index(drop=True)

    def fit(
        self,
        rna: Modality,
        atac: Modality,
        regions: GenomicRegions,
        motifs: MotifMatches,
        annotation: GeneAnnotation,
        genes: Optional[Iterable[str]] = None,
    ) -> FitResult:
        """
        Fit models for target genes.

        Args:
            rna: Expression modality (genes x cells)
            atac: Accessibility modality (regions x cells), same cells as rna
            regions: Candidate regions (rows of `motifs`)
            motifs: Region x motif matches with motif-to-TF mapping
            annotation: Gene coordinates
            genes: Targets to fit (default: every expressed gene with at
                least one associated region)

        Returns:
            FitResult with models keyed by gene and BH-adjusted term p-values

        Raises:
            ValueError: If aggregate_by is not a cell_metadata column
            NoModelsError: If no gene could be fit
        """
        if not rna.cell_ids.equals(atac.cell_ids):
            raise ValueError("rna and atac must have identical cell_ids")

        missing_regions = [r for r in regions.names if not atac.has_feature(r)]
        if missing_regions:
            logger.warning(
                f"{len(missing_regions)} candidate regions are not in the accessibility "
                f"matrix and are ignored (e.g. {missing_regions[:3]})"
            )

        if self.aggregate_by is not None:
            if self.aggregate_by not in rna.cell_metadata.columns:
                raise ValueError(f"cell_metadata has no column '{self.aggregate_by}'")
            labels = rna.cell_metadata[self.aggregate_by].to_numpy()
            rna = rna.aggregate(labels)
            atac = atac.aggregate(labels)
            logger.info(f"Aggregated cells by '{self.aggregate_by}' into {rna.n_cells} metacells")

        associations = self._associations(rna, atac, regions, annotation)
        candidates = self._join_binding(associations, rna, motifs)
        by_target = {
            str(target): group[['tf', 'region']].reset_index(drop=True)
            for target, group in candidates.groupby('target', sort=True)
        }

        if genes is None:
            genes = sorted(associations['gene'].astype(str).unique())
        skipped: dict[str, str] = {}
        targets = []
        for gene in dict.fromkeys(str(g) for g in genes):
            if not rna.has_feature(gene):
                skipped[gene] = "not expressed"
            elif gene not in by_target:
                skipped[gene] = "no candidate terms"
            else:
                targets.append(gene)
        targets.sort()
        for gene, reason in skipped.items():
            logger.debug(f"Skipping {gene}: {reason}")
        if not targets:
            raise NoModelsError(
                "No target gene has a candidate term (associated region bound by an expressed TF)"
            )

        # Ship only what the fits read
        tfs = sorted(candidates['tf'].unique())
        rna_used = rna.select_features(sorted(set(targets) | set(tfs)))
        atac_used = atac.select_features(sorted(candidates['region'].unique()))
        params = {'tf_cor': self.tf_cor, 'peak_cor': self.peak_cor, 'scale': self.scale}

        logger.info(
            f"Fitting {len(targets)} target genes on {rna.n_cells} observations "
            f"(workers={self.n_workers})"
        )
        outcomes = self._run(targets, by_target, rna_used, atac_used, params)

        models: dict[str, GeneModel] = {}
        for gene in sorted(outcomes):
            model, reason = outcomes[gene]
            if model is None:
                logger.warning(f"Skipping {gene}: {reason}")
                skipped[gene] = reason
            else:
                models[gene] = model

        if not models:
            raise NoModelsError(
                f"No model could be fit for any of {len(targets)} target genes "
                f"({len(skipped)} skipped)"
            )

        models = _adjust_term_pvalues(models)
        n_terms = sum(len(m.terms) for m in models.values())
        logger.info(f"Fitted {len(models)} models ({n_terms} terms), skipped {len(skipped)} genes")

        return FitResult(
            models=models,
            skipped=dict(sorted(skipped.items())),
            params={**self.params, 'n_targets': len(targets)},
        )

    def _run(self, targets, by_target, rna, atac, params) -> dict:
        outcomes = {}
        total = len(targets)
        completed = 0

        if self.n_workers > 1 and total > 1:
            logger.info(f"Using {self.n_workers} PROCESS workers")
            # Use 'spawn' context for clean process creation (avoids fork issues)
            ctx = mp.get_context('spawn')
            with ProcessPoolExecutor(
                max_workers=self.n_workers,
                mp_context=ctx,
                initializer=_init_worker,
                initargs=(rna, atac, params),
            ) as executor:
                futures = {
                    executor.submit(_fit_worker, (gene, by_target[gene])): gene
                    for gene in targets
                }
                for future in as_completed(futures):
                    gene, model, reason = future.result()
                    outcomes[gene] = (model, reason)
                    completed += 1
                    if completed % 10 == 0 or completed == total:
                        pct = 100 * completed / total
                        logger.info(f"Progress: {completed}/{total} genes ({pct:.1f}%)")
        else:
            for gene in targets:
                gene, model, reason = _fit_or_skip(gene, by_target[gene], rna, atac, params)
                outcomes[gene] = (model, reason)
                completed += 1
                if completed % 10 == 0 or completed == total:
                    pct = 100 * completed / total
                    logger.info(f"Progress: {completed}/{total} genes ({pct:.1f}%)")

        return outcomes


def _adjust_term_pvalues(models: Mapping[str, GeneModel]) -> dict[str, GeneModel]:
    """BH-adjust all term p-values jointly, in (gene, tf, region) order."""
    genes = sorted(models)
    pvals = np.concatenate([models[g].terms['pval'].to_numpy(np.float64) for g in genes])
    padj = multiple_testing_correction(pvals, method="BH")

    adjusted = {}
    start = 0
    for gene in genes:
        n = len(models[gene].terms)
        adjusted[gene] = models[gene].with_padj(padj[start:start + n])
        start += n
    return adjusted
