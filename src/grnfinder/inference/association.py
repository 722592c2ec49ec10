"""
Region-to-gene association strategies.

Before any model is fit, each candidate region has to be linked to the
genes it may regulate. There is no single right answer, so the rule is a
pluggable strategy:

1. NEAREST: each region -> the gene with the closest TSS
2. WINDOW: each gene <- all regions inside a strand-aware window around
   its gene body (or TSS)
3. DOMAIN: GREAT-style regulatory domains. Every gene gets a basal domain
   around its TSS, extended in both directions up to the neighbouring
   genes' basal domains (capped at `extension` bp)

All strategies return the same table: one row per (region, gene) pair with
the distance (bp) between the region and the gene's TSS, 0 when the
region covers the TSS.

Engineering Design:
    - RegionGeneAssociation: abstract interface (like GeneUniverseSelector)
    - Interval arithmetic through bioframe (closest / overlap)
    - AssociationMethod + get_association resolve the closed set of
      built-ins; any object with an `associate` method is accepted too
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import bioframe as bf
import numpy as np
import pandas as pd

from grnfinder.regions.annotation import GeneAnnotation
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = [
    'RegionGeneAssociation',
    'NearestGeneAssociation',
    'WindowAssociation',
    'RegulatoryDomainAssociation',
    'AssociationMethod',
    'get_association',
    'ASSOCIATION_COLUMNS',
]

ASSOCIATION_COLUMNS = ['region', 'gene', 'distance']


def _tss_distance(start: np.ndarray, end: np.ndarray, tss: np.ndarray) -> np.ndarray:
    """Distance from half-open [start, end) to a TSS position (0 if covered)."""
    before = start - tss
    after = tss - (end - 1)
    return np.maximum(0, np.maximum(before, after)).astype(np.int64)


def _empty_associations() -> pd.DataFrame:
    return pd.DataFrame({
        'region': pd.Series(dtype=str),
        'gene': pd.Series(dtype=str),
        'distance': pd.Series(dtype=np.int64),
    })


def _finalize(df: pd.DataFrame) -> pd.DataFrame:
    if len(df) == 0:
        return _empty_associations()
    df = df[ASSOCIATION_COLUMNS].drop_duplicates(['region', 'gene'])
    df = df.astype({'region': str, 'gene': str, 'distance': np.int64})
    return df.sort_values(['gene', 'region']).reset_index(drop=True)


def _overlap_domains(regions: GenomicRegions, domains: pd.DataFrame) -> pd.DataFrame:
    """Pair regions with every gene domain they overlap."""
    left = regions.to_frame()[['chrom', 'start', 'end', 'name']]
    if len(left) == 0 or len(domains) == 0:
        return _empty_associations()
    hits = bf.overlap(left, domains, how='inner', suffixes=('_1', '_2'))
    if len(hits) == 0:
        return _empty_associations()
    distance = _tss_distance(
        hits['start_1'].to_numpy(np.int64),
        hits['end_1'].to_numpy(np.int64),
        hits['tss_2'].to_numpy(np.int64),
    )
    return _finalize(pd.DataFrame({
        'region': hits['name_1'].to_numpy(),
        'gene': hits['gene_name_2'].to_numpy(),
        'distance': distance,
    }))


class RegionGeneAssociation(ABC):
    """
    Abstract interface for linking candidate regions to target genes.
    """

    @abstractmethod
    def associate(self, regions: GenomicRegions, annotation: GeneAnnotation) -> pd.DataFrame:
        """
        Link regions to genes.

        Returns:
            DataFrame with columns region, gene, distance; unique
            (region, gene) pairs sorted by gene then region
        """
        pass

    @property
    @abstractmethod
    def label(self) -> str:
        """Short description used in logs and run configs."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label})"


class NearestGeneAssociation(RegionGeneAssociation):
    """
    Each region is assigned to the gene whose TSS is closest.

    Attributes:
        max_distance: Drop assignments farther than this (None = no limit)
    """

    def __init__(self, max_distance: Optional[int] = None):
        if max_distance is not None and max_distance < 0:
            raise ValueError(f"max_distance must be >= 0, got {max_distance}")
        self.max_distance = max_distance

    @property
    def label(self) -> str:
        limit = "unlimited" if self.max_distance is None else f"<= {self.max_distance} bp"
        return f"nearest TSS, {limit}"

    def associate(self, regions: GenomicRegions, annotation: GeneAnnotation) -> pd.DataFrame:
        left = regions.to_frame()[['chrom', 'start', 'end', 'name']]
        tss = annotation.tss()
        if len(left) == 0 or len(tss) == 0:
            return _empty_associations()

        hits = bf.closest(left, tss, k=1, suffixes=('_1', '_2'))
        hits = hits.dropna(subset=['gene_name_2', 'start_2'])
        if len(hits) == 0:
            return _empty_associations()

        distance = _tss_distance(
            hits['start_1'].to_numpy(np.int64),
            hits['end_1'].to_numpy(np.int64),
            hits['start_2'].to_numpy(np.int64),
        )
        result = pd.DataFrame({
            'region': hits['name_1'].to_numpy(),
            'gene': hits['gene_name_2'].to_numpy(),
            'distance': distance,
        })
        if self.max_distance is not None:
            result = result[result['distance'] <= self.max_distance]
        return _finalize(result)


class WindowAssociation(RegionGeneAssociation):
    """
    Each gene collects all regions inside a window around it.

    The window is strand-aware: `upstream` extends towards the 5' end
    of the gene, `downstream` past its 3' end (or past the TSS when
    `from_tss` is set).

    Attributes:
        upstream: bp added upstream of the gene start
        downstream: bp added downstream of the gene end (or TSS)
        from_tss: Use the TSS instead of the whole gene body as the anchor
    """

    def __init__(self, upstream: int = 100_000, downstream: int = 0, from_tss: bool = False):
        if upstream < 0 or downstream < 0:
            raise ValueError("upstream and downstream must be >= 0")
        self.upstream = int(upstream)
        self.downstream = int(downstream)
        self.from_tss = from_tss

    @property
    def label(self) -> str:
        anchor = "TSS" if self.from_tss else "gene body"
        return f"window {self.upstream} bp up / {self.downstream} bp down of {anchor}"

    def windows(self, annotation: GeneAnnotation) -> pd.DataFrame:
        """Per-gene window intervals (chrom, start, end, gene_name, tss)."""
        genes = annotation.genes
        tss = annotation.tss()['start'].to_numpy(np.int64)
        plus = (genes['strand'] == '+').to_numpy()

        if self.from_tss:
            body_start, body_end = tss, tss + 1
        else:
            body_start = genes['start'].to_numpy(np.int64)
            body_end = genes['end'].to_numpy(np.int64)

        start = np.where(plus, body_start - self.upstream, body_start - self.downstream)
        end = np.where(plus, body_end + self.downstream, body_end + self.upstream)
        return pd.DataFrame({
            'chrom': genes['chrom'].to_numpy(),
            'start': np.maximum(start, 0),
            'end': end,
            'gene_name': genes['gene_name'].to_numpy(),
            'tss': tss,
        })

    def associate(self, regions: GenomicRegions, annotation: GeneAnnotation) -> pd.DataFrame:
        return _overlap_domains(regions, self.windows(annotation))


class RegulatoryDomainAssociation(RegionGeneAssociation):
    """
    GREAT-style basal plus extension regulatory domains.

    Basal domain: [TSS - basal_upstream, TSS + basal_downstream], strand-aware.
    Extended domain: grown in both directions until it meets the nearest
    neighbouring gene's basal domain, but no more than `extension` bp from
    the TSS. A gene's basal domain is always kept, even inside a
    neighbour's.
    """

    def __init__(
        self,
        basal_upstream: int = 5000,
        basal_downstream: int = 1000,
        extension: int = 1_000_000,
    ):
        if min(basal_upstream, basal_downstream, extension) < 0:
            raise ValueError("Domain sizes must be >= 0")
        self.basal_upstream = int(basal_upstream)
        self.basal_downstream = int(basal_downstream)
        self.extension = int(extension)

    @property
    def label(self) -> str:
        return (
            f"regulatory domain (basal {self.basal_upstream}/{self.basal_downstream} bp, "
            f"extension {self.extension} bp)"
        )

    def domains(self, annotation: GeneAnnotation) -> pd.DataFrame:
        """Per-gene regulatory domains (chrom, start, end, gene_name, tss)."""
        tss = annotation.tss()
        plus = (tss['strand'] == '+').to_numpy()
        pos = tss['start'].to_numpy(np.int64)
        tss = tss.assign(
            basal_start=np.maximum(
                0, np.where(plus, pos - self.basal_upstream, pos - self.basal_downstream)
            ),
            basal_end=np.where(plus, pos + self.basal_downstream, pos + self.basal_upstream) + 1,
        )

        frames = []
        for chrom, group in tss.groupby('chrom', sort=True):
            group = group.sort_values(['start', 'gene_name'])
            pos = group['start'].to_numpy(np.int64)
            basal_start = group['basal_start'].to_numpy(np.int64)
            basal_end = group['basal_end'].to_numpy(np.int64)

            # Neighbouring basal domains bound the extension
            prev_end = np.concatenate([[0], np.maximum.accumulate(basal_end)[:-1]])
            next_start = np.concatenate(
                [np.minimum.accumulate(basal_start[::-1])[::-1][1:], [np.iinfo(np.int64).max]]
            )
            ext_start = np.maximum(pos - self.extension, prev_end)
            ext_end = np.minimum(pos + self.extension + 1, next_start)

            frames.append(pd.DataFrame({
                'chrom': chrom,
                'start': np.maximum(0, np.minimum(basal_start, ext_start)),
                'end': np.maximum(basal_end, ext_end),
                'gene_name': group['gene_name'].to_numpy(),
                'tss': pos,
            }))

        if not frames:
            return pd.DataFrame(columns=['chrom', 'start', 'end', 'gene_name', 'tss'])
        return pd.concat(frames, ignore_index=True)

    def associate(self, regions: GenomicRegions, annotation: GeneAnnotation) -> pd.DataFrame:
        return _overlap_domains(regions, self.domains(annotation))


class AssociationMethod(Enum):
    """Built-in region-to-gene association rules."""

    NEAREST = "nearest"
    WINDOW = "window"
    DOMAIN = "domain"


_METHODS = {
    AssociationMethod.NEAREST: NearestGeneAssociation,
    AssociationMethod.WINDOW: WindowAssociation,
    AssociationMethod.DOMAIN: RegulatoryDomainAssociation,
}


def get_association(method: str | AssociationMethod | RegionGeneAssociation = "window", **kwargs):
    """
    Resolve an association strategy.

    Args:
        method: "nearest", "window", "domain", an AssociationMethod, or an
            object that already implements `associate(regions, annotation)`
        **kwargs: Passed to the built-in strategy's constructor

    Raises:
        ValueError: Unknown method name
    """
    if isinstance(method, RegionGeneAssociation) or callable(getattr(method, 'associate', None)):
        if kwargs:
            raise ValueError("Keyword arguments apply only to built-in association methods")
        return method
    try:
        resolved = AssociationMethod(method)
    except ValueError:
        valid = [m.value for m in AssociationMethod]
        raise ValueError(f"Unknown association method '{method}'. Choose from {valid}") from None
    return _METHODS[resolved](**kwargs)
