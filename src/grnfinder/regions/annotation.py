"""
Gene annotation used for region-to-gene association.

A GeneAnnotation is a table of gene bodies (gene_name, chrom, start, end,
strand) plus, optionally, exon intervals. It is loaded from a GTF file or
built from any DataFrame with those columns.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

import bioframe as bf
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['GeneAnnotation']

GTF_COLUMNS = [
    "seqname", "source", "feature", "start", "end",
    "score", "strand", "frame", "attribute",
]


def _parse_gtf_attribute(attributes: pd.Series, key: str) -> pd.Series:
    return attributes.str.extract(rf'{re.escape(key)} "([^"]+)"', expand=False)


class GeneAnnotation:
    """
    Gene coordinates, one row per gene name.

    Attributes:
        genes: DataFrame with gene_name, chrom, start, end, strand
        exon_frame: Optional DataFrame of exon intervals (chrom, start, end, gene_name)
    """

    def __init__(self, genes: pd.DataFrame, exons: Optional[pd.DataFrame] = None):
        required = ['gene_name', 'chrom', 'start', 'end', 'strand']
        missing = [c for c in required if c not in genes.columns]
        if missing:
            raise ValueError(f"Gene annotation is missing columns: {missing}")

        df = genes[required].copy()
        df['chrom'] = df['chrom'].astype(str)
        df['start'] = df['start'].astype(np.int64)
        df['end'] = df['end'].astype(np.int64)
        df['gene_name'] = df['gene_name'].astype(str)
        bad_strand = ~df['strand'].isin(['+', '-'])
        if bad_strand.any():
            raise ValueError(
                f"strand must be '+' or '-', got {sorted(df.loc[bad_strand, 'strand'].unique())[:5]}"
            )

        # Multiple rows per gene (alternative loci) collapse to the first one
        n_dupes = int(df['gene_name'].duplicated().sum())
        if n_dupes:
            logger.debug(f"Gene annotation: dropping {n_dupes} duplicated gene entries")
            df = df.drop_duplicates('gene_name', keep='first')

        self._genes = df.reset_index(drop=True)
        self._exons = exons.copy() if exons is not None else None

    @classmethod
    def from_gtf(
        cls,
        path: Path | str,
        gene_name_attr: str = "gene_name",
        gene_types: Optional[Iterable[str]] = None,
    ) -> GeneAnnotation:
        """
        Load genes and exons from a GTF file.

        Args:
            path: GTF (optionally gzipped)
            gene_name_attr: Attribute holding the gene symbol
            gene_types: Keep only these gene_type/gene_biotype values
                (e.g. {"protein_coding"}); None keeps all
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"GTF file not found: {path}")

        df = bf.read_table(str(path), names=GTF_COLUMNS, sep="\t", comment="#")
        df = df[df['feature'].isin(['gene', 'exon'])].copy()
        df['gene_name'] = _parse_gtf_attribute(df['attribute'], gene_name_attr)
        df = df.dropna(subset=['gene_name'])

        if gene_types is not None:
            gtype = _parse_gtf_attribute(df['attribute'], 'gene_type')
            gtype = gtype.fillna(_parse_gtf_attribute(df['attribute'], 'gene_biotype'))
            df = df[gtype.isin(set(gene_types))]

        # GTF is 1-based inclusive; convert to 0-based half-open
        df['start'] = df['start'].astype(np.int64) - 1
        df = df.rename(columns={'seqname': 'chrom'})

        genes = df[df['feature'] == 'gene']
        exons = df.loc[df['feature'] == 'exon', ['chrom', 'start', 'end', 'gene_name']]
        logger.info(f"Loaded {len(genes)} genes and {len(exons)} exons from {path.name}")
        return cls(genes, exons=exons.reset_index(drop=True))

    @property
    def genes(self) -> pd.DataFrame:
        return self._genes.copy()

    @property
    def gene_names(self) -> pd.Index:
        return pd.Index(self._genes['gene_name'])

    def __len__(self) -> int:
        return len(self._genes)

    def __repr__(self) -> str:
        n_exons = len(self._exons) if self._exons is not None else 0
        return f"GeneAnnotation({len(self)} genes, {n_exons} exons)"

    def tss(self) -> pd.DataFrame:
        """
        Strand-aware transcription start sites as 1-bp intervals.

        '+' strand: TSS = start; '-' strand: TSS = end - 1.
        """
        g = self._genes
        tss = np.where(g['strand'] == '+', g['start'], g['end'] - 1)
        return pd.DataFrame({
            'chrom': g['chrom'].values,
            'start': tss.astype(np.int64),
            'end': (tss + 1).astype(np.int64),
            'gene_name': g['gene_name'].values,
            'strand': g['strand'].values,
        })

    def exons(self) -> pd.DataFrame:
        """Exon intervals; raises if the annotation carries none."""
        if self._exons is None:
            raise ValueError("This annotation has no exon intervals")
        return self._exons.copy()

    @property
    def has_exons(self) -> bool:
        return self._exons is not None and len(self._exons) > 0

    def restrict(self, gene_names: Iterable[str]) -> GeneAnnotation:
        """Keep only the given genes (unknown names are ignored)."""
        wanted = set(gene_names)
        genes = self._genes[self._genes['gene_name'].isin(wanted)]
        exons = None
        if self._exons is not None:
            exons = self._exons[self._exons['gene_name'].isin(wanted)]
        return GeneAnnotation(genes, exons=exons)
