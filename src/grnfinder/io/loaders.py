"""
Loaders for the pipeline inputs.

Matrices:
    - CSV/TSV: first column = feature ids, header = cell ids (features x cells)
    - Matrix Market (.mtx, .mtx.gz): features x cells sparse matrix plus
      feature and cell id files (10x layout: features.tsv / barcodes.tsv)

Annotations:
    - Motifs: JASPAR (.jaspar, .pfm) or MEME (.meme, .txt)
    - Motif -> TF mapping: CSV/TSV with columns motif, tf
    - Genes: GTF (.gtf, .gtf.gz) or a table with gene_name, chrom, start, end, strand
    - Regions: BED

Examples:
    >>> from grnfinder.io import load_modality
    >>> rna = load_modality("rna.mtx", features="genes.tsv", cells="barcodes.tsv", name="rna")
    >>> atac = load_modality("atac.csv", name="atac")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

import numpy as np
import pandas as pd
from scipy import io as sio
from scipy import sparse

from grnfinder.core.modality import Modality
from grnfinder.motifs.pwm import Motif, read_jaspar, read_meme
from grnfinder.regions.annotation import GeneAnnotation
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = [
    'load_modality',
    'load_cell_metadata',
    'load_motifs',
    'load_motif2tf',
    'load_annotation',
    'load_regions',
]


def _separator(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes]
    return "\t" if ".tsv" in suffixes or ".txt" in suffixes else ","


def _read_ids(path: Path, column: int = 0) -> pd.Index:
    """One id per line, or the `column`-th field of a tab-separated file."""
    if not path.exists():
        raise FileNotFoundError(f"Id file not found: {path}")
    df = pd.read_csv(path, sep="\t", header=None, dtype=str)
    return pd.Index(df.iloc[:, column].astype(str))


def load_modality(
    path: Path | str,
    kind: Literal["auto", "csv", "mtx"] = "auto",
    name: str = "modality",
    features: Optional[Path | str] = None,
    cells: Optional[Path | str] = None,
    feature_column: int = 0,
    cell_metadata: Optional[Path | str] = None,
) -> Modality:
    """
    Load a features x cells matrix.

    Args:
        path: Matrix file
        kind: "csv", "mtx" or "auto" (from the file extension)
        name: Modality label ("rna", "atac")
        features: Feature id file (Matrix Market only)
        cells: Cell id file (Matrix Market only)
        feature_column: Column of the feature file holding the ids
            (10x features.tsv: 0 = Ensembl id, 1 = symbol)
        cell_metadata: Optional CSV indexed by cell id

    Raises:
        FileNotFoundError: Missing input file
        ValueError: Malformed or inconsistent input
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Matrix file not found: {path}")

    if kind == "auto":
        kind = "mtx" if ".mtx" in [s.lower() for s in path.suffixes] else "csv"

    if kind == "mtx":
        if features is None or cells is None:
            raise ValueError("Matrix Market input needs `features` and `cells` id files")
        data = sparse.csr_matrix(sio.mmread(str(path)))
        feature_ids = _read_ids(Path(features), feature_column)
        cell_ids = _read_ids(Path(cells))
        if not feature_ids.is_unique:
            n_dupes = int(feature_ids.duplicated().sum())
            logger.warning(f"{path.name}: {n_dupes} duplicated feature ids, keeping first occurrence")
            keep = ~feature_ids.duplicated()
            data = data[np.flatnonzero(keep)]
            feature_ids = feature_ids[keep]
    elif kind == "csv":
        try:
            df = pd.read_csv(path, index_col=0, sep=_separator(path))
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"Matrix file is empty: {path}") from e
        if df.shape[0] == 0 or df.shape[1] == 0:
            raise ValueError(f"Matrix file contains no data: {path}")
        if df.index.duplicated().any():
            logger.warning(
                f"{path.name}: {int(df.index.duplicated().sum())} duplicated feature ids, "
                "keeping first occurrence"
            )
            df = df[~df.index.duplicated(keep='first')]
        try:
            data = df.to_numpy(dtype=np.float64)
        except ValueError as e:
            raise ValueError(f"Matrix file contains non-numeric values: {path}") from e
        feature_ids = pd.Index(df.index.astype(str))
        cell_ids = pd.Index(df.columns.astype(str))
    else:
        raise ValueError(f"Unknown matrix kind: {kind}")

    meta = None
    if cell_metadata is not None:
        meta = load_cell_metadata(cell_metadata, cell_ids)

    modality = Modality(
        data=data,
        feature_ids=feature_ids,
        cell_ids=cell_ids,
        cell_metadata=meta,
        name=name,
    )
    logger.info(f"Loaded {name}: {modality.n_features} features x {modality.n_cells} cells from {path.name}")
    return modality


def load_cell_metadata(path: Path | str, cell_ids: pd.Index) -> pd.DataFrame:
    """Cell annotation table indexed by cell id, aligned to `cell_ids`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cell metadata not found: {path}")
    meta = pd.read_csv(path, index_col=0, sep=_separator(path))
    meta.index = meta.index.astype(str)
    missing = cell_ids.difference(meta.index)
    if len(missing):
        raise ValueError(f"Cell metadata lacks {len(missing)} cells, e.g. {list(missing[:3])}")
    return meta.loc[cell_ids]


def load_motifs(path: Path | str) -> list[Motif]:
    """Motif catalog from a JASPAR or MEME file (chosen by extension)."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in (".jaspar", ".pfm"):
        motifs = read_jaspar(path)
    elif suffix in (".meme", ".txt"):
        motifs = read_meme(path)
    else:
        raise ValueError(f"Unknown motif format '{suffix}' (expected .jaspar, .pfm, .meme or .txt)")
    logger.info(f"Loaded {len(motifs)} motifs from {path.name}")
    return motifs


def load_motif2tf(path: Path | str, motif_column: str = "motif", tf_column: str = "tf") -> pd.DataFrame:
    """Motif -> TF table (one row per pair)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Motif-to-TF table not found: {path}")
    df = pd.read_csv(path, sep=_separator(path), dtype=str)
    missing = [c for c in (motif_column, tf_column) if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name} is missing columns: {missing}")
    df = df[[motif_column, tf_column]].rename(columns={motif_column: 'motif', tf_column: 'tf'})
    return df.dropna().drop_duplicates().reset_index(drop=True)


def load_annotation(path: Path | str, **kwargs) -> GeneAnnotation:
    """Gene annotation from GTF (kwargs go to GeneAnnotation.from_gtf) or a gene table."""
    path = Path(path)
    suffixes = [s.lower() for s in path.suffixes]
    if ".gtf" in suffixes:
        return GeneAnnotation.from_gtf(path, **kwargs)
    if not path.exists():
        raise FileNotFoundError(f"Annotation file not found: {path}")
    return GeneAnnotation(pd.read_csv(path, sep=_separator(path)))


def load_regions(path: Path | str) -> GenomicRegions:
    return GenomicRegions.from_bed(path)
