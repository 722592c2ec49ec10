"""
Motif scanning of candidate regions.

The scanner answers one question per (region, motif) pair: does the region
contain at least one window scoring above the motif's p-value threshold on
either strand? The answer is stored as a sparse boolean region x motif
matrix, which, combined with the motif-to-TF mapping, says which
regulators can bind which regions.

Engineering Design:
    - All sequences of a chunk are concatenated into one integer-coded array
      separated by a sentinel base that scores -inf, so each motif is scored
      against the whole chunk with L vectorised numpy additions.
    - Per-region maxima come from np.maximum.reduceat over region offsets.
    - Ambiguous bases (N) score as background (0).
    - Motifs are independent, so they can be spread over a thread pool
      (numpy releases the GIL during the array arithmetic).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from grnfinder.exceptions import EmptyMotifMappingError
from grnfinder.motifs.genome import GenomeSource, fetch_sequences
from grnfinder.motifs.pwm import Motif, _check_background, score_threshold
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = ['MotifScanner', 'MotifMatches', 'scan_regions']

_N_CODE = 4
_SEP_CODE = 5

_ENCODE = np.full(256, _N_CODE, dtype=np.int8)
for _i, _base in enumerate("ACGT"):
    _ENCODE[ord(_base)] = _i
    _ENCODE[ord(_base.lower())] = _i


def _encode_chunk(sequences: Sequence[str], pad: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Concatenate sequences into one code array.

    Layout: seq0 SEP seq1 SEP ... seqN SEP followed by `pad` SEP codes.

    Returns:
        (codes, offsets) where offsets[i] is the start of sequence i
    """
    lengths = np.array([len(s) for s in sequences], dtype=np.int64)
    offsets = np.concatenate([[0], np.cumsum(lengths + 1)[:-1]]).astype(np.int64)
    joined = "\x00".join(sequences) + "\x00" * (1 + pad)
    raw = np.frombuffer(joined.encode('ascii'), dtype=np.uint8)
    codes = _ENCODE[raw]
    codes[raw == 0] = _SEP_CODE
    return codes, offsets


class MotifScanner:
    """
    Vectorised log-odds motif scanner.

    Args:
        p_value: Per-window p-value used to derive each motif's score threshold
        background: A, C, G, T frequencies (uniform if None)
        pseudocount: Smoothing added to motif frequencies
        both_strands: Also scan the reverse complement
        chunk_size: Number of sequences scored together
        n_workers: Threads used to score motifs concurrently

    Examples:
        >>> scanner = MotifScanner(p_value=1e-4)
        >>> hits = scanner.scan(["ACGTGCACGTG", "TTTTTTTT"], motifs)
        >>> hits.shape
        (2, len(motifs))
    """

    def __init__(
        self,
        p_value: float = 5e-5,
        background: Optional[Sequence[float]] = None,
        pseudocount: float = 0.01,
        both_strands: bool = True,
        chunk_size: int = 2000,
        n_workers: int = 1,
    ):
        if not 0 < p_value < 1:
            raise ValueError(f"p_value must be in (0, 1), got {p_value}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.p_value = p_value
        self.background = _check_background(background)
        self.pseudocount = pseudocount
        self.both_strands = both_strands
        self.chunk_size = chunk_size
        self.n_workers = max(1, int(n_workers))

    def thresholds(self, motifs: Sequence[Motif]) -> np.ndarray:
        """Score threshold of each motif at the scanner's p-value."""
        return np.array([
            score_threshold(m.log_odds(self.background, self.pseudocount), self.p_value, self.background)
            for m in motifs
        ])

    def _weights(self, motif: Motif) -> list[np.ndarray]:
        """Per-strand 6 x L lookup tables (A, C, G, T, N, separator)."""
        lo = motif.log_odds(self.background, self.pseudocount)
        tables = [lo]
        if self.both_strands:
            tables.append(lo[::-1, ::-1])
        out = []
        for table in tables:
            full = np.zeros((6, table.shape[1]))
            full[:4] = table
            full[_SEP_CODE] = -np.inf
            out.append(full)
        return out

    def _max_scores(self, codes: np.ndarray, offsets: np.ndarray, motif: Motif) -> np.ndarray:
        """Best window score per sequence (-inf when a sequence is shorter than the motif)."""
        length = motif.length
        n_windows = len(codes) - length + 1
        best = np.full(len(offsets), -np.inf)
        for table in self._weights(motif):
            scores = np.zeros(n_windows)
            for j in range(length):
                scores += table[codes[j:j + n_windows], j]
            best = np.maximum(best, np.maximum.reduceat(scores, offsets))
        return best

    def max_scores(self, sequences: Sequence[str], motifs: Sequence[Motif]) -> np.ndarray:
        """Dense (sequences x motifs) matrix of best window scores."""
        result = np.full((len(sequences), len(motifs)), -np.inf)
        if len(sequences) == 0 or len(motifs) == 0:
            return result
        pad = max(m.length for m in motifs)

        for start in range(0, len(sequences), self.chunk_size):
            chunk = sequences[start:start + self.chunk_size]
            codes, offsets = _encode_chunk(chunk, pad)

            if self.n_workers > 1:
                with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
                    columns = list(executor.map(
                        lambda m: self._max_scores(codes, offsets, m), motifs
                    ))
            else:
                columns = [self._max_scores(codes, offsets, m) for m in motifs]

            result[start:start + len(chunk)] = np.column_stack(columns)
        return result

    def scan(self, sequences: Sequence[str], motifs: Sequence[Motif]) -> sparse.csr_matrix:
        """
        Boolean (sequences x motifs) match matrix.

        A sequence matches a motif when its best window reaches the motif's
        threshold on either scanned strand.
        """
        scores = self.max_scores(sequences, motifs)
        thresholds = self.thresholds(motifs)
        hits = scores >= thresholds[np.newaxis, :]
        return sparse.csr_matrix(hits)


@dataclass(frozen=True, eq=False)
class MotifMatches:
    """
    Region x motif match matrix with the motif-to-TF mapping used.

    Attributes:
        matrix: Sparse boolean (regions x motifs)
        region_names: Row labels, equal to the scanned regions' names
        motif_ids: Column labels
        motif2tf: DataFrame (motif, tf) restricted to motif_ids
    """
    matrix: sparse.csr_matrix
    region_names: pd.Index
    motif_ids: pd.Index
    motif2tf: pd.DataFrame

    def __post_init__(self):
        if self.matrix.shape != (len(self.region_names), len(self.motif_ids)):
            raise ValueError(
                f"matrix shape {self.matrix.shape} does not match "
                f"{len(self.region_names)} regions x {len(self.motif_ids)} motifs"
            )
        unknown = set(self.motif2tf['motif']) - set(self.motif_ids)
        if unknown:
            raise ValueError(f"motif2tf references motifs not in the matrix: {sorted(unknown)[:5]}")

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape

    @property
    def regulators(self) -> list[str]:
        """Regulators with at least one motif, sorted."""
        return sorted(self.motif2tf['tf'].unique())

    def _motif_tf_indicator(self) -> sparse.csr_matrix:
        regulators = self.regulators
        row = self.motif_ids.get_indexer(self.motif2tf['motif'])
        col = pd.Index(regulators).get_indexer(self.motif2tf['tf'])
        data = np.ones(len(row))
        return sparse.csr_matrix(
            (data, (row, col)), shape=(len(self.motif_ids), len(regulators))
        )

    def regulator_matrix(self) -> pd.DataFrame:
        """
        Region x regulator binding (logical OR over each regulator's motifs).

        Returns:
            Boolean DataFrame indexed by region name, one column per regulator
        """
        counts = self.matrix.astype(np.float64) @ self._motif_tf_indicator()
        return pd.DataFrame(
            counts.toarray() > 0, index=self.region_names, columns=pd.Index(self.regulators)
        )

    def binding_pairs(self) -> pd.DataFrame:
        """Long table of (region, tf) pairs with at least one motif hit."""
        counts = sparse.coo_matrix(self.matrix.astype(np.float64) @ self._motif_tf_indicator())
        mask = counts.data > 0
        regulators = np.asarray(self.regulators, dtype=object)
        pairs = pd.DataFrame({
            'region': self.region_names.to_numpy()[counts.row[mask]],
            'tf': regulators[counts.col[mask]],
        })
        return pairs.sort_values(['region', 'tf']).reset_index(drop=True)

    def to_frame(self) -> pd.DataFrame:
        """Long table of (region, motif, tf) hits."""
        coo = self.matrix.tocoo()
        hits = pd.DataFrame({
            'region': self.region_names.to_numpy()[coo.row],
            'motif': self.motif_ids.to_numpy()[coo.col],
        })
        return hits.merge(self.motif2tf, on='motif').sort_values(
            ['region', 'motif', 'tf']
        ).reset_index(drop=True)

    def __repr__(self) -> str:
        return (
            f"MotifMatches({len(self.region_names)} regions x {len(self.motif_ids)} motifs, "
            f"{self.matrix.nnz} hits, {len(self.regulators)} regulators)"
        )


def _normalize_motif2tf(motif2tf: pd.DataFrame | Mapping[str, Iterable[str]]) -> pd.DataFrame:
    if isinstance(motif2tf, pd.DataFrame):
        missing = [c for c in ('motif', 'tf') if c not in motif2tf.columns]
        if missing:
            raise ValueError(f"motif2tf is missing columns: {missing}")
        df = motif2tf[['motif', 'tf']].astype(str)
    else:
        records = []
        for motif, tfs in motif2tf.items():
            if isinstance(tfs, str):
                tfs = [tfs]
            records.extend((str(motif), str(tf)) for tf in tfs)
        df = pd.DataFrame.from_records(records, columns=['motif', 'tf'])
    return df.drop_duplicates().reset_index(drop=True)


def scan_regions(
    regions: GenomicRegions,
    genome: GenomeSource,
    motifs: Sequence[Motif] | Mapping[str, Motif],
    motif2tf: pd.DataFrame | Mapping[str, Iterable[str]],
    tfs: Optional[Iterable[str]] = None,
    scanner: Optional[MotifScanner] = None,
) -> MotifMatches:
    """
    Scan candidate regions for motifs of the requested regulators.

    Args:
        regions: Regions to scan; result rows follow this order
        genome: Sequence source
        motifs: Motif catalog (list, or dict keyed by motif id)
        motif2tf: Motif -> TF mapping as DataFrame(motif, tf) or dict
        tfs: Restrict to motifs of these regulators (None keeps all)
        scanner: Configured MotifScanner (defaults to MotifScanner())

    Returns:
        MotifMatches over the motifs that map to a surviving regulator

    Raises:
        EmptyMotifMappingError: If no catalog motif maps to a requested regulator
    """
    if isinstance(motifs, Mapping):
        catalog = {str(k): m for k, m in motifs.items()}
    else:
        catalog = {m.motif_id: m for m in motifs}

    mapping = _normalize_motif2tf(motif2tf)
    mapping = mapping[mapping['motif'].isin(catalog)]
    if tfs is not None:
        wanted = {str(t) for t in tfs}
        mapping = mapping[mapping['tf'].isin(wanted)]
    if len(mapping) == 0:
        requested = "all regulators" if tfs is None else f"{len(wanted)} requested regulators"
        raise EmptyMotifMappingError(
            f"No motif in the catalog ({len(catalog)} motifs) maps to {requested}"
        )

    motif_ids = pd.Index(sorted(mapping['motif'].unique()))
    used = [catalog[m] for m in motif_ids]
    scanner = scanner or MotifScanner()

    logger.info(
        f"Scanning {len(regions)} regions for {len(used)} motifs "
        f"({mapping['tf'].nunique()} regulators, p < {scanner.p_value:g})"
    )
    sequences = fetch_sequences(regions, genome)
    matrix = scanner.scan(sequences, used)
    logger.info(f"Motif scan: {matrix.nnz} region-motif hits")

    return MotifMatches(
        matrix=matrix,
        region_names=regions.names,
        motif_ids=motif_ids,
        motif2tf=mapping.sort_values(['motif', 'tf']).reset_index(drop=True),
    )
