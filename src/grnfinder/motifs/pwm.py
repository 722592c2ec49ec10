"""
Position frequency / weight matrices for TF binding motifs.

A Motif stores a 4 x L frequency matrix (rows A, C, G, T; one column per
motif position). Scanning uses log-odds scores against a background
nucleotide distribution:

    w[b, j] = log2( p[b, j] / bg[b] )

Score thresholds are derived from a p-value by computing the exact
distribution of window scores under the background model (dynamic
programming over a discretised score grid), the same approach used by
FIMO and MOODS. This makes thresholds comparable across motifs of
different length and information content.

Motif files are parsed with Biopython (Bio.motifs) and converted to
count matrices:
    - JASPAR (">ID NAME" header, then "A [ ... ]" rows)
    - MEME minimal text format ("MOTIF ID" + letter-probability matrix with
      w, nsites and E; the "MEME version", "ALPHABET" and "Background
      letter frequencies" header lines are required)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from Bio import motifs as bio_motifs

__all__ = [
    'Motif',
    'ALPHABET',
    'UNIFORM_BACKGROUND',
    'read_jaspar',
    'read_meme',
    'score_threshold',
]

ALPHABET = "ACGT"
UNIFORM_BACKGROUND = np.full(4, 0.25)


def _check_background(background: Optional[Sequence[float]]) -> np.ndarray:
    if background is None:
        return UNIFORM_BACKGROUND.copy()
    bg = np.asarray(background, dtype=np.float64)
    if bg.shape != (4,) or np.any(bg <= 0):
        raise ValueError(f"background must be 4 positive frequencies (A, C, G, T), got {background}")
    return bg / bg.sum()


@dataclass(frozen=True)
class Motif:
    """
    A TF binding motif as a position frequency matrix.

    Attributes:
        motif_id: Catalog identifier (e.g. "MA0139.1")
        counts: 4 x L matrix of counts or probabilities (rows A, C, G, T)
        name: Display name, usually the TF symbol (e.g. "CTCF")
    """
    motif_id: str
    counts: np.ndarray = field(repr=False)
    name: str = ""

    def __post_init__(self):
        counts = np.asarray(self.counts, dtype=np.float64)
        if counts.ndim != 2 or counts.shape[0] != 4:
            raise ValueError(
                f"Motif {self.motif_id}: counts must have shape (4, L), got {counts.shape}"
            )
        if counts.shape[1] == 0:
            raise ValueError(f"Motif {self.motif_id} has zero length")
        if np.any(counts < 0):
            raise ValueError(f"Motif {self.motif_id} has negative counts")
        if np.any(counts.sum(axis=0) == 0):
            raise ValueError(f"Motif {self.motif_id} has an empty column")
        object.__setattr__(self, 'counts', counts)
        if not self.name:
            object.__setattr__(self, 'name', self.motif_id)

    @property
    def length(self) -> int:
        return self.counts.shape[1]

    def frequencies(
        self,
        background: Optional[Sequence[float]] = None,
        pseudocount: float = 0.01,
    ) -> np.ndarray:
        """
        Column-normalised probabilities, smoothed towards the background.

        p = (f + pseudocount * bg) / (1 + pseudocount)
        """
        bg = _check_background(background)
        probs = self.counts / self.counts.sum(axis=0, keepdims=True)
        return (probs + pseudocount * bg[:, np.newaxis]) / (1.0 + pseudocount)

    def log_odds(
        self,
        background: Optional[Sequence[float]] = None,
        pseudocount: float = 0.01,
    ) -> np.ndarray:
        """4 x L log2-odds weight matrix against the background."""
        bg = _check_background(background)
        return np.log2(self.frequencies(bg, pseudocount) / bg[:, np.newaxis])

    def max_score(self, background: Optional[Sequence[float]] = None) -> float:
        return float(self.log_odds(background).max(axis=0).sum())

    def min_score(self, background: Optional[Sequence[float]] = None) -> float:
        return float(self.log_odds(background).min(axis=0).sum())

    @property
    def consensus(self) -> str:
        return "".join(ALPHABET[i] for i in self.counts.argmax(axis=0))

    def reverse_complement(self) -> Motif:
        """Motif for the opposite strand (rows A<->T, C<->G, columns reversed)."""
        return Motif(
            motif_id=self.motif_id,
            counts=self.counts[::-1, ::-1].copy(),
            name=self.name,
        )


def score_threshold(
    weights: np.ndarray | Motif,
    p_value: float,
    background: Optional[Sequence[float]] = None,
    granularity: float = 0.01,
) -> float:
    """
    Smallest attainable score s with P(score >= s) <= p_value for a random window.

    The weights are discretised to `granularity` and the exact score
    distribution of an L-mer drawn from the background is built column by
    column (a convolution per position).

    Args:
        weights: 4 x L log-odds matrix, or a Motif (scored against `background`)
        p_value: Per-window false positive rate (e.g. 5e-5)
        background: Nucleotide frequencies used to draw random windows
        granularity: Score resolution

    Returns:
        Score threshold in the units of `weights`. If even the best possible
        window is more probable than p_value, the maximum score is returned.
    """
    if not 0 < p_value < 1:
        raise ValueError(f"p_value must be in (0, 1), got {p_value}")
    bg = _check_background(background)
    if isinstance(weights, Motif):
        weights = weights.log_odds(bg)

    scaled = np.rint(np.asarray(weights) / granularity).astype(np.int64)
    col_min = scaled.min(axis=0)
    shifted = scaled - col_min
    offset = int(col_min.sum())

    dist = np.ones(1)
    for j in range(shifted.shape[1]):
        col = shifted[:, j]
        new = np.zeros(len(dist) + int(col.max()))
        for b in range(4):
            new[col[b]:col[b] + len(dist)] += bg[b] * dist
        dist = new

    # tail[k] = P(S >= k)
    tail = np.cumsum(dist[::-1])[::-1]
    passing = np.flatnonzero((tail <= p_value) & (dist > 0))
    if len(passing) == 0:
        k = len(dist) - 1
    else:
        k = int(passing[0])
    # Lowered by the worst-case rounding error so that every window whose
    # discretised score reaches k also passes when scored in floating point
    rounding = 0.5 * granularity * shifted.shape[1]
    return (k + offset) * granularity - rounding


def _parse(path: Path | str, fmt: str) -> list:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Motif file not found: {path}")
    try:
        with open(path) as handle:
            return list(bio_motifs.parse(handle, fmt))
    except (ValueError, IndexError) as e:
        raise ValueError(f"{path}: not a valid {fmt} motif file ({e})") from e


def _from_biopython(record, motif_id: str, name: str) -> Motif:
    counts = np.array([record.counts[base] for base in ALPHABET], dtype=np.float64)
    return Motif(motif_id=motif_id, counts=counts, name=name)


def read_jaspar(path: Path | str) -> list[Motif]:
    """
    Read motifs in JASPAR format (Biopython ``Bio.motifs``).

    Example:
        >MA0004.1 Arnt
        A  [ 4 19  0  0  0  0 ]
        C  [16  0 20  0  0  0 ]
        G  [ 0  1  0 20  0 20 ]
        T  [ 0  0  0  0 20  0 ]

    Rows without a leading base letter are taken in A, C, G, T order.
    """
    return [
        _from_biopython(m, m.matrix_id, m.name or m.matrix_id)
        for m in _parse(path, "jaspar")
    ]


def read_meme(path: Path | str) -> list[Motif]:
    """
    Read motifs from a MEME minimal-format text file (Biopython ``Bio.motifs``).

    Letter probabilities come back as counts over ``nsites`` sequences,
    which is the same matrix once columns are normalised. MEME background
    and E-values are ignored (scanning uses its own background).
    """
    return [_from_biopython(m, m.name, m.name) for m in _parse(path, "minimal")]
