"""
Genomic interval sets for candidate regulatory regions.

GenomicRegions wraps a BED-like DataFrame (chrom, start, end, name) with a
provenance label describing how the set was obtained ("atac_peaks",
"atac_peaks & phastcons"). Coordinates are 0-based, half-open, as in BED.

Peak names in single-cell ATAC matrices usually encode coordinates:
"chr1-9939-10542", "chr1:9939-10542" or "chr1_9939_10542". These are parsed
by `GenomicRegions.from_names`.

Interval arithmetic (overlaps) goes through bioframe so the same code works
for ten or a million peaks.
"""

from __future__ import annotations

import io
import re
from pathlib import Path
from typing import Iterator, Optional, Sequence

import bioframe as bf
import numpy as np
import pandas as pd

__all__ = ['GenomicRegions', 'parse_region_name']

_REGION_PATTERN = re.compile(r'^(?P<chrom>.+?)[:\-_](?P<start>\d+)[\-_](?P<end>\d+)$')

BED_COLUMNS = ['chrom', 'start', 'end', 'name']


def parse_region_name(name: str) -> tuple[str, int, int]:
    """
    Parse "chr1-100-200" / "chr1:100-200" / "chr1_100_200" into coordinates.

    Raises:
        ValueError: If the name does not encode coordinates
    """
    match = _REGION_PATTERN.match(str(name))
    if match is None:
        raise ValueError(
            f"Cannot parse region name '{name}'. "
            "Expected 'chrom-start-end', 'chrom:start-end' or 'chrom_start_end'"
        )
    start, end = int(match['start']), int(match['end'])
    if end < start:
        raise ValueError(f"Region '{name}' has end < start")
    return match['chrom'], start, end


class GenomicRegions:
    """
    Ordered, immutable set of genomic intervals with provenance.

    Attributes:
        provenance: Human-readable description of the selection criterion
        names: Region identifiers, unique, in set order
    """

    def __init__(self, frame: pd.DataFrame, provenance: str = "input"):
        missing = [c for c in ('chrom', 'start', 'end') if c not in frame.columns]
        if missing:
            raise ValueError(f"Region frame is missing columns: {missing}")

        df = frame.reset_index(drop=True).copy()
        df['chrom'] = df['chrom'].astype(str)
        df['start'] = df['start'].astype(np.int64)
        df['end'] = df['end'].astype(np.int64)
        if (df['end'] < df['start']).any():
            raise ValueError("Regions must satisfy start <= end")
        if 'name' not in df.columns:
            df['name'] = df['chrom'] + '-' + df['start'].astype(str) + '-' + df['end'].astype(str)
        df['name'] = df['name'].astype(str)
        if df['name'].duplicated().any():
            dupes = df.loc[df['name'].duplicated(), 'name'].unique().tolist()
            raise ValueError(f"Region names must be unique, duplicated: {dupes[:10]}")

        self._frame = df
        self._provenance = provenance

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_names(cls, names: Sequence[str], provenance: str = "input") -> GenomicRegions:
        """Build regions from coordinate-encoding peak names (names are kept)."""
        records = []
        for name in names:
            chrom, start, end = parse_region_name(name)
            records.append((chrom, start, end, str(name)))
        frame = pd.DataFrame.from_records(records, columns=BED_COLUMNS)
        return cls(frame, provenance=provenance)

    @classmethod
    def from_bed(cls, path: Path | str, provenance: Optional[str] = None) -> GenomicRegions:
        """
        Read a BED3+ file. A fourth column, if present, is used as region name.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"BED file not found: {path}")
        with open(path) as f:
            lines = [ln for ln in f if ln.strip() and not ln.startswith(("#", "track", "browser"))]
        if not lines:
            raise ValueError(f"BED file has no intervals: {path}")
        df = pd.read_csv(io.StringIO("".join(lines)), sep="\t", header=None, dtype={0: str})
        ncols = min(len(df.columns), 4)
        df = df.iloc[:, :ncols]
        df.columns = BED_COLUMNS[:ncols]
        return cls(df, provenance=provenance or path.stem)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def provenance(self) -> str:
        return self._provenance

    @property
    def names(self) -> pd.Index:
        return pd.Index(self._frame['name'])

    def to_frame(self) -> pd.DataFrame:
        """BED-like copy: chrom, start, end, name (plus any extra columns)."""
        return self._frame.copy()

    def __len__(self) -> int:
        return len(self._frame)

    def __iter__(self) -> Iterator[tuple[str, int, int, str]]:
        for row in self._frame[BED_COLUMNS].itertuples(index=False):
            yield row.chrom, int(row.start), int(row.end), row.name

    def __contains__(self, name: str) -> bool:
        return name in set(self._frame['name'])

    def __repr__(self) -> str:
        return f"GenomicRegions({len(self)} regions, provenance='{self._provenance}')"

    # ------------------------------------------------------------------
    # Set operations
    # ------------------------------------------------------------------

    def subset(self, mask: np.ndarray | Sequence[bool], provenance: Optional[str] = None) -> GenomicRegions:
        """Keep regions where mask is True, preserving order."""
        mask = np.asarray(mask, dtype=bool)
        if len(mask) != len(self):
            raise ValueError(f"mask length ({len(mask)}) must match n_regions ({len(self)})")
        return GenomicRegions(
            self._frame.loc[mask],
            provenance=provenance or self._provenance,
        )

    def select(self, names: Sequence[str], provenance: Optional[str] = None) -> GenomicRegions:
        """Keep the named regions, in set order."""
        wanted = set(names)
        mask = self._frame['name'].isin(wanted).to_numpy()
        return self.subset(mask, provenance=provenance)

    def overlap_mask(self, other: GenomicRegions | pd.DataFrame) -> np.ndarray:
        """
        Boolean mask: which of these regions overlap any interval in `other`.

        Intervals that only touch (end == other start) do not overlap.
        """
        other_df = other.to_frame() if isinstance(other, GenomicRegions) else other
        mask = np.zeros(len(self), dtype=bool)
        if len(self) == 0 or len(other_df) == 0:
            return mask

        left = self._frame[['chrom', 'start', 'end']].copy()
        left['row'] = np.arange(len(left))
        right = other_df[['chrom', 'start', 'end']].copy()
        right['chrom'] = right['chrom'].astype(str)

        hits = bf.overlap(left, right, how='inner', suffixes=('_1', '_2'))
        if len(hits):
            mask[hits['row_1'].astype(np.int64).to_numpy()] = True
        return mask

    def is_subset_of(self, other: GenomicRegions) -> bool:
        """True if every region here is also in `other` with identical coordinates."""
        key = ['chrom', 'start', 'end', 'name']
        merged = self._frame[key].merge(other._frame[key], on=key, how='left', indicator=True)
        return bool((merged['_merge'] == 'both').all())
