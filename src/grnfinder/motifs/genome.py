"""
Genome sequence sources for motif scanning.

Anything with a ``fetch(chrom, start, end) -> str`` method can serve
sequences: an indexed FASTA on disk (pyfaidx) or an in-memory dict of
chromosome sequences (tests, small genomes). Coordinates are 0-based,
half-open; requests running past a chromosome end are clipped.
Unknown chromosomes raise MissingSequenceError (a KeyError).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from grnfinder.exceptions import MissingSequenceError
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = ['GenomeSource', 'InMemoryGenome', 'FastaGenome', 'fetch_sequences']


@runtime_checkable
class GenomeSource(Protocol):
    """Capability contract: return the upper-case sequence of an interval."""

    def fetch(self, chrom: str, start: int, end: int) -> str:
        ...


class InMemoryGenome:
    """Genome held as a chromosome -> sequence mapping."""

    def __init__(self, sequences: Mapping[str, str]):
        self._sequences = {chrom: seq.upper() for chrom, seq in sequences.items()}

    @property
    def chromosomes(self) -> list[str]:
        return list(self._sequences)

    def fetch(self, chrom: str, start: int, end: int) -> str:
        if chrom not in self._sequences:
            raise MissingSequenceError(f"Chromosome '{chrom}' not in genome")
        seq = self._sequences[chrom]
        return seq[max(0, int(start)):min(len(seq), int(end))]


class FastaGenome:
    """
    Indexed FASTA genome backed by pyfaidx.

    The .fai index is created on first open if missing.
    """

    def __init__(self, path: Path | str):
        from pyfaidx import Fasta

        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Genome FASTA not found: {self.path}")
        self._fasta = Fasta(str(self.path), as_raw=True, sequence_always_upper=True)
        logger.info(f"Opened genome {self.path.name} ({len(self._fasta.keys())} sequences)")

    @property
    def chromosomes(self) -> list[str]:
        return list(self._fasta.keys())

    def fetch(self, chrom: str, start: int, end: int) -> str:
        if chrom not in self._fasta:
            raise MissingSequenceError(f"Chromosome '{chrom}' not in {self.path.name}")
        record = self._fasta[chrom]
        end = min(int(end), len(record))
        return str(record[max(0, int(start)):end])


def fetch_sequences(regions: GenomicRegions, genome: GenomeSource) -> list[str]:
    """Sequences of all regions, in region order."""
    if not isinstance(genome, GenomeSource):
        raise TypeError(f"genome must provide fetch(chrom, start, end), got {type(genome)}")
    return [genome.fetch(chrom, start, end) for chrom, start, end, _ in regions]
