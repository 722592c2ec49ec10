"""
TF binding motifs: PWM model, file parsers, genome access and region scanning.
"""

from grnfinder.motifs.pwm import (
    Motif,
    read_jaspar,
    read_meme,
    score_threshold,
)
from grnfinder.motifs.genome import (
    GenomeSource,
    InMemoryGenome,
    FastaGenome,
    fetch_sequences,
)
from grnfinder.motifs.scanner import (
    MotifScanner,
    MotifMatches,
    scan_regions,
)

__all__ = [
    'Motif',
    'read_jaspar',
    'read_meme',
    'score_threshold',
    'GenomeSource',
    'InMemoryGenome',
    'FastaGenome',
    'fetch_sequences',
    'MotifScanner',
    'MotifMatches',
    'scan_regions',
]
