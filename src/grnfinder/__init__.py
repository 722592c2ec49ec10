"""
grnfinder - Gene Regulatory Network inference from paired single-cell data

Links transcription factors to target genes through motif-bearing
accessible regions: candidate regions are scanned for TF motifs, each
target gene gets a regression model on TF expression x region
accessibility, and significant terms are assembled into per-regulator
modules and a directed network.
"""

__version__ = "0.1.0"

from grnfinder.core.modality import Modality
from grnfinder.core.state import GRNState
from grnfinder.pipeline import (
    initiate,
    scan_motifs,
    infer,
    build_modules,
    build_graph,
    render_graph,
)

__all__ = [
    "Modality",
    "GRNState",
    "initiate",
    "scan_motifs",
    "infer",
    "build_modules",
    "build_graph",
    "render_graph",
]
