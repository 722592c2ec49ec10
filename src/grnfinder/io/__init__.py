"""
Input loading and result writing.
"""

from grnfinder.io.loaders import (
    load_modality,
    load_cell_metadata,
    load_motifs,
    load_motif2tf,
    load_annotation,
    load_regions,
)
from grnfinder.io.writers import (
    write_coefficients,
    write_modules,
    write_graph,
    write_run_config,
)

__all__ = [
    'load_modality',
    'load_cell_metadata',
    'load_motifs',
    'load_motif2tf',
    'load_annotation',
    'load_regions',
    'write_coefficients',
    'write_modules',
    'write_graph',
    'write_run_config',
]
