"""
Genomic regions: interval sets, gene annotation and candidate region selection.
"""

from grnfinder.regions.intervals import GenomicRegions, parse_region_name
from grnfinder.regions.annotation import GeneAnnotation
from grnfinder.regions.selection import select_regions

__all__ = [
    'GenomicRegions',
    'parse_region_name',
    'GeneAnnotation',
    'select_regions',
]
