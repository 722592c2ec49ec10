"""
Candidate regulatory region selection.

Restricts the accessible regions (ATAC peaks) to a working subset before
motif scanning and model fitting. Typical filters:

- Conservation: keep peaks overlapping conserved elements (e.g. phastCons),
  enriching for functional regulatory sequence.
- Exon exclusion: drop peaks overlapping exons, where accessibility mostly
  reflects transcription rather than regulation.

The selected set is always a subset of the input, in input order.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from grnfinder.exceptions import EmptySelectionError
from grnfinder.regions.intervals import GenomicRegions

logger = logging.getLogger(__name__)

__all__ = ['select_regions']


def select_regions(
    regions: GenomicRegions,
    filter_regions: Optional[GenomicRegions | pd.DataFrame] = None,
    exclude_regions: Optional[GenomicRegions | pd.DataFrame] = None,
    label: Optional[str] = None,
) -> GenomicRegions:
    """
    Select the working set of candidate regions.

    Args:
        regions: All accessible regions
        filter_regions: Keep only regions overlapping these intervals
            (None keeps all)
        exclude_regions: Drop regions overlapping these intervals
        label: Name of the filter for provenance (defaults to the filter's
            own provenance)

    Returns:
        Subset of `regions`; provenance records the criteria applied

    Raises:
        EmptySelectionError: If no regions remain
    """
    if len(regions) == 0:
        raise EmptySelectionError("Input region set is empty")

    selected = regions
    provenance = regions.provenance

    if filter_regions is not None:
        filter_label = label or _label_of(filter_regions, "filter")
        mask = regions.overlap_mask(filter_regions)
        provenance = f"{provenance} & {filter_label}"
        selected = regions.subset(mask, provenance=provenance)
        logger.info(
            f"Region filter '{filter_label}': {len(selected)}/{len(regions)} regions overlap"
        )

    if exclude_regions is not None:
        exclude_label = _label_of(exclude_regions, "excluded")
        mask = ~selected.overlap_mask(exclude_regions)
        n_before = len(selected)
        provenance = f"{provenance} - {exclude_label}"
        selected = selected.subset(mask, provenance=provenance)
        logger.info(
            f"Region exclusion '{exclude_label}': removed {n_before - len(selected)} regions"
        )

    if len(selected) == 0:
        raise EmptySelectionError(
            f"No regions left after selection ({provenance}); "
            f"started from {len(regions)} regions"
        )

    return selected


def _label_of(intervals: GenomicRegions | pd.DataFrame, default: str) -> str:
    if isinstance(intervals, GenomicRegions):
        return intervals.provenance
    return default
