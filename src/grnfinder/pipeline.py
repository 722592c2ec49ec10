"""
Stage-by-stage GRN inference on an immutable pipeline state.

    state = initiate(rna, atac, annotation=annotation, filter_regions=conserved)
    state = scan_motifs(state, motifs, motif2tf, genome)
    state = infer(state, association="window", n_workers=4)
    state = build_modules(state, p_thresh=0.05, rsq_thresh=0.1)
    state = build_graph(state, layout="embedding")
    fig = render_graph(state)

Each stage returns a new GRNState; the input state is left untouched, so
earlier snapshots can be branched from (e.g. modules with other
thresholds). Running a stage before the one producing its inputs raises
StageOrderError. A stage also clears everything downstream of it, so a
state never carries modules that were built from a different fit.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

import pandas as pd

from grnfinder.core.modality import Modality
from grnfinder.core.state import GRNState
from grnfinder.exceptions import EmptySelectionError
from grnfinder.inference.association import RegionGeneAssociation
from grnfinder.inference.fitter import ModelFitter
from grnfinder.motifs.genome import GenomeSource
from grnfinder.motifs.pwm import Motif
from grnfinder.motifs.scanner import MotifScanner, scan_regions
from grnfinder.network.graph import build_graph as _build_graph
from grnfinder.network.layouts import LayoutStrategy, get_layout
from grnfinder.network.modules import ModuleThresholds
from grnfinder.network.modules import build_modules as _build_modules
from grnfinder.regions.annotation import GeneAnnotation
from grnfinder.regions.intervals import GenomicRegions
from grnfinder.regions.selection import select_regions
from grnfinder.viz.core import Figure
from grnfinder.viz.network import render_graph as _render_graph

logger = logging.getLogger(__name__)

__all__ = [
    'initiate',
    'scan_motifs',
    'infer',
    'build_modules',
    'build_graph',
    'render_graph',
]

# Fields invalidated when a stage re-runs
_DOWNSTREAM = {
    'scan_motifs': ('fit', 'modules', 'graph', 'layout'),
    'infer': ('modules', 'graph', 'layout'),
    'build_modules': ('graph', 'layout'),
}


def _cleared(stage: str) -> dict[str, None]:
    return {name: None for name in _DOWNSTREAM.get(stage, ())}


def initiate(
    rna: Modality,
    atac: Modality,
    regions: Optional[GenomicRegions] = None,
    filter_regions: Optional[GenomicRegions | pd.DataFrame] = None,
    exclude_regions: Optional[GenomicRegions | pd.DataFrame] = None,
    annotation: Optional[GeneAnnotation] = None,
    exclude_exons: bool = False,
) -> GRNState:
    """
    Create the pipeline state and select candidate regions.

    Args:
        rna: Expression modality (genes x cells)
        atac: Accessibility modality (peaks x cells), same cells as rna
        regions: All candidate regions (default: parsed from atac peak names)
        filter_regions: Keep only regions overlapping these (e.g. conserved elements)
        exclude_regions: Drop regions overlapping these
        annotation: Gene coordinates for region-to-gene association
        exclude_exons: Drop regions overlapping annotated exons

    Raises:
        EmptySelectionError: If no region survives selection
    """
    if regions is None:
        regions = GenomicRegions.from_names(atac.feature_ids, provenance=atac.name)

    if exclude_exons:
        if annotation is None or not annotation.has_exons:
            raise ValueError("exclude_exons needs an annotation with exon intervals")
        exons = annotation.exons()
        if exclude_regions is not None:
            other = exclude_regions.to_frame() if isinstance(exclude_regions, GenomicRegions) else exclude_regions
            exons = pd.concat(
                [exons[['chrom', 'start', 'end']], other[['chrom', 'start', 'end']]],
                ignore_index=True,
            )
        exclude_regions = exons

    selected = select_regions(regions, filter_regions=filter_regions, exclude_regions=exclude_regions)

    state = GRNState(rna=rna, atac=atac)
    logger.info(f"Initiated: {state.rna.n_features} genes, {len(selected)} candidate regions")
    return state.evolve("initiate", regions=selected, annotation=annotation)


def _regions_in_genome(regions: GenomicRegions, genome: GenomeSource) -> GenomicRegions:
    chromosomes = getattr(genome, 'chromosomes', None)
    if chromosomes is None:
        return regions
    on_genome = regions.to_frame()['chrom'].isin(set(chromosomes)).to_numpy()
    if on_genome.all():
        return regions
    missing = sorted(set(regions.to_frame().loc[~on_genome, 'chrom']))
    logger.warning(
        f"Dropping {int((~on_genome).sum())} regions on chromosomes missing from the genome: "
        f"{missing[:5]}"
    )
    if not on_genome.any():
        raise EmptySelectionError("No candidate region lies on a chromosome of the genome")
    return regions.subset(on_genome, provenance=f"{regions.provenance} (on genome)")


def scan_motifs(
    state: GRNState,
    motifs: Sequence[Motif] | Mapping[str, Motif],
    motif2tf: pd.DataFrame | Mapping[str, Iterable[str]],
    genome: GenomeSource,
    tfs: Optional[Iterable[str]] = None,
    p_value: float = 5e-5,
    background: Optional[Sequence[float]] = None,
    n_workers: int = 1,
) -> GRNState:
    """
    Scan the candidate regions for TF motifs.

    Regions on chromosomes the genome does not contain (unplaced contigs,
    other assemblies) are dropped with a warning; the candidate regions
    of the returned state are the scanned ones.

    Raises:
        StageOrderError: Before initiate
        EmptySelectionError: If no candidate region lies on a genome chromosome
        EmptyMotifMappingError: If no motif maps to the requested regulators
    """
    state.require("scan_motifs", "regions")
    regions = _regions_in_genome(state.regions, genome)
    scanner = MotifScanner(p_value=p_value, background=background, n_workers=n_workers)
    matches = scan_regions(regions, genome, motifs, motif2tf, tfs=tfs, scanner=scanner)
    return state.evolve(
        "scan_motifs", regions=regions, motifs=matches, **_cleared("scan_motifs")
    )


def infer(
    state: GRNState,
    association: str | RegionGeneAssociation = "window",
    association_options: Optional[Mapping[str, Any]] = None,
    genes: Optional[Iterable[str]] = None,
    tf_cor: float = 0.1,
    peak_cor: float = 0.0,
    scale: bool = False,
    aggregate_by: Optional[str] = None,
    n_workers: int = 1,
) -> GRNState:
    """
    Fit one regression model per target gene.

    See ModelFitter for the parameters.

    Raises:
        StageOrderError: Before initiate (with an annotation) and scan_motifs
        NoModelsError: If no gene could be fit
    """
    state.require("infer", "regions", "motifs", "annotation")
    fitter = ModelFitter(
        association=association,
        association_options=association_options,
        tf_cor=tf_cor,
        peak_cor=peak_cor,
        scale=scale,
        aggregate_by=aggregate_by,
        n_workers=n_workers,
    )
    fit = fitter.fit(
        state.rna, state.atac, state.regions, state.motifs, state.annotation, genes=genes,
    )
    return state.evolve("infer", fit=fit, **_cleared("infer"))


def build_modules(
    state: GRNState,
    p_thresh: float = 0.05,
    model_p_thresh: float = 1.0,
    min_terms: int = 1,
    min_genes_per_module: int = 1,
    rsq_thresh: float = 0.0,
    top_k: Optional[int] = None,
    use_padj: bool = True,
) -> GRNState:
    """
    Derive per-regulator modules from the fitted models.

    Raises:
        StageOrderError: Before infer
        NoModulesError: If the thresholds leave no module
    """
    state.require("build_modules", "fit")
    thresholds = ModuleThresholds(
        p_thresh=p_thresh,
        model_p_thresh=model_p_thresh,
        min_terms=min_terms,
        min_genes_per_module=min_genes_per_module,
        rsq_thresh=rsq_thresh,
        top_k=top_k,
        use_padj=use_padj,
    )
    modules = _build_modules(state.fit, thresholds)
    return state.evolve("build_modules", modules=modules, **_cleared("build_modules"))


def build_graph(
    state: GRNState,
    layout: Optional[str | LayoutStrategy] = "force",
    validate: bool = True,
) -> GRNState:
    """
    Assemble the network and compute its layout.

    Args:
        state: State with modules
        layout: Layout name or strategy; None skips the layout
        validate: Check every edge against the fitted models

    Raises:
        StageOrderError: Before build_modules
        OrphanEdgeError: If validation finds an edge without a fitted term
    """
    state.require("build_graph", "modules")
    graph = _build_graph(state.modules, fit=state.fit if validate else None)
    positions = None
    if layout is not None:
        positions = get_layout(layout).compute(graph, state.rna)
    return state.evolve("build_graph", graph=graph, layout=positions)


def render_graph(
    state: GRNState,
    layout: Optional[str | LayoutStrategy] = None,
    **kwargs,
) -> Figure:
    """
    Render the network of a state; the state is not modified.

    Args:
        state: State with a graph
        layout: Override the stored layout
        **kwargs: Passed to grnfinder.viz.render_graph

    Raises:
        StageOrderError: Before build_graph
    """
    state.require("render_graph", "graph")
    positions = state.layout if layout is None else layout
    return _render_graph(state.graph, positions, expression=state.rna, **kwargs)
