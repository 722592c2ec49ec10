"""
Versioned, immutable pipeline state.

Every pipeline stage takes a GRNState and returns a new one carrying the
stage's product (regions, motif matches, fitted models, modules, graph).
Nothing is mutated in place, so earlier states stay valid: re-running module
building with other thresholds simply branches off the same fitted state.

Examples:
    >>> state = GRNState(rna=rna, atac=atac)
    >>> state.version
    0
    >>> state2 = state.evolve("initiate", regions=regions)
    >>> state2.version, state2.history
    (1, ('initiate',))
    >>> state.regions is None
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional

from grnfinder.core.modality import Modality
from grnfinder.exceptions import StageOrderError

if TYPE_CHECKING:
    import networkx as nx
    from grnfinder.inference.fitter import FitResult
    from grnfinder.motifs.scanner import MotifMatches
    from grnfinder.network.modules import ModuleSet
    from grnfinder.regions.annotation import GeneAnnotation
    from grnfinder.regions.intervals import GenomicRegions

__all__ = ['GRNState']


# Which stage produces each state field, for error messages
_PRODUCERS = {
    'regions': 'initiate',
    'annotation': 'initiate',
    'motifs': 'scan_motifs',
    'fit': 'infer',
    'modules': 'build_modules',
    'graph': 'build_graph',
}


@dataclass(frozen=True)
class GRNState:
    """
    Snapshot of the regulatory-network pipeline.

    Attributes:
        rna: Gene expression modality (genes x cells)
        atac: Chromatin accessibility modality (peaks x cells)
        annotation: Gene coordinates used for region-to-gene association
        regions: Working set of candidate regulatory regions
        motifs: Region x motif matches and the motif-to-TF mapping used
        fit: Fitted per-gene models
        modules: Per-regulator modules
        graph: Directed regulator -> target network
        layout: Node -> (x, y) coordinates of the graph
        version: Incremented by each stage
        history: Names of stages applied, in order
    """
    rna: Modality
    atac: Modality
    annotation: Optional[GeneAnnotation] = None
    regions: Optional[GenomicRegions] = None
    motifs: Optional[MotifMatches] = None
    fit: Optional[FitResult] = None
    modules: Optional[ModuleSet] = None
    graph: Optional[nx.DiGraph] = None
    layout: Optional[dict[str, tuple[float, float]]] = None
    version: int = 0
    history: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.rna, Modality):
            raise TypeError(f"rna must be Modality, got {type(self.rna)}")
        if not isinstance(self.atac, Modality):
            raise TypeError(f"atac must be Modality, got {type(self.atac)}")
        if not self.rna.cell_ids.equals(self.atac.cell_ids):
            raise ValueError(
                "rna and atac must share identical cell_ids in the same order "
                f"({self.rna.n_cells} vs {self.atac.n_cells} cells)"
            )

    def evolve(self, stage: str, **changes: Any) -> GRNState:
        """Return a new state with `changes` applied and the stage recorded."""
        return replace(
            self,
            version=self.version + 1,
            history=self.history + (stage,),
            **changes,
        )

    def require(self, stage: str, *fields: str) -> None:
        """
        Check that the fields a stage depends on are present.

        Raises:
            StageOrderError: Naming the stage that must run first
        """
        for name in fields:
            if getattr(self, name) is None:
                producer = _PRODUCERS.get(name, name)
                raise StageOrderError(
                    f"'{stage}' needs {name}; run '{producer}' first"
                )

    def __repr__(self) -> str:
        present = [
            name for name in ('annotation', 'regions', 'motifs', 'fit', 'modules', 'graph', 'layout')
            if getattr(self, name) is not None
        ]
        return (
            f"GRNState(v{self.version}, {self.rna.n_features} genes, "
            f"{self.atac.n_features} peaks, {self.rna.n_cells} cells, "
            f"stages={list(self.history)}, has={present})"
        )
