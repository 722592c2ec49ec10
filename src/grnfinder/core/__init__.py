"""
Core data structures for the GRN inference pipeline.

1. Modality: feature x cell matrix with feature/cell annotations
2. GRNState: immutable, versioned pipeline state passed between stages

Design Philosophy:
    - Immutability: All operations return new instances (functional style)
    - Composability: Each stage is a function GRNState -> GRNState
"""

from grnfinder.core.modality import Modality
from grnfinder.core.state import GRNState

__all__ = [
    'Modality',
    'GRNState',
]
