"""
Regulator modules, network assembly and network layouts.
"""

from grnfinder.network.modules import (
    ModuleThresholds,
    RegulatorModule,
    ModuleSet,
    edge_sort_key,
    build_modules,
)
from grnfinder.network.graph import build_graph, validate_graph, extract_tf_subnetwork
from grnfinder.network.layouts import (
    LayoutStrategy,
    ForceDirectedLayout,
    EmbeddingLayout,
    CircularLayout,
    HierarchicalLayout,
    get_layout,
    compute_layout,
)

__all__ = [
    'ModuleThresholds',
    'RegulatorModule',
    'ModuleSet',
    'edge_sort_key',
    'build_modules',
    'build_graph',
    'validate_graph',
    'extract_tf_subnetwork',
    'LayoutStrategy',
    'ForceDirectedLayout',
    'EmbeddingLayout',
    'CircularLayout',
    'HierarchicalLayout',
    'get_layout',
    'compute_layout',
]
