"""
Directed regulator -> target network from a ModuleSet.

Nodes are regulators and targets; a gene can be both. Edges are exactly
the retained (tf, target) pairs of the modules, so every edge traces back
to one term of a fitted model.

Node attributes:
    is_regulator, is_target, n_targets, pagerank
Edge attributes:
    estimate, sign (+1/-1), pval, padj, weight, regions

weight is -log10 padj. A term without an adjusted p-value (padj NaN, only
reachable when modules were built on raw p-values) keeps padj = NaN in
the graph and is weighted by -log10 pval instead.
"""

from __future__ import annotations

import logging
from typing import Optional

import networkx as nx
import numpy as np

from grnfinder.exceptions import OrphanEdgeError
from grnfinder.inference.fitter import FitResult
from grnfinder.network.modules import ModuleSet

logger = logging.getLogger(__name__)

__all__ = ['build_graph', 'validate_graph', 'extract_tf_subnetwork']

# Floor for -log10 weights when padj underflows to 0
_MIN_P = 1e-300


def build_graph(modules: ModuleSet, fit: Optional[FitResult] = None) -> nx.DiGraph:
    """
    Assemble the regulatory network.

    Args:
        modules: Regulator modules
        fit: If given, every edge is checked against the fitted models

    Returns:
        nx.DiGraph with one edge per retained (tf, target) pair

    Raises:
        OrphanEdgeError: If `fit` is given and an edge has no backing term
    """
    graph = nx.DiGraph()

    for module in modules:
        graph.add_node(module.tf)
        for row in module.edges.itertuples(index=False):
            p_weight = float(row.padj) if np.isfinite(row.padj) else float(row.pval)
            graph.add_edge(
                module.tf,
                row.target,
                estimate=float(row.estimate),
                sign=1 if row.estimate >= 0 else -1,
                pval=float(row.pval),
                padj=float(row.padj),
                weight=float(-np.log10(max(p_weight, _MIN_P))),
                regions=str(row.region),
            )

    for node in graph.nodes:
        graph.nodes[node]['is_regulator'] = node in modules
        graph.nodes[node]['is_target'] = graph.in_degree(node) > 0
        graph.nodes[node]['n_targets'] = graph.out_degree(node)

    pagerank = nx.pagerank(graph, weight='weight') if graph.number_of_edges() else {}
    for node in graph.nodes:
        graph.nodes[node]['pagerank'] = float(pagerank.get(node, 0.0))

    logger.info(
        f"Network: {graph.number_of_nodes()} nodes "
        f"({len(modules)} regulators), {graph.number_of_edges()} edges"
    )

    if fit is not None:
        validate_graph(graph, fit)
    return graph


def validate_graph(graph: nx.DiGraph, fit: FitResult) -> None:
    """
    Check that every edge is backed by a term of a fitted model.

    Raises:
        OrphanEdgeError: Listing the first offending edges
    """
    orphans = [
        (tf, target)
        for tf, target, data in graph.edges(data=True)
        if not fit.has_term(tf, target, data.get('regions'))
    ]
    if orphans:
        raise OrphanEdgeError(
            f"{len(orphans)} edges have no fitted term behind them: {orphans[:5]}"
        )


def extract_tf_subnetwork(graph: nx.DiGraph, tf: str, order: int = 2) -> nx.DiGraph:
    """
    Downstream network of one regulator.

    Args:
        graph: Full network
        tf: Regulator at the root
        order: Maximum number of regulatory steps from `tf`

    Returns:
        Copy of the subgraph induced by all nodes within `order` steps
    """
    if tf not in graph:
        raise KeyError(f"'{tf}' is not in the network")
    if order < 1:
        raise ValueError(f"order must be >= 1, got {order}")
    reachable = nx.single_source_shortest_path_length(graph, tf, cutoff=order)
    sub = graph.subgraph(reachable).copy()
    for node, depth in reachable.items():
        sub.nodes[node]['depth'] = depth
    return sub
