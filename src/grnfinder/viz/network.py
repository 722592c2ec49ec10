"""
Static rendering of the regulatory network.

render_graph is a pure projection: it reads the graph and a layout and
returns a Figure. The graph, the layout and the pipeline state are never
modified.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import matplotlib.lines as mlines
import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import networkx as nx
import numpy as np

from grnfinder.core.modality import Modality
from grnfinder.network.layouts import LayoutStrategy, get_layout
from grnfinder.viz.core import Figure
from grnfinder.viz.styles import Palette, get_palette, italicize_gene

logger = logging.getLogger(__name__)

__all__ = ['render_graph']


def render_graph(
    graph: nx.DiGraph,
    layout: Optional[dict | str | LayoutStrategy] = None,
    expression: Optional[Modality] = None,
    palette: str | Palette = "default",
    labels: Literal["regulators", "all", "none"] = "regulators",
    highlight: Optional[list[str]] = None,
    italic_labels: bool = False,
    title: Optional[str] = None,
    figsize: tuple[float, float] = (10, 8),
) -> Figure:
    """
    Draw the network with matplotlib.

    Parameters
    ----------
    graph : nx.DiGraph
        Network from build_graph (edge attributes sign, estimate; node
        attributes is_regulator, pagerank).
    layout : dict, str or LayoutStrategy, optional
        Precomputed node -> (x, y) positions, or a layout to compute them
        with. Defaults to a force-directed layout.
    expression : Modality, optional
        Passed to layouts that need expression (EmbeddingLayout).
    palette : str or Palette
        Color palette.
    labels : {"regulators", "all", "none"}
        Which nodes get a text label.
    highlight : list[str], optional
        Nodes drawn in the highlight color.
    italic_labels : bool
        Render gene symbols in italics.
    title : str, optional
        Axis title.
    figsize : tuple
        Figure size in inches.

    Returns
    -------
    Figure
        Wrapped matplotlib figure with node/edge counts in metadata.
    """
    palette = get_palette(palette)

    if isinstance(layout, dict):
        pos = layout
    else:
        pos = get_layout(layout or "force").compute(graph, expression)
    missing = [n for n in graph.nodes if n not in pos]
    if missing:
        raise ValueError(f"Layout has no position for {len(missing)} nodes, e.g. {missing[:5]}")

    fig, ax = plt.subplots(figsize=figsize)
    nodes = list(graph.nodes)
    highlight = set(highlight or [])

    if graph.number_of_edges():
        edges = list(graph.edges(data=True))
        magnitude = np.array([abs(d.get('estimate', 1.0)) for _, _, d in edges])
        top = magnitude.max() if magnitude.max() > 0 else 1.0
        nx.draw_networkx_edges(
            graph, pos, ax=ax,
            edgelist=[(u, v) for u, v, _ in edges],
            edge_color=[palette.edge_color(d.get('sign', 1)) for _, _, d in edges],
            width=list(0.5 + 2.0 * magnitude / top),
            alpha=0.6,
            arrows=True,
            arrowsize=10,
            node_size=300,
        )

    pagerank = np.array([graph.nodes[n].get('pagerank', 0.0) for n in nodes])
    if len(pagerank) and pagerank.max() > 0:
        sizes = 100 + 700 * pagerank / pagerank.max()
    else:
        sizes = np.full(len(nodes), 300.0)
    colors = []
    for n in nodes:
        if n in highlight:
            colors.append(palette.highlight)
        elif graph.nodes[n].get('is_regulator', graph.out_degree(n) > 0):
            colors.append(palette.regulator)
        else:
            colors.append(palette.target)
    nx.draw_networkx_nodes(
        graph, pos, ax=ax,
        nodelist=nodes,
        node_color=colors,
        node_size=list(sizes),
        alpha=0.9,
        edgecolors="white",
        linewidths=1,
    )

    if labels != "none":
        if labels == "all":
            labelled = nodes
        else:
            labelled = [n for n in nodes if graph.nodes[n].get('is_regulator', False)]
        text = {n: italicize_gene(n) if italic_labels else n for n in labelled}
        nx.draw_networkx_labels(graph, pos, text, ax=ax, font_size=8, font_color="#1a1a1a")

    handles = [
        mpatches.Patch(color=palette.regulator, label="Regulator"),
        mpatches.Patch(color=palette.target, label="Target"),
        mlines.Line2D([], [], color=palette.activation, label="Activation"),
        mlines.Line2D([], [], color=palette.repression, label="Repression"),
    ]
    ax.legend(handles=handles, loc="best", fontsize=8)
    n_regulators = sum(1 for n in nodes if graph.nodes[n].get('is_regulator', False))
    ax.set_title(title or f"Regulatory network ({n_regulators} regulators, {len(nodes)} genes)")
    ax.set_axis_off()
    fig.tight_layout()

    return Figure(
        fig=fig,
        title=title or "Regulatory Network",
        description=f"{len(nodes)} nodes, {graph.number_of_edges()} edges",
        metadata={
            "n_nodes": len(nodes),
            "n_edges": graph.number_of_edges(),
            "n_regulators": n_regulators,
        },
    )
