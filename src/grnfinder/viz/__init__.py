"""
Visualization of regulatory networks.

Examples
--------
>>> from grnfinder.viz import render_graph, FigureCollection
>>> fig = render_graph(state.graph, state.layout)
>>> fig.save("network.pdf")
"""

from grnfinder.viz.core import Figure, FigureCollection
from grnfinder.viz.styles import Palette, PALETTES, configure_style, get_palette
from grnfinder.viz.network import render_graph

__all__ = [
    'Figure',
    'FigureCollection',
    'Palette',
    'PALETTES',
    'configure_style',
    'get_palette',
    'render_graph',
]
