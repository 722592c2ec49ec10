"""
Consistent visual styles for regulatory network figures.

Domain Conventions
------------------
- Regulators = Blue (#2563eb), targets = Gray (#9ca3af)
- Activation edges = Red (#dc2626), repression edges = Blue (#2563eb)
- Gene symbols italicized (use $gene$ in matplotlib)
- All palettes colorblind-safe except "print"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import matplotlib.pyplot as plt
import seaborn as sns

__all__ = ['Palette', 'PALETTES', 'get_palette', 'configure_style', 'italicize_gene']


@dataclass(frozen=True)
class Palette:
    """
    Color palette for network figures.

    Attributes
    ----------
    regulator : str
        Node color for regulators (TFs)
    target : str
        Node color for target-only genes
    activation : str
        Edge color for positive estimates
    repression : str
        Edge color for negative estimates
    highlight : str
        Color for highlighted nodes (e.g. the root of a TF subnetwork)
    neutral : str
        Color for labels and axes
    """
    regulator: str = "#2563eb"   # Blue-600
    target: str = "#9ca3af"      # Gray-400
    activation: str = "#dc2626"  # Red-600
    repression: str = "#2563eb"  # Blue-600
    highlight: str = "#059669"   # Emerald-600
    neutral: str = "#6b7280"     # Gray-500

    def edge_color(self, sign: int) -> str:
        return self.activation if sign >= 0 else self.repression

    def categorical(self, n: int) -> list[str]:
        """n distinct colors (seaborn Set2, cycled)."""
        colors = sns.color_palette("Set2", 8).as_hex()
        return [colors[i % len(colors)] for i in range(n)]


PALETTES = {
    "default": Palette(),
    "colorblind": Palette(
        regulator="#0077bb",
        target="#bbbbbb",
        activation="#ee7733",
        repression="#0077bb",
        highlight="#009988",
        neutral="#999999",
    ),
    "print": Palette(
        regulator="#1a1a1a",
        target="#b3b3b3",
        activation="#333333",
        repression="#808080",
        highlight="#000000",
        neutral="#808080",
    ),
}


def get_palette(palette: str | Palette = "default") -> Palette:
    if isinstance(palette, Palette):
        return palette
    if palette not in PALETTES:
        raise ValueError(f"Unknown palette '{palette}'. Choose from {sorted(PALETTES)}")
    return PALETTES[palette]


def configure_style(
    style: Literal["paper", "notebook"] = "paper",
    font_scale: float = 1.0
) -> None:
    """
    Configure matplotlib and seaborn for network figures.

    Parameters
    ----------
    style : {"paper", "notebook"}
        paper: small fonts, 300 dpi; notebook: larger fonts, 100 dpi
    font_scale : float
        Multiplier for all font sizes.
    """
    base = 10 if style == "paper" else 11
    dpi = 300 if style == "paper" else 100
    sns.set_theme(style="white", context="paper" if style == "paper" else "notebook",
                  font_scale=font_scale)
    plt.rcParams.update({
        "figure.facecolor": "white",
        "axes.facecolor": "white",
        "font.size": base * font_scale,
        "axes.titlesize": (base + 1) * font_scale,
        "figure.dpi": dpi,
        "savefig.dpi": dpi,
        "legend.frameon": False,
    })


def italicize_gene(gene: str) -> str:
    """
    Format gene symbol for matplotlib (italicized per biology convention).

    Examples
    --------
    >>> italicize_gene("SOX2")
    '$\\\\mathit{SOX2}$'
    """
    return f"$\\mathit{{{gene}}}$"
