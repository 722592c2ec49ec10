"""
Figure containers for network plots.

Figure pairs a matplotlib figure with the provenance needed to reproduce
it (title, caption, node/edge counts). FigureCollection holds a set of
named network figures, typically the full network plus one subnetwork per
regulator, and writes them as image files or as one self-contained HTML
page.
"""

from __future__ import annotations

import base64
import html
import io
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Literal, Optional

import matplotlib.figure
import matplotlib.pyplot as plt

__all__ = ['Figure', 'FigureCollection']

OutputFormat = Literal["png", "pdf", "svg", "html"]
_IMAGE_FORMATS = ("png", "pdf", "svg")


def _encode_png(fig: matplotlib.figure.Figure, dpi: int, **kwargs) -> str:
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight", **kwargs)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _img_tag(encoded: str, alt: str) -> str:
    return f'<img src="data:image/png;base64,{encoded}" alt="{html.escape(alt)}">'


@dataclass
class Figure:
    """
    A rendered network with its provenance.

    Attributes
    ----------
    fig : matplotlib.figure.Figure
        The drawing.
    title : str
        Short title (used as HTML heading and alt text).
    description : str
        One-line caption, e.g. node and edge counts.
    metadata : dict
        Free-form provenance; ``created_at`` is filled in automatically.
    """
    fig: matplotlib.figure.Figure
    title: str
    description: str = ""
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault("created_at", datetime.now().isoformat(timespec="seconds"))

    def save(
        self,
        path: Path | str,
        format: Optional[OutputFormat] = None,
        dpi: int = 300,
        **kwargs
    ) -> Path:
        """
        Write the figure to disk.

        Parameters
        ----------
        path : Path or str
            Destination; parent directories are created.
        format : {"png", "pdf", "svg", "html"}, optional
            Taken from the file suffix when omitted; unknown suffixes
            are written as PNG.
        dpi : int
            Resolution for PNG output (also the embedded image of HTML).
        **kwargs
            Forwarded to ``savefig``.

        Returns
        -------
        Path
        """
        path = Path(path)
        if format is None:
            suffix = path.suffix.lstrip(".").lower()
            format = suffix if suffix in _IMAGE_FORMATS + ("html",) else "png"
        path.parent.mkdir(parents=True, exist_ok=True)

        if format == "html":
            body = _img_tag(_encode_png(self.fig, dpi, facecolor="white", **kwargs), self.title)
            path.write_text(
                f"<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
                f"<title>{html.escape(self.title)}</title></head>\n"
                f"<body style=\"text-align:center;background:#fff\">{body}</body></html>\n"
            )
        else:
            self.fig.savefig(
                path, format=format, dpi=dpi, bbox_inches="tight", facecolor="white", **kwargs
            )
        return path

    def to_base64(self, format: str = "png", dpi: int = 150) -> str:
        """PNG bytes of the figure, base64 encoded."""
        if format != "png":
            raise ValueError(f"Only PNG can be embedded, got {format}")
        return _encode_png(self.fig, dpi)

    def close(self):
        plt.close(self.fig)


class FigureCollection:
    """
    Ordered, named network figures.

    Examples
    --------
    >>> figures = FigureCollection()
    >>> figures.add("network", render_graph(state.graph, state.layout))
    >>> for tf in state.modules.regulators:
    ...     sub = extract_tf_subnetwork(state.graph, tf)
    ...     figures.add(tf, render_graph(sub, "hierarchical", highlight=[tf]))
    >>> figures.to_html_report("report.html")
    """

    def __init__(self):
        self.figures: dict[str, Figure] = {}

    def add(self, key: str, fig: Figure) -> FigureCollection:
        """Store `fig` under `key` (replacing any previous one); chainable."""
        self.figures[key] = fig
        return self

    def get(self, key: str) -> Optional[Figure]:
        return self.figures.get(key)

    def __getitem__(self, key: str) -> Figure:
        return self.figures[key]

    def __len__(self) -> int:
        return len(self.figures)

    def __iter__(self) -> Iterator[tuple[str, Figure]]:
        return iter(list(self.figures.items()))

    def save_all(
        self,
        output_dir: Path | str,
        format: OutputFormat = "png",
        dpi: int = 300
    ) -> list[Path]:
        """Write each figure to ``<output_dir>/<key>.<format>``."""
        output_dir = Path(output_dir)
        return [
            fig.save(output_dir / f"{key}.{format}", format=format, dpi=dpi)
            for key, fig in self
        ]

    def to_html_report(
        self,
        output_path: Path | str,
        title: str = "Regulatory Network Report",
        description: str = "",
    ) -> Path:
        """
        Write every figure into one HTML page (PNG images inlined).

        Parameters
        ----------
        output_path : Path or str
            Destination file.
        title : str
            Page heading.
        description : str
            Paragraph under the heading.

        Returns
        -------
        Path
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        sections = []
        for key, fig in self:
            caption = html.escape(fig.description)
            sections.append(
                f'<section id="{html.escape(key)}">\n'
                f"<h2>{html.escape(fig.title)}</h2>\n"
                f"<p class=\"caption\">{caption}</p>\n"
                f"{_img_tag(fig.to_base64(), fig.title)}\n"
                f"</section>"
            )

        page = _REPORT_PAGE.format(
            title=html.escape(title),
            description=html.escape(description),
            generated=datetime.now().strftime("%Y-%m-%d %H:%M"),
            n_figures=len(sections),
            sections="\n".join(sections),
        )
        output_path.write_text(page)
        return output_path

    def close_all(self):
        for _, fig in self:
            fig.close()
        self.figures.clear()


_REPORT_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: Helvetica, Arial, sans-serif; max-width: 1100px; margin: 2rem auto; color: #1a1a1a; }}
section {{ border-top: 1px solid #e5e7eb; padding: 1rem 0; }}
.caption, .generated {{ color: #6b7280; font-size: 0.9rem; }}
img {{ max-width: 100%; }}
</style>
</head>
<body>
<h1>{title}</h1>
<p class="generated">{n_figures} figures, generated {generated}</p>
<p>{description}</p>
{sections}
</body>
</html>
"""
