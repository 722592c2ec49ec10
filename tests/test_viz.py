"""Tests for network rendering and figure handling."""

import copy

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pytest

from grnfinder import pipeline
from grnfinder.exceptions import StageOrderError
from grnfinder.viz import (
    Figure,
    FigureCollection,
    Palette,
    configure_style,
    get_palette,
    render_graph,
)
from grnfinder.viz.styles import italicize_gene


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestRenderGraph:
    def test_metadata(self, toy_state):
        fig = render_graph(toy_state.graph, toy_state.layout)
        assert isinstance(fig, Figure)
        assert fig.metadata["n_nodes"] == 5
        assert fig.metadata["n_edges"] == 3
        assert fig.metadata["n_regulators"] == 2
        assert "created_at" in fig.metadata

    def test_graph_and_layout_untouched(self, toy_state):
        nodes_before = copy.deepcopy(list(toy_state.graph.nodes(data=True)))
        edges_before = copy.deepcopy(list(toy_state.graph.edges(data=True)))
        layout_before = dict(toy_state.layout)
        render_graph(toy_state.graph, toy_state.layout, labels="all", italic_labels=True,
                     highlight=["TFA"], palette="colorblind")
        assert list(toy_state.graph.nodes(data=True)) == nodes_before
        assert list(toy_state.graph.edges(data=True)) == edges_before
        assert toy_state.layout == layout_before

    @pytest.mark.parametrize("layout", ["circular", "hierarchical"])
    def test_named_layout(self, toy_state, layout):
        fig = render_graph(toy_state.graph, layout, labels="none")
        assert fig.metadata["n_edges"] == 3

    def test_incomplete_layout(self, toy_state):
        with pytest.raises(ValueError, match="no position"):
            render_graph(toy_state.graph, {"TFA": (0.0, 0.0)})

    def test_pipeline_render(self, toy_state):
        fig = pipeline.render_graph(toy_state, title="toy")
        assert fig.title == "toy"

    def test_pipeline_render_needs_graph(self, rna, atac):
        state = pipeline.initiate(rna, atac)
        with pytest.raises(StageOrderError, match="build_graph"):
            pipeline.render_graph(state)


class TestFigure:
    @pytest.mark.parametrize("suffix", ["png", "svg", "html"])
    def test_save(self, toy_state, tmp_path, suffix):
        fig = render_graph(toy_state.graph, toy_state.layout)
        path = fig.save(tmp_path / "out" / f"network.{suffix}")
        assert path.exists()
        assert path.stat().st_size > 0
        if suffix == "html":
            assert "data:image/png;base64," in path.read_text()

    def test_to_base64(self, toy_state):
        fig = render_graph(toy_state.graph, toy_state.layout)
        assert len(fig.to_base64(dpi=50)) > 100


class TestFigureCollection:
    def test_save_all_and_report(self, toy_state, tmp_path):
        collection = FigureCollection()
        collection.add("network", render_graph(toy_state.graph, toy_state.layout))
        collection.add("TFA", render_graph(toy_state.graph, "circular", highlight=["TFA"]))
        assert len(collection) == 2
        assert [key for key, _ in collection] == ["network", "TFA"]

        saved = collection.save_all(tmp_path / "figs", dpi=50)
        assert [p.name for p in saved] == ["network.png", "TFA.png"]

        report = collection.to_html_report(tmp_path / "report.html", title="Toy GRN")
        html = report.read_text()
        assert "Toy GRN" in html
        assert html.count("data:image/png;base64,") == 2

        collection.close_all()
        assert len(collection) == 0

    def test_get(self):
        collection = FigureCollection()
        assert collection.get("missing") is None


class TestStyles:
    def test_palettes(self):
        assert get_palette("default").edge_color(1) != get_palette("default").edge_color(-1)
        custom = Palette(regulator="#000000")
        assert get_palette(custom) is custom
        with pytest.raises(ValueError):
            get_palette("neon")

    def test_categorical_cycles(self):
        colors = get_palette().categorical(10)
        assert len(colors) == 10
        assert colors[0] == colors[8]

    def test_configure_style(self):
        configure_style("notebook")
        assert plt.rcParams["savefig.dpi"] == 100
        configure_style("paper")
        assert plt.rcParams["savefig.dpi"] == 300

    def test_italicize(self):
        assert italicize_gene("SOX2") == "$\\mathit{SOX2}$"
