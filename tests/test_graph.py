"""Tests for network assembly and validation."""

import networkx as nx
import numpy as np
import pytest

from grnfinder.exceptions import OrphanEdgeError
from grnfinder.inference.fitter import FitResult
from grnfinder.network.graph import build_graph, extract_tf_subnetwork, validate_graph
from grnfinder.network.modules import ModuleThresholds, build_modules

from conftest import make_fit_tables


@pytest.fixture
def cascade_fit():
    # TF1 -> TF2 -> {X, Y}; TF1 -| Z
    return FitResult.from_tables(*make_fit_tables([
        ("TF1", "TF2", "r1", 2.0, 1e-6),
        ("TF2", "X", "r2", 1.0, 1e-4),
        ("TF2", "Y", "r3", 0.5, 1e-3),
        ("TF1", "Z", "r4", -1.5, 1e-5),
    ]))


@pytest.fixture
def cascade(cascade_fit):
    return build_graph(build_modules(cascade_fit), fit=cascade_fit)


class TestBuildGraph:
    def test_edges_match_modules(self, cascade_fit, cascade):
        modules = build_modules(cascade_fit)
        expected = set(zip(modules.edges()['tf'], modules.edges()['target']))
        assert set(cascade.edges) == expected

    def test_edge_attributes(self, cascade):
        data = cascade.edges["TF1", "Z"]
        assert data['sign'] == -1
        assert data['estimate'] == -1.5
        assert data['regions'] == "r4"
        assert data['weight'] == pytest.approx(5.0)

    def test_node_attributes(self, cascade):
        assert cascade.nodes["TF2"]['is_regulator']
        assert cascade.nodes["TF2"]['is_target']
        assert not cascade.nodes["X"]['is_regulator']
        assert cascade.nodes["TF1"]['n_targets'] == 2
        ranks = nx.get_node_attributes(cascade, 'pagerank')
        assert sum(ranks.values()) == pytest.approx(1.0)
        assert ranks["X"] > ranks["TF1"]

    def test_zero_padj_gets_finite_weight(self):
        coefs, gof = make_fit_tables([("TF1", "A", "r1", 1.0, 0.0)])
        fit = FitResult.from_tables(coefs, gof)
        graph = build_graph(build_modules(fit))
        assert np.isfinite(graph.edges["TF1", "A"]['weight'])

    def test_missing_padj_weighted_by_pval(self):
        coefs, gof = make_fit_tables([("TF1", "A", "r1", 1.0, 1e-3)])
        coefs['padj'] = np.nan
        fit = FitResult.from_tables(coefs, gof)
        graph = build_graph(build_modules(fit, ModuleThresholds(use_padj=False)))
        data = graph.edges["TF1", "A"]
        assert np.isnan(data['padj'])
        assert data['weight'] == pytest.approx(3.0)

    def test_toy_graph(self, toy_state):
        graph = toy_state.graph
        assert set(graph.edges) == {("TFA", "G1"), ("TFA", "G2"), ("TFB", "G3")}
        validate_graph(graph, toy_state.fit)


class TestValidateGraph:
    def test_orphan_edge(self, cascade_fit, cascade):
        other = FitResult.from_tables(*make_fit_tables([("TF1", "TF2", "r1", 2.0, 1e-6)]))
        with pytest.raises(OrphanEdgeError, match="3 edges"):
            validate_graph(cascade, other)

    def test_region_must_match(self, cascade_fit, cascade):
        graph = cascade.copy()
        graph.edges["TF1", "Z"]['regions'] = "elsewhere"
        with pytest.raises(OrphanEdgeError):
            validate_graph(graph, cascade_fit)

    def test_build_with_foreign_fit(self, cascade_fit):
        other = FitResult.from_tables(*make_fit_tables([("TF9", "Q", "r9", 1.0, 1e-3)]))
        with pytest.raises(OrphanEdgeError):
            build_graph(build_modules(cascade_fit), fit=other)


class TestSubnetwork:
    def test_depth(self, cascade):
        sub = extract_tf_subnetwork(cascade, "TF1", order=1)
        assert set(sub.nodes) == {"TF1", "TF2", "Z"}
        sub = extract_tf_subnetwork(cascade, "TF1", order=2)
        assert set(sub.nodes) == {"TF1", "TF2", "Z", "X", "Y"}
        assert sub.nodes["X"]['depth'] == 2

    def test_is_a_copy(self, cascade):
        sub = extract_tf_subnetwork(cascade, "TF2")
        sub.remove_node("X")
        assert "X" in cascade

    def test_errors(self, cascade):
        with pytest.raises(KeyError):
            extract_tf_subnetwork(cascade, "NOPE")
        with pytest.raises(ValueError):
            extract_tf_subnetwork(cascade, "TF1", order=0)
