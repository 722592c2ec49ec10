"""Tests for regulator module building."""

import pandas as pd
import pytest

from grnfinder.exceptions import NoModulesError
from grnfinder.inference.fitter import FitResult
from grnfinder.network.modules import (
    EDGE_COLUMNS,
    META_COLUMNS,
    ModuleThresholds,
    build_modules,
    edge_sort_key,
)

from conftest import make_fit_tables


def _fit(rows, gof_rows=None, model_pvals=None):
    return FitResult.from_tables(*make_fit_tables(rows, gof_rows, model_pvals))


@pytest.fixture
def fit():
    return _fit(
        [
            ("TF1", "A", "r1", 2.0, 1e-8),
            ("TF1", "B", "r2", -1.0, 1e-4),
            ("TF1", "C", "r3", 0.5, 0.03),
            ("TF1", "D", "r4", 3.0, 0.2),
            ("TF2", "A", "r5", 1.0, 1e-3),
            ("TF2", "E", "r6", 1.0, 0.01),
        ],
        gof_rows={'C': 0.1},
    )


class TestBuildModules:
    def test_defaults(self, fit):
        modules = build_modules(fit)
        assert modules.regulators == ["TF1", "TF2"]
        assert modules.targets() == {"TF1": ["A", "B", "C"], "TF2": ["A", "E"]}
        assert list(modules.edges().columns) == EDGE_COLUMNS
        assert list(modules.meta.columns) == META_COLUMNS

    def test_signs(self, fit):
        module = build_modules(fit)["TF1"]
        assert module.positive_targets == ["A", "C"]
        assert module.negative_targets == ["B"]
        assert module.regions == ["r1", "r2", "r3"]

    def test_meta(self, fit):
        meta = build_modules(fit).meta.set_index('tf')
        assert meta.loc["TF1", 'n_genes'] == 3
        assert meta.loc["TF1", 'n_negative'] == 1
        assert meta.loc["TF2", 'mean_rsq'] == pytest.approx(0.5)

    def test_p_thresh_is_monotone(self, fit):
        loose = build_modules(fit, ModuleThresholds(p_thresh=0.05))
        strict = build_modules(fit, ModuleThresholds(p_thresh=1e-3))
        for tf, targets in strict.targets().items():
            assert set(targets) <= set(loose.targets()[tf])
        assert len(strict.edges()) < len(loose.edges())

    def test_model_p_thresh_is_monotone(self):
        fit = _fit(
            [
                ("TF1", "A", "r1", 2.0, 1e-8),
                ("TF1", "B", "r2", -1.0, 1e-4),
                ("TF1", "C", "r3", 0.5, 0.03),
                ("TF2", "A", "r5", 1.0, 1e-3),
                ("TF2", "E", "r6", 1.0, 0.01),
            ],
            model_pvals={'B': 0.1, 'E': 0.2},
        )
        runs = [
            build_modules(fit, ModuleThresholds(model_p_thresh=p)).targets()
            for p in (1.0, 0.15, 0.05)
        ]
        assert runs[0] == {"TF1": ["A", "B", "C"], "TF2": ["A", "E"]}
        for looser, stricter in zip(runs, runs[1:]):
            for tf, targets in stricter.items():
                assert set(targets) <= set(looser[tf])
        assert runs[1] == {"TF1": ["A", "B", "C"], "TF2": ["A"]}
        assert runs[2] == {"TF1": ["A", "C"], "TF2": ["A"]}

    def test_rsq_thresh(self, fit):
        modules = build_modules(fit, ModuleThresholds(rsq_thresh=0.3))
        assert "C" not in modules.targets()["TF1"]

    def test_min_terms(self, fit):
        # Every toy model has a single term
        with pytest.raises(NoModulesError):
            build_modules(fit, ModuleThresholds(min_terms=2))

    def test_min_genes_per_module(self, fit):
        modules = build_modules(fit, ModuleThresholds(min_genes_per_module=3))
        assert modules.regulators == ["TF1"]

    def test_top_k(self, fit):
        modules = build_modules(fit, ModuleThresholds(top_k=1))
        assert modules.targets() == {"TF1": ["A"], "TF2": ["A"]}

    def test_raw_pvalues(self):
        coefs, gof = make_fit_tables([("TF1", "A", "r1", 1.0, 0.01)])
        coefs['padj'] = 0.5
        fit = FitResult.from_tables(coefs, gof)
        with pytest.raises(NoModulesError):
            build_modules(fit)
        modules = build_modules(fit, ModuleThresholds(use_padj=False))
        assert modules.targets() == {"TF1": ["A"]}

    def test_one_edge_per_pair(self):
        fit = _fit([
            ("TF1", "A", "r2", 1.0, 1e-3),
            ("TF1", "A", "r1", -4.0, 1e-3),
            ("TF1", "A", "r3", 9.0, 1e-2),
        ])
        edges = build_modules(fit).edges()
        assert len(edges) == 1
        # Equal p: larger |estimate| wins
        assert edges['region'].iloc[0] == "r1"

    def test_no_modules(self, fit):
        with pytest.raises(NoModulesError, match="thresholds"):
            build_modules(fit, ModuleThresholds(p_thresh=1e-12))

    def test_rebuild_leaves_original(self, fit):
        first = build_modules(fit)
        build_modules(fit, ModuleThresholds(top_k=1))
        assert first.targets()["TF1"] == ["A", "B", "C"]


class TestEdgeRanking:
    def test_ties_broken_by_estimate_then_rsq_then_name(self):
        edges = [
            {'target': "Z", 'p': 0.01, 'estimate': 1.0, 'rsq': 0.5},
            {'target': "Y", 'p': 0.01, 'estimate': -2.0, 'rsq': 0.5},
            {'target': "X", 'p': 0.01, 'estimate': 1.0, 'rsq': 0.9},
            {'target': "W", 'p': 0.001, 'estimate': 0.1, 'rsq': 0.1},
            {'target': "V", 'p': 0.01, 'estimate': 1.0, 'rsq': 0.5},
        ]
        ranked = [e['target'] for e in sorted(edges, key=edge_sort_key)]
        assert ranked == ["W", "Y", "X", "V", "Z"]

    def test_module_order_follows_ranking(self, fit):
        assert build_modules(fit)["TF2"].targets == ("A", "E")


class TestModuleThresholds:
    @pytest.mark.parametrize("kwargs", [
        {'p_thresh': 0.0},
        {'p_thresh': 1.5},
        {'model_p_thresh': 0.0},
        {'min_genes_per_module': 0},
        {'top_k': 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ModuleThresholds(**kwargs)

    def test_p_column(self):
        assert ModuleThresholds().p_column == 'padj'
        assert ModuleThresholds(use_padj=False).p_column == 'pval'

    def test_to_dict(self):
        assert ModuleThresholds(top_k=5).to_dict()['top_k'] == 5


def test_toy_modules(toy_state):
    assert toy_state.modules.targets() == {"TFA": ["G1", "G2"], "TFB": ["G3"]}
    assert isinstance(toy_state.modules.edges(), pd.DataFrame)
