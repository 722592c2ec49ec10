"""Tests for the per-gene OLS model."""

import numpy as np
import pandas as pd
import pytest

from grnfinder.exceptions import InsufficientDataError
from grnfinder.inference.regression import (
    TERM_COLUMNS,
    fit_gene,
    multiple_testing_correction,
)


@pytest.fixture
def design():
    rng = np.random.RandomState(3)
    n = 150
    tf = {'TF1': rng.gamma(2.0, 1.0, n), 'TF2': rng.gamma(2.0, 1.0, n)}
    acc = {'r1': rng.uniform(0, 2, n), 'r2': rng.uniform(0, 2, n)}
    y = 2.0 * tf['TF1'] * acc['r1'] + rng.normal(0, 0.3, n)
    return y, tf, acc


class TestFitGene:
    def test_recovers_coefficient(self, design):
        y, tf, acc = design
        terms = pd.DataFrame({'tf': ["TF2", "TF1"], 'region': ["r2", "r1"]})
        model = fit_gene("G", y, terms, tf, acc)

        assert list(model.terms.columns) == TERM_COLUMNS
        # Sorted by (tf, region)
        assert list(model.terms['tf']) == ["TF1", "TF2"]
        signal = model.terms.iloc[0]
        assert signal['estimate'] == pytest.approx(2.0, abs=0.1)
        assert signal['pval'] < 1e-10
        assert model.terms.iloc[1]['pval'] > 1e-3
        assert model.nvar == 2
        assert model.n_obs == 150
        assert model.rsq > 0.9
        assert np.isfinite(model.aic)
        assert model.model_pval < 1e-10

    def test_scaled_fit(self, design):
        y, tf, acc = design
        terms = pd.DataFrame({'tf': ["TF1"], 'region': ["r1"]})
        model = fit_gene("G", y, terms, tf, acc, scale=True)
        # Standardized single-predictor slope equals the correlation
        assert 0.9 < model.terms['estimate'].iloc[0] <= 1.0

    def test_duplicate_terms_collapse(self, design):
        y, tf, acc = design
        terms = pd.DataFrame({'tf': ["TF1", "TF1"], 'region': ["r1", "r1"]})
        assert fit_gene("G", y, terms, tf, acc).nvar == 1

    def test_constant_term_dropped(self, design):
        y, tf, acc = design
        acc = {**acc, 'closed': np.zeros_like(y)}
        terms = pd.DataFrame({'tf': ["TF1", "TF2"], 'region': ["r1", "closed"]})
        model = fit_gene("G", y, terms, tf, acc)
        assert list(model.terms['region']) == ["r1"]

    def test_gof_record(self, design):
        y, tf, acc = design
        model = fit_gene("G", y, pd.DataFrame({'tf': ["TF1"], 'region': ["r1"]}), tf, acc)
        assert set(model.gof()) == {'gene', 'rsq', 'adj_rsq', 'nvar', 'n_obs', 'aic', 'model_pval'}

    def test_with_padj_is_a_copy(self, design):
        y, tf, acc = design
        model = fit_gene("G", y, pd.DataFrame({'tf': ["TF1"], 'region': ["r1"]}), tf, acc)
        adjusted = model.with_padj(np.array([0.5]))
        assert 'padj' not in model.terms.columns
        assert adjusted.terms['padj'].tolist() == [0.5]


class TestInsufficientData:
    def test_no_terms(self, design):
        y, tf, acc = design
        with pytest.raises(InsufficientDataError, match="no candidate terms"):
            fit_gene("G", y, pd.DataFrame(columns=['tf', 'region']), tf, acc)

    def test_constant_response(self, design):
        _, tf, acc = design
        terms = pd.DataFrame({'tf': ["TF1"], 'region': ["r1"]})
        with pytest.raises(InsufficientDataError, match="constant expression"):
            fit_gene("G", np.ones(150), terms, tf, acc)

    def test_too_few_observations(self):
        tf = {'TF1': np.array([1.0, 2.0]), 'TF2': np.array([2.0, 1.0])}
        acc = {'r1': np.array([1.0, 1.0])}
        terms = pd.DataFrame({'tf': ["TF1", "TF2"], 'region': ["r1", "r1"]})
        with pytest.raises(InsufficientDataError, match="observations"):
            fit_gene("G", np.array([1.0, 3.0]), terms, tf, acc)

    def test_rank_deficient(self, design):
        y, tf, acc = design
        tf = {**tf, 'TF1_copy': tf['TF1'] * 2.0}
        terms = pd.DataFrame({'tf': ["TF1", "TF1_copy"], 'region': ["r1", "r1"]})
        with pytest.raises(InsufficientDataError, match="rank-deficient"):
            fit_gene("G", y, terms, tf, acc)


class TestMultipleTestingCorrection:
    def test_bh(self):
        padj = multiple_testing_correction(np.array([0.01, 0.04, 0.03]))
        np.testing.assert_allclose(padj, [0.03, 0.04, 0.04])

    def test_nan_preserved(self):
        padj = multiple_testing_correction(np.array([0.01, np.nan, 0.02]))
        assert np.isnan(padj[1])
        np.testing.assert_allclose(padj[[0, 2]], [0.02, 0.02])

    def test_all_nan(self):
        assert np.isnan(multiple_testing_correction(np.array([np.nan, np.nan]))).all()

    def test_bonferroni(self):
        padj = multiple_testing_correction(np.array([0.01, 0.2]), method="bonferroni")
        np.testing.assert_allclose(padj, [0.02, 0.4])
