"""Tests for the immutable pipeline state."""

import dataclasses

import numpy as np
import pandas as pd
import pytest

from grnfinder.core.modality import Modality
from grnfinder.core.state import GRNState
from grnfinder.exceptions import StageOrderError


class TestGRNState:
    def test_initial_version(self, rna, atac):
        state = GRNState(rna=rna, atac=atac)
        assert state.version == 0
        assert state.history == ()
        assert state.regions is None

    def test_evolve_returns_new_state(self, rna, atac):
        state = GRNState(rna=rna, atac=atac)
        evolved = state.evolve("initiate", layout={'G1': (0.0, 0.0)})
        assert evolved.version == 1
        assert evolved.history == ("initiate",)
        assert evolved.layout == {'G1': (0.0, 0.0)}
        assert state.layout is None
        assert state.version == 0

    def test_frozen(self, rna, atac):
        state = GRNState(rna=rna, atac=atac)
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.version = 5

    def test_require_names_producer(self, rna, atac):
        state = GRNState(rna=rna, atac=atac)
        with pytest.raises(StageOrderError, match="scan_motifs"):
            state.require("infer", "motifs")

    def test_cells_must_match(self, rna):
        other = Modality(
            data=np.zeros((1, 3)),
            feature_ids=pd.Index(["chr1-1-2"]),
            cell_ids=pd.Index(["a", "b", "c"]),
        )
        with pytest.raises(ValueError, match="cell_ids"):
            GRNState(rna=rna, atac=other)

    def test_type_checked(self, rna):
        with pytest.raises(TypeError):
            GRNState(rna=rna, atac="atac.csv")
