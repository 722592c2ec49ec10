"""
Pytest configuration and shared fixtures.

The toy dataset is a miniature multiome experiment with a known answer:

    regions:  r1 = chr1-990-1030 (contains motif A)
              r2 = chr2-990-1030 (contains motif B)
              decoy = chr1-5000-5040 (no motif)
    TFs:      TFA binds motif A, TFB binds motif B
    targets:  G1 = 2.0 * TFA * acc(r1) + noise
              G2 = 1.5 * TFA * acc(r1) + noise   (minus strand)
              G3 = 2.0 * TFB * acc(r2) + noise

so the expected modules are {TFA: [G1, G2]} and {TFB: [G3]}.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from grnfinder.core.modality import Modality
from grnfinder.motifs.genome import InMemoryGenome
from grnfinder.motifs.pwm import ALPHABET, Motif
from grnfinder.regions.annotation import GeneAnnotation

MOTIF_A = "TGACGTCAGC"
MOTIF_B = "GGGGCGGGGC"
R1 = "chr1-990-1030"
R2 = "chr2-990-1030"
DECOY = "chr1-5000-5040"
N_CELLS = 200


def consensus_counts(sequence: str, count: float = 20.0) -> np.ndarray:
    """4 x L count matrix with all counts on the given sequence."""
    counts = np.zeros((4, len(sequence)))
    for j, base in enumerate(sequence):
        counts[ALPHABET.index(base), j] = count
    return counts


def generate_toy_multiome(n_cells: int = N_CELLS, seed: int = 0):
    """
    RNA and ATAC modalities for the toy scenario.

    Returns:
        (rna, atac) Modalities sharing cell ids; rna.cell_metadata has a
        'cluster' column with 20 groups
    """
    rng = np.random.RandomState(seed)
    tfa = rng.gamma(2.0, 1.0, n_cells)
    tfb = rng.gamma(2.0, 1.0, n_cells)
    acc_r1 = rng.uniform(0.0, 2.0, n_cells)
    acc_r2 = rng.uniform(0.0, 2.0, n_cells)
    acc_decoy = rng.uniform(0.0, 2.0, n_cells)

    g1 = 2.0 * tfa * acc_r1 + rng.normal(0, 0.5, n_cells)
    g2 = 1.5 * tfa * acc_r1 + rng.normal(0, 0.5, n_cells)
    g3 = 2.0 * tfb * acc_r2 + rng.normal(0, 0.5, n_cells)

    cells = pd.Index([f"cell_{i}" for i in range(n_cells)])
    rna = Modality(
        data=np.vstack([g1, g2, g3, tfa, tfb]),
        feature_ids=pd.Index(["G1", "G2", "G3", "TFA", "TFB"]),
        cell_ids=cells,
        cell_metadata=pd.DataFrame({'cluster': [f"c{i % 20}" for i in range(n_cells)]}, index=cells),
        name="rna",
    )
    atac = Modality(
        data=np.vstack([acc_r1, acc_r2, acc_decoy]),
        feature_ids=pd.Index([R1, R2, DECOY]),
        cell_ids=cells,
        name="atac",
    )
    return rna, atac


def toy_genome_sequences() -> dict[str, str]:
    chr1 = "A" * 1000 + MOTIF_A + "A" * (10_000 - 1000 - len(MOTIF_A))
    chr2 = "A" * 1000 + MOTIF_B + "A" * (10_000 - 1000 - len(MOTIF_B))
    return {'chr1': chr1, 'chr2': chr2, 'chr3': "A" * 10_000}


def toy_gene_table() -> pd.DataFrame:
    return pd.DataFrame({
        'gene_name': ["G1", "G2", "G3", "TFA", "TFB"],
        'chrom': ["chr1", "chr1", "chr2", "chr3", "chr3"],
        'start': [1500, 200, 2000, 100, 1000],
        'end': [3000, 800, 4000, 500, 1500],
        'strand': ["+", "-", "+", "+", "+"],
    })


@pytest.fixture
def toy_multiome():
    return generate_toy_multiome()


@pytest.fixture
def rna(toy_multiome):
    return toy_multiome[0]


@pytest.fixture
def atac(toy_multiome):
    return toy_multiome[1]


@pytest.fixture
def genome():
    return InMemoryGenome(toy_genome_sequences())


@pytest.fixture
def annotation():
    return GeneAnnotation(toy_gene_table())


@pytest.fixture
def motif_a():
    return Motif("MA_A", consensus_counts(MOTIF_A), "TFA")


@pytest.fixture
def motif_b():
    return Motif("MA_B", consensus_counts(MOTIF_B), "TFB")


@pytest.fixture
def motifs(motif_a, motif_b):
    return [motif_a, motif_b]


@pytest.fixture
def motif2tf():
    return pd.DataFrame({'motif': ["MA_A", "MA_B"], 'tf': ["TFA", "TFB"]})


@pytest.fixture(scope="session")
def toy_state():
    """Toy pipeline run up to build_graph (computed once per session)."""
    from grnfinder import pipeline

    rna, atac = generate_toy_multiome()
    motifs = [
        Motif("MA_A", consensus_counts(MOTIF_A), "TFA"),
        Motif("MA_B", consensus_counts(MOTIF_B), "TFB"),
    ]
    motif2tf = pd.DataFrame({'motif': ["MA_A", "MA_B"], 'tf': ["TFA", "TFB"]})

    state = pipeline.initiate(rna, atac, annotation=GeneAnnotation(toy_gene_table()))
    state = pipeline.scan_motifs(
        state, motifs, motif2tf, InMemoryGenome(toy_genome_sequences()), p_value=1e-4
    )
    state = pipeline.infer(state, genes=["G1", "G2", "G3"])
    state = pipeline.build_modules(state)
    return pipeline.build_graph(state, layout="circular")


def make_fit_tables(rows, gof_rows=None, model_pvals=None):
    """
    Coefficient and gof tables from short term tuples.

    Args:
        rows: (tf, target, region, estimate, pval) tuples; padj = pval
        gof_rows: Optional {gene: rsq}; genes default to rsq 0.5
        model_pvals: Optional {gene: model F-test p}; genes default to 1e-6
    """
    coefs = pd.DataFrame(rows, columns=['tf', 'target', 'region', 'estimate', 'pval'])
    coefs['std_err'] = 0.1
    coefs['statistic'] = coefs['estimate'] / 0.1
    coefs['padj'] = coefs['pval']
    rsq = dict(gof_rows or {})
    model_p = dict(model_pvals or {})
    genes = sorted(coefs['target'].unique())
    gof = pd.DataFrame({
        'gene': genes,
        'rsq': [rsq.get(g, 0.5) for g in genes],
        'adj_rsq': [rsq.get(g, 0.5) for g in genes],
        'nvar': [int((coefs['target'] == g).sum()) for g in genes],
        'n_obs': 100,
        'aic': 0.0,
        'model_pval': [model_p.get(g, 1e-6) for g in genes],
    })
    return coefs, gof


def write_toy_inputs(directory):
    """
    Write the toy dataset as pipeline input files.

    Returns:
        Dict of input name -> path (rna, atac, cell_metadata, annotation,
        genome, motifs, motif2tf)
    """
    rna, atac = generate_toy_multiome()
    paths = {
        'rna': directory / "rna.csv",
        'atac': directory / "atac.csv",
        'cell_metadata': directory / "cells.csv",
        'annotation': directory / "genes.tsv",
        'genome': directory / "genome.fa",
        'motifs': directory / "motifs.jaspar",
        'motif2tf': directory / "motif2tf.tsv",
    }
    for modality in (rna, atac):
        pd.DataFrame(
            modality.to_dense(), index=modality.feature_ids, columns=modality.cell_ids
        ).to_csv(paths[modality.name])
    rna.cell_metadata.to_csv(paths['cell_metadata'])
    toy_gene_table().to_csv(paths['annotation'], sep="\t", index=False)

    with open(paths['genome'], 'w') as f:
        for chrom, seq in toy_genome_sequences().items():
            f.write(f">{chrom}\n")
            for i in range(0, len(seq), 60):
                f.write(seq[i:i + 60] + "\n")

    with open(paths['motifs'], 'w') as f:
        for motif_id, tf, seq in (("MA_A", "TFA", MOTIF_A), ("MA_B", "TFB", MOTIF_B)):
            f.write(f">{motif_id} {tf}\n")
            for base, row in zip(ALPHABET, consensus_counts(seq).astype(int)):
                f.write(f"{base}  [ {' '.join(str(v) for v in row)} ]\n")

    pd.DataFrame({'motif': ["MA_A", "MA_B"], 'tf': ["TFA", "TFB"]}).to_csv(
        paths['motif2tf'], sep="\t", index=False
    )
    return paths
