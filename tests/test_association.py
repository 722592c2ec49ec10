"""Tests for region-to-gene association strategies."""

import pandas as pd
import pytest

from grnfinder.inference.association import (
    ASSOCIATION_COLUMNS,
    AssociationMethod,
    NearestGeneAssociation,
    RegionGeneAssociation,
    RegulatoryDomainAssociation,
    WindowAssociation,
    get_association,
)
from grnfinder.regions import GeneAnnotation, GenomicRegions


def _genes(rows):
    return GeneAnnotation(pd.DataFrame(rows, columns=['gene_name', 'chrom', 'start', 'end', 'strand']))


def _pairs(df):
    return set(zip(df['region'], df['gene']))


class TestNearestGene:
    def test_closest_tss(self):
        genes = _genes([("GA", "chr1", 2000, 3000, "+"), ("GB", "chr1", 7000, 8001, "-")])
        regions = GenomicRegions.from_names(["chr1-1000-1100", "chr1-8500-8600", "chr2-0-10"])
        result = NearestGeneAssociation().associate(regions, genes)
        assert _pairs(result) == {("chr1-1000-1100", "GA"), ("chr1-8500-8600", "GB")}
        distances = dict(zip(result['region'], result['distance']))
        assert distances["chr1-1000-1100"] == 901
        assert distances["chr1-8500-8600"] == 500

    def test_max_distance(self):
        genes = _genes([("GA", "chr1", 2000, 3000, "+")])
        regions = GenomicRegions.from_names(["chr1-1000-1100", "chr1-1950-2050"])
        result = NearestGeneAssociation(max_distance=100).associate(regions, genes)
        assert list(result['region']) == ["chr1-1950-2050"]
        assert list(result['distance']) == [0]


class TestWindow:
    def test_strand_aware(self):
        genes = _genes([("PLUS", "chr1", 10_000, 20_000, "+"), ("MINUS", "chr2", 10_000, 20_000, "-")])
        regions = GenomicRegions.from_names([
            "chr1-7000-7100", "chr1-22000-22100",
            "chr2-7000-7100", "chr2-22000-22100",
        ])
        result = WindowAssociation(upstream=5000, downstream=0).associate(regions, genes)
        assert _pairs(result) == {("chr1-7000-7100", "PLUS"), ("chr2-22000-22100", "MINUS")}

    def test_from_tss(self):
        genes = _genes([("PLUS", "chr1", 10_000, 20_000, "+")])
        regions = GenomicRegions.from_names(["chr1-9000-9100", "chr1-15000-15100"])
        result = WindowAssociation(upstream=2000, downstream=1000, from_tss=True).associate(regions, genes)
        assert list(result['region']) == ["chr1-9000-9100"]

    def test_output_sorted_and_typed(self, annotation):
        regions = GenomicRegions.from_names(["chr1-990-1030", "chr2-990-1030", "chr1-5000-5040"])
        result = WindowAssociation().associate(regions, annotation)
        assert list(result.columns) == ASSOCIATION_COLUMNS
        assert list(result['gene']) == sorted(result['gene'])
        assert _pairs(result) == {
            ("chr1-990-1030", "G1"),
            ("chr1-990-1030", "G2"),
            ("chr1-5000-5040", "G2"),
            ("chr2-990-1030", "G3"),
        }

    def test_negative_window(self):
        with pytest.raises(ValueError):
            WindowAssociation(upstream=-1)


class TestRegulatoryDomain:
    @pytest.fixture
    def genes(self):
        return _genes([("GA", "chr1", 10_000, 12_000, "+"), ("GB", "chr1", 50_000, 52_000, "+")])

    def test_domains_meet_at_neighbour_basal(self, genes):
        domains = RegulatoryDomainAssociation().domains(genes).set_index('gene_name')
        assert domains.loc["GA", 'start'] == 0
        assert domains.loc["GA", 'end'] == 45_000
        assert domains.loc["GB", 'start'] == 11_001

    def test_associate(self, genes):
        regions = GenomicRegions.from_names([
            "chr1-2000-2100", "chr1-30000-30100", "chr1-47000-47100",
        ])
        result = RegulatoryDomainAssociation().associate(regions, genes)
        assert _pairs(result) == {
            ("chr1-2000-2100", "GA"),
            ("chr1-30000-30100", "GA"),
            ("chr1-30000-30100", "GB"),
            ("chr1-47000-47100", "GB"),
        }
        distances = {(r, g): d for r, g, d in result.itertuples(index=False)}
        assert distances[("chr1-2000-2100", "GA")] == 7901

    def test_extension_cap(self, genes):
        regions = GenomicRegions.from_names(["chr1-2000-2100"])
        result = RegulatoryDomainAssociation(extension=1000).associate(regions, genes)
        assert len(result) == 0


class TestGetAssociation:
    @pytest.mark.parametrize("name, cls", [
        ("nearest", NearestGeneAssociation),
        ("window", WindowAssociation),
        ("domain", RegulatoryDomainAssociation),
        (AssociationMethod.WINDOW, WindowAssociation),
    ])
    def test_builtins(self, name, cls):
        assert isinstance(get_association(name), cls)

    def test_kwargs(self):
        assoc = get_association("window", upstream=500)
        assert assoc.upstream == 500

    def test_custom_strategy_passthrough(self):
        class Everything(RegionGeneAssociation):
            label = "all pairs"

            def associate(self, regions, annotation):
                return pd.DataFrame(columns=['region', 'gene', 'distance'])

        strategy = Everything()
        assert get_association(strategy) is strategy

    def test_unknown(self):
        with pytest.raises(ValueError, match="nearest"):
            get_association("magic")
