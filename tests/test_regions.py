"""Tests for genomic regions, gene annotation and region selection."""

import numpy as np
import pandas as pd
import pytest

from grnfinder.exceptions import EmptySelectionError
from grnfinder.regions import GeneAnnotation, GenomicRegions, parse_region_name, select_regions


@pytest.fixture
def peaks():
    return GenomicRegions.from_names(
        ["chr1-100-200", "chr1-500-600", "chr2-100-200", "chr2-1000-1100"],
        provenance="atac_peaks",
    )


class TestParseRegionName:
    @pytest.mark.parametrize("name", ["chr1-100-200", "chr1:100-200", "chr1_100_200"])
    def test_formats(self, name):
        assert parse_region_name(name) == ("chr1", 100, 200)

    def test_chrom_with_underscore(self):
        assert parse_region_name("chrUn_KI270302v1-10-20") == ("chrUn_KI270302v1", 10, 20)

    @pytest.mark.parametrize("name", ["peak_1", "chr1-200", "chr1-300-200"])
    def test_invalid(self, name):
        with pytest.raises(ValueError):
            parse_region_name(name)


class TestGenomicRegions:
    def test_from_names_keeps_names(self, peaks):
        assert list(peaks.names) == ["chr1-100-200", "chr1-500-600", "chr2-100-200", "chr2-1000-1100"]
        assert len(peaks) == 4
        assert "chr2-100-200" in peaks

    def test_iteration(self, peaks):
        first = next(iter(peaks))
        assert first == ("chr1", 100, 200, "chr1-100-200")

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="unique"):
            GenomicRegions.from_names(["chr1-1-2", "chr1-1-2"])

    def test_from_bed(self, tmp_path):
        bed = tmp_path / "conserved.bed"
        bed.write_text("track name=x\nchr1\t150\t160\tel1\nchr2\t0\t50\tel2\n")
        regions = GenomicRegions.from_bed(bed)
        assert list(regions.names) == ["el1", "el2"]
        assert regions.provenance == "conserved"

    def test_from_bed3_generates_names(self, tmp_path):
        bed = tmp_path / "x.bed"
        bed.write_text("chr1\t10\t20\n")
        assert list(GenomicRegions.from_bed(bed).names) == ["chr1-10-20"]

    def test_overlap_mask(self, peaks):
        other = pd.DataFrame({'chrom': ["chr1", "chr2"], 'start': [150, 1050], 'end': [160, 1060]})
        np.testing.assert_array_equal(peaks.overlap_mask(other), [True, False, False, True])

    def test_touching_is_not_overlap(self, peaks):
        other = pd.DataFrame({'chrom': ["chr1"], 'start': [200], 'end': [300]})
        assert not peaks.overlap_mask(other)[0]

    def test_select_preserves_order(self, peaks):
        sub = peaks.select(["chr2-100-200", "chr1-100-200"])
        assert list(sub.names) == ["chr1-100-200", "chr2-100-200"]
        assert sub.is_subset_of(peaks)


class TestSelectRegions:
    def test_no_filters_returns_all(self, peaks):
        assert list(select_regions(peaks).names) == list(peaks.names)

    def test_filter(self, peaks):
        conserved = GenomicRegions(
            pd.DataFrame({'chrom': ["chr1", "chr2"], 'start': [550, 150], 'end': [560, 160]}),
            provenance="phastcons",
        )
        selected = select_regions(peaks, filter_regions=conserved)
        assert list(selected.names) == ["chr1-500-600", "chr2-100-200"]
        assert selected.provenance == "atac_peaks & phastcons"
        assert selected.is_subset_of(peaks)

    def test_exclude(self, peaks):
        blacklist = pd.DataFrame({'chrom': ["chr1"], 'start': [0], 'end': [1000]})
        selected = select_regions(peaks, exclude_regions=blacklist)
        assert list(selected.names) == ["chr2-100-200", "chr2-1000-1100"]

    def test_empty_filter_raises(self, peaks):
        nowhere = pd.DataFrame({'chrom': ["chrX"], 'start': [0], 'end': [10]})
        with pytest.raises(EmptySelectionError):
            select_regions(peaks, filter_regions=nowhere)


class TestGeneAnnotation:
    def test_tss_is_strand_aware(self, annotation):
        tss = annotation.tss().set_index('gene_name')
        assert tss.loc["G1", 'start'] == 1500
        assert tss.loc["G2", 'start'] == 799
        assert (tss['end'] - tss['start'] == 1).all()

    def test_invalid_strand(self):
        genes = pd.DataFrame({
            'gene_name': ["X"], 'chrom': ["chr1"], 'start': [0], 'end': [10], 'strand': ["."],
        })
        with pytest.raises(ValueError, match="strand"):
            GeneAnnotation(genes)

    def test_from_gtf(self, tmp_path):
        gtf = tmp_path / "genes.gtf"
        gtf.write_text(
            '#!genome-build test\n'
            'chr1\tsrc\tgene\t101\t500\t.\t+\t.\tgene_id "g1"; gene_name "SOX2"; gene_type "protein_coding";\n'
            'chr1\tsrc\texon\t101\t200\t.\t+\t.\tgene_id "g1"; gene_name "SOX2"; gene_type "protein_coding";\n'
            'chr1\tsrc\tgene\t1001\t2000\t.\t-\t.\tgene_id "g2"; gene_name "LNC1"; gene_type "lncRNA";\n'
        )
        ann = GeneAnnotation.from_gtf(gtf)
        assert list(ann.gene_names) == ["SOX2", "LNC1"]
        assert ann.genes.set_index('gene_name').loc["SOX2", 'start'] == 100
        assert ann.has_exons
        assert len(ann.exons()) == 1

        coding = GeneAnnotation.from_gtf(gtf, gene_types={"protein_coding"})
        assert list(coding.gene_names) == ["SOX2"]

    def test_restrict(self, annotation):
        assert list(annotation.restrict(["G3", "NOPE"]).gene_names) == ["G3"]

    def test_no_exons(self, annotation):
        assert not annotation.has_exons
        with pytest.raises(ValueError):
            annotation.exons()
