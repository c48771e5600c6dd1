"""
Tests for stable gene selection and literature overlap reporting.
"""

import pandas as pd
import pytest

from hkg_pipeline.domain.exceptions import EmptyResultError
from hkg_pipeline.domain.models import StabilityResult
from hkg_pipeline.domain.reference_genes import LITERATURE_HOUSEKEEPING_GENES
from hkg_pipeline.domain.services.candidate_selector import CandidateSelector


@pytest.fixture
def selector():
    return CandidateSelector()


def make_stability(cv_candidates, gini_candidates):
    return StabilityResult(
        scores=pd.DataFrame(columns=["cv", "gini"]),
        percentile=2.0,
        cv_threshold=0.1,
        gini_threshold=0.05,
        cv_candidates=frozenset(cv_candidates),
        gini_candidates=frozenset(gini_candidates),
    )


class TestSelect:
    """Intersection of candidate sets"""

    def test_intersection_is_sorted(self, selector):
        stable = selector.select({"g3", "g1", "g2"}, {"g2", "g3", "g4"})
        assert stable == ["g2", "g3"]

    def test_identical_sets(self, selector):
        assert selector.select({"a", "b"}, {"b", "a"}) == ["a", "b"]

    def test_disjoint_sets_raise(self, selector):
        with pytest.raises(EmptyResultError) as excinfo:
            selector.select({"a"}, {"b"})
        assert excinfo.value.stage == "candidate selection"
        assert "0 common genes" in str(excinfo.value)


class TestLiteratureOverlap:
    """Informational overlap with literature housekeeping genes"""

    def test_default_reference_list(self, selector):
        overlap = selector.literature_overlap({"GAPDH", "X"}, {"GAPDH"}, ["GAPDH"])
        assert overlap == {
            "reference_genes": len(LITERATURE_HOUSEKEEPING_GENES),
            "cv_overlap": 1,
            "gini_overlap": 1,
            "stable_overlap": 1,
        }

    def test_symbols_are_matched(self, selector):
        overlap = selector.literature_overlap(
            {"ENSG1", "ENSG2"},
            {"ENSG1"},
            ["ENSG1"],
            reference_genes=["ACTB", "VCP"],
            gene_symbols={"ENSG1": "ACTB", "ENSG2": "FOO"},
        )
        assert overlap["reference_genes"] == 2
        assert overlap["cv_overlap"] == 1
        assert overlap["stable_overlap"] == 1

    def test_run_returns_selection(self, selector):
        selection = selector.run(
            make_stability({"ACTB", "g1"}, {"ACTB", "g2"}), reference_genes=["ACTB"]
        )
        assert selection.stable_genes == ["ACTB"]
        assert selection.literature_overlap["stable_overlap"] == 1
