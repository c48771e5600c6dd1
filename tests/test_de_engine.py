"""
Tests for design construction, per-gene NB GLM fitting and Wald contrasts.
"""

import numpy as np
import pandas as pd
import pytest
from statsmodels.stats.multitest import fdrcorrection

from hkg_pipeline.domain.exceptions import InvalidInputError, ModelFitError
from hkg_pipeline.domain.services.de_engine import RESULT_COLUMNS, DifferentialExpressionEngine
from hkg_pipeline.domain.services.nb_glm_solver import PyDESeq2NBGLMSolver
from hkg_pipeline.domain.services.size_factor_normalizer import SizeFactorNormalizer


class FailingSolver(PyDESeq2NBGLMSolver):
    """Fails for the gene whose counts sum to a given total"""

    def __init__(self, failing_total):
        super().__init__()
        self.failing_total = failing_total

    def fit_gene(self, counts, design, offset, dispersion):
        if int(counts.sum()) == self.failing_total:
            raise ModelFitError("forced failure")
        return super().fit_gene(counts, design, offset, dispersion)


@pytest.fixture
def engine():
    return DifferentialExpressionEngine()


@pytest.fixture
def cohort_size_factors(cohort):
    return SizeFactorNormalizer().estimate_size_factors(cohort["counts"])


class TestDesign:
    """Model matrix construction"""

    def test_levels_put_reference_first(self, engine, cohort):
        assert engine.covariate_levels(cohort["metadata"], "Tissue") == ["Brain", "Liver", "Muscle"]
        assert engine.covariate_levels(cohort["metadata"], "Tissue", "Liver") == [
            "Liver", "Brain", "Muscle"
        ]

    def test_unknown_reference_level(self, engine, cohort):
        with pytest.raises(InvalidInputError):
            engine.covariate_levels(cohort["metadata"], "Tissue", "Kidney")

    def test_pairwise_contrasts(self, engine):
        assert engine.pairwise_contrasts(["A", "B", "C"]) == [("B", "A"), ("C", "A"), ("C", "B")]

    def test_design_columns_follow_covariate_order(self, engine, cohort):
        metadata = cohort["metadata"].assign(W_1=np.linspace(-1, 1, 9))
        design = engine.build_design(metadata, ["W_1", "Tissue"], "Tissue")

        assert list(design.columns) == ["Intercept", "W_1", "Tissue_Liver", "Tissue_Muscle"]
        assert design["Tissue_Liver"].sum() == 3

    def test_factors_after_covariate_of_interest_are_rejected(self, engine, cohort):
        metadata = cohort["metadata"].assign(W_1=np.linspace(-1, 1, 9))
        with pytest.raises(InvalidInputError):
            engine.build_design(metadata, ["Tissue", "W_1"], "Tissue")

    def test_rank_deficient_design_is_rejected(self, engine, cohort):
        metadata = cohort["metadata"].assign(W_1=np.repeat([1.0, 2.0, 3.0], 3))
        with pytest.raises(InvalidInputError):
            engine.build_design(metadata, ["W_1", "Tissue"], "Tissue")

    def test_missing_covariate_is_rejected(self, engine, cohort):
        with pytest.raises(InvalidInputError):
            engine.build_design(cohort["metadata"], ["Batch", "Tissue"], "Tissue")


class TestContrasts:
    """Wald tests on the simulated cohort"""

    def test_liver_genes_are_detected(self, engine, cohort, cohort_size_factors):
        results = engine.run(
            cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors
        )

        assert sorted(results) == [
            "unadjusted_Liver_vs_Brain",
            "unadjusted_Muscle_vs_Brain",
            "unadjusted_Muscle_vs_Liver",
        ]
        table = results["unadjusted_Liver_vs_Brain"].table
        assert list(table.columns) == RESULT_COLUMNS

        de = table.loc[cohort["de_genes"]]
        assert 1.5 < de["log2FoldChange"].median() < 2.5
        assert (de["padj"] < 0.05).sum() >= 7

        null = table.drop(index=cohort["de_genes"]).dropna()
        assert (null["padj"] < 0.05).sum() <= 5

    def test_reversed_contrast_flips_sign(self, engine, cohort, cohort_size_factors):
        fit = engine.fit(
            cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors
        )
        forward = engine.test_contrast(fit, "Liver", "Brain").table
        backward = engine.test_contrast(fit, "Brain", "Liver").table

        np.testing.assert_allclose(
            forward["log2FoldChange"].dropna(), -backward["log2FoldChange"].dropna()
        )
        np.testing.assert_allclose(forward["pvalue"].dropna(), backward["pvalue"].dropna())

    def test_non_reference_contrast(self, engine, cohort, cohort_size_factors):
        fit = engine.fit(
            cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors
        )
        vector = engine.contrast_vector(fit, "Muscle", "Liver")
        assert list(vector) == [0.0, -1.0, 1.0]

        with pytest.raises(InvalidInputError):
            engine.contrast_vector(fit, "Liver", "Liver")
        with pytest.raises(InvalidInputError):
            engine.contrast_vector(fit, "Kidney", "Liver")

    def test_all_zero_gene_is_not_tested(self, engine, cohort, cohort_size_factors):
        results = engine.run(
            cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors
        )
        row = results["unadjusted_Liver_vs_Brain"].table.loc["ENSG99999"]

        assert row["baseMean"] == 0
        assert row[["log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]].isna().all()

    def test_repeated_runs_are_identical(self, engine, cohort, cohort_size_factors):
        args = (cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors)
        first = engine.run(*args)
        second = engine.run(*args)

        for name, result in first.items():
            pd.testing.assert_frame_equal(result.table, second[name].table)

    def test_parallel_fit_matches_serial(self, engine, cohort, cohort_size_factors):
        args = (cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors)
        serial = engine.run(*args)
        parallel = DifferentialExpressionEngine(n_jobs=2).run(*args)

        for name, result in serial.items():
            pd.testing.assert_frame_equal(result.table, parallel[name].table)

    def test_gene_expressed_only_in_liver(self, engine, cohort, cohort_size_factors):
        counts = cohort["counts"].copy()
        counts.loc["ONOFF"] = [0, 0, 0, 900, 1100, 1000, 0, 0, 0]

        fit = engine.fit(counts, cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors)
        assert "ONOFF" not in fit.failed_genes

        row = engine.test_contrast(fit, "Liver", "Brain").table.loc["ONOFF"]
        assert np.isfinite(row["log2FoldChange"]) and row["log2FoldChange"] > 8
        assert np.isfinite(row["lfcSE"]) and row["lfcSE"] < 5
        assert row["padj"] < 0.05


class TestFailures:
    """Per-gene fit failures stay local to the gene"""

    def test_failed_gene_is_undefined_and_left_out_of_adjustment(
        self, cohort, cohort_size_factors
    ):
        counts = cohort["counts"]
        failing_gene = cohort["de_genes"][0]
        solver = FailingSolver(int(counts.loc[failing_gene].sum()))
        engine = DifferentialExpressionEngine(solver=solver)

        fit = engine.fit(counts, cohort["metadata"], ["Tissue"], "Tissue", cohort_size_factors)
        assert fit.failed_genes == [failing_gene]

        table = engine.test_contrast(fit, "Liver", "Brain").table
        assert np.isnan(table.loc[failing_gene, "pvalue"])
        assert np.isnan(table.loc[failing_gene, "padj"])

        # adjustment over the remaining tested genes only
        defined = table["pvalue"].dropna()
        _, expected = fdrcorrection(defined.to_numpy())
        np.testing.assert_allclose(table.loc[defined.index, "padj"], expected)
        assert len(defined) == counts.shape[0] - 2

    def test_missing_size_factors_are_rejected(self, engine, cohort):
        size_factors = pd.Series(1.0, index=cohort["counts"].columns[:-1])
        with pytest.raises(InvalidInputError):
            engine.fit(cohort["counts"], cohort["metadata"], ["Tissue"], "Tissue", size_factors)
