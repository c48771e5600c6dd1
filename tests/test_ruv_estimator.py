"""
Tests for unwanted-variation estimation from control genes.
"""

import numpy as np
import pandas as pd
import pytest

from hkg_pipeline.domain.exceptions import InsufficientControlsError, InvalidInputError
from hkg_pipeline.domain.services.ruv_estimator import (
    FactorAnalysisStrategy,
    RUVEstimator,
    SVDFactorStrategy,
)


@pytest.fixture
def batch_counts():
    """50 control genes over 12 samples driven by a two-level batch effect"""
    rng = np.random.default_rng(3)
    n_genes, n_samples = 50, 12
    batch = np.array([-1.0, 1.0] * (n_samples // 2))
    batch += rng.normal(0, 0.1, n_samples)
    loadings = rng.choice([-1.0, 1.0], n_genes) * rng.uniform(0.3, 0.6, n_genes)
    log_means = rng.uniform(6, 8, n_genes)[:, None] + loadings[:, None] * batch[None, :]
    counts = rng.poisson(np.exp(log_means))
    samples = [f"s{i}" for i in range(n_samples)]
    frame = pd.DataFrame(counts, index=[f"ctl{i}" for i in range(n_genes)], columns=samples)
    return frame, pd.Series(batch, index=samples)


def abs_correlation(a, b) -> float:
    return abs(float(np.corrcoef(a, b)[0, 1]))


class TestFactorRecovery:
    """Factors follow the technical effect shared by the controls"""

    def test_svd_factor_tracks_batch(self, batch_counts):
        counts, batch = batch_counts
        factors = RUVEstimator().estimate(
            counts, counts.index, k=1, size_factors=pd.Series(1.0, index=counts.columns)
        )

        assert list(factors.columns) == ["W_1"]
        assert list(factors.index) == list(counts.columns)
        assert abs_correlation(factors["W_1"], batch) > 0.9

    def test_factor_analysis_tracks_batch(self, batch_counts):
        counts, batch = batch_counts
        estimator = RUVEstimator(FactorAnalysisStrategy(random_state=0))
        factors = estimator.estimate(counts, counts.index, k=1)

        assert abs_correlation(factors["W_1"], batch) > 0.9

    def test_svd_factors_are_orthonormal(self, batch_counts):
        counts, _ = batch_counts
        factors = RUVEstimator(SVDFactorStrategy()).estimate(counts, counts.index, k=2)
        gram = factors.to_numpy().T @ factors.to_numpy()
        np.testing.assert_allclose(gram, np.eye(2), atol=1e-10)

    def test_control_matrix_is_centered(self, batch_counts):
        counts, _ = batch_counts
        matrix = RUVEstimator().control_matrix(counts, ["ctl0", "ctl1", "ctl2"])
        assert matrix.shape == (12, 3)
        np.testing.assert_allclose(matrix.mean(axis=0), 0.0, atol=1e-12)


class TestValidation:
    """Parameter and control-set checks"""

    def test_k_must_be_below_sample_count(self, batch_counts):
        counts, _ = batch_counts
        with pytest.raises(InvalidInputError):
            RUVEstimator().estimate(counts, counts.index, k=12)
        with pytest.raises(InvalidInputError):
            RUVEstimator().estimate(counts, counts.index, k=0)

    def test_too_few_controls(self, batch_counts):
        counts, _ = batch_counts
        with pytest.raises(InsufficientControlsError) as excinfo:
            RUVEstimator().estimate(counts, ["ctl0", "not_a_gene"], k=2)
        assert excinfo.value.stage == "unwanted variation estimation"

    def test_unknown_strategy(self):
        with pytest.raises(InvalidInputError):
            RUVEstimator.from_name("pca")

    def test_strategy_by_name(self):
        assert isinstance(RUVEstimator.from_name("factor_analysis").strategy, FactorAnalysisStrategy)
        assert isinstance(RUVEstimator.from_name("svd").strategy, SVDFactorStrategy)


def test_append_to_metadata_returns_copy(toy_metadata):
    factors = pd.DataFrame({"W_1": np.linspace(-1, 1, 6)}, index=toy_metadata.index[::-1])
    adjusted = RUVEstimator().append_to_metadata(toy_metadata, factors)

    assert list(adjusted.columns) == ["group", "W_1"]
    assert adjusted.loc["s5", "W_1"] == pytest.approx(-1.0)
    assert "W_1" not in toy_metadata.columns
