"""
Estimation of unwanted variation from negative-control genes (RUVg).

Control genes are assumed to carry no biological signal across the covariate of
interest, so the dominant structure of their centered log expression is technical.
The decomposition itself is a pluggable strategy.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.decomposition import FactorAnalysis

from hkg_pipeline.domain.exceptions import InsufficientControlsError, InvalidInputError
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "unwanted variation estimation"


class FactorEstimationStrategy(ABC):
    """Extracts k per-sample factors from centered control-gene expression"""

    name = "base"

    @abstractmethod
    def fit(self, control_expression: np.ndarray, k: int) -> np.ndarray:
        """
        Args:
            control_expression: Samples x control genes, centered per gene
            k: Number of factors

        Returns:
            np.ndarray: Samples x k factor matrix
        """


class SVDFactorStrategy(FactorEstimationStrategy):
    """Left singular vectors of the control block, as in RUVg"""

    name = "svd"

    def fit(self, control_expression: np.ndarray, k: int) -> np.ndarray:
        u, _, _ = np.linalg.svd(control_expression, full_matrices=False)
        return u[:, :k]


class FactorAnalysisStrategy(FactorEstimationStrategy):
    """Maximum-likelihood factor analysis scores, standardized per factor"""

    name = "factor_analysis"

    def __init__(self, random_state: int = 0):
        self.random_state = random_state

    def fit(self, control_expression: np.ndarray, k: int) -> np.ndarray:
        model = FactorAnalysis(n_components=k, random_state=self.random_state)
        scores = model.fit_transform(control_expression)
        scale = scores.std(axis=0, ddof=1)
        scale[scale == 0] = 1.0
        return scores / scale


STRATEGIES = {
    SVDFactorStrategy.name: SVDFactorStrategy,
    FactorAnalysisStrategy.name: FactorAnalysisStrategy,
}


class RUVEstimator:
    """Removes unwanted variation factors estimated from negative-control genes"""

    def __init__(self, strategy: Optional[FactorEstimationStrategy] = None):
        self.logger = Logger()
        self.strategy = strategy or SVDFactorStrategy()

    @classmethod
    def from_name(cls, name: str) -> "RUVEstimator":
        """Build an estimator from a strategy name ('svd' or 'factor_analysis')"""
        try:
            strategy_cls = STRATEGIES[name]
        except KeyError:
            raise InvalidInputError(
                f"Unknown RUV strategy '{name}', expected one of {sorted(STRATEGIES)}",
                stage=STAGE,
            ) from None
        return cls(strategy_cls())

    def upper_quartile_scale(self, counts: pd.DataFrame) -> pd.DataFrame:
        """Scale each sample to a common upper quartile"""
        upper_quartiles = counts.quantile(0.75, axis=0)
        if (upper_quartiles <= 0).any():
            zero_samples = upper_quartiles.index[upper_quartiles <= 0].tolist()
            raise InvalidInputError(
                f"Upper quartile is zero for samples {zero_samples}", stage=STAGE
            )
        return counts.div(upper_quartiles, axis=1) * upper_quartiles.mean()

    def control_matrix(
        self,
        counts: pd.DataFrame,
        control_genes: Iterable[str],
        size_factors: Optional[pd.Series] = None,
    ) -> pd.DataFrame:
        """
        Centered log expression of the control genes, samples x genes.

        Counts are first scaled globally, by the given size factors or by the upper
        quartile, then log(x + 1) transformed and centered per gene.
        """
        controls = [gene for gene in dict.fromkeys(control_genes) if gene in counts.index]
        if size_factors is not None:
            scaled = counts.loc[controls].div(size_factors.reindex(counts.columns), axis=1)
        else:
            scaled = self.upper_quartile_scale(counts).loc[controls]

        log_expression = np.log(scaled.astype(np.float64) + 1.0)
        centered = log_expression.sub(log_expression.mean(axis=1), axis=0)
        return centered.T

    def estimate(
        self,
        counts: pd.DataFrame,
        control_genes: Iterable[str],
        k: int,
        size_factors: Optional[pd.Series] = None,
    ) -> pd.DataFrame:
        """
        Estimate k factors of unwanted variation.

        Args:
            counts: Raw gene x sample count matrix (unfiltered)
            control_genes: Negative-control genes, e.g. the stable gene list
            k: Number of factors
            size_factors: Optional size factors used for global scaling

        Returns:
            pd.DataFrame: Samples x k matrix with columns W_1..W_k

        Raises:
            InvalidInputError: If k is not in [1, n_samples - 1]
            InsufficientControlsError: If fewer than k + 1 controls are available
        """
        n_samples = counts.shape[1]
        if k < 1 or k >= n_samples:
            raise InvalidInputError(
                f"Number of factors k={k} must be between 1 and {n_samples - 1}",
                stage=STAGE,
            )

        control_genes = list(control_genes)
        control_expression = self.control_matrix(counts, control_genes, size_factors)
        n_controls = control_expression.shape[1]
        if n_controls < len(control_genes):
            self.logger.log_warning(
                f"{len(control_genes) - n_controls} control genes not found in the count matrix"
            )
        if n_controls < k + 1:
            raise InsufficientControlsError(
                f"{n_controls} control genes available, at least {k + 1} needed for k={k}"
            )

        factors = self.strategy.fit(control_expression.to_numpy(), k)

        self.logger.log_step(
            "Unwanted variation",
            f"Estimated {k} factor(s) from {n_controls} control genes using '{self.strategy.name}'",
        )
        return pd.DataFrame(
            factors,
            index=counts.columns,
            columns=[f"W_{i + 1}" for i in range(k)],
        )

    def append_to_metadata(
        self, metadata: pd.DataFrame, factors: pd.DataFrame
    ) -> pd.DataFrame:
        """Return a copy of the metadata with the factor columns appended"""
        overlapping = metadata.columns.intersection(factors.columns)
        adjusted = metadata.drop(columns=overlapping)
        return adjusted.join(factors.reindex(metadata.index))
