"""
Size factor estimation and count normalization for the HKG pipeline.
"""

import numpy as np
import pandas as pd
from pydeseq2.preprocessing import deseq2_norm_fit, deseq2_norm_transform

from hkg_pipeline.domain.exceptions import InvalidInputError
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "normalization"


class SizeFactorNormalizer:
    """Median-of-ratios size factors, normalized counts and variance stabilization"""

    def __init__(self):
        self.logger = Logger()

    def estimate_size_factors(self, counts: pd.DataFrame) -> pd.Series:
        """
        Estimate per-sample size factors with the median-of-ratios method.

        Each gene's reference value is its geometric mean across samples; genes with a
        zero count in any sample have no reference and are skipped. The factors are
        rescaled so that their geometric mean is exactly 1.

        Args:
            counts: Raw gene x sample count matrix

        Returns:
            pd.Series: Size factor per sample

        Raises:
            InvalidInputError: If the matrix is empty, negative, or has no gene
                expressed in every sample
        """
        self._check_counts(counts)

        # pydeseq2 works on samples x genes
        values = counts.to_numpy(dtype=np.float64).T
        log_means, usable = deseq2_norm_fit(values)
        if not usable.any():
            raise InvalidInputError(
                "every gene contains at least one zero, cannot compute size factors",
                stage=STAGE,
            )

        _, factors = deseq2_norm_transform(values, log_means, usable)
        log_factors = np.log(factors)
        log_factors -= log_factors.mean()

        size_factors = pd.Series(
            np.exp(log_factors), index=counts.columns, name="size_factor"
        )

        self.logger.log_step(
            "Size factors",
            f"Estimated from {int(usable.sum())} of {len(usable)} genes",
        )
        self.logger.log_statistics("Minimum size factor", float(size_factors.min()))
        self.logger.log_statistics("Maximum size factor", float(size_factors.max()))
        return size_factors

    def normalize(self, counts: pd.DataFrame, size_factors: pd.Series) -> pd.DataFrame:
        """
        Divide each sample's counts by its size factor.

        Args:
            counts: Raw gene x sample count matrix
            size_factors: Size factor per sample

        Returns:
            pd.DataFrame: Normalized expression matrix
        """
        size_factors = size_factors.reindex(counts.columns)
        if size_factors.isna().any():
            missing = size_factors.index[size_factors.isna()].tolist()
            raise InvalidInputError(f"No size factor for samples: {missing}", stage=STAGE)

        normalized = counts.astype(np.float64).div(size_factors, axis=1)
        self.logger.log_matrix_shape("Normalized matrix", normalized.shape)
        return normalized

    def normalize_counts(self, counts: pd.DataFrame):
        """Estimate size factors and return them together with the normalized matrix"""
        size_factors = self.estimate_size_factors(counts)
        return size_factors, self.normalize(counts, size_factors)

    def variance_stabilize(
        self, counts: pd.DataFrame, size_factors: pd.Series, trend
    ) -> pd.DataFrame:
        """
        Variance-stabilizing transformation for a dispersion trend a0 + a1 / mean.

        Uses the closed form of the integral of 1 / sqrt(mu + alpha(mu) * mu^2), which
        behaves like log2 for large counts. This is the transform applied by pydeseq2's
        DeseqDataSet.vst_transform; with a constant trend (a1 = 0) it equals the
        arcsinh form pydeseq2 uses for mean-type trends.

        Args:
            counts: Raw gene x sample count matrix
            size_factors: Size factor per sample
            trend: Fitted DispersionTrend providing asymptotic (a0) and
                extra-Poisson (a1) coefficients

        Returns:
            pd.DataFrame: Transformed matrix on an approximately log2 scale
        """
        a0 = max(float(trend.asymptotic), 1e-8)
        a1 = max(float(trend.extra_poisson), 0.0)
        q = self.normalize(counts, size_factors).to_numpy()

        transformed = np.log2(
            (1 + a1 + 2 * a0 * q + 2 * np.sqrt(a0 * q * (1 + a1 + a0 * q))) / (4 * a0)
        )

        self.logger.log_step(
            "Variance stabilization",
            f"Applied with asymptotic dispersion {a0:.4g} and extra-Poisson term {a1:.4g}",
        )
        return pd.DataFrame(transformed, index=counts.index, columns=counts.columns)

    def _check_counts(self, counts: pd.DataFrame) -> None:
        if counts.shape[0] == 0 or counts.shape[1] == 0:
            raise InvalidInputError(
                f"Count matrix has no rows or columns (shape {counts.shape})", stage=STAGE
            )
        if (counts.to_numpy() < 0).any():
            raise InvalidInputError("Count matrix contains negative values", stage=STAGE)
