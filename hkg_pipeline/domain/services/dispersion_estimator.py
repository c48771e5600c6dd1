"""
Negative-binomial dispersion estimation with empirical-Bayes shrinkage.

Three steps over the genes of a count matrix, run with pydeseq2's inference routines:
1. gene-wise Cox-Reid adjusted maximum-likelihood dispersions,
2. a parametric mean-dispersion trend a0 + a1 / mean,
3. maximum a posteriori dispersions under a log-normal prior centered on the trend.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from pydeseq2.default_inference import DefaultInference
from pydeseq2.inference import Inference
from pydeseq2.utils import dispersion_trend, mean_absolute_deviation
from scipy.special import polygamma
from scipy.stats import trim_mean

from hkg_pipeline.domain.exceptions import InvalidInputError
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "dispersion estimation"


@dataclass(frozen=True)
class DispersionTrend:
    """Mean-dispersion relationship alpha(mean) = asymptotic + extra_poisson / mean"""

    asymptotic: float
    extra_poisson: float
    kind: str = "parametric"

    def __call__(self, means) -> np.ndarray:
        means = np.asarray(means, dtype=np.float64)
        if self.kind == "mean":
            return np.full(means.shape, self.asymptotic)
        with np.errstate(divide="ignore", invalid="ignore"):
            return dispersion_trend(means, np.array([self.asymptotic, self.extra_poisson]))


@dataclass(frozen=True)
class DispersionFit:
    """Per-gene dispersion table together with the fitted trend and prior"""

    table: pd.DataFrame
    trend: DispersionTrend
    prior_variance: float

    @property
    def dispersions(self) -> pd.Series:
        return self.table["dispersion"]


class DispersionEstimator:
    """Gene-wise, trended and shrunken NB dispersion estimates"""

    def __init__(
        self,
        min_dispersion: float = 1e-8,
        max_dispersion: float = 10.0,
        min_mu: float = 0.5,
        beta_tol: float = 1e-8,
        outlier_sd: float = 2.0,
        min_prior_variance: float = 0.25,
        min_genes_for_trend: int = 10,
        inference: Optional[Inference] = None,
    ):
        self.logger = Logger()
        self.min_dispersion = min_dispersion
        self.max_dispersion = max_dispersion
        self.min_mu = min_mu
        self.beta_tol = beta_tol
        self.outlier_sd = outlier_sd
        self.min_prior_variance = min_prior_variance
        self.min_genes_for_trend = min_genes_for_trend
        self.inference = inference or DefaultInference(n_cpus=1)

    def gene_wise(self, counts: np.ndarray, size_factors: np.ndarray, design: np.ndarray):
        """
        Maximum-likelihood dispersion per gene.

        Starts from the smaller of the rough and moments estimates, takes the fitted
        means from a linear model when every design row pattern has its own
        coefficient (an NB GLM otherwise) and maximizes the Cox-Reid adjusted
        likelihood.

        Args:
            counts: Samples x genes raw counts
            size_factors: Size factor per sample
            design: Samples x coefficients design matrix

        Returns:
            tuple: Dispersions (NaN for all-zero genes), fitted means of the expressed
                genes (samples x genes) and the expressed-gene mask
        """
        expressed = ~(counts == 0).all(axis=0)
        values = counts[:, expressed]
        normed = values / size_factors[:, None]
        max_dispersion = self._max_dispersion(counts.shape[0])

        rough = self.inference.fit_rough_dispersions(normed, design)
        moments = self.inference.fit_moments_dispersions(normed, size_factors)
        start = np.clip(np.minimum(rough, moments), self.min_dispersion, max_dispersion)

        if len(np.unique(design, axis=0)) == design.shape[1]:
            mu = self.inference.lin_reg_mu(
                counts=values, size_factors=size_factors, design_matrix=design, min_mu=self.min_mu
            )
        else:
            _, mu, _, _ = self.inference.irls(
                counts=values,
                size_factors=size_factors,
                design_matrix=design,
                disp=start,
                min_mu=self.min_mu,
                beta_tol=self.beta_tol,
            )

        estimates, _ = self.inference.alpha_mle(
            counts=values,
            design_matrix=design,
            mu=mu,
            alpha_hat=start,
            min_disp=self.min_dispersion,
            max_disp=max_dispersion,
        )
        dispersions = np.full(counts.shape[1], np.nan)
        dispersions[expressed] = np.clip(estimates, self.min_dispersion, max_dispersion)
        return dispersions, mu, expressed

    def fit_trend(self, base_means: np.ndarray, dispersions: np.ndarray) -> DispersionTrend:
        """
        Fit alpha = a0 + a1 / mean with an iterated Gamma GLM.

        Genes whose ratio to the current curve falls outside [1e-4, 15) are left out
        of the next iteration. Falls back to the trimmed mean of the dispersions when
        too few genes are usable or the fit does not converge to positive coefficients.
        """
        usable = np.isfinite(dispersions) & (base_means > 0)
        if usable.sum() >= self.min_genes_for_trend:
            trend = self._fit_parametric_trend(base_means[usable], dispersions[usable])
            if trend is not None:
                self.logger.log_step(
                    "Dispersion trend",
                    f"Parametric fit a0={trend.asymptotic:.4g}, a1={trend.extra_poisson:.4g}",
                )
                return trend
            self.logger.log_warning(
                "Parametric dispersion trend did not converge, using mean dispersion instead"
            )

        pool = dispersions[np.isfinite(dispersions) & (dispersions > 10 * self.min_dispersion)]
        level = float(trim_mean(pool, proportiontocut=0.001)) if pool.size > 0 else 0.0
        level = max(level, self.min_dispersion)
        self.logger.log_step("Dispersion trend", f"Constant trend at {level:.4g}")
        return DispersionTrend(asymptotic=level, extra_poisson=0.0, kind="mean")

    def _fit_parametric_trend(self, means: np.ndarray, dispersions: np.ndarray):
        covariates = pd.Series(1.0 / means)
        targets = pd.Series(dispersions)
        old_coeffs = np.array([0.1, 0.1])
        coeffs = np.array([1.0, 1.0])
        while np.sum(np.log(np.abs(coeffs / old_coeffs)) ** 2) >= 1e-6:
            if len(targets) < self.min_genes_for_trend:
                return None
            old_coeffs = coeffs
            coeffs, predictions, converged = self.inference.dispersion_trend_gamma_glm(
                covariates, targets
            )
            coeffs = np.asarray(coeffs, dtype=np.float64)
            if not converged or not np.all(coeffs > 1e-10):
                return None
            ratios = targets.to_numpy() / predictions
            keep = (ratios >= 1e-4) & (ratios < 15)
            covariates, targets = covariates[keep], targets[keep]
        return DispersionTrend(asymptotic=float(coeffs[0]), extra_poisson=float(coeffs[1]))

    def estimate_trend(
        self, counts: pd.DataFrame, size_factors: pd.Series, design: np.ndarray
    ) -> DispersionTrend:
        """Gene-wise dispersions and their trend, without shrinkage"""
        values, sf = self._prepare(counts, size_factors, design)
        genewise, _, _ = self.gene_wise(values, sf, design)
        return self.fit_trend((values / sf[:, None]).mean(axis=0), genewise)

    def estimate(
        self, counts: pd.DataFrame, size_factors: pd.Series, design: np.ndarray
    ) -> DispersionFit:
        """
        Full dispersion estimation for the genes of a count matrix.

        Args:
            counts: Raw gene x sample count matrix
            size_factors: Size factor per sample
            design: Samples x coefficients design matrix

        Returns:
            DispersionFit: Table with baseMean, dispGeneEst, dispFit, dispersion and
                dispOutlier columns; NaN dispersions for all-zero genes
        """
        values, sf = self._prepare(counts, size_factors, design)
        n_samples, n_coefs = design.shape

        base_means = (values / sf[:, None]).mean(axis=0)
        genewise, mu, expressed = self.gene_wise(values, sf, design)
        trend = self.fit_trend(base_means, genewise)
        fitted = np.where(expressed, trend(base_means), np.nan)

        usable = expressed & (genewise >= 100 * self.min_dispersion)
        if usable.sum() >= 2:
            residuals = np.log(genewise[usable]) - np.log(fitted[usable])
            log_dispersion_variance = mean_absolute_deviation(residuals) ** 2
        else:
            log_dispersion_variance = np.nan

        if n_samples - n_coefs <= 3:
            self.logger.log_warning(
                f"Only {n_samples - n_coefs} residual degrees of freedom, the log-dispersion "
                "prior is poorly estimated"
            )
        expected_variance = float(polygamma(1, (n_samples - n_coefs) / 2.0))
        if np.isfinite(log_dispersion_variance):
            prior_variance = max(
                log_dispersion_variance - expected_variance, self.min_prior_variance
            )
        else:
            prior_variance = self.min_prior_variance
        self.logger.log_statistics("Log-dispersion prior variance", prior_variance)

        max_dispersion = self._max_dispersion(n_samples)
        shrunken, _ = self.inference.alpha_mle(
            counts=values[:, expressed],
            design_matrix=design,
            mu=mu,
            alpha_hat=fitted[expressed],
            min_disp=self.min_dispersion,
            max_disp=max_dispersion,
            prior_disp_var=prior_variance,
            cr_reg=True,
            prior_reg=True,
        )
        posterior = np.full(len(genewise), np.nan)
        posterior[expressed] = np.clip(shrunken, self.min_dispersion, max_dispersion)

        outliers = np.zeros(len(genewise), dtype=bool)
        if np.isfinite(log_dispersion_variance):
            outliers[expressed] = np.log(genewise[expressed]) > np.log(
                fitted[expressed]
            ) + self.outlier_sd * np.sqrt(log_dispersion_variance)
        final = np.where(outliers, genewise, posterior)

        self.logger.log_step(
            "Dispersion shrinkage",
            f"{int(expressed.sum())} genes, {int(outliers.sum())} dispersion outliers kept",
        )

        table = pd.DataFrame(
            {
                "baseMean": base_means,
                "dispGeneEst": genewise,
                "dispFit": fitted,
                "dispersion": final,
                "dispOutlier": outliers,
            },
            index=counts.index,
        )
        return DispersionFit(table=table, trend=trend, prior_variance=prior_variance)

    def _prepare(self, counts: pd.DataFrame, size_factors: pd.Series, design: np.ndarray):
        n_samples, n_coefs = design.shape
        if n_samples != counts.shape[1]:
            raise InvalidInputError(
                f"Design has {n_samples} rows but the count matrix has {counts.shape[1]} samples",
                stage=STAGE,
            )
        if n_samples <= n_coefs:
            raise InvalidInputError(
                f"The design has {n_coefs} coefficients for {n_samples} samples, "
                "leaving no residual degrees of freedom to estimate dispersion",
                stage=STAGE,
            )
        if not (counts.sum(axis=1) > 0).any():
            raise InvalidInputError("Every gene has zero counts", stage=STAGE)
        values = counts.to_numpy(dtype=np.float64).T
        sf = size_factors.reindex(counts.columns).to_numpy(dtype=np.float64)
        return values, sf

    def _max_dispersion(self, n_samples: int) -> float:
        return max(self.max_dispersion, float(n_samples))
