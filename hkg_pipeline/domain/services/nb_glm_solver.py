"""
Negative-binomial GLM solvers used by the differential expression engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from pydeseq2.utils import irls_solver

from hkg_pipeline.domain.exceptions import ModelFitError


@dataclass(frozen=True)
class GeneFit:
    """Coefficients (natural log scale) and their covariance for one gene"""

    coef: np.ndarray
    cov: np.ndarray
    converged: bool = True


class NBGLMSolver(ABC):
    """Fits log(mu) = offset + design @ beta for counts ~ NB(mu, dispersion)"""

    @abstractmethod
    def fit_gene(
        self,
        counts: np.ndarray,
        design: np.ndarray,
        offset: np.ndarray,
        dispersion: float,
    ) -> GeneFit:
        """
        Args:
            counts: Raw counts of one gene, one value per sample
            design: Samples x coefficients design matrix
            offset: log size factor per sample
            dispersion: Fixed NB dispersion (var = mu + dispersion * mu^2)

        Returns:
            GeneFit: Coefficients and covariance

        Raises:
            ModelFitError: If no finite estimate can be produced
        """


class PyDESeq2NBGLMSolver(NBGLMSolver):
    """
    DESeq2 IRLS fit of a fixed-dispersion negative-binomial GLM with pydeseq2.

    Fitted means are floored at `min_mu` during the iterations and the coefficients
    are bounded by [min_beta, max_beta] once IRLS starts to diverge, so genes with
    no reads in a whole group still get finite fold changes and standard errors.
    The covariance is the ridge-regularized sandwich used by the DESeq2 Wald test.
    """

    def __init__(
        self,
        min_mu: float = 0.5,
        beta_tol: float = 1e-8,
        min_beta: float = -30.0,
        max_beta: float = 30.0,
        ridge: float = 1e-6,
        maxiter: int = 250,
    ):
        self.min_mu = min_mu
        self.beta_tol = beta_tol
        self.min_beta = min_beta
        self.max_beta = max_beta
        self.ridge = ridge
        self.maxiter = maxiter

    def fit_gene(
        self,
        counts: np.ndarray,
        design: np.ndarray,
        offset: np.ndarray,
        dispersion: float,
    ) -> GeneFit:
        counts = np.asarray(counts, dtype=np.float64)
        design = np.asarray(design, dtype=np.float64)
        dispersion = float(dispersion)
        if not np.isfinite(dispersion) or dispersion <= 0:
            raise ModelFitError(f"NB GLM needs a positive dispersion, got {dispersion}")

        try:
            coef, mu, _, converged = irls_solver(
                counts=counts,
                size_factors=np.exp(offset),
                design_matrix=design,
                disp=dispersion,
                min_mu=self.min_mu,
                beta_tol=self.beta_tol,
                min_beta=self.min_beta,
                max_beta=self.max_beta,
                maxiter=self.maxiter,
            )
            cov = self.covariance(design, mu, dispersion)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ModelFitError(f"NB GLM fit failed: {e}") from e

        coef = np.asarray(coef, dtype=np.float64)
        if not (np.all(np.isfinite(coef)) and np.all(np.isfinite(cov))):
            raise ModelFitError("NB GLM produced non-finite estimates")

        return GeneFit(coef=coef, cov=cov, converged=bool(converged))

    def covariance(self, design: np.ndarray, mu: np.ndarray, dispersion: float) -> np.ndarray:
        """(X'WX + ridge)^-1 X'WX (X'WX + ridge)^-1 with W = mu / (1 + dispersion * mu)"""
        weights = mu / (1.0 + mu * dispersion)
        information = (design.T * weights) @ design
        inverse = np.linalg.inv(information + self.ridge * np.eye(design.shape[1]))
        return inverse @ information @ inverse
