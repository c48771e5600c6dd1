"""
Negative-binomial GLM differential expression for the HKG pipeline.
"""

import itertools
from dataclasses import dataclass
from multiprocessing import Pool
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm
from statsmodels.stats.multitest import fdrcorrection

from hkg_pipeline.domain.exceptions import InvalidInputError, ModelFitError
from hkg_pipeline.domain.models import DEResult
from hkg_pipeline.domain.services.dispersion_estimator import (
    DispersionEstimator,
    DispersionFit,
)
from hkg_pipeline.domain.services.nb_glm_solver import NBGLMSolver, PyDESeq2NBGLMSolver
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "differential expression"
RUV_FACTOR_PREFIX = "W_"
RESULT_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


@dataclass(frozen=True)
class GLMFit:
    """Per-gene NB GLM coefficients for one design"""

    model: str
    covariate: str
    reference_level: str
    levels: List[str]
    design: pd.DataFrame
    coefficients: pd.DataFrame
    covariances: np.ndarray
    base_means: pd.Series
    dispersion: DispersionFit
    failed_genes: List[str]


def _fit_gene_chunk(
    solver: NBGLMSolver,
    design: np.ndarray,
    offset: np.ndarray,
    genes: Sequence[str],
    counts: np.ndarray,
    dispersions: np.ndarray,
):
    """Fit a block of genes; failures are returned as messages instead of raised"""
    results = []
    for gene, y, alpha in zip(genes, counts, dispersions):
        try:
            fit = solver.fit_gene(y, design, offset, alpha)
            results.append((gene, fit.coef, fit.cov, fit.converged, None))
        except ModelFitError as e:
            results.append((gene, None, None, False, str(e)))
    return results


class DifferentialExpressionEngine:
    """Fits per-gene NB GLMs on raw counts and tests pairwise contrasts"""

    def __init__(
        self,
        solver: Optional[NBGLMSolver] = None,
        dispersion_estimator: Optional[DispersionEstimator] = None,
        n_jobs: int = 1,
    ):
        self.logger = Logger()
        self.solver = solver or PyDESeq2NBGLMSolver()
        self.dispersion_estimator = dispersion_estimator or DispersionEstimator()
        self.n_jobs = max(1, int(n_jobs))

    def covariate_levels(
        self, metadata: pd.DataFrame, covariate: str, reference_level: Optional[str] = None
    ) -> List[str]:
        """Levels of a categorical covariate, reference level first"""
        if covariate not in metadata.columns:
            raise InvalidInputError(
                f"Covariate '{covariate}' not found in metadata", stage=STAGE
            )
        levels = sorted(metadata[covariate].astype(str).unique())
        if reference_level is None:
            reference_level = levels[0]
        if reference_level not in levels:
            raise InvalidInputError(
                f"Reference level '{reference_level}' is not a level of '{covariate}': {levels}",
                stage=STAGE,
            )
        return [reference_level] + [level for level in levels if level != reference_level]

    def pairwise_contrasts(self, levels: Sequence[str]) -> List[Tuple[str, str]]:
        """Every pair of levels as (treatment, reference), earlier levels as reference"""
        return [(later, earlier) for earlier, later in itertools.combinations(levels, 2)]

    def build_design(
        self,
        metadata: pd.DataFrame,
        covariates: Sequence[str],
        covariate_of_interest: str,
        reference_level: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Model matrix with an intercept and one block per covariate, in the given order.

        Numeric covariates enter as-is; categorical covariates are treatment coded
        against their reference level (the given one for the covariate of interest,
        the first sorted level otherwise).

        Args:
            metadata: Sample metadata indexed like the count matrix columns
            covariates: Ordered covariate names; unwanted-variation factors (W_*) must
                come before the covariate of interest
            covariate_of_interest: Covariate tested by the contrasts
            reference_level: Reference level of the covariate of interest

        Returns:
            pd.DataFrame: Samples x coefficients design matrix
        """
        covariates = list(covariates)
        if covariate_of_interest not in covariates:
            raise InvalidInputError(
                f"Covariate of interest '{covariate_of_interest}' must be named in the design {covariates}",
                stage=STAGE,
            )
        position = covariates.index(covariate_of_interest)
        late_factors = [
            name for name in covariates[position + 1 :] if name.startswith(RUV_FACTOR_PREFIX)
        ]
        if late_factors:
            raise InvalidInputError(
                f"Unwanted-variation factors {late_factors} must be listed before "
                f"'{covariate_of_interest}'",
                stage=STAGE,
            )
        missing = [name for name in covariates if name not in metadata.columns]
        if missing:
            raise InvalidInputError(
                f"Covariates {missing} not found in metadata", stage=STAGE
            )

        columns = {"Intercept": np.ones(len(metadata))}
        for name in covariates:
            values = metadata[name]
            if name != covariate_of_interest and pd.api.types.is_numeric_dtype(values):
                columns[name] = values.to_numpy(dtype=np.float64)
                continue
            levels = self.covariate_levels(
                metadata, name, reference_level if name == covariate_of_interest else None
            )
            labels = values.astype(str)
            for level in levels[1:]:
                columns[f"{name}_{level}"] = (labels == level).to_numpy(dtype=np.float64)

        design = pd.DataFrame(columns, index=metadata.index)
        if np.linalg.matrix_rank(design.to_numpy()) < design.shape[1]:
            raise InvalidInputError(
                f"Design matrix with columns {list(design.columns)} is not full rank",
                stage=STAGE,
            )
        return design

    def fit(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        covariates: Sequence[str],
        covariate_of_interest: str,
        size_factors: pd.Series,
        reference_level: Optional[str] = None,
        model: str = "unadjusted",
    ) -> GLMFit:
        """
        Fit one NB GLM per gene on raw counts with log size factors as offset.

        All-zero genes are not tested. Genes whose fit fails stay in the result with
        undefined coefficients.

        Args:
            counts: Raw gene x sample count matrix
            metadata: Sample metadata, covariates as columns
            covariates: Ordered covariates of the model
            covariate_of_interest: Covariate tested by the contrasts
            size_factors: Size factor per sample
            reference_level: Reference level of the covariate of interest
            model: Label of this model in the results

        Returns:
            GLMFit: Coefficients and covariances per gene
        """
        metadata = self._align_metadata(counts, metadata)
        size_factors = size_factors.reindex(counts.columns)
        if size_factors.isna().any() or (size_factors <= 0).any():
            raise InvalidInputError(
                "Size factors must be positive and cover every sample", stage=STAGE
            )

        levels = self.covariate_levels(metadata, covariate_of_interest, reference_level)
        design = self.build_design(metadata, covariates, covariate_of_interest, levels[0])
        self.logger.log_step(
            "Model design", f"[{model}] ~ {' + '.join(design.columns[1:])}"
        )

        tested = counts.index[counts.sum(axis=1) > 0]
        if len(tested) < counts.shape[0]:
            self.logger.log_step(
                "Model design",
                f"[{model}] {counts.shape[0] - len(tested)} all-zero genes are not tested",
            )
        if len(tested) == 0:
            raise InvalidInputError("Every gene has zero counts", stage=STAGE)

        x = design.to_numpy()
        dispersion = self.dispersion_estimator.estimate(counts.loc[tested], size_factors, x)
        fits = self._fit_genes(
            counts.loc[tested], x, np.log(size_factors.to_numpy()), dispersion.dispersions
        )

        n_coefs = design.shape[1]
        coefficients = np.full((counts.shape[0], n_coefs), np.nan)
        covariances = np.full((counts.shape[0], n_coefs, n_coefs), np.nan)
        row_of = {gene: i for i, gene in enumerate(counts.index)}
        failed, unconverged = [], []
        for gene, coef, cov, converged, error in fits:
            if error is not None:
                failed.append(gene)
                continue
            if not converged:
                unconverged.append(gene)
            coefficients[row_of[gene]] = coef
            covariances[row_of[gene]] = cov

        if unconverged:
            self.logger.log_warning(
                f"[{model}] optimizer did not converge for {len(unconverged)} genes, "
                f"keeping their bounded estimates (e.g. {unconverged[:5]})"
            )
        if failed:
            self.logger.log_warning(
                f"[{model}] model fit failed for {len(failed)} genes, reported as undefined "
                f"(e.g. {failed[:5]})"
            )
        self.logger.log_success(f"[{model}] fitted {len(tested) - len(failed)} genes")

        base_means = counts.astype(np.float64).div(size_factors, axis=1).mean(axis=1)
        return GLMFit(
            model=model,
            covariate=covariate_of_interest,
            reference_level=levels[0],
            levels=levels,
            design=design,
            coefficients=pd.DataFrame(coefficients, index=counts.index, columns=design.columns),
            covariances=covariances,
            base_means=base_means,
            dispersion=dispersion,
            failed_genes=failed,
        )

    def _fit_genes(
        self,
        counts: pd.DataFrame,
        design: np.ndarray,
        offset: np.ndarray,
        dispersions: pd.Series,
    ):
        genes = list(counts.index)
        values = counts.to_numpy(dtype=np.float64)
        alphas = dispersions.reindex(counts.index).to_numpy()

        if self.n_jobs == 1 or len(genes) < 2 * self.n_jobs:
            return _fit_gene_chunk(self.solver, design, offset, genes, values, alphas)

        chunks = np.array_split(np.arange(len(genes)), self.n_jobs)
        arguments = [
            (self.solver, design, offset, [genes[i] for i in chunk], values[chunk], alphas[chunk])
            for chunk in chunks
        ]
        self.logger.log_step("Model fitting", f"Using {self.n_jobs} worker processes")
        with Pool(processes=self.n_jobs) as pool:
            chunk_results = pool.starmap(_fit_gene_chunk, arguments)
        return [item for chunk in chunk_results for item in chunk]

    def contrast_vector(self, fit: GLMFit, treatment: str, reference: str) -> np.ndarray:
        """Coefficient weights giving log(treatment mean / reference mean)"""
        for level in (treatment, reference):
            if level not in fit.levels:
                raise InvalidInputError(
                    f"'{level}' is not a level of '{fit.covariate}': {fit.levels}",
                    stage=STAGE,
                )
        if treatment == reference:
            raise InvalidInputError(
                f"Contrast compares '{treatment}' with itself", stage=STAGE
            )

        vector = np.zeros(fit.design.shape[1])
        columns = list(fit.design.columns)
        if treatment != fit.reference_level:
            vector[columns.index(f"{fit.covariate}_{treatment}")] += 1.0
        if reference != fit.reference_level:
            vector[columns.index(f"{fit.covariate}_{reference}")] -= 1.0
        return vector

    def test_contrast(
        self, fit: GLMFit, treatment: str, reference: str, alpha: float = 0.05
    ) -> DEResult:
        """
        Wald test of one contrast with Benjamini-Hochberg adjustment.

        Only genes with a defined p-value enter the adjustment; the others keep NaN.

        Returns:
            DEResult: baseMean, log2FoldChange, lfcSE, stat, pvalue and padj per gene
        """
        vector = self.contrast_vector(fit, treatment, reference)
        coefficients = fit.coefficients.to_numpy()

        estimate = coefficients @ vector
        with np.errstate(invalid="ignore", divide="ignore"):
            std_error = np.sqrt(np.einsum("i,gij,j->g", vector, fit.covariances, vector))
            stat = estimate / std_error
        pvalue = 2.0 * norm.sf(np.abs(stat))

        padj = np.full_like(pvalue, np.nan)
        defined = np.isfinite(pvalue)
        if defined.any():
            _, padj[defined] = fdrcorrection(pvalue[defined], alpha=alpha)

        table = pd.DataFrame(
            {
                "baseMean": fit.base_means.to_numpy(),
                "log2FoldChange": estimate / np.log(2),
                "lfcSE": std_error / np.log(2),
                "stat": stat,
                "pvalue": pvalue,
                "padj": padj,
            },
            index=fit.coefficients.index,
        )[RESULT_COLUMNS]

        result = DEResult(contrast=(treatment, reference), model=fit.model, table=table)
        self.logger.log_step(
            "Contrast",
            f"[{fit.model}] {treatment} vs {reference}: "
            f"{len(result.significant_up(alpha))} up, {len(result.significant_down(alpha))} down "
            f"(padj < {alpha}), {int((~defined).sum())} undefined",
        )
        return result

    def run(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        covariates: Sequence[str],
        covariate_of_interest: str,
        size_factors: pd.Series,
        reference_level: Optional[str] = None,
        contrasts: Optional[Iterable[Tuple[str, str]]] = None,
        model: str = "unadjusted",
        alpha: float = 0.05,
    ) -> Dict[str, DEResult]:
        """Fit the model once and test every requested contrast (all pairs by default)"""
        fit = self.fit(
            counts,
            metadata,
            covariates,
            covariate_of_interest,
            size_factors,
            reference_level,
            model,
        )
        contrasts = list(contrasts) if contrasts else self.pairwise_contrasts(fit.levels)
        results = {}
        for treatment, reference in contrasts:
            result = self.test_contrast(fit, treatment, reference, alpha)
            results[result.name] = result
        return results

    def _align_metadata(self, counts: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
        missing = counts.columns.difference(metadata.index)
        if len(missing) > 0:
            raise InvalidInputError(
                f"Samples without metadata: {list(missing)}", stage=STAGE
            )
        return metadata.loc[counts.columns]
