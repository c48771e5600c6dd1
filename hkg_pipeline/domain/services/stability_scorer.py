"""
Gene stability scoring for the HKG pipeline.

Two independent per-gene metrics over normalized expression: the coefficient of
variation and the Gini index. Low values of both mark housekeeping candidates.
"""

from typing import Iterable, Optional

import numpy as np
import pandas as pd

from hkg_pipeline.domain.exceptions import EmptyInputError, InvalidInputError
from hkg_pipeline.domain.models import StabilityResult
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "stability scoring"


class GeneStabilityScorer:
    """Coefficient of variation and Gini index scoring with percentile thresholds"""

    def __init__(self):
        self.logger = Logger()

    def min_replicate_group_size(self, metadata: pd.DataFrame, covariate: str) -> int:
        """Size of the smallest group of the covariate"""
        if covariate not in metadata.columns:
            raise InvalidInputError(
                f"Covariate '{covariate}' not found in metadata columns {list(metadata.columns)}",
                stage=STAGE,
            )
        group_sizes = metadata[covariate].value_counts()
        self.logger.log_step(
            "Replicate groups",
            ", ".join(f"{level}={size}" for level, size in group_sizes.items()),
        )
        return int(group_sizes.min())

    def prevalence_filter(
        self, counts: pd.DataFrame, min_samples: int, min_count: int = 10
    ) -> pd.DataFrame:
        """
        Keep genes with at least `min_count` reads in at least `min_samples` samples.

        Args:
            counts: Raw gene x sample count matrix
            min_samples: Minimum number of samples passing the count threshold
            min_count: Count threshold

        Returns:
            pd.DataFrame: Filtered count matrix

        Raises:
            EmptyInputError: If no gene passes the filter
        """
        keep = (counts >= min_count).sum(axis=1) >= min_samples
        filtered = counts.loc[keep]

        self.logger.log_step(
            "Prevalence filter",
            f"count >= {min_count} in >= {min_samples} samples: "
            f"kept {filtered.shape[0]} of {counts.shape[0]} genes",
        )
        if filtered.empty:
            raise EmptyInputError(
                f"No gene has count >= {min_count} in at least {min_samples} samples",
                stage="prevalence filtering",
            )
        return filtered

    def coefficient_of_variation(self, matrix: pd.DataFrame) -> pd.Series:
        """Sample standard deviation over mean per gene; NaN when the mean is 0"""
        values = matrix.to_numpy(dtype=np.float64)
        means = values.mean(axis=1)
        if values.shape[1] > 1:
            stdevs = values.std(axis=1, ddof=1)
        else:
            stdevs = np.full(values.shape[0], np.nan)
        with np.errstate(divide="ignore", invalid="ignore"):
            cv = np.where(means > 0, stdevs / means, np.nan)
        return pd.Series(cv, index=matrix.index, name="cv")

    def gini_index(self, matrix: pd.DataFrame) -> pd.Series:
        """
        Gini index per gene.

        For values sorted ascending x_1 <= ... <= x_n the index is
        sum((2i - n - 1) * x_i) / (n * sum(x)). It is 0 for uniform expression and
        (n - 1) / n when all expression sits in one sample; NaN when the sum is 0.
        """
        values = np.sort(matrix.to_numpy(dtype=np.float64), axis=1)
        n = values.shape[1]
        weights = 2 * np.arange(1, n + 1) - n - 1
        totals = values.sum(axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            gini = np.where(totals > 0, (values @ weights) / (n * totals), np.nan)
        return pd.Series(gini, index=matrix.index, name="gini")

    def score(
        self, normalized: pd.DataFrame, genes: Optional[Iterable[str]] = None
    ) -> pd.DataFrame:
        """
        Compute CV and Gini for the selected genes.

        Args:
            normalized: Normalized gene x sample expression matrix
            genes: Genes to score; all rows when omitted

        Returns:
            pd.DataFrame: Columns 'cv' and 'gini' indexed by gene

        Raises:
            EmptyInputError: If there is no gene to score
        """
        if genes is not None:
            genes = list(genes)
            unknown = pd.Index(genes).difference(normalized.index)
            if len(unknown) > 0:
                raise InvalidInputError(
                    f"{len(unknown)} genes to score are not in the matrix, e.g. {list(unknown[:5])}",
                    stage=STAGE,
                )
            normalized = normalized.loc[genes]

        if normalized.shape[0] == 0:
            raise EmptyInputError("No genes left to score", stage=STAGE)

        scores = pd.concat(
            [self.coefficient_of_variation(normalized), self.gini_index(normalized)],
            axis=1,
        )
        self.logger.log_step("Stability scoring", f"Scored {scores.shape[0]} genes")
        return scores

    def percentile_threshold(self, values: pd.Series, percentile: float) -> float:
        """Empirical percentile (linear interpolation) over the defined values"""
        defined = values.dropna()
        if defined.empty:
            raise EmptyInputError(
                f"No defined '{values.name}' scores to threshold", stage=STAGE
            )
        return float(np.percentile(defined.to_numpy(), percentile))

    def select_candidates(
        self, scores: pd.DataFrame, percentile: float = 2.0
    ) -> StabilityResult:
        """
        Genes strictly below the percentile threshold of each score.

        Args:
            scores: Output of score()
            percentile: Percentile in [0, 100] used as the low-tail cut-off

        Returns:
            StabilityResult: Thresholds and both candidate sets
        """
        if not 0 <= percentile <= 100:
            raise InvalidInputError(
                f"Percentile must be within [0, 100], got {percentile}", stage=STAGE
            )

        cv_threshold = self.percentile_threshold(scores["cv"], percentile)
        gini_threshold = self.percentile_threshold(scores["gini"], percentile)
        self.logger.log_threshold(f"CV {percentile:g}th percentile", cv_threshold)
        self.logger.log_threshold(f"Gini {percentile:g}th percentile", gini_threshold)

        # NaN comparisons are False, so undefined scores never become candidates
        cv_candidates = frozenset(scores.index[scores["cv"] < cv_threshold])
        gini_candidates = frozenset(scores.index[scores["gini"] < gini_threshold])
        self.logger.log_gene_set("Low-CV candidates", cv_candidates)
        self.logger.log_gene_set("Low-Gini candidates", gini_candidates)

        return StabilityResult(
            scores=scores,
            percentile=percentile,
            cv_threshold=cv_threshold,
            gini_threshold=gini_threshold,
            cv_candidates=cv_candidates,
            gini_candidates=gini_candidates,
        )
