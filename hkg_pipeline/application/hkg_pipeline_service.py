"""
Main application service orchestrating the HKG pipeline.
"""

from typing import Callable, Optional, TypeVar

import numpy as np

from hkg_pipeline.domain.exceptions import HKGPipelineError
from hkg_pipeline.domain.models import PipelineConfig, PipelineResult
from hkg_pipeline.domain.services.candidate_selector import CandidateSelector
from hkg_pipeline.domain.services.de_engine import DifferentialExpressionEngine
from hkg_pipeline.domain.services.dispersion_estimator import DispersionEstimator
from hkg_pipeline.domain.services.ruv_estimator import RUVEstimator
from hkg_pipeline.domain.services.size_factor_normalizer import SizeFactorNormalizer
from hkg_pipeline.domain.services.stability_scorer import GeneStabilityScorer
from hkg_pipeline.infrastructure.data.data_loader import CountDataLoader
from hkg_pipeline.infrastructure.data.data_saver import ResultSaver
from hkg_pipeline.infrastructure.logger import Logger

T = TypeVar("T")


class HKGPipelineService:
    """Main application service orchestrating the entire pipeline"""

    def __init__(self, config: PipelineConfig, ruv_estimator: Optional[RUVEstimator] = None):
        self.config = config
        self.logger = Logger(log_file=config.log_file)

        # Initialize all services
        self.data_loader = CountDataLoader()
        self.data_saver = ResultSaver()
        self.normalizer = SizeFactorNormalizer()
        self.scorer = GeneStabilityScorer()
        self.selector = CandidateSelector()
        self.dispersion_estimator = DispersionEstimator()
        self.ruv_estimator = ruv_estimator or RUVEstimator.from_name(config.ruv_strategy)
        self.de_engine = DifferentialExpressionEngine(
            dispersion_estimator=self.dispersion_estimator, n_jobs=config.n_jobs
        )

    def _run_stage(self, stage: str, func: Callable[..., T], *args, **kwargs) -> T:
        """Run one stage; structural errors are logged with the stage name and abort the run"""
        try:
            return func(*args, **kwargs)
        except HKGPipelineError as e:
            self.logger.log_error(e, f"stage '{stage}'")
            raise

    def process(self) -> PipelineResult:
        """
        Main processing pipeline.

        Returns:
            PipelineResult: Complete pipeline results
        """
        config = self.config
        self.logger.log_step("Processing pipeline", f"Starting HKG analysis '{config.run_name}'")

        # Step 1: Load and validate data
        self.logger.log_step("Data loading", "Loading count matrix and sample metadata")
        counts, metadata, gene_symbols = self._run_stage(
            "data loading", self.data_loader.load_and_validate, config
        )
        reference_genes = self.data_loader.load_reference_genes(config.reference_genes_file)

        # Step 2: Prevalence filter on the smallest replicate group
        self.logger.log_step("Gene filtering", "Removing lowly expressed genes")
        min_group = self._run_stage(
            "gene filtering", self.scorer.min_replicate_group_size, metadata, config.covariate
        )
        filtered_counts = self._run_stage(
            "gene filtering",
            self.scorer.prevalence_filter,
            counts,
            min_group,
            config.min_count,
        )

        # Step 3: Size factors and normalization
        self.logger.log_step("Normalization", "Estimating median-of-ratios size factors")
        size_factors, normalized_counts = self._run_stage(
            "normalization", self.normalizer.normalize_counts, filtered_counts
        )

        # Step 4: Variance-stabilized matrix for downstream reporting
        self.logger.log_step("Variance stabilization", "Fitting blind dispersion trend")
        blind_design = np.ones((filtered_counts.shape[1], 1))
        vst_trend = self._run_stage(
            "variance stabilization",
            self.dispersion_estimator.estimate_trend,
            filtered_counts,
            size_factors,
            blind_design,
        )
        vst_counts = self.normalizer.variance_stabilize(filtered_counts, size_factors, vst_trend)

        # Step 5: Stability scores and candidate sets
        self.logger.log_step("Stability scoring", "Computing CV and Gini index per gene")
        scores = self._run_stage("stability scoring", self.scorer.score, normalized_counts)
        stability = self._run_stage(
            "stability scoring", self.scorer.select_candidates, scores, config.percentile
        )

        # Step 6: Stable gene list
        self.logger.log_step("Candidate selection", "Intersecting CV and Gini candidates")
        selection = self._run_stage(
            "candidate selection", self.selector.run, stability, reference_genes, gene_symbols
        )

        # Step 7: Unwanted variation from the stable genes
        self.logger.log_step(
            "Unwanted variation", f"Estimating k={config.k} factors from stable genes"
        )
        ruv_factors = self._run_stage(
            "unwanted variation estimation",
            self.ruv_estimator.estimate,
            counts,
            selection.stable_genes,
            config.k,
            size_factors,
        )
        adjusted_metadata = self.ruv_estimator.append_to_metadata(metadata, ruv_factors)

        # Step 8: Differential expression without and with the RUV factors
        de_results = {}
        models = [
            ("unadjusted", metadata, [config.covariate]),
            ("ruv", adjusted_metadata, list(ruv_factors.columns) + [config.covariate]),
        ]
        for model, model_metadata, covariates in models:
            self.logger.log_step("Differential expression", f"Fitting '{model}' model")
            de_results.update(
                self._run_stage(
                    "differential expression",
                    self.de_engine.run,
                    filtered_counts,
                    model_metadata,
                    covariates,
                    config.covariate,
                    size_factors,
                    reference_level=config.reference_level,
                    contrasts=config.contrasts or None,
                    model=model,
                    alpha=config.alpha,
                )
            )

        result = PipelineResult(
            counts=counts,
            metadata=metadata,
            filtered_counts=filtered_counts,
            size_factors=size_factors,
            normalized_counts=normalized_counts,
            vst_counts=vst_counts,
            stability=stability,
            selection=selection,
            ruv_factors=ruv_factors,
            adjusted_metadata=adjusted_metadata,
            de_results=de_results,
        )

        # Step 9: Save results
        self.logger.log_step("Result saving", "Saving all pipeline results")
        self.data_saver.save_results(result, config)
        self.data_saver.save_summary(result, config)

        self.logger.log_success("Processing pipeline completed successfully")
        return result
