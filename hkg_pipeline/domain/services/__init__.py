"""
Statistical services package for the HKG pipeline.
"""

from .candidate_selector import CandidateSelector
from .de_engine import DifferentialExpressionEngine, GLMFit
from .dispersion_estimator import DispersionEstimator, DispersionTrend
from .nb_glm_solver import GeneFit, NBGLMSolver, PyDESeq2NBGLMSolver
from .ruv_estimator import (
    FactorAnalysisStrategy,
    FactorEstimationStrategy,
    RUVEstimator,
    SVDFactorStrategy,
)
from .size_factor_normalizer import SizeFactorNormalizer
from .stability_scorer import GeneStabilityScorer

__all__ = [
    "CandidateSelector",
    "DifferentialExpressionEngine",
    "DispersionEstimator",
    "DispersionTrend",
    "FactorAnalysisStrategy",
    "FactorEstimationStrategy",
    "GLMFit",
    "GeneFit",
    "GeneStabilityScorer",
    "NBGLMSolver",
    "PyDESeq2NBGLMSolver",
    "RUVEstimator",
    "SVDFactorStrategy",
    "SizeFactorNormalizer",
]
