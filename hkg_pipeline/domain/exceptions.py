"""
Error taxonomy for the HKG pipeline.

Structural errors abort a run; ModelFitError is raised per gene by the NB-GLM solver
and recovered by the differential expression engine.
"""

from typing import Optional


class HKGPipelineError(Exception):
    """Base class for all pipeline errors, tagged with the stage that failed"""

    default_stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class InvalidInputError(HKGPipelineError, ValueError):
    """Malformed or misaligned count matrix, metadata or parameters"""

    default_stage = "input validation"


class EmptyInputError(HKGPipelineError, ValueError):
    """A filtering step left no genes to work with"""

    default_stage = "gene filtering"


class EmptyResultError(HKGPipelineError, ValueError):
    """An intersection or selection step produced no genes"""

    default_stage = "candidate selection"


class InsufficientControlsError(HKGPipelineError, ValueError):
    """Too few negative-control genes for the requested number of factors"""

    default_stage = "unwanted variation estimation"


class ModelFitError(HKGPipelineError, RuntimeError):
    """The per-gene negative-binomial model did not converge"""

    default_stage = "differential expression"

    def __init__(self, message: str, gene: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message, stage)
        self.gene = gene
