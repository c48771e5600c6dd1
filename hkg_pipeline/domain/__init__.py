"""
This package contains the domain layer for the HKG pipeline.

The domain layer holds the data structures, the error taxonomy and the statistical
services of the analysis.
"""

from .exceptions import (
    EmptyInputError,
    EmptyResultError,
    HKGPipelineError,
    InsufficientControlsError,
    InvalidInputError,
    ModelFitError,
)
from .models import (
    DEResult,
    PipelineConfig,
    PipelineResult,
    SelectionResult,
    StabilityResult,
)

__all__ = [
    "DEResult",
    "EmptyInputError",
    "EmptyResultError",
    "HKGPipelineError",
    "InsufficientControlsError",
    "InvalidInputError",
    "ModelFitError",
    "PipelineConfig",
    "PipelineResult",
    "SelectionResult",
    "StabilityResult",
]
