"""
This package contains the application layer for the HKG pipeline.

The application layer is responsible for orchestrating the analysis stages.
"""

from .hkg_pipeline_service import HKGPipelineService

__all__ = ["HKGPipelineService"]
