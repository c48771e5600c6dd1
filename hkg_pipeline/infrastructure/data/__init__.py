"""
Data access package for the HKG pipeline.

This package contains loading and saving components for count matrices, sample
metadata and analysis artifacts, including validation and persistence operations.
"""

from .data_loader import CountDataLoader
from .data_saver import ResultSaver

__all__ = ["CountDataLoader", "ResultSaver"]
