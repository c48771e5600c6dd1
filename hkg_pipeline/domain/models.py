"""
Core domain models for the HKG pipeline.
Contains data structures for configuration and results.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

import pandas as pd


@dataclass
class PipelineConfig:
    """Configuration for the HKG pipeline"""

    counts_file: str
    metadata_file: str
    out_dir: str
    run_name: str = "hkg"
    covariate: str = "Tissue"
    reference_level: Optional[str] = None
    contrasts: List[Tuple[str, str]] = field(default_factory=list)
    k: int = 1
    percentile: float = 2.0
    min_count: int = 10
    alpha: float = 0.05
    ruv_strategy: str = "svd"
    n_jobs: int = 1
    reference_genes_file: Optional[str] = None
    log_file: Optional[str] = None


@dataclass(frozen=True)
class StabilityResult:
    """Per-gene stability scores with the thresholds and candidate sets derived from them"""

    scores: pd.DataFrame
    percentile: float
    cv_threshold: float
    gini_threshold: float
    cv_candidates: FrozenSet[str]
    gini_candidates: FrozenSet[str]


@dataclass(frozen=True)
class SelectionResult:
    """Stable gene list and its informational overlap with the literature list"""

    stable_genes: List[str]
    literature_overlap: Dict[str, int]


@dataclass(frozen=True)
class DEResult:
    """Differential expression statistics for one contrast under one model"""

    contrast: Tuple[str, str]
    model: str
    table: pd.DataFrame

    @property
    def name(self) -> str:
        treatment, reference = self.contrast
        return f"{self.model}_{treatment}_vs_{reference}"

    def significant_up(self, alpha: float = 0.05) -> List[str]:
        mask = (self.table["padj"] < alpha) & (self.table["log2FoldChange"] > 0)
        return self.table.index[mask].tolist()

    def significant_down(self, alpha: float = 0.05) -> List[str]:
        mask = (self.table["padj"] < alpha) & (self.table["log2FoldChange"] < 0)
        return self.table.index[mask].tolist()


@dataclass
class PipelineResult:
    """Result of a complete HKG pipeline run"""

    # Core data
    counts: pd.DataFrame
    metadata: pd.DataFrame
    filtered_counts: pd.DataFrame
    size_factors: pd.Series
    normalized_counts: pd.DataFrame
    vst_counts: pd.DataFrame

    # Stable genes
    stability: StabilityResult
    selection: SelectionResult

    # Unwanted variation
    ruv_factors: pd.DataFrame
    adjusted_metadata: pd.DataFrame

    # Differential expression, keyed by DEResult.name
    de_results: Dict[str, DEResult] = field(default_factory=dict)
