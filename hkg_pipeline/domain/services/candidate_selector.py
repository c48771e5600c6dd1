"""
Stable gene selection for the HKG pipeline.
"""

from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional

from hkg_pipeline.domain.exceptions import EmptyResultError
from hkg_pipeline.domain.models import SelectionResult, StabilityResult
from hkg_pipeline.domain.reference_genes import LITERATURE_HOUSEKEEPING_GENES
from hkg_pipeline.infrastructure.logger import Logger


class CandidateSelector:
    """Intersects the CV and Gini candidate sets and reports literature overlap"""

    def __init__(self):
        self.logger = Logger()

    def select(
        self, cv_candidates: AbstractSet[str], gini_candidates: AbstractSet[str]
    ) -> List[str]:
        """
        Stable genes are exactly the genes in both candidate sets.

        Raises:
            EmptyResultError: If the two sets share no gene
        """
        stable_genes = sorted(set(cv_candidates) & set(gini_candidates))
        if not stable_genes:
            raise EmptyResultError(
                "stability thresholds produced disjoint candidate sets: 0 common genes "
                f"({len(cv_candidates)} low-CV, {len(gini_candidates)} low-Gini)"
            )

        self.logger.log_gene_set("Stable genes (CV and Gini)", stable_genes)
        return stable_genes

    def literature_overlap(
        self,
        cv_candidates: AbstractSet[str],
        gini_candidates: AbstractSet[str],
        stable_genes: Iterable[str],
        reference_genes: Optional[Iterable[str]] = None,
        gene_symbols: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, int]:
        """
        Count how many genes of each set appear in the literature list.

        Genes are matched on their identifier or, when a symbol mapping is given,
        on their symbol.
        """
        reference = set(
            LITERATURE_HOUSEKEEPING_GENES if reference_genes is None else reference_genes
        )
        symbols = gene_symbols or {}

        def in_reference(gene: str) -> bool:
            return gene in reference or symbols.get(gene) in reference

        overlap = {
            "reference_genes": len(reference),
            "cv_overlap": sum(map(in_reference, cv_candidates)),
            "gini_overlap": sum(map(in_reference, gini_candidates)),
            "stable_overlap": sum(map(in_reference, stable_genes)),
        }
        self.logger.log_step(
            "Literature overlap",
            f"CV {overlap['cv_overlap']}, Gini {overlap['gini_overlap']}, "
            f"stable {overlap['stable_overlap']} of {overlap['reference_genes']} reference genes",
        )
        return overlap

    def run(
        self,
        stability: StabilityResult,
        reference_genes: Optional[Iterable[str]] = None,
        gene_symbols: Optional[Mapping[str, str]] = None,
    ) -> SelectionResult:
        """Select stable genes from a StabilityResult and report literature overlap"""
        stable_genes = self.select(stability.cv_candidates, stability.gini_candidates)
        overlap = self.literature_overlap(
            stability.cv_candidates,
            stability.gini_candidates,
            stable_genes,
            reference_genes,
            gene_symbols,
        )
        return SelectionResult(stable_genes=stable_genes, literature_overlap=overlap)
