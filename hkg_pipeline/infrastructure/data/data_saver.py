"""
Data saving functionality for the HKG pipeline.
"""

import csv
import os
from typing import Iterable

import pandas as pd

from hkg_pipeline.domain.models import DEResult, PipelineConfig, PipelineResult
from hkg_pipeline.infrastructure.logger import Logger


class ResultSaver:
    """Responsible for saving analysis artifacts for downstream reporting"""

    def __init__(self):
        self.logger = Logger()

    def save_table(self, table: pd.DataFrame, file_path: str, index_label: str) -> None:
        """
        Save a DataFrame to CSV with its index as the first column.

        Args:
            table: Table to save
            file_path: Output file path
            index_label: Header of the index column
        """
        try:
            os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)
            table.to_csv(file_path, index_label=index_label, float_format="%.8g")
            self.logger.log_save(file_path)

        except OSError as e:
            self.logger.log_error(e, f"Saving table to {file_path}")
            raise

    def save_gene_list(self, genes: Iterable[str], file_path: str) -> None:
        """Save gene identifiers, one per line"""
        try:
            os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)
            with open(file_path, "w") as handle:
                for gene in sorted(genes):
                    handle.write(f"{gene}\n")
            self.logger.log_save(file_path)

        except OSError as e:
            self.logger.log_error(e, f"Saving gene list to {file_path}")
            raise

    def save_de_result(self, result: DEResult, de_dir: str, run_name: str) -> str:
        """Save one contrast's result table and return its path"""
        file_path = os.path.join(de_dir, f"{run_name}_{result.name}.csv")
        self.save_table(result.table, file_path, index_label="gene_id")
        return file_path

    def save_results(self, results: PipelineResult, config: PipelineConfig) -> None:
        """
        Save all pipeline artifacts.

        Args:
            results: Pipeline results
            config: Pipeline configuration
        """
        try:
            prefix = os.path.join(config.out_dir, config.run_name)

            self.save_table(
                results.size_factors.to_frame(), f"{prefix}_size_factors.csv", "sample"
            )
            self.save_table(
                results.normalized_counts, f"{prefix}_normalized_counts.csv", "gene_id"
            )
            self.save_table(results.vst_counts, f"{prefix}_vst.csv", "gene_id")
            self.save_table(
                results.stability.scores, f"{prefix}_stability_scores.csv", "gene_id"
            )

            self.save_gene_list(results.stability.cv_candidates, f"{prefix}_candidates_cv.txt")
            self.save_gene_list(
                results.stability.gini_candidates, f"{prefix}_candidates_gini.txt"
            )
            self.save_gene_list(results.selection.stable_genes, f"{prefix}_stable_genes.txt")

            self.save_table(results.ruv_factors, f"{prefix}_ruv_factors.csv", "sample")

            de_dir = os.path.join(config.out_dir, "de")
            for result in results.de_results.values():
                self.save_de_result(result, de_dir, config.run_name)

            self.logger.log_success("All results saved successfully")

        except OSError as e:
            self.logger.log_error(e, "Saving results")
            raise

    def save_summary(self, results: PipelineResult, config: PipelineConfig) -> None:
        """
        Add a one-row summary of the run to <run_name>_summary.csv.

        Earlier rows are read back and the file is rewritten, so rows from runs
        with different contrasts stay under their own column headers.

        Args:
            results: Pipeline results
            config: Pipeline configuration
        """
        try:
            summary_file = os.path.join(config.out_dir, f"{config.run_name}_summary.csv")

            summary_data = {
                "Run": [config.run_name],
                "Covariate": [config.covariate],
                "Samples": [results.counts.shape[1]],
                "GenesTotal": [results.counts.shape[0]],
                "GenesAfterFilter": [results.filtered_counts.shape[0]],
                "Percentile": [results.stability.percentile],
                "CVThreshold": [results.stability.cv_threshold],
                "GiniThreshold": [results.stability.gini_threshold],
                "CVCandidates": [len(results.stability.cv_candidates)],
                "GiniCandidates": [len(results.stability.gini_candidates)],
                "StableGenes": [len(results.selection.stable_genes)],
                "RUVFactors": [results.ruv_factors.shape[1]],
                "RUVStrategy": [config.ruv_strategy],
            }
            for key, value in results.selection.literature_overlap.items():
                summary_data[f"Literature_{key}"] = [value]

            for name, result in results.de_results.items():
                summary_data[f"Up_{name}"] = [len(result.significant_up(config.alpha))]
                summary_data[f"Down_{name}"] = [len(result.significant_down(config.alpha))]

            summary = pd.DataFrame(summary_data)
            if os.path.exists(summary_file):
                previous = pd.read_csv(summary_file)
                if list(previous.columns) != list(summary.columns):
                    self.logger.log_warning(
                        f"Summary columns differ from {summary_file}, aligning rows by column name"
                    )
                summary = pd.concat([previous, summary], ignore_index=True)

            summary.to_csv(summary_file, index=False, quoting=csv.QUOTE_ALL)
            self.logger.log_save(summary_file)

        except OSError as e:
            self.logger.log_error(e, "Saving summary")
            raise
