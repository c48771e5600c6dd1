"""
Data loading and initial validation for the HKG pipeline.
"""

import csv
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from hkg_pipeline.domain.exceptions import InvalidInputError
from hkg_pipeline.domain.models import PipelineConfig
from hkg_pipeline.domain.reference_genes import LITERATURE_HOUSEKEEPING_GENES
from hkg_pipeline.infrastructure.logger import Logger

STAGE = "data loading"
SYMBOL_COLUMNS = ("gene_name", "gene_symbol", "symbol")


class CountDataLoader:
    """Responsible for loading and validating count matrices and sample metadata"""

    def __init__(self):
        self.logger = Logger()

    def _read_table(self, file_path: str) -> pd.DataFrame:
        """Read a delimited table, first column as index"""
        if file_path.endswith((".tsv", ".txt", ".tsv.gz", ".txt.gz")):
            options = {"sep": "\t"}
        elif file_path.endswith((".csv", ".csv.gz")):
            options = {"sep": ","}
        else:
            # let pandas detect the delimiter
            options = {"sep": None, "engine": "python"}

        try:
            table = pd.read_csv(file_path, index_col=0, **options)
        except FileNotFoundError:
            self.logger.log_error(FileNotFoundError(f"File not found: {file_path}"), "Data loading")
            raise
        except (
            pd.errors.ParserError,
            pd.errors.EmptyDataError,
            UnicodeDecodeError,
            csv.Error,
        ) as e:
            self.logger.log_error(e, f"Error reading {file_path}")
            raise InvalidInputError(
                f"Invalid file format or corrupted data: {file_path}", stage=STAGE
            ) from e

        table.index = table.index.astype(str)
        return table

    def load_counts(self, file_path: str) -> pd.DataFrame:
        """
        Load a gene x sample count matrix.

        Non-numeric annotation columns (e.g. gene_name, transcript_id(s)) are dropped.
        Fractional counts such as RSEM expected counts are rounded to integers.

        Args:
            file_path: Path to the count table (TSV or CSV)

        Returns:
            pd.DataFrame: int64 counts indexed by gene identifier

        Raises:
            FileNotFoundError: If the file doesn't exist
            InvalidInputError: If the table is malformed
        """
        table = self._read_table(file_path)

        annotation = [col for col in table.columns if not pd.api.types.is_numeric_dtype(table[col])]
        if annotation:
            self.logger.log_step("Count table", f"Dropping annotation columns {annotation}")
        counts = table.drop(columns=annotation)

        if counts.isna().any().any():
            raise InvalidInputError(
                f"Count table {file_path} contains missing values", stage=STAGE
            )

        values = counts.to_numpy(dtype=np.float64)
        if not np.allclose(values, np.round(values)):
            self.logger.log_warning(
                "Count table contains non-integer values, rounding to the nearest integer"
            )
        counts = pd.DataFrame(
            np.round(values).astype(np.int64), index=counts.index, columns=counts.columns
        )
        counts.columns = counts.columns.astype(str)
        counts.index.name = "gene_id"

        self.logger.log_matrix_shape("Loaded count matrix", counts.shape)
        self.logger.log_success(f"Successfully loaded counts from {file_path}")
        return counts

    def load_gene_symbols(self, file_path: str) -> Dict[str, str]:
        """Gene id -> symbol mapping from an annotation column of the count table, if any"""
        table = self._read_table(file_path)
        for column in SYMBOL_COLUMNS:
            if column in table.columns:
                symbols = table[column].dropna().astype(str)
                self.logger.log_step("Gene symbols", f"Read {len(symbols)} symbols from '{column}'")
                return symbols.to_dict()
        return {}

    def load_metadata(self, file_path: str) -> pd.DataFrame:
        """
        Load the sample metadata table.

        Args:
            file_path: Path to the metadata table, first column = sample identifier

        Returns:
            pd.DataFrame: Metadata indexed by sample identifier
        """
        metadata = self._read_table(file_path)
        metadata.index.name = "sample"
        self.logger.log_step(
            "Loaded metadata",
            f"{metadata.shape[0]} samples, covariates {list(metadata.columns)}",
        )
        return metadata

    def load_reference_genes(self, file_path: Optional[str] = None) -> List[str]:
        """Literature housekeeping genes, one per line; the built-in list when no file"""
        if file_path is None:
            return sorted(LITERATURE_HOUSEKEEPING_GENES)
        with open(file_path) as handle:
            genes = [line.strip() for line in handle if line.strip() and not line.startswith("#")]
        self.logger.log_step("Reference genes", f"Loaded {len(genes)} genes from {file_path}")
        return genes

    def validate_alignment(
        self, counts: pd.DataFrame, metadata: pd.DataFrame, covariate: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Check that counts and metadata describe the same samples.

        Args:
            counts: Gene x sample count matrix
            metadata: Sample metadata
            covariate: Covariate that must be present in the metadata

        Returns:
            pd.DataFrame: Metadata reordered to the count matrix columns

        Raises:
            InvalidInputError: On empty, duplicated, negative or misaligned input
        """
        if counts.shape[0] == 0 or counts.shape[1] == 0:
            raise InvalidInputError(
                f"Count matrix has no rows or columns (shape {counts.shape})", stage=STAGE
            )
        if counts.index.has_duplicates:
            duplicated = counts.index[counts.index.duplicated()].unique().tolist()
            raise InvalidInputError(f"Duplicated gene identifiers: {duplicated[:5]}", stage=STAGE)
        if counts.columns.has_duplicates:
            duplicated = counts.columns[counts.columns.duplicated()].unique().tolist()
            raise InvalidInputError(f"Duplicated sample identifiers: {duplicated}", stage=STAGE)
        if (counts.to_numpy() < 0).any():
            raise InvalidInputError("Count matrix contains negative values", stage=STAGE)
        if metadata.index.has_duplicates:
            duplicated = metadata.index[metadata.index.duplicated()].unique().tolist()
            raise InvalidInputError(f"Duplicated metadata rows: {duplicated}", stage=STAGE)
        if metadata.shape[1] == 0:
            raise InvalidInputError("Metadata has no covariate columns", stage=STAGE)

        missing_metadata = counts.columns.difference(metadata.index).tolist()
        missing_counts = metadata.index.difference(counts.columns).tolist()
        if missing_metadata or missing_counts:
            raise InvalidInputError(
                f"Samples do not match: without metadata {missing_metadata}, "
                f"without counts {missing_counts}",
                stage=STAGE,
            )

        if covariate is not None and covariate not in metadata.columns:
            raise InvalidInputError(
                f"Covariate '{covariate}' not found in metadata columns {list(metadata.columns)}",
                stage=STAGE,
            )

        self.logger.log_success(f"Validated {counts.shape[1]} samples against metadata")
        return metadata.loc[counts.columns]

    def get_matrix_info(self, counts: pd.DataFrame) -> dict:
        """
        Get basic information about the loaded count matrix.

        Args:
            counts: Loaded count matrix

        Returns:
            dict: Matrix information
        """
        values = counts.to_numpy()
        info = {
            "shape": counts.shape,
            "total_counts": int(values.sum()),
            "zero_rows": int((values.sum(axis=1) == 0).sum()),
            "min_library_size": int(values.sum(axis=0).min()),
            "max_library_size": int(values.sum(axis=0).max()),
        }

        self.logger.log_step(
            "Matrix info",
            f"Shape: {info['shape']}, zero rows: {info['zero_rows']}, "
            f"library sizes {info['min_library_size']}-{info['max_library_size']}",
        )
        return info

    def load_and_validate(
        self, config: PipelineConfig
    ) -> Tuple[pd.DataFrame, pd.DataFrame, Dict[str, str]]:
        """
        Load counts and metadata and validate them against the configuration.

        Args:
            config: Pipeline configuration

        Returns:
            Tuple[pd.DataFrame, pd.DataFrame, Dict[str, str]]: Counts, aligned metadata
                and the gene symbol mapping (empty when the table has none)
        """
        counts = self.load_counts(config.counts_file)
        symbols = self.load_gene_symbols(config.counts_file)
        metadata = self.load_metadata(config.metadata_file)

        metadata = self.validate_alignment(counts, metadata, config.covariate)
        self.get_matrix_info(counts)
        return counts, metadata, symbols
