"""
Command line argument parsing and validation for the HKG pipeline.
"""

import argparse
import os
from typing import List, Optional, Sequence, Tuple

from hkg_pipeline.domain.models import PipelineConfig
from hkg_pipeline.infrastructure.logger import Logger


class ArgumentParser:
    """Command line argument parsing and validation"""

    def __init__(self):
        self.logger = Logger()
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create and configure the argument parser"""
        parser = argparse.ArgumentParser(
            description="Select stable housekeeping genes and run RUV-corrected differential expression"
        )

        # Required arguments
        parser.add_argument(
            "-c", "--counts_file",
            type=str,
            required=True,
            help="Gene x sample count table (TSV or CSV); first column gene id, header sample ids"
        )
        parser.add_argument(
            "-m", "--metadata_file",
            type=str,
            required=True,
            help="Sample metadata table; first column must match the count table headers"
        )
        parser.add_argument(
            "-o", "--out_dir",
            type=str,
            required=True,
            help="Output directory for saving results"
        )

        # Optional arguments with defaults
        parser.add_argument(
            "-n", "--run_name",
            type=str,
            default="hkg",
            help="Prefix for every output file (default: hkg)"
        )
        parser.add_argument(
            "-v", "--covariate",
            type=str,
            default="Tissue",
            help="Categorical metadata column of interest (default: Tissue)"
        )
        parser.add_argument(
            "-r", "--reference_level",
            type=str,
            default=None,
            help="Reference level of the covariate (default: first level in sorted order)"
        )
        parser.add_argument(
            "--contrasts",
            type=str,
            default=None,
            help="Comma-separated 'treatment:reference' pairs (default: every pair of levels)"
        )
        parser.add_argument(
            "-k", "--k",
            type=int,
            default=1,
            help="Number of unwanted-variation factors estimated from the stable genes (default: 1)"
        )
        parser.add_argument(
            "-p", "--percentile",
            type=float,
            default=2.0,
            help="Percentile of the CV and Gini distributions below which genes are candidates (default: 2)"
        )
        parser.add_argument(
            "-t", "--min_count",
            type=int,
            default=10,
            help="Minimum count required in at least the smallest group size of samples (default: 10)"
        )
        parser.add_argument(
            "-a", "--alpha",
            type=float,
            default=0.05,
            help="Adjusted p-value threshold for significant genes (default: 0.05)"
        )
        parser.add_argument(
            "-s", "--ruv_strategy",
            type=str,
            choices=["svd", "factor_analysis"],
            default="svd",
            help="Decomposition used to estimate unwanted variation (default: svd)"
        )
        parser.add_argument(
            "-j", "--n_jobs",
            type=int,
            default=1,
            help="Worker processes for per-gene model fitting (default: 1)"
        )
        parser.add_argument(
            "-g", "--reference_genes_file",
            type=str,
            default=None,
            help="Literature housekeeping genes, one per line (default: built-in list)"
        )
        parser.add_argument(
            "-l", "--log_file",
            type=str,
            default=None,
            help="Also write the log to this file"
        )

        return parser

    def parse_arguments(self, argv: Optional[Sequence[str]] = None) -> PipelineConfig:
        """Parse command line arguments and return PipelineConfig"""
        args = self.parser.parse_args(argv)

        config = PipelineConfig(
            counts_file=args.counts_file,
            metadata_file=args.metadata_file,
            out_dir=args.out_dir,
            run_name=args.run_name,
            covariate=args.covariate,
            reference_level=args.reference_level,
            contrasts=self._parse_contrasts(args.contrasts),
            k=args.k,
            percentile=args.percentile,
            min_count=args.min_count,
            alpha=args.alpha,
            ruv_strategy=args.ruv_strategy,
            n_jobs=args.n_jobs,
            reference_genes_file=args.reference_genes_file,
            log_file=args.log_file,
        )

        # Validate configuration
        if not self.validate_config(config):
            raise ValueError("Invalid configuration")

        return config

    def _parse_contrasts(self, contrasts_input: Optional[str]) -> List[Tuple[str, str]]:
        """Parse 'treatment:reference' pairs from a comma-separated string"""
        if not contrasts_input:
            return []

        contrasts = []
        for item in contrasts_input.strip('"').strip("'").split(","):
            item = item.strip()
            if not item:
                continue
            treatment, sep, reference = item.partition(":")
            if not sep or not treatment.strip() or not reference.strip():
                raise ValueError(f"Contrast '{item}' is not of the form treatment:reference")
            contrasts.append((treatment.strip(), reference.strip()))
        return contrasts

    def validate_config(self, config: PipelineConfig) -> bool:
        """Validate the pipeline configuration"""
        try:
            # Check if output directory can be created
            os.makedirs(config.out_dir, exist_ok=True)

            # Check if input files exist
            for path in (config.counts_file, config.metadata_file, config.reference_genes_file):
                if path is not None and not os.path.exists(path):
                    self.logger.log_error(
                        FileNotFoundError(f"Input file not found: {path}"),
                        "Configuration validation"
                    )
                    return False

            if config.k < 1:
                self.logger.log_error(
                    ValueError(f"Number of factors k={config.k} must be at least 1"),
                    "Configuration validation"
                )
                return False

            if not 0 <= config.percentile <= 100:
                self.logger.log_error(
                    ValueError(f"Percentile {config.percentile} is outside [0, 100]"),
                    "Configuration validation"
                )
                return False

            # Validate numeric parameters
            if config.alpha <= 0 or config.alpha > 1:
                self.logger.log_warning(f"Alpha value {config.alpha} is outside expected range (0, 1]")

            if config.percentile > 10:
                self.logger.log_warning(
                    f"Percentile {config.percentile} is far above the usual 2nd percentile"
                )

            if config.min_count < 0:
                self.logger.log_warning(f"Minimum count {config.min_count} is negative")

            if config.k > 3:
                self.logger.log_warning(f"k={config.k} factors is unusually many for small cohorts")

            if config.n_jobs < 1:
                self.logger.log_warning(f"n_jobs={config.n_jobs} is below 1, running serially")

            self.logger.log_success("Configuration validation passed")
            return True

        except OSError as e:
            self.logger.log_error(e, "Configuration validation")
            return False
