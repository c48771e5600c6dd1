"""
Centralized logging for the HKG pipeline.

Every service creates its own Logger, but all of them write through the single
"hkg_pipeline" logger so handlers are configured once per process.
"""

import logging
from typing import Iterable, Optional

LOGGER_NAME = "hkg_pipeline"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PREVIEW_GENES = 5


class Logger:
    """Thin wrapper adding pipeline-specific message helpers to the shared logger"""

    def __init__(self, log_file: Optional[str] = None, level: int = logging.INFO):
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)

        if not self.logger.handlers:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            self.logger.addHandler(console)

        # A new run log replaces the previous one
        if log_file:
            for handler in [h for h in self.logger.handlers if isinstance(h, logging.FileHandler)]:
                self.logger.removeHandler(handler)
                handler.close()
            run_log = logging.FileHandler(log_file)
            run_log.setFormatter(formatter)
            self.logger.addHandler(run_log)

    def log_step(self, step: str, details: str) -> None:
        """Log a processing step with details"""
        self.logger.info(f"🔍 {step}: {details}")

    def log_error(self, error: Exception, context: str) -> None:
        """Log an error with its context and traceback"""
        self.logger.error(f"❌ Error in {context}: {error}", exc_info=True)

    def log_warning(self, warning: str) -> None:
        """Log a warning message"""
        self.logger.warning(f"⚠️ {warning}")

    def log_success(self, message: str) -> None:
        """Log a success message"""
        self.logger.info(f"✅ {message}")

    def log_save(self, file_path: str) -> None:
        """Log a file save operation"""
        self.logger.info(f"💾 Saved to: {file_path}")

    def log_matrix_shape(self, matrix_name: str, shape: tuple) -> None:
        """Log a matrix shape as genes x samples"""
        self.logger.info(f"📊 {matrix_name}: {shape[0]} genes x {shape[1]} samples")

    def log_threshold(self, threshold_name: str, value: float) -> None:
        """Log threshold information"""
        self.logger.info(f"🎯 {threshold_name}: {value:.4f}")

    def log_statistics(self, stat_name: str, value: float) -> None:
        """Log statistical values"""
        self.logger.info(f"📈 {stat_name}: {value:.6f}")

    def log_gene_set(self, set_name: str, genes: Iterable[str]) -> None:
        """Log the size of a gene set with a short sorted preview"""
        genes = sorted(genes)
        preview = ", ".join(genes[:PREVIEW_GENES])
        if len(genes) > PREVIEW_GENES:
            preview += ", ..."
        self.logger.info(f"🧬 {set_name}: {len(genes)} genes [{preview}]")
