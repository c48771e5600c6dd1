#!/usr/bin/env python3
"""
HKG Pipeline - Main Entry Point

Selects stable housekeeping genes from a bulk RNA-seq count matrix, estimates
unwanted variation from them and runs differential expression with and without
the estimated factors. All processing is delegated to the pipeline service.
"""

import sys
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from hkg_pipeline.application.hkg_pipeline_service import HKGPipelineService
from hkg_pipeline.domain.exceptions import HKGPipelineError
from hkg_pipeline.infrastructure.argument_parser import ArgumentParser
from hkg_pipeline.infrastructure.logger import Logger


def main(argv=None):
    """Main entry point - no business logic"""
    logger = Logger()

    try:
        logger.log_step("Starting", "HKG Pipeline")

        # Parse and validate arguments
        logger.log_step("Parsing", "Command line arguments")
        parser = ArgumentParser()
        config = parser.parse_arguments(argv)

        # Initialize and run processing service
        logger.log_step("Initializing", "Pipeline service")
        service = HKGPipelineService(config)

        logger.log_step("Processing", "Count matrix")
        result = service.process()

        print(f"✅ Processing completed: {len(result.selection.stable_genes)} stable genes, "
              f"{len(result.de_results)} contrasts written to {config.out_dir}")
        return 0

    except KeyboardInterrupt:
        logger.log_warning("Processing interrupted by user")
        print("⚠️ Processing interrupted by user")
        return 130

    except HKGPipelineError as e:
        print(f"❌ Pipeline aborted: {e}")
        return 2

    except Exception as e:
        logger.log_error(e, "Main execution")
        print(f"❌ Processing failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
