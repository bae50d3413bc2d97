# ========================
# npiscore/pipeline/orchestrator.py
# ========================

"""
Pipeline Orchestrator Module

Coordinates the ingestion stage: read, clean, aggregate, build benchmarks and
write the processed directory.
"""

import logging
from typing import Optional
from pathlib import Path

from .ingestion import CSVReader
from .cleaning import RecordCleaner
from .transformation import ProviderAggregator
from .benchmarks import build_benchmarks, log_benchmarks
from .storage import DataSaver
from ..utils.performance_monitor import monitor_performance
from ..utils.config import Config
from ..utils.logging_setup import log_banner

logger = logging.getLogger(__name__)


class DataPipeline:
    """
    Orchestrates the ingestion stage.
    Coordinates reading, cleaning, aggregating, benchmarking and storing.
    """

    def __init__(self,
                 input_file: str,
                 output_dir: str,
                 chunk_size: int = 10000,
                 config: Optional[Config] = None):
        """
        Initialize the data pipeline.

        Args:
            input_file (str): Path to the raw claims CSV
            output_dir (str): Directory for processed output
            chunk_size (int): Number of lines to process per chunk
            config (Config): Configuration object
        """
        self.input_file = input_file
        self.output_dir = output_dir
        self.chunk_size = chunk_size
        self.config = config or Config()

        self.reader = CSVReader(self.input_file)
        self.cleaner = RecordCleaner(error_log_limit=self.config.PARSE_ERROR_LOG_LIMIT)
        self.aggregator = ProviderAggregator(
            specialty_map=self.config.SPECIALTY_MAP,
            progress_interval=self.config.INGEST_PROGRESS_INTERVAL
        )
        self.saver = DataSaver(
            self.output_dir,
            top_codes_limit=self.config.TOP_CODES_LIMIT,
            progress_interval=self.config.WRITE_PROGRESS_INTERVAL
        )
        self.benchmarks = {}

        logger.info("DataPipeline initialized:")
        logger.info(f"  Input: {self.input_file}")
        logger.info(f"  Output: {self.output_dir}")
        logger.info(f"  Chunk size: {self.chunk_size}")

    def run(self) -> dict:
        """
        Execute the ingestion stage from start to finish.

        Returns:
            dict: Summary of processing results and saved files
        """
        logger.info(f"Starting ingestion for '{self.input_file}'...")
        # Fails on a missing file or column before anything is written.
        self.reader.validate_input()

        with monitor_performance("Ingestion", memory_budget_mb=self.config.MAX_MEMORY_USAGE_MB) as monitor:
            self._process_chunks(monitor)

            logger.info("All chunks processed. Finalizing aggregations...")
            self.aggregator.finalize_aggregations()
            monitor.add_checkpoint('aggregated', {'providers': len(self.aggregator.providers)})

            self.benchmarks = build_benchmarks(
                self.aggregator.specialties.values(),
                min_providers=self.config.MIN_PROVIDERS_PER_SPECIALTY
            )
            log_benchmarks(self.benchmarks, skipped=len(self.aggregator.specialties) - len(self.benchmarks))

            logger.info("Saving processed data...")
            saved_files = self.saver.save_all_data(
                self.aggregator, self.benchmarks, self.cleaner.get_statistics()
            )

        results = {
            'pipeline_status': 'completed',
            'input_file': self.input_file,
            'output_directory': self.output_dir,
            'saved_files': saved_files,
            'processing_stats': self._get_processing_stats(),
            'data_quality_stats': self.cleaner.get_statistics()
        }

        logger.info("Ingestion finished successfully.")
        self._log_final_summary(results)
        return results

    def _process_chunks(self, monitor) -> None:
        """Clean and aggregate the input chunk by chunk."""
        for raw_chunk in self.reader.read_in_chunks(self.chunk_size):
            cleaned_chunk = []
            for source_line in raw_chunk:
                row = self.cleaner.clean_record(source_line)
                if row is not None:
                    cleaned_chunk.append(row)

            if cleaned_chunk:
                self.aggregator.process_chunk(cleaned_chunk)

            monitor.update_progress(len(raw_chunk))

    def _get_processing_stats(self) -> dict:
        aggregator_stats = self.aggregator.get_aggregation_summary()
        return {
            **aggregator_stats,
            'benchmarked_specialties': len(self.benchmarks),
            'chunk_size': self.chunk_size,
            'input_file_size': Path(self.input_file).stat().st_size if Path(self.input_file).exists() else 0
        }

    def _log_final_summary(self, results: dict) -> None:
        log_banner(logger, "INGESTION SUMMARY")

        processing_stats = results['processing_stats']
        quality_stats = results['data_quality_stats']

        logger.info(f"Input file: {results['input_file']}")
        logger.info(f"Rows aggregated: {processing_stats['records_processed']:,}")
        logger.info(f"Malformed rows: {quality_stats['records_malformed']:,}")
        logger.info(f"Invalid identifiers: {quality_stats['records_invalid_identifier']:,}")
        logger.info(f"Data quality rate: {quality_stats['success_rate']:.1f}%")
        logger.info(f"Providers: {processing_stats['unique_providers']:,}")
        logger.info(f"Benchmarked specialties: {processing_stats['benchmarked_specialties']}")
        logger.info(f"Output directory: {results['output_directory']}")
        logger.info("="*60)
