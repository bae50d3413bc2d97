# ========================
# npiscore/pipeline/storage.py
# ========================

"""
Data Storage Module

Writes one JSON record per provider into two-character prefix shards, plus
the benchmark file and a processing summary, and reads them back for the
packager.
"""

import json
import shutil
import logging
from typing import Dict, Iterator, Any, Optional
from pathlib import Path

from .errors import MissingInputError
from .models import ProviderAggregate, SpecialtyBenchmark, TOP_CODES_LIMIT

logger = logging.getLogger(__name__)

SHARD_PREFIX_LENGTH = 2
BENCHMARKS_FILE = "benchmarks.json"
SUMMARY_FILE = "processing_summary.json"


def shard_name(npi: str) -> str:
    return npi[:SHARD_PREFIX_LENGTH]


class DataSaver:
    """
    Saves provider aggregates and benchmarks to the processed directory.
    """

    def __init__(self, output_dir: str = "data/processed",
                 top_codes_limit: int = TOP_CODES_LIMIT,
                 progress_interval: int = 100000):
        """
        Initialize the data saver.

        Args:
            output_dir (str): Directory to save output files
            top_codes_limit (int): Length of each provider's top-codes list
            progress_interval (int): Log progress every N files
        """
        self.output_dir = Path(output_dir)
        self.top_codes_limit = top_codes_limit
        self.progress_interval = progress_interval
        logger.info(f"DataSaver initialized with output directory: {self.output_dir}")

    def save_all_data(self, aggregator, benchmarks: Dict[str, SpecialtyBenchmark],
                      statistics: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Save all aggregated data to files.

        Args:
            aggregator: ProviderAggregator with finalized data
            benchmarks (dict): Canonical specialty -> benchmark
            statistics (dict): Ingestion statistics for the summary file

        Returns:
            dict: Mapping of output type to saved path or count
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._clear_previous_output()

        saved = {}
        saved['provider_files'] = self.save_provider_records(aggregator.providers)
        saved['benchmarks'] = self.save_benchmarks(benchmarks)
        saved['summary'] = self._save_summary({
            **aggregator.get_aggregation_summary(),
            'benchmarked_specialties': len(benchmarks),
            **(statistics or {}),
        })
        logger.info(f"All data saved to {self.output_dir}")
        return saved

    def _clear_previous_output(self) -> None:
        """Remove shards from an earlier run so stale providers do not survive."""
        removed = 0
        for path in self.output_dir.iterdir():
            if path.is_dir() and len(path.name) == SHARD_PREFIX_LENGTH:
                shutil.rmtree(path)
                removed += 1
        for name in (BENCHMARKS_FILE, SUMMARY_FILE):
            (self.output_dir / name).unlink(missing_ok=True)
        if removed:
            logger.info(f"Removed {removed} shard directories from a previous run")

    def provider_path(self, npi: str) -> Path:
        return self.output_dir / shard_name(npi) / f"{npi}.json"

    def save_provider_records(self, providers: Dict[str, ProviderAggregate]) -> int:
        """
        Write one JSON file per provider.

        Returns:
            int: Number of files written
        """
        written = 0
        created_shards = set()
        for npi in sorted(providers):
            shard = shard_name(npi)
            if shard not in created_shards:
                (self.output_dir / shard).mkdir(parents=True, exist_ok=True)
                created_shards.add(shard)

            with open(self.provider_path(npi), 'w', encoding='utf-8') as f:
                json.dump(providers[npi].to_dict(self.top_codes_limit), f,
                          separators=(',', ':'), ensure_ascii=False)
            written += 1

            if self.progress_interval and written % self.progress_interval == 0:
                logger.info(f"Wrote {written:,}/{len(providers):,} provider files")

        logger.info(f"Wrote {written:,} provider files into {len(created_shards)} shards")
        return written

    def save_benchmarks(self, benchmarks: Dict[str, SpecialtyBenchmark]) -> str:
        """Save benchmarks keyed by specialty, largest specialties first."""
        file_path = self.output_dir / BENCHMARKS_FILE
        ordered = sorted(benchmarks.values(), key=lambda b: (-b.provider_count, b.specialty))
        data = {b.specialty: b.to_dict() for b in ordered}

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved {len(data)} benchmarks to {file_path}")
        return str(file_path)

    def _save_summary(self, summary_data: Dict[str, Any]) -> str:
        """Save processing summary as JSON."""
        file_path = self.output_dir / SUMMARY_FILE

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(summary_data, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"Summary saved to {file_path}")
        return str(file_path)


class DataLoader:
    """
    Reads the processed directory written by DataSaver.
    """

    def __init__(self, processed_dir: str = "data/processed", error_log_limit: int = 5):
        self.processed_dir = Path(processed_dir)
        self.error_log_limit = error_log_limit
        self.files_read = 0
        self.files_failed = 0

    def validate_input(self) -> None:
        """
        Raises:
            MissingInputError: If the processed directory or benchmarks are absent
        """
        if not self.processed_dir.is_dir():
            raise MissingInputError(f"Processed directory not found: {self.processed_dir}")
        if not (self.processed_dir / BENCHMARKS_FILE).is_file():
            raise MissingInputError(f"Benchmark file not found: {self.processed_dir / BENCHMARKS_FILE}")

    def load_benchmarks(self) -> Dict[str, SpecialtyBenchmark]:
        file_path = self.processed_dir / BENCHMARKS_FILE
        if not file_path.is_file():
            raise MissingInputError(f"Benchmark file not found: {file_path}")
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return {name: SpecialtyBenchmark.from_dict({**fields, 'specialty': name})
                for name, fields in data.items()}

    def shard_dirs(self):
        return sorted(
            p for p in self.processed_dir.iterdir()
            if p.is_dir() and len(p.name) == SHARD_PREFIX_LENGTH
        )

    def iter_provider_records(self) -> Iterator[ProviderAggregate]:
        """
        Yield every provider record in shard and identifier order.

        Unreadable or corrupt files are counted and skipped.
        """
        for shard in self.shard_dirs():
            for file_path in sorted(shard.glob("*.json")):
                try:
                    with open(file_path, 'r', encoding='utf-8') as f:
                        record = ProviderAggregate.from_dict(json.load(f))
                except (OSError, ValueError, KeyError, TypeError, ArithmeticError) as e:
                    self.files_failed += 1
                    if self.files_failed <= self.error_log_limit:
                        logger.warning(f"Skipping unreadable provider file {file_path}: {e}")
                    continue
                self.files_read += 1
                yield record
