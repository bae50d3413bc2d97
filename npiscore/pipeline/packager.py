# ========================
# npiscore/pipeline/packager.py
# ========================

"""
Embedded Store Packager

Rebuilds the SQLite store from the processed provider files and the
benchmark file. The store is disposable: every run deletes it and loads it
from scratch, with indexes created only after the bulk load.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Tuple

from .database import EmbeddedStore
from .models import ProviderAggregate, TOP_CODES_LIMIT
from .storage import DataLoader
from ..utils.performance_monitor import monitor_performance

logger = logging.getLogger(__name__)


def remove_store_files(db_path: Path) -> None:
    """Delete the store file together with its WAL and shared-memory files."""
    for suffix in ('', '-wal', '-shm'):
        candidate = Path(f"{db_path}{suffix}")
        if candidate.exists():
            candidate.unlink()
            logger.info(f"Removed {candidate}")


class StorePackager:
    """
    Loads processed records into a fresh embedded store and verifies it.
    """

    def __init__(self, processed_dir: str, db_path: str,
                 batch_size: int = 10000,
                 size_budget_mb: float = 250,
                 top_codes_limit: int = TOP_CODES_LIMIT,
                 error_log_limit: int = 5):
        """
        Args:
            processed_dir (str): Directory written by the ingestion stage
            db_path (str): Target SQLite file
            batch_size (int): Providers per insert transaction
            size_budget_mb (float): Deployment size budget for the file
            top_codes_limit (int): Length of the stored top-codes list
            error_log_limit (int): Number of unreadable files to log
        """
        self.processed_dir = processed_dir
        self.db_path = Path(db_path)
        self.batch_size = batch_size
        self.size_budget_mb = size_budget_mb
        self.top_codes_limit = top_codes_limit
        self.loader = DataLoader(processed_dir, error_log_limit=error_log_limit)

    def run(self) -> Dict[str, Any]:
        """
        Rebuild the store.

        Returns:
            dict: Load statistics and verification results
        """
        self.loader.validate_input()
        benchmarks = self.loader.load_benchmarks()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        remove_store_files(self.db_path)

        with monitor_performance("Embedded store build") as monitor, EmbeddedStore(str(self.db_path)) as store:
            store.apply_bulk_load_pragmas()
            store.create_schema()

            with store.transaction():
                store.insert_benchmarks(benchmarks.values())
            logger.info(f"Loaded {len(benchmarks)} benchmarks")

            providers_loaded, codes_loaded = self._load_providers(store, monitor)

            logger.info("Creating indexes...")
            store.create_indexes()
            store.checkpoint()

            verification = self.verify(store)

        results = {
            'database': str(self.db_path),
            'benchmarks_loaded': len(benchmarks),
            'providers_loaded': providers_loaded,
            'codes_loaded': codes_loaded,
            'files_failed': self.loader.files_failed,
            'verification': verification,
        }
        logger.info(f"Embedded store built: {providers_loaded:,} providers, {codes_loaded:,} code rows")
        return results

    def _load_providers(self, store: EmbeddedStore, monitor) -> Tuple[int, int]:
        providers_loaded = 0
        codes_loaded = 0
        batch: List[ProviderAggregate] = []

        def flush():
            nonlocal providers_loaded, codes_loaded
            with store.transaction():
                p, c = store.insert_providers(batch, self.top_codes_limit)
            providers_loaded += p
            codes_loaded += c
            monitor.update_progress(p)
            logger.info(f"Inserted {providers_loaded:,} providers, {codes_loaded:,} code rows")
            batch.clear()

        for record in self.loader.iter_provider_records():
            batch.append(record)
            if len(batch) >= self.batch_size:
                flush()
        if batch:
            flush()

        if self.loader.files_failed:
            logger.warning(f"{self.loader.files_failed:,} provider files could not be read")
        return providers_loaded, codes_loaded

    def verify(self, store: EmbeddedStore) -> Dict[str, Any]:
        """
        Recount tables, show the top-payment provider and check file size.

        Exceeding the size budget is reported, never fatal.
        """
        counts = store.table_counts()
        top = store.top_provider_by_payment()
        size_mb = store.file_size_mb()
        within_budget = size_mb <= self.size_budget_mb

        print("\n" + "="*60)
        print("EMBEDDED STORE VERIFICATION")
        print("="*60)
        for table, count in counts.items():
            print(f"{table:<16} {count:>12,} rows")
        if top is not None:
            name = ", ".join(part for part in (top['last_name'], top['first_name']) if part)
            print(f"Top payment: {top['npi']} {name} ({top['specialty']}, {top['state']}) "
                  f"${top['total_payment_cents'] / 100:,.2f}")
        print(f"File size: {size_mb:.1f} MB (budget {self.size_budget_mb:.0f} MB)")
        print("="*60)

        if not within_budget:
            logger.warning(
                f"Store size {size_mb:.1f} MB exceeds deployment budget of {self.size_budget_mb:.0f} MB"
            )

        return {
            'counts': counts,
            'top_provider': top['npi'] if top is not None else None,
            'size_mb': size_mb,
            'within_size_budget': within_budget,
        }
