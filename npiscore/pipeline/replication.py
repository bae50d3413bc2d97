# ========================
# npiscore/pipeline/replication.py
# ========================

"""
Remote Replication Engine

Copies the embedded store to the networked store.

Modes:
- full: drop and recreate the destination tables, then load benchmarks,
  providers and code rows, then build indexes
- resume: keep the destination as is and continue the code-row load from
  the destination's row count, after checking that the rows already there
  are exactly the leading rows of the source ordering
- scores: push revenue_score values to an already replicated destination

Every network write goes through with_retry. A count mismatch after loading
is reported and raised, never corrected.
"""

import time
import logging
from typing import Any, Callable, Dict, Optional

from .database import EmbeddedStore, PROVIDER_COLUMNS, TABLES
from .errors import ResumeOffsetError, VerificationMismatchError
from .remote import REMOTE_SCORE_INDEXES
from ..utils.performance_monitor import monitor_performance
from ..utils.retry import with_retry

logger = logging.getLogger(__name__)


class Replicator:
    """
    Moves rows from an EmbeddedStore into a destination target.

    The target needs reset_schema, create_indexes, ensure_revenue_score_column,
    insert_benchmarks, insert_providers, insert_codes, update_scores,
    count_rows and last_code_key; PostgresTarget provides them.
    """

    def __init__(self, source: EmbeddedStore, target,
                 provider_batch_size: int = 1000,
                 code_batch_size: int = 2000,
                 score_batch_size: int = 500,
                 progress_interval: int = 50000,
                 max_retries: int = 5,
                 retry_delay: float = 3.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            source (EmbeddedStore): Open embedded store to read from
            target: Destination implementing the write interface
            provider_batch_size (int): Provider rows per insert
            code_batch_size (int): Code rows per insert
            score_batch_size (int): Scores per update
            progress_interval (int): Log progress every N rows
            max_retries (int): Attempts per network operation
            retry_delay (float): Base backoff in seconds, multiplied by attempt
            sleep (callable): Sleep function, replaceable in tests
        """
        self.source = source
        self.target = target
        self.provider_batch_size = provider_batch_size
        self.code_batch_size = code_batch_size
        self.score_batch_size = score_batch_size
        self.progress_interval = progress_interval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _retry(self, operation: Callable[[], Any], label: str) -> Any:
        return with_retry(operation, label,
                          max_attempts=self.max_retries,
                          base_delay=self.retry_delay,
                          sleep=self.sleep)

    # ----- entry points -----

    def run(self, resume: bool = False) -> Dict[str, Any]:
        """
        Replicate the embedded store.

        Args:
            resume (bool): Continue a partial code-row load instead of starting over

        Returns:
            dict: Rows copied per table and the verification report

        Raises:
            ResumeOffsetError: If the destination is not a prefix of the source
            VerificationMismatchError: If final row counts differ
        """
        mode = "resume" if resume else "full"
        logger.info(f"Starting {mode} replication")
        copied = {'benchmarks': 0, 'providers': 0, 'provider_codes': 0}

        with monitor_performance(f"Replication ({mode})") as monitor:
            if resume:
                start_offset = self.resume_offset()
            else:
                self._retry(self.target.reset_schema, "Drop and create tables")
                logger.info("Destination tables recreated")
                copied['benchmarks'] = self.copy_benchmarks()
                copied['providers'] = self.copy_providers(monitor)
                start_offset = 0

            copied['provider_codes'] = self.copy_codes(start_offset, monitor)

            logger.info("Creating destination indexes...")
            self._retry(self.target.create_indexes, "Create indexes")

        report = self.verify()
        results = {'mode': mode, 'copied': copied, 'verification': report}
        if not all(row['match'] for row in report.values()):
            raise VerificationMismatchError(report)
        return results

    def sync_scores(self) -> Dict[str, Any]:
        """Push every provider's revenue_score to the destination."""
        self._retry(self.target.ensure_revenue_score_column, "Add revenue_score column")
        pushed = 0
        with monitor_performance("Score sync") as monitor:
            for page in self.source.iter_scores(self.score_batch_size):
                pushed += self._retry(lambda: self.target.update_scores(page),
                                      f"Score batch at {pushed:,}")
                monitor.update_progress(len(page))
                self._log_progress("scores", pushed, len(page))
            self._retry(lambda: self.target.create_indexes(REMOTE_SCORE_INDEXES), "Create score indexes")
        logger.info(f"Pushed {pushed:,} scores")
        return {'scores_pushed': pushed}

    # ----- phases -----

    def resume_offset(self) -> int:
        """
        Row count already present in the destination's code table.

        The destination's greatest key must equal the source key at the same
        ordinal, otherwise earlier batches left gaps or extra rows.
        """
        offset = self._retry(lambda: self.target.count_rows('provider_codes'), "Count destination code rows")
        source_total = self.source.count_rows('provider_codes')
        logger.info(f"Destination holds {offset:,} of {source_total:,} code rows")

        if offset == 0:
            return 0
        if offset > source_total:
            raise ResumeOffsetError(
                f"Destination has {offset:,} code rows but the source only {source_total:,}"
            )

        destination_key = self._retry(self.target.last_code_key, "Read destination last key")
        source_key = self.source.code_key_at(offset - 1)
        if destination_key != source_key:
            raise ResumeOffsetError(
                f"Destination last key {destination_key} does not match source row "
                f"{offset - 1:,} {source_key}; rerun in full mode"
            )
        logger.info(f"Resuming code rows after {source_key}")
        return offset

    def copy_benchmarks(self) -> int:
        rows = self.source.fetch_benchmark_rows()
        inserted = self._retry(lambda: self.target.insert_benchmarks(rows), "Insert benchmarks")
        logger.info(f"Copied {inserted} benchmarks")
        return inserted

    def copy_providers(self, monitor=None) -> int:
        copied = 0
        for page in self.source.iter_provider_pages(self.provider_batch_size):
            rows = [tuple(row[column] for column in PROVIDER_COLUMNS) for row in page]
            copied += self._retry(lambda: self.target.insert_providers(rows),
                                  f"Provider batch at {copied:,}")
            if monitor is not None:
                monitor.update_progress(len(rows))
            self._log_progress("providers", copied, len(rows))
        logger.info(f"Copied {copied:,} providers")
        return copied

    def copy_codes(self, start_offset: int = 0, monitor=None) -> int:
        copied = 0
        for page in self.source.iter_code_pages(self.code_batch_size, start_offset):
            copied += self._retry(lambda: self.target.insert_codes(page),
                                  f"Code batch at {start_offset + copied:,}")
            if monitor is not None:
                monitor.update_progress(len(page))
            self._log_progress("code rows", start_offset + copied, len(page))
        logger.info(f"Copied {copied:,} code rows (starting at {start_offset:,})")
        return copied

    def _log_progress(self, label: str, done: int, last_batch: int) -> None:
        if not self.progress_interval:
            return
        if done // self.progress_interval > (done - last_batch) // self.progress_interval:
            logger.info(f"Replicated {done:,} {label}")

    # ----- verification -----

    def verify(self) -> Dict[str, Dict[str, Any]]:
        """
        Compare source and destination row counts for every table.

        Returns:
            dict: table -> {'source', 'destination', 'match'}
        """
        report = {}
        for table in TABLES:
            source_count = self.source.count_rows(table)
            destination_count = self._retry(lambda: self.target.count_rows(table), f"Count {table}")
            report[table] = {
                'source': source_count,
                'destination': destination_count,
                'match': source_count == destination_count,
            }
        self._print_report(report)
        return report

    def _print_report(self, report: Dict[str, Dict[str, Any]]) -> None:
        print("\n" + "="*60)
        print("REPLICATION VERIFICATION")
        print("="*60)
        for table, row in report.items():
            status = "OK" if row['match'] else "MISMATCH"
            print(f"{table:<16} source={row['source']:>12,} destination={row['destination']:>12,}  {status}")
        print("="*60)
        if not all(row['match'] for row in report.values()):
            print("Counts differ. Inspect the destination, then rerun with --resume or a full migration.")


def make_replicator(source: EmbeddedStore, target, config: Optional[Any] = None, **overrides) -> Replicator:
    """Build a Replicator from configuration values."""
    settings = {}
    if config is not None:
        settings = {
            'provider_batch_size': config.PROVIDER_BATCH_SIZE,
            'code_batch_size': config.CODE_BATCH_SIZE,
            'score_batch_size': config.SCORE_BATCH_SIZE,
            'progress_interval': config.REPLICATION_PROGRESS_INTERVAL,
            'max_retries': config.MAX_RETRIES,
            'retry_delay': config.RETRY_DELAY_SECONDS,
        }
    settings.update(overrides)
    return Replicator(source, target, **settings)
