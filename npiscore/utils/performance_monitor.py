# ========================
# npiscore/utils/performance_monitor.py
# ========================

"""
Performance Monitoring Utilities

Tracks elapsed time, throughput and resident memory for each pipeline stage.
In-memory aggregation is bounded by RAM, so peak memory is compared with a
configured budget and a warning is logged when it is exceeded.
"""

import time
import os
import logging
from contextlib import contextmanager
from typing import Dict, Any, Optional

import psutil

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """
    Performance monitoring utility for a pipeline stage.
    Tracks memory usage, processing time, and throughput.
    """

    def __init__(self, name: str = "Pipeline",
                 memory_budget_mb: Optional[float] = None,
                 log_interval: int = 100):
        """
        Initialize performance monitor.

        Args:
            name (str): Name for this monitoring session
            memory_budget_mb (float): Peak RSS above which a warning is logged
            log_interval (int): Log progress every N updates
        """
        self.name = name
        self.memory_budget_mb = memory_budget_mb
        self.log_interval = log_interval
        self.start_time = None
        self.end_time = None
        self.peak_memory_mb = 0.0
        self.records_processed = 0
        self.batches_processed = 0
        self.checkpoints = []
        self._budget_warned = False

        logger.debug(f"PerformanceMonitor initialized: {name}")

    def start_monitoring(self) -> None:
        """Start performance monitoring."""
        self.start_time = time.time()
        self.peak_memory_mb = self._get_memory_usage_mb()

        logger.info(f"{self.name} - Performance monitoring started")
        logger.info(f"Initial memory usage: {self.peak_memory_mb:.2f} MB")

    def update_progress(self, records_in_batch: int) -> None:
        """
        Update progress tracking.

        Args:
            records_in_batch (int): Number of records processed in this batch
        """
        self.records_processed += records_in_batch
        self.batches_processed += 1
        current_memory = self._get_memory_usage_mb()
        self._record_memory(current_memory)

        if self.log_interval and self.batches_processed % self.log_interval == 0:
            self._log_progress(current_memory)

    def add_checkpoint(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Add a performance checkpoint.

        Args:
            name (str): Checkpoint name
            metadata (dict): Optional metadata to store
        """
        memory_mb = self._get_memory_usage_mb()
        self._record_memory(memory_mb)
        checkpoint = {
            'name': name,
            'timestamp': time.time(),
            'memory_mb': memory_mb,
            'records_processed': self.records_processed,
            'metadata': metadata or {}
        }
        self.checkpoints.append(checkpoint)
        logger.debug(f"Checkpoint '{name}': {checkpoint}")

    def _record_memory(self, current_memory: float) -> None:
        self.peak_memory_mb = max(self.peak_memory_mb, current_memory)
        if (self.memory_budget_mb and not self._budget_warned
                and self.peak_memory_mb > self.memory_budget_mb):
            self._budget_warned = True
            logger.warning(
                f"{self.name} - Peak memory {self.peak_memory_mb:.0f} MB exceeds budget "
                f"of {self.memory_budget_mb:.0f} MB; consider a sort-merge aggregation"
            )

    def _log_progress(self, current_memory: float) -> None:
        """Log current progress."""
        if self.start_time:
            elapsed = time.time() - self.start_time
            throughput = self.records_processed / elapsed if elapsed > 0 else 0

            logger.info(
                f"{self.name} - Progress: {self.records_processed:,} records, "
                f"{throughput:.0f} records/sec, "
                f"Memory: {current_memory:.2f} MB"
            )

    def stop_monitoring(self) -> Dict[str, Any]:
        """
        Stop monitoring and return performance summary.

        Returns:
            dict: Performance statistics
        """
        self.end_time = time.time()
        total_time = self.end_time - self.start_time if self.start_time else 0
        throughput = self.records_processed / total_time if total_time > 0 else 0

        summary = {
            'name': self.name,
            'total_processing_time_seconds': total_time,
            'records_processed': self.records_processed,
            'batches_processed': self.batches_processed,
            'average_throughput_records_per_second': throughput,
            'peak_memory_usage_mb': self.peak_memory_mb,
            'memory_budget_exceeded': self._budget_warned,
            'checkpoints': self.checkpoints
        }

        self._print_summary(summary)
        return summary

    def _print_summary(self, summary: Dict[str, Any]) -> None:
        """Print formatted performance summary."""
        print("\n" + "="*60)
        print(f"PERFORMANCE SUMMARY - {summary['name']}")
        print("="*60)
        print(f"Total processing time: {summary['total_processing_time_seconds']:.2f} seconds")
        print(f"Records processed: {summary['records_processed']:,}")
        print(f"Average throughput: {summary['average_throughput_records_per_second']:.0f} records/second")
        print(f"Peak memory usage: {summary['peak_memory_usage_mb']:.2f} MB")
        if summary['memory_budget_exceeded']:
            print(f"Memory budget exceeded: {self.memory_budget_mb:.0f} MB")
        if summary['checkpoints']:
            print(f"Checkpoints recorded: {len(summary['checkpoints'])}")
        print("="*60)

    def _get_memory_usage_mb(self) -> float:
        """Get current resident memory in MB."""
        process = psutil.Process(os.getpid())
        return process.memory_info().rss / (1024 * 1024)


@contextmanager
def monitor_performance(name: str = "Pipeline", memory_budget_mb: Optional[float] = None):
    """
    Context manager for easy performance monitoring.

    Args:
        name (str): Name for this monitoring session
        memory_budget_mb (float): Optional peak memory budget

    Yields:
        PerformanceMonitor: Monitor instance
    """
    monitor = PerformanceMonitor(name, memory_budget_mb=memory_budget_mb)
    monitor.start_monitoring()
    try:
        yield monitor
    finally:
        monitor.stop_monitoring()
