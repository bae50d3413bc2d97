# ========================
# npiscore/pipeline/transformation.py
# ========================

"""
Data Transformation Module

Folds typed claim rows into per-provider aggregates held in memory, then
derives the per-specialty accumulators once every row has been seen.
"""

import logging
from typing import Dict, List, Any, Optional

from .cleaning import ClaimRow
from .models import ProviderAggregate, SpecialtyAccumulator

logger = logging.getLogger(__name__)


class ProviderAggregator:
    """
    Performs in-memory aggregation of claim rows by provider.

    The specialty map translates source specialty labels into canonical
    benchmark specialties. Providers with unmapped labels keep their
    aggregate but do not contribute to any specialty.
    """

    def __init__(self, specialty_map: Dict[str, str], progress_interval: int = 500000):
        """
        Initialize the provider aggregator.

        Args:
            specialty_map (dict): Source specialty label -> canonical name
            progress_interval (int): Log progress every N rows
        """
        self.specialty_map = specialty_map
        self.progress_interval = progress_interval

        self.providers: Dict[str, ProviderAggregate] = {}
        self.specialties: Dict[str, SpecialtyAccumulator] = {}
        self.records_processed = 0
        self.unmapped_providers = 0
        self.unmapped_labels: Dict[str, int] = {}
        self.finalized = False
        logger.info(f"ProviderAggregator initialized with {len(specialty_map)} specialty labels")

    def process_chunk(self, chunk: List[ClaimRow]) -> None:
        """
        Fold a chunk of cleaned rows into the provider aggregates.

        Args:
            chunk (list[ClaimRow]): Typed, valid rows.
        """
        for row in chunk:
            self._process_single_record(row)
            self.records_processed += 1
            if self.progress_interval and self.records_processed % self.progress_interval == 0:
                logger.info(
                    f"Aggregated {self.records_processed:,} rows, "
                    f"{len(self.providers):,} unique providers"
                )

    def _process_single_record(self, row: ClaimRow) -> None:
        provider = self.providers.get(row.npi)
        if provider is None:
            provider = ProviderAggregate(
                npi=row.npi,
                last_name=row.last_name,
                first_name=row.first_name,
                credential=row.credential,
                specialty=row.specialty,
                state=row.state,
                city=row.city,
            )
            self.providers[row.npi] = provider

        provider.add_row(row.code, row.services, row.payment_cents, row.beneficiaries)

    def canonical_specialty(self, label: str) -> Optional[str]:
        """Canonical specialty for a source label, or None if unmapped."""
        return self.specialty_map.get(label)

    def finalize_aggregations(self) -> None:
        """
        Accumulate every provider into its canonical specialty.
        """
        logger.info("Finalizing aggregations...")
        self.specialties = {}
        self.unmapped_providers = 0
        self.unmapped_labels = {}

        for provider in self.providers.values():
            canonical = self.canonical_specialty(provider.specialty)
            if canonical is None:
                self.unmapped_providers += 1
                self.unmapped_labels[provider.specialty] = self.unmapped_labels.get(provider.specialty, 0) + 1
                continue
            accumulator = self.specialties.get(canonical)
            if accumulator is None:
                accumulator = SpecialtyAccumulator(canonical)
                self.specialties[canonical] = accumulator
            accumulator.add_provider(provider)

        self.finalized = True
        logger.info(f"Aggregation complete. Processed {self.records_processed:,} rows")
        self._log_summary_statistics()

    def _log_summary_statistics(self) -> None:
        logger.info(f"Unique providers: {len(self.providers):,}")
        logger.info(f"Specialties accumulated: {len(self.specialties)}")
        logger.info(f"Providers with unmapped specialty: {self.unmapped_providers:,}")

        if self.unmapped_labels:
            common = sorted(self.unmapped_labels.items(), key=lambda item: (-item[1], item[0]))[:5]
            logger.debug(f"Most common unmapped labels: {common}")

    def get_aggregation_summary(self) -> Dict[str, Any]:
        """Get a summary of the aggregation."""
        return {
            'records_processed': self.records_processed,
            'unique_providers': len(self.providers),
            'code_rows': sum(len(p.codes) for p in self.providers.values()),
            'specialties': len(self.specialties),
            'unmapped_specialty_providers': self.unmapped_providers,
        }
