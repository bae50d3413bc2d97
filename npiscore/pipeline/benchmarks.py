# ========================
# npiscore/pipeline/benchmarks.py
# ========================

"""
Benchmark Builder

Derives per-specialty statistical summaries from the specialty accumulators.
Pure functions: no I/O beyond logging.
"""

import logging
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Dict, Iterable

from .models import SpecialtyAccumulator, SpecialtyBenchmark

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal('0.0001')


def _round_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def _rate(numerator: Decimal, denominator: Decimal) -> float:
    """numerator / denominator to four places; zero when the denominator is zero."""
    if denominator <= 0:
        return 0.0
    return float((numerator / denominator).quantize(RATE_PLACES, rounding=ROUND_HALF_UP))


def _share(numerator: Decimal, denominator: Decimal) -> float:
    """Like _rate but truncated, so sibling shares never sum past 1."""
    if denominator <= 0:
        return 0.0
    return float((numerator / denominator).quantize(RATE_PLACES, rounding=ROUND_DOWN))


def build_benchmark(accumulator: SpecialtyAccumulator) -> SpecialtyBenchmark:
    """
    Compute the benchmark for a single specialty.

    Args:
        accumulator (SpecialtyAccumulator): Totals for the specialty

    Returns:
        SpecialtyBenchmark: Averages, E&M shares and program adoption rates
    """
    count = Decimal(accumulator.provider_count)
    if count <= 0:
        raise ValueError(f"Specialty {accumulator.specialty!r} has no providers")

    avg_beneficiaries = Decimal(accumulator.total_beneficiaries) / count
    avg_payment = Decimal(accumulator.total_payment_cents) / count
    if avg_beneficiaries > 0:
        avg_revenue_per_beneficiary = avg_payment / avg_beneficiaries
    else:
        avg_revenue_per_beneficiary = Decimal(0)

    # Shares divide by the specialty-wide E&M total so high-volume providers
    # weigh in proportion to their volume.
    em_total = accumulator.em_total if accumulator.em_total > 0 else Decimal(1)

    adoption = {
        name: _rate(Decimal(providers), count)
        for name, providers in accumulator.program_providers.items()
    }

    return SpecialtyBenchmark(
        specialty=accumulator.specialty,
        provider_count=accumulator.provider_count,
        avg_beneficiaries=_round_int(avg_beneficiaries),
        avg_payment_cents=_round_int(avg_payment),
        avg_revenue_per_beneficiary_cents=_round_int(avg_revenue_per_beneficiary),
        avg_services=_round_int(accumulator.total_services / count),
        pct_99213=_share(accumulator.em_levels['99213'], em_total),
        pct_99214=_share(accumulator.em_levels['99214'], em_total),
        pct_99215=_share(accumulator.em_levels['99215'], em_total),
        ccm_adoption=adoption['ccm'],
        rpm_adoption=adoption['rpm'],
        bhi_adoption=adoption['bhi'],
        awv_adoption=adoption['awv'],
    )


def build_benchmarks(accumulators: Iterable[SpecialtyAccumulator],
                     min_providers: int = 10) -> Dict[str, SpecialtyBenchmark]:
    """
    Build benchmarks for every specialty at or above the provider threshold.

    Args:
        accumulators: Specialty accumulators from the aggregator
        min_providers (int): Minimum provider count for a benchmark

    Returns:
        dict: Canonical specialty -> benchmark, largest specialties first
    """
    benchmarks = [
        build_benchmark(acc)
        for acc in accumulators
        if acc.provider_count >= min_providers
    ]
    benchmarks.sort(key=lambda b: (-b.provider_count, b.specialty))
    return {b.specialty: b for b in benchmarks}


def log_benchmarks(benchmarks: Dict[str, SpecialtyBenchmark], skipped: int = 0) -> None:
    """Log every benchmark, sorted by provider count descending."""
    logger.info(f"Benchmarks built for {len(benchmarks)} specialties ({skipped} below threshold)")
    ordered = sorted(benchmarks.values(), key=lambda b: (-b.provider_count, b.specialty))
    for b in ordered:
        logger.info(
            f"  {b.specialty:<28} providers={b.provider_count:>7,} "
            f"avg_payment=${b.avg_payment_cents / 100:>12,.2f} "
            f"99214={b.pct_99214:.4f} 99215={b.pct_99215:.4f} "
            f"awv={b.awv_adoption:.4f}"
        )
