# ========================
# npiscore/pipeline/scoring.py
# ========================

"""
Revenue Score Calculator

Scores every provider 0-100 against its specialty benchmark as a weighted
sum of five sub-scores, then patches the score back into the store.

Sub-scores and weights:
- E&M coding (25%): level-4 and level-5 shares against the benchmark
- Program utilization (25%): care-management programs billed
- Revenue efficiency (20%): payment against the volume-adjusted average
- Service diversity (15%): stepped on distinct billing codes
- Patient volume (15%): revenue per beneficiary against the benchmark
"""

import math
import logging
from collections import Counter
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Tuple

from .codes import PROGRAM_GROUPS
from .database import EmbeddedStore
from .errors import MissingInputError
from .models import SpecialtyBenchmark, DEFAULT_BENCHMARK
from ..utils.performance_monitor import monitor_performance

logger = logging.getLogger(__name__)

WEIGHTS = {
    'em_coding': 0.25,
    'program_utilization': 0.25,
    'revenue_efficiency': 0.20,
    'service_diversity': 0.15,
    'patient_volume': 0.15,
}

NEUTRAL_SCORE = 50
EM_RATIO_CAP = 1.2
EFFICIENCY_RATIO_CAP = 1.5
EFFICIENCY_SCALE = 66.7
MIN_BENCH_SHARE = 0.01
RELEVANT_ADOPTION = 0.01

# (minimum distinct codes, score), highest first
DIVERSITY_STEPS = ((20, 100), (15, 85), (10, 70), (6, 55), (3, 35))
DIVERSITY_FLOOR = 15

TIERS = ((90, 'Elite'), (75, 'Strong'), (60, 'Average'), (40, 'Below Average'))
LOWEST_TIER = 'Critical'

SCORE_COLUMNS = (
    'npi', 'specialty', 'total_beneficiaries', 'total_payment_cents',
    'em_99214', 'em_99215', 'em_total',
    *(f'{group.name}_services' for group in PROGRAM_GROUPS),
)

FALLBACK_SPECIALTY = 'Internal Medicine'


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def safe_divide(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    """numerator / denominator, or fallback when the denominator is not positive."""
    return numerator / denominator if denominator > 0 else fallback


@dataclass
class ScoreInput:
    """The provider fields the score depends on."""

    npi: str
    total_beneficiaries: int
    total_payment: float
    em_99214: float
    em_99215: float
    em_total: float
    program_services: Dict[str, float]
    distinct_codes: int
    specialty: str = ''

    @classmethod
    def from_row(cls, row: Mapping[str, Any], distinct_codes: int) -> 'ScoreInput':
        return cls(
            npi=row['npi'],
            specialty=row['specialty'] or '',
            total_beneficiaries=int(row['total_beneficiaries'] or 0),
            total_payment=(row['total_payment_cents'] or 0) / 100,
            em_99214=float(row['em_99214'] or 0),
            em_99215=float(row['em_99215'] or 0),
            em_total=float(row['em_total'] or 0),
            program_services={
                group.name: float(row[f'{group.name}_services'] or 0) for group in PROGRAM_GROUPS
            },
            distinct_codes=distinct_codes,
        )


@dataclass
class ScoreBreakdown:
    em_coding: int
    program_utilization: int
    revenue_efficiency: int
    service_diversity: int
    patient_volume: int
    overall: int

    @property
    def tier(self) -> str:
        return score_tier(self.overall)

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), 'tier': self.tier}


def em_coding_score(provider: ScoreInput, bench: SpecialtyBenchmark) -> int:
    if provider.em_total <= 0:
        return NEUTRAL_SCORE
    share_4 = provider.em_99214 / provider.em_total
    share_5 = provider.em_99215 / provider.em_total
    ratio_4 = min(share_4 / max(bench.pct_99214, MIN_BENCH_SHARE), EM_RATIO_CAP)
    ratio_5 = min(share_5 / max(bench.pct_99215, MIN_BENCH_SHARE), EM_RATIO_CAP)
    return int(clamp(round_half_up((ratio_4 * 0.6 + ratio_5 * 0.4) * 100)))


def program_utilization_score(provider: ScoreInput, bench: SpecialtyBenchmark) -> int:
    """
    Points earned over points available, counting only programs that at
    least 1% of the specialty bills.
    """
    available = 0
    earned = 0
    for group in PROGRAM_GROUPS:
        if bench.adoption(group.name) < RELEVANT_ADOPTION:
            continue
        available += group.points
        if provider.program_services.get(group.name, 0) > 0:
            earned += group.points
    if available == 0:
        return NEUTRAL_SCORE
    return int(clamp(round_half_up(earned / available * 100)))


def revenue_efficiency_score(provider: ScoreInput, bench: SpecialtyBenchmark) -> int:
    avg_payment = bench.avg_payment_cents / 100
    volume_factor = safe_divide(provider.total_beneficiaries, max(bench.avg_beneficiaries, 1), 1.0)
    expected = avg_payment * volume_factor
    ratio = min(safe_divide(provider.total_payment, max(expected, 1), 0.5), EFFICIENCY_RATIO_CAP)
    return int(clamp(round_half_up(ratio * EFFICIENCY_SCALE)))


def service_diversity_score(distinct_codes: int) -> int:
    for minimum, score in DIVERSITY_STEPS:
        if distinct_codes >= minimum:
            return score
    return DIVERSITY_FLOOR


def patient_volume_score(provider: ScoreInput, bench: SpecialtyBenchmark) -> int:
    revenue_per_beneficiary = safe_divide(provider.total_payment, max(provider.total_beneficiaries, 1))
    bench_rpb = bench.avg_revenue_per_beneficiary_cents / 100
    ratio = min(safe_divide(revenue_per_beneficiary, max(bench_rpb, 1), 0.5), EFFICIENCY_RATIO_CAP)
    return int(clamp(round_half_up(ratio * EFFICIENCY_SCALE)))


def calculate_score(provider: ScoreInput, bench: SpecialtyBenchmark) -> ScoreBreakdown:
    """
    Compute every sub-score and the weighted overall score.

    Args:
        provider (ScoreInput): Provider fields
        bench (SpecialtyBenchmark): Benchmark for the provider's specialty

    Returns:
        ScoreBreakdown: Sub-scores and overall score, all integers in [0, 100]
    """
    parts = {
        'em_coding': em_coding_score(provider, bench),
        'program_utilization': program_utilization_score(provider, bench),
        'revenue_efficiency': revenue_efficiency_score(provider, bench),
        'service_diversity': service_diversity_score(provider.distinct_codes),
        'patient_volume': patient_volume_score(provider, bench),
    }
    weighted = sum(parts[name] * weight for name, weight in WEIGHTS.items())
    return ScoreBreakdown(overall=int(clamp(round_half_up(weighted))), **parts)


def score_tier(score: int) -> str:
    for minimum, label in TIERS:
        if score >= minimum:
            return label
    return LOWEST_TIER


class ScoreCalculator:
    """
    Scores every provider in the embedded store and writes revenue_score.
    """

    def __init__(self, db_path: str, specialty_map: Optional[Dict[str, str]] = None,
                 page_size: int = 5000):
        """
        Args:
            db_path (str): Embedded store file
            specialty_map (dict): Source specialty label -> canonical name
            page_size (int): Providers per read page and write transaction
        """
        self.db_path = Path(db_path)
        self.specialty_map = specialty_map or {}
        self.page_size = page_size
        self.benchmarks: Dict[str, SpecialtyBenchmark] = {}
        self.fallback: SpecialtyBenchmark = DEFAULT_BENCHMARK

    def benchmark_for(self, specialty: str) -> SpecialtyBenchmark:
        """Benchmark for a source specialty label, or the fallback."""
        canonical = self.specialty_map.get(specialty, specialty)
        return self.benchmarks.get(canonical, self.fallback)

    def run(self) -> Dict[str, Any]:
        """
        Score every provider.

        Returns:
            dict: Count scored, mean score, histogram and tier counts
        """
        if not self.db_path.is_file():
            raise MissingInputError(f"Embedded store not found: {self.db_path}")

        histogram: Counter = Counter()
        tiers: Counter = Counter()
        scored = 0
        total = 0

        with monitor_performance("Score calculation") as monitor, EmbeddedStore(str(self.db_path)) as store:
            store.ensure_revenue_score_column()
            code_counts = store.distinct_code_counts()
            logger.info(f"Distinct code counts loaded for {len(code_counts):,} providers")

            self.benchmarks = store.load_benchmarks()
            self.fallback = self.benchmarks.get(FALLBACK_SPECIALTY, DEFAULT_BENCHMARK)
            logger.info(f"Loaded {len(self.benchmarks)} benchmarks; fallback: {self.fallback.specialty}")

            for page in store.iter_provider_pages(self.page_size, columns=SCORE_COLUMNS):
                updates: List[Tuple[str, int]] = []
                for row in page:
                    provider = ScoreInput.from_row(row, code_counts.get(row['npi'], 0))
                    result = calculate_score(provider, self.benchmark_for(provider.specialty))
                    updates.append((provider.npi, result.overall))
                    histogram[result.overall // 10 * 10] += 1
                    tiers[result.tier] += 1
                    total += result.overall

                with store.transaction():
                    store.patch_revenue_scores(updates)
                scored += len(updates)
                monitor.update_progress(len(updates))
                logger.info(f"Scored {scored:,} providers")

            logger.info("Creating score indexes...")
            store.create_score_indexes()

        mean = total / scored if scored else 0.0
        results = {
            'providers_scored': scored,
            'mean_score': mean,
            'histogram': dict(sorted(histogram.items())),
            'tiers': {label: tiers.get(label, 0) for _, label in TIERS + ((0, LOWEST_TIER),)},
        }
        self._print_summary(results)
        return results

    def _print_summary(self, results: Dict[str, Any]) -> None:
        print("\n" + "="*60)
        print("REVENUE SCORE DISTRIBUTION")
        print("="*60)
        scored = results['providers_scored']
        for bucket, count in results['histogram'].items():
            label = f"{bucket}" if bucket >= 100 else f"{bucket}-{bucket + 9}"
            share = count / scored * 100 if scored else 0
            print(f"{label:>7}: {count:>10,} ({share:5.1f}%)")
        print("-"*60)
        for label, count in results['tiers'].items():
            print(f"{label:<14} {count:>10,}")
        print(f"Providers scored: {scored:,}")
        print(f"Mean score: {results['mean_score']:.1f}")
        print("="*60)
