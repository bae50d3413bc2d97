# ========================
# tests/test_scoring.py
# ========================

import unittest
import tempfile
import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from npiscore.pipeline.database import EmbeddedStore
from npiscore.pipeline.errors import MissingInputError
from npiscore.pipeline.models import DEFAULT_BENCHMARK
from npiscore.pipeline.scoring import (
    ScoreInput, ScoreCalculator, calculate_score, em_coding_score, program_utilization_score,
    revenue_efficiency_score, service_diversity_score, patient_volume_score, score_tier,
    round_half_up,
)
from npiscore.utils.config import DEFAULT_SPECIALTY_MAP
from support import make_benchmark, make_provider


def score_input(**overrides):
    values = dict(
        npi='1234567890', total_beneficiaries=100, total_payment=50000.0,
        em_99214=50, em_99215=10, em_total=100,
        program_services={'ccm': 0, 'rpm': 0, 'bhi': 0, 'awv': 0},
        distinct_codes=12, specialty='Cardiology',
    )
    values.update(overrides)
    return ScoreInput(**values)


class TestSubScores(unittest.TestCase):
    """Test each sub-score against a fixed benchmark."""

    def setUp(self):
        # avg payment $50,000 over 100 beneficiaries, $500 each
        self.bench = make_benchmark()

    def test_round_half_up(self):
        self.assertEqual(round_half_up(66.5), 67)
        self.assertEqual(round_half_up(66.7), 67)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(66.49), 66)

    def test_em_coding_matches_benchmark(self):
        self.assertEqual(em_coding_score(score_input(), self.bench), 100)

    def test_em_coding_ratio_is_capped(self):
        provider = score_input(em_99214=100, em_99215=0)
        self.assertEqual(em_coding_score(provider, self.bench), 72)

    def test_em_coding_neutral_without_em_services(self):
        provider = score_input(em_99214=0, em_99215=0, em_total=0)
        self.assertEqual(em_coding_score(provider, self.bench), 50)

    def test_program_utilization_counts_relevant_programs_only(self):
        """Only ccm (25) and awv (40) reach 1% adoption in the benchmark."""
        awv_only = score_input(program_services={'ccm': 0, 'rpm': 0, 'bhi': 3, 'awv': 12})
        both = score_input(program_services={'ccm': 4, 'rpm': 0, 'bhi': 0, 'awv': 12})

        self.assertEqual(program_utilization_score(awv_only, self.bench), 62)
        self.assertEqual(program_utilization_score(both, self.bench), 100)
        self.assertEqual(program_utilization_score(score_input(), self.bench), 0)

    def test_program_utilization_neutral_without_relevant_programs(self):
        bench = make_benchmark(ccm_adoption=0.0, rpm_adoption=0.005, bhi_adoption=0.0, awv_adoption=0.0)
        self.assertEqual(program_utilization_score(score_input(), bench), 50)

    def test_revenue_efficiency_at_benchmark(self):
        """Payment equal to the volume-adjusted average scores 67."""
        self.assertEqual(revenue_efficiency_score(score_input(), self.bench), 67)

    def test_revenue_efficiency_is_capped(self):
        provider = score_input(total_payment=500000.0)
        self.assertEqual(revenue_efficiency_score(provider, self.bench), 100)

    def test_revenue_efficiency_with_zero_payment(self):
        provider = score_input(total_payment=0.0, total_beneficiaries=0)
        self.assertEqual(revenue_efficiency_score(provider, self.bench), 0)

    def test_service_diversity_steps(self):
        expected = {0: 15, 2: 15, 3: 35, 5: 35, 6: 55, 9: 55, 10: 70, 14: 70, 15: 85, 19: 85, 20: 100, 45: 100}
        for codes, score in expected.items():
            self.assertEqual(service_diversity_score(codes), score, codes)

    def test_patient_volume(self):
        self.assertEqual(patient_volume_score(score_input(), self.bench), 67)
        self.assertEqual(patient_volume_score(score_input(total_payment=25000.0), self.bench), 33)
        # No beneficiaries: revenue per beneficiary is the whole payment
        self.assertEqual(patient_volume_score(score_input(total_beneficiaries=0), self.bench), 100)

    def test_weighted_overall_score(self):
        provider = score_input(program_services={'ccm': 0, 'rpm': 0, 'bhi': 0, 'awv': 12})
        result = calculate_score(provider, self.bench)

        self.assertEqual(result.em_coding, 100)
        self.assertEqual(result.program_utilization, 62)
        self.assertEqual(result.revenue_efficiency, 67)
        self.assertEqual(result.service_diversity, 70)
        self.assertEqual(result.patient_volume, 67)
        # 25 + 15.5 + 13.4 + 10.5 + 10.05 = 74.45
        self.assertEqual(result.overall, 74)
        self.assertEqual(result.tier, 'Average')
        self.assertEqual(result.to_dict()['tier'], 'Average')

    def test_scores_stay_in_range_for_extreme_inputs(self):
        extremes = [
            score_input(total_payment=0.0, total_beneficiaries=0, em_total=0, em_99214=0,
                        em_99215=0, distinct_codes=0),
            score_input(total_payment=1e9, total_beneficiaries=1, em_total=1, em_99214=1,
                        em_99215=1, distinct_codes=500,
                        program_services={'ccm': 1, 'rpm': 1, 'bhi': 1, 'awv': 1}),
        ]
        for provider in extremes:
            result = calculate_score(provider, make_benchmark(avg_beneficiaries=0, avg_payment_cents=0,
                                                              avg_revenue_per_beneficiary_cents=0,
                                                              pct_99214=0.0, pct_99215=0.0))
            for value in (result.em_coding, result.program_utilization, result.revenue_efficiency,
                          result.service_diversity, result.patient_volume, result.overall):
                self.assertIsInstance(value, int)
                self.assertGreaterEqual(value, 0)
                self.assertLessEqual(value, 100)

    def test_score_tiers(self):
        expected = {100: 'Elite', 90: 'Elite', 89: 'Strong', 75: 'Strong', 74: 'Average',
                    60: 'Average', 59: 'Below Average', 40: 'Below Average', 39: 'Critical', 0: 'Critical'}
        for score, tier in expected.items():
            self.assertEqual(score_tier(score), tier, score)


class TestScoreCalculator(unittest.TestCase):
    """Test scoring against an embedded store."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, 'npiscore.db')
        providers = [
            make_provider(f"10000000{i:02d}", 'Family Practice',
                          {'99213': (10, 7500, 20), '99214': (4 + i, 5500, 15), 'G0439': (1, 13000, 1)})
            for i in range(6)
        ]
        providers.append(make_provider('3000000000', 'Chiropractic', {'98940': (100, 250000, 60)}))
        providers.append(make_provider('3000000001', 'Psychiatry', {}))
        with EmbeddedStore(self.db_path) as store:
            store.create_schema()
            store.insert_benchmarks([make_benchmark('Family Medicine', awv_adoption=0.5)])
            store.insert_providers(providers)
        self.calculator = ScoreCalculator(self.db_path, specialty_map=DEFAULT_SPECIALTY_MAP, page_size=3)

    def tearDown(self):
        self.temp_dir.cleanup()

    def scores(self):
        with EmbeddedStore(self.db_path) as store:
            return {row['npi']: row['revenue_score']
                    for row in store.connect().execute("SELECT npi, revenue_score FROM providers")}

    def test_every_provider_is_scored(self):
        results = self.calculator.run()

        scores = self.scores()
        self.assertEqual(results['providers_scored'], 8)
        self.assertEqual(len(scores), 8)
        for score in scores.values():
            self.assertIsInstance(score, int)
            self.assertTrue(0 <= score <= 100)
        self.assertEqual(sum(results['histogram'].values()), 8)
        self.assertEqual(sum(results['tiers'].values()), 8)
        self.assertAlmostEqual(results['mean_score'], sum(scores.values()) / 8)

    def test_labels_are_mapped_before_benchmark_lookup(self):
        self.calculator.run()

        self.assertEqual(self.calculator.benchmark_for('Family Practice').specialty, 'Family Medicine')
        # No Internal Medicine row in the store, so the built-in fallback applies
        self.assertIs(self.calculator.benchmark_for('Chiropractic'), DEFAULT_BENCHMARK)

    def test_rescoring_is_idempotent(self):
        self.calculator.run()
        first = self.scores()
        ScoreCalculator(self.db_path, specialty_map=DEFAULT_SPECIALTY_MAP, page_size=5).run()

        self.assertEqual(self.scores(), first)

    def test_score_indexes_created(self):
        self.calculator.run()
        with EmbeddedStore(self.db_path) as store:
            names = {row['name'] for row in store.connect().execute(
                "SELECT name FROM sqlite_master WHERE type = 'index'")}
        self.assertIn('idx_providers_revenue_score', names)

    def test_missing_store(self):
        with self.assertRaises(MissingInputError):
            ScoreCalculator(os.path.join(self.temp_dir.name, 'absent.db')).run()


if __name__ == '__main__':
    unittest.main()
