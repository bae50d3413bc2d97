# ========================
# tests/test_packager.py
# ========================

import unittest
import tempfile
import json
import os
import sqlite3
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from npiscore.pipeline.benchmarks import build_benchmarks
from npiscore.pipeline.database import EmbeddedStore, INDEXES
from npiscore.pipeline.errors import MissingInputError
from npiscore.pipeline.packager import StorePackager
from npiscore.pipeline.scoring import ScoreCalculator
from npiscore.pipeline.storage import DataSaver
from npiscore.pipeline.transformation import ProviderAggregator
from npiscore.utils.config import DEFAULT_SPECIALTY_MAP
from support import make_provider


def sample_providers():
    """Twelve internists, three cardiologists and one unmapped label."""
    providers = []
    for i in range(12):
        providers.append(make_provider(f"10000000{i:02d}", 'Internal Medicine', {
            '99213': (10 + i, 7500, 20 + i),
            '99214': (5, 5500, 15),
            'G0439': (1, 13000, 1),
        }))
    for i in range(3):
        providers.append(make_provider(f"20000000{i:02d}", 'Cardiology', {
            '93000': (40, 64000, 40),
            '99214': (20, 22000, 18),
        }))
    providers.append(make_provider('3000000000', 'Chiropractic', {'98940': (100, 250000, 60)}))
    return providers


def write_processed_dir(output_dir):
    aggregator = ProviderAggregator(DEFAULT_SPECIALTY_MAP)
    aggregator.providers = {p.npi: p for p in sample_providers()}
    aggregator.finalize_aggregations()
    benchmarks = build_benchmarks(aggregator.specialties.values(), min_providers=10)
    DataSaver(output_dir).save_all_data(aggregator, benchmarks)
    return aggregator


class TestStorePackager(unittest.TestCase):
    """Test the embedded store build."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.processed_dir = os.path.join(self.temp_dir.name, 'processed')
        self.db_path = os.path.join(self.temp_dir.name, 'db', 'npiscore.db')
        self.aggregator = write_processed_dir(self.processed_dir)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_store_counts_match_processed_files(self):
        results = StorePackager(self.processed_dir, self.db_path, batch_size=5).run()

        self.assertEqual(results['providers_loaded'], 16)
        self.assertEqual(results['codes_loaded'], 12 * 3 + 3 * 2 + 1)
        self.assertEqual(results['benchmarks_loaded'], 1)
        self.assertEqual(results['files_failed'], 0)
        self.assertEqual(results['verification']['counts'],
                         {'providers': 16, 'provider_codes': 43, 'benchmarks': 1})
        self.assertEqual(results['verification']['top_provider'], '3000000000')

    def test_provider_row_contents(self):
        StorePackager(self.processed_dir, self.db_path).run()

        with EmbeddedStore(self.db_path) as store:
            row = store.connect().execute(
                "SELECT * FROM providers WHERE npi = ?", ('1000000003',)
            ).fetchone()
            codes = store.connect().execute(
                "SELECT hcpcs_code, services, payment_cents FROM provider_codes WHERE npi = ? "
                "ORDER BY hcpcs_code", ('1000000003',)
            ).fetchall()

        self.assertEqual(row['specialty'], 'Internal Medicine')
        self.assertEqual(row['total_payment_cents'], 26000)
        self.assertEqual(row['total_beneficiaries'], 23)
        self.assertEqual(row['em_99213'], 13)
        self.assertEqual(row['em_total'], 18)
        self.assertEqual(row['awv_services'], 1)
        self.assertEqual(row['awv_payment_cents'], 13000)
        self.assertIsNone(row['revenue_score'])
        top_codes = json.loads(row['top_codes'])
        self.assertEqual([c['code'] for c in top_codes], ['G0439', '99213', '99214'])
        self.assertEqual([tuple(c) for c in codes],
                         [('99213', 13, 7500), ('99214', 5, 5500), ('G0439', 1, 13000)])

    def test_indexes_created_after_load(self):
        StorePackager(self.processed_dir, self.db_path).run()

        conn = sqlite3.connect(self.db_path)
        try:
            names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
        finally:
            conn.close()
        for name, _ in INDEXES:
            self.assertIn(name, names)

    def score_map(self):
        ScoreCalculator(self.db_path, specialty_map=DEFAULT_SPECIALTY_MAP).run()
        conn = sqlite3.connect(self.db_path)
        try:
            return dict(conn.execute("SELECT npi, revenue_score FROM providers"))
        finally:
            conn.close()

    def test_rebuild_is_idempotent(self):
        first = StorePackager(self.processed_dir, self.db_path).run()
        first_scores = self.score_map()
        second = StorePackager(self.processed_dir, self.db_path).run()
        second_scores = self.score_map()

        self.assertEqual(first['verification']['counts'], second['verification']['counts'])
        self.assertEqual(len(first_scores), 16)
        self.assertNotIn(None, first_scores.values())
        self.assertEqual(first_scores, second_scores)

    def test_size_budget_is_reported_not_fatal(self):
        results = StorePackager(self.processed_dir, self.db_path, size_budget_mb=0).run()

        self.assertFalse(results['verification']['within_size_budget'])
        self.assertGreater(results['verification']['size_mb'], 0)

    def test_missing_processed_directory(self):
        packager = StorePackager(os.path.join(self.temp_dir.name, 'absent'), self.db_path)

        with self.assertRaises(MissingInputError):
            packager.run()
        self.assertFalse(os.path.exists(self.db_path))


if __name__ == '__main__':
    unittest.main()
