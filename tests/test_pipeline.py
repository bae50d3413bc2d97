# ========================
# tests/test_pipeline.py
# ========================

import unittest
import tempfile
import json
import os
import sys
from decimal import Decimal

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from npiscore.pipeline.cleaning import ClaimRow, RecordCleaner, payment_in_cents
from npiscore.pipeline.errors import MissingColumnsError
from npiscore.pipeline.ingestion import SourceLine
from npiscore.pipeline.orchestrator import DataPipeline
from npiscore.pipeline.storage import DataLoader, BENCHMARKS_FILE, SUMMARY_FILE
from npiscore.pipeline.transformation import ProviderAggregator
from npiscore.utils.config import Config, DEFAULT_SPECIALTY_MAP
from npiscore.utils.data_generator import DataGenerator
from support import claim_row, write_csv


def source_line(npi='1234567890', code='99213', services='10', avg_payment='50.00',
                beneficiaries='8', **extra):
    values = {'npi': npi, 'code': code, 'services': services, 'avg_payment': avg_payment,
              'beneficiaries': beneficiaries, 'specialty': 'Internal Medicine'}
    values.update(extra)
    return SourceLine(2, values, ",".join(values.values()), None)


def claim(npi, code, services, payment_cents, beneficiaries, specialty='Internal Medicine', **extra):
    return ClaimRow(npi=npi, code=code, services=Decimal(str(services)),
                    payment_cents=payment_cents, beneficiaries=beneficiaries,
                    specialty=specialty, **extra)


class TestRecordCleaner(unittest.TestCase):

    def setUp(self):
        self.cleaner = RecordCleaner(error_log_limit=2)

    def test_cleaner_valid_record(self):
        """
        Tests cleaning logic with a valid record.
        """
        row = self.cleaner.clean_record(source_line(services='10', avg_payment='5.555', beneficiaries='7'))

        self.assertIsNotNone(row)
        self.assertEqual(row.npi, '1234567890')
        self.assertEqual(row.services, Decimal('10'))
        self.assertEqual(row.payment_cents, 5555)
        self.assertEqual(row.beneficiaries, 7)
        self.assertEqual(row.specialty, 'Internal Medicine')

    def test_payment_rounds_half_up_to_the_cent(self):
        self.assertEqual(payment_in_cents(Decimal('0.125'), Decimal('3')), 38)
        self.assertEqual(payment_in_cents(Decimal('0.005'), Decimal('1')), 1)
        self.assertEqual(payment_in_cents(Decimal('19.99'), Decimal('2.5')), 4998)

    def test_empty_numeric_fields_count_as_zero(self):
        row = self.cleaner.clean_record(source_line(services='', beneficiaries=''))

        self.assertEqual(row.services, Decimal(0))
        self.assertEqual(row.payment_cents, 0)
        self.assertEqual(row.beneficiaries, 0)

    def test_thousands_separator_is_accepted(self):
        row = self.cleaner.clean_record(source_line(services='1,200', avg_payment='1.00'))
        self.assertEqual(row.services, Decimal('1200'))
        self.assertEqual(row.payment_cents, 120000)

    def test_cleaner_invalid_identifier(self):
        """
        Identifiers that are not ten characters are dropped and counted.
        """
        self.assertIsNone(self.cleaner.clean_record(source_line(npi='123456789')))
        self.assertIsNone(self.cleaner.clean_record(source_line(npi='12345678901')))

        stats = self.cleaner.get_statistics()
        self.assertEqual(stats['records_invalid_identifier'], 2)
        self.assertEqual(stats['records_malformed'], 0)

    def test_cleaner_non_numeric_values(self):
        """
        Non-numeric and non-finite values make the row malformed.
        """
        self.assertIsNone(self.cleaner.clean_record(source_line(services='N/A')))
        self.assertIsNone(self.cleaner.clean_record(source_line(avg_payment='NaN')))
        self.assertIsNone(self.cleaner.clean_record(SourceLine(3, None, 'broken', 'CSV parse error')))
        self.assertIsNotNone(self.cleaner.clean_record(source_line()))

        stats = self.cleaner.get_statistics()
        self.assertEqual(stats['records_processed'], 4)
        self.assertEqual(stats['records_malformed'], 3)
        self.assertEqual(stats['records_dropped'], 3)
        self.assertEqual(stats['records_cleaned'], 1)
        self.assertEqual(stats['success_rate'], 25.0)

    def test_only_the_first_malformed_rows_are_logged(self):
        with self.assertLogs('npiscore.pipeline.cleaning', level='WARNING') as logs:
            for _ in range(5):
                self.cleaner.clean_record(source_line(services='bad'))

        self.assertEqual(len(logs.output), 3)
        self.assertIn('Further malformed rows', logs.output[-1])
        self.assertEqual(self.cleaner.records_malformed, 5)


class TestProviderAggregator(unittest.TestCase):

    def setUp(self):
        self.aggregator = ProviderAggregator(DEFAULT_SPECIALTY_MAP)

    def test_aggregator_totals_are_exact(self):
        """
        Provider payment equals the sum of its code payments, and beneficiaries
        are the largest per-code count, not a sum.
        """
        self.aggregator.process_chunk([
            claim('1111111111', '99213', 10, 1000, 30, last_name='Adams'),
            claim('1111111111', '99214', 5, 2000, 20, last_name='Later'),
            claim('1111111111', '99213', 2, 200, 5),
        ])
        self.aggregator.finalize_aggregations()

        provider = self.aggregator.providers['1111111111']
        self.assertEqual(provider.last_name, 'Adams')
        self.assertEqual(provider.total_payment_cents, 3200)
        self.assertEqual(provider.total_services, Decimal(17))
        self.assertEqual(provider.total_beneficiaries, 35)
        self.assertEqual(provider.codes['99213'].services, Decimal(12))
        self.assertEqual(provider.codes['99213'].payment_cents, 1200)
        self.assertEqual(provider.codes['99213'].beneficiaries, 35)
        self.assertEqual(sum(c.payment_cents for c in provider.codes.values()),
                         provider.total_payment_cents)
        self.assertEqual(provider.em_total, Decimal(17))

    def test_specialty_labels_are_canonicalized(self):
        self.aggregator.process_chunk([
            claim('1000000001', '99213', 1, 100, 1, specialty='Family Practice'),
            claim('1000000002', '99213', 1, 100, 1, specialty='Family Medicine'),
            claim('1000000003', '98940', 1, 100, 1, specialty='Chiropractic'),
        ])
        self.aggregator.finalize_aggregations()

        self.assertEqual(self.aggregator.specialties['Family Medicine'].provider_count, 2)
        self.assertNotIn('Chiropractic', self.aggregator.specialties)
        self.assertEqual(len(self.aggregator.providers), 3)

        summary = self.aggregator.get_aggregation_summary()
        self.assertEqual(summary['unique_providers'], 3)
        self.assertEqual(summary['code_rows'], 3)
        self.assertEqual(summary['specialties'], 1)
        self.assertEqual(summary['unmapped_specialty_providers'], 1)

    def test_program_adoption_counts_providers(self):
        self.aggregator.process_chunk([
            claim('1000000001', '99490', 3, 300, 3),
            claim('1000000001', '99439', 2, 200, 2),
            claim('1000000002', 'G0439', 1, 100, 1),
            claim('1000000003', '99213', 1, 100, 1),
        ])
        self.aggregator.finalize_aggregations()

        accumulator = self.aggregator.specialties['Internal Medicine']
        self.assertEqual(accumulator.program_providers, {'ccm': 1, 'rpm': 0, 'bhi': 0, 'awv': 1})
        programs = self.aggregator.providers['1000000001'].program_totals()
        self.assertEqual(programs['ccm'].services, Decimal(5))
        self.assertEqual(programs['ccm'].payment_cents, 500)


class TestDataPipeline(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.input_file = os.path.join(self.temp_dir.name, 'claims.csv')
        self.output_dir = os.path.join(self.temp_dir.name, 'processed')
        self.config = Config({'log_level': 'WARNING'})

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_end_to_end_with_generated_data(self):
        """
        Every generated provider is written, and dropped rows match the noise injected.
        """
        stats = DataGenerator(seed=7).generate_dataset(self.input_file, 60, codes_per_provider=6,
                                                       error_rate=0.1)

        results = DataPipeline(self.input_file, self.output_dir, chunk_size=25, config=self.config).run()

        quality = results['data_quality_stats']
        errors = stats['error_types']
        self.assertEqual(results['pipeline_status'], 'completed')
        self.assertEqual(quality['records_processed'], stats['total_rows'])
        self.assertEqual(quality['records_invalid_identifier'], errors.get('short_npi', 0))
        self.assertEqual(quality['records_malformed'],
                         errors.get('non_numeric_services', 0) + errors.get('truncated_row', 0))

        loader = DataLoader(self.output_dir)
        records = list(loader.iter_provider_records())
        self.assertEqual(len(records), results['processing_stats']['unique_providers'])
        self.assertEqual(loader.files_failed, 0)
        for record in records:
            self.assertEqual(sum(c.payment_cents for c in record.codes.values()),
                             record.total_payment_cents)
            self.assertEqual(max(c.beneficiaries for c in record.codes.values()),
                             record.total_beneficiaries)

        self.assertTrue(os.path.exists(os.path.join(self.output_dir, BENCHMARKS_FILE)))
        with open(os.path.join(self.output_dir, SUMMARY_FILE)) as f:
            summary = json.load(f)
        self.assertEqual(summary['unique_providers'], len(records))

    def test_undecodable_row_is_skipped(self):
        rows = [claim_row(f"10000000{i:02d}", '99213', '10', '50.00', '8') for i in range(3)]
        write_csv(self.input_file, rows)
        with open(self.input_file, 'rb') as f:
            content = f.read()
        with open(self.input_file, 'wb') as f:
            f.write(content.replace(b'1000000001', b'1000000001\xff\xfe'))

        results = DataPipeline(self.input_file, self.output_dir, config=self.config).run()

        quality = results['data_quality_stats']
        self.assertEqual(results['pipeline_status'], 'completed')
        self.assertEqual(quality['records_malformed'], 1)
        self.assertEqual(results['processing_stats']['unique_providers'], 2)

    def test_missing_column_fails_before_output(self):
        write_csv(self.input_file, [['1234567890', '99213']], header=['Rndrng_NPI', 'HCPCS_Cd'])

        with self.assertRaises(MissingColumnsError):
            DataPipeline(self.input_file, self.output_dir, config=self.config).run()

        self.assertFalse(os.path.exists(self.output_dir))


if __name__ == '__main__':
    unittest.main()
