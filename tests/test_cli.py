# ========================
# tests/test_cli.py
# ========================

import unittest
import tempfile
import logging
import os
import sqlite3
import sys
from unittest import mock

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from npiscore.cli import main
from npiscore.utils.data_generator import DataGenerator
from support import write_csv


class TestCommandLine(unittest.TestCase):
    """Test the stage commands and their exit codes."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        root = self.temp_dir.name
        self.input_file = os.path.join(root, 'raw', 'claims.csv')
        self.output_dir = os.path.join(root, 'processed')
        self.database = os.path.join(root, 'npiscore.db')
        env = {'LOG_DIR': os.path.join(root, 'logs'), 'LOG_LEVEL': 'WARNING'}
        self.env_patch = mock.patch.dict(os.environ, env)
        self.env_patch.start()
        for name in ('DATABASE_URL', 'DATABASE_URL_UNPOOLED'):
            os.environ.pop(name, None)

    def tearDown(self):
        self.env_patch.stop()
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            handler.close()
            root_logger.removeHandler(handler)
        self.temp_dir.cleanup()

    def run_cli(self, *args):
        return main(['--env-file', os.path.join(self.temp_dir.name, 'none.env'), *args])

    def test_process_build_and_score(self):
        stats = DataGenerator(seed=3).generate_dataset(self.input_file, 40, codes_per_provider=5)

        self.assertEqual(self.run_cli('process', '--input', self.input_file,
                                      '--output-dir', self.output_dir, '--chunk-size', '50'), 0)
        self.assertEqual(self.run_cli('build-db', '--processed-dir', self.output_dir,
                                      '--database', self.database), 0)
        self.assertEqual(self.run_cli('score', '--database', self.database), 0)

        conn = sqlite3.connect(self.database)
        try:
            total, scored = conn.execute(
                "SELECT COUNT(*), COUNT(revenue_score) FROM providers"
            ).fetchone()
            codes = conn.execute("SELECT COUNT(*) FROM provider_codes").fetchone()[0]
        finally:
            conn.close()
        self.assertEqual(total, stats['providers'])
        self.assertEqual(scored, total)
        self.assertEqual(codes, stats['total_rows'])

    def test_missing_input_exits_with_error(self):
        code = self.run_cli('process', '--input', os.path.join(self.temp_dir.name, 'absent.csv'),
                            '--output-dir', self.output_dir)

        self.assertEqual(code, 1)
        self.assertFalse(os.path.exists(self.output_dir))

    def test_missing_column_exits_with_error(self):
        os.makedirs(os.path.dirname(self.input_file))
        write_csv(self.input_file, [['1234567890', '99213', '1']],
                  header=['Rndrng_NPI', 'HCPCS_Cd', 'Tot_Srvcs'])

        code = self.run_cli('process', '--input', self.input_file, '--output-dir', self.output_dir)

        self.assertEqual(code, 1)
        self.assertFalse(os.path.exists(self.output_dir))

    def test_migrate_without_credentials(self):
        self.assertEqual(self.run_cli('migrate', '--database', self.database), 1)

    def test_invalid_configuration(self):
        self.assertEqual(self.run_cli('--log-level', 'LOUD', 'score'), 1)

    def test_resume_and_scores_only_are_exclusive(self):
        with self.assertRaises(SystemExit):
            self.run_cli('migrate', '--resume', '--scores-only')


if __name__ == '__main__':
    unittest.main()
