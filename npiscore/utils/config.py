# ========================
# npiscore/utils/config.py
# ========================

"""
Configuration Management

Centralized configuration for the claims pipeline with environment support.
Values from a local .env file are loaded before the environment is read.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

# Source specialty label -> canonical benchmark specialty
DEFAULT_SPECIALTY_MAP: Dict[str, str] = {
    'Internal Medicine': 'Internal Medicine',
    'Family Practice': 'Family Medicine',
    'Family Medicine': 'Family Medicine',
    'General Practice': 'General Practice',
    'Cardiology': 'Cardiology',
    'Cardiovascular Disease': 'Cardiology',
    'Cardiovascular Disease (Cardiology)': 'Cardiology',
    'Pulmonary Disease': 'Pulmonology',
    'Pulmonology': 'Pulmonology',
    'Endocrinology': 'Endocrinology',
    'Endocrinology, Diabetes & Metabolism': 'Endocrinology',
    'Nephrology': 'Nephrology',
    'Orthopedic Surgery': 'Orthopedics',
    'Orthopedics': 'Orthopedics',
    'Gastroenterology': 'Gastroenterology',
    'Neurology': 'Neurology',
    'Psychiatry': 'Psychiatry',
    'Psychiatry & Neurology': 'Psychiatry',
    'Urology': 'Urology',
    'Rheumatology': 'Rheumatology',
    'Dermatology': 'Dermatology',
    'Obstetrics & Gynecology': 'OB/GYN',
    'Obstetrics/Gynecology': 'OB/GYN',
    'OB/GYN': 'OB/GYN',
    'Hematology/Oncology': 'Hematology/Oncology',
    'Hematology & Oncology': 'Hematology/Oncology',
    'Medical Oncology': 'Hematology/Oncology',
    'Infectious Disease': 'Infectious Disease',
    'Allergy/Immunology': 'Allergy/Immunology',
    'Physical Medicine and Rehabilitation': 'Physical Medicine',
    'Geriatric Medicine': 'Geriatric Medicine',
    'Critical Care (Intensivists)': 'Critical Care',
}

CMS_DOWNLOAD_URL = (
    'https://data.cms.gov/provider-summary-by-type-of-service/'
    'medicare-physician-other-practitioners/'
    'medicare-physician-other-practitioners-by-provider-and-service/'
    'api/1/datastore/query/0/0/download?format=csv'
)


class Config:
    """
    Configuration class for the claims pipeline.
    Supports environment variables and default values.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None, env_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_dict (dict): Optional configuration overrides
            env_file (str): Optional .env file to load before reading the environment
        """
        load_dotenv(env_file or os.getenv('PIPELINE_ENV_FILE', '.env.local'))
        load_dotenv()

        # Source Data
        self.DOWNLOAD_URL = os.getenv('CMS_DOWNLOAD_URL', CMS_DOWNLOAD_URL)
        self.DEFAULT_INPUT_FILE = os.getenv('PIPELINE_INPUT_FILE', 'data/cms-raw/medicare-physician-services.csv')
        self.DOWNLOAD_PROGRESS_BYTES = int(os.getenv('DOWNLOAD_PROGRESS_BYTES', str(50 * 1024 * 1024)))

        # Processed Output
        self.DEFAULT_OUTPUT_DIR = os.getenv('PIPELINE_OUTPUT_DIR', 'data/processed')
        self.DATABASE_PATH = os.getenv('PIPELINE_DATABASE_PATH', 'data/npiscore.db')

        # Ingestion Settings
        self.MIN_PROVIDERS_PER_SPECIALTY = int(os.getenv('MIN_PROVIDERS_PER_SPECIALTY', '10'))
        self.TOP_CODES_LIMIT = int(os.getenv('TOP_CODES_LIMIT', '20'))
        self.PARSE_ERROR_LOG_LIMIT = int(os.getenv('PARSE_ERROR_LOG_LIMIT', '5'))
        self.INGEST_PROGRESS_INTERVAL = int(os.getenv('INGEST_PROGRESS_INTERVAL', '500000'))
        self.WRITE_PROGRESS_INTERVAL = int(os.getenv('WRITE_PROGRESS_INTERVAL', '100000'))
        self.MAX_MEMORY_USAGE_MB = int(os.getenv('PIPELINE_MAX_MEMORY_MB', '8192'))
        self.SPECIALTY_MAP_FILE = os.getenv('SPECIALTY_MAP_FILE', '')
        self.SPECIALTY_MAP = dict(DEFAULT_SPECIALTY_MAP)

        # Embedded Store
        self.DB_BATCH_SIZE = int(os.getenv('DB_BATCH_SIZE', '10000'))
        self.DB_SIZE_BUDGET_MB = int(os.getenv('DB_SIZE_BUDGET_MB', '250'))
        self.SCORE_PAGE_SIZE = int(os.getenv('SCORE_PAGE_SIZE', '5000'))

        # Remote Replication
        self.DATABASE_URL = os.getenv('DATABASE_URL_UNPOOLED') or os.getenv('DATABASE_URL', '')
        self.PROVIDER_BATCH_SIZE = int(os.getenv('PROVIDER_BATCH_SIZE', '1000'))
        self.CODE_BATCH_SIZE = int(os.getenv('CODE_BATCH_SIZE', '2000'))
        self.SCORE_BATCH_SIZE = int(os.getenv('SCORE_BATCH_SIZE', '500'))
        self.REPLICATION_PROGRESS_INTERVAL = int(os.getenv('REPLICATION_PROGRESS_INTERVAL', '50000'))
        self.MAX_RETRIES = int(os.getenv('MAX_RETRIES', '5'))
        self.RETRY_DELAY_SECONDS = float(os.getenv('RETRY_DELAY_SECONDS', '3'))

        # Logging Configuration
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
        self.LOG_FILE = os.getenv('LOG_FILE', 'pipeline.log')
        self.LOG_DIR = os.getenv('LOG_DIR', 'logs')

        # Override with provided config
        if config_dict:
            self._update_from_dict(config_dict)

        if self.SPECIALTY_MAP_FILE:
            self.SPECIALTY_MAP = self.load_specialty_map(self.SPECIALTY_MAP_FILE)

    def _update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in config_dict.items():
            if hasattr(self, key.upper()):
                setattr(self, key.upper(), value)

    @staticmethod
    def load_specialty_map(file_path: str) -> Dict[str, str]:
        """Load a source-label -> canonical-specialty map from JSON."""
        with open(file_path, 'r', encoding='utf-8') as f:
            mapping = json.load(f)
        if not isinstance(mapping, dict):
            raise ValueError(f"Specialty map must be a JSON object: {file_path}")
        return {str(k): str(v) for k, v in mapping.items()}

    def get_data_paths(self) -> Dict[str, Path]:
        """Get all configured data paths as Path objects."""
        return {
            'input_file': Path(self.DEFAULT_INPUT_FILE),
            'output_dir': Path(self.DEFAULT_OUTPUT_DIR),
            'database_file': Path(self.DATABASE_PATH),
            'raw_data_dir': Path(self.DEFAULT_INPUT_FILE).parent,
            'database_dir': Path(self.DATABASE_PATH).parent,
            'logs_dir': Path(self.LOG_DIR)
        }

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        paths = self.get_data_paths()
        for path_name, path in paths.items():
            if path_name.endswith('_dir'):
                path.mkdir(parents=True, exist_ok=True)

    def validate_config(self) -> Dict[str, bool]:
        """
        Validate configuration values.

        Returns:
            dict: Validation results for each setting
        """
        validations = {}

        # Validate numeric ranges
        validations['min_providers'] = self.MIN_PROVIDERS_PER_SPECIALTY > 0
        validations['top_codes_limit'] = self.TOP_CODES_LIMIT > 0
        validations['parse_error_log_limit'] = self.PARSE_ERROR_LOG_LIMIT >= 0
        validations['memory_limit'] = self.MAX_MEMORY_USAGE_MB > 0
        validations['db_batch_size'] = self.DB_BATCH_SIZE > 0
        validations['score_page_size'] = self.SCORE_PAGE_SIZE > 0
        validations['provider_batch_size'] = self.PROVIDER_BATCH_SIZE > 0
        validations['code_batch_size'] = self.CODE_BATCH_SIZE > 0
        validations['score_batch_size'] = self.SCORE_BATCH_SIZE > 0
        validations['max_retries'] = self.MAX_RETRIES >= 1
        validations['retry_delay'] = self.RETRY_DELAY_SECONDS >= 0
        validations['specialty_map'] = bool(self.SPECIALTY_MAP)

        # Validate log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        validations['log_level'] = self.LOG_LEVEL.upper() in valid_log_levels

        return validations

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            attr: getattr(self, attr)
            for attr in dir(self)
            if not attr.startswith('_') and not callable(getattr(self, attr))
        }

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file."""
        settings = self.to_dict()
        settings.pop('DATABASE_URL', None)
        with open(file_path, 'w') as f:
            json.dump(settings, f, indent=2, default=str)

    @classmethod
    def load_from_file(cls, file_path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(file_path, 'r') as f:
            config_dict = json.load(f)
        return cls(config_dict)

    def __str__(self) -> str:
        """String representation of configuration."""
        lines = ["Configuration Settings:"]
        config_dict = self.to_dict()
        for key, value in sorted(config_dict.items()):
            if key == 'DATABASE_URL' and value:
                value = '***'
            elif key == 'SPECIALTY_MAP':
                value = f"{len(value)} labels"
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
