# ========================
# npiscore/utils/data_generator.py
# ========================

"""
Data Generation Utilities

Writes synthetic provider-and-service extracts in the public file layout,
with optional noise, for tests and scale runs.
"""

import csv
import random
import logging
from typing import List, Dict, Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

HEADER = [
    'Rndrng_NPI', 'Rndrng_Prvdr_Last_Org_Name', 'Rndrng_Prvdr_First_Name',
    'Rndrng_Prvdr_MI', 'Rndrng_Prvdr_Crdntls', 'Rndrng_Prvdr_Ent_Cd',
    'Rndrng_Prvdr_City', 'Rndrng_Prvdr_State_Abrvtn', 'Rndrng_Prvdr_Type',
    'HCPCS_Cd', 'HCPCS_Desc', 'Place_Of_Srvc', 'Tot_Benes', 'Tot_Srvcs',
    'Avg_Sbmtd_Chrg', 'Avg_Mdcr_Alowd_Amt', 'Avg_Mdcr_Pymt_Amt',
]


class DataGenerator:
    """
    Generator for synthetic claims extracts.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize data generator.

        Args:
            seed (int): Random seed for reproducible data generation
        """
        self.random = random.Random(seed)
        self._initialize_data_patterns()
        logger.info(f"DataGenerator initialized with seed: {seed}")

    def _initialize_data_patterns(self) -> None:
        # (source label, weight); the last entries are deliberately unmapped
        self.specialties = [
            ("Internal Medicine", 0.25), ("Family Practice", 0.25), ("Cardiology", 0.1),
            ("Nurse Practitioner", 0.15), ("Dermatology", 0.05), ("Psychiatry", 0.05),
            ("Nephrology", 0.05), ("Chiropractic", 0.1),
        ]
        # (code, description, base payment)
        self.codes = [
            ("99211", "Office visit, minimal", 20.0), ("99212", "Office visit, straightforward", 45.0),
            ("99213", "Office visit, low", 75.0), ("99214", "Office visit, moderate", 110.0),
            ("99215", "Office visit, high", 150.0), ("99490", "Chronic care management", 42.0),
            ("99439", "Chronic care management, addl", 35.0), ("99454", "Remote monitoring device", 46.0),
            ("99457", "Remote monitoring treatment", 38.0), ("99484", "Behavioral health integration", 40.0),
            ("G0438", "Annual wellness visit, initial", 170.0), ("G0439", "Annual wellness visit, subsequent", 130.0),
            ("36415", "Venipuncture", 3.0), ("93000", "Electrocardiogram", 16.0), ("81002", "Urinalysis", 3.5),
            ("20610", "Joint injection", 55.0), ("11102", "Skin biopsy", 95.0), ("90834", "Psychotherapy", 90.0),
            ("G2211", "Visit complexity add-on", 16.0), ("99497", "Advance care planning", 80.0),
            ("J1100", "Dexamethasone injection", 0.2), ("96372", "Injection, therapeutic", 14.0),
        ]
        self.states = [("CA", "Los Angeles"), ("TX", "Houston"), ("NY", "New York"),
                       ("FL", "Miami"), ("IL", "Chicago"), ("MA", "Boston, Suburb")]
        self.last_names = ["Smith", "Johnson", "O'Brien", "Garcia", "Nguyen", "Patel", "Lee", "Brown"]
        self.first_names = ["Alex", "Sam", "Jordan", "Taylor", "Casey", "Morgan", "Riley"]
        self.credentials = ["M.D.", "MD", "D.O.", "NP", "M.D., Ph.D.", ""]

    def generate_dataset(self,
                         file_path: str,
                         num_providers: int,
                         codes_per_provider: int = 8,
                         error_rate: float = 0.0) -> Dict[str, Any]:
        """
        Generate an extract with one row per provider x code.

        Args:
            file_path (str): Output CSV file path
            num_providers (int): Number of distinct providers
            codes_per_provider (int): Maximum codes billed per provider
            error_rate (float): Fraction of rows replaced with noisy rows

        Returns:
            dict: Generation statistics
        """
        logger.info(f"Generating {num_providers:,} providers with {error_rate:.1%} error rate...")

        stats = {
            'providers': num_providers,
            'total_rows': 0,
            'error_rate': error_rate,
            'records_with_errors': 0,
            'error_types': {}
        }

        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(HEADER)

            for index in range(num_providers):
                for row in self._generate_provider_rows(index, codes_per_provider):
                    if error_rate and self.random.random() < error_rate:
                        row = self._inject_error(row, stats)
                    writer.writerow(row)
                    stats['total_rows'] += 1

                if (index + 1) % 10000 == 0:
                    logger.info(f"Generated {index + 1:,}/{num_providers:,} providers")

        stats['error_rate_actual'] = stats['records_with_errors'] / stats['total_rows'] if stats['total_rows'] else 0

        logger.info(f"Dataset generated: {file_path} ({stats['total_rows']:,} rows)")
        logger.info(f"Error breakdown: {stats['error_types']}")
        return stats

    def _generate_provider_rows(self, index: int, codes_per_provider: int) -> List[List[Any]]:
        npi = f"1{index:09d}"
        labels, weights = zip(*self.specialties)
        specialty = self.random.choices(labels, weights=weights)[0]
        state, city = self.random.choice(self.states)
        last_name = self.random.choice(self.last_names)
        first_name = self.random.choice(self.first_names)
        credential = self.random.choice(self.credentials)

        count = self.random.randint(1, max(1, min(codes_per_provider, len(self.codes))))
        rows = []
        for code, description, base_payment in self.random.sample(self.codes, count):
            benes = self.random.randint(11, 400)
            services = benes * self.random.choice([1, 1, 2, 3]) + self.random.choice([0, 0, 0.5])
            payment = round(base_payment * self.random.uniform(0.8, 1.2), 2)
            rows.append([
                npi, last_name, first_name, "", credential, "I",
                city, state, specialty, code, description, "O",
                benes, services, round(payment * 2.5, 2), round(payment * 1.25, 2), payment,
            ])
        return rows

    def _inject_error(self, row: List[Any], stats: Dict[str, Any]) -> List[Any]:
        row = list(row)
        error_type = self.random.choice(['short_npi', 'non_numeric_services', 'truncated_row'])
        if error_type == 'short_npi':
            row[0] = str(row[0])[:9]
        elif error_type == 'non_numeric_services':
            row[HEADER.index('Tot_Srvcs')] = "N/A"
        else:
            row = row[:5]
        stats['records_with_errors'] += 1
        stats['error_types'][error_type] = stats['error_types'].get(error_type, 0) + 1
        return row
