# ========================
# npiscore/pipeline/cleaning.py
# ========================

"""
Record Cleaning Module

Converts parsed source lines into typed claim rows. Rows that cannot be
converted are counted and dropped; only the first few are logged verbatim.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional, Any

from .ingestion import SourceLine

logger = logging.getLogger(__name__)

NPI_LENGTH = 10
CENT = Decimal('0.01')


@dataclass
class ClaimRow:
    """One provider x code line of the source extract, typed."""

    npi: str
    code: str
    services: Decimal
    payment_cents: int
    beneficiaries: int
    last_name: str = ''
    first_name: str = ''
    credential: str = ''
    specialty: str = ''
    state: str = ''
    city: str = ''


class MalformedRowError(ValueError):
    """A numeric field on a source row could not be parsed."""


def parse_decimal(value: Optional[str], field_name: str) -> Decimal:
    """
    Parse a numeric source field. Empty values count as zero.

    Raises:
        MalformedRowError: If the text is not a finite number
    """
    if value is None or value == '':
        return Decimal(0)
    try:
        number = Decimal(value.replace(',', ''))
    except InvalidOperation:
        raise MalformedRowError(f"Non-numeric {field_name}: {value!r}")
    if not number.is_finite():
        raise MalformedRowError(f"Non-finite {field_name}: {value!r}")
    return number


def payment_in_cents(avg_payment: Decimal, services: Decimal) -> int:
    """Row payment (average payment x services) rounded half-up to the cent."""
    dollars = (avg_payment * services).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(dollars * 100)


class RecordCleaner:
    """
    Applies type conversion and validation to parsed source lines.
    """

    def __init__(self, error_log_limit: int = 5):
        """
        Initialize the record cleaner.

        Args:
            error_log_limit (int): Number of malformed rows to log verbatim
        """
        self.error_log_limit = error_log_limit
        self.records_processed = 0
        self.records_malformed = 0
        self.records_invalid_identifier = 0
        logger.info(f"RecordCleaner initialized with error_log_limit={error_log_limit}")

    def clean_record(self, source_line: SourceLine) -> Optional[ClaimRow]:
        """
        Convert a single parsed line into a ClaimRow.

        Args:
            source_line (SourceLine): Output of CSVReader

        Returns:
            ClaimRow or None: The typed row, or None if it is dropped.
        """
        self.records_processed += 1

        if source_line.values is None:
            self._record_malformed(source_line, source_line.error)
            return None

        values = source_line.values
        npi = values['npi']
        if len(npi) != NPI_LENGTH:
            self.records_invalid_identifier += 1
            return None

        try:
            services = parse_decimal(values['services'], 'Tot_Srvcs')
            avg_payment = parse_decimal(values['avg_payment'], 'Avg_Mdcr_Pymt_Amt')
            beneficiaries = parse_decimal(values.get('beneficiaries'), 'Tot_Benes')
        except MalformedRowError as e:
            self._record_malformed(source_line, str(e))
            return None

        return ClaimRow(
            npi=npi,
            code=values['code'],
            services=services,
            payment_cents=payment_in_cents(avg_payment, services),
            beneficiaries=int(beneficiaries.to_integral_value(rounding=ROUND_HALF_UP)),
            last_name=values.get('last_name', ''),
            first_name=values.get('first_name', ''),
            credential=values.get('credential', ''),
            specialty=values.get('specialty', ''),
            state=values.get('state', ''),
            city=values.get('city', ''),
        )

    def _record_malformed(self, source_line: SourceLine, reason: Optional[str]) -> None:
        self.records_malformed += 1
        if self.records_malformed <= self.error_log_limit:
            logger.warning(f"Malformed row at line {source_line.line_number}: {reason} | {source_line.raw[:200]}")
        elif self.records_malformed == self.error_log_limit + 1:
            logger.warning("Further malformed rows will be counted but not logged")

    def get_statistics(self) -> Dict[str, Any]:
        """Get cleaning statistics."""
        dropped = self.records_malformed + self.records_invalid_identifier
        return {
            'records_processed': self.records_processed,
            'records_malformed': self.records_malformed,
            'records_invalid_identifier': self.records_invalid_identifier,
            'records_dropped': dropped,
            'records_cleaned': self.records_processed - dropped,
            'success_rate': (self.records_processed - dropped) / self.records_processed * 100 if self.records_processed > 0 else 0
        }
