# ========================
# npiscore/pipeline/ingestion.py
# ========================

"""
Data Ingestion Module

Streams the raw claims extract line by line in fixed-size chunks so that the
multi-gigabyte source file is never held in memory.
"""

import codecs
import csv
import logging
from collections import namedtuple
from pathlib import Path
from typing import Dict, Iterator, List

from .errors import MissingColumnsError, MissingInputError

logger = logging.getLogger(__name__)

# Internal field name -> source column name
REQUIRED_COLUMNS: Dict[str, str] = {
    'npi': 'Rndrng_NPI',
    'code': 'HCPCS_Cd',
    'services': 'Tot_Srvcs',
    'avg_payment': 'Avg_Mdcr_Pymt_Amt',
}

OPTIONAL_COLUMNS: Dict[str, str] = {
    'beneficiaries': 'Tot_Benes',
    'last_name': 'Rndrng_Prvdr_Last_Org_Name',
    'first_name': 'Rndrng_Prvdr_First_Name',
    'credential': 'Rndrng_Prvdr_Crdntls',
    'specialty': 'Rndrng_Prvdr_Type',
    'state': 'Rndrng_Prvdr_State_Abrvtn',
    'city': 'Rndrng_Prvdr_City',
}

# A physical source line after CSV parsing. values is None when the line could
# not be parsed, in which case error says why.
SourceLine = namedtuple('SourceLine', ['line_number', 'values', 'raw', 'error'])

ENCODING = 'utf-8'


def parse_line(line: str) -> List[str]:
    """
    Split one line using the standard CSV dialect and trim each field.

    Raises:
        csv.Error: If quoting is malformed
    """
    rows = list(csv.reader([line], strict=True))
    if not rows:
        return []
    return [field.strip() for field in rows[0]]


class CSVReader:
    """
    A line-oriented CSV reader for the claims extract.

    The header is resolved into a name -> index map before any row is read,
    so a file missing a required column fails before output exists.
    """

    def __init__(self, file_path: str):
        """
        Initialize the CSV reader.

        Args:
            file_path (str): Path to the CSV file to read
        """
        self.file_path = file_path
        self.header: List[str] = []
        self.column_index: Dict[str, int] = {}
        self.lines_read = 0
        logger.info(f"Initialized CSVReader for file: {file_path}")

    def validate_input(self) -> None:
        """
        Check the input exists and its header carries the required columns.

        Raises:
            MissingInputError: If the file is missing or unreadable
            MissingColumnsError: If a required column is absent
        """
        path = Path(self.file_path)
        if not path.is_file():
            raise MissingInputError(f"Input file does not exist: {self.file_path}")
        try:
            with open(path, 'rb') as f:
                header_bytes = f.readline()
        except OSError as e:
            raise MissingInputError(f"Cannot read input file {self.file_path}: {e}") from e
        if header_bytes.startswith(codecs.BOM_UTF8):
            header_bytes = header_bytes[len(codecs.BOM_UTF8):]
        self._resolve_header(header_bytes.decode(ENCODING, errors='replace'))

    def _resolve_header(self, header_line: str) -> None:
        try:
            self.header = parse_line(header_line.rstrip('\r\n'))
        except csv.Error:
            self.header = []
        positions = {name: idx for idx, name in enumerate(self.header)}

        missing = [column for column in REQUIRED_COLUMNS.values() if column not in positions]
        if missing:
            raise MissingColumnsError(missing, self.header)

        self.column_index = {}
        for field_name, column in {**REQUIRED_COLUMNS, **OPTIONAL_COLUMNS}.items():
            if column in positions:
                self.column_index[field_name] = positions[column]

        absent = [column for column in OPTIONAL_COLUMNS.values() if column not in positions]
        if absent:
            logger.warning(f"Optional columns absent, defaulting to empty: {', '.join(absent)}")
        logger.info(f"CSV header resolved: {len(self.header)} columns")

    def read_lines(self) -> Iterator[SourceLine]:
        """
        A generator over every data line of the file.

        Yields:
            SourceLine: Parsed values keyed by internal field name, or an error
        """
        self.validate_input()
        required_width = max(self.column_index.values()) + 1

        # Decoded per line; an undecodable line becomes an error SourceLine
        with open(self.file_path, 'rb') as f:
            f.readline()
            line_number = 1
            for raw in f:
                line_number += 1
                try:
                    line = raw.decode(ENCODING).rstrip('\r\n')
                except UnicodeDecodeError as e:
                    self.lines_read += 1
                    text = raw.decode(ENCODING, errors='replace').rstrip('\r\n')
                    yield SourceLine(line_number, None, text, f"Invalid {ENCODING} bytes: {e.reason} at offset {e.start}")
                    continue
                if not line.strip():
                    continue
                self.lines_read += 1

                try:
                    fields = parse_line(line)
                except csv.Error as e:
                    yield SourceLine(line_number, None, line, f"CSV parse error: {e}")
                    continue

                if len(fields) < required_width:
                    yield SourceLine(
                        line_number, None, line,
                        f"Expected at least {required_width} fields, got {len(fields)}"
                    )
                    continue

                values = {name: fields[idx] for name, idx in self.column_index.items()}
                yield SourceLine(line_number, values, line, None)

        logger.info(f"Total data lines read: {self.lines_read:,}")

    def read_in_chunks(self, chunk_size: int) -> Iterator[List[SourceLine]]:
        """
        A generator that yields lists of parsed lines.

        Args:
            chunk_size (int): The number of lines to yield per chunk.

        Yields:
            list[SourceLine]: A chunk of parsed lines.
        """
        chunk = []
        for source_line in self.read_lines():
            chunk.append(source_line)
            if len(chunk) == chunk_size:
                logger.debug(f"Yielding chunk with {len(chunk)} lines")
                yield chunk
                chunk = []

        if chunk:
            logger.debug(f"Yielding final chunk with {len(chunk)} lines")
            yield chunk
