# ========================
# npiscore/pipeline/database.py
# ========================

"""
Embedded Store Module

SQLite access for the packaged dataset: schema, bulk-load tuning, full record
writes for packaging, the score patch, and paged reads for scoring and
replication.
"""

import json
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Any

from .codes import EM_LEVELS, PROGRAM_NAMES
from .models import ProviderAggregate, SpecialtyBenchmark, TOP_CODES_LIMIT, to_number

logger = logging.getLogger(__name__)

PROVIDER_COLUMNS: Tuple[str, ...] = (
    'npi', 'last_name', 'first_name', 'credential', 'specialty', 'state', 'city',
    'total_beneficiaries', 'total_services', 'total_payment_cents',
    *(f'em_{level}' for level in EM_LEVELS), 'em_total',
    *(col for name in PROGRAM_NAMES for col in (f'{name}_services', f'{name}_payment_cents')),
    'top_codes', 'revenue_score',
)

CODE_COLUMNS: Tuple[str, ...] = ('npi', 'hcpcs_code', 'services', 'payment_cents', 'beneficiaries')

BENCHMARK_COLUMNS: Tuple[str, ...] = (
    'specialty', 'provider_count', 'avg_beneficiaries', 'avg_payment_cents',
    'avg_revenue_per_beneficiary_cents', 'avg_services',
    'pct_99213', 'pct_99214', 'pct_99215',
    'ccm_adoption', 'rpm_adoption', 'bhi_adoption', 'awv_adoption',
)

TABLES = ('providers', 'provider_codes', 'benchmarks')

_EM_COLUMNS_SQL = ",\n    ".join(f"em_{level} REAL NOT NULL DEFAULT 0" for level in EM_LEVELS)
_PROGRAM_COLUMNS_SQL = ",\n    ".join(
    f"{name}_services REAL NOT NULL DEFAULT 0,\n    {name}_payment_cents INTEGER NOT NULL DEFAULT 0"
    for name in PROGRAM_NAMES
)

SCHEMA_SQL = f"""
CREATE TABLE providers (
    npi TEXT PRIMARY KEY,
    last_name TEXT NOT NULL DEFAULT '',
    first_name TEXT NOT NULL DEFAULT '',
    credential TEXT,
    specialty TEXT NOT NULL DEFAULT '',
    state TEXT,
    city TEXT,
    total_beneficiaries INTEGER NOT NULL DEFAULT 0,
    total_services REAL NOT NULL DEFAULT 0,
    total_payment_cents INTEGER NOT NULL DEFAULT 0,
    {_EM_COLUMNS_SQL},
    em_total REAL NOT NULL DEFAULT 0,
    {_PROGRAM_COLUMNS_SQL},
    top_codes TEXT NOT NULL DEFAULT '[]',
    revenue_score INTEGER
);

CREATE TABLE provider_codes (
    npi TEXT NOT NULL,
    hcpcs_code TEXT NOT NULL,
    services REAL NOT NULL DEFAULT 0,
    payment_cents INTEGER NOT NULL DEFAULT 0,
    beneficiaries INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (npi, hcpcs_code),
    FOREIGN KEY (npi) REFERENCES providers(npi)
);

CREATE TABLE benchmarks (
    specialty TEXT PRIMARY KEY,
    provider_count INTEGER NOT NULL DEFAULT 0,
    avg_beneficiaries INTEGER NOT NULL DEFAULT 0,
    avg_payment_cents INTEGER NOT NULL DEFAULT 0,
    avg_revenue_per_beneficiary_cents INTEGER NOT NULL DEFAULT 0,
    avg_services INTEGER NOT NULL DEFAULT 0,
    pct_99213 REAL NOT NULL DEFAULT 0,
    pct_99214 REAL NOT NULL DEFAULT 0,
    pct_99215 REAL NOT NULL DEFAULT 0,
    ccm_adoption REAL NOT NULL DEFAULT 0,
    rpm_adoption REAL NOT NULL DEFAULT 0,
    bhi_adoption REAL NOT NULL DEFAULT 0,
    awv_adoption REAL NOT NULL DEFAULT 0
);
"""

INDEXES: Tuple[Tuple[str, str], ...] = (
    ('idx_providers_specialty', 'providers(specialty)'),
    ('idx_providers_state', 'providers(state)'),
    ('idx_providers_name', 'providers(last_name, first_name)'),
    ('idx_providers_state_payment', 'providers(state, total_payment_cents DESC)'),
    ('idx_providers_specialty_state', 'providers(specialty, state)'),
    ('idx_providers_specialty_state_payment', 'providers(specialty, state, total_payment_cents DESC)'),
    ('idx_codes_npi', 'provider_codes(npi)'),
    ('idx_codes_hcpcs', 'provider_codes(hcpcs_code)'),
)

SCORE_INDEXES: Tuple[Tuple[str, str], ...] = (
    ('idx_providers_revenue_score', 'providers(revenue_score)'),
    ('idx_providers_specialty_score', 'providers(specialty, revenue_score)'),
    ('idx_providers_state_score', 'providers(state, revenue_score)'),
)

BULK_LOAD_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = OFF",
    "PRAGMA cache_size = -64000",
    "PRAGMA temp_store = MEMORY",
)


def provider_row(provider: ProviderAggregate, top_limit: int = TOP_CODES_LIMIT) -> Tuple[Any, ...]:
    """Flatten an aggregate into a tuple ordered like PROVIDER_COLUMNS."""
    programs = provider.program_totals()
    row = [
        provider.npi, provider.last_name, provider.first_name, provider.credential,
        provider.specialty, provider.state, provider.city,
        provider.total_beneficiaries, to_number(provider.total_services), provider.total_payment_cents,
    ]
    row.extend(to_number(provider.em_services(level)) for level in EM_LEVELS)
    row.append(to_number(provider.em_total))
    for name in PROGRAM_NAMES:
        row.append(to_number(programs[name].services))
        row.append(programs[name].payment_cents)
    row.append(json.dumps([c.to_dict() for c in provider.top_codes(top_limit)], separators=(',', ':')))
    row.append(provider.revenue_score)
    return tuple(row)


def code_rows(provider: ProviderAggregate) -> List[Tuple[Any, ...]]:
    return [
        (provider.npi, code, to_number(b.services), b.payment_cents, b.beneficiaries)
        for code, b in sorted(provider.codes.items())
    ]


def benchmark_row(benchmark: SpecialtyBenchmark) -> Tuple[Any, ...]:
    data = benchmark.to_dict()
    return tuple(data[column] for column in BENCHMARK_COLUMNS)


class EmbeddedStore:
    """
    Single-file SQLite store with one writer.
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path (str): Path to the SQLite file
        """
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        if self.conn is None:
            self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
            self.conn.row_factory = sqlite3.Row
        return self.conn

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> 'EmbeddedStore':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self):
        """Run the enclosed writes as one transaction."""
        conn = self.connect()
        conn.execute("BEGIN")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ----- schema -----

    def apply_bulk_load_pragmas(self) -> None:
        conn = self.connect()
        for pragma in BULK_LOAD_PRAGMAS:
            conn.execute(pragma)

    def create_schema(self) -> None:
        self.connect().executescript(SCHEMA_SQL)

    def _create_indexes(self, indexes: Iterable[Tuple[str, str]]) -> None:
        conn = self.connect()
        for name, target in indexes:
            conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {target}")
            logger.debug(f"Index ready: {name}")

    def create_indexes(self) -> None:
        self._create_indexes(INDEXES)

    def create_score_indexes(self) -> None:
        self._create_indexes(SCORE_INDEXES)

    def ensure_revenue_score_column(self) -> None:
        """Add revenue_score to stores packaged before the column existed."""
        columns = {row['name'] for row in self.connect().execute("PRAGMA table_info(providers)")}
        if 'revenue_score' not in columns:
            logger.info("Adding revenue_score column to providers")
            self.connect().execute("ALTER TABLE providers ADD COLUMN revenue_score INTEGER")

    # ----- full record writes -----

    def insert_benchmarks(self, benchmarks: Iterable[SpecialtyBenchmark]) -> int:
        rows = [benchmark_row(b) for b in benchmarks]
        placeholders = ", ".join("?" for _ in BENCHMARK_COLUMNS)
        self.connect().executemany(
            f"INSERT INTO benchmarks ({', '.join(BENCHMARK_COLUMNS)}) VALUES ({placeholders})",
            rows,
        )
        return len(rows)

    def insert_providers(self, providers: Iterable[ProviderAggregate],
                         top_limit: int = TOP_CODES_LIMIT) -> Tuple[int, int]:
        """
        Insert provider records and their code rows.

        Returns:
            tuple: (providers inserted, code rows inserted)
        """
        provider_rows = []
        breakdown_rows = []
        for provider in providers:
            provider_rows.append(provider_row(provider, top_limit))
            breakdown_rows.extend(code_rows(provider))

        conn = self.connect()
        conn.executemany(
            f"INSERT INTO providers ({', '.join(PROVIDER_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in PROVIDER_COLUMNS)})",
            provider_rows,
        )
        conn.executemany(
            f"INSERT INTO provider_codes ({', '.join(CODE_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in CODE_COLUMNS)})",
            breakdown_rows,
        )
        return len(provider_rows), len(breakdown_rows)

    # ----- patch -----

    def patch_revenue_scores(self, scores: Iterable[Tuple[str, int]]) -> int:
        """Update only the revenue_score column for each (npi, score)."""
        cursor = self.connect().executemany(
            "UPDATE providers SET revenue_score = ? WHERE npi = ?",
            [(score, npi) for npi, score in scores],
        )
        return cursor.rowcount

    # ----- reads -----

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        return self.connect().execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def table_counts(self) -> Dict[str, int]:
        return {table: self.count_rows(table) for table in TABLES}

    def top_provider_by_payment(self) -> Optional[sqlite3.Row]:
        return self.connect().execute(
            "SELECT npi, last_name, first_name, specialty, state, total_payment_cents "
            "FROM providers ORDER BY total_payment_cents DESC, npi LIMIT 1"
        ).fetchone()

    def distinct_code_counts(self) -> Dict[str, int]:
        rows = self.connect().execute(
            "SELECT npi, COUNT(DISTINCT hcpcs_code) AS n FROM provider_codes GROUP BY npi"
        )
        return {row['npi']: row['n'] for row in rows}

    def load_benchmarks(self) -> Dict[str, SpecialtyBenchmark]:
        rows = self.connect().execute(f"SELECT {', '.join(BENCHMARK_COLUMNS)} FROM benchmarks")
        return {row['specialty']: SpecialtyBenchmark.from_dict(dict(row)) for row in rows}

    def fetch_benchmark_rows(self) -> List[Tuple[Any, ...]]:
        rows = self.connect().execute(
            f"SELECT {', '.join(BENCHMARK_COLUMNS)} FROM benchmarks ORDER BY specialty"
        )
        return [tuple(row) for row in rows]

    def fetch_providers_after(self, last_npi: Optional[str], limit: int,
                              columns: Tuple[str, ...] = PROVIDER_COLUMNS) -> List[sqlite3.Row]:
        """Keyset page of providers ordered by npi."""
        select = f"SELECT {', '.join(columns)} FROM providers"
        if last_npi is None:
            return self.connect().execute(f"{select} ORDER BY npi LIMIT ?", (limit,)).fetchall()
        return self.connect().execute(
            f"{select} WHERE npi > ? ORDER BY npi LIMIT ?", (last_npi, limit)
        ).fetchall()

    def iter_provider_pages(self, page_size: int,
                            columns: Tuple[str, ...] = PROVIDER_COLUMNS) -> Iterator[List[sqlite3.Row]]:
        last_npi = None
        while True:
            page = self.fetch_providers_after(last_npi, page_size, columns)
            if not page:
                return
            yield page
            last_npi = page[-1]['npi']

    def code_key_at(self, offset: int) -> Optional[Tuple[str, str]]:
        """(npi, hcpcs_code) of the row at a zero-based ordinal in key order."""
        row = self.connect().execute(
            "SELECT npi, hcpcs_code FROM provider_codes ORDER BY npi, hcpcs_code LIMIT 1 OFFSET ?",
            (offset,),
        ).fetchone()
        return (row['npi'], row['hcpcs_code']) if row else None

    def fetch_codes_after(self, last_key: Optional[Tuple[str, str]], limit: int) -> List[Tuple[Any, ...]]:
        """Keyset page of code rows ordered by (npi, hcpcs_code)."""
        select = f"SELECT {', '.join(CODE_COLUMNS)} FROM provider_codes"
        if last_key is None:
            rows = self.connect().execute(
                f"{select} ORDER BY npi, hcpcs_code LIMIT ?", (limit,)
            )
        else:
            rows = self.connect().execute(
                f"{select} WHERE (npi, hcpcs_code) > (?, ?) ORDER BY npi, hcpcs_code LIMIT ?",
                (last_key[0], last_key[1], limit),
            )
        return [tuple(row) for row in rows]

    def iter_code_pages(self, page_size: int, start_offset: int = 0) -> Iterator[List[Tuple[Any, ...]]]:
        """
        Code rows in key order, starting at a zero-based ordinal.

        Args:
            page_size (int): Rows per page
            start_offset (int): Number of leading rows to skip
        """
        last_key = self.code_key_at(start_offset - 1) if start_offset > 0 else None
        if start_offset > 0 and last_key is None:
            return
        while True:
            page = self.fetch_codes_after(last_key, page_size)
            if not page:
                return
            yield page
            last_key = (page[-1][0], page[-1][1])

    def iter_scores(self, page_size: int) -> Iterator[List[Tuple[str, Optional[int]]]]:
        for page in self.iter_provider_pages(page_size, columns=('npi', 'revenue_score')):
            yield [(row['npi'], row['revenue_score']) for row in page]

    def checkpoint(self) -> None:
        """Fold the write-ahead log back into the main file."""
        self.connect().execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def file_size_mb(self) -> float:
        return self.db_path.stat().st_size / (1024 * 1024) if self.db_path.exists() else 0.0
