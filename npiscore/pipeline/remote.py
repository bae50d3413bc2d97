# ========================
# npiscore/pipeline/remote.py
# ========================

"""
PostgreSQL Destination

Write side of replication: schema management, batched inserts and score
updates against the networked store. Every batch is committed on its own and
rolled back on failure so a batch is all-or-nothing.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extras

from .codes import EM_LEVELS, PROGRAM_NAMES
from .database import PROVIDER_COLUMNS, CODE_COLUMNS, BENCHMARK_COLUMNS, TABLES
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_EM_COLUMNS_SQL = ",\n    ".join(
    f"em_{level} DOUBLE PRECISION NOT NULL DEFAULT 0" for level in EM_LEVELS
)
_PROGRAM_COLUMNS_SQL = ",\n    ".join(
    f"{name}_services DOUBLE PRECISION NOT NULL DEFAULT 0,\n    {name}_payment_cents BIGINT NOT NULL DEFAULT 0"
    for name in PROGRAM_NAMES
)

CREATE_TABLES_SQL = (
    f"""
CREATE TABLE providers (
    npi TEXT PRIMARY KEY,
    last_name TEXT NOT NULL DEFAULT '',
    first_name TEXT NOT NULL DEFAULT '',
    credential TEXT,
    specialty TEXT NOT NULL DEFAULT '',
    state TEXT,
    city TEXT,
    total_beneficiaries INTEGER NOT NULL DEFAULT 0,
    total_services DOUBLE PRECISION NOT NULL DEFAULT 0,
    total_payment_cents BIGINT NOT NULL DEFAULT 0,
    {_EM_COLUMNS_SQL},
    em_total DOUBLE PRECISION NOT NULL DEFAULT 0,
    {_PROGRAM_COLUMNS_SQL},
    top_codes JSONB NOT NULL DEFAULT '[]'::jsonb,
    revenue_score INTEGER
)""",
    """
CREATE TABLE provider_codes (
    npi TEXT NOT NULL,
    hcpcs_code TEXT NOT NULL,
    services DOUBLE PRECISION NOT NULL DEFAULT 0,
    payment_cents BIGINT NOT NULL DEFAULT 0,
    beneficiaries INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (npi, hcpcs_code)
)""",
    """
CREATE TABLE benchmarks (
    specialty TEXT PRIMARY KEY,
    provider_count INTEGER NOT NULL DEFAULT 0,
    avg_beneficiaries INTEGER NOT NULL DEFAULT 0,
    avg_payment_cents BIGINT NOT NULL DEFAULT 0,
    avg_revenue_per_beneficiary_cents BIGINT NOT NULL DEFAULT 0,
    avg_services INTEGER NOT NULL DEFAULT 0,
    pct_99213 DOUBLE PRECISION NOT NULL DEFAULT 0,
    pct_99214 DOUBLE PRECISION NOT NULL DEFAULT 0,
    pct_99215 DOUBLE PRECISION NOT NULL DEFAULT 0,
    ccm_adoption DOUBLE PRECISION NOT NULL DEFAULT 0,
    rpm_adoption DOUBLE PRECISION NOT NULL DEFAULT 0,
    bhi_adoption DOUBLE PRECISION NOT NULL DEFAULT 0,
    awv_adoption DOUBLE PRECISION NOT NULL DEFAULT 0
)""",
)

REMOTE_INDEXES: Tuple[Tuple[str, str], ...] = (
    ('idx_providers_specialty', 'providers(specialty)'),
    ('idx_providers_state', 'providers(state)'),
    ('idx_providers_city', 'providers(city)'),
    ('idx_providers_name', 'providers(last_name, first_name)'),
    ('idx_providers_state_city', 'providers(state, city)'),
    ('idx_providers_state_payment', 'providers(state, total_payment_cents DESC)'),
    ('idx_providers_specialty_state', 'providers(specialty, state)'),
    ('idx_providers_specialty_state_payment', 'providers(specialty, state, total_payment_cents DESC)'),
    ('idx_codes_npi', 'provider_codes(npi)'),
    ('idx_codes_hcpcs', 'provider_codes(hcpcs_code)'),
)

REMOTE_SCORE_INDEXES: Tuple[Tuple[str, str], ...] = (
    ('idx_providers_revenue_score', 'providers(revenue_score)'),
    ('idx_providers_specialty_score', 'providers(specialty, revenue_score)'),
    ('idx_providers_state_score', 'providers(state, revenue_score)'),
)

_PROVIDER_TEMPLATE = "(" + ", ".join(
    "%s::jsonb" if column == 'top_codes' else "%s" for column in PROVIDER_COLUMNS
) + ")"


def connect_postgres(database_url: str):
    """Open a connection; hosted Neon endpoints require TLS."""
    return psycopg2.connect(
        database_url,
        sslmode="require" if "neon.tech" in database_url else "prefer",
    )


class PostgresTarget:
    """
    Networked destination for replication.
    """

    def __init__(self, database_url: str, connect=connect_postgres):
        """
        Args:
            database_url (str): libpq connection string
            connect (callable): Connection factory, replaceable in tests
        """
        if not database_url:
            raise ConfigurationError(
                "Destination credentials missing: set DATABASE_URL_UNPOOLED or DATABASE_URL"
            )
        self.database_url = database_url
        self._connect = connect
        self.conn = None

    def _connection(self):
        if self.conn is None or self.conn.closed:
            logger.info("Connecting to destination database...")
            self.conn = self._connect(self.database_url)
            self.conn.autocommit = False
        return self.conn

    def close(self) -> None:
        if self.conn is not None and not self.conn.closed:
            self.conn.close()
        self.conn = None

    def _discard_failed_transaction(self) -> None:
        """Roll back after a failed batch; drop the connection if that fails too."""
        if self.conn is None or self.conn.closed:
            self.conn = None
            return
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed, discarding connection: {e}")
            self.close()

    def _run(self, statements: Sequence[Tuple[str, Optional[Sequence[Any]]]]) -> None:
        conn = self._connection()
        try:
            with conn.cursor() as cur:
                for sql, params in statements:
                    cur.execute(sql, params)
            conn.commit()
        except psycopg2.Error:
            self._discard_failed_transaction()
            raise

    def _insert_values(self, sql: str, rows: List[Tuple[Any, ...]],
                       template: Optional[str] = None) -> int:
        if not rows:
            return 0
        conn = self._connection()
        try:
            with conn.cursor() as cur:
                psycopg2.extras.execute_values(cur, sql, rows, template=template, page_size=len(rows))
            conn.commit()
        except psycopg2.Error:
            self._discard_failed_transaction()
            raise
        return len(rows)

    # ----- schema -----

    def reset_schema(self) -> None:
        """Drop and recreate the three tables in one transaction."""
        statements = [(f"DROP TABLE IF EXISTS {table} CASCADE", None) for table in TABLES]
        statements.extend((sql, None) for sql in CREATE_TABLES_SQL)
        self._run(statements)

    def create_indexes(self, indexes=REMOTE_INDEXES) -> None:
        for name, target in indexes:
            self._run([(f"CREATE INDEX IF NOT EXISTS {name} ON {target}", None)])
            logger.info(f"Index ready: {name}")

    def ensure_revenue_score_column(self) -> None:
        self._run([("ALTER TABLE providers ADD COLUMN IF NOT EXISTS revenue_score INTEGER", None)])

    # ----- writes -----

    def insert_benchmarks(self, rows: List[Tuple[Any, ...]]) -> int:
        return self._insert_values(
            f"INSERT INTO benchmarks ({', '.join(BENCHMARK_COLUMNS)}) VALUES %s "
            f"ON CONFLICT (specialty) DO NOTHING",
            rows,
        )

    def insert_providers(self, rows: List[Tuple[Any, ...]]) -> int:
        return self._insert_values(
            f"INSERT INTO providers ({', '.join(PROVIDER_COLUMNS)}) VALUES %s "
            f"ON CONFLICT (npi) DO NOTHING",
            rows,
            template=_PROVIDER_TEMPLATE,
        )

    def insert_codes(self, rows: List[Tuple[Any, ...]]) -> int:
        return self._insert_values(
            f"INSERT INTO provider_codes ({', '.join(CODE_COLUMNS)}) VALUES %s "
            f"ON CONFLICT (npi, hcpcs_code) DO NOTHING",
            rows,
        )

    def update_scores(self, rows: List[Tuple[str, Optional[int]]]) -> int:
        """Patch revenue_score for each (npi, score)."""
        return self._insert_values(
            "UPDATE providers AS p SET revenue_score = v.score "
            "FROM (VALUES %s) AS v(npi, score) WHERE p.npi = v.npi",
            rows,
            template="(%s, %s::integer)",
        )

    # ----- reads -----

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        conn = self._connection()
        try:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM {table}")
                count = cur.fetchone()[0]
            conn.commit()
        except psycopg2.Error:
            self._discard_failed_transaction()
            raise
        return count

    def table_counts(self) -> Dict[str, int]:
        return {table: self.count_rows(table) for table in TABLES}

    def last_code_key(self) -> Optional[Tuple[str, str]]:
        """Greatest (npi, hcpcs_code) already present, or None when empty."""
        conn = self._connection()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT npi, hcpcs_code FROM provider_codes "
                    'ORDER BY npi COLLATE "C" DESC, hcpcs_code COLLATE "C" DESC LIMIT 1'
                )
                row = cur.fetchone()
            conn.commit()
        except psycopg2.Error:
            self._discard_failed_transaction()
            raise
        return (row[0], row[1]) if row else None
