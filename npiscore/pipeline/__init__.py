# ========================
# npiscore/pipeline/__init__.py
# ========================

"""
Claims Pipeline Package

Core stages of the claims pipeline:
- ingestion: Line-oriented CSV reading
- cleaning: Typed row conversion and validation
- transformation: In-memory provider and specialty aggregation
- benchmarks: Per-specialty statistical summaries
- storage: Sharded per-provider JSON records
- packager: Embedded SQLite store build and verification
- scoring: Revenue score calculation
- replication: Resumable copy to PostgreSQL
- orchestrator: Ingestion stage coordination
"""

from .ingestion import CSVReader
from .cleaning import RecordCleaner
from .transformation import ProviderAggregator
from .benchmarks import build_benchmarks
from .storage import DataSaver, DataLoader
from .database import EmbeddedStore
from .packager import StorePackager
from .scoring import ScoreCalculator, calculate_score
from .remote import PostgresTarget
from .replication import Replicator
from .download import SourceDownloader
from .orchestrator import DataPipeline

__all__ = [
    'CSVReader',
    'RecordCleaner',
    'ProviderAggregator',
    'build_benchmarks',
    'DataSaver',
    'DataLoader',
    'EmbeddedStore',
    'StorePackager',
    'ScoreCalculator',
    'calculate_score',
    'PostgresTarget',
    'Replicator',
    'SourceDownloader',
    'DataPipeline'
]
