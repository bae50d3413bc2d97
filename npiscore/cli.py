# ========================
# npiscore/cli.py
# ========================

"""
Command Line Interface

One sub-command per pipeline stage plus `all`:

    npiscore download          fetch the raw extract
    npiscore process           aggregate the extract into data/processed
    npiscore build-db          rebuild the embedded SQLite store
    npiscore score             compute revenue scores in the store
    npiscore migrate           copy the store to PostgreSQL
    npiscore migrate --resume  continue an interrupted code-row load
    npiscore migrate --scores-only
    npiscore all               download (if needed), process, build-db, score

Exit codes: 0 success, 1 unrecoverable error, 2 replication count mismatch.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .pipeline.database import EmbeddedStore
from .pipeline.download import SourceDownloader
from .pipeline.errors import ConfigurationError, MissingInputError, PipelineError
from .pipeline.orchestrator import DataPipeline
from .pipeline.packager import StorePackager
from .pipeline.remote import PostgresTarget
from .pipeline.replication import make_replicator
from .pipeline.scoring import ScoreCalculator
from .utils.config import Config
from .utils.logging_setup import setup_logging, log_banner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="npiscore",
        description="Medicare provider claims pipeline: aggregate, package, score and replicate."
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    parser.add_argument("--config", default=None, help="JSON file of configuration overrides")
    parser.add_argument("--env-file", default=None, help="Env file holding DATABASE_URL (default .env.local)")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("download", help="Download the raw CSV extract")
    p.add_argument("--url", default=None)
    p.add_argument("--output", default=None, help="Destination CSV path")
    p.add_argument("--overwrite", action="store_true", help="Download even if the file exists")

    p = sub.add_parser("process", help="Aggregate the raw CSV into per-provider records")
    p.add_argument("--input", default=None, help="Raw CSV path")
    p.add_argument("--output-dir", default=None, help="Processed output directory")
    p.add_argument("--chunk-size", type=int, default=10000)

    p = sub.add_parser("build-db", help="Rebuild the embedded SQLite store")
    p.add_argument("--processed-dir", default=None)
    p.add_argument("--database", default=None, help="SQLite file path")

    p = sub.add_parser("score", help="Compute revenue scores in the embedded store")
    p.add_argument("--database", default=None, help="SQLite file path")

    p = sub.add_parser("migrate", help="Replicate the embedded store to PostgreSQL")
    p.add_argument("--database", default=None, help="SQLite file path")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--resume", action="store_true", help="Continue the code-row load")
    mode.add_argument("--scores-only", action="store_true", help="Push revenue scores only")

    p = sub.add_parser("all", help="Run download, process, build-db and score")
    p.add_argument("--skip-download", action="store_true")
    p.add_argument("--migrate", action="store_true", help="Also replicate to PostgreSQL")

    return parser


def load_config(args: argparse.Namespace) -> Config:
    overrides = {}
    if args.config:
        with open(args.config, 'r') as f:
            overrides = json.load(f)
    if args.log_level:
        overrides['log_level'] = args.log_level
    config = Config(overrides, env_file=args.env_file)

    failed = [name for name, ok in config.validate_config().items() if not ok]
    if failed:
        raise ConfigurationError(f"Invalid configuration values: {', '.join(failed)}")
    return config


def run_download(config: Config, url: Optional[str] = None, output: Optional[str] = None,
                 overwrite: bool = False) -> dict:
    downloader = SourceDownloader(
        url or config.DOWNLOAD_URL,
        output or config.DEFAULT_INPUT_FILE,
        progress_bytes=config.DOWNLOAD_PROGRESS_BYTES,
    )
    return downloader.download(overwrite=overwrite)


def run_process(config: Config, input_file: Optional[str] = None, output_dir: Optional[str] = None,
                chunk_size: int = 10000) -> dict:
    pipeline = DataPipeline(
        input_file=input_file or config.DEFAULT_INPUT_FILE,
        output_dir=output_dir or config.DEFAULT_OUTPUT_DIR,
        chunk_size=chunk_size,
        config=config,
    )
    return pipeline.run()


def run_build_db(config: Config, processed_dir: Optional[str] = None, database: Optional[str] = None) -> dict:
    packager = StorePackager(
        processed_dir or config.DEFAULT_OUTPUT_DIR,
        database or config.DATABASE_PATH,
        batch_size=config.DB_BATCH_SIZE,
        size_budget_mb=config.DB_SIZE_BUDGET_MB,
        top_codes_limit=config.TOP_CODES_LIMIT,
        error_log_limit=config.PARSE_ERROR_LOG_LIMIT,
    )
    return packager.run()


def run_score(config: Config, database: Optional[str] = None) -> dict:
    calculator = ScoreCalculator(
        database or config.DATABASE_PATH,
        specialty_map=config.SPECIALTY_MAP,
        page_size=config.SCORE_PAGE_SIZE,
    )
    return calculator.run()


def run_migrate(config: Config, database: Optional[str] = None, resume: bool = False,
                scores_only: bool = False, target=None) -> dict:
    db_path = database or config.DATABASE_PATH
    target = target or PostgresTarget(config.DATABASE_URL)
    source = EmbeddedStore(db_path)
    if not source.db_path.is_file():
        raise MissingInputError(f"Embedded store not found: {db_path}")

    try:
        with source:
            replicator = make_replicator(source, target, config)
            if scores_only:
                return replicator.sync_scores()
            return replicator.run(resume=resume)
    finally:
        target.close()


def run_all(config: Config, skip_download: bool = False, migrate: bool = False) -> dict:
    if migrate and not config.DATABASE_URL:
        raise ConfigurationError("Destination credentials missing: set DATABASE_URL_UNPOOLED or DATABASE_URL")
    config.ensure_directories()
    results = {}
    if not skip_download:
        results['download'] = run_download(config)
    results['process'] = run_process(config)
    results['build_db'] = run_build_db(config)
    results['score'] = run_score(config)
    if migrate:
        results['migrate'] = run_migrate(config)
    return results


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run one command and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except (PipelineError, OSError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(log_level=config.LOG_LEVEL, log_file=config.LOG_FILE, log_dir=config.LOG_DIR)
    log_banner(logger, f"NPISCORE - {args.command.upper()}")

    try:
        if args.command == "download":
            run_download(config, args.url, args.output, args.overwrite)
        elif args.command == "process":
            run_process(config, args.input, args.output_dir, args.chunk_size)
        elif args.command == "build-db":
            run_build_db(config, args.processed_dir, args.database)
        elif args.command == "score":
            run_score(config, args.database)
        elif args.command == "migrate":
            run_migrate(config, args.database, resume=args.resume, scores_only=args.scores_only)
        elif args.command == "all":
            run_all(config, skip_download=args.skip_download, migrate=args.migrate)
    except PipelineError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\nFAILED: {e}")
        return e.exit_code
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"\nFAILED: {e}")
        return 1

    logger.info(f"{args.command} completed successfully")
    return 0


if __name__ == '__main__':
    sys.exit(main())
