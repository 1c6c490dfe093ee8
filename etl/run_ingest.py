# etl/run_ingest.py
import argparse
import logging
import sys
from typing import Optional, Sequence

import psycopg2

from etl.config import DATABASE_URL, INGEST_CSV_PATH, INGEST_TIMEOUT_SEC, LOG_LEVEL, SCHEMA_PATH
from etl.db import apply_schema, get_conn
from etl.deadline import Deadline
from etl.errors import IngestError
from etl.loader import load_from_source

logger = logging.getLogger("etl.run_ingest")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load Bhagavad Gita verses from a CSV file")
    parser.add_argument("--csv", default=INGEST_CSV_PATH, help="path to the Bhagavad Gita CSV file")
    parser.add_argument(
        "--timeout",
        type=float,
        default=INGEST_TIMEOUT_SEC,
        help="ingestion timeout in seconds",
    )
    parser.add_argument("--dsn", default=DATABASE_URL, help="PostgreSQL connection string")
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help=f"create tables from {SCHEMA_PATH} before loading",
    )
    return parser


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        conn = get_conn(args.dsn)
    except psycopg2.OperationalError as exc:
        logger.error("database connection error: %s", exc)
        return 1

    try:
        if args.init_schema:
            apply_schema(conn, SCHEMA_PATH)
            conn.commit()
            logger.info("schema applied from %s", SCHEMA_PATH)

        logger.info("START csv=%s timeout=%ss", args.csv, args.timeout)
        stats = load_from_source(conn, args.csv, Deadline(args.timeout))
    except (IngestError, OSError) as exc:
        logger.error("ingestion failed: %s", exc)
        return 1
    finally:
        conn.close()

    logger.info(
        "ingestion completed successfully rows=%s chapters=%s elapsed_ms=%s",
        stats.rows,
        stats.chapters,
        stats.elapsed_ms,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
