# etl/loader.py
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import psycopg2

from etl.counts import VerseCountTracker
from etl.db import ensure_chapter, reconcile_verse_counts, set_statement_timeout, upsert_verse
from etl.deadline import Deadline
from etl.errors import TransientIOError, WriteError
from etl.reader import iter_verse_rows

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


@dataclass(frozen=True)
class LoadStats:
    rows: int
    chapters: int
    elapsed_ms: int
    verse_counts: Dict[int, int] = field(default_factory=dict)


def chapter_display_name(chapter_id: int) -> str:
    return f"Chapter {chapter_id}"


def new_verse_id() -> str:
    return str(uuid.uuid4())


def load_from_source(
    conn,
    csv_path: str,
    deadline: Optional[Deadline] = None,
    id_factory: Callable[[], str] = new_verse_id,
) -> LoadStats:
    """
    Ingest one CSV file into chapters/verses as a single transaction.

    Rows are upserted one at a time; after the last row every chapter seen
    in the file gets its verse_count reconciled, then the transaction
    commits. Any failure, including a deadline hit or Ctrl-C, rolls the
    whole pass back and re-raises.
    """
    deadline = deadline or Deadline()
    deadline.check()
    start = time.perf_counter()
    tracker = VerseCountTracker()

    with open(csv_path, "rb") as f:
        try:
            set_statement_timeout(conn, deadline.remaining())

            for row in iter_verse_rows(f):
                deadline.check(row.line)

                if row.chapter not in tracker:
                    ensure_chapter(conn, row.chapter, chapter_display_name(row.chapter))
                upsert_verse(
                    conn,
                    id_factory(),
                    row.chapter,
                    row.verse,
                    row.sanskrit,
                    row.transliteration,
                    row.english,
                    row.hindi,
                )
                tracker.increment(row.chapter)

                if tracker.total() % PROGRESS_EVERY == 0:
                    logger.info("PROGRESS rows=%s line=%s", tracker.total(), row.line)

            deadline.check()
            stored = reconcile_verse_counts(conn, tracker.as_dict())

            deadline.check()
            _commit(conn)
        except BaseException as exc:
            _rollback(conn, exc)
            raise

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    for chapter_id, count in sorted(stored.items()):
        logger.info("OK chapter=%s verses=%s", chapter_id, count)
    return LoadStats(
        rows=tracker.total(),
        chapters=len(tracker),
        elapsed_ms=elapsed_ms,
        verse_counts=stored,
    )


def _commit(conn) -> None:
    try:
        conn.commit()
    except psycopg2.OperationalError as exc:
        raise TransientIOError(f"commit failed: {exc}") from exc
    except psycopg2.Error as exc:
        raise WriteError(f"commit failed: {exc}") from exc


def _rollback(conn, cause: BaseException) -> None:
    try:
        conn.rollback()
    except psycopg2.Error as exc:
        # the caller re-raises the first failure
        logger.error("ROLLBACK failed err=%s cause=%r", exc, cause)
        return
    logger.warning("ROLLBACK err=%s", cause)
