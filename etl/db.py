# etl/db.py
import logging
from contextlib import contextmanager
from typing import Dict, Mapping, Optional

import psycopg2
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from etl.config import DB_CONNECT_TIMEOUT_SEC, MAX_RETRY
from etl.errors import ConstraintViolation, TransientIOError, WriteError

logger = logging.getLogger(__name__)

ENSURE_CHAPTER_SQL = """
INSERT INTO chapters
(id, name_en, name_hi, summary_en, summary_hi, verse_count, created_at, updated_at)
VALUES (%s, %s, '', '', '', 0, now(), now())
ON CONFLICT (id) DO NOTHING;
"""

UPSERT_VERSE_SQL = """
INSERT INTO verses
(id, chapter_id, verse_number, sanskrit, transliteration, english, hindi, created_at, updated_at)
VALUES (%s, %s, %s, %s, %s, %s, %s, now(), now())
ON CONFLICT (chapter_id, verse_number)
DO UPDATE SET
  sanskrit = EXCLUDED.sanskrit,
  transliteration = EXCLUDED.transliteration,
  english = EXCLUDED.english,
  hindi = EXCLUDED.hindi,
  updated_at = now()
RETURNING id;
"""

# verse_count is the number of verse rows visible to this transaction, not
# the number of source rows seen.
RECONCILE_VERSE_COUNT_SQL = """
UPDATE chapters
SET verse_count = (SELECT COUNT(*) FROM verses WHERE chapter_id = %s),
    updated_at = now()
WHERE id = %s
RETURNING verse_count;
"""

SET_STATEMENT_TIMEOUT_SQL = "SET LOCAL statement_timeout = %s"


@retry(
    stop=stop_after_attempt(MAX_RETRY),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type(psycopg2.OperationalError),
    reraise=True,
)
def get_conn(dsn: str):
    conn = psycopg2.connect(dsn, connect_timeout=DB_CONNECT_TIMEOUT_SEC)
    conn.autocommit = False
    return conn


def apply_schema(conn, path: str) -> None:
    with open(path, encoding="utf-8") as f:
        ddl = f.read()
    with conn.cursor() as cur:
        cur.execute(ddl)


def set_statement_timeout(conn, seconds: Optional[float]) -> None:
    """Bound every statement of the current transaction."""
    if seconds is None:
        return
    ms = max(1, int(seconds * 1000))
    with conn.cursor() as cur:
        cur.execute(SET_STATEMENT_TIMEOUT_SQL, (ms,))


@contextmanager
def _write_errors(chapter: int, verse: Optional[int] = None):
    try:
        yield
    except psycopg2.IntegrityError as exc:
        raise ConstraintViolation(_pg_message(exc), chapter=chapter, verse=verse) from exc
    except psycopg2.OperationalError as exc:
        raise TransientIOError(_pg_message(exc), chapter=chapter, verse=verse) from exc
    except psycopg2.Error as exc:
        raise WriteError(_pg_message(exc), chapter=chapter, verse=verse) from exc


def _pg_message(exc: psycopg2.Error) -> str:
    return (getattr(exc, "pgerror", None) or str(exc) or exc.__class__.__name__).strip()


def ensure_chapter(conn, chapter_id: int, name: str) -> None:
    """Insert the chapter if it is absent; an existing chapter is left untouched."""
    with _write_errors(chapter_id):
        with conn.cursor() as cur:
            cur.execute(ENSURE_CHAPTER_SQL, (chapter_id, name))


def upsert_verse(
    conn,
    verse_id: str,
    chapter_id: int,
    verse_number: int,
    sanskrit: str,
    transliteration: str,
    english: str,
    hindi: str,
) -> str:
    """
    Insert a verse keyed by (chapter_id, verse_number), or overwrite the
    four text fields of the existing row. Returns the stored verse id, which
    is the existing one on conflict.
    """
    params = (
        verse_id,
        chapter_id,
        verse_number,
        sanskrit or "",
        transliteration or "",
        english or "",
        hindi or "",
    )
    with _write_errors(chapter_id, verse_number):
        with conn.cursor() as cur:
            cur.execute(UPSERT_VERSE_SQL, params)
            row = cur.fetchone()
    return row[0] if row else verse_id


def reconcile_verse_counts(conn, counts: Mapping[int, int]) -> Dict[int, int]:
    """
    Set verse_count for every chapter written in this pass.

    Must be the last write of the transaction. Returns the stored count per
    chapter.
    """
    stored: Dict[int, int] = {}
    for chapter_id, seen in sorted(counts.items()):
        with _write_errors(chapter_id):
            with conn.cursor() as cur:
                cur.execute(RECONCILE_VERSE_COUNT_SQL, (chapter_id, chapter_id))
                row = cur.fetchone()
        if row is None:
            raise WriteError("chapter row missing during reconciliation", chapter=chapter_id)
        stored[chapter_id] = row[0]
        if row[0] != seen:
            logger.warning(
                "RECONCILE chapter=%s rows_in_source=%s verse_count=%s",
                chapter_id,
                seen,
                row[0],
            )
    return stored
