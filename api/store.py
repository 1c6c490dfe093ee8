from typing import Dict, List, Optional, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100

# lang code -> verses column
SEARCH_COLUMNS = {
    "en": "english",
    "hi": "hindi",
}

CHAPTER_COLUMNS = """
    id,
    name_en,
    COALESCE(name_hi, '') AS name_hi,
    COALESCE(summary_en, '') AS summary_en,
    COALESCE(summary_hi, '') AS summary_hi,
    verse_count
"""

VERSE_COLUMNS = """
    id,
    chapter_id,
    verse_number,
    COALESCE(sanskrit, '') AS sanskrit,
    COALESCE(transliteration, '') AS transliteration,
    COALESCE(english, '') AS english,
    COALESCE(hindi, '') AS hindi
"""

LIST_CHAPTERS_SQL = f"SELECT {CHAPTER_COLUMNS} FROM chapters ORDER BY id"

GET_CHAPTER_SQL = f"SELECT {CHAPTER_COLUMNS} FROM chapters WHERE id = %s"

LIST_CHAPTER_VERSES_SQL = f"""
SELECT {VERSE_COLUMNS}
FROM verses
WHERE chapter_id = %s
ORDER BY verse_number
"""

GET_VERSE_SQL = f"""
SELECT {VERSE_COLUMNS}
FROM verses
WHERE chapter_id = %s AND verse_number = %s
"""

SEARCH_VERSES_SQL = """
SELECT {columns}
FROM verses
WHERE {search_column} ILIKE %s
ORDER BY chapter_id, verse_number
LIMIT %s
"""

RANDOM_VERSE_SQL = f"""
SELECT {VERSE_COLUMNS}
FROM verses
ORDER BY random()
LIMIT 1
"""


class StoreError(Exception):
    pass


class NotFound(StoreError):
    pass


class UnsupportedLanguage(StoreError, ValueError):
    pass


class StoreUnavailable(StoreError):
    pass


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_SEARCH_LIMIT
    return min(limit, MAX_SEARCH_LIMIT)


def like_pattern(query: str) -> str:
    """Substring pattern for ILIKE with wildcard characters taken literally."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _fetch_all(conn, sql: str, params: tuple, what: str) -> List[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            return [dict(row) for row in cur.fetchall()]
    except psycopg2.Error as exc:
        raise StoreError(f"{what}: {exc}") from exc


def _fetch_one(conn, sql: str, params: tuple, what: str) -> Optional[dict]:
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
    except psycopg2.Error as exc:
        raise StoreError(f"{what}: {exc}") from exc
    return dict(row) if row is not None else None


def list_chapters(conn) -> List[dict]:
    return _fetch_all(conn, LIST_CHAPTERS_SQL, (), "list chapters")


def get_chapter_with_verses(conn, chapter_id: int) -> Tuple[dict, List[dict]]:
    chapter = _fetch_one(conn, GET_CHAPTER_SQL, (chapter_id,), "get chapter")
    if chapter is None:
        raise NotFound(f"chapter {chapter_id} not found")
    verses = _fetch_all(conn, LIST_CHAPTER_VERSES_SQL, (chapter_id,), "list verses")
    return chapter, verses


def get_verse(conn, chapter_id: int, verse_number: int) -> dict:
    verse = _fetch_one(conn, GET_VERSE_SQL, (chapter_id, verse_number), "get verse")
    if verse is None:
        raise NotFound(f"verse {chapter_id}.{verse_number} not found")
    return verse


def search_verses(conn, query: str, lang: str = "en", limit: Optional[int] = None) -> List[dict]:
    """
    Case-insensitive substring search on the English or Hindi text.

    `limit` falls back to 20 when missing or non-positive and is capped at
    100. Results come back in (chapter, verse) order.
    """
    column = SEARCH_COLUMNS.get(lang)
    if column is None:
        raise UnsupportedLanguage(f"unsupported language {lang!r}; expected one of {sorted(SEARCH_COLUMNS)}")
    sql = SEARCH_VERSES_SQL.format(columns=VERSE_COLUMNS, search_column=column)
    return _fetch_all(conn, sql, (like_pattern(query or ""), clamp_limit(limit)), "search verses")


def random_verse(conn) -> dict:
    verse = _fetch_one(conn, RANDOM_VERSE_SQL, (), "random verse")
    if verse is None:
        raise NotFound("no verses loaded")
    return verse


def ping(conn, timeout_sec: float = 2.0) -> None:
    ms = max(1, int(timeout_sec * 1000))
    try:
        with conn.cursor() as cur:
            cur.execute("SET LOCAL statement_timeout = %s", (ms,))
            cur.execute("SELECT 1")
            cur.fetchone()
    except psycopg2.Error as exc:
        raise StoreUnavailable(f"ping: {exc}") from exc


def verse_counts(conn) -> Dict[int, int]:
    """Actual number of verse rows per chapter, for consistency checks."""
    rows = _fetch_all(
        conn,
        "SELECT chapter_id, COUNT(*) AS n FROM verses GROUP BY chapter_id ORDER BY chapter_id",
        (),
        "verse counts",
    )
    return {row["chapter_id"]: row["n"] for row in rows}
