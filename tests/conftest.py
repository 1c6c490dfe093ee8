import copy

import psycopg2
import pytest

from api import config as api_config
from api import store
from etl import db as etl_db

HEADER = "chapter,verse,sanskrit,transliteration,english,hindi"


class FakeDatabase:
    """
    In-memory stand-in for the chapters/verses tables.

    Understands exactly the statements the loader and the read-side lookups
    issue. Each connection works on a private copy of the tables until
    commit(), so rollback() restores the committed state.
    """

    def __init__(self):
        self.chapters = {}
        self.verses = {}
        self.statements = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on = None

    def add_chapter(self, chapter_id, name_en, name_hi="", summary_en="", summary_hi="", verse_count=0):
        self.chapters[chapter_id] = {
            "id": chapter_id,
            "name_en": name_en,
            "name_hi": name_hi,
            "summary_en": summary_en,
            "summary_hi": summary_hi,
            "verse_count": verse_count,
        }

    def snapshot(self):
        return copy.deepcopy((self.chapters, self.verses))

    def connect(self):
        return FakeConnection(self)


class FakeCursor:
    def __init__(self, conn):
        self._conn = conn
        self._rows = []

    def execute(self, query, params=None):
        self._rows = self._conn._execute(query, params)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self, database):
        self.database = database
        self.closed = 0
        self.autocommit = False
        self._tx = None

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        if self._tx is not None:
            self.database.chapters, self.database.verses = self._tx
            self._tx = None
        self.database.commits += 1

    def rollback(self):
        self._tx = None
        self.database.rollbacks += 1

    def close(self):
        self.closed = 1

    def _tables(self):
        if self._tx is None:
            self._tx = copy.deepcopy((self.database.chapters, self.database.verses))
        return self._tx

    def _execute(self, query, params):
        db = self.database
        db.statements.append(query)
        if db.fail_on is not None:
            exc = db.fail_on(query, params)
            if exc is not None:
                raise exc
        chapters, verses = self._tables()

        if query == etl_db.SET_STATEMENT_TIMEOUT_SQL:
            return []

        if query == etl_db.ENSURE_CHAPTER_SQL:
            chapter_id, name = params
            if chapter_id not in chapters:
                chapters[chapter_id] = {
                    "id": chapter_id,
                    "name_en": name,
                    "name_hi": "",
                    "summary_en": "",
                    "summary_hi": "",
                    "verse_count": 0,
                }
            return []

        if query == etl_db.UPSERT_VERSE_SQL:
            verse_id, chapter_id, verse_number, sanskrit, transliteration, english, hindi = params
            if chapter_id not in chapters:
                raise psycopg2.IntegrityError('insert on table "verses" violates foreign key constraint')
            existing = verses.get((chapter_id, verse_number))
            texts = {
                "sanskrit": sanskrit,
                "transliteration": transliteration,
                "english": english,
                "hindi": hindi,
            }
            if existing is not None:
                existing.update(texts)
                return [(existing["id"],)]
            verses[(chapter_id, verse_number)] = {
                "id": verse_id,
                "chapter_id": chapter_id,
                "verse_number": verse_number,
                **texts,
            }
            return [(verse_id,)]

        if query == etl_db.RECONCILE_VERSE_COUNT_SQL:
            chapter_id, _ = params
            if chapter_id not in chapters:
                return []
            n = sum(1 for (c, _v) in verses if c == chapter_id)
            chapters[chapter_id]["verse_count"] = n
            return [(n,)]

        if query == store.LIST_CHAPTERS_SQL:
            return [dict(chapters[k]) for k in sorted(chapters)]

        if query == store.GET_CHAPTER_SQL:
            (chapter_id,) = params
            return [dict(chapters[chapter_id])] if chapter_id in chapters else []

        if query == store.LIST_CHAPTER_VERSES_SQL:
            (chapter_id,) = params
            return [dict(verses[k]) for k in sorted(verses) if k[0] == chapter_id]

        if query == store.GET_VERSE_SQL:
            key = tuple(params)
            return [dict(verses[key])] if key in verses else []

        raise AssertionError(f"unexpected SQL: {query}")


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def conn(fake_db):
    return fake_db.connect()


@pytest.fixture
def write_csv(tmp_path):
    counter = {"n": 0}

    def _write(*rows, header=HEADER):
        counter["n"] += 1
        path = tmp_path / f"source_{counter['n']}.csv"
        lines = ([header] if header is not None else []) + list(rows)
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture(autouse=True)
def _event_log(tmp_path, monkeypatch):
    path = tmp_path / "logs" / "events.log"
    monkeypatch.setattr(api_config, "EVENT_LOG_PATH", str(path))
    return path
