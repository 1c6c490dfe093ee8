# etl/errors.py
"""
Ingestion error hierarchy.

Every failure of an ingestion pass is an IngestError subclass carrying the
context needed to diagnose it (source line, or chapter/verse key) without
re-running the load.
"""
from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion failures."""


class MalformedInput(IngestError):
    """Bad header, missing column, short row or non-numeric key field."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line
        if line is None:
            super().__init__(message)
        else:
            super().__init__(f"line {line}: {message}")


class WriteError(IngestError):
    """A statement failed while writing a chapter or verse."""

    def __init__(self, message: str, chapter: Optional[int] = None, verse: Optional[int] = None):
        self.message = message
        self.chapter = chapter
        self.verse = verse
        super().__init__(f"{_key(chapter, verse)}: {message}" if chapter is not None else message)


class ConstraintViolation(WriteError):
    """Uniqueness or foreign-key failure not resolved by upsert semantics."""


class TransientIOError(WriteError):
    """Connection loss or statement timeout reported by the database."""


class IngestTimeout(IngestError):
    """The pass ran past its deadline."""


class IngestCancelled(IngestError):
    """The pass was cancelled by the caller."""


def _key(chapter: Optional[int], verse: Optional[int]) -> str:
    if verse is None:
        return f"chapter {chapter}"
    return f"verse {chapter}.{verse}"
