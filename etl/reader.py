# etl/reader.py
import codecs
import csv
import re
from typing import BinaryIO, Dict, Iterator, List, NamedTuple, Sequence

from etl.errors import MalformedInput

REQUIRED_COLUMNS = ("chapter", "verse", "sanskrit", "transliteration", "english", "hindi")

# ASCII digits only
_DIGITS_RE = re.compile(r"[0-9]+")


class VerseRow(NamedTuple):
    line: int
    chapter: int
    verse: int
    sanskrit: str
    transliteration: str
    english: str
    hindi: str


def resolve_columns(header: Sequence[str]) -> Dict[str, int]:
    """
    Map each required column name to its position in the header.

    Names are matched after trimming and lower-casing. Extra columns are
    ignored; when a name repeats, the first occurrence wins.
    """
    positions: Dict[str, int] = {}
    for idx, name in enumerate(header):
        positions.setdefault(name.strip().lower(), idx)

    missing = [col for col in REQUIRED_COLUMNS if col not in positions]
    if missing:
        raise MalformedInput(f"missing required column(s): {', '.join(missing)}", line=1)
    return {col: positions[col] for col in REQUIRED_COLUMNS}


def parse_positive_int(value: str, field: str, line: int) -> int:
    raw = (value or "").strip()
    if not _DIGITS_RE.fullmatch(raw):
        raise MalformedInput(f"{field} must be a positive integer, got {raw!r}", line=line)
    n = int(raw)
    if n <= 0:
        raise MalformedInput(f"{field} must be a positive integer, got {n}", line=line)
    return n


def _decoded_lines(stream: BinaryIO) -> Iterator[str]:
    """Decode one physical line at a time so codec errors carry their own line."""
    for number, raw in enumerate(stream, start=1):
        if number == 1 and raw.startswith(codecs.BOM_UTF8):
            raw = raw[len(codecs.BOM_UTF8):]
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInput(f"invalid UTF-8: {exc.reason}", line=number) from exc
        yield text


def iter_verse_rows(stream: BinaryIO) -> Iterator[VerseRow]:
    """
    Lazily parse a UTF-8 CSV byte stream into VerseRow tuples.

    The header is read on the first next() call. The iterator is single-pass:
    once exhausted, or after it raises, a new parse needs a reopened stream.
    """
    reader = csv.reader(_decoded_lines(stream), skipinitialspace=True)

    try:
        header = _next_record(reader)
    except StopIteration:
        raise MalformedInput("missing header row", line=1) from None
    columns = resolve_columns(header)
    width = len(header)

    while True:
        try:
            record = _next_record(reader)
        except StopIteration:
            return
        if not record:
            continue

        line = reader.line_num
        if len(record) < width:
            raise MalformedInput(f"expected {width} fields, got {len(record)}", line=line)

        yield VerseRow(
            line=line,
            chapter=parse_positive_int(record[columns["chapter"]], "chapter", line),
            verse=parse_positive_int(record[columns["verse"]], "verse", line),
            sanskrit=record[columns["sanskrit"]],
            transliteration=record[columns["transliteration"]],
            english=record[columns["english"]],
            hindi=record[columns["hindi"]],
        )


def _next_record(reader) -> List[str]:
    # StopIteration passes through
    try:
        return next(reader)
    except csv.Error as exc:
        raise MalformedInput(f"invalid CSV: {exc}", line=reader.line_num + 1) from exc
