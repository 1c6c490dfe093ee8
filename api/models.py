from typing import List
from pydantic import BaseModel


class ChapterItem(BaseModel):
    id: int
    name_en: str
    name_hi: str = ""
    summary_en: str = ""
    summary_hi: str = ""
    verse_count: int


class VerseItem(BaseModel):
    id: str
    chapter_id: int
    verse_number: int
    sanskrit: str = ""
    transliteration: str = ""
    english: str = ""
    hindi: str = ""


class ChaptersResponse(BaseModel):
    chapters: List[ChapterItem]


class ChapterDetailResponse(BaseModel):
    chapter: ChapterItem
    verses: List[VerseItem]


class ChapterVersesResponse(BaseModel):
    chapter: int
    verses: List[VerseItem]


class SearchResponse(BaseModel):
    results: List[VerseItem]

