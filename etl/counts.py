# etl/counts.py
from typing import Dict, Iterator, Tuple


class VerseCountTracker:
    """
    Running count of verses written per chapter during one ingestion pass.

    Created empty for every pass and discarded afterwards. There is no
    decrement: a pass only inserts or overwrites verses.
    """

    def __init__(self):
        self._counts: Dict[int, int] = {}

    def increment(self, chapter_id: int) -> int:
        self._counts[chapter_id] = self._counts.get(chapter_id, 0) + 1
        return self._counts[chapter_id]

    def get(self, chapter_id: int) -> int:
        return self._counts.get(chapter_id, 0)

    def items(self) -> Iterator[Tuple[int, int]]:
        return iter(sorted(self._counts.items()))

    def total(self) -> int:
        return sum(self._counts.values())

    def as_dict(self) -> Dict[int, int]:
        return dict(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, chapter_id: int) -> bool:
        return chapter_id in self._counts
