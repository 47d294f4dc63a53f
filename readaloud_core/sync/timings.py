"""
Word Timings
============

Turns word-level timings from a text-to-speech engine into block-level
audio syncs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from readaloud_core.models import AudioSync, TextBlock

logger = logging.getLogger(__name__)

# Duration given to the final word when the engine reports no end time
LAST_WORD_TAIL = 0.25


@dataclass
class WordTiming:
    word: str
    start_time: float
    end_time: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordTiming":
        start = data.get("start_time", data.get("startTimeSec", 0.0))
        end = data.get("end_time", data.get("endTimeSec"))
        return cls(
            word=str(data.get("word", "")),
            start_time=float(start or 0.0),
            end_time=float(end) if end is not None else None,
        )


def _complete_end_times(timings: Sequence[WordTiming]) -> List[WordTiming]:
    completed = []
    for i, timing in enumerate(timings):
        end = timing.end_time
        if end is None:
            if i + 1 < len(timings):
                end = timings[i + 1].start_time
            else:
                end = timing.start_time + LAST_WORD_TAIL
        completed.append(WordTiming(timing.word, timing.start_time, end))
    return completed


def map_word_timings(blocks: Sequence[TextBlock],
                     timings: Sequence[WordTiming],
                     audio_path: str,
                     page_number: int) -> List[AudioSync]:
    """
    Consume words block by block, in the given (reading) order.

    Each block takes as many timings as it has words. Mapping stops when the
    timings run out.
    """
    words = [t for t in timings if t.word.strip()]
    if not words:
        return []
    words = _complete_end_times(words)

    syncs: List[AudioSync] = []
    index = 0
    for block in blocks:
        count = len(block.text.split())
        if count == 0:
            continue
        if index >= len(words):
            break
        first = words[index]
        last = words[min(index + count, len(words)) - 1]
        syncs.append(AudioSync(
            page_number=page_number,
            block_id=block.id,
            start_time=round(first.start_time, 3),
            end_time=round(last.end_time, 3),
            audio_file_path=audio_path,
        ))
        index += count

    if index < len(words):
        logger.warning(f"Page {page_number}: {len(words) - index} timed word(s) left unmapped")
    return syncs


def parse_timings(data: Any, audio_path: Optional[str] = None) -> Tuple[List[AudioSync], Dict[int, List[WordTiming]]]:
    """
    Read a timings document.

    Accepted shapes:
        [{"page_number": 1, "start_time": 0.0, "end_time": 4.2, "block_id": ...}, ...]
        {"syncs": [...], "word_timings": {"1": [{"word": "Horses", "start_time": 0.0}, ...]}}
        {"1": [{"word": ..., "start_time": ...}, ...]}

    Syncs without an ``audio_file_path`` use ``audio_path``.

    Raises:
        ValueError: If the document has none of these shapes
    """
    syncs: List[AudioSync] = []
    word_timings: Dict[int, List[WordTiming]] = {}

    if isinstance(data, list):
        sync_items, timing_items = data, {}
    elif isinstance(data, dict) and ("syncs" in data or "word_timings" in data):
        sync_items, timing_items = data.get("syncs") or [], data.get("word_timings") or {}
    elif isinstance(data, dict):
        sync_items, timing_items = [], data
    else:
        raise ValueError("Timings must be a list of syncs or an object")

    for item in sync_items:
        item = dict(item)
        if not item.get("audio_file_path"):
            if not audio_path:
                raise ValueError("Sync has no audio file and no audio was supplied")
            item["audio_file_path"] = audio_path
        syncs.append(AudioSync.from_dict(item))

    for page, items in timing_items.items():
        try:
            page_number = int(page)
        except (TypeError, ValueError):
            raise ValueError(f"Word timings key is not a page number: {page!r}")
        word_timings[page_number] = [WordTiming.from_dict(t) for t in items]

    return syncs, word_timings
