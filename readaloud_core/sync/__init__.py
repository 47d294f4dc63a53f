"""
Audio Synchronization
=====================

Components:
- SyncGenerator: block/page audio syncs -> SMIL media overlays
- map_word_timings: TTS word timings -> block-level syncs
- parse_timings: timings documents (syncs and/or word timings)
"""

from readaloud_core.sync.smil import (
    SyncGenerator,
    SyncUnit,
    format_clock,
    text_anchors,
    total_duration,
)

from readaloud_core.sync.timings import (
    WordTiming,
    map_word_timings,
    parse_timings,
)

__all__ = [
    "SyncGenerator",
    "SyncUnit",
    "format_clock",
    "text_anchors",
    "total_duration",
    "WordTiming",
    "map_word_timings",
    "parse_timings",
]
