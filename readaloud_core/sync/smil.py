"""
Sync Generator
==============

Maps audio timing records onto page blocks and renders EPUB3 media overlay
(SMIL) documents.

Sequencing follows block reading order, never start time. Anchors come from
``readaloud_core.text_layer`` so they match the page content documents.

SMIL Structure:
    <smil>
      <body>
        <seq epub:textref="page_1.xhtml">
          <par>
            <text src="page_1.xhtml#p1-heading-1"/>
            <audio src="audio/page_1.mp3" clipBegin="00:00:00.000" clipEnd="00:00:02.345"/>
          </par>
        </seq>
      </body>
    </smil>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from lxml import etree

from readaloud_core.models import AudioSync, PageStructure
from readaloud_core.text_layer import anchor_id, is_readable, readable_blocks

logger = logging.getLogger(__name__)

SMIL_NS = "http://www.w3.org/ns/SMIL"
EPUB_NS = "http://www.idpf.org/2007/ops"


def format_clock(seconds: float) -> str:
    """Seconds as an SMIL clock value ``HH:MM:SS.mmm``."""
    millis = int(round(max(0.0, seconds) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


@dataclass(frozen=True)
class SyncUnit:
    """One timed text/audio pair."""
    block_id: str
    anchor: str
    audio_file_path: str
    clip_begin: float
    clip_end: float

    @property
    def duration(self) -> float:
        return self.clip_end - self.clip_begin


class SyncGenerator:
    """
    Builds media overlay units and documents for pages.

    Example:
        generator = SyncGenerator()
        units = generator.build_units(page, syncs)
        smil = generator.render(page, units, "page_1.xhtml", {"a.mp3": "audio/a.mp3"})
    """

    def build_units(self, page: PageStructure, syncs: Sequence[AudioSync]) -> List[SyncUnit]:
        """
        Timed units for one page.

        Block-level syncs win over page-level ones. A page-level range is
        shared equally among the readable blocks.
        """
        page_syncs = [s for s in syncs if s.page_number == page.page_number]
        if not page_syncs or page.skip_read_aloud:
            return []

        block_syncs = [s for s in page_syncs if not s.is_page_level]
        if block_syncs:
            return self._block_units(page, block_syncs)
        return self._distributed_units(page, page_syncs)

    def _block_units(self, page: PageStructure, syncs: Sequence[AudioSync]) -> List[SyncUnit]:
        timed = []
        for sync in syncs:
            block = page.block_by_id(sync.block_id)
            if block is None:
                logger.warning(f"Page {page.page_number}: sync references unknown block {sync.block_id}")
                continue
            if not is_readable(block):
                logger.warning(f"Page {page.page_number}: sync references non-readable block {sync.block_id}")
                continue
            timed.append((block.reading_order, sync.start_time, block, sync))

        timed.sort(key=lambda item: (item[0], item[1]))
        return [
            SyncUnit(
                block_id=block.id,
                anchor=anchor_id(block),
                audio_file_path=sync.audio_file_path,
                clip_begin=sync.start_time,
                clip_end=sync.end_time,
            )
            for _, _, block, sync in timed
        ]

    def _distributed_units(self, page: PageStructure, syncs: Sequence[AudioSync]) -> List[SyncUnit]:
        blocks = readable_blocks(page)
        if not blocks:
            return []

        start = min(s.start_time for s in syncs)
        end = max(s.end_time for s in syncs)
        if end <= start:
            logger.warning(f"Page {page.page_number}: empty audio range {start}-{end}")
            return []
        audio = sorted(syncs, key=lambda s: s.start_time)[0].audio_file_path

        share = (end - start) / len(blocks)
        bounds = [round(start + i * share, 3) for i in range(len(blocks))] + [end]
        bounds[0] = start

        return [
            SyncUnit(
                block_id=block.id,
                anchor=anchor_id(block),
                audio_file_path=audio,
                clip_begin=bounds[i],
                clip_end=bounds[i + 1],
            )
            for i, block in enumerate(blocks)
        ]

    def render(self,
               page: PageStructure,
               units: Sequence[SyncUnit],
               page_href: str,
               audio_hrefs: Dict[str, str]) -> bytes:
        """Serialize units as an EPUB3 media overlay document."""
        smil = etree.Element(f"{{{SMIL_NS}}}smil", nsmap={None: SMIL_NS, "epub": EPUB_NS})
        smil.set("version", "3.0")
        body = etree.SubElement(smil, f"{{{SMIL_NS}}}body")
        seq = etree.SubElement(body, f"{{{SMIL_NS}}}seq")
        seq.set("id", f"seq_page_{page.page_number}")
        seq.set(f"{{{EPUB_NS}}}textref", page_href)
        seq.set(f"{{{EPUB_NS}}}type", "bodymatter")

        for index, unit in enumerate(units, start=1):
            par = etree.SubElement(seq, f"{{{SMIL_NS}}}par")
            par.set("id", f"par_{page.page_number}_{index}")
            text = etree.SubElement(par, f"{{{SMIL_NS}}}text")
            text.set("src", f"{page_href}#{unit.anchor}")
            audio = etree.SubElement(par, f"{{{SMIL_NS}}}audio")
            audio.set("src", audio_hrefs.get(unit.audio_file_path, unit.audio_file_path))
            audio.set("clipBegin", format_clock(unit.clip_begin))
            audio.set("clipEnd", format_clock(unit.clip_end))

        return etree.tostring(smil, xml_declaration=True, encoding="utf-8", pretty_print=True)


def total_duration(units: Sequence[SyncUnit]) -> float:
    return sum(unit.duration for unit in units)


def text_anchors(smil_document: bytes) -> List[str]:
    """``src`` values of every text element of a media overlay document."""
    root = etree.fromstring(smil_document)
    return [el.get("src") for el in root.iter(f"{{{SMIL_NS}}}text")]
