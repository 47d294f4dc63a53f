"""
EPUB Packager
=============

Fixed-layout EPUB3 packaging with optional media overlays.

Package layout:
    mimetype                      (first entry, stored)
    META-INF/container.xml
    OEBPS/content.opf
    OEBPS/nav.xhtml
    OEBPS/css/fixed-layout.css
    OEBPS/page_{n}.xhtml
    OEBPS/image/page_{n}.png
    OEBPS/page_{n}.smil           (pages with audio)
    OEBPS/audio/*                 (when audio is present)

Packaging is all-or-nothing: every document is built in memory, written to a
temporary file beside the target, and moved into place only on success.
"""

import io
import logging
import os
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image

from readaloud_core.config.settings import PackagingSettings
from readaloud_core.models import AudioSync, DocumentStructure, PageStructure
from readaloud_core.packaging.base import BasePackager, PackageResult
from readaloud_core.packaging.documents import (
    MIMETYPE,
    ManifestItem,
    PackageMetadata,
    SpineItem,
    container_xml,
    content_opf,
    fixed_layout_css,
    nav_xhtml,
)
from readaloud_core.packaging.xhtml import page_xhtml
from readaloud_core.sync.smil import SyncGenerator, total_duration
from readaloud_core.text_layer import image_href, page_href, smil_href

logger = logging.getLogger(__name__)

# Fixed entry timestamp so identical input gives identical archives
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

DEFAULT_ACCESSIBILITY = {
    "accessMode": ["textual", "visual"],
    "accessModeSufficient": ["textual,visual"],
    "accessibilityFeature": ["structuralNavigation", "readingOrder", "pageNavigation"],
    "accessibilityHazard": ["none"],
    "accessibilitySummary": (
        "Fixed-layout page images with a screen-reader accessible text layer "
        "in reading order."
    ),
}


def _modified_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EpubPackager(BasePackager):
    """
    Fixed-layout EPUB3 packager.

    Example:
        packager = EpubPackager()
        result = packager.package(
            structure,
            Path("output/job-1.epub"),
            page_images={1: png_bytes},
            audio_syncs=syncs,
            job_id="job-1",
        )
        if not result.success:
            print(result.summary())
    """

    def __init__(self,
                 settings: Optional[PackagingSettings] = None,
                 sync_generator: Optional[SyncGenerator] = None):
        self.settings = settings or PackagingSettings()
        self.sync_generator = sync_generator or SyncGenerator()

    @property
    def package_format(self) -> str:
        return "EPUB3"

    @property
    def supported_media_types(self) -> List[str]:
        return list(self.settings.audio_media_types)

    @property
    def css_href(self) -> str:
        return f"css/{self.settings.css_name}"

    # =========================================================================
    # PUBLIC
    # =========================================================================

    def package(self,
                structure: DocumentStructure,
                output_path: Path,
                page_images: Optional[Dict[int, bytes]] = None,
                audio_syncs: Optional[List[AudioSync]] = None,
                job_id: Optional[str] = None,
                **kwargs) -> PackageResult:
        output_path = Path(output_path)
        result = PackageResult(output_path=output_path)
        page_images = page_images or {}
        audio_syncs = audio_syncs or []

        try:
            entries = self.build_entries(structure, page_images, audio_syncs, job_id, result)
        except Exception as e:
            logger.error(f"EPUB build failed: {e}", exc_info=True)
            result.add_error(f"Build failed: {e}")
            return result

        if not result.success:
            return result

        try:
            self._write_atomic(output_path, entries)
        except Exception as e:
            logger.error(f"EPUB write failed: {e}", exc_info=True)
            result.add_error(f"Write failed: {e}")
            return result

        result.total_size_bytes = output_path.stat().st_size
        logger.info(
            f"Packaged {output_path.name}: {result.pages_packaged} page(s), "
            f"{result.overlays_packaged} overlay(s)"
        )
        return result

    def build_entries(self,
                      structure: DocumentStructure,
                      page_images: Dict[int, bytes],
                      audio_syncs: List[AudioSync],
                      job_id: Optional[str],
                      result: PackageResult) -> List[Tuple[str, bytes]]:
        """
        Build every archive entry in memory.

        Any page failing to build aborts the package: the error is recorded
        on ``result`` and an empty list is returned.
        """
        metadata = structure.metadata or {}
        title = metadata.get("title") or "Untitled"
        language = metadata.get("language") or self.settings.language
        job_id = job_id or metadata.get("job_id") or "unknown"

        pages = sorted(structure.pages, key=lambda p: p.page_number)
        entries: List[Tuple[str, bytes]] = [("META-INF/container.xml", container_xml())]
        manifest: List[ManifestItem] = [
            ManifestItem("nav", "nav.xhtml", "application/xhtml+xml", properties="nav"),
            ManifestItem("css", self.css_href, "text/css"),
        ]
        spine: List[SpineItem] = [SpineItem("nav", linear=False)]
        overlay_durations: Dict[str, float] = {}
        audio_hrefs = self._audio_hrefs(audio_syncs)
        used_audio: Dict[str, str] = {}

        for page in pages:
            n = page.page_number
            image_bytes = page_images.get(n)
            img_href = None
            if image_bytes:
                img_href = image_href(n, self.settings.image_format)
                entries.append((f"OEBPS/{img_href}", image_bytes))
                manifest.append(ManifestItem(
                    f"img_{n}", img_href, f"image/{self.settings.image_format}",
                    properties="cover-image" if result.images_packaged == 0 else None,
                ))
                result.images_packaged += 1

            try:
                document = page_xhtml(
                    page,
                    title=f"{title} - Page {n}",
                    language=language,
                    css_href=self.css_href,
                    image_href=img_href,
                    viewport=self._viewport(page, image_bytes),
                )
            except Exception as e:
                result.add_error(f"Page {n}: content document failed: {e}")
                return []

            page_item = ManifestItem(f"page_{n}", page_href(n), "application/xhtml+xml")
            units = self.sync_generator.build_units(page, audio_syncs) if audio_syncs else []
            if units:
                smil_id = f"smil_{n}"
                smil = self.sync_generator.render(page, units, page_href(n), audio_hrefs)
                entries.append((f"OEBPS/{smil_href(n)}", smil))
                manifest.append(ManifestItem(smil_id, smil_href(n), "application/smil+xml"))
                page_item.media_overlay = smil_id
                overlay_durations[smil_id] = total_duration(units)
                result.overlays_packaged += 1
                for unit in units:
                    used_audio[unit.audio_file_path] = audio_hrefs[unit.audio_file_path]

            entries.append((f"OEBPS/{page_href(n)}", document))
            manifest.append(page_item)
            spine.append(SpineItem(page_item.id))
            result.pages_packaged += 1

        for index, (source, href) in enumerate(sorted(used_audio.items(), key=lambda kv: kv[1]), start=1):
            media_type = self.settings.audio_media_types.get(Path(source).suffix.lower())
            if media_type is None:
                result.add_error(f"Unsupported audio format: {Path(source).name}")
                return []
            try:
                data = Path(source).read_bytes()
            except OSError as e:
                result.add_error(f"Audio file unreadable: {Path(source).name}: {e}")
                return []
            entries.append((f"OEBPS/{href}", data))
            manifest.append(ManifestItem(f"audio_{index}", href, media_type))
            result.audio_files_packaged += 1

        accessibility = dict(DEFAULT_ACCESSIBILITY)
        accessibility.update(metadata.get("accessibility") or {})
        if overlay_durations:
            features = list(accessibility.get("accessibilityFeature", []))
            if "synchronizedAudioText" not in features:
                features.append("synchronizedAudioText")
            accessibility["accessibilityFeature"] = features

        package_meta = PackageMetadata(
            identifier=f"conversion-job-{job_id}",
            title=title,
            language=language,
            modified=metadata.get("modified") or _modified_now(),
            creator=metadata.get("author"),
            fixed_layout=result.images_packaged > 0,
            active_class=self.settings.active_class,
            overlay_durations=overlay_durations,
            accessibility=accessibility,
        )

        toc = [
            {"title": e["title"], "page_number": e["page_number"], "anchor": e.get("anchor")}
            for e in structure.table_of_contents
        ]
        entries.append(("OEBPS/nav.xhtml", nav_xhtml(
            title, language, toc, [p.page_number for p in pages], page_href,
        )))
        entries.append((f"OEBPS/{self.css_href}", fixed_layout_css(self.settings.active_class)))
        entries.append(("OEBPS/content.opf", content_opf(package_meta, manifest, spine)))
        result.metadata["identifier"] = package_meta.identifier
        return entries

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _audio_hrefs(audio_syncs: List[AudioSync]) -> Dict[str, str]:
        """Unique ``audio/`` href for every distinct audio source path."""
        hrefs: Dict[str, str] = {}
        taken = set()
        for sync in audio_syncs:
            source = sync.audio_file_path
            if not source or source in hrefs:
                continue
            name = Path(source).name
            href = f"audio/{name}"
            counter = 1
            while href in taken:
                counter += 1
                href = f"audio/{Path(name).stem}_{counter}{Path(name).suffix}"
            taken.add(href)
            hrefs[source] = href
        return hrefs

    def _viewport(self, page: PageStructure, image_bytes: Optional[bytes]) -> Tuple[int, int]:
        if image_bytes:
            with Image.open(io.BytesIO(image_bytes)) as img:
                return img.size
        scale = self.settings.dpi / 72.0
        return int(round(page.width * scale)), int(round(page.height * scale))

    @staticmethod
    def _write_atomic(output_path: Path, entries: List[Tuple[str, bytes]]) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = output_path.with_name(f".{output_path.name}.tmp")
        try:
            with zipfile.ZipFile(tmp_path, 'w', zipfile.ZIP_DEFLATED) as zf:
                mimetype = zipfile.ZipInfo("mimetype", date_time=ZIP_DATE_TIME)
                mimetype.compress_type = zipfile.ZIP_STORED
                zf.writestr(mimetype, MIMETYPE)
                for name, data in entries:
                    info = zipfile.ZipInfo(name, date_time=ZIP_DATE_TIME)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    zf.writestr(info, data)
            os.replace(tmp_path, output_path)
        except Exception:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
