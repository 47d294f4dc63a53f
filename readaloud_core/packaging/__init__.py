"""
Packaging
=========

Fixed-layout EPUB3 creation.

Components:
- BasePackager: Abstract base class for packagers
- PackageResult: Container for packaging results
- EpubPackager: Fixed-layout EPUB3 with media overlays
- verify_container / verify_sync_anchors: checks on a written archive
"""

from readaloud_core.packaging.base import (
    BasePackager,
    PackageResult,
)

from readaloud_core.packaging.epub_packager import EpubPackager

from readaloud_core.packaging.verify import (
    verify_container,
    verify_sync_anchors,
)

__all__ = [
    "BasePackager",
    "PackageResult",
    "EpubPackager",
    "verify_container",
    "verify_sync_anchors",
]
