"""
Package Verification
====================

Checks run against a written EPUB archive during QA review.
"""

import logging
import posixpath
import zipfile
from pathlib import Path
from typing import Dict, List, Set

from lxml import etree

from readaloud_core.packaging.documents import MIMETYPE
from readaloud_core.packaging.xhtml import element_ids
from readaloud_core.sync.smil import text_anchors

logger = logging.getLogger(__name__)

CONTENT_ROOT = "OEBPS"


def verify_container(epub_path: Path) -> List[str]:
    """The mimetype entry must come first, stored, with the EPUB media type."""
    problems: List[str] = []
    with zipfile.ZipFile(epub_path) as zf:
        infos = zf.infolist()
        if not infos or infos[0].filename != "mimetype":
            problems.append("mimetype is not the first entry")
        else:
            if infos[0].compress_type != zipfile.ZIP_STORED:
                problems.append("mimetype entry is compressed")
            if zf.read("mimetype") != MIMETYPE:
                problems.append("mimetype content is wrong")
        if "META-INF/container.xml" not in zf.namelist():
            problems.append("META-INF/container.xml is missing")
    return problems


def verify_sync_anchors(epub_path: Path) -> List[str]:
    """
    Every text anchor of every media overlay must resolve to an element id
    in the referenced content document.

    Returns:
        List of problems, empty when all anchors resolve
    """
    problems: List[str] = []
    ids_by_document: Dict[str, Set[str]] = {}

    with zipfile.ZipFile(epub_path) as zf:
        names = set(zf.namelist())
        for name in sorted(n for n in names if n.endswith(".smil")):
            base = posixpath.dirname(name)
            try:
                anchors = text_anchors(zf.read(name))
            except etree.XMLSyntaxError as e:
                problems.append(f"{name}: not well-formed ({e})")
                continue

            for src in anchors:
                href, _, fragment = (src or "").partition("#")
                document = posixpath.normpath(posixpath.join(base, href))
                if document not in names:
                    problems.append(f"{name}: {href} not in package")
                    continue
                if document not in ids_by_document:
                    ids_by_document[document] = set(element_ids(zf.read(document)))
                if fragment not in ids_by_document[document]:
                    problems.append(f"{name}: #{fragment} not found in {href}")

    if problems:
        logger.warning(f"{len(problems)} unresolved media overlay anchor(s) in {Path(epub_path).name}")
    return problems
