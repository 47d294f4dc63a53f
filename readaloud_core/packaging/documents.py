"""
EPUB Package Documents
======================

Builders for the documents every fixed-layout EPUB3 carries:

- META-INF/container.xml
- OEBPS/content.opf (metadata, manifest, spine)
- OEBPS/nav.xhtml (toc and page-list)
- OEBPS/css/fixed-layout.css

All builders are pure: same input, same bytes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lxml import etree

from readaloud_core.sync.smil import format_clock

XHTML_NS = "http://www.w3.org/1999/xhtml"
EPUB_NS = "http://www.idpf.org/2007/ops"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"

PACKAGE_PREFIXES = (
    "rendition: http://www.idpf.org/vocab/rendition/# "
    "media: http://www.idpf.org/epub/vocab/overlays/# "
    "schema: http://schema.org/"
)

MIMETYPE = b"application/epub+zip"
OPF_PATH = "OEBPS/content.opf"


def serialize(root: etree._Element, doctype: Optional[str] = None) -> bytes:
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="utf-8",
        pretty_print=True,
        doctype=doctype,
    )


def xhtml_root(language: str) -> etree._Element:
    html = etree.Element(f"{{{XHTML_NS}}}html", nsmap={None: XHTML_NS, "epub": EPUB_NS})
    html.set("lang", language)
    html.set(XML_LANG, language)
    return html


def h(parent: etree._Element, tag: str, text: Optional[str] = None, **attrs) -> etree._Element:
    """Append an XHTML child element."""
    element = etree.SubElement(parent, f"{{{XHTML_NS}}}{tag}")
    for key, value in attrs.items():
        element.set(key.rstrip("_").replace("_", "-"), str(value))
    if text is not None:
        element.text = text
    return element


# =============================================================================
# CONTAINER
# =============================================================================

def container_xml() -> bytes:
    root = etree.Element(f"{{{CONTAINER_NS}}}container", nsmap={None: CONTAINER_NS})
    root.set("version", "1.0")
    rootfiles = etree.SubElement(root, f"{{{CONTAINER_NS}}}rootfiles")
    rootfile = etree.SubElement(rootfiles, f"{{{CONTAINER_NS}}}rootfile")
    rootfile.set("full-path", OPF_PATH)
    rootfile.set("media-type", "application/oebps-package+xml")
    return serialize(root)


# =============================================================================
# PACKAGE DOCUMENT
# =============================================================================

@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: Optional[str] = None
    media_overlay: Optional[str] = None


@dataclass
class SpineItem:
    idref: str
    linear: bool = True
    properties: Optional[str] = None


@dataclass
class PackageMetadata:
    identifier: str
    title: str
    language: str
    modified: str
    creator: Optional[str] = None
    fixed_layout: bool = False
    active_class: Optional[str] = None
    # smil manifest id -> seconds; empty when there is no audio
    overlay_durations: Dict[str, float] = field(default_factory=dict)
    accessibility: Dict[str, Any] = field(default_factory=dict)


def _meta(metadata: etree._Element, prop: str, value: str, refines: Optional[str] = None) -> None:
    meta = etree.SubElement(metadata, f"{{{OPF_NS}}}meta")
    meta.set("property", prop)
    if refines:
        meta.set("refines", refines)
    meta.text = value


def content_opf(meta: PackageMetadata,
                manifest: List[ManifestItem],
                spine: List[SpineItem]) -> bytes:
    package = etree.Element(f"{{{OPF_NS}}}package", nsmap={None: OPF_NS})
    package.set("version", "3.0")
    package.set("unique-identifier", "pub-id")
    package.set("prefix", PACKAGE_PREFIXES)
    package.set(XML_LANG, meta.language)

    metadata = etree.SubElement(package, f"{{{OPF_NS}}}metadata", nsmap={"dc": DC_NS})
    identifier = etree.SubElement(metadata, f"{{{DC_NS}}}identifier")
    identifier.set("id", "pub-id")
    identifier.text = meta.identifier
    etree.SubElement(metadata, f"{{{DC_NS}}}title").text = meta.title
    etree.SubElement(metadata, f"{{{DC_NS}}}language").text = meta.language
    if meta.creator:
        etree.SubElement(metadata, f"{{{DC_NS}}}creator").text = meta.creator
    _meta(metadata, "dcterms:modified", meta.modified)

    if meta.fixed_layout:
        _meta(metadata, "rendition:layout", "pre-paginated")
        _meta(metadata, "rendition:orientation", "auto")
        _meta(metadata, "rendition:spread", "auto")

    if meta.overlay_durations:
        total = sum(meta.overlay_durations.values())
        _meta(metadata, "media:duration", format_clock(total))
        for smil_id, seconds in meta.overlay_durations.items():
            _meta(metadata, "media:duration", format_clock(seconds), refines=f"#{smil_id}")
        if meta.active_class:
            _meta(metadata, "media:active-class", meta.active_class)

    for key in ("accessMode", "accessModeSufficient", "accessibilityFeature", "accessibilityHazard"):
        for value in meta.accessibility.get(key, []):
            _meta(metadata, f"schema:{key}", value)
    if meta.accessibility.get("accessibilitySummary"):
        _meta(metadata, "schema:accessibilitySummary", meta.accessibility["accessibilitySummary"])

    manifest_el = etree.SubElement(package, f"{{{OPF_NS}}}manifest")
    for item in manifest:
        el = etree.SubElement(manifest_el, f"{{{OPF_NS}}}item")
        el.set("id", item.id)
        el.set("href", item.href)
        el.set("media-type", item.media_type)
        if item.properties:
            el.set("properties", item.properties)
        if item.media_overlay:
            el.set("media-overlay", item.media_overlay)

    spine_el = etree.SubElement(package, f"{{{OPF_NS}}}spine")
    for item in spine:
        el = etree.SubElement(spine_el, f"{{{OPF_NS}}}itemref")
        el.set("idref", item.idref)
        if not item.linear:
            el.set("linear", "no")
        if item.properties:
            el.set("properties", item.properties)

    return serialize(package)


# =============================================================================
# NAVIGATION DOCUMENT
# =============================================================================

def nav_xhtml(title: str,
              language: str,
              toc: List[Dict[str, Any]],
              pages: List[int],
              page_href) -> bytes:
    """
    Navigation document with a toc nav and a page-list nav.

    ``toc`` entries carry ``title``, ``page_number`` and optionally ``anchor``.
    Without headings the toc lists the pages.
    """
    html = xhtml_root(language)
    head = h(html, "head")
    h(head, "meta", charset="utf-8")
    h(head, "title", title)
    body = h(html, "body")

    toc_nav = h(body, "nav", id="toc")
    toc_nav.set(f"{{{EPUB_NS}}}type", "toc")
    h(toc_nav, "h1", "Contents")
    toc_list = h(toc_nav, "ol")
    if toc:
        for entry in toc:
            href = page_href(entry["page_number"])
            if entry.get("anchor"):
                href = f"{href}#{entry['anchor']}"
            li = h(toc_list, "li")
            h(li, "a", entry.get("title") or f"Page {entry['page_number']}", href=href)
    else:
        for number in pages:
            li = h(toc_list, "li")
            h(li, "a", f"Page {number}", href=page_href(number))

    page_nav = h(body, "nav", id="page-list", hidden="hidden")
    page_nav.set(f"{{{EPUB_NS}}}type", "page-list")
    page_list = h(page_nav, "ol")
    for number in pages:
        li = h(page_list, "li")
        h(li, "a", str(number), href=page_href(number))

    return serialize(html, doctype="<!DOCTYPE html>")


# =============================================================================
# STYLESHEET
# =============================================================================

def fixed_layout_css(active_class: str) -> bytes:
    css = f"""@charset "utf-8";

html, body {{
  margin: 0;
  padding: 0;
  width: 100%;
  height: 100%;
}}

.page {{
  position: relative;
  width: 100%;
  height: 100%;
  overflow: hidden;
}}

.page-image {{
  position: absolute;
  top: 0;
  left: 0;
  width: 100%;
  height: 100%;
}}

/* Text layer: exposed to assistive technology, transparent on screen */
.text-layer {{
  position: absolute;
  top: 0;
  left: 0;
  width: 100%;
  height: 100%;
}}

.text-layer .block {{
  position: absolute;
  margin: 0;
  padding: 0;
  color: transparent;
  overflow: hidden;
  white-space: normal;
  line-height: 1;
}}

.text-layer ul {{
  list-style: none;
  margin: 0;
  padding: 0;
}}

.text-layer .figure {{
  position: absolute;
}}

.{active_class} {{
  background-color: rgba(255, 215, 0, 0.4);
  border-radius: 2px;
}}
"""
    return css.encode("utf-8")
