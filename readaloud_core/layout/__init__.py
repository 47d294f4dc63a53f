"""
Layout Analysis
===============

Block reconstruction from positioned text runs and reading-order resolution.

Components:
- GeometryClusterer: runs -> blocks by proximity, with paragraph fallback
- ReadingOrderResolver: spread/column detection and block ordering
"""

from readaloud_core.layout.clusterer import (
    GeometryClusterer,
    runs_to_flat_text,
    sort_runs,
)

from readaloud_core.layout.reading_order import (
    ReadingOrderResolver,
    assign_reading_order,
    detect_two_page_spread,
)

__all__ = [
    "GeometryClusterer",
    "runs_to_flat_text",
    "sort_runs",
    "ReadingOrderResolver",
    "assign_reading_order",
    "detect_two_page_spread",
]
