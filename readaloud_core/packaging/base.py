"""
Base Packaging Classes
======================

Abstract base classes for the packaging framework. Extend these classes
to create packagers for different output formats.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from readaloud_core.models import AudioSync, DocumentStructure

logger = logging.getLogger(__name__)


@dataclass
class PackageResult:
    """
    Container for packaging results.

    Attributes:
        success: Whether packaging succeeded
        output_path: Path to the created package
        pages_packaged: Number of page content documents
        images_packaged: Number of page images
        overlays_packaged: Number of synchronization documents
        audio_files_packaged: Number of audio files
        total_size_bytes: Total package size in bytes
        errors: List of error messages
        metadata: Additional packaging metadata
    """
    success: bool = True
    output_path: Optional[Path] = None
    pages_packaged: int = 0
    images_packaged: int = 0
    overlays_packaged: int = 0
    audio_files_packaged: int = 0
    total_size_bytes: int = 0
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_error(self, error: str) -> None:
        """Add an error message."""
        self.errors.append(error)
        self.success = False

    def summary(self) -> str:
        """Generate a text summary of packaging results."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [
            f"Packaging: {status}",
            f"Output: {self.output_path}",
            f"Pages: {self.pages_packaged}",
            f"Images: {self.images_packaged}",
            f"Media overlays: {self.overlays_packaged}",
        ]

        if self.total_size_bytes > 0:
            size_mb = self.total_size_bytes / (1024 * 1024)
            lines.append(f"Size: {size_mb:.2f} MB")

        if self.errors:
            lines.append(f"\nErrors ({len(self.errors)}):")
            for error in self.errors[:5]:
                lines.append(f"  - {error}")
            if len(self.errors) > 5:
                lines.append(f"  ... and {len(self.errors) - 5} more")

        return "\n".join(lines)


class BasePackager(ABC):
    """
    Abstract base class for document packagers.

    Example:
        class MyPackager(BasePackager):
            def package(self, structure, output_path, **kwargs) -> PackageResult:
                result = PackageResult()
                # ... packaging logic ...
                return result
    """

    @abstractmethod
    def package(self,
                structure: DocumentStructure,
                output_path: Path,
                page_images: Optional[Dict[int, bytes]] = None,
                audio_syncs: Optional[List[AudioSync]] = None,
                **kwargs) -> PackageResult:
        """
        Create a package from a document structure.

        Args:
            structure: The document to package
            output_path: Path for the output package
            page_images: Rendered page images keyed by page number
            audio_syncs: Audio timing records, if audio is present
            **kwargs: Additional packaging options

        Returns:
            PackageResult with packaging outcome
        """
        pass

    @property
    def package_format(self) -> str:
        """Return the format of packages created (e.g., 'EPUB3')."""
        return "Unknown"

    @property
    def supported_media_types(self) -> List[str]:
        """Return list of supported audio file extensions."""
        return []
