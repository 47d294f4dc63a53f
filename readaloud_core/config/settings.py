"""
Pipeline Settings
=================

Configuration dataclasses for the conversion library. Thresholds default to
the values the layout and packaging algorithms are tuned for; override them
from a JSON or YAML file.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, List
import json
import logging

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ClusteringSettings:
    """Geometry clustering thresholds (multiples of the mean line height)."""

    default_line_height: float = 12.0
    vertical_threshold_factor: float = 2.0
    max_line_gap_factor: float = 0.8
    horizontal_threshold_factor: float = 3.0
    min_horizontal_threshold: float = 50.0
    column_alignment_ratio: float = 0.9
    space_gap_ratio: float = 0.5
    fallback_text_ratio: float = 0.5
    fallback_line_height: float = 14.0
    fallback_margin_ratio: float = 0.1


@dataclass
class ReadingOrderSettings:
    """Two-page spread detection."""

    folio_region_ratio: float = 0.15
    min_folio_blocks: int = 2
    gutter_gap_ratio: float = 0.10
    min_half_share: float = 0.20


@dataclass
class ClassificationSettings:
    """Block classification and header/footer suppression."""

    margin_ratio: float = 0.10
    running_header_min_pages: int = 3
    use_external_classifier: bool = False
    classify_all: bool = False


@dataclass
class OcrSettings:
    """OCR fallback for scanned pages."""

    enabled: bool = True
    language: str = "eng"
    dpi: int = 300
    max_consecutive_failures: int = 3
    scanned_text_threshold: int = 10


@dataclass
class CleanupSettings:
    """Text sanitization and optional AI correction."""

    min_alnum_density: float = 0.3
    density_min_length: int = 10
    use_ai_correction: bool = False


@dataclass
class PackagingSettings:
    """EPUB packaging options."""

    dpi: int = 150
    language: str = "en"
    active_class: str = "epub-media-overlay-active"
    css_name: str = "fixed-layout.css"
    image_format: str = "png"
    audio_media_types: Dict[str, str] = field(default_factory=lambda: {
        ".mp3": "audio/mpeg",
        ".wav": "audio/wav",
        ".ogg": "audio/ogg",
        ".m4a": "audio/mp4",
    })


@dataclass
class QASettings:
    """Confidence scoring."""

    default_confidence: float = 0.8
    review_threshold: float = 0.7
    verify_sync_anchors: bool = True


@dataclass
class PipelineSettings:
    """
    Complete library configuration.

    Example:
        settings = PipelineSettings()
        settings.ocr.language = "deu"
        save_config(settings, Path("pipeline.yaml"))
    """

    clustering: ClusteringSettings = field(default_factory=ClusteringSettings)
    reading_order: ReadingOrderSettings = field(default_factory=ReadingOrderSettings)
    classification: ClassificationSettings = field(default_factory=ClassificationSettings)
    ocr: OcrSettings = field(default_factory=OcrSettings)
    cleanup: CleanupSettings = field(default_factory=CleanupSettings)
    packaging: PackagingSettings = field(default_factory=PackagingSettings)
    qa: QASettings = field(default_factory=QASettings)

    output_dir: str = "output"
    log_level: str = "INFO"

    _SECTIONS = (
        ("clustering", ClusteringSettings),
        ("reading_order", ReadingOrderSettings),
        ("classification", ClassificationSettings),
        ("ocr", OcrSettings),
        ("cleanup", CleanupSettings),
        ("packaging", PackagingSettings),
        ("qa", QASettings),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = {name: asdict(getattr(self, name)) for name, _ in self._SECTIONS}
        data["output_dir"] = self.output_dir
        data["log_level"] = self.log_level
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineSettings":
        """Create from dictionary. Unknown sections are ignored."""
        settings = cls()
        for name, section_cls in cls._SECTIONS:
            if name in data and data[name]:
                setattr(settings, name, section_cls(**data[name]))
        if "output_dir" in data:
            settings.output_dir = data["output_dir"]
        if "log_level" in data:
            settings.log_level = data["log_level"]
        return settings


def load_config(config_path: Path) -> PipelineSettings:
    """
    Load settings from file.

    Supports JSON and YAML formats based on file extension.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is not supported
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    with open(config_path, 'r', encoding='utf-8') as f:
        if suffix in ['.yaml', '.yml']:
            data = yaml.safe_load(f) or {}
        elif suffix == '.json':
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

    logger.info(f"Loaded pipeline settings from {config_path}")
    return PipelineSettings.from_dict(data)


def save_config(settings: PipelineSettings, config_path: Path) -> None:
    """Save settings to a JSON or YAML file."""
    config_path = Path(config_path)
    suffix = config_path.suffix.lower()
    data = settings.to_dict()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w', encoding='utf-8') as f:
        if suffix in ['.yaml', '.yml']:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        elif suffix == '.json':
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

    logger.info(f"Saved pipeline settings to {config_path}")


def get_default_config() -> PipelineSettings:
    """Get default settings."""
    return PipelineSettings()


# Tesseract language codes -> publication (BCP 47) language
OCR_TO_PUBLICATION_LANGUAGE = {
    "eng": "en",
    "deu": "de",
    "fra": "fr",
    "spa": "es",
    "ita": "it",
    "por": "pt",
    "nld": "nl",
    "swe": "sv",
    "pol": "pl",
    "rus": "ru",
    "jpn": "ja",
    "chi_sim": "zh-Hans",
    "chi_tra": "zh-Hant",
}


def apply_language(settings: PipelineSettings, language: str) -> PipelineSettings:
    """
    Set the OCR language and the matching publication language.

    Accepts a Tesseract code ("deu") or a BCP 47 tag ("de").
    """
    if language in OCR_TO_PUBLICATION_LANGUAGE:
        settings.ocr.language = language
        settings.packaging.language = OCR_TO_PUBLICATION_LANGUAGE[language]
        return settings
    for ocr_code, tag in OCR_TO_PUBLICATION_LANGUAGE.items():
        if tag.lower() == language.lower():
            settings.ocr.language = ocr_code
            settings.packaging.language = tag
            return settings
    logger.warning(f"Unknown language {language!r}; using it for both OCR and metadata")
    settings.ocr.language = language
    settings.packaging.language = language
    return settings
