"""
Configuration Management
========================

Settings for the conversion pipeline.
"""

from readaloud_core.config.settings import (
    PipelineSettings,
    ClusteringSettings,
    ReadingOrderSettings,
    ClassificationSettings,
    OcrSettings,
    CleanupSettings,
    PackagingSettings,
    QASettings,
    load_config,
    save_config,
    get_default_config,
    apply_language,
)

__all__ = [
    "PipelineSettings",
    "ClusteringSettings",
    "ReadingOrderSettings",
    "ClassificationSettings",
    "OcrSettings",
    "CleanupSettings",
    "PackagingSettings",
    "QASettings",
    "load_config",
    "save_config",
    "get_default_config",
    "apply_language",
]
