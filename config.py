#!/usr/bin/env python3
"""
Configuration Management for the PDF to EPUB Read-Aloud Service

This module provides centralized configuration for the conversion service
and its API. It supports:

- Environment variable configuration (PDFTOEPUB_ prefix)
- Configuration file loading (JSON/YAML)
- Default values with override capability
- Validation of configuration values

Pipeline tuning (clustering thresholds, classification, packaging) lives in
readaloud_core.config.PipelineSettings and is nested here as ``pipeline``.

Example Usage:
    from config import get_config, AppConfig

    # Get current configuration
    config = get_config()
    print(config.model)  # claude-sonnet-4-20250514

    # Override specific values
    config = AppConfig(rendering=RenderingConfig(dpi=200))
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from readaloud_core.config.settings import PipelineSettings, load_config as load_pipeline_settings


# ============================================================================
# CONFIGURATION DATACLASSES
# ============================================================================

@dataclass
class AIConfig:
    """Configuration for the AI text service (correction / classification)."""
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.0  # deterministic corrections
    max_tokens: int = 1024
    timeout: float = 30.0
    max_retries: int = 3
    enable_correction: bool = False
    enable_classification: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RenderingConfig:
    """Configuration for page image rendering."""
    dpi: int = 150  # EPUB page images
    image_format: str = "png"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OCRConfig:
    """Configuration for the OCR fallback."""
    enabled: bool = True
    language: str = "eng"
    dpi: int = 300  # High DPI for better OCR
    timeout: float = 60.0
    max_consecutive_failures: int = 3

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RateLimitConfig:
    """Per-provider request limits and circuit breaker thresholds."""
    ai_per_minute: int = 50
    ai_per_hour: int = 3000
    ai_min_interval: Optional[float] = None  # default 60 / ai_per_minute
    ocr_per_minute: int = 600
    ocr_per_hour: int = 20000
    ocr_min_interval: float = 0.0
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 60.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class APIConfig:
    """Configuration for REST API."""
    host: str = "0.0.0.0"
    port: int = 8000
    max_concurrent_jobs: int = 2
    upload_dir: Path = field(default_factory=lambda: Path("uploads"))
    output_dir: Path = field(default_factory=lambda: Path("output"))
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["upload_dir"] = str(self.upload_dir)
        d["output_dir"] = str(self.output_dir)
        return d


@dataclass
class StorageConfig:
    """Job store backend: ``local`` JSON files or ``mongodb``."""
    backend: str = "local"
    base_dir: Path = field(default_factory=lambda: Path("jobs"))
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "pdftoepub"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["base_dir"] = str(self.base_dir)
        return d


@dataclass
class WebhookConfig:
    """Completion webhook."""
    url: Optional[str] = None
    timeout: float = 10.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AppConfig:
    """
    Complete configuration for the conversion service.

    This is the main configuration class that aggregates all sub-configurations.
    """
    ai: AIConfig = field(default_factory=AIConfig)
    rendering: RenderingConfig = field(default_factory=RenderingConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    # Convenience properties for common settings
    @property
    def model(self) -> str:
        return self.ai.model

    @property
    def dpi(self) -> int:
        return self.rendering.dpi

    @property
    def output_dir(self) -> Path:
        return self.api.output_dir

    def pipeline_settings(self) -> PipelineSettings:
        """
        PipelineSettings with the application-level options applied.

        Returns a new object; ``self.pipeline`` is left as loaded.
        """
        settings = PipelineSettings.from_dict(self.pipeline.to_dict())
        settings.packaging.dpi = self.rendering.dpi
        settings.packaging.image_format = self.rendering.image_format
        settings.ocr.enabled = self.ocr.enabled
        settings.ocr.language = self.ocr.language
        settings.ocr.dpi = self.ocr.dpi
        settings.ocr.max_consecutive_failures = self.ocr.max_consecutive_failures
        settings.cleanup.use_ai_correction = self.ai.enable_correction
        settings.classification.use_external_classifier = self.ai.enable_classification
        settings.output_dir = str(self.api.output_dir)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert entire configuration to dictionary."""
        return {
            "ai": self.ai.to_dict(),
            "rendering": self.rendering.to_dict(),
            "ocr": self.ocr.to_dict(),
            "rate_limits": self.rate_limits.to_dict(),
            "api": self.api.to_dict(),
            "storage": self.storage.to_dict(),
            "webhook": self.webhook.to_dict(),
            "pipeline": self.pipeline.to_dict(),
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert configuration to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create configuration from dictionary."""
        config = cls()

        if "ai" in data:
            config.ai = AIConfig(**data["ai"])
        if "rendering" in data:
            config.rendering = RenderingConfig(**data["rendering"])
        if "ocr" in data:
            config.ocr = OCRConfig(**data["ocr"])
        if "rate_limits" in data:
            config.rate_limits = RateLimitConfig(**data["rate_limits"])
        if "api" in data:
            api_data = data["api"].copy()
            for key in ("upload_dir", "output_dir"):
                if key in api_data:
                    api_data[key] = Path(api_data[key])
            config.api = APIConfig(**api_data)
        if "storage" in data:
            storage_data = data["storage"].copy()
            if "base_dir" in storage_data:
                storage_data["base_dir"] = Path(storage_data["base_dir"])
            config.storage = StorageConfig(**storage_data)
        if "webhook" in data:
            config.webhook = WebhookConfig(**data["webhook"])
        if "pipeline" in data:
            config.pipeline = PipelineSettings.from_dict(data["pipeline"])

        return config

    @classmethod
    def from_json(cls, json_str: str) -> "AppConfig":
        """Create configuration from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AppConfig":
        """Load configuration from a JSON or YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                return cls.from_dict(yaml.safe_load(f) or {})
            return cls.from_json(f.read())

    def save(self, path: Union[str, Path]):
        """Save configuration to a JSON or YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
            else:
                f.write(self.to_json())

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Create configuration from environment variables.

        Environment variable naming:
        - PDFTOEPUB_MODEL
        - PDFTOEPUB_DPI
        - PDFTOEPUB_OCR_LANGUAGE
        - PDFTOEPUB_MAX_CONCURRENT
        - PDFTOEPUB_STORE_BACKEND
        - PDFTOEPUB_PIPELINE_CONFIG (YAML/JSON pipeline settings file)
        - etc.
        """
        config = cls()

        # Pipeline settings file first so explicit variables win
        if env_pipeline := os.environ.get("PDFTOEPUB_PIPELINE_CONFIG"):
            config.pipeline = load_pipeline_settings(Path(env_pipeline))

        # AI settings
        if env_model := os.environ.get("PDFTOEPUB_MODEL"):
            config.ai.model = env_model
        if env_temp := os.environ.get("PDFTOEPUB_TEMPERATURE"):
            config.ai.temperature = float(env_temp)
        if env_tokens := os.environ.get("PDFTOEPUB_MAX_TOKENS"):
            config.ai.max_tokens = int(env_tokens)
        if env_correct := os.environ.get("PDFTOEPUB_AI_CORRECTION"):
            config.ai.enable_correction = env_correct.lower() in ("true", "1", "yes")
        if env_classify := os.environ.get("PDFTOEPUB_AI_CLASSIFICATION"):
            config.ai.enable_classification = env_classify.lower() in ("true", "1", "yes")

        # Rendering settings
        if env_dpi := os.environ.get("PDFTOEPUB_DPI"):
            config.rendering.dpi = int(env_dpi)

        # OCR settings
        if env_ocr := os.environ.get("PDFTOEPUB_OCR_ENABLED"):
            config.ocr.enabled = env_ocr.lower() in ("true", "1", "yes")
        if env_lang := os.environ.get("PDFTOEPUB_OCR_LANGUAGE"):
            config.ocr.language = env_lang
        if env_ocr_dpi := os.environ.get("PDFTOEPUB_OCR_DPI"):
            config.ocr.dpi = int(env_ocr_dpi)

        # API settings
        if env_api_host := os.environ.get("PDFTOEPUB_API_HOST"):
            config.api.host = env_api_host
        if env_api_port := os.environ.get("PDFTOEPUB_API_PORT"):
            config.api.port = int(env_api_port)
        if env_concurrent := os.environ.get("PDFTOEPUB_MAX_CONCURRENT"):
            config.api.max_concurrent_jobs = int(env_concurrent)
        if env_upload := os.environ.get("PDFTOEPUB_UPLOAD_DIR"):
            config.api.upload_dir = Path(env_upload)
        if env_output := os.environ.get("PDFTOEPUB_OUTPUT_DIR"):
            config.api.output_dir = Path(env_output)

        # Storage settings
        if env_backend := os.environ.get("PDFTOEPUB_STORE_BACKEND"):
            config.storage.backend = env_backend.lower()
        if env_store_dir := os.environ.get("PDFTOEPUB_STORE_DIR"):
            config.storage.base_dir = Path(env_store_dir)
        if env_mongo := os.environ.get("MONGODB_URI"):
            config.storage.mongodb_uri = env_mongo

        # Webhook
        if env_webhook := os.environ.get("PDFTOEPUB_WEBHOOK_URL"):
            config.webhook.url = env_webhook

        return config


# ============================================================================
# GLOBAL CONFIGURATION
# ============================================================================

_global_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Returns the cached configuration or creates a new one from environment.
    """
    global _global_config
    if _global_config is None:
        _global_config = AppConfig.from_env()
    return _global_config


def set_config(config: AppConfig):
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def reset_config():
    """Reset the global configuration to default."""
    global _global_config
    _global_config = None


def load_config(path: Union[str, Path]) -> AppConfig:
    """
    Load configuration from a file and set as global.

    Args:
        path: Path to configuration JSON/YAML file

    Returns:
        The loaded configuration
    """
    config = AppConfig.from_file(path)
    set_config(config)
    return config


# ============================================================================
# CONFIGURATION VALIDATION
# ============================================================================

def validate_config(config: AppConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    # AI settings
    if config.ai.temperature < 0 or config.ai.temperature > 1:
        errors.append("AI temperature must be between 0 and 1")
    if config.ai.max_tokens < 1:
        errors.append("Max tokens must be positive")

    # Rendering settings
    if config.rendering.dpi < 72 or config.rendering.dpi > 600:
        errors.append("DPI must be between 72 and 600")
    if config.rendering.image_format not in ("png", "jpeg"):
        errors.append("Image format must be png or jpeg")

    # OCR settings
    if config.ocr.dpi < 72 or config.ocr.dpi > 600:
        errors.append("OCR DPI must be between 72 and 600")
    if config.ocr.max_consecutive_failures < 1:
        errors.append("OCR failure threshold must be at least 1")

    # API settings
    if config.api.port < 1 or config.api.port > 65535:
        errors.append("API port must be between 1 and 65535")
    if config.api.max_concurrent_jobs < 1:
        errors.append("Max concurrent jobs must be at least 1")

    # Storage settings
    if config.storage.backend not in ("local", "mongodb"):
        errors.append(f"Unknown store backend: {config.storage.backend}")

    # Pipeline thresholds
    qa = config.pipeline.qa
    if not 0 <= qa.review_threshold <= 1:
        errors.append("Review threshold must be between 0 and 1")
    if not 0 <= qa.default_confidence <= 1:
        errors.append("Default confidence must be between 0 and 1")

    return errors


# ============================================================================
# LOGGING
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Union[str, int] = "INFO"):
    """Install the service log format on the root logger."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


# ============================================================================
# EXAMPLE CONFIGURATION FILE
# ============================================================================

EXAMPLE_CONFIG = """{
    "ai": {
        "model": "claude-sonnet-4-20250514",
        "temperature": 0.0,
        "max_tokens": 1024,
        "timeout": 30.0,
        "max_retries": 3,
        "enable_correction": false,
        "enable_classification": false
    },
    "rendering": {
        "dpi": 150,
        "image_format": "png"
    },
    "ocr": {
        "enabled": true,
        "language": "eng",
        "dpi": 300,
        "timeout": 60.0,
        "max_consecutive_failures": 3
    },
    "api": {
        "host": "0.0.0.0",
        "port": 8000,
        "max_concurrent_jobs": 2,
        "upload_dir": "uploads",
        "output_dir": "output",
        "cors_origins": ["*"]
    },
    "storage": {
        "backend": "local",
        "base_dir": "jobs"
    },
    "webhook": {
        "url": null,
        "timeout": 10.0
    }
}"""


if __name__ == "__main__":
    # Print example configuration
    print("Example configuration file:")
    print(EXAMPLE_CONFIG)

    # Test loading from environment
    print("\nConfiguration from environment:")
    config = get_config()
    print(config.to_json())
