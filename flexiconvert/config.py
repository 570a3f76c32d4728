"""Application configuration loading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from flexiconvert.core.utils import env_int, get_effective_cpu_count

logger = logging.getLogger(__name__)

CATEGORIES = ("document", "image", "audio", "video")

DEFAULT_MAX_UPLOAD_MB = 100
DEFAULT_MAX_VIDEO_UPLOAD_MB = 500


def _positive(name: str, default: int) -> int:
    value = env_int(name, default)
    if value <= 0:
        logger.warning("[settings] Non-positive %s=%s; using %s", name, value, default)
        return default
    return value


def _optional_path(name: str) -> Optional[str]:
    raw = (os.environ.get(name) or "").strip()
    return raw or None


def _auto_async_workers(effective_cpu: int) -> int:
    return max(1, min(2, effective_cpu))


@dataclass(frozen=True)
class EngineSettings:
    """Location override and timeout for one external program."""

    path: Optional[str]
    timeout: int


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the Flask app and workers."""

    upload_folder: Path = Path("storage")
    database_path: Path = Path("storage") / "flexiconvert.db"
    max_upload_mb: Dict[str, int] = field(default_factory=lambda: {
        "document": DEFAULT_MAX_UPLOAD_MB,
        "image": DEFAULT_MAX_UPLOAD_MB,
        "audio": DEFAULT_MAX_UPLOAD_MB,
        "video": DEFAULT_MAX_VIDEO_UPLOAD_MB,
    })
    max_files_per_request: int = 50
    async_workers: int = 1
    queue_max_size: int = 100
    file_retention_hours: int = 24
    api_token: Optional[str] = None
    base_url: str = ""
    libreoffice: EngineSettings = EngineSettings(None, 120)
    ghostscript: EngineSettings = EngineSettings(None, 60)
    ffmpeg: EngineSettings = EngineSettings(None, 600)
    imagemagick: EngineSettings = EngineSettings(None, 120)
    pdftoppm_path: Optional[str] = None
    pdf_image_dpi: int = 300

    @property
    def inputs_folder(self) -> Path:
        return self.upload_folder / "inputs"

    @property
    def outputs_folder(self) -> Path:
        return self.upload_folder / "outputs"

    @property
    def max_content_length(self) -> int:
        """Largest request body Flask should accept (the biggest category limit)."""
        return max(self.max_upload_mb.values()) * 1024 * 1024

    def upload_limit_bytes(self, category: str) -> int:
        return self.max_upload_mb.get(category, DEFAULT_MAX_UPLOAD_MB) * 1024 * 1024


def load_runtime_config() -> RuntimeConfig:
    """Load runtime configuration from the environment.

    Invalid numeric values are logged and replaced by their defaults.
    """
    upload_folder = Path(os.environ.get("UPLOAD_FOLDER") or "storage")
    database_path = Path(os.environ.get("DATABASE_PATH") or upload_folder / "flexiconvert.db")

    default_upload_mb = _positive("MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB)
    max_upload_mb = {category: default_upload_mb for category in CATEGORIES}
    max_upload_mb["video"] = _positive("MAX_VIDEO_UPLOAD_MB", DEFAULT_MAX_VIDEO_UPLOAD_MB)

    effective_cpu = get_effective_cpu_count()
    config = RuntimeConfig(
        upload_folder=upload_folder,
        database_path=database_path,
        max_upload_mb=max_upload_mb,
        max_files_per_request=_positive("MAX_FILES_PER_REQUEST", 50),
        async_workers=_positive("ASYNC_WORKERS", _auto_async_workers(effective_cpu)),
        queue_max_size=_positive("QUEUE_MAX_SIZE", 100),
        file_retention_hours=_positive("FILE_RETENTION_HOURS", 24),
        api_token=os.environ.get("API_TOKEN") or None,
        base_url=os.environ.get("BASE_URL", "").rstrip("/"),
        libreoffice=EngineSettings(_optional_path("LIBREOFFICE_PATH"), _positive("LIBREOFFICE_TIMEOUT", 120)),
        ghostscript=EngineSettings(_optional_path("GHOSTSCRIPT_PATH"), _positive("GHOSTSCRIPT_TIMEOUT", 60)),
        ffmpeg=EngineSettings(_optional_path("FFMPEG_PATH"), _positive("FFMPEG_TIMEOUT", 600)),
        imagemagick=EngineSettings(_optional_path("IMAGEMAGICK_PATH"), _positive("IMAGEMAGICK_TIMEOUT", 120)),
        pdftoppm_path=_optional_path("PDFTOPPM_PATH"),
        pdf_image_dpi=_positive("PDF_IMAGE_DPI", 300),
    )
    logger.info(
        "Runtime config: upload_folder=%s database=%s workers=%s queue_max=%s retention=%sh",
        config.upload_folder.resolve(),
        config.database_path,
        config.async_workers,
        config.queue_max_size,
        config.file_retention_hours,
    )
    return config


@lru_cache(maxsize=1)
def get_runtime_config() -> RuntimeConfig:
    """Process-wide config, loaded once."""
    return load_runtime_config()
