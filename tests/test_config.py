from pathlib import Path

import pytest

from flexiconvert.config import DEFAULT_MAX_UPLOAD_MB, RuntimeConfig, load_runtime_config
from flexiconvert.core.utils import clean_filename, format_bytes

ENV_KEYS = (
    "UPLOAD_FOLDER", "DATABASE_PATH", "MAX_UPLOAD_MB", "MAX_VIDEO_UPLOAD_MB", "ASYNC_WORKERS",
    "QUEUE_MAX_SIZE", "FILE_RETENTION_HOURS", "API_TOKEN", "BASE_URL", "FFMPEG_PATH", "FFMPEG_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = load_runtime_config()
    assert config.upload_folder == Path("storage")
    assert config.database_path == Path("storage") / "flexiconvert.db"
    assert config.upload_limit_bytes("document") == DEFAULT_MAX_UPLOAD_MB * 1024 * 1024
    assert config.upload_limit_bytes("video") == 500 * 1024 * 1024
    assert config.api_token is None
    assert config.file_retention_hours == 24


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path))
    monkeypatch.setenv("MAX_UPLOAD_MB", "5")
    monkeypatch.setenv("MAX_VIDEO_UPLOAD_MB", "50")
    monkeypatch.setenv("ASYNC_WORKERS", "3")
    monkeypatch.setenv("API_TOKEN", "secret")
    monkeypatch.setenv("BASE_URL", "https://convert.example.com/")
    monkeypatch.setenv("FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
    monkeypatch.setenv("FFMPEG_TIMEOUT", "30")

    config = load_runtime_config()

    assert config.database_path == tmp_path / "flexiconvert.db"
    assert config.upload_limit_bytes("image") == 5 * 1024 * 1024
    assert config.max_content_length == 50 * 1024 * 1024
    assert config.async_workers == 3
    assert config.api_token == "secret"
    assert config.base_url == "https://convert.example.com"
    assert config.ffmpeg.path == "/opt/ffmpeg/bin/ffmpeg"
    assert config.ffmpeg.timeout == 30


def test_invalid_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("QUEUE_MAX_SIZE", "lots")
    monkeypatch.setenv("FILE_RETENTION_HOURS", "-4")

    config = load_runtime_config()

    assert config.queue_max_size == 100
    assert config.file_retention_hours == 24


def test_folders_derive_from_upload_folder(tmp_path):
    config = RuntimeConfig(upload_folder=tmp_path)
    assert config.inputs_folder == tmp_path / "inputs"
    assert config.outputs_folder == tmp_path / "outputs"


def test_format_bytes_and_clean_filename():
    assert format_bytes(0) == "0 B"
    assert format_bytes(None) == "0 B"
    assert format_bytes(1536) == "1.5 KB"
    assert clean_filename("  a/b:c  ") == "abc"
    assert clean_filename("???") == "file"
