import io
from pathlib import Path

import pytest
from PyPDF2 import PdfWriter

from flexiconvert.config import RuntimeConfig
from flexiconvert.storage.records import RecordStore


def make_pdf_bytes(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_pdf(path: Path, pages: int = 1) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(make_pdf_bytes(pages))
    return path


@pytest.fixture
def runtime_config(tmp_path):
    storage = tmp_path / "storage"
    return RuntimeConfig(upload_folder=storage, database_path=storage / "test.db")


@pytest.fixture
def store(runtime_config):
    record_store = RecordStore(runtime_config.database_path)
    record_store.init_schema()
    return record_store
