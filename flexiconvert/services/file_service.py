"""Storage layout and retention cleanup.

Uploaded inputs live in ``<UPLOAD_FOLDER>/inputs/<record_id>/`` and converted
files in ``<UPLOAD_FOLDER>/outputs/<record_id>/``.
"""

import logging
import mimetypes
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from werkzeug.utils import secure_filename

from flexiconvert.core.utils import file_extension
from flexiconvert.storage.records import STATUS_PROCESSING, ProcessingRecord, RecordStore, to_timestamp, utcnow

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3600

MIME_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
    "rtf": "application/rtf",
    "txt": "text/plain",
    "html": "text/html",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",
    "xml": "application/xml",
    "zip": "application/zip",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
    "mp4": "video/mp4",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "webm": "video/webm",
}


def mime_type_for(filename: str) -> str:
    ext = file_extension(filename)
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def input_dir(upload_folder: Path, record_id: str) -> Path:
    return upload_folder / "inputs" / record_id


def output_dir(upload_folder: Path, record_id: str) -> Path:
    return upload_folder / "outputs" / record_id


def stored_input_name(index: int, filename: str) -> str:
    """Disk name for an uploaded file; the index keeps multi-file order."""
    safe = secure_filename(filename or "")
    ext = file_extension(filename)
    if not safe or (ext and not safe.lower().endswith(f".{ext}")):
        safe = f"input.{ext}" if ext else "input"
    return f"{index:03d}_{safe}"


def resolve_stored_path(upload_folder: Path, path_str: Optional[str]) -> Optional[Path]:
    """Return the path if it exists inside the upload folder, else None."""
    if not path_str:
        return None
    candidate = Path(path_str)
    try:
        candidate.resolve().relative_to(upload_folder.resolve())
    except ValueError:
        logger.warning("[download] Path outside upload folder blocked: %s", path_str)
        return None
    return candidate if candidate.is_file() else None


def _dir_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file():
                total += item.stat().st_size
        except OSError:
            continue
    return total


def remove_record_files(upload_folder: Path, record_id: str, dry_run: bool = False) -> Dict[str, int]:
    """Delete a record's input and output directories."""
    removed = {"files": 0, "bytes": 0}
    for directory in (input_dir(upload_folder, record_id), output_dir(upload_folder, record_id)):
        if not directory.exists():
            continue
        removed["files"] += sum(1 for item in directory.rglob("*") if item.is_file())
        removed["bytes"] += _dir_size(directory)
        if not dry_run:
            shutil.rmtree(directory, ignore_errors=True)
    return removed


def _orphan_dirs(upload_folder: Path) -> Iterable[Path]:
    for parent in (upload_folder / "inputs", upload_folder / "outputs"):
        if parent.is_dir():
            yield from (child for child in parent.iterdir() if child.is_dir())


def cleanup_expired(
    store: RecordStore,
    upload_folder: Path,
    retention_hours: int,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Delete records older than the retention window with their files.

    Directories left behind by deleted or unknown records are removed too
    once their modification time passes the cutoff. Records still being
    processed are kept.
    """
    cutoff = (now or utcnow()) - timedelta(hours=retention_hours)
    summary: Dict[str, Any] = {
        "dry_run": dry_run,
        "cutoff": to_timestamp(cutoff),
        "records_deleted": 0,
        "files_deleted": 0,
        "bytes_freed": 0,
        "orphans_deleted": 0,
        "record_ids": [],
    }

    expired: list[ProcessingRecord] = store.expired(cutoff)
    for record in expired:
        if record.status == STATUS_PROCESSING:
            logger.info(f"[{record.id}] Skipping cleanup; still processing")
            continue
        removed = remove_record_files(upload_folder, record.id, dry_run=dry_run)
        if not dry_run:
            store.delete(record.id)
        summary["records_deleted"] += 1
        summary["files_deleted"] += removed["files"]
        summary["bytes_freed"] += removed["bytes"]
        summary["record_ids"].append(record.id)

    cutoff_ts = cutoff.timestamp()
    for directory in _orphan_dirs(upload_folder):
        if directory.name in summary["record_ids"] or store.get(directory.name) is not None:
            continue
        try:
            if directory.stat().st_mtime >= cutoff_ts:
                continue
        except OSError:
            continue
        files = sum(1 for item in directory.rglob("*") if item.is_file())
        size = _dir_size(directory)
        if not dry_run:
            shutil.rmtree(directory, ignore_errors=True)
        summary["orphans_deleted"] += 1
        summary["files_deleted"] += files
        summary["bytes_freed"] += size

    action = "Would remove" if dry_run else "Removed"
    logger.info(
        "%s %s expired record(s), %s orphan dir(s), %s file(s), %s bytes (cutoff %s)",
        action,
        summary["records_deleted"],
        summary["orphans_deleted"],
        summary["files_deleted"],
        summary["bytes_freed"],
        summary["cutoff"],
    )
    return summary


def cleanup_daemon(store: RecordStore, upload_folder: Path, retention_hours: int,
                   interval_seconds: int = CLEANUP_INTERVAL_SECONDS) -> None:
    """Background cleanup - removes expired records and files."""
    while True:
        time.sleep(interval_seconds)
        try:
            cleanup_expired(store, upload_folder, retention_hours)
        except Exception as e:
            logger.error(f"Cleanup error: {e}")
