"""Flask service layer for queued file conversions."""

import base64
import binascii
import json
import logging
import re
import shutil
import sqlite3
import sys
import time
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from flask import jsonify, request, send_file, has_request_context
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import RequestEntityTooLarge, HTTPException, NotFound
from werkzeug.utils import secure_filename

from flexiconvert.config import CATEGORIES, RuntimeConfig, get_runtime_config
from flexiconvert.core.exceptions import (
    ConversionError,
    FileTooLargeError,
    InvalidRequestError,
    InvalidSettingsError,
    InvalidTransitionError,
    NotReadyError,
    OutputMissingError,
    RecordNotFoundError,
    ServerBusyError,
    UnsupportedToolError,
)
import flexiconvert.core.utils as utils
from flexiconvert.engine.external import engine_status
from flexiconvert.engine.tools import (
    ConversionContext,
    catalog,
    download_name,
    get_tool,
    resolve_output_extension,
    tools_for_category,
    validate_inputs,
)
from flexiconvert.services import file_service
from flexiconvert.storage.records import (
    DEFAULT_PER_PAGE,
    SORT_ORDERS,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUSES,
    ProcessingRecord,
    RecordStore,
    new_record_id,
    to_timestamp,
    utcnow,
)
import flexiconvert.workers.job_queue as job_queue

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


# URL segment -> record category
API_CATEGORIES = {
    "pdf": "document",
    "document": "document",
    "image": "image",
    "audio": "audio",
    "video": "video",
}
UPLOAD_FIELDS = ("files", "files[]", "file")
_SETTINGS_FIELD = re.compile(r"^settings\[([A-Za-z0-9_]+)\]$")

_config: Optional[RuntimeConfig] = None
_store: Optional[RecordStore] = None


def configure_app(app, runtime_config: Optional[RuntimeConfig] = None) -> None:
    """Apply Flask app config values and prepare storage for this service layer."""
    global _config, _store
    _config = runtime_config or get_runtime_config()
    app.config["MAX_CONTENT_LENGTH"] = _config.max_content_length

    _config.inputs_folder.mkdir(parents=True, exist_ok=True)
    _config.outputs_folder.mkdir(parents=True, exist_ok=True)
    _store = RecordStore(_config.database_path)
    _store.init_schema()
    job_queue.configure(_config.queue_max_size)
    logger.info(
        "Upload folder resolved to: %s (retention=%sh)",
        _config.upload_folder.resolve(),
        _config.file_retention_hours,
    )


def get_config() -> RuntimeConfig:
    global _config
    if _config is None:
        _config = get_runtime_config()
    return _config


def get_store() -> RecordStore:
    global _store
    if _store is None:
        _store = RecordStore(get_config().database_path)
        _store.init_schema()
    return _store


def register_error_handlers(app) -> None:
    """Register HTTP and framework error handlers."""
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(ConversionError, handle_conversion_error)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_error)


def require_auth(f):
    """Decorator to require Bearer token authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_token = get_config().api_token
        if not api_token:
            return f(*args, **kwargs)  # No token configured = open access

        auth_header = request.headers.get('Authorization')

        if not auth_header:
            logger.warning(f"Missing Authorization header on {request.path}")
            return jsonify({"success": False, "error": "Missing Authorization header"}), 401

        if not auth_header.startswith('Bearer '):
            logger.warning(f"Invalid Authorization format on {request.path}: {auth_header[:30]}...")
            return jsonify({"success": False, "error": "Authorization must use Bearer token format"}), 401

        if auth_header[7:] != api_token:
            logger.warning(f"Invalid token on {request.path}")
            return jsonify({"success": False, "error": "Invalid token"}), 403

        return f(*args, **kwargs)
    return decorated


def build_download_url(record_id: str) -> str:
    """
    Build a public download URL for a record.

    Uses BASE_URL when set, otherwise the request root; falls back to a relative path.
    """
    rel = f"/download/{record_id}"
    base = get_config().base_url
    if not base and has_request_context():
        base = request.url_root.rstrip('/')

    # Normalize to HTTPS to avoid mixed-content when the page is served over TLS
    if base and base.startswith("http://"):
        base = "https://" + base[len("http://"):]

    return f"{base}{rel}" if base else rel


def create_error_response(error: Exception, status_code: int = 500):
    """Create the standard JSON error envelope.

    Returns both 'error' (short form) and 'error_type'/'error_message'.
    """
    if isinstance(error, ConversionError):
        message, error_type = error.message, error.error_type
    elif isinstance(error, HTTPException):
        message, error_type = error.description or error.name, error.name.replace(" ", "")
    else:
        message, error_type = str(error), "UnknownError"

    return jsonify({
        "success": False,
        "error": message,
        "error_type": error_type,
        "error_message": message,
    }), status_code


def get_error_status_code(error: Exception) -> int:
    """Map exception type to appropriate HTTP status code."""
    if isinstance(error, ConversionError):
        return error.status_code
    if isinstance(error, FileNotFoundError):
        return 404
    if isinstance(error, ValueError):
        return 400
    return 500


# Request parsing

@dataclass
class IncomingFile:
    """One uploaded file before it is written under ``inputs/<record_id>/``."""

    filename: str
    save: Callable[[Path], int]


def _save_storage(upload: FileStorage) -> Callable[[Path], int]:
    def save(path: Path) -> int:
        upload.save(str(path))
        return path.stat().st_size
    return save


def _save_bytes(content: bytes) -> Callable[[Path], int]:
    def save(path: Path) -> int:
        path.write_bytes(content)
        return len(content)
    return save


def _save_download(url: str, limit_bytes: int) -> Callable[[Path], int]:
    def save(path: Path) -> int:
        return utils.download_file(url, path, max_download_size_bytes=limit_bytes)
    return save


def _filename_from_url(url: str) -> str:
    name = Path(unquote(urlparse(url).path)).name
    return name or "download"


def _coerce_settings(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise InvalidSettingsError("Settings must be a JSON object.") from e
        if isinstance(parsed, dict):
            return parsed
    raise InvalidSettingsError("Settings must be a JSON object.")


def _form_settings() -> Dict[str, Any]:
    settings = _coerce_settings(request.form.get("settings"))
    for key in request.form:
        match = _SETTINGS_FIELD.match(key)
        if match:
            settings[match.group(1)] = request.form.get(key)
    return settings


def _collect_request(limit_bytes: int) -> Tuple[Optional[str], Dict[str, Any], List[IncomingFile]]:
    """Read the tool, its settings and the files from a JSON or multipart request."""
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data:
            raise InvalidRequestError("Invalid JSON body")

        settings = _coerce_settings(data.get("settings"))
        download_url = data.get('file_download_link') or data.get('url')
        if download_url:
            if not isinstance(download_url, str):
                raise InvalidRequestError("Invalid file_download_link")
            utils.validate_external_url(download_url)
            filename = data.get("filename") or _filename_from_url(download_url)
            logger.info("Conversion request with URL: %s", utils.redact_url_for_log(download_url, max_len=120))
            return data.get("tool"), settings, [IncomingFile(str(filename), _save_download(download_url, limit_bytes))]

        if 'file_content_base64' in data:
            filename = data.get("filename")
            if not filename or not isinstance(filename, str):
                raise InvalidRequestError("'filename' is required with file_content_base64")
            try:
                content = base64.b64decode(data['file_content_base64'], validate=True)
            except (binascii.Error, TypeError, ValueError) as e:
                raise InvalidRequestError("Invalid base64") from e
            if len(content) > limit_bytes:
                raise FileTooLargeError.for_file(filename, len(content), limit_bytes)
            logger.info(f"Conversion request with base64: {utils.format_bytes(len(content))}")
            return data.get("tool"), settings, [IncomingFile(filename, _save_bytes(content))]

        raise InvalidRequestError("Missing file_download_link or file_content_base64")

    uploads = [
        upload
        for field_name in UPLOAD_FIELDS
        for upload in request.files.getlist(field_name)
        if upload and upload.filename
    ]
    if not uploads:
        raise InvalidRequestError("No files uploaded. Use the 'files' field.")
    return (
        request.form.get("tool"),
        _form_settings(),
        [IncomingFile(upload.filename, _save_storage(upload)) for upload in uploads],
    )


def _resolve_category(api_category: str) -> str:
    category = API_CATEGORIES.get((api_category or "").lower())
    if category is None:
        raise UnsupportedToolError(f"Unknown tool category: '{api_category}'.")
    return category


def _record_payload(record: ProcessingRecord) -> Dict[str, Any]:
    payload = record.to_dict()
    payload["status_url"] = f"/status/{record.id}"
    payload["file_size_human"] = utils.format_bytes(record.file_size)
    if record.status == STATUS_COMPLETED:
        payload["download_url"] = build_download_url(record.id)
        payload["processed_file_size_human"] = utils.format_bytes(record.processed_file_size)
    return payload


# Routes

@require_auth
def process_upload(api_category: str):
    """
    Accept files for conversion and queue one job per file.

    Accepts:
    - multipart/form-data with 'files' (or 'files[]' / 'file'), 'tool' and 'settings'
    - application/json with 'file_download_link' or 'file_content_base64' + 'filename'

    Multi-file tools (merge-pdf, jpg-to-pdf) get a single job for all files.
    Returns 202 with one entry per queued job; poll /status/<id> for progress.
    """
    category = _resolve_category(api_category)
    config = get_config()
    store = get_store()
    limit_bytes = config.upload_limit_bytes(category)

    tool_name, settings, incoming = _collect_request(limit_bytes)
    if not tool_name:
        raise InvalidRequestError("Missing 'tool' field")
    tool = get_tool(str(tool_name), category)

    if len(incoming) > config.max_files_per_request:
        raise InvalidRequestError(
            f"Too many files: {len(incoming)} (limit {config.max_files_per_request} per request)"
        )
    validate_inputs(tool, [item.filename for item in incoming])

    groups = [incoming] if tool.multi_file else [[item] for item in incoming]
    # Resolving up front rejects bad format settings before anything is stored
    output_extensions = [resolve_output_extension(tool, group[0].filename, settings) for group in groups]

    staged: List[Tuple[str, List[IncomingFile], List[str], int]] = []
    created_dirs: List[Path] = []
    try:
        for group in groups:
            record_id = new_record_id()
            target_dir = file_service.input_dir(config.upload_folder, record_id)
            target_dir.mkdir(parents=True, exist_ok=True)
            created_dirs.append(target_dir)
            paths: List[str] = []
            total = 0
            for idx, item in enumerate(group):
                path = target_dir / file_service.stored_input_name(idx, item.filename)
                size = item.save(path)
                if size > limit_bytes:
                    raise FileTooLargeError.for_file(item.filename, size, limit_bytes)
                if size == 0:
                    raise InvalidRequestError(f"'{item.filename}' is empty")
                paths.append(str(path))
                total += size
            staged.append((record_id, group, paths, total))
    except Exception:
        for target_dir in created_dirs:
            shutil.rmtree(target_dir, ignore_errors=True)
        raise

    results = []
    busy_error: Optional[ServerBusyError] = None
    for (record_id, group, paths, total), output_ext in zip(staged, output_extensions):
        record = store.create(
            category,
            tool.name,
            group[0].filename,
            input_paths=paths,
            file_size=total,
            settings=settings,
            record_id=record_id,
        )
        entry = {
            "id": record.id,
            "filename": record.original_filename,
            "status": record.status,
            "status_url": f"/status/{record.id}",
            "download_url": build_download_url(record.id),
        }
        try:
            job_queue.enqueue(record.id, {"output_extension": output_ext})
        except ServerBusyError as e:
            busy_error = e
            store.mark_failed(record.id, e.message, e.error_type)
            entry["status"] = STATUS_FAILED
            entry["error"] = e.message
        results.append(entry)

    if busy_error is not None and all(entry["status"] == STATUS_FAILED for entry in results):
        raise busy_error

    logger.info(f"Queued {len(results)} {tool.name} job(s) ({utils.format_bytes(sum(s[3] for s in staged))})")
    return jsonify({
        "success": True,
        "tool": tool.name,
        "category": category,
        "results": results,
    }), 202


def _fail_record(record_id: str, message: str, error_type: str, elapsed: float, out_dir: Optional[Path]) -> None:
    if out_dir is not None:
        shutil.rmtree(out_dir, ignore_errors=True)
    try:
        get_store().mark_failed(record_id, message, error_type, processing_time=elapsed)
    except ConversionError as e:
        logger.warning(f"[{record_id}] Could not mark record failed: {e.message}")


def process_conversion_job(record_id: str, task_data: Dict[str, Any]) -> bool:
    """Run the tool for one record and persist the outcome.

    Returns True when the record ended completed.
    """
    store = get_store()
    config = get_config()
    start_time = time.time()

    try:
        record = store.mark_processing(record_id)
    except ConversionError as e:
        logger.warning(f"[{record_id}] Skipping job: {e.message}")
        return False

    def progress_callback(percent: int, stage: str, message: str) -> None:
        try:
            store.update_progress(record_id, percent, stage)
        except ConversionError as e:
            logger.warning(f"[{record_id}] Progress update dropped: {e.message}")
            return
        logger.info(f"[{record_id}] {percent}% {stage}: {message}")

    out_dir: Optional[Path] = None
    try:
        progress_callback(5, "receiving", "Checking input files")
        tool = get_tool(record.tool_name)
        input_paths = [Path(p) for p in record.input_paths]
        missing = [p.name for p in input_paths if not p.is_file()]
        if not input_paths or missing:
            raise ConversionError(f"Uploaded file is no longer available: {', '.join(missing) or 'none'}")

        output_ext = task_data.get("output_extension") or resolve_output_extension(
            tool, record.original_filename, record.settings
        )
        friendly_name = download_name(tool, record.original_filename, output_ext)
        out_dir = file_service.output_dir(config.upload_folder, record_id)
        out_dir.mkdir(parents=True, exist_ok=True)
        output_path = out_dir / (secure_filename(friendly_name) or f"output.{output_ext}")

        progress_callback(10, "converting", f"Running {tool.name} on {record.original_filename}")
        ctx = ConversionContext(
            record_id=record_id,
            tool=tool,
            input_paths=input_paths,
            output_path=output_path,
            settings=record.settings,
            config=config,
            progress=progress_callback,
        )
        result_path = Path(tool.handler(ctx))

        progress_callback(95, "finalizing", "Verifying output")
        if not result_path.is_file() or result_path.stat().st_size == 0:
            raise OutputMissingError.for_tool(tool.name)

        output_size = result_path.stat().st_size
        elapsed = time.time() - start_time
        store.mark_completed(record_id, str(result_path), friendly_name, output_size, elapsed)
        logger.info(
            f"[{record_id}] Completed {tool.name}: {utils.format_bytes(record.file_size)} -> "
            f"{utils.format_bytes(output_size)} in {elapsed:.1f}s"
        )
        return True
    except ConversionError as e:
        logger.error(f"[{record_id}] {e.error_type}: {e.message}")
        _fail_record(record_id, e.message, e.error_type, time.time() - start_time, out_dir)
        return False
    except Exception as e:
        logger.exception(f"[{record_id}] Unexpected conversion error: {e}")
        _fail_record(record_id, str(e) or "Conversion failed", "UnknownError", time.time() - start_time, out_dir)
        return False


def handle_job_crash(record_id: str, error: BaseException) -> None:
    """Worker failure hook: make sure a crashed job does not stay in progress."""
    record = get_store().get(record_id)
    if record is None or record.is_finished:
        return
    get_store().mark_failed(record_id, str(error) or "Worker crashed", "WorkerCrash")


def cleanup_daemon() -> None:
    config = get_config()
    file_service.cleanup_daemon(get_store(), config.upload_folder, config.file_retention_hours)


def build_health_snapshot() -> Dict[str, Any]:
    """Build a lightweight snapshot for the health endpoint."""
    config = get_config()
    engines = engine_status(config)

    database_ok = True
    try:
        get_store().stats()
    except sqlite3.Error as e:
        logger.error(f"Health check database error: {e}")
        database_ok = False

    try:
        free_bytes = shutil.disk_usage(config.upload_folder).free
    except OSError:
        free_bytes = -1

    healthy = database_ok and any(engine["available"] for engine in engines.values())
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": to_timestamp(utcnow()),
        "engines": engines,
        "database": {
            "path": str(config.database_path),
            "available": database_ok,
        },
        "cpu_effective": utils.get_effective_cpu_count(),
        "storage": {
            "upload_folder": str(config.upload_folder.resolve()),
            "free_bytes": free_bytes,
            "retention_hours": config.file_retention_hours,
        },
        "queue": job_queue.get_stats(),
        "limits": {
            "max_upload_mb": dict(config.max_upload_mb),
            "max_files_per_request": config.max_files_per_request,
            "queue_max_size": config.queue_max_size,
        },
    }


# Error handlers
def handle_large_file(e):
    max_mb = int(get_config().max_content_length / (1024 * 1024))
    message = f"File too large (max {max_mb}MB)"
    return jsonify({
        "success": False,
        "error": message,
        "error_type": "FileTooLarge",
        "error_message": message,
    }), 413


def handle_conversion_error(e):
    if e.status_code >= 500:
        logger.error("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    else:
        logger.info("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    return create_error_response(e, e.status_code)


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return create_error_response(e, e.code or 400)


def handle_error(e):
    logger.exception("Unhandled error")
    return create_error_response(e, get_error_status_code(e))


@require_auth
def get_status(record_id: str):
    """
    Get the status of a conversion.

    Args:
        record_id: The id from the upload response.
    """
    record = get_store().require(record_id)
    payload = _record_payload(record)
    payload["success"] = record.status != STATUS_FAILED
    if record.status == STATUS_FAILED:
        payload["error"] = record.error_message
    return jsonify(payload)


def download(record_id: str, api_category: Optional[str] = None):
    """
    Direct file download endpoint.

    Serves the converted file under its friendly name once the record is
    completed. Files are removed after FILE_RETENTION_HOURS.
    """
    record = get_store().require(record_id)
    if api_category is not None and _resolve_category(api_category) != record.category:
        raise RecordNotFoundError.for_id(record_id)
    if record.status != STATUS_COMPLETED:
        raise NotReadyError.for_status(record_id, record.status)

    file_path = file_service.resolve_stored_path(get_config().upload_folder, record.output_path)
    if file_path is None:
        logger.error(f"[{record_id}] Output file missing: {record.output_path}")
        raise RecordNotFoundError("The converted file is no longer available.")

    display_name = record.output_filename or file_path.name
    logger.info(f"[{record_id}] Serving {display_name} ({utils.format_bytes(file_path.stat().st_size)})")
    return send_file(
        file_path,
        as_attachment=True,
        download_name=display_name,
        mimetype=file_service.mime_type_for(display_name),
    )


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidRequestError(f"Query parameter '{name}' must be an integer") from e


@require_auth
def history():
    """Paginated conversion history with status/category filters and search."""
    status = request.args.get("status") or None
    if status and status not in STATUSES:
        raise InvalidRequestError(f"Unknown status filter: '{status}'")
    sort = request.args.get("sort") or "newest"
    if sort not in SORT_ORDERS:
        raise InvalidRequestError(f"Unknown sort order: '{sort}'")
    category = request.args.get("category")
    if category:
        category = _resolve_category(category)

    result = get_store().list_records(
        status=status,
        search=request.args.get("search") or None,
        sort=sort,
        page=_int_arg("page", 1),
        per_page=_int_arg("per_page", DEFAULT_PER_PAGE),
        category=category or None,
    )
    return jsonify({
        "success": True,
        "items": [_record_payload(record) for record in result["items"]],
        "pagination": {key: result[key] for key in ("total", "page", "per_page", "pages")},
    })


@require_auth
def stats():
    summary = get_store().stats()
    summary["input_size_human"] = utils.format_bytes(summary["input_bytes_completed"])
    summary["output_size_human"] = utils.format_bytes(summary["output_bytes_completed"])
    return jsonify({"success": True, "stats": summary, "queue": job_queue.get_stats()})


@require_auth
def delete_record(record_id: str):
    """Delete a record and its files. Records being converted cannot be deleted."""
    store = get_store()
    record = store.require(record_id)
    if record.status == STATUS_PROCESSING:
        raise InvalidTransitionError.for_status(record_id, record.status, "deleted")
    removed = file_service.remove_record_files(get_config().upload_folder, record_id)
    store.delete(record_id)
    return jsonify({"success": True, "id": record_id, "files_deleted": removed["files"]})


def list_tools():
    return jsonify({"success": True, "categories": catalog()})


def list_category_tools(api_category: str):
    category = _resolve_category(api_category)
    return jsonify({
        "success": True,
        "category": category,
        "tools": [spec.as_dict() for spec in tools_for_category(category)],
    })


def index():
    """Service index listing categories and endpoints."""
    return jsonify({
        "service": "FlexiConvert",
        "categories": list(CATEGORIES),
        "endpoints": {
            "process": "/api/<pdf|image|audio|video>-tools/process",
            "status": "/status/<id>",
            "download": "/download/<id>",
            "tools": "/api/tools",
            "history": "/api/conversions/history",
            "stats": "/api/conversions/stats",
            "health": "/health",
        },
    })


def health():
    """Health check endpoint."""
    return jsonify(build_health_snapshot())


def favicon():
    """Serve an empty favicon to stop 500/404 noise."""
    return jsonify({"status": "ok"}), 200
