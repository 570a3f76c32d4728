"""Locate and run external conversion programs (LibreOffice, Ghostscript, FFmpeg, ...)."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from flexiconvert.core.exceptions import (
    EngineFailedError,
    EngineUnavailableError,
    ProcessingTimeoutError,
)

logger = logging.getLogger(__name__)

# Binary names tried in order when no explicit path is configured.
LIBREOFFICE_NAMES = ("soffice", "libreoffice")
GHOSTSCRIPT_NAMES = ("gs", "gswin64c", "gswin32c")
FFMPEG_NAMES = ("ffmpeg",)
IMAGEMAGICK_NAMES = ("magick", "convert")
PDFTOPPM_NAMES = ("pdftoppm",)


def find_binary(names: Iterable[str], override: Optional[str] = None) -> Optional[str]:
    """Return the first usable executable, preferring an explicit override.

    Args:
        names: Candidate program names searched on PATH.
        override: Configured path; used when it exists and is executable.

    Returns:
        Executable path or name, or None when nothing is installed.
    """
    if override:
        if Path(override).is_file() and os.access(override, os.X_OK):
            return override
        found = shutil.which(override)
        if found:
            return found
        logger.warning("Configured engine path %s is not executable; searching PATH", override)

    for name in names:
        found = shutil.which(name)
        if found:
            return found
    return None


def require_binary(engine: str, names: Iterable[str], override: Optional[str] = None) -> str:
    """Like find_binary but raises EngineUnavailableError when missing."""
    binary = find_binary(names, override)
    if not binary:
        raise EngineUnavailableError.for_engine(engine)
    return binary


def translate_engine_error(engine: str, stderr: str, return_code: int) -> str:
    """Translate engine stderr to a clear, user-friendly error message.

    Also logs the full stderr for debugging purposes.
    """
    # Log full stderr for debugging (don't truncate!)
    logger.error(f"{engine} failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()

    if 'password' in stderr_lower or 'encrypted' in stderr_lower or 'invalidfileaccess' in stderr_lower:
        return "The file is password-protected or locked. Please remove the password and try again."

    if any(x in stderr_lower for x in ['unknown encoder', 'unknown decoder', 'encoder not found', 'codec not currently supported']):
        return f"{engine} on this server does not support the requested format."

    if any(x in stderr_lower for x in ['invalid data', 'corrupt', 'moov atom not found', 'syntaxerror', 'ioerror', 'eofread', 'improper image header', 'not a jpeg file']):
        return "The file is damaged or not a valid file of its type. Please use a different copy."

    if 'no such file' in stderr_lower:
        return "The input file could not be found while converting."

    if 'permission denied' in stderr_lower:
        return f"{engine} could not read or write the file (permission denied)."

    if 'typecheck' in stderr_lower or 'rangecheck' in stderr_lower:
        return "The file has corrupted internal data. Try re-saving it and upload again."

    # Generic fallback with exit code
    return f"Conversion failed ({engine} exit code {return_code}). The file may be corrupted or unsupported."


def run_engine(
    engine: str,
    cmd: Sequence[str],
    timeout: int,
    filename: str = "file",
) -> subprocess.CompletedProcess:
    """Run an external program as an argv list (never through a shell).

    Raises:
        ProcessingTimeoutError: When the program runs past ``timeout`` seconds.
        EngineFailedError: When it exits non-zero.
    """
    argv: List[str] = [str(part) for part in cmd]
    logger.info("Running %s: %s", engine, " ".join(argv))
    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("%s timed out after %ss on %s", engine, timeout, filename)
        raise ProcessingTimeoutError.for_file(filename, engine, timeout) from e
    except FileNotFoundError as e:
        raise EngineUnavailableError.for_engine(engine) from e

    if result.returncode != 0:
        message = translate_engine_error(engine, result.stderr or result.stdout, result.returncode)
        raise EngineFailedError(message, engine=engine, return_code=result.returncode)

    return result


def engine_status(config) -> Dict[str, Dict[str, object]]:
    """Report which external programs are installed, for the health endpoint."""
    checks = {
        "libreoffice": find_binary(LIBREOFFICE_NAMES, config.libreoffice.path),
        "ghostscript": find_binary(GHOSTSCRIPT_NAMES, config.ghostscript.path),
        "ffmpeg": find_binary(FFMPEG_NAMES, config.ffmpeg.path),
        "imagemagick": find_binary(IMAGEMAGICK_NAMES, config.imagemagick.path),
        "pdftoppm": find_binary(PDFTOPPM_NAMES, config.pdftoppm_path),
    }
    return {
        name: {"available": command is not None, "command": command or "missing"}
        for name, command in checks.items()
    }
