"""Custom exceptions for conversion operations.

All error messages are written in plain English so users know exactly
what went wrong and how to fix it.
"""

from typing import Iterable, Optional


class ConversionError(Exception):
    """Base exception for all conversion errors."""

    error_type: str = "ConversionError"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        # Allow subclasses to override status codes
        if hasattr(self, "status_code_override"):
            try:
                self.status_code = int(getattr(self, "status_code_override"))  # type: ignore[attr-defined]
            except (TypeError, ValueError):
                pass


class UnsupportedToolError(ConversionError):
    """Tool identifier is unknown or used with the wrong category."""

    error_type: str = "UnsupportedTool"

    @staticmethod
    def unknown(tool: str) -> "UnsupportedToolError":
        return UnsupportedToolError(f"Unsupported tool: '{tool}'.")

    @staticmethod
    def wrong_category(tool: str, category: str) -> "UnsupportedToolError":
        return UnsupportedToolError(
            f"Tool '{tool}' is not available for {category} files."
        )


class InvalidFileTypeError(ConversionError):
    """Uploaded file extension is not accepted by the selected tool."""

    error_type: str = "InvalidFileType"

    @staticmethod
    def for_file(filename: str, expected: Iterable[str], got: str) -> "InvalidFileTypeError":
        expected_list = ", ".join(sorted(expected))
        return InvalidFileTypeError(
            f"'{filename}' is not supported for this conversion. "
            f"Expected: {expected_list}. Got: {got or 'no extension'}."
        )


class InvalidRequestError(ConversionError):
    """Request is missing required fields or is malformed."""

    error_type: str = "InvalidRequest"


class FileTooLargeError(ConversionError):
    """Upload exceeds the size limit for its category."""

    error_type: str = "FileTooLarge"
    status_code: int = 413

    @staticmethod
    def for_file(filename: str, size_bytes: int, limit_bytes: int) -> "FileTooLargeError":
        return FileTooLargeError(
            f"'{filename}' is too large: {size_bytes / (1024 * 1024):.1f}MB "
            f"(limit {limit_bytes / (1024 * 1024):.0f}MB)"
        )


class InvalidSettingsError(ConversionError):
    """Tool settings are missing, malformed, or out of range."""

    error_type: str = "InvalidSettings"


class EngineUnavailableError(ConversionError):
    """A required external program is not installed."""

    error_type: str = "EngineUnavailable"
    status_code: int = 503

    @staticmethod
    def for_engine(engine: str) -> "EngineUnavailableError":
        return EngineUnavailableError(
            f"{engine} is not installed on this server, so this conversion is unavailable."
        )


class EngineFailedError(ConversionError):
    """External program exited with an error."""

    error_type: str = "EngineFailed"
    status_code: int = 422

    def __init__(self, message: str, engine: str = "", return_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.engine = engine
        self.return_code = return_code


class ProcessingTimeoutError(ConversionError):
    """Conversion took longer than the configured limit."""

    error_type: str = "ProcessingTimeout"
    status_code: int = 504

    @staticmethod
    def for_file(filename: str, engine: str, timeout: int) -> "ProcessingTimeoutError":
        return ProcessingTimeoutError(
            f"'{filename}' took longer than {timeout}s to process with {engine}. "
            f"Try a smaller file or simpler settings."
        )


class OutputMissingError(ConversionError):
    """Engine reported success but produced no usable file."""

    error_type: str = "OutputMissing"
    status_code: int = 500

    @staticmethod
    def for_tool(tool: str) -> "OutputMissingError":
        return OutputMissingError(f"Conversion with '{tool}' did not produce an output file.")


class RecordNotFoundError(ConversionError):
    """No processing record exists for the requested id."""

    error_type: str = "NotFound"
    status_code: int = 404

    @staticmethod
    def for_id(record_id: str) -> "RecordNotFoundError":
        return RecordNotFoundError(f"Conversion '{record_id}' not found.")


class NotReadyError(ConversionError):
    """Processing record exists but has not completed yet."""

    error_type: str = "NotReady"
    status_code: int = 409

    @staticmethod
    def for_status(record_id: str, status: str) -> "NotReadyError":
        return NotReadyError(f"Conversion '{record_id}' is {status}; the file is not ready for download.")


class InvalidTransitionError(ConversionError):
    """Processing record cannot move to the requested status."""

    error_type: str = "InvalidTransition"
    status_code: int = 409

    @staticmethod
    def for_status(record_id: str, current: str, target: str) -> "InvalidTransitionError":
        return InvalidTransitionError(
            f"Conversion '{record_id}' is {current} and cannot become {target}."
        )


class ServerBusyError(ConversionError):
    """Work queue is full."""

    error_type: str = "ServerBusy"
    status_code: int = 503

    def __init__(self, message: str = "Server is busy. Please retry shortly.") -> None:
        super().__init__(message)


class DownloadError(ConversionError):
    """Errors related to downloading source files (invalid, blocked, expired, not found)."""

    error_type: str = "DownloadError"

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.status_code_override = status_code
        super().__init__(message)

    @staticmethod
    def invalid_url(url: str) -> "DownloadError":
        return DownloadError(f"Invalid URL: '{url}'", status_code=400)

    @staticmethod
    def blocked_url(url: str) -> "DownloadError":
        return DownloadError(f"URL is blocked for security reasons: '{url}'", status_code=400)

    @staticmethod
    def expired_or_forbidden(url: str, status_code: int) -> "DownloadError":
        return DownloadError(
            f"Download failed (HTTP {status_code}). The link may be expired or access-restricted.",
            status_code=404 if status_code == 404 else 403
        )

    @staticmethod
    def not_found(url: str) -> "DownloadError":
        return DownloadError(f"Download failed (404). File not found or link expired: '{url}'", status_code=404)

    @staticmethod
    def too_large(mb: float, limit_mb: float) -> "DownloadError":
        return DownloadError(f"File too large: {mb:.1f}MB (limit {limit_mb:.0f}MB)", status_code=413)
