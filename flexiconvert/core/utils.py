"""Shared utility functions for the conversion service.

Contains:
- env_int: integer environment lookups with defaults
- format_bytes: size reporting
- clean_filename: safe names for downloads
- download_file: download a source file from a URL with security validation
"""

import ipaddress
import logging
import math
import os
import re
import socket
from pathlib import Path
from urllib.parse import urlparse, urljoin

import requests

from flexiconvert.core.exceptions import DownloadError

# Constants for remote downloads
DOWNLOAD_TIMEOUT: int = 300  # 5 minute timeout
MAX_DOWNLOAD_SIZE: int = 524288000  # 500 MB max

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w\s\-\.\(\)\[\]]")
_WHITESPACE = re.compile(r"\s+")


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def format_bytes(size: int | float | None, precision: int = 2) -> str:
    """Format a byte count for humans, e.g. 1536 -> '1.5 KB'."""
    if not size or size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    idx = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024 ** idx), precision)
    if value == int(value):
        value = int(value)
    return f"{value} {units[idx]}"


def clean_filename(name: str, fallback: str = "file", max_len: int = 100) -> str:
    """Strip unsafe characters from a base filename (no extension)."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", name or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if len(cleaned) > max_len:
        cleaned = cleaned[:max_len].rstrip()
    return cleaned or fallback


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot ('' when absent)."""
    return Path(filename or "").suffix.lower().lstrip(".")


def redact_url_for_log(url: str, max_len: int = 200) -> str:
    """Return a URL safe for logs (no query/fragment/userinfo)."""
    if not url or not isinstance(url, str):
        return "EMPTY/NONE"

    trimmed = url.strip()
    try:
        parsed = urlparse(trimmed)
        if not parsed.scheme or not parsed.netloc:
            safe = trimmed
        else:
            host = parsed.hostname or ""
            if ":" in host and not host.startswith("["):
                host = f"[{host}]"
            if parsed.port:
                netloc = f"{host}:{parsed.port}"
            else:
                netloc = host
            safe = parsed._replace(netloc=netloc, query="", fragment="", params="").geturl()
    except ValueError:
        safe = trimmed

    if len(safe) > max_len:
        return safe[:max_len] + "..."
    return safe


def _parse_cpu_list(cpu_list: str) -> int:
    """Parse cpuset list format like '0-3,5' into a CPU count."""
    count = 0
    for part in cpu_list.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            try:
                count += int(end) - int(start) + 1
            except ValueError:
                return 0
        else:
            try:
                int(part)
            except ValueError:
                return 0
            count += 1
    return count


def get_effective_cpu_count(default: int = 1) -> int:
    """Return effective CPU count, respecting cgroup quotas when present."""
    host_count = os.cpu_count() or default
    try:
        affinity = os.sched_getaffinity(0)
        if affinity:
            host_count = min(host_count, len(affinity))
    except (AttributeError, OSError):
        pass
    quota_count = None

    # cgroup v2
    cpu_max = Path("/sys/fs/cgroup/cpu.max")
    if cpu_max.exists():
        try:
            quota_str, period_str = cpu_max.read_text().strip().split()[:2]
            if quota_str != "max":
                quota = int(quota_str)
                period = int(period_str)
                if quota > 0 and period > 0:
                    quota_count = max(1, int(quota / period))
        except (OSError, ValueError):
            quota_count = None

    # cgroup v1
    if quota_count is None:
        quota_path = Path("/sys/fs/cgroup/cpu/cpu.cfs_quota_us")
        period_path = Path("/sys/fs/cgroup/cpu/cpu.cfs_period_us")
        if quota_path.exists() and period_path.exists():
            try:
                quota = int(quota_path.read_text().strip())
                period = int(period_path.read_text().strip())
                if quota > 0 and period > 0:
                    quota_count = max(1, int(quota / period))
            except (OSError, ValueError):
                quota_count = None

    cpuset_path = Path("/sys/fs/cgroup/cpuset.cpus.effective")
    cpuset_count = None
    if cpuset_path.exists():
        try:
            cpuset_count = _parse_cpu_list(cpuset_path.read_text().strip()) or None
        except OSError:
            cpuset_count = None

    effective = host_count
    if quota_count:
        effective = min(effective, quota_count)
    if cpuset_count:
        effective = min(effective, cpuset_count)

    return max(default, effective)


def _is_disallowed_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def _resolve_hostname_ips(hostname: str) -> list:
    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return []

    ips = []
    for info in addrinfos:
        addr = info[4][0]
        try:
            ip = ipaddress.ip_address(addr)
        except ValueError:
            continue
        if ip not in ips:
            ips.append(ip)
    return ips


def validate_external_url(url: str) -> None:
    """Check a URL is safe to fetch (not internal/metadata endpoints).

    Blocks cloud metadata endpoints, localhost and private IP ranges,
    non-http(s) schemes and credentials embedded in the URL.

    Raises:
        DownloadError: If the URL is malformed or blocked.
    """
    logger.info("[URL_CHECK] Validating: %s", redact_url_for_log(url))

    if not url or not isinstance(url, str):
        raise DownloadError.invalid_url(str(url))

    trimmed = url.strip()
    try:
        parsed = urlparse(trimmed)
    except ValueError as e:
        raise DownloadError.invalid_url(trimmed) from e

    if not parsed.scheme or not parsed.netloc:
        raise DownloadError.invalid_url(trimmed)

    if parsed.scheme.lower() not in ('http', 'https'):
        raise DownloadError.invalid_url(trimmed)

    if parsed.username or parsed.password:
        raise DownloadError.blocked_url(trimmed)

    blocked_hosts = {
        '169.254.169.254',  # Azure/AWS metadata
        'metadata.google.internal',
        'localhost',
        '127.0.0.1',
        '0.0.0.0',
    }

    hostname = (parsed.hostname or '').strip()
    if not hostname:
        raise DownloadError.invalid_url(trimmed)

    if hostname.lower() in blocked_hosts:
        raise DownloadError.blocked_url(trimmed)

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        resolved_ips = _resolve_hostname_ips(hostname)
        if not resolved_ips:
            raise DownloadError.invalid_url(trimmed)
        for resolved in resolved_ips:
            if _is_disallowed_ip(resolved):
                raise DownloadError.blocked_url(trimmed)
    else:
        if _is_disallowed_ip(ip):
            raise DownloadError.blocked_url(trimmed)


def download_file(url: str, output_path: Path, max_download_size_bytes: int = MAX_DOWNLOAD_SIZE) -> int:
    """Download a source file from a URL.

    Args:
        url: The URL to download from.
        output_path: Path to save the downloaded file.
        max_download_size_bytes: Maximum allowed download size in bytes.

    Returns:
        Number of bytes written.

    Raises:
        DownloadError: If download fails, URL is blocked, or file is too large.
    """
    validate_external_url(url)

    logger.info("Downloading from %s...", redact_url_for_log(url, max_len=120))
    limit_mb = max_download_size_bytes / (1024 * 1024)

    def _perform_request(target_url: str) -> requests.Response:
        return requests.get(
            target_url,
            timeout=DOWNLOAD_TIMEOUT,
            stream=True,
            headers={'User-Agent': 'FlexiConvert/1.0'},
            allow_redirects=False  # Handle redirects manually to re-validate
        )

    response = None
    try:
        response = _perform_request(url)

        # Handle a single redirect with re-validation
        if response.is_redirect or response.status_code in (301, 302, 303, 307, 308):
            redirect_target = response.headers.get("location")
            if not redirect_target:
                raise DownloadError.invalid_url(url)
            redirect_url = urljoin(url, redirect_target)
            validate_external_url(redirect_url)
            logger.info("[URL_REDIRECT] Following redirect to %s", redact_url_for_log(redirect_url))
            response.close()
            response = _perform_request(redirect_url)

        status = response.status_code
        if status == 404:
            raise DownloadError.not_found(url)
        if status in (401, 403):
            raise DownloadError.expired_or_forbidden(url, status_code=status)
        if status >= 400:
            raise DownloadError(f"Download failed (HTTP {status})", status_code=502)

        expected_bytes = None
        content_length = response.headers.get('content-length')
        if content_length:
            try:
                expected_bytes = int(content_length)
            except ValueError:
                expected_bytes = None

        if expected_bytes and expected_bytes > max_download_size_bytes:
            raise DownloadError.too_large(expected_bytes / (1024 * 1024), limit_mb=limit_mb)

        # requests may transparently decompress an encoded body, so only
        # enforce byte-exact Content-Length for identity encoding.
        content_encoding = (response.headers.get("content-encoding") or "").strip().lower()
        strict_length = expected_bytes is not None and content_encoding in ("", "identity")

        downloaded = 0
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'wb') as f:
            for chunk in response.iter_content(chunk_size=8192):
                if not chunk:
                    continue
                downloaded += len(chunk)
                if downloaded > max_download_size_bytes:
                    raise DownloadError.too_large(downloaded / (1024 * 1024), limit_mb=limit_mb)
                if strict_length and downloaded > expected_bytes:
                    raise DownloadError(
                        f"Download exceeded Content-Length ({downloaded:,} > {expected_bytes:,} bytes). "
                        f"The source may be misreporting file size.",
                        status_code=502,
                    )
                f.write(chunk)

        if strict_length and downloaded != expected_bytes:
            raise DownloadError(
                f"Download size mismatch (expected {expected_bytes:,} bytes, got {downloaded:,} bytes). "
                f"The download may be incomplete.",
                status_code=502,
            )

        if downloaded == 0:
            raise DownloadError("Downloaded file is empty", status_code=400)

        logger.info("Downloaded %s (%s) to %s", f"{downloaded:,} bytes", format_bytes(downloaded), output_path.name)
        return downloaded

    except DownloadError:
        output_path.unlink(missing_ok=True)
        raise
    except requests.exceptions.Timeout as e:
        output_path.unlink(missing_ok=True)
        raise DownloadError("Download timed out after 5 minutes", status_code=504) from e
    except requests.exceptions.RequestException as e:
        output_path.unlink(missing_ok=True)
        raise DownloadError(f"Download failed: {e}", status_code=502) from e
    finally:
        if response is not None:
            response.close()
