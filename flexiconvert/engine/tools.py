"""Tool registry: maps a tool identifier to its converter.

Each tool belongs to one category (document, image, audio, video), accepts a
fixed set of input extensions and produces either a fixed output extension or,
when ``output_extension`` is None, the same extension as its input.
"""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from flexiconvert.core.exceptions import (
    InvalidFileTypeError,
    InvalidSettingsError,
    UnsupportedToolError,
)
from flexiconvert.core.utils import clean_filename, file_extension

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str, str], None]

# Modules whose import registers the built-in tools.
_BUILTIN_MODULES = (
    "flexiconvert.engine.document",
    "flexiconvert.engine.image",
    "flexiconvert.engine.audio",
    "flexiconvert.engine.video",
)


@dataclass
class ConversionContext:
    """Everything a tool handler needs to produce one output file."""

    record_id: str
    tool: "ToolSpec"
    input_paths: List[Path]
    output_path: Path
    settings: Dict[str, Any]
    config: Any
    progress: ProgressCallback = field(default=lambda percent, stage, message: None)

    @property
    def input_path(self) -> Path:
        return self.input_paths[0]

    @property
    def output_extension(self) -> str:
        return file_extension(self.output_path.name)


@dataclass(frozen=True)
class ToolSpec:
    """Registry entry for a single tool."""

    name: str
    category: str
    handler: Callable[[ConversionContext], Path]
    input_extensions: frozenset
    output_extension: Optional[str] = None
    download_suffix: str = "_processed"
    multi_file: bool = False
    output_resolver: Optional[Callable[[str, Dict[str, Any]], str]] = None
    description: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "input_extensions": sorted(self.input_extensions),
            "output_extension": self.output_extension,
            "preserves_format": self.output_extension is None and self.output_resolver is None,
            "multi_file": self.multi_file,
            "description": self.description,
        }


_registry: Dict[str, ToolSpec] = {}
_registry_lock = threading.Lock()
_builtins_loaded = False


def register(
    name: str,
    category: str,
    handler: Callable[[ConversionContext], Path],
    input_extensions: Iterable[str],
    output_extension: Optional[str] = None,
    download_suffix: str = "_processed",
    multi_file: bool = False,
    output_resolver: Optional[Callable[[str, Dict[str, Any]], str]] = None,
    description: str = "",
) -> ToolSpec:
    """Add a tool to the registry; a later registration with the same name wins."""
    spec = ToolSpec(
        name=name,
        category=category,
        handler=handler,
        input_extensions=frozenset(ext.lower().lstrip(".") for ext in input_extensions),
        output_extension=output_extension,
        download_suffix=download_suffix,
        multi_file=multi_file,
        output_resolver=output_resolver,
        description=description,
    )
    with _registry_lock:
        _registry[name] = spec
    return spec


def _ensure_builtins() -> None:
    global _builtins_loaded
    if _builtins_loaded:
        return
    for module_name in _BUILTIN_MODULES:
        importlib.import_module(module_name)
    _builtins_loaded = True


def get_tool(name: str, category: Optional[str] = None) -> ToolSpec:
    """Look up a tool, optionally checking it belongs to ``category``.

    Raises:
        UnsupportedToolError: Unknown tool, or a tool from another category.
    """
    _ensure_builtins()
    spec = _registry.get((name or "").strip())
    if spec is None:
        raise UnsupportedToolError.unknown(name)
    if category is not None and spec.category != category:
        raise UnsupportedToolError.wrong_category(name, category)
    return spec


def tools_for_category(category: str) -> List[ToolSpec]:
    _ensure_builtins()
    return sorted(
        (spec for spec in _registry.values() if spec.category == category),
        key=lambda spec: spec.name,
    )


def catalog() -> Dict[str, List[Dict[str, Any]]]:
    """JSON-able listing of every tool grouped by category."""
    _ensure_builtins()
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for spec in sorted(_registry.values(), key=lambda s: (s.category, s.name)):
        grouped.setdefault(spec.category, []).append(spec.as_dict())
    return grouped


def validate_inputs(tool: ToolSpec, filenames: Iterable[str]) -> None:
    """Check every filename's extension is accepted by the tool (case-insensitive)."""
    for filename in filenames:
        ext = file_extension(filename)
        if ext not in tool.input_extensions:
            raise InvalidFileTypeError.for_file(filename, tool.input_extensions, ext)


def resolve_output_extension(tool: ToolSpec, input_name: str, settings: Optional[Dict[str, Any]] = None) -> str:
    if tool.output_resolver is not None:
        return tool.output_resolver(file_extension(input_name), settings or {})
    if tool.output_extension:
        return tool.output_extension
    ext = file_extension(input_name)
    return "jpg" if ext == "jpeg" else ext


def download_name(tool: ToolSpec, original_filename: str, output_extension: str) -> str:
    """Friendly name for the converted file, e.g. ``report.pdf`` or ``photo_resized.png``."""
    base = clean_filename(Path(original_filename or "").stem)
    return f"{base}{tool.download_suffix}.{output_extension}"


# Settings parsing shared by the tool handlers.

def setting_int(
    settings: Dict[str, Any],
    key: str,
    default: Optional[int],
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> Optional[int]:
    raw = settings.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(float(raw))
    except (TypeError, ValueError) as e:
        raise InvalidSettingsError(f"Setting '{key}' must be a number (got {raw!r}).") from e
    if minimum is not None and value < minimum:
        raise InvalidSettingsError(f"Setting '{key}' must be at least {minimum} (got {value}).")
    if maximum is not None and value > maximum:
        raise InvalidSettingsError(f"Setting '{key}' must be at most {maximum} (got {value}).")
    return value


def setting_bool(settings: Dict[str, Any], key: str, default: bool) -> bool:
    raw = settings.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def setting_choice(settings: Dict[str, Any], key: str, default: str, allowed: Iterable[str]) -> str:
    raw = settings.get(key)
    if raw is None or raw == "":
        return default
    value = str(raw).strip().lower()
    allowed = tuple(allowed)
    if value not in allowed:
        raise InvalidSettingsError(
            f"Setting '{key}' must be one of {', '.join(allowed)} (got {raw!r})."
        )
    return value
