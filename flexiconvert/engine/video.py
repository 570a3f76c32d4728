"""Video tools (FFmpeg)."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from flexiconvert.core.exceptions import InvalidSettingsError
from flexiconvert.engine.external import FFMPEG_NAMES, require_binary, run_engine
from flexiconvert.engine.tools import ConversionContext, register, setting_int

logger = logging.getLogger(__name__)

CATEGORY = "video"

VIDEO_INPUTS = ("mp4", "avi", "mkv", "mov", "webm")

RESOLUTIONS = {
    "480p": "854:480",
    "720p": "1280:720",
    "1080p": "1920:1080",
    "1440p": "2560:1440",
    "2160p": "3840:2160",
}

FORMAT_CONVERSIONS = {
    "mp4-to-avi": (("mp4",), "avi"),
    "avi-to-mp4": (("avi",), "mp4"),
    "mkv-to-mp4": (("mkv",), "mp4"),
    "mov-to-mp4": (("mov",), "mp4"),
    "mp4-to-webm": (("mp4",), "webm"),
    "webm-to-mp4": (("webm",), "mp4"),
}

ORIGINAL = "original"


def _bitrate_kbps(settings: Dict[str, Any], default: str) -> Optional[str]:
    raw = str(settings.get("bitrate") or default).strip().lower()
    if raw == ORIGINAL:
        return None
    try:
        value = int(raw.rstrip("k"))
    except ValueError as e:
        raise InvalidSettingsError(f"Setting 'bitrate' must be in kbps, e.g. 2000 (got {raw!r}).") from e
    if not 100 <= value <= 100000:
        raise InvalidSettingsError("Setting 'bitrate' must be between 100 and 100000 kbps.")
    return f"{value}k"


def _resolution(settings: Dict[str, Any], default: str) -> Optional[str]:
    raw = str(settings.get("resolution") or default).strip().lower()
    if raw == ORIGINAL:
        return None
    if raw not in RESOLUTIONS:
        raise InvalidSettingsError(
            f"Setting 'resolution' must be one of {', '.join(RESOLUTIONS)} or original (got {raw!r})."
        )
    return RESOLUTIONS[raw]


def _frame_rate(settings: Dict[str, Any], default: str) -> Optional[str]:
    raw = str(settings.get("frameRate") or default).strip().lower()
    if raw == ORIGINAL:
        return None
    value = setting_int({"frameRate": raw}, "frameRate", None, minimum=1, maximum=120)
    return str(value)


def build_video_command(ffmpeg: str, input_path: Path, output_path: Path, tool: str, settings: Dict[str, Any]) -> List[str]:
    output_ext = output_path.suffix.lower().lstrip(".")
    cmd = [ffmpeg, "-y", "-i", str(input_path)]

    if tool == "video-to-gif":
        fps = setting_int(settings, "fps", 10, minimum=1, maximum=30)
        width = setting_int(settings, "width", 320, minimum=16, maximum=1920)
        return cmd + ["-vf", f"fps={fps},scale={width}:-1:flags=lanczos", "-an", str(output_path)]

    filters: List[str] = []
    if tool == "compress-video":
        cmd += ["-c:v", "libx264", "-preset", "fast", "-crf", "28"]
        bitrate = _bitrate_kbps(settings, "2000")
        if bitrate:
            cmd += ["-b:v", bitrate]
        scale = _resolution(settings, ORIGINAL)
        if scale:
            filters.append(f"scale={scale}")
        fps = _frame_rate(settings, ORIGINAL)
        if fps:
            cmd += ["-r", fps]
    elif tool == "change-resolution":
        cmd += ["-c:v", "libx264"]
        scale = _resolution(settings, "720p")
        if scale:
            filters.append(f"scale={scale}")
    elif tool == "change-bitrate":
        cmd += ["-c:v", "libx264"]
        bitrate = _bitrate_kbps(settings, "2000")
        if bitrate:
            cmd += ["-b:v", bitrate]
    elif tool == "change-fps":
        cmd += ["-c:v", "libx264"]
        fps = _frame_rate(settings, "30")
        if fps:
            cmd += ["-r", fps]
    elif output_ext == "webm":
        cmd += ["-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0"]
    else:
        cmd += ["-c:v", "libx264", "-preset", "medium", "-crf", "23"]

    if filters:
        cmd += ["-vf", ",".join(filters)]

    if output_ext == "webm":
        cmd += ["-c:a", "libopus", "-b:a", "128k"]
    else:
        cmd += ["-c:a", "aac", "-b:a", "128k"]
    return cmd + [str(output_path)]


def process_video(ctx: ConversionContext) -> Path:
    ffmpeg = require_binary("FFmpeg", FFMPEG_NAMES, ctx.config.ffmpeg.path)
    cmd = build_video_command(ffmpeg, ctx.input_path, ctx.output_path, ctx.tool.name, ctx.settings)
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.progress(20, "encoding", f"Encoding {ctx.output_extension.upper()} video")
    run_engine("FFmpeg", cmd, ctx.config.ffmpeg.timeout, filename=ctx.input_path.name)
    return ctx.output_path


for _name, (_inputs, _output) in FORMAT_CONVERSIONS.items():
    register(_name, CATEGORY, process_video, _inputs, _output, download_suffix="",
             description=f"Convert {_inputs[0].upper()} to {_output.upper()}")

register("video-to-gif", CATEGORY, process_video, VIDEO_INPUTS, "gif", download_suffix="",
         description="Animated GIF (10 fps, 320px wide)")
# Optimisation tools always write MP4
register("compress-video", CATEGORY, process_video, VIDEO_INPUTS, "mp4", download_suffix="_compressed",
         description="Smaller H.264 file (bitrate, resolution, frameRate)")
register("change-resolution", CATEGORY, process_video, VIDEO_INPUTS, "mp4", download_suffix="_resized",
         description="Scale to 480p-2160p")
register("change-bitrate", CATEGORY, process_video, VIDEO_INPUTS, "mp4", download_suffix="_bitrate",
         description="Re-encode at a target bitrate")
register("change-fps", CATEGORY, process_video, VIDEO_INPUTS, "mp4", download_suffix="_fps",
         description="Change the frame rate")
