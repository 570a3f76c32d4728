"""Audio tools (FFmpeg)."""

import logging
from pathlib import Path
from typing import Any, Dict, List

from flexiconvert.core.exceptions import InvalidSettingsError
from flexiconvert.engine.external import FFMPEG_NAMES, require_binary, run_engine
from flexiconvert.engine.tools import ConversionContext, register, setting_choice

logger = logging.getLogger(__name__)

CATEGORY = "audio"

AUDIO_INPUTS = ("mp3", "wav", "flac", "aac", "ogg", "m4a")

# output extension -> muxer and codec arguments
CODEC_ARGS: Dict[str, List[str]] = {
    "wav": ["-f", "wav", "-c:a", "pcm_s16le"],
    "flac": ["-f", "flac", "-c:a", "flac"],
    "aac": ["-f", "adts", "-c:a", "aac"],
    "ogg": ["-f", "ogg", "-c:a", "libvorbis"],
    "mp3": ["-f", "mp3", "-c:a", "libmp3lame"],
    "m4a": ["-f", "ipod", "-c:a", "aac"],
}
LOSSLESS = {"wav", "flac"}

QUALITY_BITRATES = {"low": "128k", "medium": "192k", "high": "320k"}
SAMPLE_RATES = ("8000", "11025", "16000", "22050", "32000", "44100", "48000", "96000")
NOISE_FILTER = "highpass=f=200,lowpass=f=3000"

# name -> (accepted inputs, output extension)
FORMAT_CONVERSIONS = {
    "mp3-to-wav": (("mp3",), "wav"),
    "wav-to-mp3": (("wav",), "mp3"),
    "flac-to-mp3": (("flac",), "mp3"),
    "aac-to-mp3": (("aac", "m4a"), "mp3"),
    "ogg-to-mp3": (("ogg",), "mp3"),
    "mp3-to-flac": (("mp3",), "flac"),
    "mp3-to-aac": (("mp3",), "aac"),
    "wav-to-flac": (("wav",), "flac"),
    "flac-to-wav": (("flac",), "wav"),
    "mp3-to-ogg": (("mp3",), "ogg"),
    "wav-to-ogg": (("wav",), "ogg"),
}


def _compress_bitrate(settings: Dict[str, Any]) -> str:
    raw = str(settings.get("bitrate") or "128").strip().lower().rstrip("k")
    try:
        value = int(raw)
    except ValueError as e:
        raise InvalidSettingsError(f"Setting 'bitrate' must be in kbps, e.g. 128 (got {raw!r}).") from e
    if not 32 <= value <= 320:
        raise InvalidSettingsError("Setting 'bitrate' must be between 32 and 320 kbps.")
    return f"{value}k"


def build_audio_command(ffmpeg: str, input_path: Path, output_path: Path, tool: str, settings: Dict[str, Any]) -> List[str]:
    output_ext = output_path.suffix.lower().lstrip(".")
    if output_ext not in CODEC_ARGS:
        raise InvalidSettingsError(f"Cannot write .{output_ext} audio.")

    sample_rate = setting_choice(settings, "sampleRate", "44100", SAMPLE_RATES)
    channels = setting_choice(settings, "channels", "stereo", ("mono", "stereo"))

    # -vn drops embedded cover art streams
    cmd = [ffmpeg, "-y", "-i", str(input_path), "-vn"]

    if tool == "compress-audio":
        cmd += CODEC_ARGS[output_ext]
        if output_ext == "flac":
            cmd += ["-compression_level", "8"]
        elif output_ext == "ogg":
            cmd += ["-q:a", "3"]
        elif output_ext in ("mp3", "aac", "m4a"):
            cmd += ["-b:a", _compress_bitrate(settings)]
    elif tool == "noise-reduction":
        cmd += ["-af", NOISE_FILTER, *CODEC_ARGS[output_ext]]
    else:
        cmd += CODEC_ARGS[output_ext]
        if output_ext not in LOSSLESS:
            quality = setting_choice(settings, "quality", "medium", QUALITY_BITRATES.keys())
            cmd += ["-b:a", QUALITY_BITRATES[quality]]

    cmd += ["-ar", sample_rate, "-ac", "1" if channels == "mono" else "2", str(output_path)]
    return cmd


def process_audio(ctx: ConversionContext) -> Path:
    ffmpeg = require_binary("FFmpeg", FFMPEG_NAMES, ctx.config.ffmpeg.path)
    cmd = build_audio_command(ffmpeg, ctx.input_path, ctx.output_path, ctx.tool.name, ctx.settings)
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.progress(30, "encoding", f"Encoding {ctx.output_extension.upper()} audio")
    run_engine("FFmpeg", cmd, ctx.config.ffmpeg.timeout, filename=ctx.input_path.name)
    return ctx.output_path


for _name, (_inputs, _output) in FORMAT_CONVERSIONS.items():
    register(_name, CATEGORY, process_audio, _inputs, _output, download_suffix="",
             description=f"Convert {_inputs[0].upper()} to {_output.upper()}")

register("compress-audio", CATEGORY, process_audio, AUDIO_INPUTS, None, download_suffix="_compressed",
         description="Reduce file size in the same format")
register("noise-reduction", CATEGORY, process_audio, AUDIO_INPUTS, None, download_suffix="_cleaned",
         description="Band-pass filter for speech (200 Hz - 3 kHz)")
