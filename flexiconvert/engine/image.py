"""Image tools: ImageMagick first, Pillow when ImageMagick is missing or fails."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from PIL import (
    Image,
    ImageChops,
    ImageDraw,
    ImageEnhance,
    ImageFilter,
    ImageFont,
    ImageOps,
    UnidentifiedImageError,
)

from flexiconvert.core.exceptions import (
    ConversionError,
    EngineFailedError,
    EngineUnavailableError,
    InvalidSettingsError,
)
from flexiconvert.engine.external import IMAGEMAGICK_NAMES, find_binary, run_engine
from flexiconvert.engine.tools import (
    ConversionContext,
    register,
    setting_bool,
    setting_choice,
    setting_int,
)

logger = logging.getLogger(__name__)

CATEGORY = "image"

IMAGE_INPUTS = ("jpg", "jpeg", "png", "gif", "bmp", "webp", "tif", "tiff")

RESIZE_PRESETS: Dict[str, Tuple[int, int]] = {
    "thumbnail": (150, 150),
    "small": (320, 240),
    "medium": (640, 480),
    "large": (1024, 768),
    "hd": (1280, 720),
    "fullhd": (1920, 1080),
}

NAMED_QUALITY = {"low": 80, "medium": 90, "high": 95, "maximum": 100}
DEFAULT_QUALITY = 85

# name -> (accepted inputs, output extension)
FORMAT_CONVERSIONS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "jpg-to-png": (("jpg", "jpeg"), "png"),
    "png-to-jpg": (("png",), "jpg"),
    "webp-to-jpg": (("webp",), "jpg"),
    "webp-to-png": (("webp",), "png"),
    "jpg-to-webp": (("jpg", "jpeg"), "webp"),
    "png-to-webp": (("png",), "webp"),
    "gif-to-jpg": (("gif",), "jpg"),
    "gif-to-png": (("gif",), "png"),
    "bmp-to-jpg": (("bmp",), "jpg"),
    "tiff-to-jpg": (("tif", "tiff"), "jpg"),
}

EFFECTS = (
    "grayscale", "sepia", "blur", "sharpen", "emboss", "edge",
    "oil-paint", "brightness", "contrast", "negative",
)

# Pillow has no equivalent for these
NO_PILLOW_FALLBACK = {"oil-paint"}

# position -> ImageMagick gravity
WATERMARK_POSITIONS = {
    "top-left": "NorthWest",
    "top-right": "NorthEast",
    "bottom-left": "SouthWest",
    "bottom-right": "SouthEast",
    "center": "Center",
}
MAX_WATERMARK_CHARS = 200

PILLOW_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "bmp": "BMP",
    "tif": "TIFF",
    "tiff": "TIFF",
}


def image_quality(settings: Dict[str, Any], default: int = DEFAULT_QUALITY) -> int:
    """Quality 1-100 from a number or a name (low, medium, high, maximum)."""
    raw = settings.get("quality")
    if raw is None or raw == "":
        return default
    named = NAMED_QUALITY.get(str(raw).strip().lower())
    if named is not None:
        return named
    return setting_int(settings, "quality", default, minimum=1, maximum=100)


def _number(settings: Dict[str, Any], key: str, default: float) -> float:
    raw = settings.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidSettingsError(f"Setting '{key}' must be a number (got {raw!r}).") from e


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _resize_target(tool: str, settings: Dict[str, Any]) -> Tuple[Optional[int], Optional[int], Optional[int], bool]:
    """Return (width, height, percentage, keep_aspect) for the resize tools."""
    keep = setting_bool(settings, "maintainAspectRatio", True)
    if tool == "resize-percentage" or (tool == "resize-image" and settings.get("percentage")):
        pct = setting_int(settings, "percentage", 50, minimum=1, maximum=1000)
        return None, None, pct, keep
    if tool == "resize-preset":
        preset = setting_choice(settings, "preset", "medium", RESIZE_PRESETS.keys())
        width, height = RESIZE_PRESETS[preset]
        return width, height, None, keep
    width = setting_int(settings, "width", None, minimum=1, maximum=20000)
    height = setting_int(settings, "height", None, minimum=1, maximum=20000)
    if width is None and height is None:
        raise InvalidSettingsError("Resizing needs 'width', 'height' or 'percentage'.")
    return width, height, None, keep


def watermark_settings(settings: Dict[str, Any]) -> Tuple[str, str, float, int, int]:
    """Return (text, position, opacity, margin, font size) for the watermark tool."""
    text = str(settings.get("text") or "").strip()
    if not text:
        raise InvalidSettingsError("Watermark needs 'text'.")
    if len(text) > MAX_WATERMARK_CHARS or any(ord(ch) < 32 for ch in text):
        raise InvalidSettingsError(
            f"Watermark text must be a single line of at most {MAX_WATERMARK_CHARS} characters."
        )
    position = setting_choice(settings, "position", "bottom-right", WATERMARK_POSITIONS.keys())
    opacity = _number(settings, "opacity", 0.5)
    if not 0 < opacity <= 1:
        raise InvalidSettingsError("Setting 'opacity' must be between 0 and 1.")
    margin = setting_int(settings, "margin", 10, minimum=0, maximum=2000)
    font_size = setting_int(settings, "fontSize", 32, minimum=6, maximum=400)
    return text, position, opacity, margin, font_size


def _annotate_text(text: str) -> str:
    # ImageMagick expands a leading @ (file read), %-escapes and backslashes
    escaped = text.replace("\\", "\\\\").replace("%", "%%")
    return "\\" + escaped if escaped.startswith("@") else escaped


def build_magick_operations(
    tool: str,
    settings: Dict[str, Any],
    output_ext: str,
    size: Optional[Tuple[int, int]] = None,
) -> List[str]:
    """ImageMagick operators for ``tool`` (placed between input and output paths).

    ``size`` is the input's (width, height); crop-circle needs it.
    """
    ops: List[str] = []
    quality: Optional[int] = None

    if tool in FORMAT_CONVERSIONS:
        quality = image_quality(settings)
    elif tool == "compress-image":
        quality = image_quality(settings, default=75)
        ops += ["-strip"]
        if output_ext == "png":
            ops += ["-define", "png:compression-level=9"]
    elif tool == "optimize-web":
        max_w = setting_int(settings, "maxWidth", 1920, minimum=1)
        max_h = setting_int(settings, "maxHeight", 1080, minimum=1)
        quality = image_quality(settings)
        ops += ["-strip", "-resize", f"{max_w}x{max_h}>", "-interlace", "Plane"]
    elif tool == "optimize":
        quality = image_quality(settings, default=NAMED_QUALITY["medium"])
        ops += ["-strip"]
    elif tool in ("resize-custom", "resize-percentage", "resize-preset", "resize-image"):
        width, height, pct, keep = _resize_target(tool, settings)
        if pct is not None:
            geometry = f"{pct}%"
        else:
            geometry = f"{width or ''}x{height or ''}"
            if not keep and width and height:
                geometry += "!"
        ops += ["-filter", "Lanczos", "-resize", geometry]
        quality = image_quality(settings) if "quality" in settings else None
    elif tool == "crop":
        width = setting_int(settings, "width", None, minimum=1)
        height = setting_int(settings, "height", None, minimum=1)
        if not width or not height:
            raise InvalidSettingsError("Cropping needs 'width' and 'height'.")
        x = setting_int(settings, "x", 0, minimum=0)
        y = setting_int(settings, "y", 0, minimum=0)
        ops += ["-crop", f"{width}x{height}+{x}+{y}", "+repage"]
    elif tool == "crop-circle":
        if size is None:
            raise InvalidSettingsError("Circle crop needs the image dimensions.")
        side = min(size)
        center = side // 2
        ops += [
            "-gravity", "center", "-extent", f"{side}x{side}", "+repage", "-alpha", "set",
            "(", "+clone", "-alpha", "transparent", "-fill", "white",
            "-draw", f"circle {center},{center} {center},0", ")",
            "-compose", "DstIn", "-composite",
        ]
    elif tool == "watermark":
        text, position, opacity, margin, font_size = watermark_settings(settings)
        ops += [
            "-gravity", WATERMARK_POSITIONS[position],
            "-fill", f"rgba(255,255,255,{_fmt(opacity)})",
            "-stroke", f"rgba(0,0,0,{_fmt(opacity)})",
            "-pointsize", str(font_size),
            "-annotate", f"+{margin}+{margin}", _annotate_text(text),
        ]
        quality = image_quality(settings) if "quality" in settings else None
    elif tool in ("rotate", "rotate-image"):
        angle = setting_int(settings, "angle", 90, minimum=-360, maximum=360)
        ops += ["-background", "white", "-rotate", str(angle)]
    elif tool == "flip-horizontal":
        ops += ["-flop"]
    elif tool == "flip-vertical":
        ops += ["-flip"]
    elif tool == "thumbnail":
        size = setting_int(settings, "size", 150, minimum=8, maximum=2048)
        if setting_bool(settings, "cropToSquare", True):
            ops += ["-thumbnail", f"{size}x{size}^", "-gravity", "center", "-extent", f"{size}x{size}"]
        else:
            ops += ["-thumbnail", f"{size}x{size}"]
        quality = image_quality(settings, default=NAMED_QUALITY["high"])
    elif tool == "grayscale":
        ops += ["-modulate", "100,0,100"]
    elif tool == "sepia":
        ops += ["-sepia-tone", "80%"]
    elif tool == "blur":
        ops += ["-blur", f"{_fmt(_number(settings, 'radius', 5))}x{_fmt(_number(settings, 'sigma', 3))}"]
    elif tool == "sharpen":
        ops += ["-sharpen", f"{_fmt(_number(settings, 'radius', 0))}x{_fmt(_number(settings, 'sigma', 1))}"]
    elif tool == "emboss":
        ops += ["-emboss", f"{_fmt(_number(settings, 'radius', 0))}x{_fmt(_number(settings, 'sigma', 1))}"]
    elif tool == "edge":
        ops += ["-edge", _fmt(_number(settings, "radius", 1))]
    elif tool == "oil-paint":
        ops += ["-paint", _fmt(_number(settings, "radius", 3))]
    elif tool == "brightness":
        brightness = setting_int(settings, "brightness", 100, minimum=0, maximum=200)
        ops += ["-modulate", f"{brightness},100,100"]
    elif tool == "contrast":
        contrast = setting_int(settings, "contrast", 100, minimum=0, maximum=200)
        if contrast > 100:
            ops += ["-contrast"]
        elif contrast < 100:
            ops += ["+contrast"]
    elif tool == "negative":
        ops += ["-negate"]

    if quality is not None and output_ext in ("jpg", "jpeg", "webp", "png"):
        ops += ["-quality", str(quality)]
    return ops


def build_magick_command(
    binary: str,
    input_path: Path,
    output_path: Path,
    tool: str,
    settings: Dict[str, Any],
    size: Optional[Tuple[int, int]] = None,
) -> List[str]:
    source = str(input_path)
    output_ext = output_path.suffix.lower().lstrip(".")
    if input_path.suffix.lower() == ".gif" and output_ext != "gif":
        # first frame only
        source += "[0]"
    return [binary, source, *build_magick_operations(tool, settings, output_ext, size), str(output_path)]


# Pillow fallback

def _check_crop_origin(x: int, y: int, size: Tuple[int, int]) -> None:
    width, height = size
    if x >= width or y >= height:
        raise InvalidSettingsError(
            f"Crop origin ({x}, {y}) is outside the {width}x{height} image."
        )


def _image_size(path: Path) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None


def _fit(img: Image.Image, width: Optional[int], height: Optional[int], keep: bool) -> Image.Image:
    src_w, src_h = img.size
    if keep or not (width and height):
        ratios = [r for r in ((width / src_w) if width else None, (height / src_h) if height else None) if r]
        ratio = min(ratios)
        width, height = max(1, round(src_w * ratio)), max(1, round(src_h * ratio))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def _sepia(img: Image.Image) -> Image.Image:
    gray = ImageOps.grayscale(img)
    toned = ImageOps.colorize(gray, black=(112, 66, 20), white=(255, 240, 192))
    return Image.blend(img.convert("RGB"), toned, 0.8)


def _rgb(img: Image.Image) -> Image.Image:
    return img if img.mode in ("RGB", "L") else img.convert("RGB")


def _crop_circle(img: Image.Image) -> Image.Image:
    side = min(img.size)
    square = ImageOps.fit(img.convert("RGBA"), (side, side), Image.Resampling.LANCZOS)
    mask = Image.new("L", (side, side), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, side - 1, side - 1), fill=255)
    square.putalpha(ImageChops.multiply(square.getchannel("A"), mask))
    return square


def _watermark(img: Image.Image, settings: Dict[str, Any]) -> Image.Image:
    text, position, opacity, margin, font_size = watermark_settings(settings)
    base = img.convert("RGBA")
    overlay = Image.new("RGBA", base.size, (255, 255, 255, 0))
    draw = ImageDraw.Draw(overlay)
    font = ImageFont.load_default(size=font_size)
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_w, text_h = right - left, bottom - top

    if position.endswith("left"):
        x = margin
    elif position.endswith("right"):
        x = base.width - text_w - margin
    else:
        x = (base.width - text_w) // 2
    if position.startswith("top"):
        y = margin
    elif position.startswith("bottom"):
        y = base.height - text_h - margin
    else:
        y = (base.height - text_h) // 2

    alpha = round(255 * opacity)
    draw.text((x - left, y - top), text, font=font, fill=(255, 255, 255, alpha),
              stroke_width=1, stroke_fill=(0, 0, 0, alpha))
    return Image.alpha_composite(base, overlay)


def pillow_transform(img: Image.Image, tool: str, settings: Dict[str, Any]) -> Image.Image:
    """Apply ``tool`` to an opened image with Pillow and return the result."""
    if tool in FORMAT_CONVERSIONS or tool in ("compress-image", "optimize"):
        return img
    if tool == "optimize-web":
        max_w = setting_int(settings, "maxWidth", 1920, minimum=1)
        max_h = setting_int(settings, "maxHeight", 1080, minimum=1)
        if img.width > max_w or img.height > max_h:
            return _fit(img, max_w, max_h, True)
        return img
    if tool in ("resize-custom", "resize-percentage", "resize-preset", "resize-image"):
        width, height, pct, keep = _resize_target(tool, settings)
        if pct is not None:
            size = (max(1, round(img.width * pct / 100)), max(1, round(img.height * pct / 100)))
            return img.resize(size, Image.Resampling.LANCZOS)
        return _fit(img, width, height, keep)
    if tool == "crop":
        width = setting_int(settings, "width", None, minimum=1)
        height = setting_int(settings, "height", None, minimum=1)
        if not width or not height:
            raise InvalidSettingsError("Cropping needs 'width' and 'height'.")
        x = setting_int(settings, "x", 0, minimum=0)
        y = setting_int(settings, "y", 0, minimum=0)
        _check_crop_origin(x, y, img.size)
        return img.crop((x, y, min(img.width, x + width), min(img.height, y + height)))
    if tool == "crop-circle":
        return _crop_circle(img)
    if tool == "watermark":
        return _watermark(img, settings)
    if tool in ("rotate", "rotate-image"):
        angle = setting_int(settings, "angle", 90, minimum=-360, maximum=360)
        # Pillow rotates counter-clockwise, ImageMagick clockwise
        return _rgb(img).rotate(-angle, expand=True, fillcolor="white")
    if tool == "flip-horizontal":
        return img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    if tool == "flip-vertical":
        return img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    if tool == "thumbnail":
        size = setting_int(settings, "size", 150, minimum=8, maximum=2048)
        if setting_bool(settings, "cropToSquare", True):
            return ImageOps.fit(img, (size, size), Image.Resampling.LANCZOS)
        thumb = img.copy()
        thumb.thumbnail((size, size), Image.Resampling.LANCZOS)
        return thumb
    if tool == "grayscale":
        return ImageOps.grayscale(img)
    if tool == "sepia":
        return _sepia(img)
    if tool == "blur":
        return img.filter(ImageFilter.GaussianBlur(_number(settings, "sigma", 3)))
    if tool == "sharpen":
        return _rgb(img).filter(ImageFilter.UnsharpMask(radius=max(1.0, _number(settings, "sigma", 1)), percent=150))
    if tool == "emboss":
        return _rgb(img).filter(ImageFilter.EMBOSS)
    if tool == "edge":
        return _rgb(img).filter(ImageFilter.FIND_EDGES)
    if tool == "brightness":
        brightness = setting_int(settings, "brightness", 100, minimum=0, maximum=200)
        return ImageEnhance.Brightness(_rgb(img)).enhance(brightness / 100)
    if tool == "contrast":
        contrast = setting_int(settings, "contrast", 100, minimum=0, maximum=200)
        if contrast == 100:
            return img
        return ImageEnhance.Contrast(_rgb(img)).enhance(1.25 if contrast > 100 else 0.8)
    if tool == "negative":
        return ImageOps.invert(_rgb(img))
    raise EngineUnavailableError.for_engine("ImageMagick")


def _prepare_for_format(img: Image.Image, pil_format: str) -> Image.Image:
    if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        return img.convert("RGB")
    return img


def pillow_process(input_path: Path, output_path: Path, tool: str, settings: Dict[str, Any]) -> Path:
    output_ext = output_path.suffix.lower().lstrip(".")
    pil_format = PILLOW_FORMATS.get(output_ext)
    if pil_format is None:
        raise InvalidSettingsError(f"Cannot write .{output_ext} images.")

    try:
        with Image.open(input_path) as img:
            img.seek(0)
            result = pillow_transform(img.copy(), tool, settings)
    except UnidentifiedImageError as e:
        raise ConversionError(f"'{input_path.name}' is not a readable image.", original_error=e) from e

    result = _prepare_for_format(result, pil_format)
    save_kwargs: Dict[str, Any] = {}
    if pil_format in ("JPEG", "WEBP"):
        default_quality = 75 if tool == "compress-image" else DEFAULT_QUALITY
        save_kwargs["quality"] = image_quality(settings, default=default_quality)
    if pil_format in ("JPEG", "PNG"):
        save_kwargs["optimize"] = True
    if pil_format == "JPEG" and tool == "optimize-web":
        save_kwargs["progressive"] = True

    output_path.parent.mkdir(parents=True, exist_ok=True)
    result.save(output_path, pil_format, **save_kwargs)
    return output_path


def process_image(ctx: ConversionContext) -> Path:
    """Run the tool with ImageMagick, falling back to Pillow."""
    tool = ctx.tool.name
    magick = find_binary(IMAGEMAGICK_NAMES, ctx.config.imagemagick.path)
    magick_error: Optional[ConversionError] = None

    size = _image_size(ctx.input_path) if tool in ("crop", "crop-circle") else None
    if tool == "crop" and size is not None:
        _check_crop_origin(
            setting_int(ctx.settings, "x", 0, minimum=0),
            setting_int(ctx.settings, "y", 0, minimum=0),
            size,
        )
    if tool == "crop-circle" and size is None:
        # unreadable input; Pillow reports it
        magick = None

    if magick:
        cmd = build_magick_command(magick, ctx.input_path, ctx.output_path, tool, ctx.settings, size)
        ctx.progress(30, "processing", f"Processing image with ImageMagick ({tool})")
        try:
            run_engine("ImageMagick", cmd, ctx.config.imagemagick.timeout, filename=ctx.input_path.name)
            if ctx.output_path.exists() and ctx.output_path.stat().st_size > 0:
                return ctx.output_path
            logger.warning("[%s] ImageMagick produced no output; trying Pillow", ctx.record_id)
        except EngineFailedError as e:
            logger.warning("[%s] ImageMagick failed (%s); trying Pillow", ctx.record_id, e.message)
            magick_error = e
    else:
        logger.info("[%s] ImageMagick not installed; using Pillow", ctx.record_id)

    if tool in NO_PILLOW_FALLBACK:
        if magick_error is not None:
            raise magick_error
        raise EngineUnavailableError.for_engine("ImageMagick")

    ctx.progress(50, "processing", f"Processing image with Pillow ({tool})")
    return pillow_process(ctx.input_path, ctx.output_path, tool, ctx.settings)


def _register(name: str, inputs, output: Optional[str], suffix: str, description: str) -> None:
    register(name, CATEGORY, process_image, inputs, output, download_suffix=suffix, description=description)


for _name, (_inputs, _output) in FORMAT_CONVERSIONS.items():
    _register(_name, _inputs, _output, "", f"Convert {_inputs[0].upper()} to {_output.upper()}")

_register("compress-image", IMAGE_INPUTS, None, "_compressed", "Reduce image size (quality 1-100)")
_register("optimize-web", IMAGE_INPUTS, None, "_optimized", "Strip metadata and fit within 1920x1080")
_register("optimize", IMAGE_INPUTS, None, "_optimized", "Strip metadata and recompress")
_register("resize-custom", IMAGE_INPUTS, None, "_resized", "Resize to width/height")
_register("resize-percentage", IMAGE_INPUTS, None, "_scaled", "Resize by percentage")
_register("resize-preset", IMAGE_INPUTS, None, "_preset", "Resize to a preset size")
_register("resize-image", IMAGE_INPUTS, None, "_resized", "Resize by dimensions or percentage")
_register("crop", IMAGE_INPUTS, None, "_cropped", "Crop a rectangle")
_register("crop-circle", IMAGE_INPUTS, "png", "_circle", "Centered circle on a transparent PNG")
_register("watermark", IMAGE_INPUTS, None, "_watermarked", "Stamp a text watermark")
_register("rotate", IMAGE_INPUTS, None, "_rotated", "Rotate clockwise")
_register("rotate-image", IMAGE_INPUTS, None, "_rotated", "Rotate clockwise")
_register("flip-horizontal", IMAGE_INPUTS, None, "_flipped_h", "Mirror left to right")
_register("flip-vertical", IMAGE_INPUTS, None, "_flipped_v", "Mirror top to bottom")
_register("thumbnail", IMAGE_INPUTS, None, "_thumbnail", "Square thumbnail")
for _effect in EFFECTS:
    _register(_effect, IMAGE_INPUTS, None, f"_{_effect.replace('-', '_')}", f"Apply the {_effect} effect")
