"""Document and PDF tools.

Office formats go through LibreOffice, PDF re-writing through Ghostscript,
page-level edits through PyPDF2, rasterisation through Poppler's pdftoppm and
image-to-PDF through Pillow.
"""

import logging
import re
import shutil
import uuid
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from PIL import Image
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError

from flexiconvert.core.exceptions import (
    ConversionError,
    InvalidSettingsError,
    OutputMissingError,
)
from flexiconvert.engine import structured
from flexiconvert.engine.external import (
    GHOSTSCRIPT_NAMES,
    LIBREOFFICE_NAMES,
    PDFTOPPM_NAMES,
    find_binary,
    require_binary,
    run_engine,
)
from flexiconvert.engine.tools import (
    ConversionContext,
    register,
    setting_choice,
    setting_int,
)

logger = logging.getLogger(__name__)

CATEGORY = "document"

# quality -> (PDFSETTINGS preset, image resolution in dpi)
COMPRESSION_PRESETS: Dict[str, tuple] = {
    "high": ("/prepress", 300),
    "medium": ("/printer", 150),
    "low": ("/ebook", 72),
}

# input extension -> allowed output extensions for convert-document
FORMAT_MATRIX: Dict[str, tuple] = {
    "pdf": ("txt", "html", "docx", "rtf"),
    "docx": ("pdf", "html", "txt", "rtf", "odt", "md"),
    "xlsx": ("csv", "pdf", "html", "ods"),
    "pptx": ("pdf", "html", "odp"),
    "csv": ("xlsx", "json", "xml", "html"),
    "json": ("csv", "xml"),
    "xml": ("json", "csv", "html"),
    "html": ("pdf", "docx", "txt", "md"),
    "htm": ("pdf", "docx", "txt", "md"),
    "md": ("html", "pdf", "docx", "txt"),
    "markdown": ("html", "pdf", "docx", "txt"),
    "txt": ("pdf", "docx", "html", "rtf"),
    "rtf": ("pdf", "docx", "html", "txt"),
}

# LibreOffice import filters used when the source is a PDF
PDF_IMPORT_FILTERS = {
    "docx": "writer_pdf_import",
    "rtf": "writer_pdf_import",
    "html": "writer_pdf_import",
    "odt": "writer_pdf_import",
    "pptx": "impress_pdf_import",
}

# HTML opens in Writer/Web by default, which cannot export docx
HTML_IMPORT_FILTER = "HTML (StarWriter)"
HTML_EXPORT_FILTERS = {
    "docx": "MS Word 2007 XML",
    "pdf": "writer_pdf_Export",
}

# outputFormat spellings accepted for the same extension
FORMAT_ALIASES = {"markdown": "md", "htm": "html"}

# tabs or runs of spaces separate columns in extracted PDF text
_COLUMN_GAP = re.compile(r"\t+| {2,}")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")

IMAGE_INPUTS = ("jpg", "jpeg", "png", "bmp", "gif", "webp", "tif", "tiff")


class PdfReadFailedError(ConversionError):
    """PDF could not be parsed (damaged or encrypted)."""

    error_type: str = "InvalidPDF"
    status_code: int = 422


def parse_page_list(raw, total_pages: int, setting: str = "pages") -> List[int]:
    """Parse ``"1-3,5"`` into 1-based page numbers, in the given order.

    ``"all"`` selects every page. Ranges may not run backwards and every page
    must exist in the document.
    """
    if raw is None or str(raw).strip() == "":
        raise InvalidSettingsError(f"Setting '{setting}' is required (e.g. \"1-3,5\").")
    text = str(raw).replace(" ", "").lower()
    if text == "all":
        return list(range(1, total_pages + 1))

    pages: List[int] = []
    for part in text.split(","):
        if not part:
            continue
        try:
            if "-" in part:
                start_s, end_s = part.split("-", 1)
                start = int(start_s)
                end = int(end_s) if end_s else total_pages
            else:
                start = end = int(part)
        except ValueError as e:
            raise InvalidSettingsError(f"Invalid page range '{part}' in '{setting}'.") from e
        if start < 1 or end > total_pages or start > end:
            raise InvalidSettingsError(
                f"Page range '{part}' is outside the document (1-{total_pages})."
            )
        pages.extend(range(start, end + 1))
    if not pages:
        raise InvalidSettingsError(f"Setting '{setting}' did not select any pages.")
    return pages


def _open_pdf(path: Path) -> PdfReader:
    try:
        reader = PdfReader(str(path), strict=False)
        if reader.is_encrypted:
            raise PdfReadFailedError(
                f"'{path.name}' is password-protected. Please remove the password and try again."
            )
        # Force page tree parsing so damage is reported here
        len(reader.pages)
        return reader
    except PdfReadError as e:
        raise PdfReadFailedError(f"'{path.name}' is damaged or not a valid PDF.", original_error=e) from e


def _write_pdf(writer: PdfWriter, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as handle:
        writer.write(handle)
    return output_path


def _work_dir(ctx: ConversionContext, prefix: str) -> Path:
    path = ctx.output_path.parent / f"{prefix}_{uuid.uuid4().hex[:8]}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# LibreOffice

def libreoffice_convert(
    ctx: ConversionContext,
    source: Path,
    target_ext: str,
    infilter: Optional[str] = None,
    export_filter: Optional[str] = None,
    dest: Optional[Path] = None,
) -> Path:
    """Convert ``source`` to ``target_ext`` with LibreOffice.

    The result lands at ``dest`` (ctx.output_path by default). ``export_filter``
    pins the LibreOffice filter name, passed as ``--convert-to ext:filter``.
    """
    dest = dest or ctx.output_path
    settings = ctx.config.libreoffice
    binary = require_binary("LibreOffice", LIBREOFFICE_NAMES, settings.path)
    work_dir = _work_dir(ctx, "lo")
    profile_dir = work_dir / "profile"
    cmd = [
        binary,
        "--headless",
        "--invisible",
        "--nodefault",
        "--nolockcheck",
        "--nologo",
        "--norestore",
        # separate profile so concurrent workers don't share a lock
        f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
    ]
    if infilter:
        cmd.append(f"--infilter={infilter}")
    convert_to = f"{target_ext}:{export_filter}" if export_filter else target_ext
    cmd += ["--convert-to", convert_to, "--outdir", str(work_dir), str(source)]

    try:
        ctx.progress(30, "converting", f"Converting with LibreOffice to {target_ext.upper()}")
        run_engine("LibreOffice", cmd, settings.timeout, filename=source.name)
        produced = work_dir / f"{source.stem}.{target_ext}"
        if not produced.exists():
            candidates = sorted(
                work_dir.glob(f"*.{target_ext}"),
                key=lambda p: p.stat().st_mtime,
                reverse=True,
            )
            if not candidates:
                raise OutputMissingError.for_tool(ctx.tool.name)
            produced = candidates[0]
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(produced), str(dest))
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
    return dest


def libreoffice_filters(source_ext: str, target_ext: str) -> Tuple[Optional[str], Optional[str]]:
    """Return the (import, export) filter pair LibreOffice needs for this conversion."""
    if source_ext == "pdf":
        return PDF_IMPORT_FILTERS.get(target_ext), None
    if source_ext in ("html", "htm"):
        return HTML_IMPORT_FILTER, HTML_EXPORT_FILTERS.get(target_ext)
    return None, None


def _libreoffice_to(ctx: ConversionContext, source: Path, target_ext: str, **kwargs) -> Path:
    source_ext = source.suffix.lower().lstrip(".")
    infilter, export_filter = libreoffice_filters(source_ext, target_ext)
    return libreoffice_convert(ctx, source, target_ext, infilter=infilter, export_filter=export_filter, **kwargs)


def office_to_pdf(ctx: ConversionContext) -> Path:
    return _libreoffice_to(ctx, ctx.input_path, "pdf")


def pdf_to_office(ctx: ConversionContext) -> Path:
    return _libreoffice_to(ctx, ctx.input_path, ctx.output_extension)


def _cell_value(raw: str):
    text = raw.strip()
    if _NUMBER.match(text):
        return float(text) if "." in text else int(text)
    return text


def pdf_to_excel(ctx: ConversionContext) -> Path:
    """Lay the PDF's extracted text out as spreadsheet rows.

    LibreOffice opens PDFs in Draw, which has no spreadsheet export, so the
    text is read with PyPDF2 and written with openpyxl. Tabs or runs of two
    or more spaces split a line into cells.
    """
    reader = _open_pdf(ctx.input_path)
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Converted"
    sheet.append([f"Converted from {ctx.input_path.name}"])
    sheet["A1"].font = Font(bold=True, size=14)
    sheet.append([])

    rows = 0
    total = len(reader.pages)
    for page_no, page in enumerate(reader.pages, start=1):
        for line in (page.extract_text() or "").splitlines():
            cells = [cell for cell in _COLUMN_GAP.split(line.strip()) if cell.strip()]
            if cells:
                sheet.append([_cell_value(cell) for cell in cells])
                rows += 1
        ctx.progress(10 + int(70 * page_no / total), "extracting", f"Read page {page_no}/{total}")

    if rows == 0:
        raise PdfReadFailedError(
            f"No text could be extracted from '{ctx.input_path.name}'. Scanned PDFs are not supported."
        )
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(ctx.output_path)
    logger.info("[%s] Wrote %s spreadsheet rows from %s page(s)", ctx.record_id, rows, total)
    return ctx.output_path


# Ghostscript

def build_compress_command(gs: str, input_path: Path, output_path: Path, quality: str) -> List[str]:
    preset, dpi = COMPRESSION_PRESETS[quality]
    return [
        gs,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={preset}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dDownsampleColorImages=true",
        "-dDownsampleGrayImages=true",
        "-dDownsampleMonoImages=true",
        f"-dColorImageResolution={dpi}",
        f"-dGrayImageResolution={dpi}",
        f"-dMonoImageResolution={dpi}",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def build_pdfa_command(gs: str, input_path: Path, output_path: Path) -> List[str]:
    return [
        gs,
        "-dPDFA=2",
        "-dBATCH",
        "-dNOPAUSE",
        "-dQUIET",
        "-sColorConversionStrategy=RGB",
        "-sDEVICE=pdfwrite",
        "-dPDFACompatibilityPolicy=1",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def build_repair_command(gs: str, input_path: Path, output_path: Path) -> List[str]:
    return [
        gs,
        "-sDEVICE=pdfwrite",
        "-dPDFSETTINGS=/prepress",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def compress_pdf(ctx: ConversionContext) -> Path:
    quality = setting_choice(ctx.settings, "quality", "medium", COMPRESSION_PRESETS.keys())
    gs = require_binary("Ghostscript", GHOSTSCRIPT_NAMES, ctx.config.ghostscript.path)
    ctx.progress(30, "compressing", f"Compressing PDF ({quality} quality)")
    cmd = build_compress_command(gs, ctx.input_path, ctx.output_path, quality)
    run_engine("Ghostscript", cmd, ctx.config.ghostscript.timeout, filename=ctx.input_path.name)

    original_size = ctx.input_path.stat().st_size
    if ctx.output_path.exists() and ctx.output_path.stat().st_size >= original_size:
        # Already optimised input; keep the smaller original bytes
        logger.info(
            "[%s] Ghostscript output not smaller than input (%s >= %s bytes); keeping original",
            ctx.record_id,
            ctx.output_path.stat().st_size,
            original_size,
        )
        shutil.copyfile(ctx.input_path, ctx.output_path)
    return ctx.output_path


def pdf_to_pdfa(ctx: ConversionContext) -> Path:
    gs = require_binary("Ghostscript", GHOSTSCRIPT_NAMES, ctx.config.ghostscript.path)
    ctx.progress(30, "converting", "Converting to PDF/A")
    cmd = build_pdfa_command(gs, ctx.input_path, ctx.output_path)
    run_engine("Ghostscript", cmd, ctx.config.ghostscript.timeout, filename=ctx.input_path.name)
    return ctx.output_path


def repair_pdf(ctx: ConversionContext) -> Path:
    """Rewrite the PDF with Ghostscript; fall back to a PyPDF2 rewrite without it."""
    gs = find_binary(GHOSTSCRIPT_NAMES, ctx.config.ghostscript.path)
    ctx.progress(30, "repairing", "Rebuilding PDF structure")
    if gs:
        cmd = build_repair_command(gs, ctx.input_path, ctx.output_path)
        run_engine("Ghostscript", cmd, ctx.config.ghostscript.timeout, filename=ctx.input_path.name)
        return ctx.output_path

    logger.warning("[%s] Ghostscript not installed; repairing with PyPDF2 rewrite", ctx.record_id)
    reader = _open_pdf(ctx.input_path)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    return _write_pdf(writer, ctx.output_path)


# PyPDF2 page operations

def merge_pdf(ctx: ConversionContext) -> Path:
    if len(ctx.input_paths) < 2:
        raise InvalidSettingsError("Merging needs at least two PDF files.")
    writer = PdfWriter()
    total = len(ctx.input_paths)
    for idx, path in enumerate(ctx.input_paths, start=1):
        reader = _open_pdf(path)
        for page in reader.pages:
            writer.add_page(page)
        ctx.progress(10 + int(80 * idx / total), "merging", f"Merged {idx}/{total} files")
    return _write_pdf(writer, ctx.output_path)


def _split_groups(settings: Dict, total_pages: int) -> List[List[int]]:
    mode = setting_choice(settings, "splitMode", "every", ("every", "ranges"))
    if mode == "every" and not settings.get("ranges"):
        return [[page] for page in range(1, total_pages + 1)]
    raw = settings.get("ranges")
    if not raw:
        raise InvalidSettingsError("Setting 'ranges' is required when splitMode is 'ranges'.")
    groups = []
    for chunk in str(raw).split(","):
        if chunk.strip():
            groups.append(parse_page_list(chunk, total_pages, setting="ranges"))
    return groups


def split_pdf(ctx: ConversionContext) -> Path:
    reader = _open_pdf(ctx.input_path)
    total_pages = len(reader.pages)
    groups = _split_groups(ctx.settings, total_pages)
    stem = ctx.input_path.stem
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(ctx.output_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for idx, pages in enumerate(groups, start=1):
            writer = PdfWriter()
            for page_no in pages:
                writer.add_page(reader.pages[page_no - 1])
            label = f"{pages[0]}" if len(pages) == 1 else f"{pages[0]}-{pages[-1]}"
            part_path = ctx.output_path.parent / f"{stem}_part{idx}_pages_{label}.pdf"
            _write_pdf(writer, part_path)
            archive.write(part_path, arcname=part_path.name)
            part_path.unlink(missing_ok=True)
            ctx.progress(10 + int(80 * idx / len(groups)), "splitting", f"Wrote part {idx}/{len(groups)}")

    logger.info("[%s] Split %s pages into %s parts", ctx.record_id, total_pages, len(groups))
    return ctx.output_path


def rotate_pdf(ctx: ConversionContext) -> Path:
    angle = setting_int(ctx.settings, "angle", 90)
    if angle % 90 != 0:
        raise InvalidSettingsError("Setting 'angle' must be a multiple of 90.")
    reader = _open_pdf(ctx.input_path)
    total_pages = len(reader.pages)
    raw_pages = ctx.settings.get("pages") or "all"
    selected = set(parse_page_list(raw_pages, total_pages))

    writer = PdfWriter()
    for page_no, page in enumerate(reader.pages, start=1):
        if page_no in selected and angle % 360:
            page.rotate(angle % 360)
        writer.add_page(page)
    return _write_pdf(writer, ctx.output_path)


def remove_pages(ctx: ConversionContext) -> Path:
    reader = _open_pdf(ctx.input_path)
    total_pages = len(reader.pages)
    to_remove = set(parse_page_list(ctx.settings.get("pages"), total_pages))
    if len(to_remove) >= total_pages:
        raise InvalidSettingsError("Cannot remove every page of the document.")

    writer = PdfWriter()
    for page_no, page in enumerate(reader.pages, start=1):
        if page_no not in to_remove:
            writer.add_page(page)
    return _write_pdf(writer, ctx.output_path)


def extract_pages(ctx: ConversionContext) -> Path:
    reader = _open_pdf(ctx.input_path)
    selected = parse_page_list(ctx.settings.get("pages"), len(reader.pages))
    writer = PdfWriter()
    seen = set()
    for page_no in selected:
        if page_no in seen:
            continue
        seen.add(page_no)
        writer.add_page(reader.pages[page_no - 1])
    return _write_pdf(writer, ctx.output_path)


def organize_pdf(ctx: ConversionContext) -> Path:
    """Reorder pages; pages left out of ``order`` are dropped."""
    reader = _open_pdf(ctx.input_path)
    order = parse_page_list(ctx.settings.get("order"), len(reader.pages), setting="order")
    writer = PdfWriter()
    for page_no in order:
        writer.add_page(reader.pages[page_no - 1])
    return _write_pdf(writer, ctx.output_path)


# Poppler / Pillow

def _pdf_to_jpg_output(input_ext: str, settings: Dict) -> str:
    pages = setting_choice(settings, "pages", "first", ("first", "all"))
    return "zip" if pages == "all" else "jpg"


def pdf_to_jpg(ctx: ConversionContext) -> Path:
    pdftoppm = require_binary("pdftoppm (Poppler)", PDFTOPPM_NAMES, ctx.config.pdftoppm_path)
    dpi = setting_int(ctx.settings, "dpi", ctx.config.pdf_image_dpi, minimum=36, maximum=600)
    all_pages = ctx.output_extension == "zip"
    work_dir = _work_dir(ctx, "ppm")
    prefix = work_dir / ctx.input_path.stem
    timeout = ctx.config.ghostscript.timeout * (4 if all_pages else 1)

    cmd = [pdftoppm, "-jpeg", "-r", str(dpi)]
    if not all_pages:
        cmd += ["-f", "1", "-l", "1", "-singlefile"]
    cmd += [str(ctx.input_path), str(prefix)]

    try:
        ctx.progress(30, "rendering", "Rendering PDF pages to JPG")
        run_engine("pdftoppm", cmd, timeout, filename=ctx.input_path.name)
        images = sorted(work_dir.glob("*.jpg"))
        if not images:
            raise OutputMissingError.for_tool(ctx.tool.name)
        ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
        if all_pages:
            with zipfile.ZipFile(ctx.output_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for image in images:
                    archive.write(image, arcname=image.name)
        else:
            shutil.move(str(images[0]), str(ctx.output_path))
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
    return ctx.output_path


def images_to_pdf(ctx: ConversionContext) -> Path:
    dpi = setting_int(ctx.settings, "dpi", ctx.config.pdf_image_dpi, minimum=36, maximum=600)
    pages = []
    try:
        for path in ctx.input_paths:
            with Image.open(path) as img:
                pages.append(img.convert("RGB"))
        ctx.progress(50, "converting", f"Combining {len(pages)} image(s) into a PDF")
        ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
        first, rest = pages[0], pages[1:]
        first.save(ctx.output_path, "PDF", resolution=float(dpi), save_all=True, append_images=rest)
    except OSError as e:
        raise ConversionError(f"Could not read image: {e}", original_error=e) from e
    finally:
        for page in pages:
            page.close()
    return ctx.output_path


# convert-document

def _convert_document_output(input_ext: str, settings: Dict) -> str:
    raw = settings.get("outputFormat") or settings.get("targetFormat") or settings.get("format")
    allowed = FORMAT_MATRIX.get(input_ext, ())
    target = str(raw or "").strip().lower().lstrip(".")
    target = FORMAT_ALIASES.get(target, target)
    if not target:
        raise InvalidSettingsError(
            f"Setting 'outputFormat' is required. Options for {input_ext or 'this file'}: {', '.join(allowed)}."
        )
    if target not in allowed:
        raise InvalidSettingsError(
            f"Cannot convert {input_ext} to {target}. Options: {', '.join(allowed)}."
        )
    return target


def pdf_to_text(ctx: ConversionContext) -> Path:
    reader = _open_pdf(ctx.input_path)
    chunks = []
    for page in reader.pages:
        chunks.append(page.extract_text() or "")
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.output_path.write_text("\n\n".join(chunks).strip() + "\n", encoding="utf-8")
    return ctx.output_path


def markdown_via_html(ctx: ConversionContext, target_ext: str) -> Path:
    """Render Markdown to HTML, then let LibreOffice lay it out as pdf or docx."""
    work_dir = _work_dir(ctx, "md")
    try:
        page = work_dir / f"{ctx.input_path.stem}.html"
        structured.md_to_html(ctx.input_path, page)
        return _libreoffice_to(ctx, page, target_ext)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


def office_to_markdown(ctx: ConversionContext) -> Path:
    """Export to HTML with LibreOffice, then convert that to Markdown."""
    work_dir = _work_dir(ctx, "html")
    try:
        page = libreoffice_convert(ctx, ctx.input_path, "html", dest=work_dir / f"{ctx.input_path.stem}.html")
        structured.html_to_md(page, ctx.output_path)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
    return ctx.output_path


def convert_document(ctx: ConversionContext) -> Path:
    source_ext = ctx.input_path.suffix.lower().lstrip(".")
    source_ext = FORMAT_ALIASES.get(source_ext, source_ext)
    target_ext = ctx.output_extension
    converter = structured.CONVERTERS.get((source_ext, target_ext))
    ctx.output_path.parent.mkdir(parents=True, exist_ok=True)
    if converter is not None:
        ctx.progress(40, "converting", f"Converting {source_ext.upper()} to {target_ext.upper()}")
        converter(ctx.input_path, ctx.output_path)
        return ctx.output_path
    if (source_ext, target_ext) == ("pdf", "txt"):
        return pdf_to_text(ctx)
    if source_ext == "md":
        return markdown_via_html(ctx, target_ext)
    if target_ext == "md":
        return office_to_markdown(ctx)
    return _libreoffice_to(ctx, ctx.input_path, target_ext)


register("word-to-pdf", CATEGORY, office_to_pdf, ("doc", "docx", "odt", "rtf"), "pdf", download_suffix="",
         description="Word document to PDF")
register("excel-to-pdf", CATEGORY, office_to_pdf, ("xls", "xlsx", "ods", "csv"), "pdf", download_suffix="",
         description="Spreadsheet to PDF")
register("ppt-to-pdf", CATEGORY, office_to_pdf, ("ppt", "pptx", "odp"), "pdf", download_suffix="",
         description="Presentation to PDF")
register("html-to-pdf", CATEGORY, office_to_pdf, ("html", "htm"), "pdf", download_suffix="",
         description="Web page to PDF")
register("jpg-to-pdf", CATEGORY, images_to_pdf, IMAGE_INPUTS, "pdf", download_suffix="", multi_file=True,
         description="Images to a single PDF")
register("pdf-to-jpg", CATEGORY, pdf_to_jpg, ("pdf",), download_suffix="", output_resolver=_pdf_to_jpg_output,
         description="First page (or every page, zipped) to JPG")
register("pdf-to-word", CATEGORY, pdf_to_office, ("pdf",), "docx", download_suffix="",
         description="PDF to Word")
register("pdf-to-excel", CATEGORY, pdf_to_excel, ("pdf",), "xlsx", download_suffix="",
         description="PDF to Excel")
register("pdf-to-ppt", CATEGORY, pdf_to_office, ("pdf",), "pptx", download_suffix="",
         description="PDF to PowerPoint")
register("pdf-to-pdfa", CATEGORY, pdf_to_pdfa, ("pdf",), "pdf", download_suffix="_pdfa",
         description="Archival PDF/A")
register("compress-pdf", CATEGORY, compress_pdf, ("pdf",), "pdf", download_suffix="_compressed",
         description="Reduce PDF size (quality: high, medium, low)")
register("repair-pdf", CATEGORY, repair_pdf, ("pdf",), "pdf", download_suffix="_repaired",
         description="Rebuild a damaged PDF")
register("merge-pdf", CATEGORY, merge_pdf, ("pdf",), "pdf", download_suffix="_merged", multi_file=True,
         description="Combine PDFs in upload order")
register("split-pdf", CATEGORY, split_pdf, ("pdf",), "zip", download_suffix="_split",
         description="Split into single pages or ranges (zipped)")
register("rotate-pdf", CATEGORY, rotate_pdf, ("pdf",), "pdf", download_suffix="_rotated",
         description="Rotate all or selected pages")
register("remove-pages", CATEGORY, remove_pages, ("pdf",), "pdf", download_suffix="_removed",
         description="Delete selected pages")
register("extract-pages", CATEGORY, extract_pages, ("pdf",), "pdf", download_suffix="_extracted",
         description="Keep only selected pages")
register("organize-pdf", CATEGORY, organize_pdf, ("pdf",), "pdf", download_suffix="_organized",
         description="Reorder pages")
register("convert-document", CATEGORY, convert_document, FORMAT_MATRIX.keys(), download_suffix="",
         output_resolver=_convert_document_output, description="Convert between document formats")
