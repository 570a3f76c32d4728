"""In-process conversions between structured text formats (csv, json, xml, html, md, txt)."""

import csv
import html
import io
import json
import logging
import re
import xml.etree.ElementTree as ET
from html.parser import HTMLParser
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import markdown
from markdownify import markdownify

from flexiconvert.core.exceptions import ConversionError

logger = logging.getLogger(__name__)

_XML_NAME_INVALID = re.compile(r"[^\w.\-]")


class StructuredDataError(ConversionError):
    """Input text could not be parsed as the declared format."""

    error_type: str = "InvalidFileContent"
    status_code: int = 422


def _read_text(path: Path) -> str:
    # utf-8-sig strips a BOM written by spreadsheet exports
    return path.read_text(encoding="utf-8-sig", errors="replace")


def _xml_name(raw: str) -> str:
    name = _XML_NAME_INVALID.sub("_", str(raw).strip()) or "field"
    if not (name[0].isalpha() or name[0] == "_"):
        name = f"_{name}"
    return name


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _load_csv(path: Path) -> Tuple[List[str], List[Dict[str, str]]]:
    reader = csv.DictReader(io.StringIO(_read_text(path)))
    try:
        rows = [dict(row) for row in reader]
    except csv.Error as e:
        raise StructuredDataError(f"File is not valid CSV: {e}") from e
    return list(reader.fieldnames or []), rows


def _load_json_rows(path: Path) -> Tuple[List[str], List[Dict[str, Any]]]:
    try:
        data = json.loads(_read_text(path))
    except json.JSONDecodeError as e:
        raise StructuredDataError(f"File is not valid JSON: {e}") from e
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise StructuredDataError("JSON must be an object or a list of objects to convert to a table.")
    headers: List[str] = []
    rows: List[Dict[str, Any]] = []
    for item in data:
        if not isinstance(item, dict):
            item = {"value": item}
        for key in item:
            if key not in headers:
                headers.append(key)
        rows.append(item)
    return headers, rows


def _load_xml(path: Path) -> ET.Element:
    try:
        return ET.fromstring(_read_text(path))
    except ET.ParseError as e:
        raise StructuredDataError(f"File is not valid XML: {e}") from e


def _element_to_data(element: ET.Element) -> Any:
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()
    data: Dict[str, Any] = {f"@{k}": v for k, v in element.attrib.items()}
    for child in children:
        value = _element_to_data(child)
        if child.tag in data:
            if not isinstance(data[child.tag], list):
                data[child.tag] = [data[child.tag]]
            data[child.tag].append(value)
        else:
            data[child.tag] = value
    text = (element.text or "").strip()
    if text:
        data["#text"] = text
    return data


def _xml_rows(root: ET.Element) -> Tuple[List[str], List[Dict[str, str]]]:
    headers: List[str] = []
    rows: List[Dict[str, str]] = []
    for record in root:
        row: Dict[str, str] = dict(record.attrib)
        for field in record:
            row[field.tag] = (field.text or "").strip()
        if not len(record) and not record.attrib:
            row[record.tag] = (record.text or "").strip()
        for key in row:
            if key not in headers:
                headers.append(key)
        rows.append(row)
    return headers, rows


def _rows_to_xml(headers: List[str], rows: List[Dict[str, Any]]) -> str:
    root = ET.Element("rows")
    for row in rows:
        row_el = ET.SubElement(root, "row")
        for header in headers:
            ET.SubElement(row_el, _xml_name(header)).text = _scalar(row.get(header))
    ET.indent(root)
    return ET.tostring(root, encoding="unicode", xml_declaration=True) + "\n"


def _data_to_xml(parent: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if isinstance(item, list):
                for entry in item:
                    _data_to_xml(ET.SubElement(parent, _xml_name(key)), entry)
            else:
                _data_to_xml(ET.SubElement(parent, _xml_name(key)), item)
    elif isinstance(value, list):
        for entry in value:
            _data_to_xml(ET.SubElement(parent, "item"), entry)
    else:
        parent.text = _scalar(value)


def _rows_to_csv(headers: List[str], rows: List[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_scalar(row.get(header)) for header in headers])
    return buffer.getvalue()


def _rows_to_html(title: str, headers: List[str], rows: List[Dict[str, Any]]) -> str:
    head = "".join(f"<th>{html.escape(str(h))}</th>" for h in headers)
    body = "\n".join(
        "<tr>" + "".join(f"<td>{html.escape(_scalar(row.get(h)))}</td>" for h in headers) + "</tr>"
        for row in rows
    )
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n</head>\n<body>\n"
        f"<table border=\"1\">\n<thead><tr>{head}</tr></thead>\n<tbody>\n{body}\n</tbody>\n</table>\n"
        "</body>\n</html>\n"
    )


class _TextExtractor(HTMLParser):
    _BLOCK_TAGS = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "section", "article"}

    def __init__(self) -> None:
        super().__init__()
        self.parts: List[str] = []
        self._skip = 0

    def handle_starttag(self, tag, attrs):
        if tag in ("script", "style"):
            self._skip += 1
        elif tag in self._BLOCK_TAGS:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in ("script", "style") and self._skip:
            self._skip -= 1
        elif tag in self._BLOCK_TAGS:
            self.parts.append("\n")

    def handle_data(self, data):
        if not self._skip:
            self.parts.append(data)

    def text(self) -> str:
        raw = "".join(self.parts)
        lines = [re.sub(r"[ \t]+", " ", line).strip() for line in raw.splitlines()]
        return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip() + "\n"


def csv_to_json(src: Path, dest: Path) -> None:
    _, rows = _load_csv(src)
    dest.write_text(json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8")


def csv_to_xml(src: Path, dest: Path) -> None:
    headers, rows = _load_csv(src)
    dest.write_text(_rows_to_xml(headers, rows), encoding="utf-8")


def csv_to_html(src: Path, dest: Path) -> None:
    headers, rows = _load_csv(src)
    dest.write_text(_rows_to_html(src.stem, headers, rows), encoding="utf-8")


def json_to_csv(src: Path, dest: Path) -> None:
    headers, rows = _load_json_rows(src)
    dest.write_text(_rows_to_csv(headers, rows), encoding="utf-8")


def json_to_xml(src: Path, dest: Path) -> None:
    try:
        data = json.loads(_read_text(src))
    except json.JSONDecodeError as e:
        raise StructuredDataError(f"File is not valid JSON: {e}") from e
    root = ET.Element("root")
    _data_to_xml(root, data)
    ET.indent(root)
    dest.write_text(ET.tostring(root, encoding="unicode", xml_declaration=True) + "\n", encoding="utf-8")


def xml_to_json(src: Path, dest: Path) -> None:
    root = _load_xml(src)
    dest.write_text(
        json.dumps({root.tag: _element_to_data(root)}, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )


def xml_to_csv(src: Path, dest: Path) -> None:
    headers, rows = _xml_rows(_load_xml(src))
    dest.write_text(_rows_to_csv(headers, rows), encoding="utf-8")


def xml_to_html(src: Path, dest: Path) -> None:
    headers, rows = _xml_rows(_load_xml(src))
    dest.write_text(_rows_to_html(src.stem, headers, rows), encoding="utf-8")


def html_to_txt(src: Path, dest: Path) -> None:
    parser = _TextExtractor()
    parser.feed(_read_text(src))
    parser.close()
    dest.write_text(parser.text(), encoding="utf-8")


def html_page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n</head>\n<body>\n{body}\n</body>\n</html>\n"
    )


def txt_to_html(src: Path, dest: Path) -> None:
    paragraphs = [p for p in re.split(r"\n\s*\n", _read_text(src)) if p.strip()]
    body = "\n".join(f"<p>{html.escape(p.strip()).replace(chr(10), '<br>')}</p>" for p in paragraphs)
    dest.write_text(html_page(src.stem, body), encoding="utf-8")


def render_markdown(text: str) -> str:
    """Render Markdown to an HTML fragment (tables and fenced code enabled)."""
    return markdown.markdown(text, extensions=["tables", "fenced_code"])


def md_to_html(src: Path, dest: Path) -> None:
    dest.write_text(html_page(src.stem, render_markdown(_read_text(src))), encoding="utf-8")


def md_to_txt(src: Path, dest: Path) -> None:
    parser = _TextExtractor()
    parser.feed(render_markdown(_read_text(src)))
    parser.close()
    dest.write_text(parser.text(), encoding="utf-8")


def html_to_md(src: Path, dest: Path) -> None:
    text = markdownify(_read_text(src), heading_style="ATX")
    dest.write_text(re.sub(r"\n{3,}", "\n\n", text).strip() + "\n", encoding="utf-8")


CONVERTERS: Dict[Tuple[str, str], Callable[[Path, Path], None]] = {
    ("csv", "json"): csv_to_json,
    ("csv", "xml"): csv_to_xml,
    ("csv", "html"): csv_to_html,
    ("json", "csv"): json_to_csv,
    ("json", "xml"): json_to_xml,
    ("xml", "json"): xml_to_json,
    ("xml", "csv"): xml_to_csv,
    ("xml", "html"): xml_to_html,
    ("html", "txt"): html_to_txt,
    ("html", "md"): html_to_md,
    ("txt", "html"): txt_to_html,
    ("md", "html"): md_to_html,
    ("md", "txt"): md_to_txt,
}
