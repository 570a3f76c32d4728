import csv
import io
import json
import xml.etree.ElementTree as ET

import pytest

from flexiconvert.config import RuntimeConfig
from flexiconvert.engine import structured
from flexiconvert.engine.document import convert_document
from flexiconvert.engine.tools import ConversionContext, get_tool


def test_csv_to_json(tmp_path):
    src = tmp_path / "people.csv"
    src.write_text("name,age\nAda,36\nAlan,41\n", encoding="utf-8")
    dest = tmp_path / "people.json"

    structured.csv_to_json(src, dest)

    assert json.loads(dest.read_text(encoding="utf-8")) == [
        {"name": "Ada", "age": "36"},
        {"name": "Alan", "age": "41"},
    ]


def test_json_to_csv_unions_keys(tmp_path):
    src = tmp_path / "rows.json"
    src.write_text(json.dumps([{"a": 1}, {"a": 2, "b": {"x": 1}}]), encoding="utf-8")
    dest = tmp_path / "rows.csv"

    structured.json_to_csv(src, dest)

    rows = list(csv.reader(io.StringIO(dest.read_text(encoding="utf-8"))))
    assert rows == [["a", "b"], ["1", ""], ["2", '{"x": 1}']]


def test_csv_to_xml(tmp_path):
    src = tmp_path / "t.csv"
    src.write_text("first name,city\nAda,London\n", encoding="utf-8")
    dest = tmp_path / "t.xml"

    structured.csv_to_xml(src, dest)

    root = ET.fromstring(dest.read_text(encoding="utf-8"))
    assert root.tag == "rows"
    row = root.find("row")
    assert row.find("city").text == "London"


def test_xml_to_json_groups_repeated_children(tmp_path):
    src = tmp_path / "lib.xml"
    src.write_text('<library><book id="1">A</book><book id="2">B</book></library>', encoding="utf-8")
    dest = tmp_path / "lib.json"

    structured.xml_to_json(src, dest)

    data = json.loads(dest.read_text(encoding="utf-8"))
    assert data == {"library": {"book": [{"@id": "1", "#text": "A"}, {"@id": "2", "#text": "B"}]}}


def test_html_to_txt_strips_markup(tmp_path):
    src = tmp_path / "page.html"
    src.write_text("<html><body><h1>Title</h1><p>Hello <b>world</b></p><script>x()</script></body></html>",
                   encoding="utf-8")
    dest = tmp_path / "page.txt"

    structured.html_to_txt(src, dest)

    text = dest.read_text(encoding="utf-8")
    assert "Title" in text
    assert "Hello world" in text
    assert "x()" not in text


def test_invalid_json_is_reported(tmp_path):
    src = tmp_path / "bad.json"
    src.write_text("{not json", encoding="utf-8")
    with pytest.raises(structured.StructuredDataError) as exc:
        structured.json_to_csv(src, tmp_path / "bad.csv")
    assert exc.value.status_code == 422


def test_convert_document_dispatches_structured_converter(tmp_path):
    src = tmp_path / "data.csv"
    src.write_text("k,v\na,1\n", encoding="utf-8")
    ctx = ConversionContext(
        record_id="test",
        tool=get_tool("convert-document"),
        input_paths=[src],
        output_path=tmp_path / "out" / "data.json",
        settings={"outputFormat": "json"},
        config=RuntimeConfig(),
    )

    out = convert_document(ctx)

    assert json.loads(out.read_text(encoding="utf-8")) == [{"k": "a", "v": "1"}]


def test_malformed_csv_is_reported(tmp_path):
    src = tmp_path / "huge.csv"
    src.write_text("notes\n" + "x" * (csv.field_size_limit() + 1) + "\n", encoding="utf-8")
    with pytest.raises(structured.StructuredDataError) as exc:
        structured.csv_to_json(src, tmp_path / "huge.json")
    assert exc.value.status_code == 422
