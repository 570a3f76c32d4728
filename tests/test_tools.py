import pytest

from flexiconvert.core.exceptions import InvalidFileTypeError, InvalidSettingsError, UnsupportedToolError
from flexiconvert.engine.tools import (
    catalog,
    download_name,
    get_tool,
    resolve_output_extension,
    setting_bool,
    setting_choice,
    setting_int,
    tools_for_category,
    validate_inputs,
)


def test_every_category_has_tools():
    grouped = catalog()
    assert set(grouped) == {"document", "image", "audio", "video"}
    for category in grouped:
        assert tools_for_category(category)


def test_get_tool_unknown_and_wrong_category():
    with pytest.raises(UnsupportedToolError):
        get_tool("make-coffee")
    with pytest.raises(UnsupportedToolError) as exc:
        get_tool("mp3-to-wav", "video")
    assert "not available for video" in exc.value.message
    assert get_tool("mp3-to-wav", "audio").category == "audio"


def test_validate_inputs_is_case_insensitive():
    tool = get_tool("compress-pdf")
    validate_inputs(tool, ["SCAN.PDF", "other.pdf"])
    with pytest.raises(InvalidFileTypeError) as exc:
        validate_inputs(tool, ["photo.png"])
    assert "Expected: pdf" in exc.value.message


@pytest.mark.parametrize(
    "tool_name, filename, settings, expected",
    [
        ("word-to-pdf", "cv.docx", {}, "pdf"),
        ("compress-image", "photo.png", {}, "png"),
        ("grayscale", "photo.jpeg", {}, "jpg"),
        ("pdf-to-jpg", "deck.pdf", {}, "jpg"),
        ("pdf-to-jpg", "deck.pdf", {"pages": "all"}, "zip"),
        ("convert-document", "data.csv", {"outputFormat": "json"}, "json"),
        ("compress-audio", "song.flac", {}, "flac"),
        ("compress-video", "clip.mov", {}, "mp4"),
        ("split-pdf", "book.pdf", {}, "zip"),
        ("crop-circle", "avatar.jpg", {}, "png"),
        ("watermark", "photo.webp", {"text": "draft"}, "webp"),
        ("noise-reduction", "memo.m4a", {}, "m4a"),
        ("convert-document", "page.htm", {"outputFormat": "markdown"}, "md"),
    ],
)
def test_resolve_output_extension(tool_name, filename, settings, expected):
    assert resolve_output_extension(get_tool(tool_name), filename, settings) == expected


def test_convert_document_requires_supported_target():
    tool = get_tool("convert-document")
    with pytest.raises(InvalidSettingsError):
        resolve_output_extension(tool, "data.csv", {})
    with pytest.raises(InvalidSettingsError):
        resolve_output_extension(tool, "data.csv", {"outputFormat": "mp3"})


def test_download_name_uses_suffix_and_cleans_stem():
    assert download_name(get_tool("compress-pdf"), "Q3 report.pdf", "pdf") == "Q3 report_compressed.pdf"
    assert download_name(get_tool("word-to-pdf"), "cv<final>.docx", "pdf") == "cvfinal.pdf"
    assert download_name(get_tool("flip-horizontal"), "cat.png", "png") == "cat_flipped_h.png"
    assert download_name(get_tool("oil-paint"), "cat.png", "png") == "cat_oil_paint.png"


def test_multi_file_tools():
    assert get_tool("merge-pdf").multi_file
    assert get_tool("jpg-to-pdf").multi_file
    assert not get_tool("rotate-pdf").multi_file


def test_setting_helpers():
    assert setting_int({"size": "64"}, "size", 150, minimum=8) == 64
    assert setting_int({}, "size", 150) == 150
    with pytest.raises(InvalidSettingsError):
        setting_int({"size": "big"}, "size", 150)
    with pytest.raises(InvalidSettingsError):
        setting_int({"size": 4}, "size", 150, minimum=8)

    assert setting_bool({"cropToSquare": "false"}, "cropToSquare", True) is False
    assert setting_bool({}, "cropToSquare", True) is True

    assert setting_choice({"quality": "HIGH"}, "quality", "medium", ("low", "medium", "high")) == "high"
    with pytest.raises(InvalidSettingsError):
        setting_choice({"quality": "ultra"}, "quality", "medium", ("low", "medium", "high"))
