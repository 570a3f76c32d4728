import tempfile
import unittest
import zipfile
from pathlib import Path

from PIL import Image
from PyPDF2 import PdfReader

from conftest import make_pdf
from flexiconvert.config import RuntimeConfig
from flexiconvert.core.exceptions import InvalidSettingsError
from flexiconvert.engine import document
from flexiconvert.engine.tools import ConversionContext, get_tool


def _count_pages(path: Path) -> int:
    with open(path, "rb") as handle:
        reader = PdfReader(handle, strict=False)
        return len(reader.pages)


def _context(tool: str, inputs, output: Path, settings=None) -> ConversionContext:
    return ConversionContext(
        record_id="test",
        tool=get_tool(tool),
        input_paths=list(inputs),
        output_path=output,
        settings=settings or {},
        config=RuntimeConfig(),
    )


class TestParsePageList(unittest.TestCase):
    def test_ranges_and_singles(self):
        self.assertEqual(document.parse_page_list("1-3, 5", 6), [1, 2, 3, 5])

    def test_all_and_open_range(self):
        self.assertEqual(document.parse_page_list("all", 3), [1, 2, 3])
        self.assertEqual(document.parse_page_list("2-", 4), [2, 3, 4])

    def test_keeps_requested_order(self):
        self.assertEqual(document.parse_page_list("3,1,2", 3), [3, 1, 2])

    def test_rejects_out_of_range_and_garbage(self):
        for raw in ("0", "4", "3-2", "a-b", "", None):
            with self.assertRaises(InvalidSettingsError):
                document.parse_page_list(raw, 3)


class TestPageOperations(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.input_path = make_pdf(self.base / "in.pdf", pages=5)

    def tearDown(self):
        self._tmp.cleanup()

    def test_merge_preserves_page_count(self):
        second = make_pdf(self.base / "second.pdf", pages=2)
        out = self.base / "out" / "merged.pdf"
        document.merge_pdf(_context("merge-pdf", [self.input_path, second], out))
        self.assertEqual(_count_pages(out), 7)

    def test_merge_needs_two_files(self):
        with self.assertRaises(InvalidSettingsError):
            document.merge_pdf(_context("merge-pdf", [self.input_path], self.base / "merged.pdf"))

    def test_split_every_page(self):
        out = self.base / "split.zip"
        document.split_pdf(_context("split-pdf", [self.input_path], out))
        with zipfile.ZipFile(out) as archive:
            names = sorted(archive.namelist())
        self.assertEqual(len(names), 5)
        self.assertIn("in_part1_pages_1.pdf", names)
        self.assertEqual(list(self.base.glob("in_part*.pdf")), [])

    def test_split_ranges(self):
        out = self.base / "split.zip"
        document.split_pdf(_context("split-pdf", [self.input_path], out, {"splitMode": "ranges", "ranges": "1-2,3-5"}))
        with zipfile.ZipFile(out) as archive:
            self.assertEqual(sorted(archive.namelist()), ["in_part1_pages_1-2.pdf", "in_part2_pages_3-5.pdf"])
            archive.extractall(self.base / "parts")
        self.assertEqual(_count_pages(self.base / "parts" / "in_part2_pages_3-5.pdf"), 3)

    def test_split_repeated_range_keeps_every_part(self):
        out = self.base / "split.zip"
        document.split_pdf(_context("split-pdf", [self.input_path], out, {"splitMode": "ranges", "ranges": "1,1"}))
        with zipfile.ZipFile(out) as archive:
            self.assertEqual(sorted(archive.namelist()), ["in_part1_pages_1.pdf", "in_part2_pages_1.pdf"])

    def test_rotate_selected_pages(self):
        out = self.base / "rotated.pdf"
        document.rotate_pdf(_context("rotate-pdf", [self.input_path], out, {"angle": 180, "pages": "2"}))
        reader = PdfReader(str(out))
        self.assertEqual(reader.pages[1].get("/Rotate"), 180)
        self.assertIn(reader.pages[0].get("/Rotate", 0), (0, None))

    def test_rotate_rejects_odd_angle(self):
        with self.assertRaises(InvalidSettingsError):
            document.rotate_pdf(_context("rotate-pdf", [self.input_path], self.base / "r.pdf", {"angle": 45}))

    def test_remove_pages(self):
        out = self.base / "removed.pdf"
        document.remove_pages(_context("remove-pages", [self.input_path], out, {"pages": "1,3-4"}))
        self.assertEqual(_count_pages(out), 2)

    def test_remove_every_page_is_rejected(self):
        with self.assertRaises(InvalidSettingsError):
            document.remove_pages(_context("remove-pages", [self.input_path], self.base / "x.pdf", {"pages": "all"}))

    def test_extract_pages_skips_duplicates(self):
        out = self.base / "extracted.pdf"
        document.extract_pages(_context("extract-pages", [self.input_path], out, {"pages": "2,2,4"}))
        self.assertEqual(_count_pages(out), 2)

    def test_organize_reorders(self):
        out = self.base / "organized.pdf"
        document.organize_pdf(_context("organize-pdf", [self.input_path], out, {"order": "5,1"}))
        self.assertEqual(_count_pages(out), 2)

    def test_damaged_pdf_is_reported(self):
        broken = self.base / "broken.pdf"
        broken.write_bytes(b"%PDF-1.4\nthis is not really a pdf")
        with self.assertRaises(document.PdfReadFailedError):
            document.extract_pages(_context("extract-pages", [broken], self.base / "x.pdf", {"pages": "1"}))


class TestImagesToPdf(unittest.TestCase):
    def test_one_page_per_image(self):
        with tempfile.TemporaryDirectory() as td:
            base = Path(td)
            inputs = []
            for idx, colour in enumerate(("red", "blue")):
                path = base / f"img{idx}.png"
                Image.new("RGBA", (40, 30), colour).save(path)
                inputs.append(path)
            out = base / "photos.pdf"

            document.images_to_pdf(_context("jpg-to-pdf", inputs, out))

            self.assertEqual(_count_pages(out), 2)
