"""Test suite for in-process document operations."""

import io
import zipfile

import fitz  # PyMuPDF
import pytest
from PIL import Image

from docshift import documents
from docshift.config import Settings
from docshift.errors import OutputNotFoundError, ToolFailedError
from docshift.tools import ConversionJob

from conftest import make_pdf, page_count, page_texts, write_script, zip_names


def image_bytes(size, fmt="PNG", mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color="red" if mode == "RGB" else 0).save(buf, format=fmt)
    return buf.getvalue()


class TestMerge:
    def test_merge_keeps_all_pages_in_order(self):
        merged = documents.merge_pdfs([make_pdf(2, "First"), make_pdf(3, "Second")])
        assert page_texts(merged) == ["First 1", "First 2", "Second 1", "Second 2", "Second 3"]

    def test_merge_single_document(self):
        assert page_count(documents.merge_pdfs([make_pdf(3)])) == 3

    def test_merge_invalid_pdf(self):
        with pytest.raises(ToolFailedError) as exc_info:
            documents.merge_pdfs([b"not a pdf"])
        assert exc_info.value.operation == "merge"


class TestExtract:
    def test_extract_range(self):
        out = documents.extract_pages(make_pdf(5), "2-3")
        assert page_texts(out) == ["Page 2", "Page 3"]

    def test_extract_follows_requested_order(self):
        out = documents.extract_pages(make_pdf(5), "4,1,1")
        assert page_texts(out) == ["Page 4", "Page 1", "Page 1"]

    def test_extract_all_when_spec_empty(self):
        assert page_count(documents.extract_pages(make_pdf(4), "")) == 4

    def test_extract_invalid_pdf(self):
        with pytest.raises(ToolFailedError):
            documents.extract_pages(b"garbage", "1")


class TestSplit:
    def test_split_every_page(self, work_dir):
        with ConversionJob("split", work_dir) as job:
            archive = documents.split_pages(job, make_pdf(3), None)
        assert zip_names(archive) == ["extracted_1.pdf", "extracted_2.pdf", "extracted_3.pdf"]
        assert list(work_dir.iterdir()) == []

    def test_split_selected_pages(self, work_dir):
        with ConversionJob("split", work_dir) as job:
            archive = documents.split_pages(job, make_pdf(5), "5,2")
        with zipfile.ZipFile(io.BytesIO(archive)) as z:
            assert z.namelist() == ["extracted_1.pdf", "extracted_2.pdf"]
            assert page_texts(z.read("extracted_1.pdf")) == ["Page 5"]
            assert page_texts(z.read("extracted_2.pdf")) == ["Page 2"]


class TestImagesToPdf:
    def test_page_size_matches_image(self):
        out = documents.images_to_pdf([("a.png", image_bytes((200, 100))), ("b.jpg", image_bytes((50, 80), "JPEG"))])
        with fitz.open(stream=out, filetype="pdf") as doc:
            assert doc.page_count == 2
            assert (doc[0].rect.width, doc[0].rect.height) == (200, 100)
            assert (doc[1].rect.width, doc[1].rect.height) == (50, 80)

    def test_palette_and_alpha_images(self):
        out = documents.images_to_pdf([("p.png", image_bytes((30, 30), mode="P")), ("a.png", image_bytes((10, 20), mode="RGBA"))])
        assert page_count(out) == 2

    def test_undecodable_image_gets_notice_page(self):
        out = documents.images_to_pdf([("broken.jpg", b"not an image")])
        with fitz.open(stream=out, filetype="pdf") as doc:
            assert doc.page_count == 1
            assert (doc[0].rect.width, doc[0].rect.height) == documents.LETTER
            assert "Unable to render image: broken.jpg" in doc[0].get_text()


class TestRenderPages:
    def test_one_jpeg_per_page(self, work_dir):
        with ConversionJob("pdf2jpg", work_dir) as job:
            archive = documents.render_pages(job, make_pdf(3), dpi=72)
        assert zip_names(archive) == ["page-1.jpg", "page-2.jpg", "page-3.jpg"]
        assert list(work_dir.iterdir()) == []

    def test_invalid_pdf(self, work_dir):
        with pytest.raises(ToolFailedError):
            with ConversionJob("pdf2jpg", work_dir) as job:
                documents.render_pages(job, b"garbage")
        assert list(work_dir.iterdir()) == []

    def test_pdftoppm(self, work_dir, fake_pdftoppm):
        settings = Settings(_env_file=None, temp_dir=work_dir, pdftoppm_binary=str(fake_pdftoppm))
        with ConversionJob("pdf2jpg", work_dir) as job:
            archive = documents.render_pages_pdftoppm(job, make_pdf(3), settings)
        assert zip_names(archive) == ["page-1.jpg", "page-2.jpg", "page-3.jpg"]
        assert list(work_dir.iterdir()) == []

    def test_pdftoppm_without_output(self, work_dir, tmp_path):
        silent = write_script(tmp_path / "silent", "#!{python}\n")
        settings = Settings(_env_file=None, temp_dir=work_dir, pdftoppm_binary=str(silent))
        with pytest.raises(OutputNotFoundError):
            with ConversionJob("pdf2jpg", work_dir) as job:
                documents.render_pages_pdftoppm(job, make_pdf(1), settings)
        assert list(work_dir.iterdir()) == []


class TestLibraryFallbacks:
    def test_compress_keeps_pages(self):
        assert page_count(documents.compress_pdf_library(make_pdf(3))) == 3

    def test_protect_then_unlock(self):
        protected = documents.protect_pdf_library(make_pdf(2), "s3cret")
        with fitz.open(stream=protected, filetype="pdf") as doc:
            assert doc.needs_pass
            assert doc.authenticate("s3cret")

        unlocked = documents.unlock_pdf_library(protected, "s3cret")
        with fitz.open(stream=unlocked, filetype="pdf") as doc:
            assert not doc.needs_pass
            assert doc.page_count == 2

    def test_unlock_wrong_password(self):
        protected = documents.protect_pdf_library(make_pdf(1), "s3cret")
        with pytest.raises(ToolFailedError) as exc_info:
            documents.unlock_pdf_library(protected, "wrong")
        assert "invalid password" in str(exc_info.value)

    def test_protect_already_encrypted(self):
        protected = documents.protect_pdf_library(make_pdf(1), "s3cret")
        with pytest.raises(ToolFailedError):
            documents.protect_pdf_library(protected, "other")
