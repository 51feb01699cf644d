"""Document operations performed in-process with PDF and image libraries."""

import io
import logging
from functools import partial
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image
from PyPDF2 import PdfReader, PdfWriter

from docshift.config import Settings
from docshift.errors import OutputNotFoundError, ToolFailedError
from docshift.operations import pdftoppm_args
from docshift.pages import resolve, split_groups
from docshift.tools import ConversionJob, build_archive, find_outputs, run_tool

logger = logging.getLogger(__name__)

# US Letter in points, used for images that cannot be decoded
LETTER = (612, 792)


def _read_pdf(data: bytes, operation: str) -> PdfReader:
    try:
        return PdfReader(io.BytesIO(data))
    except Exception as e:
        raise ToolFailedError(operation, f"could not read PDF: {e}") from e


def _open_pdf(data: bytes, operation: str) -> fitz.Document:
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ToolFailedError(operation, f"could not open PDF: {e}") from e


def _write(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def _pages_document(reader: PdfReader, indices: Sequence[int]) -> bytes:
    writer = PdfWriter()
    for index in indices:
        writer.add_page(reader.pages[index])
    return _write(writer)


# ----------------------------
# Page operations
# ----------------------------
def merge_pdfs(blobs: List[bytes]) -> bytes:
    """Concatenate every page of each PDF, in upload order."""
    writer = PdfWriter()
    try:
        for data in blobs:
            reader = PdfReader(io.BytesIO(data))
            for page in reader.pages:
                writer.add_page(page)
        merged = _write(writer)
    except Exception as e:
        raise ToolFailedError("merge", str(e)) from e
    logger.info("merge: %d documents, %d pages", len(blobs), len(writer.pages))
    return merged


def extract_pages(data: bytes, spec: Optional[str]) -> bytes:
    """One PDF holding the pages selected by ``spec``, in the order requested."""
    reader = _read_pdf(data, "extract")
    try:
        indices = resolve(spec, len(reader.pages))
        out = _pages_document(reader, indices)
    except Exception as e:
        raise ToolFailedError("extract", str(e)) from e
    logger.info("extract: selected %d of %d pages", len(indices), len(reader.pages))
    return out


def split_pages(job: ConversionJob, data: bytes, spec: Optional[str]) -> bytes:
    """Zip archive with one single-page PDF per page selected by ``spec``."""
    reader = _read_pdf(data, "split")
    try:
        groups = split_groups(spec, len(reader.pages))
    except Exception as e:
        raise ToolFailedError("split", str(e)) from e

    units = (
        (f"extracted_{n}.pdf", partial(_pages_document, reader, group))
        for n, group in enumerate(groups, start=1)
    )
    return build_archive(job, units)


# ----------------------------
# Images
# ----------------------------
def _normalise_image(data: bytes) -> Tuple[bytes, int, int]:
    """Return image bytes MuPDF can embed, plus the pixel size."""
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        width, height = img.size
        if img.format == "JPEG" and img.mode == "RGB":
            return data, width, height
        if img.mode != "RGB":
            img = img.convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue(), width, height


def images_to_pdf(images: List[Tuple[str, bytes]]) -> bytes:
    """
    Build a PDF with one page per image, each page sized to its image.

    Args:
        images: ``(filename, bytes)`` pairs in page order

    Returns:
        PDF bytes. Images that cannot be decoded become a Letter page
        carrying an "Unable to render image" notice.
    """
    doc = fitz.open()
    try:
        for filename, data in images:
            try:
                stream, width, height = _normalise_image(data)
            except Exception as e:
                logger.warning("jpg2pdf: unable to render %s: %s", filename, e)
                page = doc.new_page(width=LETTER[0], height=LETTER[1])
                page.insert_text((72, 72), f"Unable to render image: {filename}", fontsize=12)
                continue
            page = doc.new_page(width=width, height=height)
            page.insert_image(page.rect, stream=stream)
        return doc.tobytes(deflate=True)
    except Exception as e:
        raise ToolFailedError("jpg2pdf", str(e)) from e
    finally:
        doc.close()


def render_pages(job: ConversionJob, data: bytes, dpi: int = 150, quality: int = 85) -> bytes:
    """Rasterise every page to JPEG with PyMuPDF and zip the results."""
    doc = _open_pdf(data, "pdf2jpg")
    with doc:
        zoom = dpi / 72.0
        matrix = fitz.Matrix(zoom, zoom)

        def render(index: int) -> bytes:
            pix = doc.load_page(index).get_pixmap(matrix=matrix, alpha=False)
            return pix.tobytes("jpeg", jpg_quality=quality)

        units = ((f"page-{i + 1}.jpg", partial(render, i)) for i in range(doc.page_count))
        return build_archive(job, units)


def render_pages_pdftoppm(job: ConversionJob, data: bytes, settings: Settings) -> bytes:
    """Rasterise every page with poppler's pdftoppm and zip the results."""
    input_path = job.materialize(data, "inpdf", ".pdf")
    prefix = job.path("page")
    run_tool(
        [settings.pdftoppm_binary] + pdftoppm_args(input_path, prefix, settings.raster_dpi),
        "pdf2jpg",
        settings.timeout_seconds,
    )

    pages = [job.track(p) for p in find_outputs(job.work_dir, prefix.name, ".jpg")]
    if not pages:
        raise OutputNotFoundError("pdf2jpg")
    units = ((f"page-{n}.jpg", page.read_bytes) for n, page in enumerate(pages, start=1))
    return build_archive(job, units)


# ----------------------------
# Library fallbacks for ghostscript / qpdf
# ----------------------------
def compress_pdf_library(data: bytes) -> bytes:
    """Rewrite the PDF dropping unused objects and deflating every stream."""
    doc = _open_pdf(data, "compress")
    with doc:
        try:
            return doc.tobytes(garbage=4, deflate=True, deflate_images=True, deflate_fonts=True, clean=True)
        except Exception as e:
            raise ToolFailedError("compress", str(e)) from e


def protect_pdf_library(data: bytes, password: str) -> bytes:
    doc = _open_pdf(data, "protect")
    with doc:
        if doc.is_encrypted:
            raise ToolFailedError("protect", "document is already encrypted")
        try:
            return doc.tobytes(
                encryption=fitz.PDF_ENCRYPT_AES_256,
                owner_pw=password,
                user_pw=password,
            )
        except Exception as e:
            raise ToolFailedError("protect", str(e)) from e


def unlock_pdf_library(data: bytes, password: str) -> bytes:
    doc = _open_pdf(data, "unlock")
    with doc:
        if doc.needs_pass and not doc.authenticate(password):
            raise ToolFailedError("unlock", "invalid password")
        try:
            return doc.tobytes(encryption=fitz.PDF_ENCRYPT_NONE)
        except Exception as e:
            raise ToolFailedError("unlock", str(e)) from e
