import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response

from docshift import documents
from docshift.config import TOOL_BINARIES, Capabilities, Settings
from docshift.errors import CapabilityUnavailableError, MissingInputError, UploadTooLargeError
from docshift.operations import COMPRESS, OFFICE_CONVERSIONS, PDF, PROTECT, UNLOCK
from docshift.tools import ConversionJob, ToolOperation, ToolResult, invoke

router = APIRouter()
logger = logging.getLogger(__name__)

ZIP = "application/zip"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_capabilities(request: Request) -> Capabilities:
    return request.app.state.capabilities


# ----------------------------
# Upload helpers
# ----------------------------
async def read_upload_limited(file: UploadFile, max_bytes: int, used: int = 0) -> bytes:
    """
    Read an upload into memory, enforcing the request-wide size limit.
    ``used`` is the number of bytes already taken by earlier files.
    """
    chunks = []
    total = used
    try:
        while True:
            chunk = await file.read(1024 * 1024)  # 1MB chunks
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise UploadTooLargeError(f"Upload too large. Max allowed is {max_bytes // (1024 * 1024)}MB.")
            chunks.append(chunk)
    finally:
        await file.close()
    return b"".join(chunks)


def _present(files: Optional[List[UploadFile]]) -> List[UploadFile]:
    return [f for f in (files or []) if f.filename]


async def read_single(file: Optional[UploadFile], settings: Settings) -> bytes:
    if file is None or not file.filename:
        raise MissingInputError("No file uploaded")
    return await read_upload_limited(file, settings.max_upload_bytes)


async def read_many(files: List[UploadFile], settings: Settings) -> List[Tuple[str, bytes]]:
    out = []
    total = 0
    for f in files:
        data = await read_upload_limited(f, settings.max_upload_bytes, used=total)
        total += len(data)
        out.append((f.filename, data))
    return out


def attachment(content: bytes, media_type: str, filename: str, headers: Optional[dict] = None) -> Response:
    all_headers = {"Content-Disposition": f"attachment; filename={filename}"}
    if headers:
        all_headers.update(headers)
    return Response(content=content, media_type=media_type, headers=all_headers)


def _in_job(operation: str, settings: Settings, func: Callable, *args):
    with ConversionJob(operation, settings.temp_dir) as job:
        return func(job, *args)


async def run_tool_or_fallback(
    operation: ToolOperation,
    data: bytes,
    settings: Settings,
    capabilities: Capabilities,
    fallback: Callable[[], bytes],
    **params,
) -> ToolResult:
    """Run ``operation`` with its external tool, or the library fallback when the tool is unavailable."""
    if capabilities.has(operation.tool):
        return await asyncio.to_thread(invoke, data, operation, settings, ".pdf", **params)
    if not settings.library_fallback:
        raise CapabilityUnavailableError(operation.name, operation.tool, TOOL_BINARIES[operation.tool])
    logger.info("%s: %s unavailable, using library fallback", operation.name, operation.tool)
    content = await asyncio.to_thread(fallback)
    return ToolResult(content=content, media_type=operation.media_type, filename=operation.filename)


# ----------------------------
# Health
# ----------------------------
@router.get("/health")
def health(settings: Settings = Depends(get_settings), capabilities: Capabilities = Depends(get_capabilities)):
    return {
        "status": "ok",
        "max_upload_mb": settings.max_upload_mb,
        "capabilities": capabilities.as_dict(),
    }


# ----------------------------
# Page operations
# ----------------------------
@router.post("/api/merge")
async def merge(
    files: Optional[List[UploadFile]] = File(None),
    settings: Settings = Depends(get_settings),
):
    uploads = _present(files)
    if not uploads:
        raise MissingInputError("No files uploaded")

    blobs = [data for _, data in await read_many(uploads, settings)]
    out = await asyncio.to_thread(documents.merge_pdfs, blobs)
    return attachment(out, PDF, "merged.pdf")


@router.post("/api/split")
async def split(
    file: Optional[UploadFile] = File(None),
    pages: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
):
    data = await read_single(file, settings)
    out = await asyncio.to_thread(_in_job, "split", settings, documents.split_pages, data, pages)
    return attachment(out, ZIP, "split.zip")


@router.post("/api/extract")
async def extract(
    file: Optional[UploadFile] = File(None),
    pages: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
):
    data = await read_single(file, settings)
    out = await asyncio.to_thread(documents.extract_pages, data, pages)
    return attachment(out, PDF, "extracted.pdf")


# ----------------------------
# Compression and encryption
# ----------------------------
@router.post("/api/compress")
async def compress(
    file: Optional[UploadFile] = File(None),
    level: str = Form("medium"),
    settings: Settings = Depends(get_settings),
    capabilities: Capabilities = Depends(get_capabilities),
):
    data = await read_single(file, settings)
    result = await run_tool_or_fallback(
        COMPRESS,
        data,
        settings,
        capabilities,
        partial(documents.compress_pdf_library, data),
        level=level,
    )
    return attachment(
        result.content,
        result.media_type,
        result.filename,
        headers={
            "X-Original-Bytes": str(len(data)),
            "X-Output-Bytes": str(len(result.content)),
        },
    )


@router.post("/api/protect")
async def protect(
    file: Optional[UploadFile] = File(None),
    password: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    capabilities: Capabilities = Depends(get_capabilities),
):
    data = await read_single(file, settings)
    if not password:
        raise MissingInputError("Password required")
    result = await run_tool_or_fallback(
        PROTECT,
        data,
        settings,
        capabilities,
        partial(documents.protect_pdf_library, data, password),
        password=password,
    )
    return attachment(result.content, result.media_type, result.filename)


@router.post("/api/unlock")
async def unlock(
    file: Optional[UploadFile] = File(None),
    password: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    capabilities: Capabilities = Depends(get_capabilities),
):
    data = await read_single(file, settings)
    if not password:
        raise MissingInputError("Password required")
    result = await run_tool_or_fallback(
        UNLOCK,
        data,
        settings,
        capabilities,
        partial(documents.unlock_pdf_library, data, password),
        password=password,
    )
    return attachment(result.content, result.media_type, result.filename)


# ----------------------------
# Image conversions
# ----------------------------
@router.post("/api/pdf2jpg")
async def pdf_to_jpg(
    file: Optional[UploadFile] = File(None),
    settings: Settings = Depends(get_settings),
    capabilities: Capabilities = Depends(get_capabilities),
):
    data = await read_single(file, settings)
    if settings.rasterizer == "pdftoppm":
        if not capabilities.has("pdftoppm"):
            raise CapabilityUnavailableError("pdf2jpg", "pdftoppm", TOOL_BINARIES["pdftoppm"])
        out = await asyncio.to_thread(_in_job, "pdf2jpg", settings, documents.render_pages_pdftoppm, data, settings)
    else:
        out = await asyncio.to_thread(
            _in_job, "pdf2jpg", settings, documents.render_pages, data, settings.raster_dpi, settings.jpeg_quality
        )
    return attachment(out, ZIP, "pages.zip")


@router.post("/api/jpg2pdf")
async def jpg_to_pdf(
    images: Optional[List[UploadFile]] = File(None),
    settings: Settings = Depends(get_settings),
):
    uploads = _present(images)
    if not uploads:
        raise MissingInputError("No images uploaded")

    named = await read_many(uploads, settings)
    out = await asyncio.to_thread(documents.images_to_pdf, named)
    return attachment(out, PDF, "converted.pdf")


# ----------------------------
# Office conversions (LibreOffice)
# ----------------------------
def _office_endpoint(operation: ToolOperation):
    async def convert(
        file: Optional[UploadFile] = File(None),
        settings: Settings = Depends(get_settings),
        capabilities: Capabilities = Depends(get_capabilities),
    ):
        data = await read_single(file, settings)
        if not capabilities.has(operation.tool):
            raise CapabilityUnavailableError(operation.name, operation.tool, TOOL_BINARIES[operation.tool])
        # LibreOffice picks its import filter from the extension
        suffix = Path(file.filename).suffix.lower()
        result = await asyncio.to_thread(invoke, data, operation, settings, suffix)
        return attachment(result.content, result.media_type, result.filename)

    convert.__name__ = operation.name
    return convert


for _name, _operation in OFFICE_CONVERSIONS.items():
    router.add_api_route(f"/api/{_name}", _office_endpoint(_operation), methods=["POST"], name=_name)
