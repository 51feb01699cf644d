from pathlib import Path
from typing import Dict, List

from docshift.tools import ToolCall, ToolOperation

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

COMPRESSION_LEVELS = {
    "low": "/screen",
    "medium": "/ebook",
    "high": "/prepress",
}
DEFAULT_COMPRESSION = "/ebook"


def pdf_settings(level: str) -> str:
    """Map a compression level to ghostscript's -dPDFSETTINGS preset."""
    return COMPRESSION_LEVELS.get((level or "").lower(), DEFAULT_COMPRESSION)


def _ghostscript_args(call: ToolCall) -> List[str]:
    return [
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={pdf_settings(call.params.get('level', 'medium'))}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        f"-sOutputFile={call.output_path}",
        str(call.input_path),
    ]


def _qpdf_encrypt_args(call: ToolCall) -> List[str]:
    password = call.params["password"]
    return ["--encrypt", password, password, "256", "--", str(call.input_path), str(call.output_path)]


def _qpdf_decrypt_args(call: ToolCall) -> List[str]:
    return [f"--password={call.params['password']}", "--decrypt", str(call.input_path), str(call.output_path)]


def _soffice_args(target: str):
    def build(call: ToolCall) -> List[str]:
        # LibreOffice profile lives inside the job work dir
        profile = (Path(call.output_dir) / "profile").resolve().as_uri()
        return [
            f"-env:UserInstallation={profile}",
            "--headless",
            "--nologo",
            "--nolockcheck",
            "--nodefault",
            "--nofirststartwizard",
            "--convert-to",
            target,
            "--outdir",
            str(call.output_dir),
            str(call.input_path),
        ]

    return build


def pdftoppm_args(input_path, output_prefix, dpi: int) -> List[str]:
    # pdftoppm writes <prefix>-<page>.jpg, zero padded to the page count width
    return ["-jpeg", "-r", str(dpi), str(input_path), str(output_prefix)]


COMPRESS = ToolOperation(
    name="compress",
    tool="ghostscript",
    input_prefix="inpdf",
    arguments=_ghostscript_args,
    media_type=PDF,
    filename="compressed.pdf",
)

PROTECT = ToolOperation(
    name="protect",
    tool="qpdf",
    input_prefix="inpdf",
    output_prefix="protected",
    arguments=_qpdf_encrypt_args,
    media_type=PDF,
    filename="protected.pdf",
)

UNLOCK = ToolOperation(
    name="unlock",
    tool="qpdf",
    input_prefix="inpdf",
    output_prefix="unlocked",
    arguments=_qpdf_decrypt_args,
    media_type=PDF,
    filename="unlocked.pdf",
)


def _office(name: str, input_prefix: str, target: str, media_type: str, filename: str) -> ToolOperation:
    return ToolOperation(
        name=name,
        tool="soffice",
        input_prefix=input_prefix,
        arguments=_soffice_args(target),
        media_type=media_type,
        filename=filename,
        output_suffix=f".{target}",
        discovers_output=True,
    )


OFFICE_CONVERSIONS: Dict[str, ToolOperation] = {
    "word2pdf": _office("word2pdf", "inword", "pdf", PDF, "converted.pdf"),
    "excel2pdf": _office("excel2pdf", "inexcel", "pdf", PDF, "converted.pdf"),
    "ppt2pdf": _office("ppt2pdf", "inppt", "pdf", PDF, "converted.pdf"),
    "pdf2word": _office("pdf2word", "inpdf", "docx", DOCX, "converted.docx"),
    "pdf2excel": _office("pdf2excel", "inpdf", "xlsx", XLSX, "converted.xlsx"),
    "pdf2ppt": _office("pdf2ppt", "inpdf", "pptx", PPTX, "converted.pptx"),
}
