import logging
import shutil
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Tool name -> Settings attribute holding its binary
TOOL_BINARIES = {
    "ghostscript": "gs_binary",
    "qpdf": "qpdf_binary",
    "soffice": "soffice_binary",
    "pdftoppm": "pdftoppm_binary",
}


class Settings(BaseSettings):
    """Configuration values for docshift. All env variables must start with docshift_"""

    max_upload_mb: int = 200
    """Maximum total upload size per request, in megabytes. Default 200."""

    temp_dir: Optional[Path] = None
    """Parent directory for per-job work directories. Default the system temp dir."""

    tool_timeout: Optional[float] = 120.0
    """Seconds an external tool may run before it is killed. None or 0 disables the limit."""

    gs_binary: str = "gs"
    qpdf_binary: str = "qpdf"
    soffice_binary: str = "soffice"
    pdftoppm_binary: str = "pdftoppm"

    disabled_tools: List[str] = Field(default_factory=list)
    """Tools treated as unavailable even when installed (ghostscript, qpdf, soffice, pdftoppm)."""

    library_fallback: bool = True
    """Use PyMuPDF for compress/protect/unlock when the external tool is unavailable."""

    rasterizer: Literal["pymupdf", "pdftoppm"] = "pymupdf"
    """Engine used by pdf2jpg."""

    raster_dpi: int = 150
    jpeg_quality: int = 85

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    logging_level: int = logging.INFO
    logging_file: Optional[str] = None

    host: str = "0.0.0.0"
    port: int = 3000
    reload: bool = False

    model_config = SettingsConfigDict(
        env_prefix="docshift_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def timeout_seconds(self) -> Optional[float]:
        return self.tool_timeout or None

    def binary_for(self, tool: str) -> str:
        return getattr(self, TOOL_BINARIES[tool])


class Capabilities:
    """Which external tools this deployment can run.

    Built once at startup from the settings: a tool is available when its
    configured binary resolves on PATH (or is an existing path) and it is
    not listed in ``disabled_tools``.
    """

    def __init__(self, available: Dict[str, bool]):
        self._available = dict(available)

    @classmethod
    def detect(cls, settings: Settings) -> "Capabilities":
        disabled = {name.lower() for name in settings.disabled_tools}
        available = {}
        for tool in TOOL_BINARIES:
            if tool in disabled:
                available[tool] = False
                continue
            available[tool] = shutil.which(settings.binary_for(tool)) is not None
        return cls(available)

    def has(self, tool: str) -> bool:
        return self._available.get(tool, False)

    def as_dict(self) -> Dict[str, bool]:
        return dict(self._available)
