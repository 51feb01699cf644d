import io
import stat
import sys
import zipfile
from pathlib import Path

import fitz  # PyMuPDF
import pytest
from fastapi.testclient import TestClient

from docshift.config import Settings
from docshift.main import create_app

MISSING = "docshift-test-missing-binary"

FAKE_SOFFICE = """#!{python}
import sys
from pathlib import Path

args = sys.argv[1:]
target = args[args.index("--convert-to") + 1]
outdir = Path(args[args.index("--outdir") + 1])
source = Path(args[-1])
(outdir / (source.stem + "." + target)).write_bytes(b"converted:" + source.read_bytes())
"""

SILENT_TOOL = """#!{python}
import sys

sys.exit(0)
"""

FAILING_TOOL = """#!{python}
import sys

sys.stderr.write("boom: cannot process input")
sys.exit(3)
"""

# Both write the arguments they received, one per line, as their output
FAKE_GS = """#!{python}
import sys

args = sys.argv[1:]
output = [a for a in args if a.startswith("-sOutputFile=")][0].split("=", 1)[1]
with open(output, "w") as f:
    f.write("\\n".join(args))
"""

FAKE_QPDF = """#!{python}
import sys

args = sys.argv[1:]
with open(args[-1], "w") as f:
    f.write("\\n".join(args))
"""

FAKE_PDFTOPPM = """#!{python}
import sys

prefix = sys.argv[-1]
for page in (1, 2, 3):
    with open("%s-%d.jpg" % (prefix, page), "wb") as f:
        f.write(b"jpeg-%d" % page)
"""


def make_pdf(pages: int = 3, label: str = "Page") -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=612, height=792)
        page.insert_text((100, 100), f"{label} {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def page_count(data: bytes) -> int:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return doc.page_count


def page_texts(data: bytes):
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [page.get_text().strip() for page in doc]


def zip_names(data: bytes):
    with zipfile.ZipFile(io.BytesIO(data)) as z:
        return z.namelist()


def write_script(path: Path, source: str) -> Path:
    path.write_text(source.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def work_dir(tmp_path):
    """Parent directory for job work dirs; tests assert it ends up empty."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(work_dir):
    """Settings with every external tool unavailable."""
    return Settings(
        _env_file=None,
        temp_dir=work_dir,
        gs_binary=MISSING,
        qpdf_binary=MISSING,
        soffice_binary=MISSING,
        pdftoppm_binary=MISSING,
    )


@pytest.fixture
def fake_soffice(tmp_path):
    return write_script(tmp_path / "soffice", FAKE_SOFFICE)


@pytest.fixture
def fake_gs(tmp_path):
    return write_script(tmp_path / "gs", FAKE_GS)


@pytest.fixture
def fake_qpdf(tmp_path):
    return write_script(tmp_path / "qpdf", FAKE_QPDF)


@pytest.fixture
def silent_tool(tmp_path):
    """A tool that exits 0 without writing anything."""
    return write_script(tmp_path / "silent", SILENT_TOOL)


@pytest.fixture
def failing_tool(tmp_path):
    return write_script(tmp_path / "failing", FAILING_TOOL)


@pytest.fixture
def fake_pdftoppm(tmp_path):
    return write_script(tmp_path / "pdftoppm", FAKE_PDFTOPPM)


@pytest.fixture
def client(settings):
    return TestClient(create_app(settings))


@pytest.fixture
def sample_pdf():
    return make_pdf(4)
