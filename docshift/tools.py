"""External tool invocation.

Every conversion that shells out follows the same lifecycle: the uploaded
bytes are written into a private work directory, the tool runs
synchronously, its output is located and read back into memory, and the
work directory is removed whatever the outcome.
"""

import logging
import shutil
import subprocess
import tempfile
import time
import uuid
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from docshift.config import Settings
from docshift.errors import OutputNotFoundError, ToolError, ToolFailedError, ToolTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    content: bytes
    media_type: str
    filename: str


@dataclass(frozen=True)
class ToolCall:
    """Everything an argument builder may reference for one invocation."""

    binary: str
    input_path: Path
    output_dir: Path
    output_path: Optional[Path] = None
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOperation:
    """
    Describes one external-tool conversion.

    Tools that accept an explicit output path get ``output_path`` in their
    ToolCall and are read from exactly there. Tools that name their own
    output (``discovers_output``) write into the work directory, and the
    result is found by the input's base name plus ``output_suffix``.
    """

    name: str
    tool: str
    input_prefix: str
    arguments: Callable[[ToolCall], List[str]]
    media_type: str
    filename: str
    output_prefix: str = "out"
    output_suffix: str = ".pdf"
    discovers_output: bool = False


class ConversionJob:
    """
    Temporary filesystem resources owned by a single request.

    Use as a context manager: entering creates a unique work directory,
    exiting removes every path handed out by the job and the directory
    itself. Removal failures are logged and never replace the primary
    result or error.

    Example:
        with ConversionJob("compress", settings.temp_dir) as job:
            source = job.materialize(data, "inpdf", ".pdf")
            target = job.path("out", ".pdf")
    """

    def __init__(self, operation: str, temp_dir: Optional[Path] = None):
        self.operation = operation
        self._parent = temp_dir
        self.work_dir: Optional[Path] = None
        self.paths: List[Path] = []

    def __enter__(self):
        if self._parent is not None:
            Path(self._parent).mkdir(parents=True, exist_ok=True)
        self.work_dir = Path(tempfile.mkdtemp(prefix=f"{self.operation}_", dir=self._parent))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def path(self, prefix: str, suffix: str = "") -> Path:
        """Reserve a collision-free path inside the work directory."""
        if self.work_dir is None:
            raise RuntimeError("ConversionJob must be used within a context manager")
        path = self.work_dir / f"{prefix}_{uuid.uuid4().hex}{suffix}"
        self.paths.append(path)
        return path

    def materialize(self, data: bytes, prefix: str, suffix: str = "") -> Path:
        path = self.path(prefix, suffix)
        path.write_bytes(data)
        return path

    def track(self, path: Path) -> Path:
        """Register a path created by an external tool so it is removed too."""
        self.paths.append(path)
        return path

    def cleanup(self) -> None:
        for path in reversed(self.paths):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("%s: could not remove temp file %s: %s", self.operation, path, e)
        self.paths.clear()

        if self.work_dir is not None:
            try:
                # Also catches files a tool created that the job never named
                shutil.rmtree(self.work_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("%s: could not remove work dir %s: %s", self.operation, self.work_dir, e)
            self.work_dir = None


def run_tool(argv: List[str], operation: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """
    Run an external tool to completion.

    Args:
        argv: Binary followed by its arguments
        operation: Operation name used in logs and errors
        timeout: Seconds before the process is killed, None for no limit

    Raises:
        ToolTimeoutError: The process outlived ``timeout``
        ToolFailedError: The process could not start or exited non-zero
    """
    # Arguments may contain passwords, log the binary only
    logger.debug("%s: running %s", operation, argv[0])
    started = time.monotonic()
    try:
        p = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.error("%s: %s timed out after %ss", operation, argv[0], timeout)
        raise ToolTimeoutError(operation, timeout) from None
    except OSError as e:
        logger.error("%s: could not start %s: %s", operation, argv[0], e)
        raise ToolFailedError(operation, str(e)) from e

    if p.returncode != 0:
        detail = (p.stderr or p.stdout or "").strip() or f"{argv[0]} exited with status {p.returncode}"
        logger.error("%s: %s exited with status %d", operation, argv[0], p.returncode)
        raise ToolFailedError(operation, detail)

    logger.info("%s: %s finished in %.2fs", operation, argv[0], time.monotonic() - started)
    return p


def find_outputs(directory: Path, base_name: str, suffix: str, exclude: Iterable[Path] = ()) -> List[Path]:
    """
    Entries of ``directory`` whose name contains ``base_name`` and ends with
    ``suffix``, sorted by name. Paths in ``exclude``, usually the tool's own
    input file, never match.
    """
    skip = set(exclude)
    return sorted(
        (
            entry
            for entry in directory.iterdir()
            if entry not in skip and base_name in entry.name and entry.name.endswith(suffix)
        ),
        key=lambda entry: entry.name,
    )


def find_output(
    directory: Path, base_name: str, suffix: str, operation: str, exclude: Iterable[Path] = ()
) -> Path:
    """
    Locate the file a self-naming tool produced.

    Raises:
        OutputNotFoundError: No entry matches
    """
    matches = find_outputs(directory, base_name, suffix, exclude)
    if not matches:
        raise OutputNotFoundError(operation)
    return matches[0]


def invoke(
    data: bytes,
    operation: ToolOperation,
    settings: Settings,
    input_suffix: str = "",
    **params: Any,
) -> ToolResult:
    """
    Run ``operation`` on ``data`` and return the produced document.

    Args:
        data: Input document bytes
        operation: The tool operation to perform
        settings: Supplies binary paths, temp dir and timeout
        input_suffix: Extension for the temp input, for tools that sniff it
        **params: Operation parameters passed to the argument builder

    Raises:
        ToolError: The tool failed, timed out or produced no output
    """
    with ConversionJob(operation.name, settings.temp_dir) as job:
        input_path = job.materialize(data, operation.input_prefix, input_suffix)
        output_path = None
        if not operation.discovers_output:
            output_path = job.path(operation.output_prefix, operation.output_suffix)

        call = ToolCall(
            binary=settings.binary_for(operation.tool),
            input_path=input_path,
            output_dir=job.work_dir,
            output_path=output_path,
            params=params,
        )
        run_tool([call.binary] + operation.arguments(call), operation.name, settings.timeout_seconds)

        if operation.discovers_output:
            output_path = job.track(
                find_output(
                    job.work_dir, input_path.stem, operation.output_suffix, operation.name, exclude=[input_path]
                )
            )
        elif not output_path.exists():
            raise OutputNotFoundError(operation.name)

        content = output_path.read_bytes()

    return ToolResult(content=content, media_type=operation.media_type, filename=operation.filename)


def build_archive(job: ConversionJob, units: Iterable[Tuple[str, Callable[[], bytes]]]) -> bytes:
    """
    Render each unit and bundle the results into one zip archive.

    Units are rendered one at a time and appended in order; the archive is
    read back only after every unit has been written. A failing unit fails
    the whole batch, no partial archive is returned.

    Args:
        job: Owning job; the archive is written inside its work directory
        units: ``(entry_name, render)`` pairs, ``render`` returns the entry bytes

    Raises:
        ToolError: A unit failed to render
    """
    archive_path = job.path("archive", ".zip")
    count = 0
    try:
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
            for name, render in units:
                z.writestr(name, render())
                count += 1
    except ToolError:
        raise
    except Exception as e:
        logger.error("%s: batch aborted after %d entries: %s", job.operation, count, e)
        raise ToolFailedError(job.operation, str(e)) from e

    logger.info("%s: archived %d entries", job.operation, count)
    return archive_path.read_bytes()
