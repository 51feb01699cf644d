from typing import Optional


class DocshiftError(Exception):
    """Base class for errors surfaced to API clients.

    Each subclass carries the HTTP status code it maps to; the message is
    returned to the client as ``{"error": message}``.
    """

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingInputError(DocshiftError):
    """A required file or form field was not supplied."""

    status_code = 400


class UploadTooLargeError(DocshiftError):
    status_code = 413


class CapabilityUnavailableError(DocshiftError):
    """The operation needs an external tool this deployment does not provide."""

    status_code = 501

    def __init__(self, operation: str, tool: str, setting: Optional[str] = None):
        self.operation = operation
        self.tool = tool
        message = f"{operation} is not available: {tool} is not installed or is disabled"
        if setting:
            message += f". Install it or point DOCSHIFT_{setting.upper()} at the binary"
        super().__init__(message)


class ToolError(DocshiftError):
    """An external tool or document library failed while processing a job."""

    status_code = 500

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class ToolFailedError(ToolError):
    """Non-zero exit, OS-level launch failure or library exception."""


class ToolTimeoutError(ToolError):
    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, f"timed out after {timeout:g} seconds")


class OutputNotFoundError(ToolError):
    """The tool exited cleanly but the expected output file is missing."""

    def __init__(self, operation: str, detail: str = "conversion did not produce output"):
        super().__init__(operation, detail)
