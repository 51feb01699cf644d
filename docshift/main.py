import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docshift import __version__, api
from docshift.config import Capabilities, Settings
from docshift.errors import DocshiftError
from docshift.log import configure_logging

logger = logging.getLogger(__name__)


# ----------------------------
# Error responses
# ----------------------------
async def docshift_error_handler(request: Request, exc: DocshiftError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(str(err.get("msg", err)) for err in exc.errors()) or "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


# ----------------------------
# App
# ----------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The settings, and the tool capabilities detected from them, are stored
    on ``app.state`` and handed to handlers through dependencies.
    """
    settings = settings or Settings()
    configure_logging(settings)
    capabilities = Capabilities.detect(settings)

    app = FastAPI(
        title="docshift",
        version=__version__,
        description="Merge, split, compress, convert and password protect documents.",
        docs_url="/api-docs",
    )
    app.state.settings = settings
    app.state.capabilities = capabilities

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Original-Bytes", "X-Output-Bytes"],
    )

    app.add_exception_handler(DocshiftError, docshift_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(api.router)

    logger.info(
        "docshift %s ready (max upload %dMB, tools: %s)",
        __version__,
        settings.max_upload_mb,
        ", ".join(name for name, ok in capabilities.as_dict().items() if ok) or "none",
    )
    return app


def run() -> None:
    """Run a development server with uvicorn. Host and port come from DOCSHIFT_HOST / DOCSHIFT_PORT."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "docshift.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    run()
