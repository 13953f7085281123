from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from troflow.application import configure_stores
from troflow.core.config import settings
from troflow.core.logging import configure_logging, logger
from troflow.domain.errors import WorkflowError, WorkflowErrorCode
from troflow.infrastructure import configure_packet_renderer
from troflow.infrastructure.pdf import PypdfPacketRenderer
from troflow.infrastructure.rest import build_rest_stores
from troflow.routes import packets, vault, workflows

_CONFLICT_CODES = {
    WorkflowErrorCode.INVALID_TRANSITION,
    WorkflowErrorCode.MISSING_DEPENDENCY,
    WorkflowErrorCode.DATA_CONFLICT,
}


def error_status(error: WorkflowError) -> int:
    """HTTP status for a workflow error."""
    if error.code is WorkflowErrorCode.LOAD_FAILED:
        return 503 if error.retryable else 404
    if error.code in _CONFLICT_CODES:
        return 409
    if error.code is WorkflowErrorCode.VALIDATION_FAILED:
        return 422
    if error.code is WorkflowErrorCode.PERMISSION_DENIED:
        return 403
    return 503


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="TRO Packet Workflow API", version="0.1.0")

    if settings.STORE_URL:
        documents, workflow_rows, vault_rows = build_rest_stores(
            settings.STORE_URL,
            api_key=settings.STORE_API_KEY,
            timeout=settings.REMOTE_TIMEOUT_S,
        )
        configure_stores(documents, workflow_rows, vault_rows)
        logger.info("Using REST stores at %s", settings.STORE_URL)
    else:
        logger.info("TROFLOW_STORE_URL not set, using in-memory stores")

    configure_packet_renderer(PypdfPacketRenderer())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        return JSONResponse(status_code=error_status(exc), content={"detail": exc.to_dict()})

    app.include_router(workflows.router, prefix="/api")
    app.include_router(packets.router, prefix="/api")
    app.include_router(vault.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "TRO Packet Workflow API",
                "docs": "/docs",
            }
        )

    return app


app = create_app()
