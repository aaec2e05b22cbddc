# app/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from app.errors import (
    AIGatewayError,
    CareflowError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.logs import configure_logging
from app.services import init_db
from app.api.routes import router as api_router


logger = structlog.get_logger(__name__)

# Most specific first; ConcurrentModificationError falls under InvalidStateError.
_STATUS_CODES = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (UnauthorizedError, 403),
    (ValidationError, 422),
    (AIGatewayError, 502),
]

app = FastAPI(title="Careflow Diagnosis API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # for dev; tighten in prod
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.exception_handler(CareflowError)
def handle_careflow_error(request: Request, exc: CareflowError) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    logger.info(
        "request_failed",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
            "retryable": exc.retryable,
        },
    )


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    init_db()


@app.get("/")
def root():
    return {"message": "Careflow Diagnosis API is running"}


app.include_router(api_router, prefix="/api")
