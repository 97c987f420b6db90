import logging.config

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatter.realtime import TransportUnavailableError, shutdown_realtime, startup_realtime
from chatter.realtime.errors import (
    ChatError,
    Forbidden,
    InvalidPayload,
    NotFound,
    PersistenceFailure,
    PersistenceTimeout,
    Unauthenticated,
)

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.database import engine
from app.models import Base


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "chatter.realtime": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        }
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Order matters: subclasses before their bases.
_ERROR_STATUS: tuple[tuple[type[ChatError], int], ...] = (
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (InvalidPayload, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (PersistenceTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_error(exc: ChatError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(ChatError)
async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=status_for_error(exc), content={"detail": exc.message})


@app.exception_handler(TransportUnavailableError)
async def _transport_error_handler(request: Request, exc: TransportUnavailableError) -> JSONResponse:
    logger.warning("Realtime transport unavailable", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Realtime transport unavailable"},
    )


@app.get("/health", tags=["system"])
def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


@app.on_event("startup")
async def _startup() -> None:
    if settings.database_auto_create:
        Base.metadata.create_all(bind=engine)
    await startup_realtime()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
app.include_router(metrics_router)
