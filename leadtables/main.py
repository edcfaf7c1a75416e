from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadtables.api.routes import router as api_router
from leadtables.core.config import get_settings
from leadtables.leads.api import error_response, validation_error_response
from leadtables.logging import configure_logging
from leadtables.middleware.correlation_id import CorrelationIdMiddleware
from leadtables.middleware.request_logging import RequestLoggingMiddleware
from leadtables.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("leadtables.lifecycle")

_HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("system.started")
    yield


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return validation_error_response(request, jsonable_encoder(exc.errors()))


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(
        request,
        status_code=exc.status_code,
        code=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


settings = get_settings()
app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_exception_handler(RequestValidationError, handle_request_validation_error)
app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
