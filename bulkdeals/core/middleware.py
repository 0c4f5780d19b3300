from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from bulkdeals.core.exceptions import (
    BatchNotFoundError,
    BatchStateError,
    DailyLimitExceededError,
    RecordNotFoundError,
    RemoteServiceError,
)
import time
import uuid

async def log_request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    merchant_id = request.headers.get("X-Merchant-ID", "-")

    with logger.contextualize(request_id=request_id, merchant_id=merchant_id):
        start_time = time.time()
        logger.info(f"Incoming request: {request.method} {request.url.path}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(f"Unhandled exception occurred: {str(e)}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": "An internal server error occurred.", "request_id": request_id}
            )

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"Completed request: {request.method} {request.url.path} - Status: {response.status_code} - Duration: {duration_ms:.2f}ms")

        response.headers["X-Request-ID"] = request_id
        return response

def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})

def setup_exception_handlers(app):
    @app.exception_handler(BatchNotFoundError)
    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: Exception):
        logger.warning(f"Not found: {exc}")
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(BatchStateError)
    async def batch_state_handler(request: Request, exc: BatchStateError):
        logger.warning(str(exc))
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(DailyLimitExceededError)
    async def daily_limit_handler(request: Request, exc: DailyLimitExceededError):
        logger.warning(str(exc))
        return _error_response(status.HTTP_429_TOO_MANY_REQUESTS, exc)

    @app.exception_handler(RemoteServiceError)
    async def remote_service_handler(request: Request, exc: RemoteServiceError):
        logger.error(f"Upstream generation service failed: {exc}")
        return _error_response(status.HTTP_502_BAD_GATEWAY, exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global Exception: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error", "message": str(exc)}
        )
