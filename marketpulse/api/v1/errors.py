"""Global error handlers."""
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from marketpulse.core.errors import MarketDataError

logger = structlog.get_logger()


async def market_data_error_handler(request: Request, exc: MarketDataError):
    logger.warning(
        "api.error", path=request.url.path, code=exc.code,
        status=exc.status_code, error=exc.message, upstream=exc.detail,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "code": "VALIDATION_ERROR", "details": {"errors": str(exc)}},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("api.unhandled", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"error": "Server error", "code": "SERVER_ERROR", "details": {}},
    )
