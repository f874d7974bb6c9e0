"""FastAPI application — MarketPulse API v1."""
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from marketpulse.api.v1 import admin, markets
from marketpulse.api.v1.deps import build_service
from marketpulse.api.v1.errors import (
    market_data_error_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from marketpulse.core.config import settings
from marketpulse.core.db.session import create_engine, create_session_factory, init_db
from marketpulse.core.errors import MarketDataError

VERSION = "1.0.0"

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    engine = create_engine(settings.database_url)
    await init_db(engine)
    # Fails fast with ConfigError when RENTCAST_API_KEY is unset.
    app.state.service = build_service(settings, create_session_factory(engine))
    logger.info(
        "startup", version=VERSION,
        monthly_limit=settings.rentcast_monthly_limit,
    )
    yield
    await engine.dispose()
    logger.info("shutdown")


app = FastAPI(
    title="MarketPulse API",
    version=VERSION,
    description="Real-estate market KPIs by ZIP, cached from RentCast under a monthly call budget",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(markets.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")

app.add_exception_handler(MarketDataError, market_data_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
