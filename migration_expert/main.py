import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from migration_expert import __version__
from migration_expert.api import auth, chat, health, plans, subscription
from migration_expert.api.spa import build_spa_router
from migration_expert.core.config import Settings, settings as default_settings, validate_config
from migration_expert.core.dependencies import Services, build_services
from migration_expert.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from migration_expert.core.logging import LOGGER_NAME, configure_logging
from migration_expert.core.middleware.body_limit import BodySizeLimitMiddleware
from migration_expert.core.middleware.ratelimit import RateLimitMiddleware
from migration_expert.core.middleware.request_id import RequestIdMiddleware
from migration_expert.core.validation import validate_env


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting Migration Expert backend...")
    try:
        yield
    finally:
        services: Services = app.state.services
        if services.recorder.pending:
            logger.info(f"Waiting for {services.recorder.pending} pending history writes...")
        await services.recorder.drain()
        logger.info("Stopping Migration Expert backend...")


def create_app(cfg: Optional[Settings] = None, *, services: Optional[Services] = None) -> FastAPI:
    """Build the application.

    Args:
        cfg: Settings to use (defaults to the environment-loaded settings)
        services: Pre-built collaborators; built from cfg when omitted
    """
    cfg = cfg or default_settings
    configure_logging(cfg.ENV)
    validate_env(settings_obj=cfg)
    validate_config(settings_obj=cfg)

    app = FastAPI(title="Migration Expert API", version=__version__, lifespan=lifespan)
    app.state.settings = cfg
    app.state.services = services or build_services(cfg)

    # Last added runs first: request id → body size → rate limit → CORS → routes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        limiter=app.state.services.rate_limiter,
        enabled=cfg.RATE_LIMIT_ENABLED,
        trust_proxy_hops=cfg.TRUST_PROXY_HOPS,
    )
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=cfg.MAX_BODY_BYTES)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router)
    app.include_router(subscription.router)
    app.include_router(plans.router)
    app.include_router(chat.router)
    app.include_router(health.router)
    app.include_router(build_spa_router(cfg.STATIC_DIR))

    return app


app = create_app()
