import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinicbook.api.errors import register_exception_handlers
from clinicbook.api.routes import appointments, schedules, slots
from clinicbook.core.config import _ENV_FILE, settings
from clinicbook.core.db import init_db

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Default timezone %s; slots every %d min between %02d:00 and %02d:00; working hours %s",
        settings.default_timezone,
        settings.slot_interval_minutes,
        settings.slot_start_hour,
        settings.slot_end_hour,
        "enforced" if settings.enforce_working_hours else "advisory",
    )
    if settings.auto_create_tables:
        await init_db()
        logger.info("Tables created from models (AUTO_CREATE_TABLES)")
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="ClinicBook API",
        description="Doctor schedules, availability and appointment lifecycle for dental clinics",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    for module in (schedules, slots, appointments):
        app.include_router(module.router, prefix="/api/v1")
    register_exception_handlers(app)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()
