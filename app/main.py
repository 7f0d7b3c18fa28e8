import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from tortoise import Tortoise

from app.config import settings, init_db, setup_logging
from app.exceptions import register_exception_handlers
from app.redis import init_redis, close_redis
from app.routes import register_routes
from app.task_config import start_scheduler, stop_scheduler
from app.utils.websocket_manager import init_channel, close_channel

# rating aggregation hooks on Review
import applications.reviews.signals  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    init_channel(init_redis())
    start_scheduler()

    if settings.DEBUG and settings.SEED_DATA:
        from app.dummy.registry import run_seeders
        await run_seeders(["users", "gigs"])

    logger.info("%s started (%s)", settings.APP_NAME, settings.ENV)
    yield

    stop_scheduler()
    await close_channel()
    await close_redis()
    await Tortoise.close_connections()
    logger.info("Application shutdown complete.")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan, debug=settings.DEBUG)
register_exception_handlers(app)
mounted = register_routes(app)


@app.get("/")
async def home():
    return {"name": settings.APP_NAME, "env": settings.ENV, "routes": mounted}


@app.get("/health/")
async def health():
    return {"status": "ok"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "refresh-token", "stripe-signature"],
)


os.makedirs(settings.MEDIA_DIR, exist_ok=True)
app.mount(f"/{settings.MEDIA_ROOT.strip('/')}", StaticFiles(directory=settings.MEDIA_DIR), name="media")
