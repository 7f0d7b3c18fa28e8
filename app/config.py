import logging
from typing import Optional
from pydantic_settings import BaseSettings
from tortoise import Tortoise
from app.utils.auto_routing import get_single_app_structure


class Settings(BaseSettings):
    DEBUG: bool = True
    APP_NAME: str = "Gigmarket API"
    LOG_LEVEL: str = "INFO"

    MEDIA_DIR: str = "media/"
    MEDIA_ROOT: str = "media/"
    MAX_UPLOAD_MB: int = 10
    ENV: str = "development"
    DB_HOST: str = "localhost"
    DB_NAME: str = "db.sqlite3"
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_PORT: int = 5432
    DB_ENGINE: str = "postgres"

    DATABASE_URL: Optional[str] = None
    SECRET_KEY: str = "change-me-access"
    REFRESH_SECRET_KEY: str = "change-me-refresh"
    BASE_URL: str = "http://localhost:8000/"
    CLIENT_URL: str = "http://localhost:5173"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    REDIS_URL: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    SEED_DATA: bool = False

    def model_post_init(self, __context):
        if self.DATABASE_URL:
            return
        if self.DB_ENGINE == "sqlite":
            self.DATABASE_URL = f"sqlite://{self.DB_NAME}"
        else:
            self.DATABASE_URL = (
                f"{self.DB_ENGINE}://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


TORTOISE_ORM = {
    "connections": {
        "default": settings.DATABASE_URL,
    },
    "apps": get_single_app_structure("applications"),
    "use_tz": True,
    "timezone": "UTC",
}


def setup_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def init_db():
    await Tortoise.init(config=TORTOISE_ORM)
    if settings.ENV != "production":
        await Tortoise.generate_schemas()
    else:
        logging.getLogger(__name__).info("Skipping schema generation in production.")
