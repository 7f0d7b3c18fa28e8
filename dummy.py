import sys
import asyncio
import logging

from tortoise import Tortoise

from app.config import init_db, settings, setup_logging
from app.dummy.registry import SEEDERS, run_seeders
from app.dummy.reset import reset_data

logger = logging.getLogger("dummy")


def confirm(msg: str) -> bool:
    answer = input(f"{msg} (yes/no): ").lower()
    return answer == "yes"


async def seed(apps: list[str], reset: bool):
    if settings.ENV == "production":
        logger.error("Seeding is blocked in production")
        return

    if not apps:
        logger.error("No app specified. Available: %s", ", ".join(SEEDERS))
        return

    await init_db()
    try:
        if reset:
            logger.warning("Reset enabled, clearing %s", ", ".join(apps))
            await reset_data(apps)
        await run_seeders([app for app in SEEDERS if app in apps])
        for unknown in set(apps) - set(SEEDERS):
            logger.error("Unknown app: %s", unknown)
    finally:
        await Tortoise.close_connections()


def main():
    setup_logging()
    args = sys.argv[1:]

    if not args or args[0] != "seed":
        print("Usage:")
        print("  python dummy.py seed users gigs")
        print("  python dummy.py seed --all")
        print("  python dummy.py seed users --reset")
        return

    reset = "--reset" in args
    apps = [a for a in args[1:] if not a.startswith("--")]

    if "--all" in args:
        if not confirm("This will seed ALL data. Continue?"):
            print("Cancelled")
            return
        apps = list(SEEDERS.keys())

    asyncio.run(seed(apps, reset))


if __name__ == "__main__":
    main()
