import logging

from app.dummy.gigs import seed_gigs
from app.dummy.users import seed_users

logger = logging.getLogger(__name__)

# order matters: gigs need their freelancers
SEEDERS = {
    "users": seed_users,
    "gigs": seed_gigs,
}


async def run_seeders(apps: list[str]) -> None:
    for app in apps:
        seeder = SEEDERS.get(app)
        if seeder is None:
            logger.warning("Unknown seeder: %s", app)
            continue
        await seeder()
        logger.info("%s seeded", app)
