import logging

from applications.gigs.models import Gig
from applications.user.models import User

logger = logging.getLogger(__name__)

RESET_MODELS = {
    "users": User,
    "gigs": Gig,
}


async def reset_data(apps: list[str]):
    # dependents first
    for app in reversed(list(RESET_MODELS)):
        if app in apps:
            deleted = await RESET_MODELS[app].all().delete()
            logger.info("Cleared %s (%s rows)", app, deleted)
