import logging

from app.utils.task_decorators import every
from applications.communication.services import expire_offers

logger = logging.getLogger(__name__)


@every(minutes=15)
async def expire_custom_offers():
    expired = await expire_offers()
    if expired:
        logger.info("Custom offer sweep expired %d offers", expired)
