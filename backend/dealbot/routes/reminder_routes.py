from fastapi import APIRouter, Header, HTTPException

from dealbot.config.settings import settings
from dealbot.errors import StorageUnavailable
from dealbot.services.reminder_service import reminder_service
from dealbot.utils.logger import get_logger

router = APIRouter(prefix="/api/reminders", tags=["reminders"])
logger = get_logger(__name__)


@router.post("/dispatch")
async def dispatch_reminders(x_dispatch_token: str = Header(default=None)):
    """
    Called by an external scheduler (cron, Cloud Scheduler, ...) every minute
    or so. Sends every reminder whose time has come.
    """
    if settings.reminder_dispatch_token and x_dispatch_token != settings.reminder_dispatch_token:
        logger.warning("/dispatch — rejected call with a bad dispatch token")
        raise HTTPException(status_code=401, detail="Invalid dispatch token")

    try:
        sent = await reminder_service.dispatch_due()
    except StorageUnavailable as e:
        logger.error("/dispatch — reminder store unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Reminder store unavailable")

    logger.info("/dispatch — %d reminder(s) sent", sent)
    return {"sent": sent}
