"""Internal endpoints called by the external cron."""

import hmac
import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from api.dependencies import get_app_settings, get_reminder_worker
from scheduling.workers.reminder_worker import ReminderWorker
from shared.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["internal"])


def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Bearer CRON_SECRET; the endpoint is closed when no secret is configured."""
    expected = settings.CRON_SECRET
    if not expected or not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/reminders", dependencies=[Depends(verify_cron_secret)])
async def run_reminders(
    worker: Annotated[ReminderWorker, Depends(get_reminder_worker)],
):
    """Run the reminder and pre-visit confirmation sweeps once."""
    now = datetime.now(UTC)
    results = await worker.run_all(now)
    logger.info(f"Reminder sweep finished at {now.isoformat()}")
    return {"success": True, "timestamp": now.isoformat(), "results": results}
