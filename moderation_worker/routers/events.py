import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from moderation_worker.core.config import settings
from moderation_worker.core.dependencies import get_moderation_service
from moderation_worker.core.exceptions import InvocationTimeoutException
from moderation_worker.core.logger import logger
from moderation_worker.services.moderation_service import ModerationService

router = APIRouter(tags=["events"])

CLOUD_EVENT_HEADERS = ("ce-type", "ce-source", "ce-subject", "ce-id")


@router.post("/events")
async def handle_storage_event(
    request: Request,
    service: ModerationService = Depends(get_moderation_service)
):
    """
    Receive one storage finalize notification.

    Returns 200 for every terminal result, including skipped events, and a
    server error when the object's state is unresolved so the delivery
    system retries. Malformed bodies get 400 and are not redelivered.
    """
    logger.info(
        "Event received",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            **{h.replace("-", "_"): request.headers.get(h, "") for h in CLOUD_EVENT_HEADERS},
            "content_type": request.headers.get("content-type", "")
        }
    )

    raw_body = await request.body()
    timeout = settings.invocation_timeout_seconds
    loop = asyncio.get_running_loop()
    try:
        # The worker thread is abandoned on timeout; redelivery reconciles its side effects
        outcome = await asyncio.wait_for(loop.run_in_executor(None, service.handle, raw_body), timeout=timeout)
    except asyncio.TimeoutError:
        raise InvocationTimeoutException(timeout)

    status_code = 200 if outcome.acknowledged else 500
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json"))
