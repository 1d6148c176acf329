import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..backends import SignatureBackend
from ..deps import get_backend, get_workflow
from ..webhooks import ACK_BODY, InvalidWebhook, WebhookProcessor, parse_payload
from ..workflow import NdaWorkflow

logger = logging.getLogger(__name__)

router = APIRouter()

async def _read_raw_event(request: Request):
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        return form.get("json")
    return (await request.body()).decode("utf-8", errors="replace")

@router.post("/webhook")
async def vendor_webhook(
    request: Request,
    workflow: NdaWorkflow = Depends(get_workflow),
    backend: SignatureBackend = Depends(get_backend),
):
    processor = WebhookProcessor(workflow.repository, workflow, backend)
    try:
        payload = parse_payload(await _read_raw_event(request))
        outcome = await run_in_threadpool(processor.handle, payload)
    except InvalidWebhook as exc:
        logger.warning("rejected vendor webhook: %s", exc)
        return PlainTextResponse("invalid event", status_code=401)
    except Exception:
        # the vendor only ever sees an ack
        logger.exception("vendor webhook processing failed")
        return PlainTextResponse(ACK_BODY)
    logger.info("vendor webhook processed: %s", outcome)
    return PlainTextResponse(ACK_BODY)
