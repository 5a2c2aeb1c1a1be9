from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.responses import PlainTextResponse

from whatsapp_agent.config import settings
from whatsapp_agent.dispatcher import MessageDispatcher
from whatsapp_agent.errors import InvalidPayload, SignatureInvalid, UnknownEventSource
from whatsapp_agent.logging_config import setup_logging
from whatsapp_agent.services.agent_service import IntentResolver
from whatsapp_agent.services.gemini_service import ContentAnalyzer
from whatsapp_agent.services.whatsapp_service import WhatsAppClient

logger = structlog.get_logger()

EVENT_RECEIVED = "EVENT_RECEIVED"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    whatsapp = WhatsAppClient()
    await whatsapp.startup()
    app.state.dispatcher = MessageDispatcher(
        whatsapp=whatsapp,
        analyzer=ContentAnalyzer(),
        resolver=IntentResolver(),
        app_secret=settings.APP_SECRET,
    )
    logger.info("whatsapp_agent_started")
    yield
    # Let in-flight replies finish before the HTTP pool goes away
    await app.state.dispatcher.drain()
    await whatsapp.shutdown()
    logger.info("whatsapp_agent_stopped")


app = FastAPI(title="WhatsApp Conversational Agent", lifespan=lifespan)


def get_dispatcher(request: Request) -> MessageDispatcher:
    return request.app.state.dispatcher


@app.get("/")
async def root():
    return {"message": "Welcome to WhatsApp Conversational Agents API"}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/webhook")
async def verify_webhook(request: Request):
    """Meta subscription handshake: echo hub.challenge when the token matches."""
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")

    if not mode or not token:
        return Response(status_code=400)

    if mode == "subscribe" and token == settings.WEBHOOK_VERIFICATION_TOKEN:
        logger.info("webhook_verified")
        return PlainTextResponse(challenge or "")

    logger.warning("webhook_verification_failed", mode=mode)
    return Response(status_code=403)


@app.post("/webhook")
async def handle_webhook(
    request: Request,
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
    x_hub_signature_256: str | None = Header(None),
):
    # Signature is checked against the body bytes exactly as received
    raw_body = await request.body()
    try:
        tasks = dispatcher.dispatch(raw_body, x_hub_signature_256)
    except SignatureInvalid:
        logger.warning("unauthorized_request", reason="signature_verification_failed")
        return Response(status_code=401)
    except InvalidPayload:
        return Response(status_code=400)
    except UnknownEventSource as exc:
        logger.warning("unknown_event_source", error=str(exc))
        return Response(status_code=404)

    logger.info("webhook_accepted", scheduled=len(tasks))
    return PlainTextResponse(EVENT_RECEIVED)
