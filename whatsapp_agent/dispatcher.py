"""Webhook delivery dispatcher.

One call to ``dispatch`` handles one POST /webhook delivery:

    verify signature → parse envelope → check object → one task per message

The request handler returns as soon as the tasks are scheduled. Each task
runs its message through the matching pipeline and always ends by trying to
send *something* back to the sender: the agent's reply, a fixed
"unsupported" notice, or an apology when the pipeline failed.
"""

import asyncio
from dataclasses import dataclass

import structlog
from pydantic import ValidationError

from whatsapp_agent.errors import (
    UNSUPPORTED_MESSAGE_TYPE,
    AgentError,
    InvalidPayload,
    SignatureInvalid,
    UnknownEventSource,
)
from whatsapp_agent.middleware.auth import verify_signature
from whatsapp_agent.models.webhook import (
    WHATSAPP_OBJECT,
    AudioMessage,
    DocumentMessage,
    EventSource,
    ImageMessage,
    InboundEvent,
    Message,
    TextMessage,
    UnsupportedMessage,
    VideoMessage,
    parse_message,
)
from whatsapp_agent.services.agent_service import IntentResolver
from whatsapp_agent.services.gemini_service import ContentAnalyzer
from whatsapp_agent.services.message_handler import MessageHandler, apology_reply, unsupported_reply
from whatsapp_agent.services.whatsapp_service import WhatsAppClient

logger = structlog.get_logger()


@dataclass(frozen=True)
class MessageOutcome:
    """What one pipeline did for one message."""

    message_id: str
    sender: str
    message_type: str
    reply: str
    error_kind: str | None = None
    delivered: bool = False


def _error_kind(exc: Exception) -> str:
    return exc.kind if isinstance(exc, AgentError) else type(exc).__name__


class MessageDispatcher:
    def __init__(
        self,
        whatsapp: WhatsAppClient,
        analyzer: ContentAnalyzer,
        resolver: IntentResolver,
        app_secret: str,
    ) -> None:
        self.whatsapp = whatsapp
        self.handler = MessageHandler(whatsapp, analyzer, resolver)
        self.app_secret = app_secret
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------

    def dispatch(self, raw_body: bytes, signature_header: str | None) -> list[asyncio.Task]:
        """Verify and classify a delivery, then start one pipeline per message.

        Must be called from a running event loop. Returns the scheduled tasks
        (each resolves to a MessageOutcome); callers in the request path
        do not await them.

        Raises:
            SignatureInvalid: the x-hub-signature-256 header does not match.
            InvalidPayload: the body is not a webhook envelope.
            UnknownEventSource: ``object`` is not a WhatsApp business account.
        """
        if not verify_signature(raw_body, signature_header, self.app_secret):
            raise SignatureInvalid("Signature verification failed")

        try:
            source = EventSource.model_validate_json(raw_body)
        except ValidationError as exc:
            logger.warning("webhook_payload_invalid", errors=exc.error_count())
            raise InvalidPayload("Body is not a webhook envelope") from exc

        if source.object != WHATSAPP_OBJECT:
            logger.info("webhook_event_received", object=source.object)
            raise UnknownEventSource(f"Unexpected object: {source.object!r}")

        try:
            event = InboundEvent.model_validate_json(raw_body)
        except ValidationError as exc:
            logger.warning("webhook_payload_invalid", errors=exc.error_count())
            raise InvalidPayload("Body is not a webhook envelope") from exc

        entries = event.entry or []
        logger.info("webhook_event_received", object=event.object, entry_count=len(entries))

        tasks: list[asyncio.Task] = []
        for entry in entries:
            for change in entry.changes or []:
                value = change.value
                if value is None:
                    continue
                for raw_message in value.messages or []:
                    task = self._schedule(raw_message)
                    if task is not None:
                        tasks.append(task)
                if value.statuses:
                    logger.info("message_status_update", status_count=len(value.statuses))
        return tasks

    def _schedule(self, raw_message: dict) -> asyncio.Task | None:
        try:
            message = parse_message(raw_message)
        except ValidationError as exc:
            logger.error(
                "message_parse_failed",
                message_id=raw_message.get("id"),
                message_type=raw_message.get("type"),
                errors=exc.error_count(),
            )
            return None

        task = asyncio.create_task(self.process(message), name=f"message-{message.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def process(self, message: Message) -> MessageOutcome:
        """Run *message* through its pipeline and reply. Never raises."""
        log = logger.bind(sender=message.sender, message_id=message.id, message_type=message.type)
        log.info("message_received", timestamp=message.timestamp)

        match message:
            case TextMessage():
                pipeline = self.handler.handle_text(message)
            case AudioMessage():
                pipeline = self.handler.handle_audio(message)
            case ImageMessage():
                pipeline = self.handler.handle_image(message)
            case DocumentMessage():
                pipeline = self.handler.handle_document(message)
            case VideoMessage():
                pipeline = self.handler.handle_video(message)
            case UnsupportedMessage():
                log.warning("unsupported_message_type")
                reply = unsupported_reply(message.type)
                delivered = await self._send_best_effort(message.sender, reply, log)
                return self._outcome(message, reply, UNSUPPORTED_MESSAGE_TYPE, delivered)

        try:
            reply = await pipeline
        except Exception as exc:
            kind = _error_kind(exc)
            log.error("message_processing_failed", error_kind=kind, error=str(exc))
            apology = apology_reply(message.type)
            delivered = await self._send_best_effort(message.sender, apology, log)
            return self._outcome(message, apology, kind, delivered)

        log.info("reply_generated", length=len(reply))
        try:
            await self.whatsapp.send_text_message(message.sender, reply)
        except Exception as exc:
            kind = _error_kind(exc)
            log.error("reply_delivery_failed", error_kind=kind, error=str(exc))
            apology = apology_reply(message.type)
            delivered = await self._send_best_effort(message.sender, apology, log)
            return self._outcome(message, apology, kind, delivered)
        return self._outcome(message, reply, None, True)

    async def _send_best_effort(self, to: str, text: str, log) -> bool:
        try:
            await self.whatsapp.send_text_message(to, text)
        except Exception as exc:
            log.error("fallback_reply_failed", error_kind=_error_kind(exc), error=str(exc))
            return False
        return True

    @staticmethod
    def _outcome(message: Message, reply: str, error_kind: str | None, delivered: bool) -> MessageOutcome:
        return MessageOutcome(
            message_id=message.id,
            sender=message.sender,
            message_type=message.type,
            reply=reply,
            error_kind=error_kind,
            delivered=delivered,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> list[MessageOutcome]:
        """Wait for every in-flight pipeline and return their outcomes.

        Production code never waits on pipelines from the request path; this
        is for graceful shutdown and for tests.
        """
        outcomes: list[MessageOutcome] = []
        while self._tasks:
            outcomes.extend(await asyncio.gather(*list(self._tasks)))
        return outcomes
