"""Per-type message pipelines.

Each handler turns one inbound message into the reply text for its sender:
text goes straight to the conversational agent; media is downloaded, turned
into a Gemini synopsis, and the synopsis is sent to the agent instead, with
the media type set as a session parameter.
Handlers raise the typed errors of their collaborators; recovery (apology
replies) is the dispatcher's job.
"""

import structlog

from whatsapp_agent.models.webhook import (
    AudioMessage,
    DocumentMessage,
    ImageMessage,
    TextMessage,
    VideoMessage,
)
from whatsapp_agent.services.agent_service import IntentResolver
from whatsapp_agent.services.gemini_service import ContentAnalyzer
from whatsapp_agent.services.whatsapp_service import WhatsAppClient

logger = structlog.get_logger()

APOLOGY_REPLIES = {
    "text": "Sorry, I encountered an error processing your message.",
    "audio": "Sorry, I encountered an error processing your audio message.",
    "image": "Sorry, I encountered an error processing your image.",
    "document": "Sorry, I encountered an error processing your document.",
    "video": "Sorry, I encountered an error processing your video.",
}


def apology_reply(message_type: str) -> str:
    return APOLOGY_REPLIES.get(message_type, APOLOGY_REPLIES["text"])


def unsupported_reply(message_type: str) -> str:
    return f"Sorry, I cannot process {message_type} messages yet."


class MessageHandler:
    def __init__(
        self,
        whatsapp: WhatsAppClient,
        analyzer: ContentAnalyzer,
        resolver: IntentResolver,
    ) -> None:
        self.whatsapp = whatsapp
        self.analyzer = analyzer
        self.resolver = resolver

    async def handle_text(self, message: TextMessage) -> str:
        return await self.resolver.resolve(message.text.body, message.sender)

    async def handle_audio(self, message: AudioMessage) -> str:
        blob = await self.whatsapp.fetch_media(message.audio.id)
        synopsis = await self.analyzer.analyze_audio(blob.data, blob.mime_type)
        return await self._resolve_synopsis(synopsis, message.sender, "audio")

    async def handle_image(self, message: ImageMessage) -> str:
        blob = await self.whatsapp.fetch_media(message.image.id)
        synopsis = await self.analyzer.analyze_image(blob.data, blob.mime_type, message.image.caption)
        return await self._resolve_synopsis(synopsis, message.sender, "image")

    async def handle_document(self, message: DocumentMessage) -> str:
        blob = await self.whatsapp.fetch_media(message.document.id)
        synopsis = await self.analyzer.analyze_document(blob.data, blob.mime_type, message.document.filename)
        return await self._resolve_synopsis(synopsis, message.sender, "document")

    async def handle_video(self, message: VideoMessage) -> str:
        blob = await self.whatsapp.fetch_media(message.video.id)
        synopsis = await self.analyzer.analyze_video(blob.data, blob.mime_type, message.video.caption)
        return await self._resolve_synopsis(synopsis, message.sender, "video")

    async def _resolve_synopsis(self, synopsis: str, sender: str, media_type: str) -> str:
        logger.info("media_synopsis_ready", sender=sender, media_type=media_type, length=len(synopsis))
        return await self.resolver.resolve(synopsis, sender, {"media_type": media_type})
