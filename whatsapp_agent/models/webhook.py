"""WhatsApp Cloud API webhook envelope.

https://developers.facebook.com/docs/whatsapp/cloud-api/webhooks/reference/messages

The envelope (InboundEvent → Entry → Change → Value) is parsed in one pass.
Messages are kept raw on Value and parsed one at a time with
``parse_message`` so a single malformed message cannot reject its siblings.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

WHATSAPP_OBJECT = "whatsapp_business_account"

SUPPORTED_TYPES = frozenset({"text", "audio", "image", "document", "video"})


# ---------------------------------------------------------------------------
# Message payloads
# ---------------------------------------------------------------------------


class TextBody(BaseModel):
    body: str


class AudioMedia(BaseModel):
    id: str
    mime_type: str | None = None
    voice: bool | None = None


class ImageMedia(BaseModel):
    id: str
    mime_type: str | None = None
    caption: str | None = None


class DocumentMedia(BaseModel):
    id: str
    mime_type: str | None = None
    filename: str | None = None
    caption: str | None = None


class VideoMedia(BaseModel):
    id: str
    mime_type: str | None = None
    caption: str | None = None


# ---------------------------------------------------------------------------
# Message variants
# ---------------------------------------------------------------------------


class BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    sender: str = Field(alias="from")
    id: str
    timestamp: str | None = None


class TextMessage(BaseMessage):
    type: Literal["text"]
    text: TextBody


class AudioMessage(BaseMessage):
    type: Literal["audio"]
    audio: AudioMedia


class ImageMessage(BaseMessage):
    type: Literal["image"]
    image: ImageMedia


class DocumentMessage(BaseMessage):
    type: Literal["document"]
    document: DocumentMedia


class VideoMessage(BaseMessage):
    type: Literal["video"]
    video: VideoMedia


class UnsupportedMessage(BaseMessage):
    """Any message type the pipelines do not handle (sticker, location, reaction, ...)."""

    type: str


def _message_tag(value: Any) -> str:
    msg_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return msg_type if msg_type in SUPPORTED_TYPES else "unsupported"


Message = Annotated[
    Union[
        Annotated[TextMessage, Tag("text")],
        Annotated[AudioMessage, Tag("audio")],
        Annotated[ImageMessage, Tag("image")],
        Annotated[DocumentMessage, Tag("document")],
        Annotated[VideoMessage, Tag("video")],
        Annotated[UnsupportedMessage, Tag("unsupported")],
    ],
    Discriminator(_message_tag),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: dict[str, Any]) -> Message:
    """Validate one raw message dict into its variant. Raises pydantic.ValidationError."""
    return _message_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    status: str | None = None
    timestamp: str | None = None
    recipient_id: str | None = None


class Value(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messaging_product: str | None = None
    metadata: dict | None = None
    contacts: list[dict] | None = None
    messages: list[dict[str, Any]] | None = None
    statuses: list[StatusUpdate] | None = None


class Change(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: Value | None = None
    field: str | None = None


class Entry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    changes: list[Change] | None = None


class EventSource(BaseModel):
    """Only the root `object` of a delivery, read before the entries are trusted."""

    model_config = ConfigDict(extra="ignore")

    object: Any = None


class InboundEvent(EventSource):
    entry: list[Entry] | None = None
