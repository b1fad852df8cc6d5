import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, AsyncIterator, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as SchemaError

from .constants import (
    CONTENT_IMAGE,
    EVENT_COMPLETED,
    EVENT_CONTENT,
    EVENT_METADATA,
    GATEWAY_ERROR_EVENT,
    IMAGE_STATUS_READY,
    RATE_LIMIT_MARKER,
    TEXT_CONTENT_TYPES,
    debug_print,
)
from .errors import BadGatewayError, EmptyUpstreamError, RateLimitedError

# ============================================================
# EVENTS
# ============================================================


@dataclass
class TextChunk:
    text: str


@dataclass
class ImageSet:
    urls: List[str]


@dataclass
class MetadataUpdate:
    conversation_id: str = ""
    message_id: str = ""
    section_id: str = ""


@dataclass
class Completion:
    conversation_id: str = ""
    message_id: str = ""
    section_id: str = ""


@dataclass
class GatewayError:
    message: str


@dataclass
class RateLimitSignal:
    line: str


StreamEvent = Union[TextChunk, ImageSet, MetadataUpdate, Completion, GatewayError, RateLimitSignal]


@dataclass
class CompletionResult:
    text: str = ""
    images: List[str] = field(default_factory=list)
    conversation_id: str = ""
    message_id: str = ""
    section_id: str = ""


# ============================================================
# UPSTREAM PAYLOAD SCHEMAS
# Unknown fields are ignored: the protocol is undocumented and keeps growing.
# ============================================================


def _loads(raw: str) -> Any:
    return json.loads(raw, parse_float=Decimal)


class _Payload(BaseModel):
    """Null fields fall back to their defaults, like absent ones."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if v is not None}
        return value


class StreamEnvelope(_Payload):
    event_type: int = 0
    event_data: Any = None


class Identifiers(BaseModel):
    conversation_id: str = ""
    message_id: str = ""
    section_id: str = ""

    @field_validator("conversation_id", "message_id", "section_id", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str:
        # Ids come as strings or bare numbers depending on the endpoint version.
        if isinstance(value, str):
            return value
        if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            return str(value)
        return ""


class ContentMessage(_Payload):
    content_type: int = 0
    content: Any = None


class ContentEventData(_Payload):
    message: Optional[ContentMessage] = None


class TextContent(_Payload):
    text: str = ""


class ImageRef(_Payload):
    url: str = ""


class CreationImage(_Payload):
    status: int = 0
    image_raw: ImageRef = Field(default_factory=ImageRef)
    image_thumb: ImageRef = Field(default_factory=ImageRef)
    image_ori: ImageRef = Field(default_factory=ImageRef)


class Creation(_Payload):
    image: CreationImage = Field(default_factory=CreationImage)


class ImageContent(_Payload):
    creations: List[Creation] = Field(default_factory=list)

    @field_validator("creations", mode="before")
    @classmethod
    def _skip_null_entries(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [entry for entry in value if entry is not None]
        return value


# ============================================================
# DECODING
# ============================================================


def parse_event_block(lines: Iterable[str]) -> Tuple[str, str]:
    """Return (event name, data) of one SSE block. Later fields win."""
    event_name, data = "", ""
    for line in lines:
        line = line.strip()
        if line.startswith("event:"):
            event_name = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data = line[len("data:") :].strip()
    return event_name, data


def decode_event_data(raw: Any) -> dict:
    """
    Decode `event_data`, which the upstream sends either inline or as a JSON string
    holding another JSON document.
    """
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        raw = _loads(raw)
    if not isinstance(raw, dict):
        raise ValueError(f"event_data is {type(raw).__name__}, expected object")
    return raw


def extract_text(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        return ""
    try:
        return TextContent.model_validate(_loads(content)).text
    except (ValueError, SchemaError):
        return ""


def extract_images(content: Any) -> List[str]:
    if not isinstance(content, str) or not content.strip():
        return []
    try:
        payload = ImageContent.model_validate(_loads(content))
    except (ValueError, SchemaError):
        return []

    urls: List[str] = []
    for creation in payload.creations:
        image = creation.image
        if image.status != IMAGE_STATUS_READY:
            continue
        url = image.image_raw.url or image.image_thumb.url or image.image_ori.url
        if url:
            urls.append(url)
    return urls


def append_unique(dst: List[str], values: Iterable[str]) -> List[str]:
    seen = set(dst)
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        dst.append(value)
    return dst


def decode_block(lines: List[str]) -> Optional[StreamEvent]:
    """Turn one assembled block into an event, or None when there is nothing to act on."""
    event_name, data = parse_event_block(lines)
    if event_name == GATEWAY_ERROR_EVENT:
        return GatewayError(data or "doubao gateway error")
    if not data:
        return None

    try:
        envelope = StreamEnvelope.model_validate(_loads(data))
        payload = decode_event_data(envelope.event_data)
    except (ValueError, SchemaError) as e:
        debug_print(f"⚠️  Skipping undecodable SSE block: {e}")
        return None

    try:
        if envelope.event_type == EVENT_CONTENT:
            message = ContentEventData.model_validate(payload).message
            if message is None:
                return None
            if message.content_type in TEXT_CONTENT_TYPES:
                text = extract_text(message.content)
                return TextChunk(text) if text else None
            if message.content_type == CONTENT_IMAGE:
                urls = extract_images(message.content)
                return ImageSet(urls) if urls else None
            return None

        if envelope.event_type == EVENT_METADATA:
            return MetadataUpdate(**Identifiers.model_validate(payload).model_dump())

        if envelope.event_type == EVENT_COMPLETED:
            return Completion(**Identifiers.model_validate(payload).model_dump())
    except SchemaError as e:
        debug_print(f"⚠️  Skipping malformed event {envelope.event_type}: {e}")
    return None


# ============================================================
# STREAM PROCESSING
# ============================================================


async def iter_stream_events(lines: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
    """
    Yield typed events from the upstream line stream.

    A rate-limit marker anywhere in the stream ends iteration with a RateLimitSignal,
    even in the middle of a block.
    """
    block: List[str] = []
    async for line in lines:
        if RATE_LIMIT_MARKER in line:
            yield RateLimitSignal(line)
            return
        if line.strip():
            block.append(line)
            continue
        if block:
            event = decode_block(block)
            block = []
            if event is not None:
                yield event

    if block:
        event = decode_block(block)
        if event is not None:
            yield event


async def collect_completion(lines: AsyncIterator[str]) -> CompletionResult:
    """
    Aggregate the stream into a CompletionResult.

    Only a terminal event ends parsing with definite success. A stream that stops early
    still succeeds if it produced any text or images.
    """
    texts: List[str] = []
    images: List[str] = []
    ids = MetadataUpdate()

    events = iter_stream_events(lines)
    try:
        async for event in events:
            if isinstance(event, RateLimitSignal):
                raise RateLimitedError("tourist session limit reached; please refresh session")
            if isinstance(event, GatewayError):
                raise BadGatewayError(event.message)
            if isinstance(event, TextChunk):
                texts.append(event.text)
            elif isinstance(event, ImageSet):
                append_unique(images, event.urls)
            elif isinstance(event, MetadataUpdate):
                ids.conversation_id = event.conversation_id or ids.conversation_id
                ids.message_id = event.message_id or ids.message_id
                ids.section_id = event.section_id or ids.section_id
            elif isinstance(event, Completion):
                return CompletionResult(
                    text="".join(texts),
                    images=images,
                    conversation_id=event.conversation_id or ids.conversation_id,
                    message_id=event.message_id or ids.message_id,
                    section_id=event.section_id or ids.section_id,
                )
    finally:
        await events.aclose()

    if not texts and not images:
        raise EmptyUpstreamError("empty response from doubao")

    debug_print("⚠️  Stream ended without a completion event; returning partial content")
    return CompletionResult(
        text="".join(texts),
        images=images,
        conversation_id=ids.conversation_id,
        message_id=ids.message_id,
        section_id=ids.section_id,
    )
