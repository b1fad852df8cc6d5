import time
import uuid
from datetime import datetime
from http import HTTPStatus
from typing import Callable, Optional

import httpx

from .constants import (
    CHAT_COMPLETION_URL,
    CHAT_PC_VERSION,
    DEFAULT_USER_AGENT,
    DOUBAO_ORIGIN,
    THREAD_DELETE_URL,
    client_identity_params,
    debug_print,
)
from .errors import InternalError, RateLimitedError, ValidationError, upstream_status_error
from .models import (
    ChatMessage,
    ChatPayload,
    CompletionOption,
    CompletionRequest,
    CompletionResponse,
    DeleteResponse,
    TextPrompt,
    UploadResponse,
)
from .session_pool import Credential, SessionPool
from .streaming import collect_completion
from .upload import UploadPipeline, file_extension


def build_chat_payload(request: CompletionRequest, credential: Credential) -> ChatPayload:
    conversation_id = request.conversation_id
    need_create = not conversation_id
    payload = ChatPayload(
        completion_option=CompletionOption(
            need_create_conversation=need_create,
            use_auto_cot=request.use_auto_cot,
            use_deep_think=request.use_deep_think,
        ),
        conversation_id=conversation_id or "0",
        messages=[
            ChatMessage(
                content=TextPrompt(text=request.prompt).model_dump_json(),
                attachments=list(request.attachments),
            )
        ],
        section_id=request.section_id or None,
    )
    if not credential.guest:
        payload.local_conversation_id = f"local_{time.time_ns() % 10**16}"
        payload.local_message_id = str(uuid.uuid4())
    return payload


def build_chat_headers(credential: Credential) -> dict:
    return {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "Agw-Js-Conv": "str",
        "Cookie": credential.cookie,
        "Origin": DOUBAO_ORIGIN,
        "Referer": f"{DOUBAO_ORIGIN}/chat/{credential.room_id}",
        "User-Agent": DEFAULT_USER_AGENT,
        "X-Flow-Trace": credential.x_flow_trace,
    }


class DoubaoService:
    """Chat, delete and upload use-cases on top of the session pool."""

    def __init__(
        self,
        pool: SessionPool,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 300,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.pool = pool
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(float(timeout_seconds)))
        self._clock = clock

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def chat_completion(self, request: CompletionRequest) -> CompletionResponse:
        credential = self.pool.acquire(request.conversation_id, request.guest)
        payload = build_chat_payload(request, credential)
        debug_print(
            f"💬 Chat request | guest={credential.guest} | conversation={request.conversation_id or 'new'} "
            f"| attachments={len(request.attachments)}"
        )

        try:
            async with self._client.stream(
                "POST",
                CHAT_COMPLETION_URL,
                params=client_identity_params(credential, pc_version=CHAT_PC_VERSION),
                content=payload.to_json().encode("utf-8"),
                headers=build_chat_headers(credential),
            ) as response:
                if response.status_code != HTTPStatus.OK:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise upstream_status_error("doubao chat", response.status_code, body)
                result = await collect_completion(response.aiter_lines())
        except RateLimitedError:
            debug_print(f"🗑️  Evicting rate-limited session {credential.credential_id[:8]}")
            self.pool.evict(credential)
            raise
        except httpx.HTTPError as e:
            raise InternalError(f"call doubao chat: {e}") from e

        if result.conversation_id:
            self.pool.bind(result.conversation_id, credential)

        debug_print(f"✅ Chat completed | conversation={result.conversation_id} | images={len(result.images)}")
        return CompletionResponse(
            text=result.text.strip(),
            img_urls=result.images,
            conversation_id=result.conversation_id,
            message_id=result.message_id,
            section_id=result.section_id,
        )

    async def delete_conversation(self, conversation_id: str) -> DeleteResponse:
        credential = self.pool.acquire(conversation_id, False)
        try:
            response = await self._client.post(
                THREAD_DELETE_URL,
                params=client_identity_params(credential),
                json={"conversation_id": conversation_id},
                headers={
                    "Cookie": credential.cookie,
                    "Origin": DOUBAO_ORIGIN,
                    "Referer": f"{DOUBAO_ORIGIN}/chat/{conversation_id}",
                    "User-Agent": DEFAULT_USER_AGENT,
                },
            )
        except httpx.HTTPError as e:
            raise InternalError(f"call doubao delete: {e}") from e

        if response.status_code != HTTPStatus.OK:
            # Upstream rejection is reported as ok=false, never raised.
            debug_print(f"⚠️  Delete of {conversation_id} rejected: HTTP {response.status_code}")
            return DeleteResponse(ok=False, msg=response.text.strip())

        self.pool.release(conversation_id)
        debug_print(f"🗑️  Conversation {conversation_id} deleted")
        return DeleteResponse(ok=True, msg="")

    async def upload_file(self, file_type: int, file_name: str, data: bytes) -> UploadResponse:
        if not data:
            raise ValidationError("file_bytes body is empty")
        if not file_extension(file_name):
            raise ValidationError("file_name must include an extension")

        credential = self.pool.acquire(None, False)
        pipeline = UploadPipeline(self._client, clock=self._clock)
        return await pipeline.run(credential, file_type, file_name, data)
