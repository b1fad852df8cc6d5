import hashlib
import json
import uuid
import zlib
from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus
from typing import Callable, List, Optional, Type, TypeVar
from urllib.parse import quote, urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from .constants import (
    DEFAULT_USER_AGENT,
    DOUBAO_ORIGIN,
    IMAGEX_API_VERSION,
    IMAGEX_REGION,
    IMAGEX_SERVICE,
    IMAGEX_URL,
    PREPARE_UPLOAD_URL,
    RESOURCE_IMAGE,
    STORE_UPLOAD_URL,
    client_identity_params,
    debug_print,
)
from .errors import BadGatewayError, BadUpstreamError, InternalError, ValidationError, upstream_status_error
from .models import UploadResponse
from .session_pool import Credential
from .signer import EMPTY_PAYLOAD_HASH, STSCredentials, sha256_hex, sign_request

_Model = TypeVar("_Model", bound=BaseModel)


# --- Upstream response shapes ---


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UploadAuthToken(_Lenient):
    session_token: str = ""
    access_key: str = ""
    secret_key: str = ""


class PrepareData(_Lenient):
    service_id: str = ""
    upload_auth_token: UploadAuthToken = Field(default_factory=UploadAuthToken)


class PrepareResponse(_Lenient):
    data: PrepareData = Field(default_factory=PrepareData)


class StoreInfo(_Lenient):
    store_uri: str = Field("", alias="StoreUri")
    auth: str = Field("", alias="Auth")


class UploadAddress(_Lenient):
    store_infos: List[StoreInfo] = Field(default_factory=list, alias="StoreInfos")
    session_key: str = Field("", alias="SessionKey")


class ApplyResult(_Lenient):
    upload_address: UploadAddress = Field(default_factory=UploadAddress, alias="UploadAddress")


class ApplyResponse(_Lenient):
    result: ApplyResult = Field(default_factory=ApplyResult, alias="Result")


class StoreAck(_Lenient):
    message: str = ""


class PluginResult(_Lenient):
    image_uri: str = Field("", alias="ImageUri")
    image_md5: str = Field("", alias="ImageMd5")
    image_size: int = Field(0, alias="ImageSize")
    image_width: int = Field(0, alias="ImageWidth")
    image_height: int = Field(0, alias="ImageHeight")


class CommitResult(_Lenient):
    plugin_result: List[PluginResult] = Field(default_factory=list, alias="PluginResult")


class CommitResponse(_Lenient):
    result: CommitResult = Field(default_factory=CommitResult, alias="Result")


# --- Stage outputs ---


@dataclass
class PrepareInfo:
    service_id: str
    credentials: STSCredentials


@dataclass
class ApplyInfo:
    store_uri: str
    store_auth: str
    session_key: str


def file_extension(file_name: str) -> str:
    """Suffix from the last dot of the final path element, dot included (".bashrc", "a." -> ".")."""
    name = file_name or ""
    dot = name.rfind(".")
    return name[dot:] if dot > name.rfind("/") else ""


def crc32_hex(data: bytes) -> str:
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def build_upload_response(file_type: int, file_name: str, data: bytes, result: PluginResult) -> UploadResponse:
    response = UploadResponse(
        key=result.image_uri,
        name=file_name,
        identifier=str(uuid.uuid4()),
        md5=result.image_md5.strip() or hashlib.md5(data).hexdigest(),
        size=result.image_size if result.image_size > 0 else len(data),
    )
    if file_type == RESOURCE_IMAGE:
        response.type = "vlm_image"
        response.file_review_state = 3
        response.file_parse_state = 3
        response.option = {
            "height": max(result.image_height, 0),
            "width": max(result.image_width, 0),
        }
        return response

    response.type = "file"
    response.file_review_state = 1
    response.file_parse_state = 3
    return response


class UploadPipeline:
    """
    prepare -> apply -> store -> commit.

    Each stage consumes the previous one's output; the first failure aborts the rest.
    """

    def __init__(self, client: httpx.AsyncClient, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._client = client
        self._clock = clock

    async def _send(self, stage: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise InternalError(f"call {stage}: {e}") from e
        if response.status_code != HTTPStatus.OK:
            raise upstream_status_error(stage, response.status_code, response.text)
        return response

    @staticmethod
    def _decode(stage: str, response: httpx.Response, model: Type[_Model]) -> _Model:
        try:
            return model.model_validate_json(response.content)
        except SchemaError as e:
            raise BadUpstreamError(f"decode {stage} response: {e}") from e

    def _sign(self, creds: STSCredentials, method: str, url: str, headers: dict, payload_hash: str) -> dict:
        now = self._clock() if self._clock is not None else None
        return sign_request(creds, method, url, headers, payload_hash, IMAGEX_SERVICE, IMAGEX_REGION, now=now)

    async def prepare(self, credential: Credential, file_type: int) -> PrepareInfo:
        debug_print(f"📤 Step 1: prepare_upload (resource_type={file_type})")
        response = await self._send(
            "prepare_upload",
            "POST",
            PREPARE_UPLOAD_URL,
            params=client_identity_params(credential),
            json={"resource_type": file_type, "scene_id": "5", "tenant_id": "5"},
            headers={
                "Cookie": credential.cookie,
                "Origin": DOUBAO_ORIGIN,
                "Referer": DOUBAO_ORIGIN + "/chat/",
                "User-Agent": DEFAULT_USER_AGENT,
            },
        )
        data = self._decode("prepare_upload", response, PrepareResponse).data
        token = data.upload_auth_token
        if not data.service_id or not token.access_key or not token.secret_key:
            raise BadGatewayError("prepare_upload returned empty auth info")
        return PrepareInfo(
            service_id=data.service_id,
            credentials=STSCredentials(
                access_key=token.access_key,
                secret_key=token.secret_key,
                session_token=token.session_token,
            ),
        )

    async def apply(self, creds: STSCredentials, service_id: str, file_name: str, file_size: int) -> ApplyInfo:
        ext = file_extension(file_name)
        if not ext:
            raise ValidationError("file_name must include an extension")

        debug_print(f"📤 Step 2: ApplyImageUpload ({file_size} bytes, {ext})")
        query = urlencode(
            [
                ("Action", "ApplyImageUpload"),
                ("Version", IMAGEX_API_VERSION),
                ("ServiceId", service_id),
                ("NeedFallback", "true"),
                ("FileSize", str(file_size)),
                ("FileExtension", ext),
            ]
        )
        url = f"{IMAGEX_URL}?{query}"
        headers = self._sign(
            creds,
            "GET",
            url,
            {"Origin": DOUBAO_ORIGIN, "Referer": DOUBAO_ORIGIN, "User-Agent": DEFAULT_USER_AGENT},
            EMPTY_PAYLOAD_HASH,
        )
        response = await self._send("apply_upload", "GET", url, headers=headers)
        address = self._decode("apply_upload", response, ApplyResponse).result.upload_address
        if not address.store_infos:
            raise BadGatewayError("apply_upload returned empty StoreInfos")

        store = address.store_infos[0]
        return ApplyInfo(store_uri=store.store_uri, store_auth=store.auth, session_key=address.session_key)

    async def store(self, store_uri: str, store_auth: str, data: bytes) -> None:
        if not store_uri:
            raise BadGatewayError("store uri missing from apply_upload response")

        debug_print(f"📤 Step 3: uploading {len(data)} bytes to object storage")
        response = await self._send(
            "store upload",
            "POST",
            STORE_UPLOAD_URL + quote(store_uri, safe="/~"),
            content=data,
            headers={
                "Authorization": store_auth,
                "Origin": DOUBAO_ORIGIN,
                "Referer": DOUBAO_ORIGIN,
                "Content-Type": "application/octet-stream",
                "Content-Disposition": 'attachment; filename="undefined"',
                "Content-Crc32": crc32_hex(data),
            },
        )
        ack = self._decode("store upload", response, StoreAck)
        if ack.message.lower() != "success":
            raise BadUpstreamError(f"store upload returned: {ack.message}")

    async def commit(self, creds: STSCredentials, service_id: str, session_key: str) -> PluginResult:
        debug_print("📤 Step 4: CommitImageUpload")
        body = json.dumps({"SessionKey": session_key}, separators=(",", ":")).encode("utf-8")
        query = urlencode(
            [
                ("Action", "CommitImageUpload"),
                ("Version", IMAGEX_API_VERSION),
                ("ServiceId", service_id),
            ]
        )
        url = f"{IMAGEX_URL}?{query}"
        headers = self._sign(
            creds,
            "POST",
            url,
            {
                "Content-Type": "application/json",
                "Origin": DOUBAO_ORIGIN,
                "Referer": DOUBAO_ORIGIN + "/",
                "User-Agent": DEFAULT_USER_AGENT,
            },
            sha256_hex(body),
        )
        response = await self._send("commit_upload", "POST", url, content=body, headers=headers)
        results = self._decode("commit_upload", response, CommitResponse).result.plugin_result
        if not results:
            raise BadGatewayError("commit_upload PluginResult empty")
        return results[0]

    async def run(self, credential: Credential, file_type: int, file_name: str, data: bytes) -> UploadResponse:
        info = await self.prepare(credential, file_type)
        applied = await self.apply(info.credentials, info.service_id, file_name, len(data))
        await self.store(applied.store_uri, applied.store_auth, data)
        result = await self.commit(info.credentials, info.service_id, applied.session_key)
        debug_print(f"✅ Upload committed: {result.image_uri}")
        return build_upload_response(file_type, file_name, data, result)
