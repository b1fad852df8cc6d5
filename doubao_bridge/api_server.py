import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from .constants import debug_print
from .errors import BridgeError, InternalError, UnauthorizedError, ValidationError
from .models import CompletionRequest, CompletionResponse, DeleteResponse, UploadResponse
from .service import DoubaoService


@dataclass
class BridgeCore:
    """Per-app state shared by the route handlers."""

    auth_token: str = ""
    service: Optional[DoubaoService] = None

    def get_service(self) -> DoubaoService:
        if self.service is None:
            raise InternalError("service not initialised")
        return self.service


def extract_api_token(request: Request) -> str:
    header = request.headers.get("authorization", "").strip()
    if header:
        scheme, _, rest = header.partition(" ")
        if scheme.lower() == "bearer":
            return rest.strip()
        return header
    return request.headers.get("x-api-key", "").strip()


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):  # noqa: ARG001
        debug_print(f"❌ {request.method} {request.url.path} -> {exc.status_code} {exc.kind.value}: {exc.message}")
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "")
        else:
            message = "invalid request"
        return error_response(400, message or "invalid request")


def build_router(core: BridgeCore) -> APIRouter:
    router = APIRouter()

    async def require_api_token(request: Request) -> None:
        if not core.auth_token:
            return
        supplied = extract_api_token(request)
        if not supplied or not secrets.compare_digest(supplied.encode("utf-8"), core.auth_token.encode("utf-8")):
            raise UnauthorizedError("unauthorized")

    @router.get("/healthz")
    async def healthz():
        return {"ok": True}

    @router.post("/api/chat/completions", response_model=CompletionResponse, dependencies=[Depends(require_api_token)])
    async def chat_completions(body: CompletionRequest):
        return await core.get_service().chat_completion(body)

    @router.post("/api/chat/delete", response_model=DeleteResponse, dependencies=[Depends(require_api_token)])
    async def delete_conversation(conversation_id: Optional[str] = None):
        conversation_id = (conversation_id or "").strip()
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        return await core.get_service().delete_conversation(conversation_id)

    @router.post("/api/file/upload", response_model=UploadResponse, dependencies=[Depends(require_api_token)])
    async def upload_file(request: Request, file_type: Optional[str] = None, file_name: Optional[str] = None):
        if not file_type or not file_name:
            raise ValidationError("file_type and file_name are required")
        try:
            kind = int(file_type)
        except ValueError:
            raise ValidationError(f"file_type must be an integer, got {file_type!r}")
        data = await request.body()
        return await core.get_service().upload_file(kind, file_name, data)

    return router

