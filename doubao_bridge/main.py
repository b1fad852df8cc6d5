import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from .api_server import BridgeCore, build_router, register_exception_handlers
from .config import get_config
from .constants import debug_print, set_debug
from .errors import SessionConfigError
from .service import DoubaoService
from .session_pool import SessionPool


def get_status_emoji(status_code: int) -> str:
    if 200 <= status_code < 300:
        return "✅"
    if status_code == 401:
        return "🔒"
    if status_code == 429:
        return "⏱️"
    if 400 <= status_code < 500:
        return "⚠️"
    return "❌"


def create_app(
    config: Optional[dict] = None,
    service: Optional[DoubaoService] = None,
    pool: Optional[SessionPool] = None,
) -> FastAPI:
    """
    Build the bridge app.

    When `service` is given it is used as-is and never closed by the app; otherwise the
    service is built on startup (from `pool`, or the session file named in `config`) and
    closed on shutdown.
    """
    config = config if config is not None else get_config()
    set_debug(config.get("debug", True))
    core = BridgeCore(auth_token=str(config.get("auth_token") or ""), service=service)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        owned: Optional[DoubaoService] = None
        if core.service is None:
            owned = DoubaoService(
                pool if pool is not None else SessionPool.from_file(config["session_config"]),
                timeout_seconds=config["http_client_timeout"],
            )
            core.service = owned
        counts = core.service.pool.counts()
        debug_print(f"🚀 Doubao bridge ready | auth={counts['auth']} guest={counts['guest']}")
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()
                core.service = None
            debug_print("👋 Doubao bridge stopped")

    app = FastAPI(title="Doubao Bridge", lifespan=lifespan)
    app.state.core = core
    register_exception_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        client_ip = request.client.host if request.client else "-"
        debug_print(
            f"{get_status_emoji(response.status_code)} {request.method} {request.url.path} "
            f"{response.status_code} {elapsed_ms:.1f}ms {client_ip}"
        )
        return response

    app.include_router(build_router(core))
    return app


def main() -> None:
    config = get_config()
    set_debug(config["debug"])
    try:
        # Fail before binding the port when the session file is unusable.
        pool = SessionPool.from_file(config["session_config"])
    except SessionConfigError as e:
        print(f"❌ Failed to load sessions from {config['session_config']}: {e}", file=sys.stderr)
        sys.exit(1)

    app = create_app(config, pool=pool)

    host, port = config["host"], config["port"]
    print("=" * 60)
    print("🚀 Doubao Bridge Server Starting...")
    print("=" * 60)
    print(f"📍 Listening on http://{host}:{port}")
    print(f"🔐 Auth gate: {'enabled' if config['auth_token'] else 'disabled'}")
    print(f"📚 Sessions: {config['session_config']}")
    print("=" * 60)
    uvicorn.run(app, host=host, port=port, timeout_graceful_shutdown=config["shutdown_timeout"])


if __name__ == "__main__":
    main()
