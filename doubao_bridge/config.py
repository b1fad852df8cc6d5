import json
import os
from typing import Optional, Tuple

from .constants import debug_print

CONFIG_FILE = "config.json"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000


def _positive_int(value: object, fallback: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def parse_http_addr(value: str) -> Tuple[str, Optional[int]]:
    """Split `host:port` / `:port` / `port` into its parts; an unparsable port becomes None."""
    value = (value or "").strip()
    host, sep, port = value.rpartition(":")
    if not sep:
        host, port = "", value
    try:
        port_int = int(port)
    except ValueError:
        return host, None
    return host, port_int


def _apply_env_overrides(config: dict) -> None:
    addr = os.environ.get("HTTP_ADDR", "").strip()
    if addr:
        host, port = parse_http_addr(addr)
        if host:
            config["host"] = host
        if port is not None:
            config["port"] = port

    session_config = os.environ.get("SESSION_CONFIG", "").strip()
    if session_config:
        config["session_config"] = session_config

    auth_token = os.environ.get("AUTH_TOKEN")
    if auth_token is not None and auth_token.strip():
        config["auth_token"] = auth_token.strip()

    if os.environ.get("HTTP_CLIENT_TIMEOUT_S"):
        config["http_client_timeout"] = os.environ["HTTP_CLIENT_TIMEOUT_S"]
    if os.environ.get("SHUTDOWN_TIMEOUT_SEC"):
        config["shutdown_timeout"] = os.environ["SHUTDOWN_TIMEOUT_SEC"]

    debug_env = os.environ.get("DEBUG", "").strip().lower()
    if debug_env:
        config["debug"] = debug_env in ("1", "true", "yes", "on")


def get_config(path: Optional[str] = None) -> dict:
    path = path or CONFIG_FILE
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            debug_print(f"⚠️  Config file {path} is not an object, using defaults")
            config = {}
    except FileNotFoundError:
        config = {}
    except json.JSONDecodeError as e:
        debug_print(f"⚠️  Config file error: {e}, using defaults")
        config = {}

    config.setdefault("host", DEFAULT_HOST)
    config.setdefault("port", DEFAULT_PORT)
    config.setdefault("session_config", "session.json")
    config.setdefault("auth_token", "")
    config.setdefault("http_client_timeout", 300)
    config.setdefault("shutdown_timeout", 10)
    config.setdefault("debug", True)

    _apply_env_overrides(config)

    config["port"] = _positive_int(config.get("port"), DEFAULT_PORT)
    config["http_client_timeout"] = _positive_int(config.get("http_client_timeout"), 300)
    config["shutdown_timeout"] = _positive_int(config.get("shutdown_timeout"), 10)
    config["auth_token"] = str(config.get("auth_token") or "").strip()
    config["debug"] = bool(config.get("debug"))
    return config
