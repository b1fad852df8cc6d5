import sys
import builtins as _builtins

# ============================================================
# LOGGING HELPER
# ============================================================
DEBUG = True


def _safe_print(*args, **kwargs) -> None:
    """
    Print without crashing on console encoding issues.
    """
    try:
        _builtins.print(*args, **kwargs)
    except UnicodeEncodeError:
        file = kwargs.get("file") or sys.stdout
        sep = kwargs.get("sep", " ")
        end = kwargs.get("end", "\n")
        flush = bool(kwargs.get("flush", False))

        try:
            text = sep.join(str(a) for a in args) + end
            encoding = getattr(file, "encoding", None) or getattr(sys.stdout, "encoding", None) or "utf-8"
            safe_text = text.encode(encoding, errors="backslashreplace").decode(encoding, errors="ignore")
            file.write(safe_text)
            if flush:
                try:
                    file.flush()
                except Exception:
                    pass
        except Exception:
            return


def debug_print(*args, **kwargs):
    if DEBUG:
        _safe_print(*args, **kwargs)


def set_debug(enabled: bool) -> None:
    global DEBUG
    DEBUG = bool(enabled)


# ============================================================
# UPSTREAM CONSTANTS
# ============================================================
DOUBAO_ORIGIN = "https://www.doubao.com"
CHAT_COMPLETION_URL = DOUBAO_ORIGIN + "/samantha/chat/completion"
THREAD_DELETE_URL = DOUBAO_ORIGIN + "/samantha/thread/delete"
PREPARE_UPLOAD_URL = DOUBAO_ORIGIN + "/alice/resource/prepare_upload"

IMAGEX_URL = "https://imagex.bytedanceapi.com/"
IMAGEX_API_VERSION = "2018-08-01"
IMAGEX_SERVICE = "imagex"
IMAGEX_REGION = "cn-north-1"

STORE_HOST = "tos-d-x-hl.snssdk.com"
STORE_UPLOAD_URL = f"https://{STORE_HOST}/upload/v1/"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Safari/537.36 Edg/137.0.0.0"
)

APP_ID = "497858"
CHAT_PC_VERSION = "2.23.2"
PC_VERSION = "2.20.0"
VERSION_CODE = "20800"

# Marker the upstream embeds in the stream once a guest identity is burnt.
RATE_LIMIT_MARKER = "tourist conversation reach limited"
GATEWAY_ERROR_EVENT = "gateway-error"

# Envelope event types
EVENT_CONTENT = 2001
EVENT_METADATA = 2002
EVENT_COMPLETED = 2003

# Message content types
CONTENT_TEXT = 10000
CONTENT_THINKING = 2001
CONTENT_STRUCTURED_TEXT = 2008
CONTENT_IMAGE = 2074
TEXT_CONTENT_TYPES = frozenset({CONTENT_TEXT, CONTENT_THINKING, CONTENT_STRUCTURED_TEXT})

IMAGE_STATUS_READY = 2

# Upload resource kinds
RESOURCE_IMAGE = 2


def client_identity_params(credential, pc_version: str = PC_VERSION) -> dict:
    """Query parameters the web client attaches to every samantha/alice call."""
    return {
        "aid": APP_ID,
        "device_id": credential.device_id,
        "device_platform": "web",
        "language": "zh",
        "pc_version": pc_version,
        "pkg_type": "release_version",
        "real_aid": APP_ID,
        "region": "CN",
        "samantha_web": "1",
        "sys_region": "CN",
        "tea_uuid": credential.tea_uuid,
        "use-olympus-account": "1",
        "version_code": VERSION_CODE,
        "web_id": credential.web_id,
    }
