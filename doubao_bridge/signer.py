"""
Canonical-request signer for the object-storage control plane.

The control plane speaks the AWS Signature Version 4 dialect: a canonical request is
hashed into a date/region/service scoped string-to-sign, and the signature is an
HMAC-SHA256 chain keyed by the short-lived secret key. The same routine serves every
stage; only the payload hash changes.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
EMPTY_PAYLOAD_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

# Headers that proxies and clients rewrite freely; never part of the signature.
UNSIGNED_HEADERS = frozenset({"authorization", "user-agent", "expect", "x-amzn-trace-id", "content-length"})


@dataclass(frozen=True)
class STSCredentials:
    access_key: str
    secret_key: str
    session_token: str = ""


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _uri_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def canonical_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    encoded = sorted((_uri_encode(k), _uri_encode(v)) for k, v in pairs)
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Return (canonical header block, signed header list)."""
    normalized: Dict[str, str] = {}
    for name, value in headers.items():
        key = name.strip().lower()
        if key in UNSIGNED_HEADERS:
            continue
        normalized[key] = " ".join(str(value).strip().split())
    names = sorted(normalized)
    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


def canonical_request(method: str, url: str, headers: Mapping[str, str], payload_hash: str) -> Tuple[str, str]:
    parts = urlsplit(url)
    path = quote(parts.path or "/", safe="/-_.~")
    header_block, signed_headers = canonical_headers(headers)
    request = "\n".join(
        [
            method.upper(),
            path,
            canonical_query(parts.query),
            header_block,
            signed_headers,
            payload_hash,
        ]
    )
    return request, signed_headers


def derive_signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k_date = _hmac(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "aws4_request")


def sign_request(
    credentials: STSCredentials,
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]],
    payload_hash: str,
    service: str,
    region: str,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """
    Sign a request and return its headers with X-Amz-Date, X-Amz-Security-Token and
    Authorization added. An empty payload hash means "no body".
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")
    payload_hash = payload_hash or EMPTY_PAYLOAD_HASH

    signed: Dict[str, str] = dict(headers or {})
    signed["Host"] = urlsplit(url).netloc
    signed["X-Amz-Date"] = amz_date
    if credentials.session_token:
        signed["X-Amz-Security-Token"] = credentials.session_token

    request, signed_headers = canonical_request(method, url, signed, payload_hash)
    scope = f"{date_stamp}/{region}/{service}/aws4_request"
    string_to_sign = "\n".join([ALGORITHM, amz_date, scope, sha256_hex(request.encode("utf-8"))])

    key = derive_signing_key(credentials.secret_key, date_stamp, region, service)
    signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    signed["Authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return signed
