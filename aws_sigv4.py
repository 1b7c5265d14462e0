"""
AWS Signature Version 4 for JSON-over-POST APIs.

Used by the PA-API 5.0 pricing backend and the Rekognition vision provider,
both of which speak `application/x-amz-json` style POST requests with an
X-Amz-Target header. Query strings are never signed (always empty here).
"""
from __future__ import annotations

import hashlib
import hmac as _hmac
from datetime import datetime, timezone
from typing import Optional


def _sign(key: bytes, msg: str) -> bytes:
    return _hmac.new(key, msg.encode(), hashlib.sha256).digest()


def signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k = _sign(f"AWS4{secret_key}".encode(), date_stamp)
    k = _sign(k, region)
    k = _sign(k, service)
    return _sign(k, "aws4_request")


def signed_headers(
    *,
    access_key: str,
    secret_key: str,
    region: str,
    service: str,
    host: str,
    path: str,
    amz_target: str,
    body: bytes,
    content_type: str,
    extra_headers: Optional[dict[str, str]] = None,
    now: Optional[datetime] = None,
) -> dict[str, str]:
    """
    Build the full header set (including Authorization) for a signed POST.
    `body` must be the exact bytes that will be sent.
    """
    now        = now or datetime.now(timezone.utc)
    amz_date   = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")

    headers = {
        "content-type": content_type,
        "host":         host,
        "x-amz-date":   amz_date,
        "x-amz-target": amz_target,
    }
    for key, value in (extra_headers or {}).items():
        headers[key.lower()] = value

    names = sorted(headers)
    canonical_headers = "".join(f"{name}:{headers[name]}\n" for name in names)
    signed_names      = ";".join(names)
    payload_hash      = hashlib.sha256(body).hexdigest()

    canonical_request = "\n".join([
        "POST", path, "", canonical_headers, signed_names, payload_hash
    ])
    credential_scope = f"{date_stamp}/{region}/{service}/aws4_request"
    string_to_sign   = "\n".join([
        "AWS4-HMAC-SHA256", amz_date, credential_scope,
        hashlib.sha256(canonical_request.encode()).hexdigest(),
    ])

    key       = signing_key(secret_key, date_stamp, region, service)
    signature = _hmac.new(key, string_to_sign.encode(), hashlib.sha256).hexdigest()

    out = {name.title(): value for name, value in headers.items() if name != "host"}
    out["Host"] = host
    out["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key}/{credential_scope}, "
        f"SignedHeaders={signed_names}, Signature={signature}"
    )
    return out
