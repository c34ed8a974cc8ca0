"""
Request signing for provider API calls.

OAuth2 credentials sign with a bearer header; legacy OAuth 1.0a credentials
sign with HMAC-SHA1 over the canonical base string. Signing never refreshes:
an expired credential raises CredentialExpired and the caller decides.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from typing import Mapping
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from fitlink.errors import CredentialExpired
from fitlink.models.provider_credential import ProviderCredential
from fitlink.services.crypto import decrypt_value

OAUTH1 = "oauth1"


def percent_encode(value: str) -> str:
    """RFC 3986 encoding: only unreserved characters stay literal."""
    return quote(str(value), safe="~")


def _base_url(url: str) -> tuple[str, list[tuple[str, str]]]:
    parts = urlsplit(url)
    base = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))
    return base, parse_qsl(parts.query, keep_blank_values=True)


def build_signature(
    method: str,
    url: str,
    params: Mapping[str, str],
    consumer_secret: str,
    token_secret: str = "",
) -> str:
    """HMAC-SHA1 over METHOD&enc(url)&enc(sorted params), base64 encoded."""
    param_string = "&".join(
        f"{percent_encode(k)}={percent_encode(v)}"
        for k, v in sorted((str(k), str(v)) for k, v in params.items())
    )
    base_string = "&".join([method.upper(), percent_encode(url), percent_encode(param_string)])
    signing_key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(signing_key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def build_authorization_header(oauth_params: Mapping[str, str]) -> str:
    return "OAuth " + ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )


def oauth1_authorization(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: str | None = None,
    token_secret: str = "",
    params: Mapping[str, str] | None = None,
    extra_oauth: Mapping[str, str] | None = None,
) -> str:
    """
    Build a complete OAuth 1.0a Authorization header.

    Query-string parameters of `url` and `params` take part in the signature but
    not in the header. Nonce and timestamp are regenerated on every call.
    """
    base, query = _base_url(url)
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(int(time.time())),
        "oauth_version": "1.0",
    }
    if token:
        oauth_params["oauth_token"] = token
    if extra_oauth:
        oauth_params.update(extra_oauth)
    signed = dict(query)
    if params:
        signed.update({k: str(v) for k, v in params.items()})
    signed.update(oauth_params)
    oauth_params["oauth_signature"] = build_signature(method, base, signed, consumer_secret, token_secret)
    return build_authorization_header(oauth_params)


def sign_request(
    credential: ProviderCredential,
    method: str,
    url: str,
    params: Mapping[str, str] | None = None,
    consumer_secret: str = "",
) -> str:
    """Authorization header value for one call made with `credential`."""
    if credential.is_expired():
        raise CredentialExpired(f"{credential.provider} credential expired; re-authorization required")
    if credential.auth_scheme == OAUTH1:
        return oauth1_authorization(
            method,
            url,
            consumer_key=credential.consumer_key or "",
            consumer_secret=consumer_secret,
            token=credential.access_token,
            token_secret=decrypt_value(credential.encrypted_secret),
            params=params,
        )
    return f"Bearer {credential.access_token}"
