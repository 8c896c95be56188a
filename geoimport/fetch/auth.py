"""Request headers for the authentication variants a scheduled import can use."""

import base64
from typing import Callable, Optional

from geoimport.models import ApiKeyAuth, AuthConfig, BasicAuth, BearerAuth, NoAuth

__all__ = ["build_auth_headers"]


def _none_headers(auth: NoAuth) -> dict[str, str]:
    return {}


def _api_key_headers(auth: ApiKeyAuth) -> dict[str, str]:
    return {auth.api_key_header or "X-API-Key": auth.api_key}


def _bearer_headers(auth: BearerAuth) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth.bearer_token}"}


def _basic_headers(auth: BasicAuth) -> dict[str, str]:
    token = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


_HANDLERS: dict[str, Callable] = {
    "none": _none_headers,
    "api-key": _api_key_headers,
    "bearer": _bearer_headers,
    "basic": _basic_headers,
}


def build_auth_headers(auth: Optional[AuthConfig]) -> dict[str, str]:
    """
    Headers for ``auth``. Custom headers are merged last and win on conflict.

    Raises:
        ValueError: For an auth type without a handler
    """
    if auth is None:
        return {}
    handler = _HANDLERS.get(auth.type)
    if handler is None:
        raise ValueError(f"Unsupported auth type: {auth.type}")
    headers = handler(auth)
    headers.update(auth.custom_headers or {})
    return headers
