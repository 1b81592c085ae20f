"""Vault administrative API transport.

A thin request/response layer over ``hvac``'s JSON adapter.  Callers speak
in API paths without the ``/v1`` prefix (``sys/init``, ``auth/github/config``)
and get back the decoded JSON body.  Every failure comes out as a
TransportError or DecodeError; nothing here retries.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import hvac
import hvac.exceptions
import requests

from .errors import DecodeError, TransportError

logger = logging.getLogger(__name__)

API_PREFIX = "/v1"


def unwrap(response: Any) -> Any:
    """Extract the 'data' payload from a Vault response envelope.

    Vault wraps most read responses::

        {"request_id": "...", "lease_id": "", "data": { ... }, ...}

    but several ``sys/`` endpoints return their fields at the top level as
    well.  This helper normalises both shapes so callers always get the
    useful payload.
    """
    if isinstance(response, dict) and "data" in response and isinstance(response["data"], dict):
        return response["data"]
    return response


def _decode(method: str, path: str, response: Any) -> Optional[Dict[str, Any]]:
    # hvac's JSONAdapter hands back the parsed body for 200s and the raw
    # requests.Response for everything else (204 No Content in practice).
    if response is None or isinstance(response, dict):
        return response
    if isinstance(response, requests.Response):
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise DecodeError(f"{method} {path}: response is not JSON: {e}")
        if body is not None and not isinstance(body, dict):
            raise DecodeError(f"{method} {path}: expected a JSON object, got {type(body).__name__}")
        return body
    raise DecodeError(f"{method} {path}: unexpected response type {type(response).__name__}")


class VaultAPI:
    """Request/response access to one Vault server."""

    def __init__(self, addr: str, client: Optional[hvac.Client] = None):
        self.addr = addr
        self._client = client if client is not None else hvac.Client(url=addr)

    def set_token(self, token: str) -> None:
        """Authenticate subsequent requests with ``token``."""
        self._client.token = token

    def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        method = method.upper()
        path = path.strip("/")
        kwargs: Dict[str, Any] = {}
        if body is not None and method != "GET":
            kwargs["json"] = body

        logger.debug("%s %s", method, path)
        try:
            response = self._client.adapter.request(method, f"{API_PREFIX}/{path}", **kwargs)
        except hvac.exceptions.VaultError as e:
            raise TransportError(f"{method} {path}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path}: {e}") from e
        return _decode(method, path, response)

    def read(self, path: str) -> Optional[Dict[str, Any]]:
        """GET ``path``.  A 404 means the resource is absent and returns None."""
        try:
            return self.request("GET", path)
        except TransportError as e:
            if isinstance(e.__cause__, hvac.exceptions.InvalidPath):
                return None
            raise

    def write(self, path: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.request("POST", path, body)
