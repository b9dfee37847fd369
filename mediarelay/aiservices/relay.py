"""Single-call HTTP relay shared by the backend clients."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import BackendResponseInvalid, BackendUnavailable, ClientInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendTarget:
    """Where a single inbound request should be forwarded to."""

    base_url: str
    auth: Optional[Tuple[str, str]] = None

    @classmethod
    def from_request(cls, url: str, auth: Optional[str] = None) -> "BackendTarget":
        build_url(url, "/")  # fail early on malformed input
        return cls(base_url=url, auth=parse_auth(auth))


def parse_auth(auth: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split ``user:password`` into a pair. Empty input means no credentials."""
    if not auth:
        return None
    username, _, password = auth.partition(":")
    return username, password


def basic_auth_header(auth: Optional[Tuple[str, str]]) -> Optional[str]:
    if auth is None:
        return None
    token = base64.b64encode(f"{auth[0]}:{auth[1]}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def build_url(base_url: str, path: str, query: Optional[str] = None) -> str:
    """Return ``base_url`` with its path replaced by ``path``.

    Scheme, credentials, host and port are kept. Any path, query or fragment
    already present on ``base_url`` is dropped. ``query`` is appended as given.
    """
    try:
        parts = urlsplit(base_url.strip())
        parts.port  # raises ValueError on a non-numeric port
    except ValueError as exc:
        raise ClientInputError(f"Invalid backend URL: {base_url!r}") from exc

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ClientInputError(f"Invalid backend URL: {base_url!r}")

    return urlunsplit((parts.scheme, parts.netloc, path, query or "", ""))


def parse_model(model: type[BaseModel], data: Any, what: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise BackendResponseInvalid(f"Unexpected {what} response: {exc}") from exc


def parse_list(model: type[BaseModel], data: Any, what: str) -> List[Any]:
    if not isinstance(data, list):
        raise BackendResponseInvalid(f"Unexpected {what} response: expected a list")
    return [parse_model(model, item, what) for item in data]


class RelayClient:
    """Performs one outbound call per request against a backend target.

    No retries and no timeout. Callers that need a bound (polling loops)
    impose it themselves.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=None, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def request(
        self,
        target: BackendTarget,
        path: str,
        method: str = "GET",
        *,
        json: Any = None,
        content: Optional[bytes | str] = None,
        query: Optional[str] = None,
    ) -> httpx.Response:
        url = build_url(target.base_url, path, query)
        headers = {}
        authorization = basic_auth_header(target.auth)
        if authorization:
            headers["Authorization"] = authorization

        try:
            response = await self.http.request(method, url, json=json, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            raise BackendUnavailable(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def get_json(self, target: BackendTarget, path: str) -> Any:
        response = await self.request(target, path)
        return _decode_json(response, path)

    async def post_json(self, target: BackendTarget, path: str, payload: Any) -> Any:
        response = await self.request(target, path, "POST", json=payload)
        return _decode_json(response, path)

    async def get_bytes(self, target: BackendTarget, path: str, query: Optional[str] = None) -> bytes:
        response = await self.request(target, path, query=query)
        return response.content


def _decode_json(response: httpx.Response, path: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise BackendResponseInvalid(f"{path} did not return JSON") from exc
