"""HTTP transport for GraphQL documents.

The transport is the only place that knows about httpx. Whatever
happens on the wire is decoded here into one of the raw shapes the
normalizer understands:

- ``{"data": ...}`` / ``{"data": ..., "errors": [...]}`` / ``{"errors": [...]}``
  straight from the server,
- ``{"networkError": {"message": ..., "statusCode": ..., "result": body}}``
  for HTTP and connection failures.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import IO, Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from .auth import Auth, NoAuth
from .errors import ErrorKind
from .result import NETWORK_ERROR_KEY


@runtime_checkable
class Transport(Protocol):
    """Sends one document and returns the raw result."""

    async def execute(
        self,
        document: str,
        variables: dict[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> Any:
        ...


@dataclass
class Upload:
    """A file sent with the GraphQL multipart request convention."""
    content: bytes | IO[bytes]
    filename: str = "upload"
    content_type: str = "application/octet-stream"


def serialize_variables(value: Any) -> Any:
    """Make variables JSON-ready.

    Pydantic models are dumped by alias without None fields; None values
    given directly are kept, since null is a meaningful argument.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(value, Mapping):
        return {k: serialize_variables(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_variables(v) for v in value]
    return value


def extract_files(variables: dict[str, Any]) -> tuple[dict[str, Any], dict[str, list[str]], dict[str, Upload]]:
    """Replace Upload values with None and report where they were.

    Returns:
        (variables without files, multipart ``map``, files by map key)
    """
    file_map: dict[str, list[str]] = {}
    files: dict[str, Upload] = {}

    def walk(value: Any, path: str) -> Any:
        if isinstance(value, Upload):
            key = str(len(files))
            files[key] = value
            file_map[key] = [path]
            return None
        if isinstance(value, Mapping):
            return {k: walk(v, f"{path}.{k}") for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [walk(v, f"{path}.{i}") for i, v in enumerate(value)]
        return value

    clean = {k: walk(v, f"variables.{k}") for k, v in variables.items()}
    return clean, file_map, files


def decode_response(response: httpx.Response) -> dict[str, Any]:
    """Decode an HTTP response into a raw result."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if response.is_success and isinstance(body, Mapping) and ("data" in body or "errors" in body):
        return dict(body)

    if response.is_success:
        message = "Response is not a GraphQL result"
    else:
        message = f"HTTP {response.status_code}: {response.reason_phrase}"
    return {
        NETWORK_ERROR_KEY: {
            "message": message,
            "kind": ErrorKind.TRANSPORT.value,
            "statusCode": response.status_code,
            "result": body,
        }
    }


def decode_exception(exc: Exception) -> dict[str, Any]:
    """Decode a failed httpx call into a raw result."""
    return {
        NETWORK_ERROR_KEY: {
            "message": str(exc) or type(exc).__name__,
            "kind": ErrorKind.TRANSPORT.value,
        }
    }


class HttpTransport:
    """Posts documents to a GraphQL endpoint with httpx.

    Examples:
        transport = HttpTransport("https://api.example.com/graphql", auth=BearerAuth(token))

        # Bring your own client (proxies, retries, mock transports in tests)
        transport = HttpTransport(url, client=httpx.AsyncClient(transport=my_transport))
    """

    def __init__(
        self,
        url: str,
        auth: Auth | None = None,
        *,
        timeout: float | None = 30.0,
        extra_headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.auth = auth or NoAuth()
        self.timeout = timeout
        self.extra_headers = dict(extra_headers or {})
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if this transport created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _headers(self, options: Mapping[str, Any]) -> dict[str, str]:
        headers = dict(self.extra_headers)
        headers.update(self.auth.get_headers())
        headers.update(options.get("headers") or {})
        return headers

    async def execute(
        self,
        document: str,
        variables: dict[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a document and decode whatever comes back. Never raises for HTTP failures."""
        options = options or {}
        client = await self._get_client()
        headers = self._headers(options)

        clean, file_map, files = extract_files(serialize_variables(variables or {}))
        payload: dict[str, Any] = {"query": document}
        if clean:
            payload["variables"] = clean

        try:
            if files:
                response = await client.post(
                    self.url,
                    data={"operations": json.dumps(payload), "map": json.dumps(file_map)},
                    files={
                        key: (upload.filename, upload.content, upload.content_type)
                        for key, upload in files.items()
                    },
                    headers=headers,
                )
            else:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            return decode_exception(e)
        return decode_response(response)
