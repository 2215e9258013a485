"""Blob store client for a hosted REST blob API.

Writes and listings go through the authenticated API endpoint. Reads use the
public object URL (``{public_url}/{pathname}``) directly, which avoids paying
for a listing call just to discover an object's location.
"""

from http import HTTPStatus
from urllib.parse import quote

import httpx
import structlog

from shared.blob.types import DEFAULT_LIST_LIMIT, BlobListPage, BlobNotFoundError, BlobObject, BlobStoreError

logger = structlog.get_logger()

API_VERSION = "7"
DEFAULT_TIMEOUT_SECONDS = 10.0


class HttpBlobStore:
    def __init__(
        self,
        api_url: str,
        public_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._public_url = public_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _auth_headers(self) -> dict[str, str]:
        return {"authorization": f"Bearer {self._token}", "x-api-version": API_VERSION}

    def public_url_for(self, pathname: str) -> str:
        return f"{self._public_url}/{quote(pathname)}"

    async def put(self, pathname: str, body: bytes, content_type: str = "application/json") -> BlobObject:
        headers = {
            **self._auth_headers(),
            "x-content-type": content_type,
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1",
            "x-cache-control-max-age": "0",
        }
        async with self._client() as client:
            try:
                response = await client.put(f"{self._api_url}/{quote(pathname)}", content=body, headers=headers)
            except httpx.HTTPError as e:
                raise BlobStoreError(f"Failed to write {pathname}: {e}") from e

        if response.status_code != HTTPStatus.OK:
            raise BlobStoreError(f"Failed to write {pathname}: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            data = {}
        return BlobObject(pathname=pathname, url=data.get("url") or self.public_url_for(pathname), size=len(body))

    async def get(self, pathname: str) -> bytes:
        async with self._client() as client:
            try:
                response = await client.get(self.public_url_for(pathname), headers={"cache-control": "no-cache"})
            except httpx.HTTPError as e:
                raise BlobStoreError(f"Failed to read {pathname}: {e}") from e

        if response.status_code == HTTPStatus.NOT_FOUND:
            raise BlobNotFoundError(pathname)
        if response.status_code != HTTPStatus.OK:
            raise BlobStoreError(f"Failed to read {pathname}: HTTP {response.status_code}")
        return response.content

    async def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> BlobListPage:
        params: dict[str, str | int] = {"prefix": prefix, "limit": limit}
        if cursor:
            params["cursor"] = cursor

        async with self._client() as client:
            try:
                response = await client.get(self._api_url, params=params, headers=self._auth_headers())
            except httpx.HTTPError as e:
                raise BlobStoreError(f"Failed to list {prefix!r}: {e}") from e

        if response.status_code != HTTPStatus.OK:
            raise BlobStoreError(f"Failed to list {prefix!r}: HTTP {response.status_code}")
        try:
            data = response.json()
            blobs = [
                BlobObject(pathname=item["pathname"], url=item["url"], size=item.get("size"))
                for item in data.get("blobs", [])
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BlobStoreError(f"Malformed listing response for {prefix!r}") from e

        next_cursor = data.get("cursor") if data.get("hasMore", bool(data.get("cursor"))) else None
        logger.debug("blob listing page", prefix=prefix, count=len(blobs), has_more=next_cursor is not None)
        return BlobListPage(blobs=blobs, cursor=next_cursor)
