"""Album provider client (iCloud shared streams).

Endpoint flow for a shared album token:
1. POST {base}/webstream {"streamCtag": null}
   - 330 + {"X-Apple-MMe-Host": host} -> retry once against that host
   - 200 -> album metadata and photos with derivative checksums
2. POST {base}/webasseturls {"photoGuids": [...]} in batches of 25
   - {"items": {checksum: {"url_location", "url_path"}}}
3. Join URLs onto derivatives by checksum

base = https://p{partition}-sharedstreams.icloud.com/{token}/sharedstreams/
where partition is base62-decoded from the token's leading characters.

Output shape (AlbumResult):
{
  "metadata": {"streamName", "userFirstName", "userLastName",
               "streamCtag", "itemsReturned", "locations"},
  "photos": [{"photoGuid", "caption", "dateCreated", "batchDateCreated",
              "mediaAssetType", "width", "height",
              "derivatives": {key: {"checksum", "fileSize", "width", "height", "url"}}}]
}

No retries inside the client; the album cache decides when to call again.
"""

from typing import Any, Protocol

import httpx

from photofeed.logging import get_logger
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

REDIRECT_STATUS = 330
REDIRECT_HOST_FIELD = "X-Apple-MMe-Host"

ASSET_URL_BATCH_SIZE = 25

USER_AGENT = "PhotofeedAlbumClient/1.0"

METADATA_FIELDS = (
    "streamName",
    "userFirstName",
    "userLastName",
    "streamCtag",
    "itemsReturned",
    "locations",
)


class AlbumFetchError(Exception):
    """Raised when the album provider cannot deliver an album.

    Attributes:
        message: Human-readable error message
        status_code: Upstream HTTP status, if any
        timeout: True if the failure was a timeout
    """

    def __init__(self, message: str, status_code: int | None = None, timeout: bool = False):
        self.message = message
        self.status_code = status_code
        self.timeout = timeout
        super().__init__(message)


class AlbumFetcher(Protocol):
    """Collaborator that returns an AlbumResult for a canonical token."""

    async def fetch_album(self, token: str) -> dict[str, Any]: ...


def base62_to_int(value: str) -> int:
    result = 0
    for char in value:
        index = BASE62_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid base62 character: {char!r}")
        result = result * 62 + index
    return result


def partition_for_token(token: str) -> int:
    """Server partition encoded in a shared album token."""
    if len(token) < 3:
        raise ValueError("Token too short")
    if token[0] == "A":
        return base62_to_int(token[1])
    return base62_to_int(token[1:3])


def base_url_for_token(token: str, host: str | None = None) -> str:
    if host is None:
        partition = partition_for_token(token)
        host = f"p{partition:02d}-sharedstreams.icloud.com"
    return f"https://{host}/{token}/sharedstreams/"


def build_album_result(stream: dict[str, Any], asset_urls: dict[str, str]) -> dict[str, Any]:
    """Combine a webstream payload and a checksum -> URL map into an AlbumResult."""
    metadata = {field: stream.get(field) for field in METADATA_FIELDS}
    if metadata["locations"] is None:
        metadata["locations"] = {}

    photos = []
    for photo in stream.get("photos") or []:
        if not isinstance(photo, dict):
            continue
        derivatives = {}
        for key, derivative in (photo.get("derivatives") or {}).items():
            if not isinstance(derivative, dict):
                continue
            entry = dict(derivative)
            url = asset_urls.get(derivative.get("checksum", ""))
            if url:
                entry["url"] = url
            derivatives[key] = entry
        photos.append({**photo, "derivatives": derivatives})

    return {"metadata": metadata, "photos": photos}


class ICloudAlbumFetcher:
    """Fetches shared albums from iCloud over a shared httpx.AsyncClient.

    Args:
        client: Shared HTTP client.
        timeout_s: Per-request timeout in seconds.
    """

    def __init__(self, client: httpx.AsyncClient, timeout_s: float = 30.0):
        self._client = client
        self._timeout_s = timeout_s

    async def fetch_album(self, token: str) -> dict[str, Any]:
        """Fetch an album and resolve derivative URLs.

        Raises:
            AlbumFetchError: On malformed token, HTTP error, timeout, or bad payload.
        """
        try:
            base_url = base_url_for_token(token)
        except ValueError as e:
            raise AlbumFetchError(f"Malformed album token: {e}") from e

        stream, base_url = await self._fetch_stream(token, base_url)

        guids = [
            photo["photoGuid"]
            for photo in stream.get("photos") or []
            if isinstance(photo, dict) and photo.get("photoGuid")
        ]
        asset_urls: dict[str, str] = {}
        for start in range(0, len(guids), ASSET_URL_BATCH_SIZE):
            batch = guids[start : start + ASSET_URL_BATCH_SIZE]
            asset_urls.update(await self._fetch_asset_urls(base_url, batch))

        result = build_album_result(stream, asset_urls)
        logger.info(
            "album_fetched",
            token_fp=fingerprint(token),
            photos=len(result["photos"]),
            urls=len(asset_urls),
        )
        return result

    async def _fetch_stream(self, token: str, base_url: str) -> tuple[dict[str, Any], str]:
        response = await self._post(base_url + "webstream", {"streamCtag": None})

        if response.status_code == REDIRECT_STATUS:
            host = self._json(response).get(REDIRECT_HOST_FIELD)
            if not host:
                raise AlbumFetchError("Provider redirect without host", status_code=330)
            base_url = base_url_for_token(token, host=host)
            response = await self._post(base_url + "webstream", {"streamCtag": None})

        self._raise_for_status(response)
        return self._json(response), base_url

    async def _fetch_asset_urls(self, base_url: str, guids: list[str]) -> dict[str, str]:
        response = await self._post(base_url + "webasseturls", {"photoGuids": guids})
        self._raise_for_status(response)

        urls = {}
        for checksum, item in (self._json(response).get("items") or {}).items():
            if not isinstance(item, dict):
                continue
            location = item.get("url_location")
            path = item.get("url_path")
            if location and path:
                urls[checksum] = f"https://{location}{path}"
        return urls

    async def _post(self, url: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(
                url,
                json=body,
                headers={"User-Agent": USER_AGENT, "Content-Type": "application/json"},
                timeout=self._timeout_s,
            )
        except httpx.TimeoutException as e:
            raise AlbumFetchError("Album provider timed out", timeout=True) from e
        except httpx.HTTPError as e:
            raise AlbumFetchError(f"Album provider unreachable: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code >= 400 or response.status_code == REDIRECT_STATUS:
            raise AlbumFetchError(
                f"Album provider returned status {response.status_code}",
                status_code=response.status_code,
            )

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise AlbumFetchError("Album provider returned invalid JSON") from e
        if not isinstance(data, dict):
            raise AlbumFetchError("Album provider returned unexpected payload")
        return data
