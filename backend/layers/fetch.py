from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from errors import FetchFailure
from storage.config import fetch_timeout_s

_USER_AGENT = "checkin-map-viewer/0.1.0"


class DatasetFetcher(Protocol):
    """
    Loads the raw feature collection behind a layer source.

    Raises FetchFailure on any network/status/parse error; timeouts are the fetcher's own policy.
    """

    async def fetch(self, source: str) -> dict[str, Any]: ...


class SourceFetcher:
    """
    Fetches http(s) sources with httpx and reads everything else from the local filesystem.
    """

    def __init__(
        self, *, timeout_s: float | None = None, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.timeout_s = fetch_timeout_s() if timeout_s is None else float(timeout_s)
        self._transport = transport

    async def fetch(self, source: str) -> dict[str, Any]:
        scheme = urlparse(source).scheme
        if scheme in {"http", "https"}:
            return await self._fetch_http(source)
        if scheme == "file":
            return _read_file(Path(urlparse(source).path))
        return _read_file(Path(source))

    async def _fetch_http(self, url: str) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"User-Agent": _USER_AGENT},
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            raise FetchFailure(f"Failed to load {url}: {e}") from e
        if resp.status_code != 200:
            raise FetchFailure(f"Failed to load {url}: {resp.status_code}")
        return _decode(resp.content, url)


def _read_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise FetchFailure(f"Failed to load {path}: {e}") from e
    return _decode(raw, str(path))


def _decode(raw: bytes, source: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise FetchFailure(f"Failed to load {source}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise FetchFailure(f"Failed to load {source}: not a feature collection")
    return data
