import asyncio
import json
import logging
from pathlib import Path
from typing import Iterable, Protocol

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class ActivitySink(Protocol):
    async def write(self, payload: dict) -> None: ...


class FileActivitySink:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)

    async def write(self, payload: dict) -> None:
        line = json.dumps(payload, ensure_ascii=True, default=str)
        async with self._lock:
            await asyncio.to_thread(self._append_line, line)

    def _append_line(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class CompositeActivitySink:
    """Fans one payload out to every configured sink."""

    def __init__(self, sinks: Iterable[ActivitySink]) -> None:
        self._sinks = tuple(sinks)

    async def write(self, payload: dict) -> None:
        if not self._sinks:
            return
        results = await asyncio.gather(
            *(sink.write(payload) for sink in self._sinks), return_exceptions=True
        )
        for sink, result in zip(self._sinks, results):
            if isinstance(result, Exception):
                logger.error(
                    "Activity %s for %s not written to %s: %s",
                    payload.get("action"),
                    payload.get("resource_type"),
                    type(sink).__name__,
                    result,
                )

    async def aclose(self) -> None:
        for sink in self._sinks:
            close = getattr(sink, "aclose", None)
            if close is not None:
                await close()


class ElasticsearchActivitySink:
    """Indexes activity documents into the permission activity index."""

    def __init__(
        self,
        base_url: str,
        index: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._index = index
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(base_url=self._base_url, timeout=10, transport=self._transport)
        return self._client

    async def write(self, payload: dict) -> None:
        client = await self._get_client()
        try:
            response = await client.post(f"/{self._index}/_doc", json=payload)
        except httpx.HTTPError as exc:
            logger.error("Activity %s not indexed in %s: %s", payload.get("action"), self._index, exc)
            return
        if response.is_error:
            logger.error(
                "Activity %s not indexed in %s: status=%s body=%s",
                payload.get("action"),
                self._index,
                response.status_code,
                response.text,
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def get_default_sink() -> CompositeActivitySink:
    sinks: list[ActivitySink] = []
    if settings.log_to_file:
        sinks.append(FileActivitySink(settings.log_file_path))
    if settings.log_to_elasticsearch:
        sinks.append(ElasticsearchActivitySink(settings.elasticsearch_url, settings.elasticsearch_index))
    return CompositeActivitySink(sinks)
