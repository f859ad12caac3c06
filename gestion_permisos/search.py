from __future__ import annotations

import logging

import httpx

from .config import settings

logger = logging.getLogger(__name__)

ACTIVITY_MAPPING = {
    "mappings": {
        "properties": {
            "timestamp": {"type": "date"},
            "actor": {"type": "keyword"},
            "action": {"type": "keyword"},
            "resource_type": {"type": "keyword"},
            "result": {"type": "keyword"},
            "user_id": {"type": "keyword"},
            "resource_ids": {"type": "keyword"},
            "status_code": {"type": "integer"},
            "latency_ms": {"type": "integer"},
            "request_id": {"type": "keyword"},
            "detail": {"type": "object", "enabled": True},
        }
    }
}


async def _index_exists(client: httpx.AsyncClient, index: str) -> bool | None:
    try:
        response = await client.head(f"/{index}")
    except httpx.HTTPError as exc:
        logger.error("Unable to reach Elasticsearch: %s", exc)
        return None
    if response.status_code == 200:
        return True
    # 400 when the index is missing and security is disabled
    if response.status_code not in {400, 404}:
        logger.warning("Unexpected status %s checking index %s", response.status_code, index)
    return False


async def ensure_activity_index(transport: httpx.AsyncBaseTransport | None = None) -> bool:
    """Create the activity index with its mapping when Elasticsearch logging is on.

    Returns True when the index exists afterwards.
    """

    if not settings.log_to_elasticsearch:
        return False

    index = settings.elasticsearch_index
    async with httpx.AsyncClient(base_url=settings.elasticsearch_url, timeout=10, transport=transport) as client:
        exists = await _index_exists(client, index)
        if exists is None:
            return False
        if exists:
            return True
        try:
            response = await client.put(f"/{index}", json=ACTIVITY_MAPPING)
        except httpx.HTTPError as exc:
            logger.error("Failed to create Elasticsearch index %s: %s", index, exc)
            return False

    if response.status_code >= 300:
        logger.error("Elasticsearch index creation failed (%s): %s", response.status_code, response.text)
        return False
    logger.info("Created Elasticsearch index %s", index)
    return True
