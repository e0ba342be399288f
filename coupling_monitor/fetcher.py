from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from coupling_monitor.errors import BadStatusError, ConfigError, DecodeError, TransportFetchError
from coupling_monitor.models import GraphSnapshot, WeightedGraphResponse, Window

logger = logging.getLogger(__name__)

BODY_PREVIEW_CHARS = 512


class GraphSource(Protocol):
    async def fetch(self, client: httpx.AsyncClient, window: Window) -> GraphSnapshot: ...


def build_url(template: str, window: Window) -> str:
    """Substitute window bounds into either a ``{start}``/``{end}`` or a ``%d``/``%d`` template."""
    if "{start}" in template or "{end}" in template:
        return template.format(start=window.start, end=window.end)
    return template % (window.start, window.end)


class GraphFetcher:
    """Weighted dependency graph endpoint, one GET per window, no retries."""

    def __init__(self, url_template: str) -> None:
        try:
            build_url(url_template, Window(start=0, end=0))
        except (TypeError, ValueError, KeyError, IndexError) as exc:
            raise ConfigError(f"Graph API URL template {url_template!r} cannot take start/end: {exc}") from exc
        self.url_template = url_template

    async def fetch(self, client: httpx.AsyncClient, window: Window) -> GraphSnapshot:
        url = build_url(self.url_template, window)
        logger.info("Fetching weighted graph for window %s - %s", window.start, window.end)

        try:
            resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise TransportFetchError(
                f"Failed to get weighted graph for window {window.start} - {window.end}: {exc!r}"
            ) from exc

        logger.info("Received response from graph API: %s", resp.status_code)
        if resp.status_code != httpx.codes.OK:
            raise BadStatusError(resp.status_code, resp.text[:BODY_PREVIEW_CHARS])

        try:
            envelope = WeightedGraphResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise DecodeError(f"Unexpected graph API payload: {exc}") from exc

        snapshot = GraphSnapshot(
            window=window,
            nodes=envelope.data.nodes,
            edges=envelope.data.edges,
            weight_type=envelope.weight_type,
            gap_time=envelope.gap_time,
        )
        logger.info("Fetched %s nodes and %s edges", len(snapshot.nodes), len(snapshot.edges))
        return snapshot
