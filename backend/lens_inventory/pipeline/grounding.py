"""Map provider citation chunks to Source entries."""

from __future__ import annotations

from typing import Any

from lens_inventory.models.contracts import DEFAULT_SOURCE_TITLE, Source


def extract_sources(chunks: list[dict[str, Any]] | None) -> list[Source]:
    """Keep provider order; drop chunks without a URI.

    Missing metadata is not an error and yields an empty list.
    """
    sources: list[Source] = []
    for chunk in chunks or []:
        if not isinstance(chunk, dict):
            continue
        web = chunk.get("web") or {}
        uri = web.get("uri")
        if not uri:
            continue
        sources.append(Source(title=web.get("title") or DEFAULT_SOURCE_TITLE, uri=uri))
    return sources
