"""Prompt construction for catalog scans and photo matches.

Templates are plain text files under lens_inventory/prompts/, loaded once
and cached. The match prompt lists every catalog entry; the catalog is never
truncated, only each description is shortened.
"""

from __future__ import annotations

from functools import cache
from pathlib import Path

from lens_inventory.models.contracts import Product

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

MAX_SCAN_PRODUCTS = 20
_DESCRIPTION_CHARS = 80


@cache
def load_prompt(name: str) -> str:
    """Load a prompt template by file name."""
    return (PROMPTS_DIR / name).read_text()


def build_scan_prompt(target_url: str, limit: int = 12) -> str:
    """Build the grounded scan prompt for one shop URL."""
    if not 1 <= limit <= MAX_SCAN_PRODUCTS:
        raise ValueError(f"limit must be between 1 and {MAX_SCAN_PRODUCTS}, got {limit}")
    return load_prompt("scan_catalog.txt").format(target_url=target_url.strip(), limit=limit)


def _short(text: str, limit: int = _DESCRIPTION_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def format_catalog_context(catalog: list[Product]) -> str:
    """One compact line per product: ``ID: .., Name: ..[, Description: ..]``."""
    lines = []
    for product in catalog:
        line = f"ID: {product.id}, Name: {_short(product.name, 120)}"
        if product.description.strip():
            line += f", Description: {_short(product.description)}"
        lines.append(line)
    return "\n".join(lines)


def build_match_prompt(catalog: list[Product]) -> str:
    """Build the match prompt; the photo is sent alongside as an image part."""
    return load_prompt("match_product.txt").format(inventory=format_catalog_context(catalog))
