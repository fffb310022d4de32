"""LensInventory contract models.

Shared by the pipeline, the session layer, snapshot persistence and the HTTP
surface. Provider output never reaches these models directly: it is parsed
and normalized first (see pipeline/normalizer.py).
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_serializer, field_validator

DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_SITE_CATEGORY = "Shop"
DEFAULT_SOURCE_TITLE = "Source"

# === Catalog ===


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: str = ""  # display string, e.g. "¥299"
    numeric_price: float = math.nan  # NaN when the price is not numeric ("Free")
    category: str = DEFAULT_CATEGORY
    image_url: str = ""
    source_url: str = ""

    @field_validator("numeric_price", mode="before")
    @classmethod
    def _null_price_is_nan(cls, value: object) -> object:
        # NaN is serialized as JSON null; read it back as NaN
        return math.nan if value is None else value

    @field_serializer("numeric_price", when_used="json")
    def _nan_price_is_null(self, value: float) -> float | None:
        return None if math.isnan(value) else value


class Source(BaseModel):
    """A citation the provider claims its extraction is based on."""

    title: str = DEFAULT_SOURCE_TITLE
    uri: str


class ScanStats(BaseModel):
    total_count: int = Field(ge=0)
    category: str = DEFAULT_SITE_CATEGORY
    scan_duration: str = ""  # display form, e.g. "3.2s"
    scan_duration_seconds: float = Field(ge=0, default=0.0)
    sources: list[Source] = []


class ScanResult(BaseModel):
    products: list[Product]
    stats: ScanStats


class MatchResult(BaseModel):
    product_id: str
    confidence: float = Field(ge=0, le=1)
    reasoning: str = ""


# === Session & Persistence ===


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CATALOG = "catalog"
    SEARCHING = "searching"


class CatalogSnapshot(BaseModel):
    """Wholesale-persisted unit: a catalog and the scan that produced it."""

    catalog: list[Product]
    target_url: str
    stats: ScanStats
    saved_at: datetime


# === API Requests / Responses ===


class CreateSessionRequest(BaseModel):
    session_id: str | None = Field(default=None, min_length=1, max_length=128)


class ScanRequest(BaseModel):
    target_url: str = Field(min_length=1, max_length=2048)


class MatchRequest(BaseModel):
    image_base64: str = Field(min_length=1)


class MatchResponse(BaseModel):
    match: MatchResult | None = None
    product: Product | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
    retry_after_seconds: int | None = None


class SessionView(BaseModel):
    session_id: str
    state: SessionState
    target_url: str | None = None
    catalog: list[Product] = []
    stats: ScanStats | None = None
    match: MatchResult | None = None
    last_error: ErrorResponse | None = None
    cooldown_remaining_seconds: int = 0

