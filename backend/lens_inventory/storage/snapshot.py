"""Catalog snapshot persistence.

A snapshot ({catalog, target_url, stats, saved_at}) is saved and restored
wholesale. The pipeline never touches it; only the session layer does.
Two backends: an in-memory store (tests, single-process dev) and
Cloudflare R2 through its S3-compatible API.
"""

from __future__ import annotations

from typing import Any, Protocol

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError
from pydantic import ValidationError

from lens_inventory.config import Settings, settings
from lens_inventory.models.contracts import CatalogSnapshot

logger = structlog.get_logger()

SNAPSHOT_KEY_TEMPLATE = "sessions/{session_id}/snapshot.json"


class SnapshotStore(Protocol):
    def load(self) -> CatalogSnapshot | None: ...

    def save(self, snapshot: CatalogSnapshot) -> None: ...

    def clear(self) -> None: ...


class InMemorySnapshotStore:
    """Keeps the serialized snapshot in memory, so saves copy like real storage."""

    def __init__(self) -> None:
        self._data: str | None = None

    def load(self) -> CatalogSnapshot | None:
        if self._data is None:
            return None
        return CatalogSnapshot.model_validate_json(self._data)

    def save(self, snapshot: CatalogSnapshot) -> None:
        self._data = snapshot.model_dump_json()

    def clear(self) -> None:
        self._data = None


def build_r2_client(source: Settings | None = None) -> Any:
    """Create an S3 client pointed at Cloudflare R2."""
    source = source or settings
    return boto3.client(
        "s3",
        endpoint_url=f"https://{source.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=source.r2_access_key_id,
        aws_secret_access_key=source.r2_secret_access_key,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


class R2SnapshotStore:
    """One JSON object per session under ``sessions/{session_id}/``."""

    def __init__(self, client: Any, bucket: str, session_id: str) -> None:
        self._client = client
        self._bucket = bucket
        self.key = SNAPSHOT_KEY_TEMPLATE.format(session_id=session_id)

    def load(self) -> CatalogSnapshot | None:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self.key)
            body = response["Body"].read()
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("NoSuchKey", "404"):
                return None
            logger.error("snapshot_load_failed", key=self.key, error_code=error_code)
            raise

        try:
            snapshot = CatalogSnapshot.model_validate_json(body)
        except ValidationError as e:
            # A corrupt snapshot is discarded, never partially restored
            logger.error("snapshot_corrupt", key=self.key, error=str(e)[:200])
            return None
        logger.info("snapshot_loaded", key=self.key, products=len(snapshot.catalog))
        return snapshot

    def save(self, snapshot: CatalogSnapshot) -> None:
        data = snapshot.model_dump_json().encode("utf-8")
        self._client.put_object(
            Bucket=self._bucket,
            Key=self.key,
            Body=data,
            ContentType="application/json",
        )
        logger.info("snapshot_saved", key=self.key, size_bytes=len(data))

    def clear(self) -> None:
        self._client.delete_object(Bucket=self._bucket, Key=self.key)
        logger.info("snapshot_cleared", key=self.key)


class SnapshotStoreFactory:
    """Hands out one store per session id for the configured backend."""

    def __init__(self, source: Settings | None = None, r2_client: Any = None) -> None:
        self._settings = source or settings
        self._r2_client = r2_client
        self._memory: dict[str, InMemorySnapshotStore] = {}

    @property
    def backend(self) -> str:
        return self._settings.snapshot_backend

    def for_session(self, session_id: str) -> SnapshotStore:
        if self.backend == "r2":
            if self._r2_client is None:
                self._r2_client = build_r2_client(self._settings)
            return R2SnapshotStore(self._r2_client, self._settings.r2_bucket_name, session_id)
        return self._memory.setdefault(session_id, InMemorySnapshotStore())

    def discard(self, session_id: str) -> None:
        """Drop the per-session in-memory store; R2 objects are left to clear()."""
        self._memory.pop(session_id, None)
