"""Per-user catalog session: the caller side of the scan/match pipeline.

Owns the only long-lived state: the current catalog, its stats and the
attached match. State machine:

    idle -> scanning -> catalog | idle (+error)
    catalog -> scanning -> catalog (new) | catalog (previous, +error)
    catalog -> searching -> catalog (+match | +no match | +error)

At most one scan runs at a time (a second one raises SessionBusy). Matches
are last-request-wins: each request takes a generation token, and a response
whose token is no longer current is dropped (Superseded) instead of
overwriting newer state. ``reset()`` invalidates every in-flight request.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from lens_inventory.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    CatalogError,
    CooldownActive,
    NoCatalog,
    QuotaExceeded,
    SessionBusy,
    Superseded,
)
from lens_inventory.models.contracts import (
    CatalogSnapshot,
    MatchResult,
    Product,
    ScanResult,
    ScanStats,
    SessionState,
    SessionView,
)
from lens_inventory.pipeline.match import match_by_image
from lens_inventory.pipeline.scan import scan
from lens_inventory.storage.snapshot import InMemorySnapshotStore, SnapshotStore
from lens_inventory.utils.gemini import ImagePayload, ModelGateway

logger = structlog.get_logger()


class CatalogSession:
    def __init__(
        self,
        session_id: str,
        store: SnapshotStore | None = None,
        *,
        scan_limit: int = 12,
        cooldown_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.store = store if store is not None else InMemorySnapshotStore()
        self.scan_limit = scan_limit
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self.state = SessionState.IDLE
        self.catalog: list[Product] = []
        self.stats: ScanStats | None = None
        self.target_url: str | None = None
        self.match: MatchResult | None = None
        self.last_error: CatalogError | None = None

        self._scan_generation = 0
        self._match_generation = 0
        self._cooldown_until = 0.0
        self._log = logger.bind(session_id=session_id)

    # --- state helpers ---

    def _transition(self, new_state: SessionState) -> None:
        if new_state != self.state:
            self._log.info("session_transition", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state

    def _settled_state(self) -> SessionState:
        return SessionState.CATALOG if self.catalog else SessionState.IDLE

    def _record_error(self, error: CatalogError) -> None:
        self.last_error = error
        if isinstance(error, QuotaExceeded):
            self._cooldown_until = self._clock() + error.retry_after_seconds

    @property
    def cooldown_remaining(self) -> int:
        """Whole seconds left in the post-quota cooldown (0 when none)."""
        return max(0, math.ceil(self._cooldown_until - self._clock()))

    # --- persistence ---

    async def restore(self) -> bool:
        """Load the persisted snapshot, replacing any in-memory catalog."""
        snapshot = await asyncio.to_thread(self.store.load)
        if snapshot is None:
            return False
        self.catalog = list(snapshot.catalog)
        self.stats = snapshot.stats
        self.target_url = snapshot.target_url
        self.match = None
        self._transition(self._settled_state())
        self._log.info("session_restored", products=len(self.catalog))
        return True

    async def _persist(self) -> None:
        if self.stats is None or self.target_url is None:
            return
        snapshot = CatalogSnapshot(
            catalog=self.catalog,
            target_url=self.target_url,
            stats=self.stats,
            saved_at=datetime.now(UTC),
        )
        try:
            await asyncio.to_thread(self.store.save, snapshot)
        except Exception:
            # The scan already succeeded; a lost snapshot only costs a rescan
            self._log.exception("snapshot_save_failed")

    # --- operations ---

    async def scan(self, gateway: ModelGateway, target_url: str) -> ScanResult:
        """Scan ``target_url`` and replace the catalog wholesale on success.

        On failure the previous catalog (if any) is left untouched.
        """
        if self.state in (SessionState.SCANNING, SessionState.SEARCHING):
            raise SessionBusy("scan" if self.state == SessionState.SCANNING else "photo search")
        remaining = self.cooldown_remaining
        if remaining > 0:
            raise CooldownActive(remaining)

        self._scan_generation += 1
        token = self._scan_generation
        self.last_error = None
        self._transition(SessionState.SCANNING)

        try:
            result = await scan(
                gateway,
                target_url,
                limit=self.scan_limit,
                retry_after_seconds=self.cooldown_seconds,
            )
        except CatalogError as exc:
            if token != self._scan_generation:
                raise Superseded("scan") from exc
            self._record_error(exc)
            self._transition(self._settled_state())
            raise
        except BaseException as exc:
            # Unclassified failures and cancellation must not leave the session busy
            if token == self._scan_generation:
                self._log.warning("scan_aborted", error_type=type(exc).__name__)
                self._transition(self._settled_state())
            raise

        if token != self._scan_generation:
            self._log.info("scan_result_discarded", reason="superseded")
            raise Superseded("scan")

        self._match_generation += 1
        self.catalog = result.products
        self.stats = result.stats
        self.target_url = target_url.strip()
        self.match = None
        self._transition(SessionState.CATALOG)
        await self._persist()
        return result

    async def match_photo(
        self,
        gateway: ModelGateway,
        image: str | ImagePayload,
    ) -> MatchResult | None:
        """Match a photo against the current catalog; None means no match.

        A newer upload supersedes this one; the older response is dropped.
        """
        if self.state == SessionState.SCANNING:
            raise SessionBusy("scan")
        if not self.catalog:
            raise NoCatalog()

        self._match_generation += 1
        token = self._match_generation
        self.match = None
        self.last_error = None
        self._transition(SessionState.SEARCHING)

        try:
            result = await match_by_image(
                gateway,
                image,
                list(self.catalog),
                retry_after_seconds=self.cooldown_seconds,
            )
        except CatalogError as exc:
            if token != self._match_generation:
                raise Superseded("photo search") from exc
            self._record_error(exc)
            self._transition(self._settled_state())
            raise
        except BaseException as exc:
            if token == self._match_generation:
                self._log.warning("match_aborted", error_type=type(exc).__name__)
                self._transition(self._settled_state())
            raise

        if token != self._match_generation:
            self._log.info("match_result_discarded", reason="superseded")
            raise Superseded("photo search")

        self.match = result
        self._transition(self._settled_state())
        return result

    def matched_product(self) -> Product | None:
        if self.match is None:
            return None
        return next((p for p in self.catalog if p.id == self.match.product_id), None)

    def clear_match(self) -> None:
        """Discard the attached match and any in-flight photo search."""
        self._match_generation += 1
        self.match = None
        if self.state == SessionState.SEARCHING:
            self._transition(self._settled_state())

    async def reset(self) -> None:
        """Back to idle: drop catalog, match and snapshot; cancel in-flight work.

        The quota cooldown survives a reset.
        """
        self._scan_generation += 1
        self._match_generation += 1
        self.catalog = []
        self.stats = None
        self.target_url = None
        self.match = None
        self.last_error = None
        self._transition(SessionState.IDLE)
        await asyncio.to_thread(self.store.clear)

    def view(self) -> SessionView:
        return SessionView(
            session_id=self.session_id,
            state=self.state,
            target_url=self.target_url,
            catalog=self.catalog,
            stats=self.stats,
            match=self.match,
            last_error=self.last_error.to_response() if self.last_error else None,
            cooldown_remaining_seconds=self.cooldown_remaining,
        )
