"""
Bounded-concurrency download of binary assets.

Assets are not downloaded by parallel requests. Instead a small workload of
items is sent in one request and the remote side transfers up to
``file_chunk_byte_size`` bytes of each item per call, reporting back how far
every item got. Items that keep failing are evicted once their error count
exceeds the threshold.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional

from ..config import AssetConfig
from ..core.errors import ErrorDescriptor, asset_download_error, cannot_reach_server_error
from ..core.events import ProgressEvent
from ..core.throttle import AdaptiveThrottle

logger = logging.getLogger(__name__)

STATE_IN_PROGRESS = "inProgress"
STATE_FINISHED = "finished"

ASSET_ENTITY = "media"


@dataclass
class AssetWorkItem:
    uuid: str
    current_offset: int = 0
    state: str = STATE_IN_PROGRESS
    error_count: int = 0
    additional_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def uri(self) -> str:
        return str(self.additional_data.get("uri") or self.uuid)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AssetWorkItem":
        return cls(
            uuid=str(data["uuid"]),
            current_offset=int(data.get("currentOffset") or 0),
            state=str(data.get("state") or STATE_IN_PROGRESS),
            error_count=int(data.get("errorCount") or 0),
            additional_data=dict(data.get("additionalData") or {}),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "uuid": self.uuid,
            "currentOffset": self.current_offset,
            "state": self.state,
        }
        if self.error_count:
            payload["errorCount"] = self.error_count
        if self.additional_data:
            payload["additionalData"] = self.additional_data
        return payload


FetchIdentifiers = Callable[[int, int], Awaitable[List[str]]]
DownloadBatch = Callable[[List[AssetWorkItem], int], Awaitable[List[AssetWorkItem]]]
ProgressCallback = Callable[[ProgressEvent], None]


class AssetWorkloadManager:
    def __init__(self, config: Optional[AssetConfig] = None) -> None:
        self.config = config or AssetConfig()
        self.chunk_bytes = AdaptiveThrottle(self.config.chunk_bytes, name="file chunk bytes")
        self._reset(total=0)

    def _reset(self, total: int) -> None:
        self.total = total
        self.processed = 0
        self.pool: Deque[str] = deque()
        self.workload: List[AssetWorkItem] = []
        self._pool_offset = 0
        self._errors: List[ErrorDescriptor] = []

    # ---------- pool & workload ----------

    async def _fill_pool(self, fetch_identifiers_page: FetchIdentifiers) -> None:
        if len(self.pool) >= self.config.workload_count:
            return
        try:
            uuids = await fetch_identifiers_page(self._pool_offset, self.config.uuid_chunk)
        except Exception:
            logger.exception("Fetching asset identifiers at offset %d failed", self._pool_offset)
            self._errors.append(cannot_reach_server_error())
            return
        self.pool.extend(uuids or [])
        self._pool_offset += self.config.uuid_chunk

    def _top_up_workload(self) -> None:
        while self.pool and len(self.workload) < self.config.workload_count:
            self.workload.append(AssetWorkItem(uuid=self.pool.popleft()))

    def _update_workload(self, returned: List[AssetWorkItem], duration_ms: float) -> int:
        """Partition the returned workload and return how many items left it."""
        removed = 0
        kept: List[AssetWorkItem] = []
        for item in returned:
            if item.state == STATE_FINISHED:
                removed += 1
                continue
            if item.error_count > self.config.error_threshold:
                removed += 1
                logger.warning("Giving up on asset %s after %d errors", item.uri, item.error_count)
                self._errors.append(asset_download_error(item.uri))
                continue
            kept.append(item)
        self.workload = kept

        # only items without errors moved a full chunk, so only they say anything about latency
        if any(item.error_count == 0 for item in kept):
            self.chunk_bytes.adjust(duration_ms)
        return removed

    # ---------- main loop ----------

    async def download_all(
        self,
        total: int,
        fetch_identifiers_page: FetchIdentifiers,
        download_batch: DownloadBatch,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ErrorDescriptor]:
        """Download ``total`` assets and return the error records produced on the way."""
        self._reset(total=total)
        self.chunk_bytes.reset()
        if total <= 0:
            return []

        await self._fill_pool(fetch_identifiers_page)
        self._top_up_workload()
        failures = 0

        while self.processed < self.total:
            if not self.workload and not self.pool:
                logger.info("No assets left although %d of %d are processed", self.processed, self.total)
                break

            started = time.monotonic()
            try:
                returned = await download_batch(list(self.workload), self.chunk_bytes.value)
            except Exception as exc:
                failures += 1
                logger.warning("Asset download request failed (%s); retrying the same workload", exc)
                limit = self.config.max_transport_failures
                if limit is not None and failures > limit:
                    self._errors.append(cannot_reach_server_error())
                    break
                await asyncio.sleep(self.config.retry_delay_ms / 1000.0)
                continue
            failures = 0
            duration_ms = (time.monotonic() - started) * 1000.0

            removed = self._update_workload(returned, duration_ms)
            self.processed += removed
            if on_progress is not None:
                on_progress(ProgressEvent(ASSET_ENTITY, self.processed, self.total))

            self._top_up_workload()
            await self._fill_pool(fetch_identifiers_page)
            self._top_up_workload()

        logger.info("Asset download finished: %d of %d processed, %d errors",
                    self.processed, self.total, len(self._errors))
        return list(self._errors)
