import logging
import time
from typing import Any, Callable, List, Optional

from ..assets.workload import ASSET_ENTITY, AssetWorkloadManager
from ..broadcast.coordinator import MigrationLock
from ..config import MigrationSettings
from ..remote.gateway import MigrationGateway
from .errors import (
    ErrorDescriptor,
    MigrationAlreadyRunningError,
    MigrationDeniedError,
    RemoteRequestError,
    cannot_reach_server_error,
)
from .events import EventBus, EventChannel, ProgressEvent
from .session import Entity, EntityGroup, MigrationProfile, MigrationSession, MigrationStatus
from .throttle import AdaptiveThrottle

logger = logging.getLogger(__name__)

FETCH_DATA = "fetch_data"
WRITE_DATA = "write_data"


class MigrationOrchestrator:
    """
    Runs a migration through its phases:

      1. fetch data from the source shop in paced batches
      2. refresh counts, then write the converted data in paced batches
      3. download assets, if any selected group needs them
      4. finish and hand back the collected errors

    Only one run at a time: locally through ``is_migrating``, and across
    contexts through the injected lock.
    """

    def __init__(self,
                 gateway: MigrationGateway,
                 lock: MigrationLock,
                 settings: Optional[MigrationSettings] = None,
                 events: Optional[EventBus] = None) -> None:
        self.settings = settings or MigrationSettings()
        self.events = events or EventBus()
        self._gateway = gateway
        self._lock = lock
        self._page_size = AdaptiveThrottle(self.settings.page_size, name="page size")
        self._assets = AssetWorkloadManager(self.settings.assets)
        self._session: Optional[MigrationSession] = None
        self._is_migrating = False

    # ---------- read-only state ----------

    @property
    def is_migrating(self) -> bool:
        return self._is_migrating

    @property
    def status(self) -> MigrationStatus:
        return self._session.status if self._session else MigrationStatus.WAITING

    @property
    def entity_groups(self) -> List[EntityGroup]:
        return self._session.entity_groups if self._session else []

    @property
    def errors(self) -> List[ErrorDescriptor]:
        return self._session.errors if self._session else []

    @property
    def page_size(self) -> AdaptiveThrottle:
        return self._page_size

    @property
    def assets(self) -> AssetWorkloadManager:
        return self._assets

    # ---------- entry point ----------

    async def start(self,
                    run_id: str,
                    profile: MigrationProfile,
                    entity_groups: List[EntityGroup],
                    status_callback: Optional[Callable[[Any], None]] = None,
                    progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
                    entity_count_callback: Optional[Callable[[List[EntityGroup]], None]] = None,
                    ) -> List[ErrorDescriptor]:
        """
        Run a full migration and return the errors collected on the way.

        Raises :class:`MigrationAlreadyRunningError` or
        :class:`MigrationDeniedError` when the run cannot start. Once started,
        failures never raise; they end up in the returned list.
        """
        if self._is_migrating:
            raise MigrationAlreadyRunningError(self._session.run_id if self._session else "")

        # claim the local flag before the handshake so a second call fails fast
        self._is_migrating = True
        try:
            granted = await self._lock.request_permission()
        except BaseException:
            self._is_migrating = False
            raise
        if not granted:
            self._is_migrating = False
            raise MigrationDeniedError()

        session = MigrationSession(run_id=run_id, profile=profile, entity_groups=list(entity_groups))
        self._session = session
        self._lock.announce_start()
        self.events.subscribe(EventChannel.STATUS, status_callback)
        self.events.subscribe(EventChannel.PROGRESS, progress_callback)
        self.events.subscribe(EventChannel.ENTITY_COUNT, entity_count_callback)
        logger.info("Starting migration run %s with %d entity group(s)", run_id, len(entity_groups))

        try:
            await self._fetch_data(session)
            await self._write_data(session)
            if session.requires_asset_download:
                await self._download_data(session)
            self._finish(session)
        finally:
            self._lock.announce_stop()
            self._is_migrating = False

        logger.info("Migration run %s finished with %d error(s)", run_id, len(session.errors))
        return session.errors

    # ---------- phases ----------

    def _set_status(self, session: MigrationSession, status: MigrationStatus) -> None:
        session.status = status
        logger.info("Run %s: %s", session.run_id, status.name)
        self.events.emit(EventChannel.STATUS, {"status": status})

    async def _fetch_data(self, session: MigrationSession) -> None:
        session.reset_progress()
        self._set_status(session, MigrationStatus.FETCH_DATA)
        await self._migrate_process(session, FETCH_DATA)

    async def _write_data(self, session: MigrationSession) -> None:
        session.reset_progress()
        self._set_status(session, MigrationStatus.WRITE_DATA)
        await self._update_entity_count_for_write(session)
        await self._persist_totals(session)
        await self._migrate_process(session, WRITE_DATA)

    async def _download_data(self, session: MigrationSession) -> None:
        total = await self._asset_total_count(session)
        session.reset_progress()
        self._set_status(session, MigrationStatus.DOWNLOAD_DATA)
        profile = session.profile

        async def fetch_identifiers_page(offset: int, limit: int) -> List[str]:
            return await self._gateway.fetch_asset_uuids(profile, offset, limit)

        errors = await self._assets.download_all(
            total,
            fetch_identifiers_page,
            self._gateway.download_assets,
            lambda event: self.events.emit(EventChannel.PROGRESS, event),
        )
        session.add_errors(errors)

    def _finish(self, session: MigrationSession) -> None:
        session.reset_progress()
        self._set_status(session, MigrationStatus.FINISHED)

    # ---------- counts ----------

    async def _update_entity_count_for_write(self, session: MigrationSession) -> None:
        for group in session.entity_groups:
            for entity in group.entities:
                try:
                    entity.count = await self._gateway.get_entity_count(session.run_id, entity.name)
                except Exception:
                    logger.exception("Could not refresh count of %s; keeping %d", entity.name, entity.count)
                    session.add_error(cannot_reach_server_error())
            group.refresh_count()
        self.events.emit(EventChannel.ENTITY_COUNT, session.entity_groups)

    async def _persist_totals(self, session: MigrationSession) -> None:
        try:
            await self._gateway.persist_run_totals(session.run_id, session.to_be_written())
        except Exception as e:
            logger.warning("Could not store totals of run %s: %s", session.run_id, e)
            session.add_error(cannot_reach_server_error())

    async def _asset_total_count(self, session: MigrationSession) -> int:
        try:
            return await self._gateway.get_entity_count(session.run_id, ASSET_ENTITY, written_only=True)
        except Exception as e:
            logger.warning("Could not count assets of run %s (%s); skipping downloads", session.run_id, e)
            return 0

    # ---------- batches ----------

    async def _migrate_process(self, session: MigrationSession, method: str) -> None:
        for group in session.entity_groups:
            group_progress = 0
            for entity in group.entities:
                await self._migrate_entity(session, group, entity, group_progress, method)
                group_progress += entity.count

    async def _migrate_entity(self, session: MigrationSession, group: EntityGroup,
                              entity: Entity, group_progress: int, method: str) -> None:
        entity_name = entity.name
        entity_count = entity.count
        self._page_size.reset()
        offset = 0
        requests = 0

        while offset < entity_count:
            used = self._page_size.value
            await self._migrate_entity_request(session, group, entity_name, method, offset, used)
            requests += 1

            reached = min(offset + used, entity_count)
            entity.progress = reached
            group.progress = group_progress + reached
            self.events.emit(EventChannel.PROGRESS,
                             ProgressEvent(entity_name, group_progress + reached, group.count))
            offset += used

        self._page_size.reset()
        logger.info("%s %s: %d record(s) in %d request(s)", method, entity_name, entity_count, requests)

    async def _migrate_entity_request(self, session: MigrationSession, group: EntityGroup,
                                      entity_name: str, method: str, offset: int, limit: int) -> None:
        operation = getattr(self._gateway, method)
        started = time.monotonic()
        try:
            response = await operation(session.run_id, session.profile, entity_name,
                                       offset, limit, group.target, group.target_id)
        except RemoteRequestError as e:
            if e.is_transport_failure:
                logger.warning("%s %s at offset %d: %s", method, entity_name, offset, e)
                session.add_error(cannot_reach_server_error())
                return
            logger.warning("%s %s at offset %d returned %d error(s)",
                           method, entity_name, offset, len(e.errors or []))
            session.add_errors(list(e.errors or []))
        except Exception:
            logger.exception("%s %s at offset %d failed", method, entity_name, offset)
            session.add_error(cannot_reach_server_error())
            return
        else:
            if response is None:
                logger.warning("%s %s at offset %d: empty response", method, entity_name, offset)
                session.add_error(cannot_reach_server_error())
                return

        duration_ms = (time.monotonic() - started) * 1000.0
        logger.debug("%s %s offset=%d limit=%d took %.0f ms", method, entity_name, offset, limit, duration_ms)
        self._page_size.adjust(duration_ms)
