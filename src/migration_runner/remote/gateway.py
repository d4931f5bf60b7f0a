"""
Remote operations of the migration, as seen from the client.

Everything that reads, converts or writes records happens on the server. The
runner only paces the calls, so the gateway is a thin translation between
Python values and the migration API.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..assets.workload import AssetWorkItem
from ..core.errors import RemoteRequestError
from ..core.session import TARGET_CATALOG, MigrationProfile
from .client import MigrationApiClient

logger = logging.getLogger(__name__)

FETCH_DATA = "_action/migration/fetch-data"
WRITE_DATA = "_action/migration/write-data"
FETCH_MEDIA_UUIDS = "_action/migration/fetch-media-uuids"
DOWNLOAD_ASSETS = "_action/migration/download-assets"
SEARCH_MIGRATION_DATA = "search/swag-migration-data"
MIGRATION_RUN = "swag-migration-run"


class MigrationGateway(Protocol):
    async def fetch_data(self, run_id: str, profile: MigrationProfile, entity: str,
                         offset: int, limit: int, target: str, target_id: str) -> Optional[Any]: ...

    async def write_data(self, run_id: str, profile: MigrationProfile, entity: str,
                         offset: int, limit: int, target: str, target_id: str) -> Optional[Any]: ...

    async def get_entity_count(self, run_id: str, entity: str, written_only: bool = False) -> int: ...

    async def fetch_asset_uuids(self, profile: MigrationProfile, offset: int, limit: int) -> List[str]: ...

    async def download_assets(self, workload: List[AssetWorkItem],
                              file_chunk_byte_size: int) -> List[AssetWorkItem]: ...

    async def persist_run_totals(self, run_id: str, to_be_written: Dict[str, int]) -> None: ...


def _errors_from_response(response: httpx.Response) -> List[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return []
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        return list(body["errors"])
    return []


def _json_or_none(response: httpx.Response) -> Optional[Any]:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class HttpMigrationGateway:
    """
    Implements :class:`MigrationGateway` over the HTTP migration API.

    HTTP error responses become :class:`RemoteRequestError` with the server's
    error list (possibly empty). Connection problems and timeouts become a
    :class:`RemoteRequestError` whose ``errors`` is ``None``.
    """

    def __init__(self, client: MigrationApiClient) -> None:
        self._client = client

    async def _call(self, method: str, endpoint: str, *, params: Optional[Dict[str, Any]] = None,
                    json_data: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            if method == "GET":
                return await self._client.get(endpoint, params=params)
            if method == "PATCH":
                return await self._client.patch(endpoint, json_data=json_data)
            return await self._client.post(endpoint, json_data=json_data)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.debug("%s %s answered %d", method, endpoint, status)
            raise RemoteRequestError(
                f"{method} {endpoint} failed with status {status}",
                errors=_errors_from_response(e.response),
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            raise RemoteRequestError(f"{method} {endpoint} did not get a response: {e}") from e

    # ---------- batches ----------

    @staticmethod
    def _batch_params(run_id: str, profile: MigrationProfile, entity: str, offset: int,
                      limit: int, target: str, target_id: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "runUuid": run_id,
            "profile": profile.profile,
            "gateway": profile.gateway,
            "credentialFields": profile.credential_fields,
            "entity": entity,
            "offset": offset,
            "limit": limit,
        }
        if target == TARGET_CATALOG:
            params["catalogId"] = target_id
        else:
            params["salesChannelId"] = target_id
        return params

    async def fetch_data(self, run_id: str, profile: MigrationProfile, entity: str,
                         offset: int, limit: int, target: str, target_id: str) -> Optional[Any]:
        params = self._batch_params(run_id, profile, entity, offset, limit, target, target_id)
        return _json_or_none(await self._call("POST", FETCH_DATA, json_data=params))

    async def write_data(self, run_id: str, profile: MigrationProfile, entity: str,
                         offset: int, limit: int, target: str, target_id: str) -> Optional[Any]:
        params = self._batch_params(run_id, profile, entity, offset, limit, target, target_id)
        return _json_or_none(await self._call("POST", WRITE_DATA, json_data=params))

    # ---------- counts & totals ----------

    async def get_entity_count(self, run_id: str, entity: str, written_only: bool = False) -> int:
        """Count converted rows of ``entity`` in the run, optionally only written ones."""
        queries: List[Dict[str, Any]] = [
            {"type": "term", "field": "runId", "value": run_id},
            {"type": "term", "field": "entity", "value": entity},
            {"type": "not", "operator": "AND",
             "queries": [{"type": "term", "field": "converted", "value": None}]},
        ]
        if written_only:
            queries.append({"type": "term", "field": "written", "value": True})
        body = {
            "limit": 1,
            "filter": [{"type": "nested", "operator": "AND", "queries": queries}],
            "aggregations": {entity: {"count": {"field": "swag_migration_data.entity"}}},
        }
        data = _json_or_none(await self._call("POST", SEARCH_MIGRATION_DATA, json_data=body)) or {}
        try:
            return int(data["aggregations"][entity]["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteRequestError(f"Malformed count response for {entity!r}", errors=[]) from e

    async def persist_run_totals(self, run_id: str, to_be_written: Dict[str, int]) -> None:
        response = await self._call("GET", f"{MIGRATION_RUN}/{run_id}")
        run = (_json_or_none(response) or {}).get("data") or {}
        totals = dict(run.get("totals") or {})
        totals["toBeWritten"] = dict(to_be_written)
        await self._call("PATCH", f"{MIGRATION_RUN}/{run_id}", json_data={"totals": totals})

    # ---------- assets ----------

    async def fetch_asset_uuids(self, profile: MigrationProfile, offset: int, limit: int) -> List[str]:
        params = {"profile": profile.profile, "offset": offset, "limit": limit}
        data = _json_or_none(await self._call("GET", FETCH_MEDIA_UUIDS, params=params)) or {}
        return [str(u) for u in data.get("mediaUuids") or []]

    async def download_assets(self, workload: List[AssetWorkItem],
                              file_chunk_byte_size: int) -> List[AssetWorkItem]:
        body = {
            "workload": [item.to_payload() for item in workload],
            "fileChunkByteSize": file_chunk_byte_size,
        }
        data = _json_or_none(await self._call("POST", DOWNLOAD_ASSETS, json_data=body))
        if not isinstance(data, dict) or not isinstance(data.get("workload"), list):
            raise RemoteRequestError("Download response carried no workload")
        return [AssetWorkItem.from_payload(item) for item in data["workload"]]
