from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Mapping

from .errors import ErrorDescriptor

ASSET_GROUP_IDS = frozenset({"media", "categories_products"})

TARGET_CATALOG = "catalog"
TARGET_SALES_CHANNEL = "sales_channel"


class MigrationStatus(IntEnum):
    WAITING = -1
    FETCH_DATA = 0
    WRITE_DATA = 1
    DOWNLOAD_DATA = 2
    FINISHED = 3


@dataclass
class MigrationProfile:
    """Connection profile forwarded opaquely to the remote side."""
    profile: str
    gateway: str = "api"
    credential_fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Entity:
    name: str
    count: int = 0
    progress: int = 0


@dataclass
class EntityGroup:
    id: str
    target: str
    target_id: str
    entities: List[Entity] = field(default_factory=list)
    count: int = 0
    progress: int = 0
    requires_asset_download: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntityGroup":
        """
        Build a group from a selection record. ``requiresAssetDownload`` is
        derived from the group id when the record does not carry it.
        """
        group_id = str(data["id"])
        entities = [
            Entity(name=str(e.get("entityName") or e["name"]),
                   count=int(e.get("entityCount", e.get("count", 0)) or 0))
            for e in data.get("entities", [])
        ]
        requires = data.get("requiresAssetDownload")
        if requires is None:
            requires = group_id in ASSET_GROUP_IDS
        count = data.get("count")
        return cls(
            id=group_id,
            target=str(data.get("target", TARGET_CATALOG)),
            target_id=str(data.get("targetId", "")),
            entities=entities,
            count=int(count) if count is not None else sum(e.count for e in entities),
            requires_asset_download=bool(requires),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "target": self.target,
            "targetId": self.target_id,
            "count": self.count,
            "progress": self.progress,
            "requiresAssetDownload": self.requires_asset_download,
            "entities": [
                {"entityName": e.name, "entityCount": e.count, "progress": e.progress}
                for e in self.entities
            ],
        }

    def refresh_count(self) -> int:
        self.count = sum(e.count for e in self.entities)
        return self.count

    def reset_progress(self) -> None:
        self.progress = 0
        for entity in self.entities:
            entity.progress = 0


@dataclass
class MigrationSession:
    """State of one run, from a granted start until it reaches FINISHED."""
    run_id: str
    profile: MigrationProfile
    entity_groups: List[EntityGroup]
    status: MigrationStatus = MigrationStatus.WAITING
    errors: List[ErrorDescriptor] = field(default_factory=list)

    def add_error(self, error: ErrorDescriptor) -> None:
        self.errors.append(error)

    def add_errors(self, errors: List[ErrorDescriptor]) -> None:
        self.errors.extend(errors)

    @property
    def requires_asset_download(self) -> bool:
        return any(g.requires_asset_download for g in self.entity_groups)

    def reset_progress(self) -> None:
        for group in self.entity_groups:
            group.reset_progress()

    def to_be_written(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for group in self.entity_groups:
            for entity in group.entities:
                totals[entity.name] = entity.count
        return totals
