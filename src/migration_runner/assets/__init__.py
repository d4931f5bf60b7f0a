"""Asset download phase."""

from .workload import AssetWorkItem, AssetWorkloadManager

__all__ = ["AssetWorkItem", "AssetWorkloadManager"]
