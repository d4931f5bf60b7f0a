"""Migration API interaction package."""

from .client import MigrationApiClient
from .gateway import HttpMigrationGateway, MigrationGateway

__all__ = ["HttpMigrationGateway", "MigrationApiClient", "MigrationGateway"]
