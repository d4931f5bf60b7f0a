from typing import Any, Dict, List, Optional

ErrorDescriptor = Dict[str, Any]

TRANSPORT_ERROR_STATUS = "444"


class MigrationError(Exception):
    """Base class for errors raised by the migration runner."""


class MigrationStartError(MigrationError):
    """A run was not started."""


class MigrationAlreadyRunningError(MigrationStartError):
    def __init__(self, run_id: str = "") -> None:
        super().__init__(f"A migration is already running in this context ({run_id or 'unknown run'})")
        self.run_id = run_id


class MigrationDeniedError(MigrationStartError):
    def __init__(self) -> None:
        super().__init__("A migration is already running in another context")


class RemoteRequestError(MigrationError):
    """
    A remote operation failed.

    ``errors`` holds the server's error descriptors when the response carried
    any. ``None`` means no usable response came back at all.
    """

    def __init__(self, message: str, errors: Optional[List[ErrorDescriptor]] = None,
                 status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.errors = errors
        self.status_code = status_code

    @property
    def is_transport_failure(self) -> bool:
        return self.errors is None


def cannot_reach_server_error() -> ErrorDescriptor:
    return {
        "code": "0",
        "status": TRANSPORT_ERROR_STATUS,
        "title": "Cannot reach server",
        "detail": "The migration server did not answer the request.",
        "information": "Check the connection to the shop and try again.",
        "trace": [],
    }


def asset_download_error(uri: str) -> ErrorDescriptor:
    return {
        "code": "0",
        "status": TRANSPORT_ERROR_STATUS,
        "title": "Cannot download asset",
        "detail": "The asset could not be downloaded after several attempts.",
        "information": f"Failed to download the file at {uri}",
        "path": uri,
        "trace": [],
    }
