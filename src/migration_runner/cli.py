import argparse
import asyncio
import json
import logging
import sys
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .broadcast.channel import SpoolFileChannel
from .broadcast.coordinator import TabCoordinator
from .config import AssetConfig, CoordinatorConfig, MigrationSettings, ThrottleConfig
from .core.errors import MigrationStartError
from .core.events import ProgressEvent
from .core.orchestrator import MigrationOrchestrator
from .core.session import EntityGroup, MigrationProfile, MigrationStatus
from .remote.client import MigrationApiClient
from .remote.gateway import HttpMigrationGateway
from .report import entity_counts_frame, save_error_report

SENSITIVE_KEYS = {"token"}

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# httpx logs every request at INFO; only let it through with --debug
HTTP_LOGGERS = ("httpx", "httpcore")

DEFAULT_BROADCAST_FILE = Path(tempfile.gettempdir()) / "migration-runner.broadcast"

EXIT_DENIED = 2


def mask_sensitive(ns: argparse.Namespace) -> dict:
    """Arguments as a dict, safe to log: secrets are replaced by ``****``."""
    return {
        key: "****" if key in SENSITIVE_KEYS and value else value
        for key, value in vars(ns).items()
    }


def configure_logging(debug: bool, log_file: Optional[Path]) -> None:
    handler: logging.Handler
    if log_file is None:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[handler],
    )

    http_level = logging.DEBUG if debug else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)


def build_parser() -> argparse.ArgumentParser:
    defaults = MigrationSettings()
    p = argparse.ArgumentParser(description="Run a shop migration against the migration API")
    p.add_argument("--base-url", required=True, help="Migration API URL, e.g. https://shop/api/v1")
    p.add_argument("--token", help="Bearer token for the migration API")
    p.add_argument("--run-id", default=None, help="Run identifier (default: a new uuid)")
    p.add_argument("--profile", required=True, help="Migration profile name")
    p.add_argument("--gateway", default="api", help="Gateway of the profile")
    p.add_argument("--credentials", type=Path, default=None,
                   help="JSON file with the credential fields of the profile.")
    p.add_argument("--selection", type=Path, required=True,
                   help="JSON file with the selected entity groups.")

    g = p.add_argument_group("pacing")
    g.add_argument("--page-size", type=int, default=defaults.page_size.default)
    g.add_argument("--page-size-increment", type=int, default=defaults.page_size.increment)
    g.add_argument("--max-request-ms", type=float, default=defaults.page_size.ceiling_ms,
                   help="Latency ceiling used to grow or shrink batch and chunk sizes.")
    g.add_argument("--request-timeout", type=float, default=defaults.request_timeout,
                   help="Transport timeout per HTTP request in seconds.")

    a = p.add_argument_group("assets")
    a.add_argument("--asset-workload", type=int, default=defaults.assets.workload_count)
    a.add_argument("--asset-uuid-chunk", type=int, default=defaults.assets.uuid_chunk)
    a.add_argument("--asset-error-threshold", type=int, default=defaults.assets.error_threshold)
    a.add_argument("--asset-chunk-bytes", type=int, default=defaults.assets.chunk_bytes.default)
    a.add_argument("--asset-chunk-bytes-increment", type=int,
                   default=defaults.assets.chunk_bytes.increment)
    a.add_argument("--asset-max-transport-failures", type=int, default=None,
                   help="Give up downloads after this many failed requests in a row.")
    a.add_argument("--asset-retry-delay-ms", type=float, default=defaults.assets.retry_delay_ms,
                   help="Pause before resending assets after a failed request.")

    c = p.add_argument_group("coordination")
    c.add_argument("--broadcast-file", type=Path, default=DEFAULT_BROADCAST_FILE,
                   help="Spool file shared by all runners of this user.")
    c.add_argument("--wait-window-ms", type=float, default=defaults.coordinator.wait_window_ms)
    c.add_argument("--poll-interval-ms", type=float, default=defaults.coordinator.poll_interval_ms)

    p.add_argument("--error-report", type=Path, default=None,
                   help="Write collected errors to this .csv or .parquet file.")
    p.add_argument("--debug", action="store_true",
                   help="Enable verbose debug logging (incl. HTTP wire logs).")
    p.add_argument("--log-file", type=Path, default=None,
                   help="Write logs to this file instead of stderr.")
    return p


def settings_from_args(args: argparse.Namespace) -> MigrationSettings:
    return MigrationSettings(
        page_size=ThrottleConfig(
            default=args.page_size,
            increment=args.page_size_increment,
            ceiling_ms=args.max_request_ms,
        ),
        assets=AssetConfig(
            workload_count=args.asset_workload,
            uuid_chunk=args.asset_uuid_chunk,
            error_threshold=args.asset_error_threshold,
            chunk_bytes=ThrottleConfig(
                default=args.asset_chunk_bytes,
                increment=args.asset_chunk_bytes_increment,
                ceiling_ms=args.max_request_ms,
            ),
            max_transport_failures=args.asset_max_transport_failures,
            retry_delay_ms=args.asset_retry_delay_ms,
        ),
        coordinator=CoordinatorConfig(
            wait_window_ms=args.wait_window_ms,
            poll_interval_ms=args.poll_interval_ms,
        ),
        request_timeout=args.request_timeout,
    )


def load_selection(path: Path) -> List[EntityGroup]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("entityGroups", [])
    if not isinstance(data, list):
        raise ValueError(f"Unexpected selection format in {path}")
    return [EntityGroup.from_dict(group) for group in data]


class ProgressDisplay:
    """tqdm bars for the progress events of a run, one bar per entity stream."""

    def __init__(self, log: logging.Logger, disable: Optional[bool] = None) -> None:
        self.log = log
        self.disable = (not sys.stderr.isatty()) if disable is None else disable
        self._bar: Optional[tqdm] = None
        self._entity: Optional[str] = None

    def on_status(self, payload: Dict[str, Any]) -> None:
        self.close()
        self.log.info("Status: %s", MigrationStatus(payload["status"]).name)

    def on_progress(self, event: ProgressEvent) -> None:
        if self._bar is None or self._entity != event.entity_name:
            self.close()
            self._entity = event.entity_name
            self._bar = tqdm(total=event.entity_count, desc=event.entity_name, unit="rec",
                             disable=self.disable)
        bar = self._bar
        bar.total = event.entity_count
        bar.update(max(0, event.entity_group_progress_value - bar.n))

    def on_entity_count(self, groups: List[EntityGroup]) -> None:
        self.log.info("Records to write:\n%s", entity_counts_frame(groups).to_string(index=False))

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
        self._bar = None
        self._entity = None


async def run(args: argparse.Namespace) -> int:
    log = logging.getLogger("cli")
    settings = settings_from_args(args)
    groups = load_selection(args.selection)
    credentials = {}
    if args.credentials:
        credentials = json.loads(args.credentials.read_text(encoding="utf-8"))
    profile = MigrationProfile(profile=args.profile, gateway=args.gateway,
                               credential_fields=credentials)
    run_id = args.run_id or str(uuid.uuid4())

    channel = SpoolFileChannel(args.broadcast_file, settings.coordinator.poll_interval_ms)
    channel.start()
    coordinator = TabCoordinator(channel, settings.coordinator)
    display = ProgressDisplay(log)
    try:
        async with MigrationApiClient(args.base_url, args.token,
                                      timeout=settings.request_timeout) as client:
            orchestrator = MigrationOrchestrator(HttpMigrationGateway(client), coordinator, settings)
            try:
                errors = await orchestrator.start(
                    run_id, profile, groups,
                    display.on_status, display.on_progress, display.on_entity_count,
                )
            except MigrationStartError as e:
                log.error("Migration not started: %s", e)
                return EXIT_DENIED
    finally:
        display.close()
        coordinator.close()

    log.info("Run %s finished with %d error(s)", run_id, len(errors))
    for err in errors[:20]:
        log.warning("%s: %s", err.get("title", "error"), err.get("information") or err.get("detail", ""))
    if args.error_report:
        save_error_report(errors, args.error_report)
    return 0


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(args.debug, args.log_file)

    log = logging.getLogger("cli")
    log.debug("Parsed args (masked): %s", mask_sensitive(args))

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
        sys.exit(130)
    except Exception:
        log.exception("Unhandled error during execution")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":

    main()
