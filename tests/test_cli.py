# tests/test_cli.py
from __future__ import annotations

import json
import logging

from migration_runner.cli import (
    ProgressDisplay,
    build_parser,
    configure_logging,
    load_selection,
    mask_sensitive,
    settings_from_args,
)
from migration_runner.core.events import ProgressEvent


def parse(*extra):
    return build_parser().parse_args([
        "--base-url", "https://shop.test/api/v1",
        "--profile", "shopware55",
        "--selection", "groups.json",
        *extra,
    ])


def test_defaults_map_to_settings():
    settings = settings_from_args(parse())

    assert settings.page_size.default == 50
    assert settings.page_size.increment == 5
    assert settings.page_size.ceiling_ms == 10_000
    assert settings.assets.workload_count == 5
    assert settings.assets.uuid_chunk == 100
    assert settings.assets.error_threshold == 3
    assert settings.assets.chunk_bytes.default == 8_000_000
    assert settings.assets.chunk_bytes.increment == 250_000
    assert settings.coordinator.wait_window_ms == 100
    assert settings.assets.retry_delay_ms == 1000


def test_tunables_are_overridable():
    settings = settings_from_args(parse(
        "--page-size", "20", "--max-request-ms", "2000",
        "--asset-workload", "8", "--asset-max-transport-failures", "4",
        "--asset-retry-delay-ms", "50",
    ))

    assert settings.page_size.default == 20
    assert settings.page_size.ceiling_ms == 2000
    assert settings.assets.chunk_bytes.ceiling_ms == 2000
    assert settings.assets.workload_count == 8
    assert settings.assets.max_transport_failures == 4
    assert settings.assets.retry_delay_ms == 50


def test_token_is_masked():
    masked = mask_sensitive(parse("--token", "s3cret"))
    assert masked["token"] == "****"


def test_load_selection(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(json.dumps({"entityGroups": [
        {"id": "media", "target": "catalog", "targetId": "c1",
         "entities": [{"entityName": "media", "entityCount": 4}]},
    ]}))

    groups = load_selection(path)

    assert len(groups) == 1
    assert groups[0].requires_asset_download is True
    assert groups[0].count == 4


def test_progress_display_tracks_entity_streams():
    display = ProgressDisplay(logging.getLogger("test"), disable=False)

    display.on_progress(ProgressEvent("product", 50, 120))
    display.on_progress(ProgressEvent("product", 100, 120))
    assert display._bar.n == 100
    display.on_progress(ProgressEvent("category", 110, 120))
    assert display._bar.desc.startswith("category")

    display.on_status({"status": 3})
    assert display._bar is None


def test_mask_keeps_other_arguments():
    masked = mask_sensitive(parse("--token", "s3cret"))
    assert masked["profile"] == "shopware55"
    assert mask_sensitive(parse())["token"] is None


def test_http_loggers_quiet_unless_debug():
    try:
        configure_logging(debug=False, log_file=None)
        assert logging.getLogger("httpx").level == logging.WARNING
        configure_logging(debug=True, log_file=None)
        assert logging.getLogger("httpcore").level == logging.DEBUG
    finally:
        for name in ("httpx", "httpcore"):
            logging.getLogger(name).setLevel(logging.NOTSET)
