import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from .core.errors import ErrorDescriptor
from .core.session import EntityGroup

logger = logging.getLogger(__name__)

ERROR_COLUMNS = ["code", "status", "title", "detail", "information", "path"]


def errors_frame(errors: List[ErrorDescriptor]) -> pd.DataFrame:
    """One row per collected error; unknown keys are kept as extra columns."""
    df = pd.DataFrame(list(errors))
    for col in ERROR_COLUMNS:
        if col not in df.columns:
            df[col] = None
    extra = [c for c in df.columns if c not in ERROR_COLUMNS]
    return df[ERROR_COLUMNS + extra]


def entity_counts_frame(groups: List[EntityGroup]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for group in groups:
        for entity in group.entities:
            rows.append({
                "group": group.id,
                "target": group.target,
                "target_id": group.target_id,
                "entity": entity.name,
                "count": entity.count,
            })
    return pd.DataFrame(rows, columns=["group", "target", "target_id", "entity", "count"])


def _json_safe(df: pd.DataFrame) -> pd.DataFrame:
    encoded = df.copy()
    for c in encoded.columns:
        encoded[c] = encoded[c].apply(
            lambda v: json.dumps(v) if isinstance(v, (dict, list)) else v
        )
    return encoded


def save_error_report(errors: List[ErrorDescriptor], path: Path) -> Path:
    """
    Write the errors of a run to ``path``.

    ``.csv`` is written as CSV. Anything else is written as parquet, falling
    back to gzipped JSON lines next to it when parquet cannot be written
    (no engine installed, or mixed value types in a column).
    Returns the path actually written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = _json_safe(errors_frame(errors))

    if path.suffix == ".csv":
        df.to_csv(path, index=False)
        logger.info("Saved %d error(s) to CSV: %s", len(df), path)
        return path

    try:
        df.to_parquet(path, index=False)
        logger.info("Saved %d error(s) to parquet: %s", len(df), path)
        return path
    except Exception as e:
        logger.warning("Parquet save failed (%s). Falling back to JSON.gz report.", e)

    gz_path = path.with_suffix(".json.gz")
    with gzip.open(gz_path, "wt", encoding="utf-8") as f:
        for rec in errors:
            f.write(json.dumps(rec))
            f.write("\n")
    logger.info("Saved %d error(s) to JSON.gz: %s", len(errors), gz_path)
    return gz_path
