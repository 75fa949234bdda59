"""
Normalise raw market records into weighted tiles.

Every record yields exactly one Tile: bad weights become 1 and unresolvable
metrics become None, so a record always renders.
"""
import json
import logging
import math
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

logger = logging.getLogger(__name__)

TIMEFRAME_1D = "1D"
TIMEFRAME_1W = "1W"

# requested timeframe -> keys tried in order
METRIC_FALLBACKS = {
    TIMEFRAME_1D: (TIMEFRAME_1D, TIMEFRAME_1W),
    TIMEFRAME_1W: (TIMEFRAME_1W, TIMEFRAME_1D),
}

_WEIGHT_KEYS = ("weight", "market_cap", "marketCap")
_FRAME_RESERVED = ("symbol", "label", "content_ref", "logoUrl", "metrics") + _WEIGHT_KEYS


@dataclass
class Tile:
    symbol: str
    label: Optional[str] = None
    weight: float = 1.0
    metrics: Dict[str, Optional[float]] = field(default_factory=dict)
    content_ref: Any = None


def _finite(value):
    """Real finite number as float, else None. bool is not a number here."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def coerce_weight(value):
    weight = _finite(value)
    if weight is None or weight <= 0:
        return 1.0
    return weight


def _clean_metrics(raw):
    metrics = {}
    if isinstance(raw, dict):
        for key, value in raw.items():
            metrics[str(key)] = _finite(value)
    return metrics


def normalize_tile(record, index=0):
    if isinstance(record, Tile):
        return Tile(
            symbol=str(record.symbol).strip().upper() or f"#{index}",
            label=record.label,
            weight=coerce_weight(record.weight),
            metrics=_clean_metrics(record.metrics),
            content_ref=record.content_ref,
        )
    if not isinstance(record, dict):
        logger.debug("Record %d is not a mapping (%r), rendering placeholder", index, type(record))
        record = {}

    symbol = str(record.get("symbol") or "").strip().upper() or f"#{index}"

    # first usable size field wins: weight, then market cap
    weight = None
    for key in _WEIGHT_KEYS:
        value = _finite(record.get(key))
        if value is not None and value > 0:
            weight = value
            break

    metrics = _clean_metrics(record.get("metrics"))
    # flat changePct1D / changePct1W keys from the web tile shape
    for key, value in record.items():
        if isinstance(key, str) and key.startswith("changePct") and len(key) > 9:
            metrics.setdefault(key[9:], _finite(value))

    label = record.get("label")
    return Tile(
        symbol=symbol,
        label=str(label) if label else None,
        weight=coerce_weight(weight),
        metrics=metrics,
        content_ref=record.get("content_ref", record.get("logoUrl")),
    )


def normalize_tiles(records):
    if not records:
        return []
    return [normalize_tile(r, i) for i, r in enumerate(records)]


def resolve_metric(tile, timeframe, chain=None):
    """
    Value for `timeframe`, walking the fallback chain.
    Returns None when no key in the chain holds a finite number.
    """
    if chain is None:
        chain = METRIC_FALLBACKS.get(timeframe, (timeframe,))
    for key in chain:
        value = _finite(tile.metrics.get(key))
        if value is not None:
            return value
    return None


def _metric_key(column):
    """Metric name for a frame column: `metrics.1D` and `changePct1D` both give `1D`."""
    column = str(column)
    if column.startswith("metrics.") and len(column) > 8:
        return column[8:]
    if column.startswith("changePct") and len(column) > 9:
        return column[9:]
    return column


def tiles_from_frame(frame):
    """
    Tiles from a DataFrame: a `symbol` column (or the index), optional
    label / weight / content_ref columns; every other column is a metric.
    Web-style columns are understood too: marketCap / market_cap as the
    weight, logoUrl as the content ref, and flattened `metrics.<TF>` or
    `changePct<TF>` metric columns.
    """
    if frame is None or len(frame.index) == 0:
        return []
    if "symbol" not in frame.columns:
        frame = frame.rename_axis("symbol").reset_index()
    renames = {}
    if "weight" not in frame.columns:
        cap = next((c for c in _WEIGHT_KEYS[1:] if c in frame.columns), None)
        if cap is not None:
            renames[cap] = "weight"
    if "content_ref" not in frame.columns and "logoUrl" in frame.columns:
        renames["logoUrl"] = "content_ref"
    if renames:
        frame = frame.rename(columns=renames)

    metric_cols = [c for c in frame.columns if c not in _FRAME_RESERVED]
    # nested `metrics.` columns win over flat ones naming the same key
    metric_cols.sort(key=lambda c: not str(c).startswith("metrics."))
    numeric = frame[metric_cols].apply(pd.to_numeric, errors="coerce") if metric_cols else None
    weights = (pd.to_numeric(frame["weight"], errors="coerce")
               if "weight" in frame.columns else None)

    tiles = []
    for i, (_, row) in enumerate(frame.iterrows()):
        symbol = row["symbol"]
        record = {"symbol": None if pd.isna(symbol) else symbol}
        if "label" in frame.columns and not pd.isna(row["label"]):
            record["label"] = row["label"]
        if weights is not None:
            record["weight"] = weights.iloc[i]
        if "content_ref" in frame.columns and not pd.isna(row["content_ref"]):
            record["content_ref"] = row["content_ref"]
        metrics = {}
        if "metrics" in frame.columns and isinstance(row["metrics"], dict):
            metrics.update(row["metrics"])
        if numeric is not None:
            for c in metric_cols:
                metrics.setdefault(_metric_key(c), numeric[c].iloc[i])
        if metrics or numeric is not None:
            record["metrics"] = metrics
        tiles.append(normalize_tile(record, i))
    return tiles


def load_tiles(path, history=None):
    """
    Read a records file into tiles. `.csv` files are read with pandas as they
    are; anything else is JSON, either a list of records or {"tiles": [...]},
    flattened with json_normalize. `history` optionally names a CSV of daily
    closes (first column the date, one column per symbol) whose percent
    changes fill metrics the records leave empty.
    An unreadable file logs a warning and gives [].
    """
    path = Path(path)
    try:
        if path.suffix.lower() == ".csv":
            frame = pd.read_csv(path)
        else:
            with open(path, "r", encoding="utf-8") as f:
                records = json.load(f)
            if isinstance(records, dict):
                records = records.get("tiles", [])
            if not isinstance(records, list):
                logger.warning("Ignoring records in %s: expected a list", path)
                return []
            frame = pd.json_normalize([r if isinstance(r, dict) else {} for r in records])
            if len(frame.index) and "symbol" not in frame.columns:
                frame["symbol"] = None
    except (OSError, ValueError) as e:
        logger.warning("Could not load records from %s: %s", path, e)
        return []

    tiles = tiles_from_frame(frame)
    if history is not None:
        try:
            closes = pd.read_csv(history, index_col=0)
        except (OSError, ValueError) as e:
            logger.warning("Could not load close history from %s: %s", history, e)
            closes = None
        changes = changes_from_history(closes)
        for tile in tiles:
            for key, value in changes.get(tile.symbol, {}).items():
                if tile.metrics.get(key) is None:
                    tile.metrics[key] = value
    logger.info("Loaded %d tile(s) from %s", len(tiles), path)
    return tiles


def changes_from_history(closes, week_sessions=5):
    """
    Percent changes from a frame of daily closes (index = dates, one column
    per symbol): 1D against the previous close, 1W against the close
    `week_sessions` sessions back. Missing history gives None.
    """
    changes = {}
    if closes is None or closes.empty:
        return changes
    for symbol in closes.columns:
        series = pd.to_numeric(closes[symbol], errors="coerce").dropna()
        changes[str(symbol).upper()] = {
            TIMEFRAME_1D: _pct_change(series, 1),
            TIMEFRAME_1W: _pct_change(series, week_sessions),
        }
    return changes


def _pct_change(series, sessions):
    if len(series) <= sessions:
        return None
    price = float(series.iloc[-1])
    prev_close = float(series.iloc[-1 - sessions])
    if prev_close == 0:
        return None
    return _finite((price - prev_close) / prev_close * 100)
