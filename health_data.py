"""
County geometry + health indicator loading and join.

- Geometry: TopoJSON topology (object `counties`) or GeoJSON FeatureCollection
- Table: national health CSV keyed by `cnty_fips`, read entirely as text
- Join key: county FIPS left-padded to 5 digits
"""

from __future__ import annotations

import copy
import io
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import requests
from loguru import logger

from measures import MeasureRegistry, measure_registry
from utils.convert_to_geojson import load_feature_collection


FIPS_COL = "cnty_fips"
NAME_COL = "display_name"
FIPS_WIDTH = 5
FIPS_PATTERN = re.compile(r"\d{1,5}")

Source = Union[str, Path]


class DatasetLoadError(RuntimeError):
    """Either data source failed to fetch or parse."""


class DataError(ValueError):
    """A table row that cannot be joined (malformed county identifier)."""

    def __init__(self, message: str, row: Optional[int] = None, value: object = None):
        super().__init__(message)
        self.row = row
        self.value = value


# ======================
# Loaders
# ======================

def _is_url(source: Source) -> bool:
    return str(source).startswith(("http://", "https://"))


def _fetch_text(source: Source) -> str:
    if _is_url(source):
        resp = requests.get(str(source), timeout=30)
        resp.raise_for_status()
        return resp.text
    with open(source, "r", encoding="utf-8") as f:
        return f.read()


def load_geometry(source: Source, object_name: str = "counties") -> dict:
    """Fetch the geometry resource and return it as a FeatureCollection."""
    return load_feature_collection(_fetch_text(source), object_name)


def load_table(source: Source) -> pd.DataFrame:
    """Fetch the indicator CSV with every column kept as raw text."""
    return pd.read_csv(io.StringIO(_fetch_text(source)), dtype=str, keep_default_na=False)


def load_sources(geometry_source: Source, table_source: Source) -> Tuple[dict, pd.DataFrame]:
    """
    Load both sources; neither result is returned unless both succeed.

    Raises:
        DatasetLoadError: if either resource fails to fetch or parse.
    """
    logger.info(f"Loading geometry from {geometry_source} and indicators from {table_source}")
    try:
        geometry = load_geometry(geometry_source)
        table = load_table(table_source)
    except (OSError, ValueError, KeyError, TypeError, RuntimeError, requests.RequestException) as exc:
        logger.error(f"Error loading files: {exc}")
        raise DatasetLoadError(str(exc)) from exc

    logger.info(f"Loaded {len(geometry['features'])} features and {len(table)} indicator rows")
    return geometry, table


# ======================
# Join & Normalize
# ======================

def pad_fips(value: object) -> str:
    """
    Left-pad a county identifier with '0' to the fixed FIPS width.

    Raises:
        DataError: if the value is empty, non-numeric or longer than 5 digits.
    """
    text = "" if value is None else str(value).strip()
    if not FIPS_PATTERN.fullmatch(text):
        raise DataError(f"Malformed county identifier: {value!r}", value=value)
    return text.zfill(FIPS_WIDTH)


def _as_optional(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_indicators(
    raw: pd.DataFrame,
    registry: Optional[MeasureRegistry] = None,
) -> Tuple[pd.DataFrame, List[DataError]]:
    """
    Pad identifiers and coerce every registered measure to float.

    Returns:
        (indicators, rejected): one row per valid table row with a column per
        measure key (NaN = missing), and the rows rejected for a bad identifier.
    """
    registry = registry or measure_registry()
    df = raw.rename(columns={c: c.strip() for c in raw.columns})

    required = {FIPS_COL, NAME_COL, *registry.columns()}
    missing = required.difference(set(df.columns))
    if missing:
        raise ValueError(f"CSV is missing required columns: {sorted(missing)}")

    padded: Dict[int, str] = {}
    rejected: List[DataError] = []
    for idx, value in df[FIPS_COL].items():
        try:
            padded[idx] = pad_fips(value)
        except DataError as err:
            err.row = idx
            logger.warning(f"{err} (row {idx})")
            rejected.append(err)

    df = df.loc[list(padded)].copy()
    df[FIPS_COL] = pd.Series(padded, dtype=object)
    df[NAME_COL] = df[NAME_COL].fillna("").astype(str).str.strip()

    for key in registry.keys():
        column = registry.column_for(key)
        values = pd.to_numeric(df[column].astype(str).str.strip(), errors="coerce")
        df[key] = values.astype(float).replace([np.inf, -np.inf], np.nan)

    return df.reset_index(drop=True), rejected


def build_lookup(indicators: pd.DataFrame, registry: Optional[MeasureRegistry] = None) -> Dict[str, dict]:
    """FIPS -> {NAME, <measure>: float|None}; later duplicate rows win."""
    registry = registry or measure_registry()

    dupes = indicators[FIPS_COL][indicators[FIPS_COL].duplicated()].unique()
    if len(dupes):
        logger.warning(f"{len(dupes)} duplicate county identifiers; keeping last row for each")

    lookup: Dict[str, dict] = {}
    for row in indicators.to_dict("records"):
        attrs = {"NAME": row[NAME_COL] or None}
        for key in registry.keys():
            attrs[key] = _as_optional(row[key])
        lookup[row[FIPS_COL]] = attrs
    return lookup


def feature_fips(feature: dict) -> Optional[str]:
    """Geometry-level GEOID first, then the feature's own id."""
    props = feature.get("properties") or {}
    fips = props.get("GEOID") or feature.get("id")
    return None if fips is None or fips == "" else str(fips)


def join_indicators(
    geometry: dict,
    lookup: Dict[str, dict],
    registry: Optional[MeasureRegistry] = None,
) -> dict:
    """
    Copy the collection and attach NAME plus every measure to each feature.
    Unmatched features keep their place with every attribute set to None.
    """
    registry = registry or measure_registry()
    keys = registry.keys()
    joined = copy.deepcopy(geometry)

    for feat in joined["features"]:
        props = feat.setdefault("properties", {})
        if props is None:
            props = feat["properties"] = {}
        row = lookup.get(feature_fips(feat))
        if row:
            props["NAME"] = row["NAME"]
            for key in keys:
                props[key] = row[key]
        else:
            props["NAME"] = None
            for key in keys:
                props[key] = None
    return joined


@dataclass(frozen=True)
class HealthDataset:
    """Read-only handle shared by the map and the auxiliary charts."""

    geojson: dict
    attributes: pd.DataFrame
    indicators: pd.DataFrame
    rejected: Tuple[DataError, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.attributes)

    def values_for(self, measure: str) -> np.ndarray:
        """Feature-aligned float values for a measure; all NaN if unknown."""
        if measure not in self.attributes.columns or measure in ("GEOID", "NAME"):
            return np.full(len(self.attributes), np.nan)
        return self.attributes[measure].to_numpy(dtype=float)


def _attribute_frame(joined: dict, registry: MeasureRegistry) -> pd.DataFrame:
    features = joined["features"]
    keys = registry.keys()
    # object columns keep None for absent names/ids under every pandas string dtype
    columns = {
        "GEOID": pd.Series([feature_fips(f) for f in features], dtype=object),
        "NAME": pd.Series([f["properties"].get("NAME") for f in features], dtype=object),
    }
    for key in keys:
        values = [f["properties"].get(key) for f in features]
        columns[key] = pd.Series([np.nan if v is None else v for v in values], dtype=float)
    return pd.DataFrame(columns, columns=["GEOID", "NAME", *keys])


def build_dataset(
    geometry: dict,
    table: pd.DataFrame,
    registry: Optional[MeasureRegistry] = None,
) -> HealthDataset:
    """
    Normalize the table, join it onto the geometry, and wrap the result.

    Raises:
        DatasetLoadError: if the table lacks the identifier, name or measure columns.
    """
    registry = registry or measure_registry()

    try:
        indicators, rejected = normalize_indicators(table, registry)
    except ValueError as exc:
        logger.error(f"Error parsing indicator table: {exc}")
        raise DatasetLoadError(str(exc)) from exc
    lookup = build_lookup(indicators, registry)
    joined = join_indicators(geometry, lookup, registry)
    attributes = _attribute_frame(joined, registry)

    n_matched = int(attributes["GEOID"].isin(list(lookup)).sum())
    logger.info(
        f"Joined {n_matched}/{len(attributes)} features to indicator rows "
        f"({len(rejected)} rows rejected)"
    )
    return HealthDataset(
        geojson=joined,
        attributes=attributes,
        indicators=indicators,
        rejected=tuple(rejected),
    )
