"""
Read the county geometry into a GeoJSON FeatureCollection.

The map file is a TopoJSON topology whose `counties` object GDAL exposes as a
layer; a plain GeoJSON FeatureCollection is passed through as-is.

Run as a script to export the counties object of data/map.json to GeoJSON.
"""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import BinaryIO, Union

import geopandas as gpd
import pandas as pd


TOPOLOGY_PATH = Path("data/map.json")
GEOJSON_OUT   = Path("data/us_counties.geojson")


def read_counties(source: Union[str, Path, BinaryIO], object_name: str = "counties") -> gpd.GeoDataFrame:
    """One row per geometry of the named topology object, in file order."""
    return gpd.read_file(source, layer=object_name)


def frame_to_feature_collection(gdf: gpd.GeoDataFrame) -> dict:
    """
    GeoDataFrame -> FeatureCollection dict.

    The `id` column becomes the feature id (omitted when null); null
    properties are dropped so a feature without attributes gets `{}`.
    """
    ids = gdf["id"].tolist() if "id" in gdf.columns else [None] * len(gdf)
    collection = json.loads(gdf.drop(columns=["id"], errors="ignore").to_json(na="drop", drop_id=True))

    for feat, fid in zip(collection["features"], ids):
        if fid is None or pd.isna(fid):
            continue
        feat["id"] = fid if isinstance(fid, str) else str(int(fid))
    return collection


def load_feature_collection(text: str, object_name: str = "counties") -> dict:
    """
    Parse a geometry document (TopoJSON topology or GeoJSON FeatureCollection).

    Raises:
        ValueError: if the text is not JSON, is another kind of document, or
            the topology has no object named `object_name`.
    """
    document = json.loads(text)
    kind = document.get("type") if isinstance(document, dict) else None
    if kind == "FeatureCollection":
        return document
    if kind != "Topology":
        raise ValueError(f"Expected a Topology or FeatureCollection, got {kind!r}")
    if object_name not in (document.get("objects") or {}):
        raise ValueError(f"Topology has no object named {object_name!r}")

    gdf = read_counties(io.BytesIO(text.encode("utf-8")), object_name)
    return frame_to_feature_collection(gdf)


def export_geojson(topology_path: Path, out_path: Path, object_name: str = "counties") -> int:
    """Write the counties layer as a GeoJSON file; returns the feature count."""
    gdf = read_counties(topology_path, object_name)
    gdf.to_file(out_path, driver="GeoJSON")
    return len(gdf)


if __name__ == "__main__":
    n = export_geojson(TOPOLOGY_PATH, GEOJSON_OUT)
    print(f"Saved {n} county features to {GEOJSON_OUT}")
